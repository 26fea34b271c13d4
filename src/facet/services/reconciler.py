"""AI job reconciler.

One invocation is a bounded batch:

Phase A: poll in-flight jobs (submitted/processing) oldest first, enforce timeouts,
classify provider payloads and finalize.
Phase B: resubmit pending jobs whose scheduled retry is due.

Invocations are short-lived and may overlap (cron, background worker, HTTP trigger).
They coordinate only through conditional writes, so redundant runs are no-ops.
"""

import asyncio
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

import structlog

from facet.core.timezone import utcnow
from facet.models.ai_job import JobStatus
from facet.services.exceptions import (
    ProviderRejectedError,
    ServiceError,
    TransportError,
    UnknownModelError,
)
from facet.services.job_lifecycle import JobLifecycle
from facet.services.providers.kie_client import KieClient
from facet.services.providers.registry import ModelRegistry, load_registry
from facet.services.providers.request_builders import (
    build_callback_url,
    build_request,
    sent_prompt,
)
from facet.services.providers.result_extractor import Failed, Success, classify

logger = structlog.get_logger()


@dataclass
class ReconcileSummary:
    """Counters for one reconcile invocation."""

    checked: int = 0
    success: int = 0
    failed: int = 0
    timeout: int = 0
    still_processing: int = 0
    poll_failed: int = 0
    unknown_model: int = 0
    error: int = 0
    deferred: int = 0
    retries_processed: int = 0
    retries_failed: int = 0
    results: list[dict[str, Any]] = field(default_factory=list)

    def record(self, job_id, status: str, **details) -> None:
        self.results.append({"id": str(job_id), "status": status, **details})

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["retriesProcessed"] = self.retries_processed
        data["retriesFailed"] = self.retries_failed
        return data


class Reconciler:
    """Advances in-flight jobs to terminal states and resubmits due retries."""

    def __init__(
        self,
        uow_factory: Callable,
        client: KieClient,
        lifecycle: JobLifecycle,
        callback_base_url: Optional[str] = None,
        poll_limit: int = 15,
        retry_limit: int = 5,
        budget_seconds: float = 50.0,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        """Initialize reconciler.

        Args:
            uow_factory: UnitOfWork factory
            client: Provider client for status polls and resubmissions
            lifecycle: Shared finalize operations
            callback_base_url: Webhook base URL passed on resubmission
            poll_limit: Maximum in-flight jobs polled per invocation
            retry_limit: Maximum due retries resubmitted per invocation
            budget_seconds: Wall-clock budget; jobs not reached are deferred
            clock: Source of "now" (naive UTC)
            monotonic: Source of elapsed time for the budget
        """
        self.uow_factory = uow_factory
        self.client = client
        self.lifecycle = lifecycle
        self.callback_base_url = callback_base_url
        self.poll_limit = poll_limit
        self.retry_limit = retry_limit
        self.budget_seconds = budget_seconds
        self.clock = clock
        self.monotonic = monotonic

    async def run(self) -> ReconcileSummary:
        """Run one reconcile invocation.

        Per-job errors become per-job outcomes; the batch always completes.

        Returns:
            ReconcileSummary with counters and per-job results
        """
        started = self.monotonic()
        summary = ReconcileSummary()

        async with await self.uow_factory() as uow:
            registry = await load_registry(uow)
            pollable = await uow.ai_jobs.get_pollable(limit=self.poll_limit)

        logger.info("reconcile.started", pollable=len(pollable))

        for index, job in enumerate(pollable):
            remaining = self._remaining(started)
            if remaining <= 0:
                summary.deferred += len(pollable) - index
                logger.warning("reconcile.budget_exhausted", phase="poll", deferred=summary.deferred)
                break
            summary.checked += 1
            try:
                async with asyncio.timeout(remaining):
                    await self._reconcile_job(job, registry, summary)
            except TimeoutError:
                self._record_overrun(job, summary, phase="poll")
            except Exception as e:
                summary.error += 1
                summary.record(job.id, "error", error=str(e))
                logger.error(
                    "reconcile.job_error",
                    job_id=str(job.id),
                    error_type=type(e).__name__,
                    error=str(e),
                    exc_info=True,
                )

        if not self._budget_exhausted(started):
            await self._process_retries(registry, summary, started)

        logger.info(
            "reconcile.completed",
            checked=summary.checked,
            success=summary.success,
            failed=summary.failed,
            timeout=summary.timeout,
            still_processing=summary.still_processing,
            poll_failed=summary.poll_failed,
            unknown_model=summary.unknown_model,
            deferred=summary.deferred,
            retries_processed=summary.retries_processed,
            retries_failed=summary.retries_failed,
            duration_seconds=round(self.monotonic() - started, 3),
        )
        return summary

    def _remaining(self, started: float) -> float:
        return self.budget_seconds - (self.monotonic() - started)

    def _budget_exhausted(self, started: float) -> bool:
        return self._remaining(started) <= 0

    def _record_overrun(self, job, summary: ReconcileSummary, phase: str) -> None:
        # The job keeps its pre-state and is picked up again next tick
        summary.deferred += 1
        summary.record(job.id, "deferred")
        logger.warning("reconcile.budget_exceeded", job_id=str(job.id), phase=phase)

    async def _reconcile_job(self, job, registry: ModelRegistry, summary: ReconcileSummary) -> None:
        log = logger.bind(job_id=str(job.id), task_id=job.task_id, ai_model=job.ai_model)

        config = registry.get(job.ai_model)
        if config is None:
            summary.unknown_model += 1
            summary.record(job.id, "unknown_model")
            log.warning("reconcile.unknown_model")
            return

        now = self.clock()
        # Timeout wins over whatever the provider would report
        if job.is_timed_out(now, config.max_processing_time_sec):
            outcome = await self.lifecycle.finalize_timeout(job.id, now=now)
            if outcome.applied:
                summary.timeout += 1
                summary.record(job.id, "timeout")
            else:
                summary.record(job.id, "skipped")
            return

        try:
            payload = await self.client.get_status(config, job.task_id)
        except TransportError as e:
            summary.poll_failed += 1
            summary.record(job.id, "poll_failed", error=str(e))
            log.warning("reconcile.poll_failed", error=str(e), status_code=e.status_code)
            return

        result = classify(payload, config)
        if isinstance(result, Success):
            outcome = await self.lifecycle.finalize_success(
                job.id, result.url, tokens_used=config.token_cost
            )
            if outcome.applied:
                summary.success += 1
                summary.record(job.id, "success", result_url=outcome.job.result_url)
            else:
                summary.record(job.id, "skipped")
        elif isinstance(result, Failed):
            outcome = await self.lifecycle.finalize_failed(job.id, result.reason)
            if outcome.applied:
                summary.failed += 1
                summary.record(job.id, "failed", error=result.reason)
            else:
                summary.record(job.id, "skipped")
        else:
            if job.status == JobStatus.SUBMITTED:
                await self.lifecycle.mark_processing(job.id)
            summary.still_processing += 1
            summary.record(job.id, "still_processing")
            log.debug("reconcile.still_processing")

    async def _process_retries(
        self, registry: ModelRegistry, summary: ReconcileSummary, started: float
    ) -> None:
        async with await self.uow_factory() as uow:
            due = await uow.ai_jobs.get_due_retries(self.clock(), limit=self.retry_limit)

        for index, job in enumerate(due):
            remaining = self._remaining(started)
            if remaining <= 0:
                summary.deferred += len(due) - index
                logger.warning("reconcile.budget_exhausted", phase="retry", deferred=len(due) - index)
                break
            try:
                async with asyncio.timeout(remaining):
                    await self._resubmit(job, registry, summary)
            except TimeoutError:
                self._record_overrun(job, summary, phase="retry")
            except Exception as e:
                summary.error += 1
                summary.record(job.id, "error", error=str(e))
                logger.error(
                    "reconcile.retry_error",
                    job_id=str(job.id),
                    error_type=type(e).__name__,
                    error=str(e),
                    exc_info=True,
                )

    async def _resubmit(self, job, registry: ModelRegistry, summary: ReconcileSummary) -> None:
        """Rebuild the request from stored fields and submit it again.

        Any submission error finalizes the job as failed with attempt_count unchanged;
        a failed retry is never rescheduled automatically.
        """
        log = logger.bind(job_id=str(job.id), ai_model=job.ai_model, attempt_count=job.attempt_count)

        try:
            config = registry.require(job.ai_model)
            callback_url = (
                build_callback_url(self.callback_base_url, job.callback_token)
                if self.callback_base_url
                else None
            )
            body = build_request(config, job, callback_url)
            submitted = await self.client.submit(config, body)
        except ServiceError as e:
            error_code = e.code if isinstance(e, ProviderRejectedError) else None
            if isinstance(e, TransportError) and e.status_code is not None:
                error_code = str(e.status_code)
            if isinstance(e, UnknownModelError):
                error_code = "unknown_model"
            outcome = await self.lifecycle.finalize_failed(
                job.id, str(e), error_code=error_code, expected=(JobStatus.PENDING,)
            )
            if outcome.applied:
                summary.retries_failed += 1
                summary.record(job.id, "retry_failed", error=str(e))
            log.warning("reconcile.retry_failed", error=str(e), error_type=type(e).__name__)
            return

        outcome = await self.lifecycle.record_submission(
            job.id, submitted.task_id, sent_prompt=sent_prompt(body)
        )
        if not outcome.applied:
            # Another run resubmitted (or the user cancelled) in the meantime
            log.info("reconcile.retry_superseded", task_id=submitted.task_id)
            summary.record(job.id, "skipped")
            return

        summary.retries_processed += 1
        summary.record(job.id, "resubmitted", task_id=submitted.task_id)
        log.info("reconcile.retry_submitted", task_id=submitted.task_id)

        if submitted.result_url:
            await self.lifecycle.finalize_success(
                job.id, submitted.result_url, tokens_used=config.token_cost
            )
