"""Job finalization shared by the reconciler, the webhook and synchronous submissions.

Every transition follows the same shape: load a detached snapshot, apply the entity
transition in memory, then write it with a compare-and-set UPDATE. A finalize that
loses a race (job already terminal, cancelled, or finalized by another run) is a no-op.

Queue jobs additionally complete their QueueItem in the same transaction as the
success write: the item is deleted, a ProcessingHistory row is inserted and the
project counters are incremented. The token ledger is charged afterwards and a
ledger failure never undoes the completion.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional
from uuid import UUID

import structlog

from facet.core.timezone import utcnow
from facet.models.ai_job import (
    IN_FLIGHT_STATUSES,
    RETRYABLE_STATUSES,
    AIJob,
    InvalidStateTransition,
    JobStatus,
)
from facet.models.processing_history import ProcessingHistory
from facet.models.queue_item import QueueItemStatus
from facet.services.storage.materializer import ResultMaterializer

logger = structlog.get_logger()

QUEUE_SOURCE = "queue"


@dataclass
class FinalizeOutcome:
    """Result of a finalize attempt.

    ``applied`` is False when the conditional write did not match; ``job`` is then
    the snapshot that was read (or None if the job does not exist).
    """

    applied: bool
    job: Optional[AIJob] = None
    history_id: Optional[UUID] = None


class JobLifecycle:
    """Applies terminal and intermediate transitions to AI jobs."""

    def __init__(
        self,
        uow_factory: Callable,
        materializer: Optional[ResultMaterializer] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize lifecycle service.

        Args:
            uow_factory: UnitOfWork factory (``async with await uow_factory() as uow``)
            materializer: Re-hosts provider results; None keeps provider URLs as-is
            clock: Source of "now" (naive UTC)
        """
        self.uow_factory = uow_factory
        self.materializer = materializer
        self.clock = clock

    async def _transition(
        self,
        job_id: UUID,
        expected: Iterable[JobStatus],
        apply: Callable[[AIJob], None],
        strict: bool = False,
    ) -> FinalizeOutcome:
        """Load, transition and conditionally write one job.

        With ``strict`` the entity's InvalidStateTransition propagates (user actions
        report it); otherwise an illegal or stale transition is a silent no-op.
        """
        expected = tuple(expected)
        async with await self.uow_factory() as uow:
            job = await uow.ai_jobs.get_snapshot(job_id)
            if job is None or (job.status not in expected and not strict):
                return FinalizeOutcome(applied=False, job=job)

            attempts_before = job.attempt_count
            try:
                apply(job)
            except InvalidStateTransition as e:
                if strict:
                    raise
                logger.info("job.transition_rejected", job_id=str(job_id), reason=str(e))
                return FinalizeOutcome(applied=False, job=job)

            applied = await uow.ai_jobs.save_transition(
                job, expected, expected_attempt_count=attempts_before
            )
            if applied and job.is_terminal and job.status != JobStatus.SUCCESS:
                await self._fail_queue_item(uow, job)
        return FinalizeOutcome(applied=applied, job=job)

    async def record_submission(
        self,
        job_id: UUID,
        task_id: str,
        sent_prompt: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> FinalizeOutcome:
        """pending → submitted after the provider accepted the task (first try or retry)."""
        now = now or self.clock()
        outcome = await self._transition(
            job_id,
            (JobStatus.PENDING,),
            lambda job: job.mark_submitted(task_id, now, sent_prompt=sent_prompt),
        )
        if outcome.applied:
            logger.info(
                "job.submitted",
                job_id=str(job_id),
                task_id=task_id,
                attempt_count=outcome.job.attempt_count if outcome.job else None,
            )
        return outcome

    async def mark_processing(self, job_id: UUID) -> FinalizeOutcome:
        """submitted → processing; a no-op for jobs already processing."""
        return await self._transition(
            job_id, (JobStatus.SUBMITTED,), lambda job: job.mark_processing()
        )

    async def finalize_failed(
        self,
        job_id: UUID,
        error_message: str,
        error_code: Optional[str] = None,
        expected: Iterable[JobStatus] = IN_FLIGHT_STATUSES,
        now: Optional[datetime] = None,
    ) -> FinalizeOutcome:
        """Finalize a job as failed.

        Args:
            job_id: Job identifier
            error_message: Reason stored on the job (and on its QueueItem)
            error_code: Provider error code, if any
            expected: Statuses the job may be in; pass (PENDING,) for rejected submissions
            now: Completion time (defaults to the clock)
        """
        now = now or self.clock()
        outcome = await self._transition(
            job_id, expected, lambda job: job.mark_failed(error_message, now, error_code)
        )
        if outcome.applied:
            logger.info(
                "job.finalized.failed",
                job_id=str(job_id),
                error_message=error_message,
                error_code=error_code,
            )
        return outcome

    async def finalize_timeout(
        self, job_id: UUID, now: Optional[datetime] = None
    ) -> FinalizeOutcome:
        now = now or self.clock()
        outcome = await self._transition(
            job_id, IN_FLIGHT_STATUSES, lambda job: job.mark_timeout(now)
        )
        if outcome.applied and outcome.job is not None:
            logger.info(
                "job.finalized.timeout",
                job_id=str(job_id),
                error_message=outcome.job.error_message,
            )
        return outcome

    async def finalize_success(
        self,
        job_id: UUID,
        provider_url: str,
        tokens_used: int = 0,
        now: Optional[datetime] = None,
    ) -> FinalizeOutcome:
        """Finalize a job as successful and complete its QueueItem.

        The job is re-read before materializing, so a job that is already terminal
        is never downloaded or uploaded again.

        Args:
            job_id: Job identifier
            provider_url: Result URL reported by the provider
            tokens_used: Token cost of the model (recorded on job, history and ledger)
            now: Completion time (defaults to the clock)

        Returns:
            FinalizeOutcome; ``history_id`` is set when a QueueItem was completed
        """
        async with await self.uow_factory() as uow:
            current = await uow.ai_jobs.get_snapshot(job_id)
        if current is None or current.status not in IN_FLIGHT_STATUSES:
            return FinalizeOutcome(applied=False, job=current)

        result_url = provider_url
        if self.materializer is not None:
            result_url = await self.materializer.materialize(job_id, provider_url)

        now = now or self.clock()
        history_entry: Optional[ProcessingHistory] = None
        async with await self.uow_factory() as uow:
            job = await uow.ai_jobs.get_snapshot(job_id)
            if job is None or job.status not in IN_FLIGHT_STATUSES:
                logger.info("job.finalize_skipped", job_id=str(job_id), reason="already_terminal")
                return FinalizeOutcome(applied=False, job=job)

            job.mark_success(result_url, now, tokens_used=tokens_used)
            applied = await uow.ai_jobs.save_transition(job, IN_FLIGHT_STATUSES)
            if not applied:
                return FinalizeOutcome(applied=False, job=job)

            if job.source == QUEUE_SOURCE and job.source_id is not None:
                history_entry = await self._complete_queue_item(uow, job)

        logger.info(
            "job.finalized.success",
            job_id=str(job_id),
            task_id=job.task_id,
            ai_model=job.ai_model,
            result_url=result_url,
            processing_time_ms=job.processing_time_ms,
        )

        if history_entry is not None and tokens_used > 0:
            await self._charge_tokens(history_entry, tokens_used)

        return FinalizeOutcome(
            applied=True,
            job=job,
            history_id=history_entry.id if history_entry is not None else None,
        )

    async def cancel(self, job_id: UUID, now: Optional[datetime] = None) -> FinalizeOutcome:
        """{pending, submitted, processing} → cancelled.

        Raises:
            InvalidStateTransition: If the job is already terminal
        """
        now = now or self.clock()
        outcome = await self._transition(
            job_id,
            (JobStatus.PENDING, *IN_FLIGHT_STATUSES),
            lambda job: job.mark_cancelled(now),
            strict=True,
        )
        if outcome.applied:
            logger.info("job.cancelled", job_id=str(job_id))
        return outcome

    async def schedule_retry(
        self, job_id: UUID, delay_seconds: int = 0, now: Optional[datetime] = None
    ) -> FinalizeOutcome:
        """{failed, timeout} → pending with ``next_retry_at = now + delay_seconds``.

        The reconciler resubmits the job once it is due. A queue job's item goes back
        to ``optimizing`` so the dashboard shows it as in progress again.

        Raises:
            InvalidStateTransition: If the job is not failed/timeout or attempts are exhausted
        """
        now = now or self.clock()
        outcome = await self._transition(
            job_id,
            RETRYABLE_STATUSES,
            lambda job: job.schedule_retry(now, delay_seconds),
            strict=True,
        )
        job = outcome.job
        if outcome.applied and job is not None:
            if job.source == QUEUE_SOURCE and job.source_id is not None:
                async with await self.uow_factory() as uow:
                    await uow.queue_items.update_stage(
                        job.source_id,
                        status=QueueItemStatus.OPTIMIZING.value,
                        error_message=None,
                        completed_at=None,
                    )
            logger.info(
                "job.retry_scheduled",
                job_id=str(job_id),
                next_retry_at=job.next_retry_at.isoformat() if job.next_retry_at else None,
                attempt_count=job.attempt_count,
            )
        return outcome

    async def _complete_queue_item(self, uow, job: AIJob) -> Optional[ProcessingHistory]:
        """Replace the job's QueueItem with a ProcessingHistory row.

        Runs inside the caller's unit of work. A missing item means the completion
        already happened, so nothing is recorded twice.
        """
        item = await uow.queue_items.get_by_id(job.source_id)
        if item is None:
            logger.info("queue.completion_skipped", job_id=str(job.id), reason="item_missing")
            return None

        if not await uow.queue_items.delete(item.id):
            return None

        entry = ProcessingHistory(
            organization_id=item.organization_id,
            project_id=item.project_id,
            job_id=job.id,
            file_id=item.file_id,
            file_name=item.file_name,
            original_url=item.original_url or job.input_url,
            optimized_url=job.result_url,
            ai_model=job.ai_model,
            prompt=job.sent_prompt or job.prompt,
            processing_time_ms=job.processing_time_ms,
            tokens_used=job.tokens_used,
        )
        await uow.history.add(entry)
        await uow.projects.record_completion(item.project_id, job.tokens_used)

        logger.info(
            "queue.completed",
            queue_item_id=str(item.id),
            project_id=str(item.project_id),
            history_id=str(entry.id),
        )
        return entry

    async def _fail_queue_item(self, uow, job: AIJob) -> None:
        if job.source != QUEUE_SOURCE or job.source_id is None:
            return
        message = job.error_message or f"AI job {job.status.value}"
        if job.status == JobStatus.CANCELLED:
            message = "AI job cancelled"
        await uow.queue_items.mark_failed(job.source_id, message, job.completed_at or self.clock())

    async def _charge_tokens(self, entry: ProcessingHistory, amount: int) -> None:
        """Deduct the model's token cost from the organization ledger (non-fatal)."""
        try:
            async with await self.uow_factory() as uow:
                deducted = await uow.ledger.deduct(
                    entry.organization_id, amount, f"AI optimization: {entry.file_name}"
                )
        except Exception as e:
            logger.error(
                "ledger.deduct_failed",
                organization_id=str(entry.organization_id),
                amount=amount,
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        if not deducted:
            logger.warning(
                "ledger.insufficient_balance",
                organization_id=str(entry.organization_id),
                amount=amount,
            )
