"""Provider callback handling.

Callbacks are an optimization: the reconciler recovers any callback that is lost,
late or ambiguous. A callback only finalizes a job when its outcome is unambiguous.
"""

import hmac
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from facet.services.exceptions import TransportError
from facet.services.job_lifecycle import JobLifecycle
from facet.services.providers.kie_client import KieClient
from facet.services.providers.registry import ModelConfig, ModelRegistry
from facet.services.providers.result_extractor import (
    Failed,
    Success,
    classify,
    extract_error_message,
    extract_result_url,
    get_path,
)

logger = structlog.get_logger()

_TASK_ID_PATHS = ("taskId", "task_id", "id", "data.taskId", "data.task_id", "data.id")
_SUCCESS_STATES = ("success",)
_FAILURE_STATES = ("fail", "failed")


class WebhookRejected(Exception):
    """Callback cannot be accepted; carries the HTTP status to answer with."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class WebhookResult:
    status: str  # success, failed, processing, already_processed, ignored
    job_id: str
    message: str = ""


def extract_callback_task_id(payload: Any) -> Optional[str]:
    for path in _TASK_ID_PATHS:
        value = get_path(payload, path)
        if value not in (None, ""):
            return str(value)
    return None


def _first_present(payload: Any, *paths: str) -> Any:
    for path in paths:
        value = get_path(payload, path)
        if value is not None:
            return value
    return None


def is_success_callback(payload: Any) -> bool:
    state = _first_present(payload, "state", "status", "data.state", "data.status")
    flag = _first_present(payload, "successFlag", "data.successFlag")
    return state in _SUCCESS_STATES or flag == 1


def is_failure_callback(payload: Any) -> bool:
    state = _first_present(payload, "state", "status", "data.state", "data.status")
    flag = _first_present(payload, "successFlag", "data.successFlag")
    return state in _FAILURE_STATES or flag in (2, 3)


def token_matches(expected: str, provided: Optional[str]) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(expected.encode(), provided.encode())


class WebhookHandler:
    def __init__(
        self,
        uow_factory,
        lifecycle: JobLifecycle,
        registry_loader,
        client: Optional[KieClient] = None,
    ):
        """Initialize webhook handler.

        Args:
            uow_factory: UnitOfWork factory
            lifecycle: Shared finalize operations
            registry_loader: Coroutine function taking a UnitOfWork, returning a ModelRegistry
            client: Provider client used to fetch the result when a success callback
                arrives without one; None leaves such jobs to the reconciler
        """
        self.uow_factory = uow_factory
        self.lifecycle = lifecycle
        self.registry_loader = registry_loader
        self.client = client

    async def handle(self, payload: Any, token: Optional[str]) -> WebhookResult:
        """Apply a provider callback.

        Raises:
            WebhookRejected: 400 without task id, 404 for unknown task, 401 for a bad token
        """
        task_id = extract_callback_task_id(payload)
        if not task_id:
            raise WebhookRejected("Missing task id", 400)

        async with await self.uow_factory() as uow:
            job = await uow.ai_jobs.get_by_task_id(task_id)
            registry: ModelRegistry = await self.registry_loader(uow)

        if job is None:
            logger.warning("webhook.unknown_task", task_id=task_id)
            raise WebhookRejected("Job not found", 404)

        if not token_matches(job.callback_token, token):
            logger.warning("webhook.invalid_token", job_id=str(job.id), task_id=task_id)
            raise WebhookRejected("Invalid callback token", 401)

        log = logger.bind(job_id=str(job.id), task_id=task_id, ai_model=job.ai_model)

        if job.is_terminal:
            log.info("webhook.already_processed", status=job.status.value)
            return WebhookResult("already_processed", str(job.id), "Already processed")

        config = registry.get(job.ai_model)
        result_url = extract_result_url(payload, config.result_url_paths if config else None)
        tokens_used = config.token_cost if config else 0

        is_failure = is_failure_callback(payload)
        # Some models send the result without any success flag
        if result_url and (is_success_callback(payload) or not is_failure):
            outcome = await self.lifecycle.finalize_success(job.id, result_url, tokens_used=tokens_used)
            log.info("webhook.success", applied=outcome.applied)
            return WebhookResult("success", str(job.id))

        if is_failure:
            message = extract_error_message(payload)
            outcome = await self.lifecycle.finalize_failed(job.id, message)
            log.info("webhook.failed", applied=outcome.applied, error_message=message)
            return WebhookResult("failed", str(job.id), message)

        if config is not None and is_success_callback(payload):
            polled = await self._poll_result(config, task_id)
            if isinstance(polled, Success):
                outcome = await self.lifecycle.finalize_success(
                    job.id, polled.url, tokens_used=tokens_used
                )
                log.info("webhook.success_after_poll", applied=outcome.applied)
                return WebhookResult("success", str(job.id))
            if isinstance(polled, Failed):
                outcome = await self.lifecycle.finalize_failed(job.id, polled.reason)
                log.info("webhook.failed_after_poll", applied=outcome.applied)
                return WebhookResult("failed", str(job.id), polled.reason)

        # Success without a URL, or an unrecognized shape: leave it for the reconciler
        async with await self.uow_factory() as uow:
            await uow.ai_jobs.record_callback(job.id, self.lifecycle.clock())
        log.info("webhook.deferred_to_reconciler", has_result_url=bool(result_url))
        return WebhookResult("processing", str(job.id))

    async def _poll_result(self, config: ModelConfig, task_id: str):
        """Ask the provider for the outcome a success callback did not carry.

        Returns:
            Success or Failed when the status endpoint is decisive, None otherwise
        """
        if self.client is None:
            return None
        try:
            payload = await self.client.get_status(config, task_id)
        except TransportError as e:
            logger.warning("webhook.poll_failed", task_id=task_id, error=str(e))
            return None
        outcome = classify(payload, config)
        return outcome if isinstance(outcome, (Success, Failed)) else None
