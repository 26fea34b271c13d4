"""Submission pipeline - cold start for one QueueItem.

Stages (progress shown in the dashboard):
    10  item marked processing
    20  downloading source image
    40  source downloaded
    60  original stored durably
    70  model resolved, prompt recorded, item optimizing
    80  job submitted to the provider

Each stage writes in its own short transaction; provider, asset and storage calls
never run inside one. Any stage failure marks the item failed with the captured
message. Completion (history, counters, item deletion) happens when the job is
finalized, either synchronously here or later by the reconciler or the webhook.
"""

import time
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

import structlog

from facet.core.timezone import utcnow
from facet.models.ai_job import AIJob, JobStatus
from facet.models.queue_item import QueueItem, QueueItemStatus
from facet.services.assets.google_drive import GoogleDriveClient
from facet.services.exceptions import (
    PermanentError,
    ProviderRejectedError,
    QueueItemNotFoundError,
    ServiceError,
    TransportError,
)
from facet.services.job_lifecycle import QUEUE_SOURCE, JobLifecycle
from facet.services.prompts import DEFAULT_PROMPT, resolve_prompt
from facet.services.providers.kie_client import KieClient
from facet.services.providers.registry import load_registry
from facet.services.providers.request_builders import (
    build_callback_url,
    build_request,
    sent_prompt,
)
from facet.services.storage.supabase_storage import BlobStore

logger = structlog.get_logger()

RAW_EXTENSIONS = frozenset({"cr2", "cr3", "nef", "arw", "dng", "raw", "orf", "rw2", "pef", "srw"})

CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/heic": "heic",
}


@dataclass
class SubmissionResult:
    success: bool
    job_id: Optional[UUID] = None
    task_id: Optional[str] = None
    history_id: Optional[UUID] = None
    result_url: Optional[str] = None
    passthrough: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("job_id", "history_id"):
            if data[key] is not None:
                data[key] = str(data[key])
        return data


class SubmissionFailed(Exception):
    """Internal signal: a stage failed and the item has been marked failed."""

    def __init__(self, message: str, job_id: Optional[UUID] = None):
        super().__init__(message)
        self.job_id = job_id


def raw_file_error(extension: str) -> str:
    return f"RAW files ({extension.upper()}) are not supported. Please convert to JPG/PNG first."


def original_storage_path(item: QueueItem, extension: str, timestamp_ms: int) -> str:
    return f"{item.organization_id}/{item.project_id}/original_{timestamp_ms}.{extension}"


class SubmissionPipeline:
    """Turns a pending QueueItem into a submitted AI job."""

    def __init__(
        self,
        uow_factory: Callable,
        lifecycle: JobLifecycle,
        client: Optional[KieClient],
        asset_origin: GoogleDriveClient,
        store: BlobStore,
        callback_base_url: Optional[str] = None,
        default_ai_model: str = "flux-kontext-pro",
        default_prompt: str = DEFAULT_PROMPT,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize submission pipeline.

        Args:
            uow_factory: UnitOfWork factory
            lifecycle: Shared finalize operations (failures, synchronous results)
            client: Provider client; None puts the pipeline in passthrough mode
            asset_origin: Source of the original image bytes
            store: Durable storage for the original image
            callback_base_url: Webhook base URL handed to the provider
            default_ai_model: Model used when the project does not choose one
            default_prompt: Prompt used when nothing else applies
            clock: Source of "now" (naive UTC)
        """
        self.uow_factory = uow_factory
        self.lifecycle = lifecycle
        self.client = client
        self.asset_origin = asset_origin
        self.store = store
        self.callback_base_url = callback_base_url
        self.default_ai_model = default_ai_model
        self.default_prompt = default_prompt
        self.clock = clock

    async def submit(self, queue_item_id: UUID) -> SubmissionResult:
        """Run the pipeline for one queue item.

        Args:
            queue_item_id: QueueItem identifier

        Returns:
            SubmissionResult (``passthrough`` when no provider key is configured)

        Raises:
            QueueItemNotFoundError: If the item does not exist
        """
        if self.client is None:
            logger.warning("submission.passthrough", queue_item_id=str(queue_item_id))
            return SubmissionResult(
                success=False, passthrough=True, error="KIE_AI_API_KEY not configured"
            )

        async with await self.uow_factory() as uow:
            item = await uow.queue_items.get_by_id(queue_item_id)
        if item is None:
            raise QueueItemNotFoundError(f"Queue item not found: {queue_item_id}")

        log = logger.bind(queue_item_id=str(item.id), file_name=item.file_name)
        log.info("submission.started")

        extension = item.file_extension
        if extension in RAW_EXTENSIONS:
            message = raw_file_error(extension)
            await self._fail_item(item.id, message)
            log.warning("submission.raw_rejected", extension=extension)
            return SubmissionResult(success=False, error=message)

        try:
            return await self._run_stages(item)
        except SubmissionFailed as e:
            return SubmissionResult(success=False, job_id=e.job_id, error=str(e))
        except (ServiceError, ValueError) as e:
            await self._fail_item(item.id, str(e))
            log.error("submission.stage_failed", error=str(e), error_type=type(e).__name__)
            return SubmissionResult(success=False, error=str(e))
        except Exception as e:
            await self._fail_item(item.id, f"Unexpected error: {e}")
            log.error("submission.stage_failed", error=str(e), error_type=type(e).__name__, exc_info=True)
            raise

    async def _run_stages(self, item: QueueItem) -> SubmissionResult:
        now = self.clock()
        await self._update_item(
            item.id,
            status=QueueItemStatus.PROCESSING.value,
            progress=10,
            started_at=now,
            error_message=None,
        )

        # Prompt: template > studio preset > custom prompt > default
        async with await self.uow_factory() as uow:
            project = await uow.projects.get_by_id(item.project_id)
            if project is None:
                raise PermanentError(f"Project not found: {item.project_id}")
            template = (
                await uow.projects.get_template(project.template_id) if project.template_id else None
            )
            preset = (
                await uow.projects.get_preset(project.studio_preset_id)
                if project.studio_preset_id
                else None
            )
            registry = await load_registry(uow)
        prompt = resolve_prompt(project, template, preset, self.default_prompt)
        aspect_ratio = preset.composition_aspect_ratio if preset is not None else "1:1"

        await self._update_item(item.id, progress=20)
        asset = await self.asset_origin.download(item.file_id)
        await self._update_item(item.id, progress=40)

        extension = item.file_extension or CONTENT_TYPE_EXTENSIONS.get(asset.content_type, "jpg")
        path = original_storage_path(item, extension, int(time.time() * 1000))
        original_url = await self.store.upload(path, asset.data, asset.content_type)
        await self._update_item(item.id, original_url=original_url, progress=60)

        model_id = project.ai_model or self.default_ai_model
        config = registry.require(model_id)
        await self._update_item(
            item.id,
            generated_prompt=prompt,
            ai_model=model_id,
            status=QueueItemStatus.OPTIMIZING.value,
            progress=70,
        )

        job = AIJob(
            organization_id=item.organization_id,
            job_type="optimize",
            source=QUEUE_SOURCE,
            source_id=item.id,
            ai_model=model_id,
            input_url=original_url,
            prompt=prompt,
            settings={"aspect_ratio": aspect_ratio},
            created_at=self.clock(),
        )
        async with await self.uow_factory() as uow:
            await uow.ai_jobs.add(job)

        log = logger.bind(queue_item_id=str(item.id), job_id=str(job.id), ai_model=model_id)

        callback_url = (
            build_callback_url(self.callback_base_url, job.callback_token)
            if self.callback_base_url
            else None
        )
        try:
            body = build_request(config, job, callback_url)
            submitted = await self.client.submit(config, body)  # type: ignore[union-attr]
        except ServiceError as e:
            error_code = e.code if isinstance(e, ProviderRejectedError) else None
            if isinstance(e, TransportError) and e.status_code is not None:
                error_code = str(e.status_code)
            # Fails the job and, through it, the queue item
            await self.lifecycle.finalize_failed(
                job.id, str(e), error_code=error_code, expected=(JobStatus.PENDING,)
            )
            log.error("submission.provider_failed", error=str(e), error_code=error_code)
            raise SubmissionFailed(str(e), job_id=job.id)

        recorded = await self.lifecycle.record_submission(
            job.id, submitted.task_id, sent_prompt=sent_prompt(body)
        )
        if not recorded.applied:
            status = recorded.job.status.value if recorded.job is not None else "missing"
            await self._fail_item(item.id, f"AI job {status}")
            log.warning("submission.superseded", task_id=submitted.task_id, job_status=status)
            return SubmissionResult(
                success=False,
                job_id=job.id,
                error=f"AI job {status} before submission was recorded",
            )

        await self._update_item(item.id, task_id=submitted.task_id, progress=80)
        log.info("submission.submitted", task_id=submitted.task_id)

        if submitted.result_url:
            outcome = await self.lifecycle.finalize_success(
                job.id, submitted.result_url, tokens_used=config.token_cost
            )
            if outcome.applied and outcome.job is not None:
                log.info("submission.completed_synchronously", history_id=str(outcome.history_id))
                return SubmissionResult(
                    success=True,
                    job_id=job.id,
                    task_id=submitted.task_id,
                    history_id=outcome.history_id,
                    result_url=outcome.job.result_url,
                )

        return SubmissionResult(success=True, job_id=job.id, task_id=submitted.task_id)

    async def _update_item(self, item_id: UUID, **values) -> None:
        async with await self.uow_factory() as uow:
            await uow.queue_items.update_stage(item_id, **values)

    async def _fail_item(self, item_id: UUID, message: str) -> None:
        async with await self.uow_factory() as uow:
            await uow.queue_items.mark_failed(item_id, message, self.clock())
