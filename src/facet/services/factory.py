"""Wiring of service objects from Settings.

Used by the FastAPI lifespan, the background worker and the CLI so all three run
the same configuration.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from facet.core.config import Settings
from facet.services.assets.google_drive import GoogleDriveClient
from facet.services.job_lifecycle import JobLifecycle
from facet.services.jobs import JobService
from facet.services.providers.kie_client import KieClient
from facet.services.providers.registry import load_registry
from facet.services.reconciler import Reconciler
from facet.services.storage.materializer import ResultMaterializer
from facet.services.storage.supabase_storage import SupabaseStorageClient
from facet.services.submission import SubmissionPipeline
from facet.services.webhook import WebhookHandler


def build_kie_client(settings: Settings) -> Optional[KieClient]:
    """Provider client, or None when no API key is configured."""
    if not settings.kie_ai_api_key:
        return None
    return KieClient(settings.kie_ai_api_key, timeout=settings.http_timeout_seconds)


def build_storage(settings: Settings) -> SupabaseStorageClient:
    return SupabaseStorageClient(
        settings.supabase_url,
        settings.supabase_service_role_key,
        bucket=settings.storage_bucket,
        timeout=settings.http_timeout_seconds,
    )


def build_lifecycle(settings: Settings, uow_factory: Callable) -> JobLifecycle:
    materializer = None
    if settings.supabase_url and settings.supabase_service_role_key:
        materializer = ResultMaterializer(build_storage(settings), timeout=settings.http_timeout_seconds)
    return JobLifecycle(uow_factory, materializer=materializer)


def build_reconciler(
    settings: Settings, uow_factory: Callable, lifecycle: Optional[JobLifecycle] = None
) -> Optional[Reconciler]:
    """Reconciler, or None when no provider API key is configured."""
    client = build_kie_client(settings)
    if client is None:
        return None
    return Reconciler(
        uow_factory,
        client,
        lifecycle or build_lifecycle(settings, uow_factory),
        callback_base_url=settings.callback_base_url,
        poll_limit=settings.reconcile_poll_limit,
        retry_limit=settings.reconcile_retry_limit,
        budget_seconds=settings.reconcile_budget_seconds,
    )


def build_submission_pipeline(
    settings: Settings, uow_factory: Callable, lifecycle: Optional[JobLifecycle] = None
) -> SubmissionPipeline:
    return SubmissionPipeline(
        uow_factory,
        lifecycle or build_lifecycle(settings, uow_factory),
        client=build_kie_client(settings),
        asset_origin=GoogleDriveClient(
            settings.google_drive_access_token,
            api_base=settings.google_drive_api_base,
            timeout=settings.http_timeout_seconds,
        ),
        store=build_storage(settings),
        callback_base_url=settings.callback_base_url,
        default_ai_model=settings.default_ai_model,
        default_prompt=settings.default_prompt,
    )


def build_job_service(
    settings: Settings, uow_factory: Callable, lifecycle: Optional[JobLifecycle] = None
) -> JobService:
    return JobService(
        uow_factory,
        lifecycle or build_lifecycle(settings, uow_factory),
        retry_delay_seconds=settings.retry_delay_seconds,
    )


@dataclass
class Services:
    """Service objects shared by routes, the worker and the CLI."""

    lifecycle: JobLifecycle
    submission: SubmissionPipeline
    jobs: JobService
    webhook: WebhookHandler
    reconciler: Optional[Reconciler] = None


def build_services(settings: Settings, uow_factory: Callable) -> Services:
    lifecycle = build_lifecycle(settings, uow_factory)
    return Services(
        lifecycle=lifecycle,
        submission=build_submission_pipeline(settings, uow_factory, lifecycle),
        jobs=build_job_service(settings, uow_factory, lifecycle),
        webhook=WebhookHandler(uow_factory, lifecycle, load_registry, build_kie_client(settings)),
        reconciler=build_reconciler(settings, uow_factory, lifecycle),
    )
