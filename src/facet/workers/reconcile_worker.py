"""Reconcile worker - runs the reconciler on a fixed interval inside the API process.

Each tick is one bounded reconcile invocation. Overlapping invocations from the cron
CLI or the HTTP trigger are safe because all job writes are conditional.
"""

import asyncio
from typing import Callable

import structlog

from facet.core.config import Settings
from facet.services.factory import build_reconciler
from facet.uow import create_uow_factory

logger = structlog.get_logger(__name__)


async def run_reconcile_worker(
    session_factory: Callable,
    settings: Settings,
) -> None:
    """Main worker loop for job reconciliation.

    Workflow:
    1. Build the reconciler (skip entirely when no provider key is configured)
    2. Run one reconcile invocation
    3. Sleep RECONCILE_INTERVAL_SECONDS
    4. Handle CancelledError for graceful shutdown

    Args:
        session_factory: Factory function that creates database sessions
        settings: Application settings (interval, limits, API keys)
    """
    uow_factory = create_uow_factory(session_factory)
    reconciler = build_reconciler(settings, uow_factory)
    if reconciler is None:
        logger.warning("worker.disabled", worker="reconcile", reason="KIE_AI_API_KEY not configured")
        return

    logger.info(
        "worker.started",
        worker="reconcile",
        interval_seconds=settings.reconcile_interval_seconds,
        poll_limit=settings.reconcile_poll_limit,
        retry_limit=settings.reconcile_retry_limit,
    )

    try:
        while True:
            try:
                await reconciler.run()
                await asyncio.sleep(settings.reconcile_interval_seconds)

            except asyncio.CancelledError:
                raise

            except Exception as e:
                # Unexpected error in polling loop - log and continue with backoff
                logger.error(
                    "worker.error",
                    worker="reconcile",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(5)

    except asyncio.CancelledError:
        logger.info("worker.stopped", worker="reconcile")
        raise
