"""FastAPI application factory."""

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from facet.api.routes import jobs, webhooks
from facet.core import timezone  # noqa: F401
from facet.core.config import Settings, configure_logging
from facet.core.database import setup_db_session
from facet.services.factory import build_services
from facet.uow import create_uow_factory
from facet.workers.reconcile_worker import run_reconcile_worker

logger = structlog.get_logger()


def create_resilient_worker(
    coro_func, session_factory, settings, worker_name: str, shutdown_event: asyncio.Event
):
    """Create a worker with automatic restart on failure.

    Args:
        coro_func: Worker coroutine function (e.g., run_reconcile_worker)
        session_factory: Database session factory
        settings: Application settings
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown

    Returns:
        Initial task handle (will be auto-recreated on crash)
    """
    restart_delay = 1

    def on_worker_done(task: asyncio.Task):
        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

        if task.cancelled():
            logger.info("worker.cancelled", worker=worker_name)
            return

        exc = task.exception()
        if exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=restart_delay,
                exc_info=exc,
            )
        else:
            # Disabled workers return immediately; do not restart those
            logger.info("worker.exited", worker=worker_name)
            return

        async def restart_worker():
            await asyncio.sleep(restart_delay)

            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            new_task = asyncio.create_task(coro_func(session_factory, settings))
            new_task.add_done_callback(on_worker_done)

        asyncio.create_task(restart_worker())

    task = asyncio.create_task(coro_func(session_factory, settings))
    task.add_done_callback(on_worker_done)
    return task


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Configure logging, initialize database session factory, build services,
      start the reconcile worker
    - Shutdown: Stop the worker
    """
    settings: Settings = app.state.settings

    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.services = build_services(settings, uow_factory)

    shutdown_event = asyncio.Event()
    worker_tasks = []
    if settings.reconcile_worker_enabled:
        worker_tasks.append(
            create_resilient_worker(
                run_reconcile_worker, session_factory, settings, "reconcile", shutdown_event
            )
        )

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        provider_configured=bool(settings.kie_ai_api_key),
        reconcile_worker=settings.reconcile_worker_enabled,
    )

    yield

    logger.info("application.shutdown")
    shutdown_event.set()

    for task in worker_tasks:
        task.cancel()
    await asyncio.gather(*worker_tasks, return_exceptions=True)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Settings override (tests); loaded from the environment when omitted

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Facet Backend API",
        description="AI job submission and reconciliation for jewelry photo optimization",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(jobs.router)
    app.include_router(webhooks.router)

    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()
