"""FastAPI dependencies shared by the routes."""

import hmac
from typing import Annotated, Callable

from fastapi import Depends, Header, HTTPException, Request, status

from facet.core.config import Settings
from facet.uow import UnitOfWork


def get_settings(request: Request) -> Settings:
    """Settings loaded once by the application lifespan."""
    return request.app.state.settings


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.ai_jobs.get_by_id(job_id)
    """
    return request.app.state.uow_factory


def get_services(request: Request):
    """Service bundle (lifecycle, submission, reconciler, jobs, webhook) built at startup."""
    return request.app.state.services


async def verify_cron_secret(
    x_cron_secret: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> None:
    """Protect the reconcile trigger with the shared CRON_SECRET (when configured).

    Raises:
        HTTPException: 401 Unauthorized if the header is missing or wrong
    """
    if not settings.cron_secret:
        return
    if not x_cron_secret or not hmac.compare_digest(
        x_cron_secret.encode(), settings.cron_secret.encode()
    ):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid cron secret")
