"""AI job API endpoints.

- POST /api/jobs/submit - Run the submission pipeline for a queue item
- POST /api/jobs/reconcile - Trigger one reconcile invocation (cron)
- GET /api/jobs/{job_id} - Job status for the dashboard
- POST /api/jobs/{job_id}/cancel - Cancel a pending or in-flight job
- POST /api/jobs/{job_id}/retry - Schedule a failed or timed-out job for resubmission
"""

from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from facet.api.dependencies import get_services, verify_cron_secret
from facet.models.ai_job import AIJob, InvalidStateTransition
from facet.services.exceptions import JobNotFoundError, QueueItemNotFoundError

logger = structlog.get_logger()
router = APIRouter(prefix="/api/jobs", tags=["jobs"])


# Request/Response Models


class SubmitRequest(BaseModel):
    queue_item_id: UUID = Field(..., description="Queue item to process")


class SubmitResponse(BaseModel):
    success: bool
    job_id: str | None = None
    task_id: str | None = None
    history_id: str | None = None
    result_url: str | None = None
    passthrough: bool = False
    error: str | None = None


class JobDTO(BaseModel):
    """Read-only view of an AI job for the dashboard."""

    id: str
    status: str
    ai_model: str
    source: str
    source_id: str | None = None
    task_id: str | None = None
    attempt_count: int
    max_attempts: int
    next_retry_at: datetime | None = None
    result_url: str | None = None
    error_message: str | None = None
    error_code: str | None = None
    processing_time_ms: int | None = None
    created_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_job(cls, job: AIJob) -> "JobDTO":
        return cls(
            id=str(job.id),
            status=job.status.value,
            ai_model=job.ai_model,
            source=job.source,
            source_id=str(job.source_id) if job.source_id else None,
            task_id=job.task_id,
            attempt_count=job.attempt_count,
            max_attempts=job.max_attempts,
            next_retry_at=job.next_retry_at,
            result_url=job.result_url,
            error_message=job.error_message,
            error_code=job.error_code,
            processing_time_ms=job.processing_time_ms,
            created_at=job.created_at,
            completed_at=job.completed_at,
        )


@router.post("/submit", response_model=SubmitResponse)
async def submit_queue_item(request: SubmitRequest, services=Depends(get_services)):
    """Submit one queue item to its project's AI model.

    HTTP Status Codes:
        200: Pipeline ran (check ``success``; ``passthrough`` when no provider key)
        404: Queue item not found
    """
    try:
        result = await services.submission.submit(request.queue_item_id)
    except QueueItemNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return SubmitResponse(**result.to_dict())


@router.post("/reconcile", dependencies=[Depends(verify_cron_secret)])
async def reconcile(services=Depends(get_services)) -> dict[str, Any]:
    """Run one bounded reconcile invocation and return its summary.

    HTTP Status Codes:
        200: Invocation completed (per-job errors are reported in the summary)
        401: Missing or invalid X-Cron-Secret
        503: Provider API key not configured
    """
    if services.reconciler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="KIE_AI_API_KEY not configured",
        )
    summary = await services.reconciler.run()
    return {"message": f"Checked {summary.checked} pending jobs", **summary.to_dict()}


@router.get("/{job_id}", response_model=JobDTO)
async def get_job(job_id: UUID, services=Depends(get_services)):
    try:
        job = await services.jobs.get_job(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return JobDTO.from_job(job)


@router.post("/{job_id}/cancel", response_model=JobDTO)
async def cancel_job(job_id: UUID, services=Depends(get_services)):
    """Cancel a pending, submitted or processing job.

    HTTP Status Codes:
        200: Job cancelled
        404: Job not found
        409: Job already terminal
    """
    try:
        job = await services.jobs.cancel_job(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidStateTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return JobDTO.from_job(job)


@router.post("/{job_id}/retry", response_model=JobDTO)
async def retry_job(job_id: UUID, services=Depends(get_services)):
    """Schedule a failed or timed-out job for resubmission.

    HTTP Status Codes:
        200: Retry scheduled (the reconciler resubmits once due)
        404: Job not found
        409: Job not retryable or attempts exhausted
    """
    try:
        job = await services.jobs.retry_job(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidStateTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return JobDTO.from_job(job)
