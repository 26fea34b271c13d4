"""User and operator actions on individual AI jobs."""

from typing import Callable
from uuid import UUID

from facet.models.ai_job import AIJob, InvalidStateTransition
from facet.services.exceptions import JobNotFoundError
from facet.services.job_lifecycle import JobLifecycle


class JobService:
    """Read, cancel and retry single jobs.

    Cancel and retry are conditional writes: if the job changed between the read and
    the write, InvalidStateTransition is raised rather than overwriting it.
    """

    def __init__(self, uow_factory: Callable, lifecycle: JobLifecycle, retry_delay_seconds: int = 0):
        self.uow_factory = uow_factory
        self.lifecycle = lifecycle
        self.retry_delay_seconds = retry_delay_seconds

    async def get_job(self, job_id: UUID) -> AIJob:
        async with await self.uow_factory() as uow:
            job = await uow.ai_jobs.get_by_id(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return job

    async def cancel_job(self, job_id: UUID) -> AIJob:
        """Cancel a pending or in-flight job.

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidStateTransition: If the job is terminal or changed concurrently
        """
        outcome = await self.lifecycle.cancel(job_id)
        if outcome.job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        if not outcome.applied:
            raise InvalidStateTransition("Job changed while cancelling, reload and try again.")
        return outcome.job

    async def retry_job(self, job_id: UUID) -> AIJob:
        """Schedule a failed or timed-out job for resubmission by the reconciler.

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidStateTransition: If the job is not retryable or attempts are exhausted
        """
        outcome = await self.lifecycle.schedule_retry(job_id, self.retry_delay_seconds)
        if outcome.job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        if not outcome.applied:
            raise InvalidStateTransition("Job changed while scheduling retry, reload and try again.")
        return outcome.job
