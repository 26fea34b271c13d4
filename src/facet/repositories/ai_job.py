"""AIJob repository.

Reads return detached snapshots; every lifecycle write is a compare-and-set
``UPDATE ... WHERE status IN (...)`` so overlapping reconciler runs, webhooks and
user actions never clobber each other.
"""

from datetime import datetime
from typing import Iterable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from facet.models.ai_job import IN_FLIGHT_STATUSES, AIJob, JobStatus

# Columns a state transition may change
LIFECYCLE_FIELDS = (
    "status",
    "task_id",
    "attempt_count",
    "next_retry_at",
    "submitted_at",
    "completed_at",
    "result_url",
    "error_message",
    "error_code",
    "processing_time_ms",
    "tokens_used",
    "sent_prompt",
    "callback_received",
    "callback_at",
)


class AIJobRepository:
    """Repository for AIJob entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: AIJob) -> AIJob:
        """Persist new job to database.

        Args:
            job: AIJob entity to persist

        Returns:
            Persisted job with generated ID
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: UUID) -> AIJob | None:
        result = await self.session.execute(
            select(AIJob).where(AIJob.id == job_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_snapshot(self, job_id: UUID) -> AIJob | None:
        """Retrieve a job detached from the session.

        Transition methods can then mutate it freely; nothing is flushed until
        save_transition issues the conditional UPDATE.
        """
        job = await self.get_by_id(job_id)
        if job is not None:
            self.session.expunge(job)
        return job

    async def get_by_task_id(self, task_id: str) -> AIJob | None:
        """Retrieve the most recent job carrying a provider task id.

        Args:
            task_id: Provider task identifier

        Returns:
            AIJob if found, None otherwise
        """
        result = await self.session.execute(
            select(AIJob)
            .where(AIJob.task_id == task_id)  # type: ignore[arg-type]
            .order_by(AIJob.created_at.desc())  # type: ignore[attr-defined]
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_pollable(self, limit: int = 15) -> list[AIJob]:
        """Retrieve in-flight jobs awaiting a provider result, oldest first.

        Query explanation:
        - WHERE status IN ('submitted', 'processing'): provider task is running
        - AND task_id IS NOT NULL: there is something to poll
        - ORDER BY created_at ASC: oldest jobs are closest to their timeout

        Args:
            limit: Maximum number of jobs to retrieve (default: 15)

        Returns:
            List of AIJob entities
        """
        result = await self.session.execute(
            select(AIJob)
            .where(AIJob.status.in_(IN_FLIGHT_STATUSES))  # type: ignore[union-attr]
            .where(AIJob.task_id.is_not(None))  # type: ignore[union-attr]
            .order_by(AIJob.created_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_due_retries(self, now: datetime, limit: int = 5) -> list[AIJob]:
        """Retrieve pending jobs whose scheduled resubmission is due.

        Only jobs that were submitted at least once and still have attempts left
        qualify; brand new pending jobs belong to the submission pipeline.

        Args:
            now: Current time (naive UTC)
            limit: Maximum number of jobs to retrieve (default: 5)

        Returns:
            List of AIJob entities ordered by next_retry_at
        """
        result = await self.session.execute(
            select(AIJob)
            .where(AIJob.status == JobStatus.PENDING)  # type: ignore[arg-type]
            .where(AIJob.attempt_count > 0)  # type: ignore[arg-type]
            .where(AIJob.attempt_count < AIJob.max_attempts)  # type: ignore[arg-type]
            .where(AIJob.next_retry_at.is_not(None))  # type: ignore[union-attr]
            .where(AIJob.next_retry_at <= now)  # type: ignore[arg-type, operator]
            .order_by(AIJob.next_retry_at.asc())  # type: ignore[union-attr]
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_by_source(self, source: str, source_id: UUID) -> list[AIJob]:
        result = await self.session.execute(
            select(AIJob)
            .where(AIJob.source == source)  # type: ignore[arg-type]
            .where(AIJob.source_id == source_id)  # type: ignore[arg-type]
            .order_by(AIJob.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def save_transition(
        self,
        job: AIJob,
        expected: Iterable[JobStatus],
        expected_attempt_count: int | None = None,
    ) -> bool:
        """Write a transition computed on a job snapshot, conditional on its pre-state.

        The caller loads the job, applies an entity transition method in memory and
        passes the statuses the row must still be in. If another writer moved the row
        in between, nothing is written.

        Args:
            job: Job snapshot carrying the post-transition field values
            expected: Statuses the stored row must currently have
            expected_attempt_count: Additionally require this attempt count (guards
                against two runs resubmitting the same retry)

        Returns:
            True if the row matched and was updated, False otherwise
        """
        values = {field: getattr(job, field) for field in LIFECYCLE_FIELDS}
        statement = (
            update(AIJob)
            .where(AIJob.id == job.id)  # type: ignore[arg-type]
            .where(AIJob.status.in_(list(expected)))  # type: ignore[union-attr]
        )
        if expected_attempt_count is not None:
            statement = statement.where(
                AIJob.attempt_count == expected_attempt_count  # type: ignore[arg-type]
            )
        result = await self.session.execute(
            statement.values(**values).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def record_callback(self, job_id: UUID, now: datetime) -> bool:
        """Note that a provider callback arrived without a decisive outcome.

        Moves a submitted job to processing and stamps ``callback_at``;
        ``callback_received`` stays false so the reconciler keeps polling.
        """
        result = await self.session.execute(
            update(AIJob)
            .where(AIJob.id == job_id)  # type: ignore[arg-type]
            .where(AIJob.status.in_(IN_FLIGHT_STATUSES))  # type: ignore[union-attr]
            .values(status=JobStatus.PROCESSING, callback_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]
