"""AIJob entity - one attempt at transforming one source image via an AI provider."""

import secrets
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime, String
from sqlalchemy import Enum as SAEnum
from sqlmodel import Field, SQLModel

from facet.core.timezone import utcnow


class JobStatus(str, Enum):
    """AI job lifecycle status."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


IN_FLIGHT_STATUSES = (JobStatus.SUBMITTED, JobStatus.PROCESSING)
ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.SUBMITTED, JobStatus.PROCESSING)
TERMINAL_STATUSES = (JobStatus.SUCCESS, JobStatus.FAILED, JobStatus.TIMEOUT, JobStatus.CANCELLED)
RETRYABLE_STATUSES = (JobStatus.FAILED, JobStatus.TIMEOUT)


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid job state transition."""

    pass


def _new_callback_token() -> str:
    return secrets.token_urlsafe(32)


class AIJob(SQLModel, table=True):
    """AIJob tracks a provider task from creation to a terminal state."""

    __tablename__ = "ai_jobs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: UUID = Field(index=True)
    job_type: str = Field(default="optimize", max_length=20)  # optimize, combine, generate
    source: str = Field(max_length=20)  # studio, queue, combination, api, shopify
    source_id: Optional[UUID] = Field(default=None, index=True)

    # Request
    ai_model: str = Field(max_length=100)
    input_url: str
    input_url_2: Optional[str] = Field(default=None)
    prompt: Optional[str] = Field(default=None)
    sent_prompt: Optional[str] = Field(default=None)  # as delivered, after builder decoration
    settings: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    # Provider linkage
    task_id: Optional[str] = Field(default=None, max_length=255, index=True)
    callback_received: bool = Field(default=False)
    callback_token: str = Field(default_factory=_new_callback_token, max_length=64)
    callback_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime()))

    # Lifecycle
    status: JobStatus = Field(
        default=JobStatus.PENDING,
        sa_column=Column(
            SAEnum(
                JobStatus,
                native_enum=False,
                length=20,
                values_callable=lambda statuses: [s.value for s in statuses],
            ),
            nullable=False,
            index=True,
        ),
    )
    attempt_count: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    next_retry_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime()))
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(), nullable=False, index=True)
    )
    submitted_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime()))
    completed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime()))

    # Result
    result_url: Optional[str] = Field(default=None)
    error_message: Optional[str] = Field(default=None, sa_column=Column(String(1000)))
    error_code: Optional[str] = Field(default=None, max_length=50)
    processing_time_ms: Optional[int] = Field(default=None)
    tokens_used: int = Field(default=0)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def aspect_ratio(self) -> str:
        return (self.settings or {}).get("aspect_ratio") or "1:1"

    def age_seconds(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds()

    def is_timed_out(self, now: datetime, max_processing_time_sec: int) -> bool:
        """True once the job has been alive longer than the model's processing budget."""
        return self.age_seconds(now) > max_processing_time_sec

    def elapsed_ms(self, now: datetime) -> int:
        return int(self.age_seconds(now) * 1000)

    def mark_submitted(
        self, task_id: str, now: datetime, sent_prompt: Optional[str] = None
    ) -> None:
        """Transition from pending to submitted.

        Used for both the first submission and scheduled retries. Each successful
        provider submission counts as one attempt.

        Raises:
            InvalidStateTransition: If current status is not pending or attempts are exhausted
            ValueError: If task_id is empty
        """
        if self.status != JobStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot mark submitted from {self.status.value}. Job must be in pending state."
            )
        if self.attempt_count >= self.max_attempts:
            raise InvalidStateTransition(
                f"Cannot submit job with {self.attempt_count}/{self.max_attempts} attempts used."
            )
        if not task_id:
            raise ValueError("task_id is required")
        self.task_id = task_id
        self.status = JobStatus.SUBMITTED
        self.submitted_at = now
        self.attempt_count += 1
        self.next_retry_at = None
        self.error_message = None
        self.error_code = None
        if sent_prompt is not None:
            self.sent_prompt = sent_prompt

    def mark_processing(self) -> None:
        """Transition from submitted to processing (first poll that sees the job in flight)."""
        if self.status != JobStatus.SUBMITTED:
            raise InvalidStateTransition(
                f"Cannot mark processing from {self.status.value}. "
                "Job must be in submitted state."
            )
        self.status = JobStatus.PROCESSING

    def mark_success(self, result_url: str, now: datetime, tokens_used: int = 0) -> None:
        """Transition from submitted/processing to success.

        Raises:
            InvalidStateTransition: If the job is not in flight
            ValueError: If result_url is empty
        """
        if self.status not in IN_FLIGHT_STATUSES:
            raise InvalidStateTransition(
                f"Cannot mark success from {self.status.value}. "
                "Job must be submitted or processing."
            )
        if not result_url:
            raise ValueError("result_url is required")
        self.status = JobStatus.SUCCESS
        self.result_url = result_url
        self.error_message = None
        self.callback_received = True
        self.completed_at = now
        self.processing_time_ms = self.elapsed_ms(now)
        self.tokens_used = tokens_used

    def mark_failed(self, error_message: str, now: datetime, error_code: str | None = None) -> None:
        """Transition from pending/submitted/processing to failed.

        A pending job may fail directly when its (re-)submission is rejected.
        """
        if self.status not in (JobStatus.PENDING, *IN_FLIGHT_STATUSES):
            raise InvalidStateTransition(
                f"Cannot mark failed from terminal state {self.status.value}."
            )
        if not error_message:
            raise ValueError("error_message is required")
        self.status = JobStatus.FAILED
        self.error_message = error_message[:1000]
        self.error_code = error_code
        self.completed_at = now

    def mark_timeout(self, now: datetime) -> None:
        """Transition from submitted/processing to timeout."""
        if self.status not in IN_FLIGHT_STATUSES:
            raise InvalidStateTransition(
                f"Cannot mark timeout from {self.status.value}. "
                "Job must be submitted or processing."
            )
        self.status = JobStatus.TIMEOUT
        self.error_message = f"Job timed out after {round(self.age_seconds(now))} seconds"
        self.completed_at = now

    def mark_cancelled(self, now: datetime) -> None:
        """Transition from any non-terminal state to cancelled."""
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot cancel job in terminal state {self.status.value}."
            )
        self.status = JobStatus.CANCELLED
        self.completed_at = now

    def schedule_retry(self, now: datetime, delay_seconds: int = 0) -> None:
        """Transition from failed/timeout back to pending for a scheduled resubmission.

        Raises:
            InvalidStateTransition: If the job is not failed/timeout, was never submitted,
                or has used all of its attempts
        """
        if self.status not in RETRYABLE_STATUSES:
            raise InvalidStateTransition(
                f"Cannot retry job from {self.status.value}. Job must be failed or timed out."
            )
        if self.attempt_count == 0:
            raise InvalidStateTransition("Cannot retry a job that was never submitted.")
        if self.attempt_count >= self.max_attempts:
            raise InvalidStateTransition(
                f"Retry limit reached ({self.attempt_count}/{self.max_attempts} attempts)."
            )
        self.status = JobStatus.PENDING
        self.next_retry_at = now + timedelta(seconds=delay_seconds)
        self.error_message = None
        self.error_code = None
        self.callback_received = False
        self.completed_at = None
        self.result_url = None
