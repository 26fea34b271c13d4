"""State transition tests for the AIJob model.

Tests focus on validating the job lifecycle state machine:
- Valid transitions between states
- Invalid transitions are rejected with clear error messages
- Terminal states are absorbing
- Retry scheduling respects the attempt budget
"""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from facet.models.ai_job import AIJob, InvalidStateTransition, JobStatus

T0 = datetime(2025, 3, 1, 12, 0, 0)


def new_job(**values) -> AIJob:
    values.setdefault("organization_id", uuid4())
    values.setdefault("source", "studio")
    values.setdefault("ai_model", "flux-kontext-pro")
    values.setdefault("input_url", "https://cdn/in.jpg")
    values.setdefault("created_at", T0)
    return AIJob(**values)


def test_happy_path():
    """pending → submitted → processing → success"""
    job = new_job()
    assert job.status == JobStatus.PENDING
    assert job.attempt_count == 0
    assert len(job.callback_token) >= 32

    job.mark_submitted("task-1", T0 + timedelta(seconds=1))
    assert job.status == JobStatus.SUBMITTED
    assert job.task_id == "task-1"
    assert job.attempt_count == 1

    job.mark_processing()
    assert job.status == JobStatus.PROCESSING

    job.mark_success("https://cdn/out.png", T0 + timedelta(seconds=42), tokens_used=2)
    assert job.status == JobStatus.SUCCESS
    assert job.result_url == "https://cdn/out.png"
    assert job.processing_time_ms == 42_000
    assert job.tokens_used == 2
    assert job.callback_received is True
    assert job.is_terminal


def test_success_directly_from_submitted():
    job = new_job()
    job.mark_submitted("task-1", T0)

    job.mark_success("https://cdn/out.png", T0 + timedelta(seconds=5))

    assert job.status == JobStatus.SUCCESS


def test_timeout_message_uses_job_age():
    job = new_job()
    job.mark_submitted("task-1", T0)

    job.mark_timeout(T0 + timedelta(seconds=601))

    assert job.status == JobStatus.TIMEOUT
    assert job.error_message == "Job timed out after 601 seconds"


def test_is_timed_out_is_strict():
    job = new_job()

    assert not job.is_timed_out(T0 + timedelta(seconds=600), 600)
    assert job.is_timed_out(T0 + timedelta(seconds=601), 600)


def test_pending_job_can_fail_on_rejected_submission():
    job = new_job()

    job.mark_failed("API error: 500", T0, error_code="500")

    assert job.status == JobStatus.FAILED
    assert job.error_code == "500"
    assert job.attempt_count == 0


@pytest.mark.parametrize(
    "terminal",
    [JobStatus.SUCCESS, JobStatus.FAILED, JobStatus.TIMEOUT, JobStatus.CANCELLED],
)
def test_terminal_states_are_absorbing(terminal):
    job = new_job(status=terminal, task_id="task-1", attempt_count=1)

    with pytest.raises(InvalidStateTransition):
        job.mark_success("https://cdn/out.png", T0)
    with pytest.raises(InvalidStateTransition):
        job.mark_failed("late failure", T0)
    with pytest.raises(InvalidStateTransition):
        job.mark_timeout(T0)
    with pytest.raises(InvalidStateTransition):
        job.mark_cancelled(T0)
    with pytest.raises(InvalidStateTransition):
        job.mark_processing()


def test_invalid_transition_messages():
    job = new_job()

    with pytest.raises(InvalidStateTransition, match="Job must be submitted or processing"):
        job.mark_success("https://cdn/out.png", T0)
    with pytest.raises(InvalidStateTransition, match="Job must be in submitted state"):
        job.mark_processing()


def test_required_values():
    job = new_job()
    with pytest.raises(ValueError, match="task_id is required"):
        job.mark_submitted("", T0)

    job.mark_submitted("task-1", T0)
    with pytest.raises(ValueError, match="result_url is required"):
        job.mark_success("", T0)


def test_cancel_from_every_active_state():
    pending = new_job()
    submitted = new_job(status=JobStatus.SUBMITTED, task_id="t", attempt_count=1)
    processing = new_job(status=JobStatus.PROCESSING, task_id="t", attempt_count=1)

    for job in (pending, submitted, processing):
        job.mark_cancelled(T0)
        assert job.status == JobStatus.CANCELLED
        assert job.completed_at == T0


def test_schedule_retry_resets_outcome():
    job = new_job(status=JobStatus.FAILED, task_id="task-1", attempt_count=1)
    job.error_message = "boom"
    job.completed_at = T0

    job.schedule_retry(T0, delay_seconds=30)

    assert job.status == JobStatus.PENDING
    assert job.next_retry_at == T0 + timedelta(seconds=30)
    assert job.error_message is None
    assert job.completed_at is None
    assert job.attempt_count == 1

    job.mark_submitted("task-2", T0 + timedelta(seconds=31))
    assert job.attempt_count == 2
    assert job.next_retry_at is None


def test_schedule_retry_rejections():
    never_submitted = new_job(status=JobStatus.FAILED)
    exhausted = new_job(status=JobStatus.TIMEOUT, task_id="t", attempt_count=3, max_attempts=3)
    in_flight = new_job(status=JobStatus.PROCESSING, task_id="t", attempt_count=1)

    with pytest.raises(InvalidStateTransition, match="never submitted"):
        never_submitted.schedule_retry(T0)
    with pytest.raises(InvalidStateTransition, match="Retry limit reached"):
        exhausted.schedule_retry(T0)
    with pytest.raises(InvalidStateTransition, match="must be failed or timed out"):
        in_flight.schedule_retry(T0)


def test_submission_rejected_when_attempts_exhausted():
    job = new_job(attempt_count=3, max_attempts=3)

    with pytest.raises(InvalidStateTransition, match="3/3 attempts"):
        job.mark_submitted("task-4", T0)
