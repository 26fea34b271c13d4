"""Reconciler tests against a fake Kie.ai provider (httpx.MockTransport).

Covers:
- Poll outcomes: success, failure, still processing, poll failure
- Timeout enforcement before polling
- Resubmission of due retries (accepted, HTTP error, API rejection)
- Unknown models, idempotent re-runs and the wall-clock budget
- Malformed endpoints and result URLs
"""

import asyncio
import json
from datetime import timedelta

import httpx
import pytest

from facet.models.ai_job import JobStatus
from facet.services.job_lifecycle import JobLifecycle
from facet.services.providers.kie_client import KieClient
from facet.services.providers.request_builders import GHIBLI_PREFIX
from facet.services.reconciler import Reconciler
from facet.services.storage.materializer import ResultMaterializer

CALLBACK_BASE = "https://api.facet.test/webhooks/ai"


class FakeProvider:
    """Answers status polls per task id and submissions from a queue."""

    def __init__(self):
        self.status = {}
        self.stalled = {}
        self.submissions = []
        self.requests: list[httpx.Request] = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "GET":
            task_id = request.url.params.get("taskId")
            if task_id in self.stalled:
                await asyncio.sleep(self.stalled[task_id])
            answer = self.status.get(task_id)
        else:
            answer = self.submissions.pop(0)
        if answer is None:
            return httpx.Response(404, json={"code": 404, "msg": "not found"})
        status_code, payload = answer
        return httpx.Response(status_code, json=payload)

    @property
    def polls(self):
        return [r for r in self.requests if r.method == "GET"]

    @property
    def submits(self):
        return [r for r in self.requests if r.method == "POST"]


class SteppingMonotonic:
    """Each reading advances the clock by ``step`` seconds."""

    def __init__(self, step: float):
        self.step = step
        self.now = 0.0

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def make_reconciler(uow_factory, provider, t0):
    def _make(now=None, materializer=None, **kwargs):
        clock = lambda: now or t0  # noqa: E731
        client = KieClient("test-key", transport=httpx.MockTransport(provider.handler))
        lifecycle = JobLifecycle(uow_factory, materializer=materializer, clock=clock)
        return Reconciler(
            uow_factory,
            client,
            lifecycle,
            callback_base_url=CALLBACK_BASE,
            clock=clock,
            **kwargs,
        )

    return _make


def flux_success(url):
    return 200, {"code": 200, "data": {"successFlag": 1, "response": {"resultImageUrl": url}}}


def flux_generating():
    return 200, {"code": 200, "data": {"successFlag": 0}}


@pytest.mark.asyncio
async def test_poll_success_finalizes_job(seed, provider, make_reconciler, t0):
    job = await seed.job(created_at=t0 - timedelta(seconds=20))
    provider.status[job.task_id] = flux_success("https://x/y.png")

    summary = await make_reconciler().run()

    assert summary.checked == 1
    assert summary.success == 1
    assert summary.results == [{"id": str(job.id), "status": "success", "result_url": "https://x/y.png"}]
    stored = await seed.get_job(job.id)
    assert stored.status == JobStatus.SUCCESS
    assert stored.result_url == "https://x/y.png"
    assert stored.tokens_used == 2
    assert stored.processing_time_ms == 20_000


@pytest.mark.asyncio
async def test_poll_sends_task_id_and_api_key(seed, provider, make_reconciler):
    job = await seed.job()
    provider.status[job.task_id] = flux_generating()

    await make_reconciler().run()

    [poll] = provider.polls
    assert poll.url.path == "/api/v1/flux/kontext/record-info"
    assert poll.url.params["taskId"] == job.task_id
    assert poll.headers["Authorization"] == "Bearer test-key"


@pytest.mark.asyncio
async def test_poll_failure_result(seed, provider, make_reconciler):
    job = await seed.job(status=JobStatus.PROCESSING)
    provider.status[job.task_id] = (
        200,
        {"code": 200, "data": {"successFlag": 2, "errorMessage": "Image rejected"}},
    )

    summary = await make_reconciler().run()

    assert summary.failed == 1
    stored = await seed.get_job(job.id)
    assert stored.status == JobStatus.FAILED
    assert stored.error_message == "Image rejected"


@pytest.mark.asyncio
async def test_still_processing_marks_submitted_job_processing(seed, provider, make_reconciler):
    job = await seed.job()
    provider.status[job.task_id] = flux_generating()

    summary = await make_reconciler().run()

    assert summary.still_processing == 1
    assert (await seed.get_job(job.id)).status == JobStatus.PROCESSING


@pytest.mark.asyncio
async def test_transport_error_leaves_job_in_flight(seed, provider, make_reconciler):
    job = await seed.job()
    provider.status[job.task_id] = (503, {"message": "unavailable"})

    summary = await make_reconciler().run()

    assert summary.poll_failed == 1
    assert summary.results[0]["error"] == "API error: 503"
    assert (await seed.get_job(job.id)).status == JobStatus.SUBMITTED


@pytest.mark.asyncio
async def test_timeout_wins_over_provider_processing(seed, provider, make_reconciler, t0):
    """Job created at T with a 600s budget, reconciled at T+601s, provider still busy."""
    job = await seed.job(created_at=t0, status=JobStatus.PROCESSING)
    provider.status[job.task_id] = flux_generating()

    summary = await make_reconciler(now=t0 + timedelta(seconds=601)).run()

    assert summary.timeout == 1
    assert summary.still_processing == 0
    assert provider.polls == []
    stored = await seed.get_job(job.id)
    assert stored.status == JobStatus.TIMEOUT
    assert stored.error_message == "Job timed out after 601 seconds"


@pytest.mark.asyncio
async def test_timeout_wins_over_late_success(seed, provider, make_reconciler, t0):
    job = await seed.job(created_at=t0)
    provider.status[job.task_id] = flux_success("https://x/late.png")

    await make_reconciler(now=t0 + timedelta(seconds=700)).run()

    assert (await seed.get_job(job.id)).status == JobStatus.TIMEOUT


@pytest.mark.asyncio
async def test_job_at_exact_budget_is_still_polled(seed, provider, make_reconciler, t0):
    job = await seed.job(created_at=t0)
    provider.status[job.task_id] = flux_generating()

    summary = await make_reconciler(now=t0 + timedelta(seconds=600)).run()

    assert summary.timeout == 0
    assert summary.still_processing == 1


@pytest.mark.asyncio
async def test_unknown_model_is_left_untouched(seed, provider, make_reconciler):
    job = await seed.job(ai_model="retired-model")

    summary = await make_reconciler().run()

    assert summary.unknown_model == 1
    assert provider.requests == []
    assert (await seed.get_job(job.id)).status == JobStatus.SUBMITTED


@pytest.mark.asyncio
async def test_rerun_after_success_is_a_noop(seed, provider, make_reconciler):
    project = await seed.project()
    item = await seed.queue_item(project)
    job = await seed.queue_job(item)
    provider.status[job.task_id] = flux_success("https://x/y.png")
    reconciler = make_reconciler()

    first = await reconciler.run()
    second = await reconciler.run()

    assert first.success == 1
    assert second.checked == 0
    assert len(provider.polls) == 1
    assert len(await seed.history(project.id)) == 1
    assert (await seed.get_project(project.id)).processed_images == 1


@pytest.mark.asyncio
async def test_retry_http_error_fails_job_without_consuming_attempt(
    seed, provider, make_reconciler, t0
):
    """attempt_count=2, max_attempts=3, due at T-1s, resubmission answers HTTP 500."""
    job = await seed.job(
        status=JobStatus.PENDING,
        task_id="task-old",
        attempt_count=2,
        max_attempts=3,
        next_retry_at=t0 - timedelta(seconds=1),
    )
    provider.submissions.append((500, {"message": "internal error"}))

    summary = await make_reconciler().run()

    assert summary.retries_failed == 1
    assert summary.to_dict()["retriesFailed"] == 1
    stored = await seed.get_job(job.id)
    assert stored.status == JobStatus.FAILED
    assert "500" in stored.error_message
    assert stored.error_code == "500"
    assert stored.attempt_count == 2


@pytest.mark.asyncio
async def test_retry_resubmits_from_stored_fields(seed, provider, make_reconciler, t0):
    job = await seed.job(
        status=JobStatus.PENDING,
        task_id="task-old",
        attempt_count=1,
        next_retry_at=t0 - timedelta(seconds=5),
        settings={"aspect_ratio": "4:5"},
    )
    provider.submissions.append((200, {"code": 200, "data": {"taskId": "task-new"}}))

    summary = await make_reconciler().run()

    assert summary.retries_processed == 1
    stored = await seed.get_job(job.id)
    assert stored.status == JobStatus.SUBMITTED
    assert stored.task_id == "task-new"
    assert stored.attempt_count == 2
    assert stored.next_retry_at is None
    assert stored.sent_prompt == job.prompt

    [submit] = provider.submits
    assert submit.url.path == "/api/v1/flux/kontext/generate"
    body = json.loads(submit.content)
    assert body["prompt"] == job.prompt
    assert body["inputImage"] == job.input_url
    assert body["aspectRatio"] == "4:5"
    assert body["callbackUrl"] == f"{CALLBACK_BASE}?token={job.callback_token}"


@pytest.mark.asyncio
async def test_retry_api_rejection_records_provider_code(seed, provider, make_reconciler, t0):
    job = await seed.job(
        status=JobStatus.PENDING,
        task_id="task-old",
        attempt_count=1,
        next_retry_at=t0,
    )
    provider.submissions.append((200, {"code": 422, "msg": "Prompt violates policy"}))

    await make_reconciler().run()

    stored = await seed.get_job(job.id)
    assert stored.status == JobStatus.FAILED
    assert stored.error_message == "Prompt violates policy"
    assert stored.error_code == "422"


@pytest.mark.asyncio
async def test_retry_with_synchronous_result_completes(seed, provider, make_reconciler, t0):
    job = await seed.job(
        ai_model="nano-banana",
        status=JobStatus.PENDING,
        task_id="task-old",
        attempt_count=1,
        next_retry_at=t0,
    )
    provider.submissions.append(
        (200, {"code": 200, "data": {"taskId": "task-new", "output": {"images": ["https://m/1.png"]}}})
    )

    await make_reconciler().run()

    stored = await seed.get_job(job.id)
    assert stored.status == JobStatus.SUCCESS
    assert stored.result_url == "https://m/1.png"


@pytest.mark.asyncio
async def test_retry_not_yet_due_is_skipped(seed, provider, make_reconciler, t0):
    job = await seed.job(
        status=JobStatus.PENDING,
        task_id="task-old",
        attempt_count=1,
        next_retry_at=t0 + timedelta(minutes=5),
    )

    summary = await make_reconciler().run()

    assert summary.retries_processed == 0
    assert provider.requests == []
    assert (await seed.get_job(job.id)).status == JobStatus.PENDING


@pytest.mark.asyncio
async def test_budget_defers_remaining_jobs(seed, provider, make_reconciler, t0):
    for minute in range(3):
        job = await seed.job(created_at=t0 - timedelta(minutes=3 - minute))
        provider.status[job.task_id] = flux_generating()

    reconciler = make_reconciler(budget_seconds=25, monotonic=SteppingMonotonic(10))
    summary = await reconciler.run()

    assert summary.checked == 2
    assert summary.deferred == 1
    assert len(provider.polls) == 2


@pytest.mark.asyncio
async def test_poll_limit(seed, provider, make_reconciler, t0):
    for minute in range(4):
        job = await seed.job(created_at=t0 - timedelta(minutes=minute))
        provider.status[job.task_id] = flux_generating()

    summary = await make_reconciler(poll_limit=3).run()

    assert summary.checked == 3


class RecordingStore:
    def __init__(self):
        self.uploads = []

    async def upload(self, path, data, content_type):
        self.uploads.append(path)
        return f"https://storage.test/{path}"

    def get_public_url(self, path):
        return f"https://storage.test/{path}"


@pytest.mark.asyncio
async def test_unparseable_result_url_still_finalizes_success(seed, provider, make_reconciler):
    bad_url = "https://cdn.example.com:notaport/x.png"
    job = await seed.job()
    provider.status[job.task_id] = flux_success(bad_url)
    store = RecordingStore()
    materializer = ResultMaterializer(store, transport=httpx.MockTransport(provider.handler))

    summary = await make_reconciler(materializer=materializer).run()

    assert summary.success == 1
    assert summary.error == 0
    assert store.uploads == []
    stored = await seed.get_job(job.id)
    assert stored.status == JobStatus.SUCCESS
    assert stored.result_url == bad_url


@pytest.mark.asyncio
async def test_retry_with_malformed_submit_endpoint_fails_job(seed, provider, make_reconciler, t0):
    await seed.model_config(
        id="house-model",
        submit_endpoint="https://api.house.test:notaport/generate",
        status_endpoint="https://api.house.test/status",
        request_builder="market_single",
    )
    job = await seed.job(
        ai_model="house-model",
        status=JobStatus.PENDING,
        task_id="task-old",
        attempt_count=1,
        next_retry_at=t0 - timedelta(seconds=1),
    )

    summary = await make_reconciler().run()

    assert summary.retries_failed == 1
    assert summary.error == 0
    assert provider.requests == []
    stored = await seed.get_job(job.id)
    assert stored.status == JobStatus.FAILED
    assert stored.error_message.startswith("Network error")
    assert stored.attempt_count == 1


@pytest.mark.asyncio
async def test_malformed_status_endpoint_is_a_poll_failure(seed, provider, make_reconciler):
    await seed.model_config(
        id="house-model",
        submit_endpoint="https://api.house.test/generate",
        status_endpoint="https://api.house.test:notaport/status",
        request_builder="market_single",
    )
    job = await seed.job(ai_model="house-model")

    summary = await make_reconciler().run()

    assert summary.poll_failed == 1
    assert summary.error == 0
    assert (await seed.get_job(job.id)).status == JobStatus.SUBMITTED


@pytest.mark.asyncio
async def test_retry_records_prompt_as_sent(seed, provider, make_reconciler, t0):
    job = await seed.job(
        ai_model="ghibli",
        status=JobStatus.PENDING,
        task_id="task-old",
        attempt_count=1,
        next_retry_at=t0,
    )
    provider.submissions.append((200, {"code": 200, "data": {"taskId": "task-new"}}))

    await make_reconciler().run()

    stored = await seed.get_job(job.id)
    assert stored.status == JobStatus.SUBMITTED
    assert stored.prompt == job.prompt
    assert stored.sent_prompt == f"{GHIBLI_PREFIX}{job.prompt}"
    body = json.loads(provider.submits[0].content)
    assert body["input"]["prompt"] == stored.sent_prompt


@pytest.mark.asyncio
async def test_slow_job_is_cut_off_at_the_budget(seed, provider, make_reconciler, t0):
    slow = await seed.job(created_at=t0 - timedelta(minutes=2))
    waiting = await seed.job(created_at=t0 - timedelta(minutes=1))
    provider.stalled[slow.task_id] = 30
    provider.status[slow.task_id] = flux_generating()
    provider.status[waiting.task_id] = flux_generating()

    summary = await make_reconciler(budget_seconds=1).run()

    assert summary.checked == 1
    assert summary.deferred == 2
    assert summary.results == [{"id": str(slow.id), "status": "deferred"}]
    assert len(provider.polls) == 1
    assert (await seed.get_job(slow.id)).status == JobStatus.SUBMITTED
    assert (await seed.get_job(waiting.id)).status == JobStatus.SUBMITTED
