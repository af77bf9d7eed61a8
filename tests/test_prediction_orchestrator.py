"""Tests for the prediction orchestrator's submit/poll/cancel/wait loop."""

import httpx
import pytest

from conftest import FAST_RETRY, FakeClock, FakeProvider, SleepRecorder, make_job
from mediaforge.schemas.generation import PredictionStatus, ProviderInput
from mediaforge.services.error_handling import GenerationTimeoutError, StorageError, StorageErrorCode
from mediaforge.services.prediction_orchestrator import PredictionOrchestrator

INPUT = ProviderInput(model_id="fast-image", provider_ref="black-forest-labs/flux-schnell", input={"prompt": "x"})


def _orchestrator(provider, clock=None, **kwargs):
    clock = clock or FakeClock()
    sleep = SleepRecorder(clock)
    orch = PredictionOrchestrator(provider, FAST_RETRY, sleep=sleep, clock=clock, **kwargs)
    return orch, sleep


@pytest.mark.asyncio
async def test_submit_returns_starting_job():
    provider = FakeProvider()
    orch, _ = _orchestrator(provider)
    job = await orch.submit(INPUT)
    assert job.status is PredictionStatus.STARTING
    assert provider.submitted == [INPUT]
    assert orch.last_snapshot(job.id) == job


@pytest.mark.asyncio
async def test_wait_returns_as_soon_as_terminal():
    provider = FakeProvider(polls=[
        make_job(status="processing"),
        make_job(status="succeeded", output=["u1"]),
    ])
    orch, sleep = _orchestrator(provider, poll_interval=2.0, max_wait=60.0)

    job = await orch.wait_for_terminal("job-1")

    assert job.status is PredictionStatus.SUCCEEDED
    assert job.raw_output == ["u1"]
    assert provider.poll_calls == 2
    assert sleep.calls == [2.0]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["failed", "canceled"])
async def test_failed_and_canceled_are_terminal(status):
    provider = FakeProvider(polls=[make_job(status=status, error="nsfw")])
    orch, _ = _orchestrator(provider)
    job = await orch.wait_for_terminal("job-1")
    assert job.status.value == status
    assert job.is_terminal


@pytest.mark.asyncio
async def test_wait_times_out_without_cancelling():
    provider = FakeProvider(polls=[make_job(status="processing")])
    orch, sleep = _orchestrator(provider, poll_interval=2.0)

    with pytest.raises(GenerationTimeoutError) as excinfo:
        await orch.wait_for_terminal("job-1", max_wait=5.0)

    err = excinfo.value
    assert err.code is StorageErrorCode.TIMEOUT_ERROR
    assert err.last_status == "processing"
    assert err.last_job.status is PredictionStatus.PROCESSING
    assert err.waited_seconds >= 5.0
    # The last sleep is trimmed so the deadline is not overshot.
    assert sleep.calls == [2.0, 2.0, 1.0]
    assert provider.cancelled == []


@pytest.mark.asyncio
async def test_poll_retries_transient_errors():
    provider = FakeProvider(polls=[
        httpx.ConnectError("refused"),
        make_job(status="succeeded", output="https://x/a.png"),
    ])
    orch, _ = _orchestrator(provider)
    job = await orch.poll("job-1")
    assert job.status is PredictionStatus.SUCCEEDED
    assert provider.poll_calls == 2


@pytest.mark.asyncio
async def test_poll_surfaces_client_errors_without_retry():
    request = httpx.Request("GET", "https://api.replicate.com/v1/predictions/missing")
    not_found = httpx.HTTPStatusError("404", request=request, response=httpx.Response(404, request=request))
    provider = FakeProvider(polls=[not_found])
    orch, _ = _orchestrator(provider)

    with pytest.raises(StorageError) as excinfo:
        await orch.poll("missing")

    assert excinfo.value.code is StorageErrorCode.FILE_NOT_FOUND
    assert provider.poll_calls == 1


@pytest.mark.asyncio
async def test_cancel_calls_provider_for_running_job():
    provider = FakeProvider(polls=[make_job(status="processing")])
    orch, _ = _orchestrator(provider)
    await orch.poll("job-1")

    await orch.cancel("job-1")

    assert provider.cancelled == ["job-1"]
    assert orch.last_snapshot("job-1").status is PredictionStatus.CANCELED


@pytest.mark.asyncio
async def test_cancel_is_noop_for_terminal_job():
    provider = FakeProvider(polls=[make_job(status="succeeded", output=["u"])])
    orch, _ = _orchestrator(provider)
    await orch.poll("job-1")

    await orch.cancel("job-1")

    assert provider.cancelled == []


@pytest.mark.asyncio
async def test_forget_drops_snapshot():
    provider = FakeProvider(polls=[make_job(status="processing")])
    orch, _ = _orchestrator(provider)
    await orch.poll("job-1")
    orch.forget("job-1")
    assert orch.last_snapshot("job-1") is None


@pytest.mark.asyncio
async def test_terminal_jobs_leave_the_active_set():
    provider = FakeProvider(polls=[
        make_job(status="processing"),
        make_job(status="succeeded", output=["u"]),
    ])
    orch, _ = _orchestrator(provider)

    await orch.poll("job-1")
    assert orch.active_jobs == 1

    await orch.wait_for_terminal("job-1")
    assert orch.active_jobs == 0


@pytest.mark.asyncio
async def test_finished_history_is_bounded():
    provider = FakeProvider()
    orch, _ = _orchestrator(provider, max_finished=2)

    for n in range(1, 6):
        provider.polls = [make_job(f"job-{n}", status="succeeded", output=["u"])]
        await orch.poll(f"job-{n}")

    assert orch.active_jobs == 0
    assert orch.last_snapshot("job-1") is None
    assert orch.last_snapshot("job-3") is None
    assert orch.last_snapshot("job-4").status is PredictionStatus.SUCCEEDED
    assert orch.last_snapshot("job-5").status is PredictionStatus.SUCCEEDED

    await orch.cancel("job-5")
    assert provider.cancelled == []
