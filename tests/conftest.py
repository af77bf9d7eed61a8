"""Pytest configuration and shared fakes.

Puts ``backend/`` on ``sys.path`` so tests can import the ``mediaforge``
package regardless of how pytest is invoked, and provides in-memory fakes
for the generation provider and the storage backends.
"""
import os
import sys

import httpx
import pytest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "backend"))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from mediaforge.schemas.generation import PredictionJob, PredictionStatus  # noqa: E402
from mediaforge.services.error_handling import StorageProviderError  # noqa: E402
from mediaforge.services.retry_policy import RetryConfig  # noqa: E402
from mediaforge.services.storage.base import StorageProvider, StoredObject  # noqa: E402

TRUSTED = ("replicate.delivery",)
FAST_RETRY = RetryConfig(max_attempts=3, base_delay_ms=1, max_delay_ms=5, backoff_multiplier=2.0)


class SleepRecorder:
    """Async stand-in for ``asyncio.sleep`` that records requested delays."""

    def __init__(self, clock=None):
        self.calls = []
        self._clock = clock

    async def __call__(self, seconds):
        self.calls.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds)


class FakeClock:
    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_job(job_id="job-1", status="starting", output=None, error=None, predict_time=None):
    return PredictionJob(
        id=job_id,
        status=PredictionStatus(status),
        raw_output=output,
        error=error,
        predict_time=predict_time,
    )


class FakeProvider:
    """Generation provider that replays scripted poll snapshots."""

    name = "fake"

    def __init__(self, polls=(), submit_status="starting", job_id="job-1"):
        self.job_id = job_id
        self.submit_status = submit_status
        self.polls = list(polls)
        self.submitted = []
        self.poll_calls = 0
        self.cancelled = []

    async def create_prediction(self, provider_input):
        self.submitted.append(provider_input)
        return make_job(self.job_id, self.submit_status)

    async def get_prediction(self, job_id):
        self.poll_calls += 1
        item = self.polls.pop(0) if len(self.polls) > 1 else self.polls[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def cancel_prediction(self, job_id):
        self.cancelled.append(job_id)
        return make_job(job_id, "canceled")


class FakeStore(StorageProvider):
    """Storage backend that fails ``failures`` times before succeeding."""

    def __init__(self, name, failures=0, error=None):
        self.name = name
        self.failures = failures
        self.error = error or StorageProviderError("Internal server error", status_code=500)
        self.uploads = []
        self.deleted = []
        self.attempts = 0

    async def upload(self, data, metadata):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise self.error
        self.uploads.append((data, metadata))
        index = len(self.uploads)
        return StoredObject(
            url=f"https://{self.name}.example/{index}/{metadata.filename}",
            id=f"{self.name}-{index}",
            width=1024,
            height=768,
            size_bytes=len(data),
        )

    async def delete(self, object_id, mime_type=None):
        self.deleted.append((object_id, mime_type))
        return True


def download_transport(payloads, calls=None, head_type=None):
    """MockTransport serving ``payloads`` (url -> bytes) for GET, and HEAD."""

    def handler(request):
        if calls is not None:
            calls.append((request.method, str(request.url)))
        url = str(request.url)
        if request.method == "HEAD":
            headers = {"content-type": head_type} if head_type else {}
            return httpx.Response(200, headers=headers)
        if url in payloads:
            body = payloads[url]
            return httpx.Response(200, content=body, headers={"content-length": str(len(body))})
        return httpx.Response(404)

    return httpx.MockTransport(handler)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()
