"""Prediction orchestrator: submit, poll and cancel remote prediction jobs.

Status machine: starting -> processing -> succeeded | failed | canceled.
Snapshots are only ever produced by reads from the provider. Every remote
call goes through ``with_retry``: 4xx responses surface immediately, network
errors, timeouts and 5xx responses are retried before surfacing.

``wait_for_terminal`` gives up locally after ``max_wait`` seconds without
cancelling the remote job; callers decide whether to cancel or resume later.

Snapshots of in-flight jobs are dropped once the job turns terminal. Only
the most recent ``max_finished`` terminal snapshots are kept, so ``cancel``
can still skip jobs that already finished.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from typing import TypeVar

from mediaforge.schemas.generation import PredictionJob, ProviderInput
from mediaforge.services.error_handling import GenerationTimeoutError
from mediaforge.services.providers.base import GenerationProvider
from mediaforge.services.retry_policy import RetryConfig, SleepFn, with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PredictionOrchestrator:
    """Tracks prediction jobs created through one provider."""

    def __init__(
        self,
        provider: GenerationProvider,
        retry_config: RetryConfig | None = None,
        *,
        poll_interval: float = 2.0,
        max_wait: float = 300.0,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        max_finished: int = 256,
    ) -> None:
        self._provider = provider
        self._retry = retry_config
        self._poll_interval = poll_interval
        self._max_wait = max_wait
        self._sleep = sleep
        self._clock = clock
        self._max_finished = max_finished
        self._active: dict[str, PredictionJob] = {}
        self._finished: OrderedDict[str, PredictionJob] = OrderedDict()

    @property
    def provider(self) -> GenerationProvider:
        return self._provider

    @property
    def active_jobs(self) -> int:
        """Number of non-terminal jobs currently tracked."""
        return len(self._active)

    def last_snapshot(self, job_id: str) -> PredictionJob | None:
        return self._active.get(job_id) or self._finished.get(job_id)

    def forget(self, job_id: str) -> None:
        self._active.pop(job_id, None)
        self._finished.pop(job_id, None)

    def _record(self, job: PredictionJob) -> PredictionJob:
        previous = self.last_snapshot(job.id)
        if previous is None or previous.status is not job.status:
            logger.info("Prediction %s: %s", job.id, job.status.value)

        if not job.is_terminal:
            self._active[job.id] = job
            return job

        self._active.pop(job.id, None)
        self._finished[job.id] = job
        self._finished.move_to_end(job.id)
        while len(self._finished) > self._max_finished:
            self._finished.popitem(last=False)
        return job

    async def _call(self, operation: Callable[[], Awaitable[T]], name: str) -> T:
        return await with_retry(operation, name, self._retry, sleep=self._sleep)

    async def submit(self, provider_input: ProviderInput) -> PredictionJob:
        job = await self._call(
            lambda: self._provider.create_prediction(provider_input),
            "prediction-submit",
        )
        return self._record(job)

    async def poll(self, job_id: str) -> PredictionJob:
        job = await self._call(
            lambda: self._provider.get_prediction(job_id),
            "prediction-poll",
        )
        return self._record(job)

    async def cancel(self, job_id: str) -> None:
        """Ask the provider to stop ``job_id``. No-op when already terminal."""
        last = self.last_snapshot(job_id)
        if last is not None and last.is_terminal:
            logger.debug("Prediction %s already %s; not cancelling", job_id, last.status.value)
            return

        job = await self._call(
            lambda: self._provider.cancel_prediction(job_id),
            "prediction-cancel",
        )
        if job is not None:
            self._record(job)
        logger.info("Cancel requested for prediction %s", job_id)

    async def wait_for_terminal(
        self,
        job_id: str,
        poll_interval: float | None = None,
        max_wait: float | None = None,
    ) -> PredictionJob:
        """Poll until ``job_id`` is terminal.

        Raises:
            GenerationTimeoutError: ``max_wait`` seconds elapsed first. The
                remote job is left running.
            StorageError: a poll failed after retries.
        """
        interval = self._poll_interval if poll_interval is None else poll_interval
        limit = self._max_wait if max_wait is None else max_wait
        started = self._clock()

        while True:
            job = await self.poll(job_id)
            if job.is_terminal:
                return job

            elapsed = self._clock() - started
            if elapsed >= limit:
                logger.warning(
                    "Prediction %s still %s after %.1fs; leaving it running",
                    job_id, job.status.value, elapsed,
                )
                raise GenerationTimeoutError(job_id, elapsed, job.status.value, job)

            await self._sleep(min(interval, limit - elapsed))
