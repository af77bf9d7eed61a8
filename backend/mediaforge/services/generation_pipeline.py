"""Generation pipeline: request -> prediction -> asset URLs -> stored assets -> metadata rows.

One ``GenerationPipeline`` is built at process start with ``build_pipeline``
and passed to whoever needs it. Runs for different requests share nothing but
the handle's read-only tables, so any number may run concurrently.

Hard failures: unknown model, validation, submission, a job ending
failed/canceled, and zero assets produced. Storage failures degrade to
ephemeral records.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mediaforge.config import Settings, check_storage_config
from mediaforge.schemas.generation import (
    GenerationRequest,
    GenerationResult,
    PredictionJob,
    PredictionStatus,
    ProviderInput,
)
from mediaforge.services.asset_persistence import (
    AssetPersistenceService,
    PersistContext,
    ProgressCallback,
)
from mediaforge.services.cost_estimation import estimate_cost
from mediaforge.services.error_handling import (
    GenerationFailedError,
    NoAssetsProducedError,
)
from mediaforge.services.metadata import (
    GenerationInfo,
    MetadataSink,
    SqlMetadataSink,
    build_metadata_record,
)
from mediaforge.services.model_registry import (
    MODEL_REGISTRY,
    PROMPT_PARAM,
    ModelDescriptor,
    ModelRegistry,
)
from mediaforge.services.output_normalizer import extract_asset_urls
from mediaforge.services.prediction_orchestrator import PredictionOrchestrator
from mediaforge.services.providers.replicate import ReplicateProvider
from mediaforge.services.request_normalizer import normalize
from mediaforge.services.retry_policy import RetryConfig, SleepFn
from mediaforge.services.storage.base import StorageProvider
from mediaforge.services.storage.cloudinary import CloudinaryStorage
from mediaforge.services.storage.supabase import SupabaseStorage

logger = logging.getLogger(__name__)


class GenerationPipeline:
    """Explicit handle bundling the registry, orchestrator, persistence and sink."""

    def __init__(
        self,
        registry: ModelRegistry,
        orchestrator: PredictionOrchestrator,
        persistence: AssetPersistenceService,
        sink: MetadataSink | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.registry = registry
        self.orchestrator = orchestrator
        self.persistence = persistence
        self.sink = sink
        self._clock = clock

    # -- building blocks ---------------------------------------------------

    def prepare(self, request: GenerationRequest) -> tuple[ModelDescriptor, ProviderInput]:
        """Look up the model and normalize the request. No I/O."""
        descriptor = self.registry.require(request.model_id)
        return descriptor, normalize(descriptor, request)

    async def submit(self, request: GenerationRequest) -> PredictionJob:
        _, provider_input = self.prepare(request)
        return await self.orchestrator.submit(provider_input)

    # -- full runs ---------------------------------------------------------

    async def run(
        self,
        request: GenerationRequest,
        user_id: str | None = None,
        *,
        poll_interval: float | None = None,
        max_wait: float | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> GenerationResult:
        """Generate, persist and record assets for ``request``.

        Raises:
            ModelNotFoundError: unknown ``model_id``.
            RequestValidationError: parameters failed validation.
            GenerationTimeoutError: the job was still running after ``max_wait``;
                the remote job is left running and can be picked up with ``resume``.
            GenerationFailedError: the job ended failed or canceled.
            NoAssetsProducedError: the job succeeded without usable output.
            StorageError: submission or polling failed after retries.
        """
        descriptor, provider_input = self.prepare(request)
        started = self._clock()

        job = await self.orchestrator.submit(provider_input)
        logger.info("Generation started: model=%s job=%s user=%s", descriptor.id, job.id, user_id)
        if not job.is_terminal:
            job = await self.orchestrator.wait_for_terminal(job.id, poll_interval, max_wait)

        return await self._complete(job, descriptor, provider_input, user_id, started, on_progress)

    async def resume(
        self,
        job_id: str,
        request: GenerationRequest,
        user_id: str | None = None,
        *,
        poll_interval: float | None = None,
        max_wait: float | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> GenerationResult:
        """Re-attach to a job whose earlier wait timed out and finish it.

        ``request`` must be the request the job was submitted with; it supplies
        the prompt, parameters and cost estimate for the metadata rows.
        Generation time is measured from the job's own timestamps, not from
        the moment of resuming.
        """
        descriptor, provider_input = self.prepare(request)
        started = self._clock()
        job = await self.orchestrator.wait_for_terminal(job_id, poll_interval, max_wait)
        logger.info("Resumed prediction %s: %s", job_id, job.status.value)
        return await self._complete(job, descriptor, provider_input, user_id, started, on_progress)

    def _generation_seconds(self, job: PredictionJob, started: float) -> float:
        """Provider-reported time first, then the job's own timestamps, then local clock."""
        if job.predict_time is not None:
            return job.predict_time
        if job.created_at is not None and job.completed_at is not None:
            return max((job.completed_at - job.created_at).total_seconds(), 0.0)
        return self._clock() - started

    async def _complete(
        self,
        job: PredictionJob,
        descriptor: ModelDescriptor,
        provider_input: ProviderInput,
        user_id: str | None,
        started: float,
        on_progress: ProgressCallback | None,
    ) -> GenerationResult:
        try:
            if job.status is not PredictionStatus.SUCCEEDED:
                logger.warning("Prediction %s ended %s: %s", job.id, job.status.value, job.error)
                raise GenerationFailedError(job.id, job.status.value, job.error)

            assets = extract_asset_urls(job.raw_output)
            if not assets:
                raise NoAssetsProducedError(job.id)

            params = provider_input.params
            context = PersistContext(
                model_id=descriptor.id,
                prompt=str(params.get(PROMPT_PARAM, "")),
                user_id=user_id,
                duration=params.get("duration") if descriptor.is_video else None,
            )
            records = await self.persistence.persist_all(assets, context, on_progress)
        finally:
            self.orchestrator.forget(job.id)

        elapsed = self._generation_seconds(job, started)
        cost = estimate_cost(descriptor, params)
        info = GenerationInfo(
            model_id=descriptor.id,
            prompt=context.prompt,
            user_id=user_id,
            prediction_id=job.id,
            parameters=params,
            cost=cost,
            generation_seconds=round(elapsed, 3),
            asset_count=len(records),
        )
        rows = [build_metadata_record(record, info) for record in records]
        if self.sink is not None:
            await self.sink.write(rows)

        persistent = sum(1 for r in records if r.persistent)
        logger.info(
            "Generation %s complete: %d asset(s), %d persistent, cost=$%.3f",
            job.id, len(records), persistent, cost,
        )
        return GenerationResult(
            job=job,
            assets=records,
            metadata=rows,
            cost_estimate=cost,
            generation_seconds=round(elapsed, 3),
        )


def _build_store(
    name: str,
    factory: Callable[[], StorageProvider],
    configured: bool,
) -> StorageProvider | None:
    if not configured:
        logger.warning("%s storage not configured; assets will skip it", name)
        return None
    return factory()


def build_pipeline(
    settings: Settings,
    http_client: httpx.AsyncClient,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    registry: ModelRegistry = MODEL_REGISTRY,
    sleep: SleepFn = asyncio.sleep,
) -> GenerationPipeline:
    """Construct the pipeline handle from settings. Call once per process."""
    retry = RetryConfig.from_settings(settings)
    storage = check_storage_config(settings)

    primary = _build_store(
        "Cloudinary", lambda: CloudinaryStorage.from_settings(settings, http_client), storage["cloudinary"],
    )
    fallback = _build_store(
        "Supabase", lambda: SupabaseStorage.from_settings(settings, http_client), storage["supabase"],
    )

    orchestrator = PredictionOrchestrator(
        ReplicateProvider.from_settings(settings, http_client),
        retry,
        poll_interval=settings.PREDICTION_POLL_INTERVAL,
        max_wait=settings.PREDICTION_MAX_WAIT,
        sleep=sleep,
    )
    persistence = AssetPersistenceService(
        http_client,
        primary,
        fallback,
        settings.trusted_domains,
        retry_config=retry,
        max_download_size=settings.STORAGE_MAX_FILE_SIZE,
        download_timeout=settings.DOWNLOAD_TIMEOUT,
        sleep=sleep,
    )
    sink = SqlMetadataSink(session_factory) if session_factory is not None else None
    return GenerationPipeline(registry, orchestrator, persistence, sink)
