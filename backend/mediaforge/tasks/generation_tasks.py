from __future__ import annotations
"""Celery tasks for background generation runs.

Each task builds its own pipeline handle (HTTP client + DB engine), runs the
full pipeline and returns the JSON-serialised ``GenerationResult``. When the
local wait times out, the task retries later and resumes the same remote job
instead of submitting a new one.
"""

import logging
from typing import Any

import httpx
from celery import shared_task

from mediaforge.config import get_settings
from mediaforge.database import create_engine, create_session_factory, init_db
from mediaforge.schemas.generation import GenerationRequest
from mediaforge.services.error_handling import (
    GenerationTimeoutError,
    MediaForgeError,
    StorageError,
    get_user_message,
)
from mediaforge.services.generation_pipeline import build_pipeline
from mediaforge.tasks import run_async

logger = logging.getLogger(__name__)


async def _execute(request: GenerationRequest, user_id: str | None, job_id: str | None) -> dict[str, Any]:
    settings = get_settings()
    engine = create_engine(settings.DATABASE_URL)
    try:
        await init_db(engine)
        async with httpx.AsyncClient(timeout=settings.REPLICATE_TIMEOUT) as client:
            pipeline = build_pipeline(settings, client, session_factory=create_session_factory(engine))
            if job_id:
                result = await pipeline.resume(job_id, request, user_id)
            else:
                result = await pipeline.run(request, user_id)
        return result.model_dump(mode="json")
    finally:
        await engine.dispose()


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def run_generation(
    self,
    model_id: str,
    raw_params: dict[str, Any] | None = None,
    image_inputs: list[str] | None = None,
    user_id: str | None = None,
    job_id: str | None = None,
):
    """Run one generation end to end; resumes ``job_id`` when given."""
    request = GenerationRequest(
        model_id=model_id,
        raw_params=raw_params or {},
        image_inputs=image_inputs or [],
    )
    try:
        result = run_async(_execute(request, user_id, job_id))
        logger.info("Generation task done: model=%s job=%s", model_id, result["job"]["id"])
        return result

    except GenerationTimeoutError as exc:
        if self.request.retries >= self.max_retries:
            logger.error("Prediction %s still not terminal; giving up", exc.job_id)
            return {"status": "timeout", "job_id": exc.job_id, "code": exc.code.value}
        logger.warning("Prediction %s not terminal yet; will resume", exc.job_id)
        raise self.retry(
            exc=exc,
            kwargs={
                "model_id": model_id,
                "raw_params": raw_params,
                "image_inputs": image_inputs,
                "user_id": user_id,
                "job_id": exc.job_id,
            },
        )

    except StorageError as exc:
        logger.error("Generation task failed for %s: %s (%s)", model_id, exc.message, exc.code.value)
        return {"status": "error", "code": exc.code.value, "error": get_user_message(exc)}

    except MediaForgeError as exc:
        logger.error("Generation task failed for %s: %s", model_id, exc)
        return {
            "status": "error",
            "job_id": getattr(exc, "job_id", None),
            "error": exc.user_message,
        }
