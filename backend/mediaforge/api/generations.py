"""Generation API: full pipeline runs and raw prediction control."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from mediaforge.api.deps import get_pipeline, raise_http_error
from mediaforge.schemas.generation import (
    GenerationCreate,
    GenerationRequest,
    GenerationResult,
    PredictionCreate,
    PredictionJob,
)
from mediaforge.services.error_handling import MediaForgeError
from mediaforge.services.generation_pipeline import GenerationPipeline

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/generations", response_model=GenerationResult)
async def create_generation(
    body: GenerationCreate,
    pipeline: GenerationPipeline = Depends(get_pipeline),
) -> GenerationResult:
    """Run the whole pipeline and return the stored assets."""
    request = GenerationRequest(
        model_id=body.model_id,
        raw_params=body.raw_params,
        image_inputs=body.image_inputs,
    )
    try:
        return await pipeline.run(request, user_id=body.user_id)
    except MediaForgeError as exc:
        raise_http_error(exc)


@router.post("/predictions", response_model=PredictionJob, status_code=201)
async def create_prediction(
    body: PredictionCreate,
    pipeline: GenerationPipeline = Depends(get_pipeline),
) -> PredictionJob:
    """Validate and submit only; the caller polls for the result."""
    request = GenerationRequest(**body.model_dump())
    try:
        return await pipeline.submit(request)
    except MediaForgeError as exc:
        raise_http_error(exc)


@router.get("/predictions/{job_id}", response_model=PredictionJob)
async def get_prediction(
    job_id: str,
    pipeline: GenerationPipeline = Depends(get_pipeline),
) -> PredictionJob:
    try:
        return await pipeline.orchestrator.poll(job_id)
    except MediaForgeError as exc:
        raise_http_error(exc)


@router.post("/predictions/{job_id}/cancel", status_code=202)
async def cancel_prediction(
    job_id: str,
    pipeline: GenerationPipeline = Depends(get_pipeline),
) -> dict[str, str]:
    """Best-effort cancel; a no-op for jobs already known to be terminal."""
    try:
        await pipeline.orchestrator.cancel(job_id)
    except MediaForgeError as exc:
        raise_http_error(exc)
    logger.info("Cancel accepted for prediction %s", job_id)
    return {"id": job_id, "status": "cancel_requested"}
