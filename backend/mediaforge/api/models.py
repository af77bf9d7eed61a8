"""Model catalogue API: supported models and their parameter schemas."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from mediaforge.api.deps import get_pipeline
from mediaforge.services.generation_pipeline import GenerationPipeline
from mediaforge.services.model_registry import ModelCategory, descriptor_to_dict

router = APIRouter()


@router.get("")
async def list_models(
    category: ModelCategory | None = None,
    pipeline: GenerationPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    """List supported models, optionally filtered by category."""
    models = pipeline.registry.list_models(category=category)
    return {
        "models": [descriptor_to_dict(m) for m in models],
        "categories": [c.value for c in ModelCategory],
        "total": len(models),
    }


@router.get("/{model_id}")
async def get_model(
    model_id: str,
    pipeline: GenerationPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    descriptor = pipeline.registry.describe(model_id)
    if descriptor is None:
        raise HTTPException(status_code=404, detail=f"Unknown model: {model_id}")
    return descriptor_to_dict(descriptor)
