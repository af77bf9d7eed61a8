"""Pydantic v2 schemas package."""

from mediaforge.schemas.generation import (
    AssetRecord,
    AssetRef,
    GenerationCreate,
    GenerationRequest,
    GenerationResult,
    PredictionCreate,
    PredictionJob,
    PredictionStatus,
    ProviderInput,
    UploadProgress,
)

__all__ = [
    "AssetRecord",
    "AssetRef",
    "GenerationCreate",
    "GenerationRequest",
    "GenerationResult",
    "PredictionCreate",
    "PredictionJob",
    "PredictionStatus",
    "ProviderInput",
    "UploadProgress",
]
