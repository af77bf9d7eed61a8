from __future__ import annotations
"""Pydantic v2 schemas for generation requests, prediction jobs and assets."""

import enum
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class PredictionStatus(str, enum.Enum):
    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    PredictionStatus.SUCCEEDED,
    PredictionStatus.FAILED,
    PredictionStatus.CANCELED,
})


class GenerationRequest(BaseModel):
    """Caller request: generic parameters plus optional image references."""

    model_id: str = Field(..., min_length=1)
    raw_params: dict[str, Any] = Field(default_factory=dict)
    image_inputs: list[str] = Field(default_factory=list)

    model_config = {"protected_namespaces": ()}


class ProviderInput(BaseModel):
    """Validated, provider-shaped payload for one model."""

    model_id: str
    provider_ref: str
    input: dict[str, Any]
    # Post-default generic params, kept for cost estimation and metadata.
    params: dict[str, Any] = Field(default_factory=dict)

    model_config = {"protected_namespaces": ()}


class PredictionJob(BaseModel):
    """Snapshot of a remote prediction. Only the orchestrator creates these."""

    id: str
    status: PredictionStatus
    raw_output: Any = None
    error: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None
    predict_time: float | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class AssetRef(BaseModel):
    original_url: str


class AssetRecord(BaseModel):
    """Result of persisting one asset. Immutable once produced."""

    original_url: str
    stored_url: str
    stored_id: str | None = None
    provider: Literal["primary", "fallback", "none"]
    provider_name: str | None = None
    persistent: bool
    mime_type: str
    width: int | None = None
    height: int | None = None
    duration_seconds: float | None = None
    file_size_bytes: int = 0

    model_config = {"frozen": True}


class UploadProgress(BaseModel):
    loaded: int
    total: int | None = None
    percentage: float | None = None


class GenerationResult(BaseModel):
    job: PredictionJob
    assets: list[AssetRecord]
    metadata: list[dict[str, Any]] = Field(default_factory=list)
    cost_estimate: float = 0.0
    generation_seconds: float = 0.0

    @property
    def all_persistent(self) -> bool:
        return all(a.persistent for a in self.assets)


class PredictionCreate(BaseModel):
    """Body for the submit-only endpoint."""

    model_id: str = Field(..., min_length=1)
    raw_params: dict[str, Any] = Field(default_factory=dict)
    image_inputs: list[str] = Field(default_factory=list)

    model_config = {"protected_namespaces": ()}


class GenerationCreate(PredictionCreate):
    """Body for the full-pipeline endpoint."""

    user_id: str | None = None
