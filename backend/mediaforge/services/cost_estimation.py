"""Generation cost estimates (USD) from a model's declared pricing."""

from __future__ import annotations

from typing import Any

from mediaforge.services.model_registry import ModelDescriptor

# Assumed clip length for video models without a duration parameter.
DEFAULT_VIDEO_SECONDS = 5.0


def _positive_number(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return default
    return float(value)


def estimate_cost(descriptor: ModelDescriptor, params: dict[str, Any] | None = None) -> float:
    """Estimated cost of one generation, rounded to 3 decimals.

    Per-asset pricing scales with the requested ``outputs``. Per-second
    pricing uses ``duration`` for video models (5s when absent) and the
    model's average run time otherwise.
    """
    params = params or {}
    pricing = descriptor.pricing

    if pricing.per_asset is not None:
        outputs = _positive_number(params.get("outputs"), 1.0)
        return round(pricing.per_asset * outputs, 3)

    if pricing.per_second is not None:
        if descriptor.is_video:
            seconds = _positive_number(params.get("duration"), DEFAULT_VIDEO_SECONDS)
        else:
            seconds = descriptor.average_time
        return round(pricing.per_second * seconds, 3)

    return 0.0
