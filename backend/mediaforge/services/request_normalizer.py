"""Request normalizer: generic request -> provider-shaped payload.

Merges caller parameters over the model's declared defaults, validates every
value against the model's ``ParameterSpec``s and the per-model override
table, then renames the accepted keys to the provider's field names.

Validation is all-or-nothing: every failed rule is collected and raised
together as a ``RequestValidationError``; no partial payload is returned.
Payload keys follow the descriptor's parameter order, so the same
``(descriptor, request)`` pair always yields the same payload.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from mediaforge.schemas.generation import GenerationRequest, ProviderInput
from mediaforge.services.error_handling import RequestValidationError, ValidationIssue
from mediaforge.services.model_overrides import ModelOverride, get_override
from mediaforge.services.model_registry import (
    IMAGE_PARAM,
    ModelDescriptor,
    ParameterSpec,
    ParamKind,
)

logger = logging.getLogger(__name__)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_value(spec: ParameterSpec, value: Any, override: ModelOverride) -> tuple[Any, str | None]:
    """Validate one value. Returns ``(coerced_value, error_message_or_None)``."""
    kind = spec.kind

    if kind is ParamKind.BOOLEAN:
        if not isinstance(value, bool):
            return value, "must be a boolean"
        return value, None

    if kind is ParamKind.STRING:
        if not isinstance(value, str):
            return value, "must be a string"
        if spec.options and value not in spec.options:
            return value, f"must be one of {', '.join(spec.options)}"
        return value, None

    if kind is ParamKind.ENUM:
        if not isinstance(value, str) or value not in (spec.options or ()):
            return value, f"must be one of {', '.join(spec.options or ())}"
        return value, None

    # number / integer
    if not _is_number(value) or (isinstance(value, float) and not math.isfinite(value)):
        return value, "must be a number"
    if kind is ParamKind.INTEGER:
        if isinstance(value, float):
            if not value.is_integer():
                return value, "must be an integer"
            value = int(value)

    lo, hi = override.range_overrides.get(spec.name, (spec.min, spec.max))
    if lo is not None and value < lo:
        return value, f"must be >= {lo:g}"
    if hi is not None and value > hi:
        return value, f"must be <= {hi:g}"
    return value, None


def merge_defaults(descriptor: ModelDescriptor, raw_params: dict[str, Any]) -> dict[str, Any]:
    """Declared defaults overlaid with caller params; ``None`` means unset."""
    merged: dict[str, Any] = {}
    for spec in descriptor.parameters:
        if spec.default is not None:
            merged[spec.name] = spec.default
    for key, value in raw_params.items():
        if value is None:
            continue
        merged[key] = value
    return merged


def normalize(descriptor: ModelDescriptor, request: GenerationRequest) -> ProviderInput:
    """Validate ``request`` against ``descriptor`` and build the provider payload.

    Raises:
        RequestValidationError: one or more rules failed; ``issues`` lists all of them.
    """
    override = get_override(descriptor.id)
    merged = merge_defaults(descriptor, request.raw_params)
    issues: list[ValidationIssue] = []
    accepted: dict[str, Any] = {}

    images = [ref for ref in request.image_inputs if ref]
    explicit_image = merged.pop(IMAGE_PARAM, None)
    if explicit_image is not None:
        if not isinstance(explicit_image, str) or not explicit_image:
            issues.append(ValidationIssue(IMAGE_PARAM, "must be a non-empty string"))
        elif explicit_image not in images:
            images.insert(0, explicit_image)

    for spec in descriptor.parameters:
        if spec.name == IMAGE_PARAM:
            if spec.required and not images:
                issues.append(ValidationIssue(spec.name, "is required"))
            continue
        if spec.name in override.forbidden:
            continue
        if spec.name not in merged:
            if spec.required:
                issues.append(ValidationIssue(spec.name, "is required"))
            continue
        value, error = _check_value(spec, merged[spec.name], override)
        if error:
            issues.append(ValidationIssue(spec.name, error))
        else:
            accepted[spec.name] = value

    declared = {spec.name for spec in descriptor.parameters}
    for key in sorted(merged):
        if key in override.forbidden:
            issues.append(ValidationIssue(key, f"is not supported by {descriptor.id}"))
        elif key not in declared:
            issues.append(ValidationIssue(key, "is not a recognized parameter"))

    if images:
        if not descriptor.supports_image_input:
            issues.append(ValidationIssue("image_inputs", f"{descriptor.id} does not accept image input"))
        elif len(images) > descriptor.max_image_inputs:
            issues.append(ValidationIssue(
                "image_inputs",
                f"at most {descriptor.max_image_inputs} image(s) allowed, got {len(images)}",
            ))

    if issues:
        logger.info("Rejected request for %s: %d issue(s)", descriptor.id, len(issues))
        raise RequestValidationError(descriptor.id, issues)

    payload: dict[str, Any] = {}
    for spec in descriptor.parameters:
        if spec.name in accepted:
            payload[override.provider_field(spec.name)] = accepted[spec.name]
    for field_name, ref in zip(override.image_fields, images):
        payload[field_name] = ref

    params = dict(accepted)
    if images:
        params[IMAGE_PARAM] = images[0]

    return ProviderInput(
        model_id=descriptor.id,
        provider_ref=descriptor.provider_ref,
        input=payload,
        params=params,
    )
