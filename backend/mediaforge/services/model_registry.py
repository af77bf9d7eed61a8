"""Declarative generation model registry.

Defines every supported model's accepted parameters (type, range, enum
options, required flag, disclosure tier), its provider reference, category,
image-input capability and pricing in a single source of truth.

Parameter names here are the generic, provider-independent names callers
use (``outputs``, ``steps``, ``guidance`` ...). Translation to the fields a
given model expects lives in ``model_overrides``.

Usage:
    from mediaforge.services.model_registry import MODEL_REGISTRY
    descriptor = MODEL_REGISTRY.describe("fast-image")
    videos = MODEL_REGISTRY.list_models(category=ModelCategory.VIDEO_GENERATION)
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field, replace
from typing import Any

from mediaforge.services.error_handling import ModelNotFoundError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

class ParamKind(str, enum.Enum):
    NUMBER = "number"
    INTEGER = "integer"
    STRING = "string"
    BOOLEAN = "boolean"
    ENUM = "enum"


class Tier(str, enum.Enum):
    """UI disclosure tier. Metadata only; the pipeline never branches on it."""
    BASIC = "basic"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class ModelCategory(str, enum.Enum):
    IMAGE_GENERATION = "image-generation"
    IMAGE_EDITING = "image-editing"
    VIDEO_GENERATION = "video-generation"
    UPSCALING = "upscaling"


# Parameters filled from outside rawParams: the prompt and image references.
PROMPT_PARAM = "prompt"
IMAGE_PARAM = "image"
IMPLICIT_PARAMS = frozenset({PROMPT_PARAM, IMAGE_PARAM})


@dataclass(frozen=True)
class ParameterSpec:
    """One accepted parameter of a model."""
    name: str
    kind: ParamKind
    default: Any = None
    min: float | None = None
    max: float | None = None
    step: float | None = None
    options: tuple[str, ...] | None = None
    required: bool = False
    tier: Tier = Tier.BASIC
    description: str = ""


@dataclass(frozen=True)
class Pricing:
    """Exactly one of the two rates is normally set."""
    per_asset: float | None = None
    per_second: float | None = None


@dataclass(frozen=True)
class ModelDescriptor:
    """Capability descriptor for a single generation model."""
    id: str
    provider_ref: str
    category: ModelCategory
    name: str = ""
    supports_image_input: bool = False
    max_image_inputs: int = 0
    pricing: Pricing = field(default_factory=Pricing)
    average_time: float = 10.0  # seconds, used for per-second cost estimates
    parameters: tuple[ParameterSpec, ...] = ()

    def __post_init__(self) -> None:
        if self.max_image_inputs < 0:
            raise ValueError(f"{self.id}: max_image_inputs must be >= 0")
        if not self.supports_image_input and self.max_image_inputs != 0:
            raise ValueError(f"{self.id}: max_image_inputs must be 0 without image input support")
        names = [p.name for p in self.parameters]
        if len(names) != len(set(names)):
            raise ValueError(f"{self.id}: duplicate parameter names")

    def get_parameter(self, name: str) -> ParameterSpec | None:
        for spec in self.parameters:
            if spec.name == name:
                return spec
        return None

    def parameters_by_tier(self, tier: Tier) -> list[ParameterSpec]:
        return [p for p in self.parameters if p.tier is tier]

    @property
    def is_video(self) -> bool:
        return self.category is ModelCategory.VIDEO_GENERATION


# ---------------------------------------------------------------------------
# Registry class
# ---------------------------------------------------------------------------

class ModelRegistry:
    """In-memory registry of all supported generation models."""

    def __init__(self) -> None:
        self._models: dict[str, ModelDescriptor] = {}

    def register(self, descriptor: ModelDescriptor) -> None:
        if descriptor.id in self._models:
            raise ValueError(f"Model already registered: {descriptor.id}")
        self._models[descriptor.id] = descriptor

    def describe(self, model_id: str) -> ModelDescriptor | None:
        """Pure lookup; ``None`` when the id is unknown."""
        return self._models.get(model_id)

    def require(self, model_id: str) -> ModelDescriptor:
        descriptor = self._models.get(model_id)
        if descriptor is None:
            raise ModelNotFoundError(model_id)
        return descriptor

    def list_models(self, category: ModelCategory | None = None) -> list[ModelDescriptor]:
        if category:
            return [m for m in self._models.values() if m.category is category]
        return list(self._models.values())

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def __len__(self) -> int:
        return len(self._models)

    def to_dict_list(self) -> list[dict[str, Any]]:
        """Serialize all models for API response."""
        return [descriptor_to_dict(m) for m in self._models.values()]


def descriptor_to_dict(descriptor: ModelDescriptor) -> dict[str, Any]:
    return {
        "id": descriptor.id,
        "name": descriptor.name,
        "provider_ref": descriptor.provider_ref,
        "category": descriptor.category.value,
        "supports_image_input": descriptor.supports_image_input,
        "max_image_inputs": descriptor.max_image_inputs,
        "pricing": {
            "per_asset": descriptor.pricing.per_asset,
            "per_second": descriptor.pricing.per_second,
        },
        "parameters": {
            tier.value: [
                {
                    "name": p.name,
                    "kind": p.kind.value,
                    "default": p.default,
                    "min": p.min,
                    "max": p.max,
                    "step": p.step,
                    "options": list(p.options) if p.options else None,
                    "required": p.required,
                    "description": p.description,
                }
                for p in descriptor.parameters_by_tier(tier)
            ]
            for tier in Tier
        },
    }


# ---------------------------------------------------------------------------
# Shared parameter templates
# ---------------------------------------------------------------------------

def _prompt(required: bool = True) -> ParameterSpec:
    return ParameterSpec(
        PROMPT_PARAM, ParamKind.STRING, None, required=required,
        description="Text description of what to generate",
    )


def _image(required: bool = False) -> ParameterSpec:
    return ParameterSpec(
        IMAGE_PARAM, ParamKind.STRING, None, required=required,
        description="Input image URL; usually supplied through image inputs",
    )


def _aspect_ratio(options: tuple[str, ...], default: str = "1:1", tier: Tier = Tier.INTERMEDIATE) -> ParameterSpec:
    return ParameterSpec(
        "aspect_ratio", ParamKind.ENUM, default, options=options, tier=tier,
        description="Aspect ratio of the output",
    )


def _outputs(max_outputs: int = 4) -> ParameterSpec:
    return ParameterSpec(
        "outputs", ParamKind.INTEGER, 1, min=1, max=max_outputs, step=1,
        tier=Tier.INTERMEDIATE, description="Number of assets to produce",
    )


def _steps(default: int, max_steps: int = 50, tier: Tier = Tier.ADVANCED) -> ParameterSpec:
    return ParameterSpec(
        "steps", ParamKind.INTEGER, default, min=1, max=max_steps, step=1, tier=tier,
        description="Number of denoising steps",
    )


def _guidance(default: float, lo: float = 1.0, hi: float = 20.0, tier: Tier = Tier.INTERMEDIATE) -> ParameterSpec:
    return ParameterSpec(
        "guidance", ParamKind.NUMBER, default, min=lo, max=hi, step=0.1, tier=tier,
        description="How closely the output follows the prompt",
    )


def _seed() -> ParameterSpec:
    return ParameterSpec(
        "seed", ParamKind.INTEGER, None, min=0, max=2**32 - 1, tier=Tier.ADVANCED,
        description="Random seed. Leave blank to randomize",
    )


_IMAGE_RATIOS = ("1:1", "16:9", "9:16", "4:3", "3:4", "3:2", "2:3")
_VIDEO_RATIOS = ("16:9", "9:16", "1:1")


# ---------------------------------------------------------------------------
# Build the global registry
# ---------------------------------------------------------------------------

MODEL_REGISTRY = ModelRegistry()

# --- Image generation ---

MODEL_REGISTRY.register(ModelDescriptor(
    id="fast-image",
    name="FLUX.1 Schnell",
    provider_ref="black-forest-labs/flux-schnell",
    category=ModelCategory.IMAGE_GENERATION,
    pricing=Pricing(per_asset=0.003),
    average_time=2.0,
    parameters=(
        _prompt(),
        _aspect_ratio(_IMAGE_RATIOS),
        _outputs(),
        _steps(4, max_steps=50, tier=Tier.INTERMEDIATE),
        ParameterSpec("output_format", ParamKind.ENUM, "webp", options=("webp", "jpg", "png"), tier=Tier.ADVANCED),
        _seed(),
        ParameterSpec("disable_safety_checker", ParamKind.BOOLEAN, False, tier=Tier.ADVANCED),
        ParameterSpec("go_fast", ParamKind.BOOLEAN, True, tier=Tier.ADVANCED,
                      description="Run with a speed-optimized model"),
    ),
))

MODEL_REGISTRY.register(ModelDescriptor(
    id="flux-dev",
    name="FLUX.1 Dev",
    provider_ref="black-forest-labs/flux-dev",
    category=ModelCategory.IMAGE_GENERATION,
    pricing=Pricing(per_asset=0.025),
    average_time=15.0,
    parameters=(
        _prompt(),
        _aspect_ratio(_IMAGE_RATIOS),
        _outputs(),
        _steps(28),
        _guidance(3.0, lo=0.0, hi=10.0),
        ParameterSpec("output_format", ParamKind.ENUM, "webp", options=("webp", "jpg", "png"), tier=Tier.ADVANCED),
        _seed(),
    ),
))

MODEL_REGISTRY.register(ModelDescriptor(
    id="seedream-3",
    name="Seedream 3",
    provider_ref="bytedance/seedream-3",
    category=ModelCategory.IMAGE_GENERATION,
    pricing=Pricing(per_asset=0.03),
    average_time=3.0,
    parameters=(
        _prompt(),
        _aspect_ratio(("1:1", "16:9", "9:16", "4:3", "3:2"), tier=Tier.BASIC),
        ParameterSpec("size", ParamKind.ENUM, "regular", options=("small", "regular", "big"), tier=Tier.INTERMEDIATE),
        _guidance(2.5, lo=1.0, hi=10.0),
        _seed(),
    ),
))

MODEL_REGISTRY.register(ModelDescriptor(
    id="stable-diffusion-3.5-large",
    name="Stable Diffusion 3.5 Large",
    provider_ref="stability-ai/stable-diffusion-3.5-large",
    category=ModelCategory.IMAGE_GENERATION,
    pricing=Pricing(per_asset=0.065),
    average_time=12.0,
    parameters=(
        _prompt(),
        _aspect_ratio(("1:1", "16:9", "9:16", "4:3", "3:2"), tier=Tier.BASIC),
        _guidance(3.5, lo=1.0, hi=20.0),
        _steps(28),
        ParameterSpec("output_format", ParamKind.ENUM, "webp", options=("webp", "jpg", "png"), tier=Tier.ADVANCED),
        _seed(),
    ),
))

MODEL_REGISTRY.register(ModelDescriptor(
    id="stable-diffusion-3.5-large-turbo",
    name="Stable Diffusion 3.5 Large Turbo",
    provider_ref="stability-ai/stable-diffusion-3.5-large-turbo",
    category=ModelCategory.IMAGE_GENERATION,
    pricing=Pricing(per_asset=0.04),
    average_time=4.0,
    parameters=(
        _prompt(),
        _aspect_ratio(("1:1", "16:9", "9:16"), tier=Tier.BASIC),
        _guidance(1.0, lo=0.0, hi=10.0),
        _steps(4),
        _seed(),
    ),
))

# --- Image editing (image in, image out) ---

for _model_id, _name, _ref, _price, _avg in (
    ("flux-kontext-pro", "FLUX Kontext Pro", "black-forest-labs/flux-kontext-pro", 0.04, 8.0),
    ("flux-kontext-max", "FLUX Kontext Max", "black-forest-labs/flux-kontext-max", 0.08, 15.0),
):
    MODEL_REGISTRY.register(ModelDescriptor(
        id=_model_id,
        name=_name,
        provider_ref=_ref,
        category=ModelCategory.IMAGE_EDITING,
        supports_image_input=True,
        max_image_inputs=1,
        pricing=Pricing(per_asset=_price),
        average_time=_avg,
        parameters=(
            _prompt(),
            _image(),
            _aspect_ratio(("match_input_image",) + _IMAGE_RATIOS, default="match_input_image"),
            ParameterSpec("output_format", ParamKind.ENUM, "png", options=("jpg", "png"), tier=Tier.ADVANCED),
            ParameterSpec("safety_tolerance", ParamKind.INTEGER, 2, min=0, max=6, tier=Tier.ADVANCED),
            _seed(),
        ),
    ))

MODEL_REGISTRY.register(ModelDescriptor(
    id="seededit-3.0",
    name="SeedEdit 3.0",
    provider_ref="bytedance/seededit-3.0",
    category=ModelCategory.IMAGE_EDITING,
    supports_image_input=True,
    max_image_inputs=1,
    pricing=Pricing(per_asset=0.03),
    average_time=12.0,
    parameters=(
        _image(required=True),
        _prompt(),
        _guidance(5.5, lo=1.0, hi=10.0),
        _seed(),
    ),
))

# --- Video generation ---

for _model_id, _name, _ref, _rate, _avg, _resolutions, _default_res in (
    ("seedance-1-lite", "Seedance 1 Lite", "bytedance/seedance-1-lite", 0.036, 60.0, ("480p", "720p", "1080p"), "720p"),
    ("seedance-1-pro", "Seedance 1 Pro", "bytedance/seedance-1-pro", 0.15, 60.0, ("480p", "1080p"), "1080p"),
):
    MODEL_REGISTRY.register(ModelDescriptor(
        id=_model_id,
        name=_name,
        provider_ref=_ref,
        category=ModelCategory.VIDEO_GENERATION,
        supports_image_input=True,
        max_image_inputs=2,
        pricing=Pricing(per_second=_rate),
        average_time=_avg,
        parameters=(
            _prompt(),
            _image(),
            ParameterSpec("duration", ParamKind.INTEGER, 5, min=5, max=10, step=5,
                          description="Video duration in seconds"),
            ParameterSpec("resolution", ParamKind.ENUM, _default_res, options=_resolutions),
            _aspect_ratio(_VIDEO_RATIOS, default="16:9"),
            ParameterSpec("fps", ParamKind.INTEGER, 24, min=24, max=24, tier=Tier.ADVANCED),
            ParameterSpec("camera_fixed", ParamKind.BOOLEAN, False, tier=Tier.INTERMEDIATE),
            _seed(),
        ),
    ))

MODEL_REGISTRY.register(ModelDescriptor(
    id="hailuo-02",
    name="Hailuo 2",
    provider_ref="minimax/hailuo-02",
    category=ModelCategory.VIDEO_GENERATION,
    supports_image_input=True,
    max_image_inputs=1,
    pricing=Pricing(per_second=0.045),
    average_time=50.0,
    parameters=(
        _prompt(),
        _image(),
        ParameterSpec("duration", ParamKind.INTEGER, 6, min=6, max=10, step=4),
        ParameterSpec("resolution", ParamKind.ENUM, "1080p", options=("768p", "1080p")),
        ParameterSpec("prompt_optimizer", ParamKind.BOOLEAN, True, tier=Tier.ADVANCED),
    ),
))

MODEL_REGISTRY.register(ModelDescriptor(
    id="hailuo-video-01",
    name="Hailuo Video-01",
    provider_ref="minimax/video-01",
    category=ModelCategory.VIDEO_GENERATION,
    supports_image_input=True,
    max_image_inputs=1,
    pricing=Pricing(per_second=0.083),
    average_time=35.0,
    parameters=(
        _prompt(),
        _image(),
        ParameterSpec("prompt_optimizer", ParamKind.BOOLEAN, True, tier=Tier.ADVANCED),
    ),
))

# --- Upscaling ---

MODEL_REGISTRY.register(ModelDescriptor(
    id="real-esrgan",
    name="Real-ESRGAN",
    provider_ref="nightmareai/real-esrgan",
    category=ModelCategory.UPSCALING,
    supports_image_input=True,
    max_image_inputs=1,
    pricing=Pricing(per_asset=0.0023),
    average_time=11.0,
    parameters=(
        _image(required=True),
        ParameterSpec("scale", ParamKind.INTEGER, 4, min=2, max=10, tier=Tier.INTERMEDIATE,
                      description="Upscaling factor"),
        ParameterSpec("face_enhance", ParamKind.BOOLEAN, False, tier=Tier.ADVANCED),
    ),
))


logger.debug("Model registry initialized: %d models", len(MODEL_REGISTRY))


def with_parameters(descriptor: ModelDescriptor, *specs: ParameterSpec) -> ModelDescriptor:
    """Copy of ``descriptor`` with ``specs`` replacing same-named parameters."""
    by_name = {s.name: s for s in specs}
    merged = tuple(by_name.pop(p.name, p) for p in descriptor.parameters) + tuple(by_name.values())
    return replace(descriptor, parameters=merged)
