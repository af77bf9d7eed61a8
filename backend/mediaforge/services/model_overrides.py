"""Per-model request quirks, expressed as data.

Model families expose the same generic option under different field names
and with different legal ranges. Each ``ModelOverride`` declares, for one
model id:

* ``field_map``: generic parameter name -> provider field name
* ``range_overrides``: generic parameter name -> (min, max) replacing the
  registry range
* ``forbidden``: generic parameters the model does not accept at all
* ``image_fields``: provider fields that receive image inputs, in order

The request normalizer consults this table uniformly; adding a model never
requires touching normalizer logic.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True)
class ModelOverride:
    field_map: Mapping[str, str] = field(default_factory=dict)
    range_overrides: Mapping[str, tuple[float, float]] = field(default_factory=dict)
    forbidden: frozenset[str] = frozenset()
    image_fields: tuple[str, ...] = ("image",)

    def provider_field(self, name: str) -> str:
        return self.field_map.get(name, name)


NO_OVERRIDE = ModelOverride()

_FLUX_IMAGE_FIELDS = {"outputs": "num_outputs", "steps": "num_inference_steps"}

MODEL_OVERRIDES: Mapping[str, ModelOverride] = MappingProxyType({
    # Schnell is distilled: no guidance, 1-4 steps.
    "fast-image": ModelOverride(
        field_map=_FLUX_IMAGE_FIELDS,
        range_overrides={"steps": (1, 4)},
        forbidden=frozenset({"guidance"}),
    ),
    "flux-dev": ModelOverride(
        field_map={**_FLUX_IMAGE_FIELDS, "guidance": "guidance"},
    ),
    "flux-kontext-pro": ModelOverride(image_fields=("input_image",)),
    "flux-kontext-max": ModelOverride(image_fields=("input_image",)),
    "seedream-3": ModelOverride(
        field_map={"guidance": "guidance_scale"},
        forbidden=frozenset({"outputs", "steps"}),
    ),
    "seededit-3.0": ModelOverride(
        field_map={"guidance": "guidance_scale"},
    ),
    "stable-diffusion-3.5-large": ModelOverride(
        field_map={"guidance": "cfg", "steps": "steps"},
    ),
    "stable-diffusion-3.5-large-turbo": ModelOverride(
        field_map={"guidance": "cfg", "steps": "steps"},
        range_overrides={"steps": (1, 10)},
    ),
    "seedance-1-lite": ModelOverride(image_fields=("image", "last_frame_image")),
    "seedance-1-pro": ModelOverride(image_fields=("image", "last_frame_image")),
    "hailuo-02": ModelOverride(image_fields=("first_frame_image",)),
    "hailuo-video-01": ModelOverride(image_fields=("first_frame_image",)),
    "real-esrgan": ModelOverride(range_overrides={"scale": (2, 4)}),
})


def get_override(model_id: str) -> ModelOverride:
    return MODEL_OVERRIDES.get(model_id, NO_OVERRIDE)
