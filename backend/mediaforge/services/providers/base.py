"""Generation provider contract.

A provider turns a validated ``ProviderInput`` into a remote prediction job
and reports its status. Job ids are opaque strings. Each method makes exactly
one remote call; retries belong to the caller.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from mediaforge.schemas.generation import PredictionJob, ProviderInput


@runtime_checkable
class GenerationProvider(Protocol):
    name: str

    async def create_prediction(self, provider_input: ProviderInput) -> PredictionJob: ...

    async def get_prediction(self, job_id: str) -> PredictionJob: ...

    async def cancel_prediction(self, job_id: str) -> PredictionJob | None: ...
