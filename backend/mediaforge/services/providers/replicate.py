"""Replicate generation provider.

Uses the HTTP predictions API directly:
  POST /models/{owner}/{name}/predictions   (latest version of a model)
  POST /predictions                          (pinned "owner/name:version" refs)
  GET  /predictions/{id}
  POST /predictions/{id}/cancel

HTTP errors are raised as ``httpx.HTTPStatusError`` and left for the caller's
retry/classification layer.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from mediaforge.config import Settings
from mediaforge.schemas.generation import PredictionJob, PredictionStatus, ProviderInput
from mediaforge.services.error_handling import (
    ProviderProtocolError,
    StorageError,
    StorageErrorCode,
)

logger = logging.getLogger(__name__)

_STATUS_VALUES = {s.value for s in PredictionStatus}


def split_provider_ref(provider_ref: str) -> tuple[str, str, str | None]:
    """Split ``owner/name[:version]`` into its parts."""
    ref, _, version = provider_ref.partition(":")
    owner, _, name = ref.partition("/")
    if not owner or not name:
        raise ValueError(f"Invalid provider reference: {provider_ref!r}")
    return owner, name, version or None


def parse_prediction(data: Any) -> PredictionJob:
    """Turn a Replicate prediction payload into a ``PredictionJob``."""
    if not isinstance(data, dict) or not data.get("id"):
        raise ProviderProtocolError(f"Prediction payload without id: {data!r:.200}")

    status = data.get("status")
    if status not in _STATUS_VALUES:
        raise ProviderProtocolError(f"Unknown prediction status {status!r} for {data['id']}")

    error = data.get("error")
    metrics = data.get("metrics") or {}
    return PredictionJob(
        id=str(data["id"]),
        status=PredictionStatus(status),
        raw_output=data.get("output"),
        error=str(error) if error else None,
        created_at=data.get("created_at"),
        completed_at=data.get("completed_at"),
        predict_time=metrics.get("predict_time"),
    )


class ReplicateProvider:
    """Thin async client over the Replicate predictions API."""

    name = "replicate"

    def __init__(
        self,
        api_token: str,
        http_client: httpx.AsyncClient,
        *,
        base_url: str = "https://api.replicate.com/v1",
        webhook_url: str = "",
        timeout: float = 60.0,
    ) -> None:
        if not api_token:
            raise StorageError(
                StorageErrorCode.MISSING_ENVIRONMENT,
                "REPLICATE_API_TOKEN is not set",
                "provider-init",
            )
        self._client = http_client
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._headers = {
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
        }
        # Replicate only delivers webhooks to https endpoints.
        self._webhook_url = webhook_url if webhook_url.startswith("https://") else ""
        if webhook_url and not self._webhook_url:
            logger.warning("Ignoring non-https webhook URL: %s", webhook_url)

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient) -> ReplicateProvider:
        return cls(
            settings.REPLICATE_API_TOKEN,
            http_client,
            base_url=settings.REPLICATE_BASE_URL,
            webhook_url=settings.REPLICATE_WEBHOOK_URL,
            timeout=settings.REPLICATE_TIMEOUT,
        )

    def _build_create_request(self, provider_input: ProviderInput) -> tuple[str, dict[str, Any]]:
        owner, model_name, version = split_provider_ref(provider_input.provider_ref)
        body: dict[str, Any] = {"input": provider_input.input}
        if version:
            url = f"{self._base_url}/predictions"
            body["version"] = version
        else:
            url = f"{self._base_url}/models/{owner}/{model_name}/predictions"
        if self._webhook_url:
            body["webhook"] = self._webhook_url
            body["webhook_events_filter"] = ["completed"]
        return url, body

    async def create_prediction(self, provider_input: ProviderInput) -> PredictionJob:
        url, body = self._build_create_request(provider_input)
        resp = await self._client.post(url, json=body, headers=self._headers, timeout=self._timeout)
        resp.raise_for_status()
        job = parse_prediction(resp.json())
        logger.info(
            "Replicate prediction created: %s (model=%s, status=%s)",
            job.id, provider_input.provider_ref, job.status.value,
        )
        return job

    async def get_prediction(self, job_id: str) -> PredictionJob:
        resp = await self._client.get(
            f"{self._base_url}/predictions/{job_id}",
            headers=self._headers,
            timeout=self._timeout,
        )
        resp.raise_for_status()
        return parse_prediction(resp.json())

    async def cancel_prediction(self, job_id: str) -> PredictionJob | None:
        resp = await self._client.post(
            f"{self._base_url}/predictions/{job_id}/cancel",
            headers=self._headers,
            timeout=self._timeout,
        )
        resp.raise_for_status()
        if not resp.content:
            return None
        return parse_prediction(resp.json())
