"""Cloudinary storage provider (primary persistent store).

Signed uploads through the REST upload API; no SDK. Assets are organised
into ``{folder}/images/YYYY/MM/DD`` and ``{folder}/videos/YYYY/MM/DD``.
"""

from __future__ import annotations

import hashlib
import logging
import time
import uuid
from typing import Any

import httpx

from mediaforge.config import Settings
from mediaforge.services.error_handling import (
    StorageError,
    StorageErrorCode,
    StorageProviderError,
)
from mediaforge.services.storage.base import (
    StorageProvider,
    StoredObject,
    UploadMetadata,
    slugify_prompt,
)

logger = logging.getLogger(__name__)

# Parameters Cloudinary excludes from the signature.
_UNSIGNED_PARAMS = frozenset({"file", "api_key", "resource_type", "cloud_name", "signature"})


def sign_params(params: dict[str, Any], api_secret: str) -> str:
    """SHA-1 signature over the sorted, non-empty parameters."""
    to_sign = "&".join(
        f"{key}={params[key]}"
        for key in sorted(params)
        if key not in _UNSIGNED_PARAMS and params[key] not in (None, "")
    )
    return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


def _escape_context(value: str) -> str:
    return value.replace("\\", "\\\\").replace("|", "\\|").replace("=", "\\=")


class CloudinaryStorage(StorageProvider):
    name = "cloudinary"

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        http_client: httpx.AsyncClient,
        *,
        folder: str = "mediaforge",
        upload_url: str = "https://api.cloudinary.com/v1_1",
        timeout: float = 180.0,
    ) -> None:
        if not (cloud_name and api_key and api_secret):
            raise StorageError(
                StorageErrorCode.MISSING_ENVIRONMENT,
                "Cloudinary credentials are not configured",
                "cloudinary-init",
            )
        self._cloud_name = cloud_name
        self._api_key = api_key
        self._api_secret = api_secret
        self._client = http_client
        self._folder = folder.strip("/")
        self._base_url = f"{upload_url.rstrip('/')}/{cloud_name}"
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient) -> CloudinaryStorage:
        return cls(
            settings.CLOUDINARY_CLOUD_NAME,
            settings.CLOUDINARY_API_KEY,
            settings.CLOUDINARY_API_SECRET,
            http_client,
            folder=settings.CLOUDINARY_FOLDER,
            upload_url=settings.CLOUDINARY_UPLOAD_URL,
            timeout=settings.UPLOAD_TIMEOUT,
        )

    @staticmethod
    def resource_type(mime_type: str | None) -> str:
        return "video" if mime_type and mime_type.startswith("video/") else "image"

    def _public_id(self, metadata: UploadMetadata) -> str:
        stamp = int(metadata.generated_at.timestamp() * 1000)
        slug = slugify_prompt(metadata.prompt)
        suffix = uuid.uuid4().hex[:6]
        return f"{stamp}-{slug}-{suffix}" if slug else f"{stamp}-{suffix}"

    def _signed(self, params: dict[str, Any]) -> dict[str, Any]:
        params = {k: v for k, v in params.items() if v not in (None, "")}
        params["timestamp"] = int(time.time())
        params["signature"] = sign_params(params, self._api_secret)
        params["api_key"] = self._api_key
        return params

    @staticmethod
    def _raise_for_error(resp: httpx.Response, operation: str) -> dict[str, Any]:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.status_code >= 400 or "error" in body:
            error = body.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise StorageProviderError(
                message or f"Cloudinary {operation} failed with HTTP {resp.status_code}",
                status_code=resp.status_code,
                payload=body,
            )
        return body

    async def upload(self, data: bytes, metadata: UploadMetadata) -> StoredObject:
        resource_type = self.resource_type(metadata.mime_type)
        context = "|".join(
            f"{key}={_escape_context(value)}"
            for key, value in (
                ("model", metadata.model_id),
                ("prompt", metadata.prompt[:200]),
                ("generated_at", metadata.generated_at.isoformat()),
            )
            if value
        )
        tags = ",".join(t for t in ("mediaforge", "generated", metadata.model_id) if t)
        form = self._signed({
            "public_id": self._public_id(metadata),
            "folder": f"{self._folder}/{metadata.content_folder}",
            "context": context,
            "tags": tags,
        })

        resp = await self._client.post(
            f"{self._base_url}/{resource_type}/upload",
            data=form,
            files={"file": (metadata.filename, data, metadata.mime_type)},
            timeout=self._timeout,
        )
        body = self._raise_for_error(resp, "upload")

        url = body.get("secure_url") or body.get("url")
        if not url or not body.get("public_id"):
            raise StorageProviderError("Cloudinary upload returned no URL", resp.status_code, body)

        logger.info("Cloudinary upload ok: %s (%s bytes)", body["public_id"], body.get("bytes"))
        return StoredObject(
            url=url,
            id=body["public_id"],
            width=body.get("width"),
            height=body.get("height"),
            duration=body.get("duration"),
            size_bytes=body.get("bytes"),
        )

    async def delete(self, object_id: str, mime_type: str | None = None) -> bool:
        resp = await self._client.post(
            f"{self._base_url}/{self.resource_type(mime_type)}/destroy",
            data=self._signed({"public_id": object_id}),
            timeout=self._timeout,
        )
        body = self._raise_for_error(resp, "destroy")
        deleted = body.get("result") == "ok"
        if not deleted:
            logger.warning("Cloudinary destroy for %s returned %s", object_id, body.get("result"))
        return deleted
