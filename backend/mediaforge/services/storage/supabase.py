"""Supabase Storage provider (fallback persistent store).

Talks to the Storage REST API with the service key:
  POST   /storage/v1/object/{bucket}/{path}
  DELETE /storage/v1/object/{bucket}   body {"prefixes": [path]}
Public URLs: /storage/v1/object/public/{bucket}/{path}
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

import httpx

from mediaforge.config import Settings
from mediaforge.services.error_handling import (
    StorageError,
    StorageErrorCode,
    StorageProviderError,
)
from mediaforge.services.storage.base import StorageProvider, StoredObject, UploadMetadata

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = frozenset({
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/gif",
    "video/mp4",
    "video/webm",
    "video/quicktime",
})

_MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "video/quicktime": ".mov",
}


def file_extension(filename: str, mime_type: str) -> str:
    """Extension from the filename when it has a short one, else from the MIME type."""
    stem, dot, ext = filename.rpartition(".")
    if dot and stem and 0 < len(ext) <= 4:
        return f".{ext.lower()}"
    return _MIME_EXTENSIONS.get(mime_type, ".bin")


class SupabaseStorage(StorageProvider):
    name = "supabase"

    def __init__(
        self,
        url: str,
        service_key: str,
        http_client: httpx.AsyncClient,
        *,
        bucket: str = "generated-content",
        max_file_size: int = 50 * 1024 * 1024,
        allowed_mime_types: frozenset[str] = ALLOWED_MIME_TYPES,
        timeout: float = 180.0,
    ) -> None:
        if not (url and service_key):
            raise StorageError(
                StorageErrorCode.MISSING_ENVIRONMENT,
                "Supabase URL or service key is not configured",
                "supabase-init",
            )
        self._base_url = url.rstrip("/")
        self._service_key = service_key
        self._client = http_client
        self.bucket = bucket
        self.max_file_size = max_file_size
        self.allowed_mime_types = allowed_mime_types
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient) -> SupabaseStorage:
        return cls(
            settings.SUPABASE_URL,
            settings.SUPABASE_SERVICE_KEY,
            http_client,
            bucket=settings.SUPABASE_BUCKET,
            max_file_size=settings.STORAGE_MAX_FILE_SIZE,
            timeout=settings.UPLOAD_TIMEOUT,
        )

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._service_key}",
            "apikey": self._service_key,
        }

    def storage_path(self, metadata: UploadMetadata) -> str:
        stamp = int(metadata.generated_at.timestamp() * 1000)
        ext = file_extension(metadata.filename, metadata.mime_type)
        return f"{metadata.content_folder}/{stamp}-{uuid.uuid4().hex[:6]}{ext}"

    def public_url(self, path: str) -> str:
        return f"{self._base_url}/storage/v1/object/public/{self.bucket}/{path}"

    def _validate(self, data: bytes, metadata: UploadMetadata) -> None:
        if len(data) > self.max_file_size:
            raise StorageError(
                StorageErrorCode.FILE_TOO_LARGE,
                f"File size {len(data)} exceeds maximum {self.max_file_size} bytes",
                "supabase-upload",
            )
        if metadata.mime_type not in self.allowed_mime_types:
            raise StorageError(
                StorageErrorCode.INVALID_FILE_TYPE,
                f"MIME type {metadata.mime_type} not allowed",
                "supabase-upload",
            )

    @staticmethod
    def _raise_for_error(resp: httpx.Response) -> Any:
        try:
            body = resp.json()
        except ValueError:
            body = None
        if resp.status_code >= 400:
            message = ""
            if isinstance(body, dict):
                message = body.get("message") or body.get("error") or ""
            raise StorageProviderError(
                f"Supabase storage error: {message}" if message else f"Supabase storage HTTP {resp.status_code}",
                status_code=resp.status_code,
                payload=body,
            )
        return body

    async def upload(self, data: bytes, metadata: UploadMetadata) -> StoredObject:
        self._validate(data, metadata)
        path = self.storage_path(metadata)

        resp = await self._client.post(
            f"{self._base_url}/storage/v1/object/{self.bucket}/{path}",
            content=data,
            headers={
                **self._headers,
                "Content-Type": metadata.mime_type,
                "x-upsert": "false",
            },
            timeout=self._timeout,
        )
        self._raise_for_error(resp)

        logger.info("Supabase upload ok: %s/%s (%d bytes)", self.bucket, path, len(data))
        return StoredObject(
            url=self.public_url(path),
            id=path,
            width=metadata.width,
            height=metadata.height,
            duration=metadata.duration,
            size_bytes=len(data),
        )

    async def delete(self, object_id: str, mime_type: str | None = None) -> bool:
        resp = await self._client.request(
            "DELETE",
            f"{self._base_url}/storage/v1/object/{self.bucket}",
            json={"prefixes": [object_id]},
            headers=self._headers,
            timeout=self._timeout,
        )
        body = self._raise_for_error(resp)
        return bool(body)
