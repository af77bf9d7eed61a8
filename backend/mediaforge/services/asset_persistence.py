"""Asset persistence: download generated assets and store them durably.

For each asset URL:
  1. reject non-http(s) URLs and hosts outside the trusted-domain allow-list
     (``VALIDATION_ERROR``, no network calls)
  2. download it into memory, reporting monotonically increasing progress
  3. infer the MIME type: extension table, then a HEAD request, then
     ``application/octet-stream``
  4. upload to the primary store (with retry), else the fallback store
     (with retry)
  5. if both stores fail, return an ephemeral record pointing at the
     provider's own URL (``provider="none"``, ``persistent=False``)

Validation failures raise. Anything after validation degrades to an
ephemeral record instead.
"""

from __future__ import annotations

import asyncio
import logging
import posixpath
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from urllib.parse import unquote, urlsplit

import httpx

from mediaforge.schemas.generation import AssetRecord, AssetRef, UploadProgress
from mediaforge.services.error_handling import (
    StorageError,
    StorageErrorCode,
    log_storage_error,
)
from mediaforge.services.retry_policy import RetryConfig, SleepFn, with_fallback, with_retry
from mediaforge.services.storage.base import StorageProvider, StoredObject, UploadMetadata

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"

EXTENSION_MIME: dict[str, str] = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "gif": "image/gif",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "mov": "video/quicktime",
}

ProgressCallback = Callable[[UploadProgress], None]


@dataclass(frozen=True)
class PersistContext:
    """Generation details attached to every stored asset."""
    model_id: str = ""
    prompt: str = ""
    user_id: str | None = None
    width: int | None = None
    height: int | None = None
    duration: float | None = None


def is_trusted_url(url: str, trusted_domains: Iterable[str]) -> bool:
    """http(s) URL whose host is, or is a subdomain of, a trusted domain."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    if parts.scheme not in ("http", "https"):
        return False
    host = (parts.hostname or "").lower()
    if not host:
        return False
    return any(host == d or host.endswith(f".{d}") for d in trusted_domains)


def filename_from_url(url: str, default: str = "generated-file") -> str:
    name = posixpath.basename(unquote(urlsplit(url).path))
    return name or default


def mime_from_extension(url: str) -> str | None:
    _, dot, ext = filename_from_url(url, "").rpartition(".")
    if not dot:
        return None
    return EXTENSION_MIME.get(ext.lower())


class AssetPersistenceService:
    """Primary-then-fallback persistence for generated assets."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        primary: StorageProvider | None,
        fallback: StorageProvider | None,
        trusted_domains: Iterable[str],
        *,
        retry_config: RetryConfig | None = None,
        max_download_size: int = 50 * 1024 * 1024,
        download_timeout: float = 120.0,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._client = http_client
        self.primary = primary
        self.fallback = fallback
        self.trusted_domains = tuple(d.lower() for d in trusted_domains)
        self._retry = retry_config
        self._max_download_size = max_download_size
        self._download_timeout = download_timeout
        self._sleep = sleep

    # -- validation --------------------------------------------------------

    def validate_source(self, url: str) -> None:
        if not is_trusted_url(url, self.trusted_domains):
            raise StorageError(
                StorageErrorCode.VALIDATION_ERROR,
                "URL is not an http(s) URL from a trusted domain",
                "asset-validate",
                details={"url": url},
            )

    # -- download ----------------------------------------------------------

    async def _download_once(self, url: str, on_progress: ProgressCallback | None) -> bytes:
        chunks: list[bytes] = []
        loaded = 0
        async with self._client.stream("GET", url, timeout=self._download_timeout) as resp:
            resp.raise_for_status()
            header = resp.headers.get("content-length")
            total = int(header) if header and header.isdigit() else None
            if total is not None and total > self._max_download_size:
                raise StorageError(
                    StorageErrorCode.FILE_TOO_LARGE,
                    f"Asset is {total} bytes; limit is {self._max_download_size}",
                    "asset-download",
                )

            async for chunk in resp.aiter_bytes():
                if not chunk:
                    continue
                loaded += len(chunk)
                if loaded > self._max_download_size:
                    raise StorageError(
                        StorageErrorCode.FILE_TOO_LARGE,
                        f"Asset exceeds {self._max_download_size} bytes",
                        "asset-download",
                    )
                chunks.append(chunk)
                if on_progress is not None:
                    percentage = round(loaded / total * 100, 1) if total else None
                    on_progress(UploadProgress(loaded=loaded, total=total, percentage=percentage))

        return b"".join(chunks)

    async def download(self, url: str, on_progress: ProgressCallback | None = None) -> bytes:
        """Fetch ``url`` with retry.

        Progress is shared across attempts: a retried attempt reports nothing
        until it passes the furthest byte count already reported.
        """
        reported = 0

        def report(progress: UploadProgress) -> None:
            nonlocal reported
            if progress.loaded > reported:
                reported = progress.loaded
                on_progress(progress)

        callback = report if on_progress is not None else None
        return await with_retry(
            lambda: self._download_once(url, callback),
            "asset-download",
            self._retry,
            sleep=self._sleep,
        )

    # -- MIME detection ----------------------------------------------------

    async def detect_mime_type(self, url: str) -> str:
        """Never raises; falls back to ``application/octet-stream``."""
        mime = mime_from_extension(url)
        if mime:
            return mime
        try:
            resp = await self._client.head(url, timeout=self._download_timeout)
            content_type = resp.headers.get("content-type") if resp.is_success else None
        except httpx.HTTPError as exc:
            logger.debug("HEAD %s failed: %s", url, exc)
            content_type = None
        if content_type:
            return content_type.split(";", 1)[0].strip().lower() or DEFAULT_MIME_TYPE
        return DEFAULT_MIME_TYPE

    # -- upload ------------------------------------------------------------

    async def _upload_to(
        self,
        store: StorageProvider | None,
        label: str,
        data: bytes,
        metadata: UploadMetadata,
    ) -> tuple[StorageProvider, StoredObject]:
        if store is None:
            raise StorageError(
                StorageErrorCode.INVALID_CONFIG,
                f"No {label} storage provider configured",
                f"{label}-upload",
            )
        stored = await with_retry(
            lambda: store.upload(data, metadata),
            f"{store.name}-upload",
            self._retry,
            sleep=self._sleep,
        )
        return store, stored

    def _ephemeral(self, url: str, mime_type: str, size: int, context: PersistContext) -> AssetRecord:
        return AssetRecord(
            original_url=url,
            stored_url=url,
            provider="none",
            persistent=False,
            mime_type=mime_type,
            width=context.width,
            height=context.height,
            duration_seconds=context.duration,
            file_size_bytes=size,
        )

    async def persist(
        self,
        asset: AssetRef,
        context: PersistContext | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> AssetRecord:
        """Store one asset durably, degrading to an ephemeral record.

        Raises:
            StorageError: ``VALIDATION_ERROR`` for untrusted or non-http(s) URLs.
        """
        ctx = context or PersistContext()
        url = asset.original_url
        self.validate_source(url)

        try:
            data = await self.download(url, on_progress)
        except StorageError as exc:
            log_storage_error(exc, {"url": url, "stage": "download"})
            return self._ephemeral(url, await self.detect_mime_type(url), 0, ctx)

        mime_type = await self.detect_mime_type(url)
        metadata = UploadMetadata(
            filename=filename_from_url(url),
            mime_type=mime_type,
            original_url=url,
            model_id=ctx.model_id,
            prompt=ctx.prompt,
            user_id=ctx.user_id,
            width=ctx.width,
            height=ctx.height,
            duration=ctx.duration,
        )

        try:
            store, stored = await with_fallback(
                lambda: self._upload_to(self.primary, "primary", data, metadata),
                lambda: self._upload_to(self.fallback, "fallback", data, metadata),
                "asset-upload",
            )
        except StorageError as exc:
            logger.warning("All storage providers failed for %s; keeping provider URL (%s)", url, exc.code.value)
            return self._ephemeral(url, mime_type, len(data), ctx)

        provider = "primary" if store is self.primary else "fallback"
        logger.info("Persisted %s via %s (%s)", url, store.name, provider)
        return AssetRecord(
            original_url=url,
            stored_url=stored.url,
            stored_id=stored.id,
            provider=provider,
            provider_name=store.name,
            persistent=True,
            mime_type=mime_type,
            width=stored.width if stored.width is not None else ctx.width,
            height=stored.height if stored.height is not None else ctx.height,
            duration_seconds=stored.duration if stored.duration is not None else ctx.duration,
            file_size_bytes=stored.size_bytes or len(data),
        )

    async def persist_all(
        self,
        assets: Iterable[AssetRef],
        context: PersistContext | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> list[AssetRecord]:
        """Persist sequentially, preserving order."""
        records = []
        for asset in assets:
            records.append(await self.persist(asset, context, on_progress))
        return records

    async def delete(self, record: AssetRecord) -> bool:
        """Remove a persisted asset from the store that holds it."""
        if not record.persistent or not record.stored_id:
            return False
        store = self.primary if record.provider == "primary" else self.fallback
        if store is None:
            raise StorageError(
                StorageErrorCode.INVALID_CONFIG,
                f"No {record.provider} storage provider configured",
                "asset-delete",
            )
        return await with_retry(
            lambda: store.delete(record.stored_id, record.mime_type),
            f"{store.name}-delete",
            self._retry,
            sleep=self._sleep,
        )
