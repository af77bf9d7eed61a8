from __future__ import annotations
"""Persistent object storage contract shared by the primary and fallback stores."""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(frozen=True)
class UploadMetadata:
    """Describes one asset being uploaded."""
    filename: str
    mime_type: str
    original_url: str = ""
    model_id: str = ""
    prompt: str = ""
    user_id: str | None = None
    width: int | None = None
    height: int | None = None
    duration: float | None = None
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_video(self) -> bool:
        return self.mime_type.startswith("video/")

    @property
    def content_folder(self) -> str:
        """``videos/YYYY/MM/DD`` or ``images/YYYY/MM/DD``."""
        kind = "videos" if self.is_video else "images"
        return f"{kind}/{self.generated_at:%Y/%m/%d}"


@dataclass(frozen=True)
class StoredObject:
    """A successfully stored asset."""
    url: str
    id: str
    width: int | None = None
    height: int | None = None
    duration: float | None = None
    size_bytes: int | None = None


def slugify_prompt(prompt: str, limit: int = 30) -> str:
    cleaned = re.sub(r"[^a-z0-9\s]", "", prompt.lower())
    return re.sub(r"\s+", "-", cleaned.strip())[:limit]


class StorageProvider(ABC):
    """Upload/delete against one persistent store.

    Failures raise; nothing partial is ever visible to callers.
    """

    name: str = "unknown"

    @abstractmethod
    async def upload(self, data: bytes, metadata: UploadMetadata) -> StoredObject:
        """Store ``data`` and return its public URL and store-specific id."""

    @abstractmethod
    async def delete(self, object_id: str, mime_type: str | None = None) -> bool:
        """Remove a stored object. Returns False when the store reports nothing removed."""
