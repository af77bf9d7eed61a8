"""Generation metadata records and the sink that stores them.

``build_metadata_record`` flattens an ``AssetRecord`` plus generation details
into one row. Video assets carry extra columns (duration, fps, format, file
size, generation type).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mediaforge.models.generated_asset import GeneratedAsset
from mediaforge.schemas.generation import AssetRecord

logger = logging.getLogger(__name__)

DEFAULT_FPS = 24


@dataclass(frozen=True)
class GenerationInfo:
    """Per-generation details shared by every asset it produced."""
    model_id: str
    prompt: str = ""
    user_id: str | None = None
    prediction_id: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    cost: float | None = None
    generation_seconds: float | None = None
    asset_count: int = 1
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def build_metadata_record(record: AssetRecord, generation: GenerationInfo) -> dict[str, Any]:
    cost_share = None
    if generation.cost is not None:
        cost_share = round(generation.cost / max(generation.asset_count, 1), 6)

    row: dict[str, Any] = {
        "user_id": generation.user_id,
        "prediction_id": generation.prediction_id,
        "original_prompt": generation.prompt,
        "file_path": record.stored_url,
        "original_url": record.original_url,
        "model": generation.model_id,
        "parameters": dict(generation.parameters),
        "width": record.width,
        "height": record.height,
        "cost": cost_share,
        "generation_time": generation.generation_seconds,
        "storage_provider": record.provider,
        "stored_id": record.stored_id,
        "is_persistent": record.persistent,
        "mime_type": record.mime_type,
        "created_at": generation.created_at.isoformat(),
    }

    if record.mime_type.startswith("video/"):
        fps = generation.parameters.get("fps")
        row.update(
            duration=record.duration_seconds,
            fps=fps if isinstance(fps, int) and not isinstance(fps, bool) else DEFAULT_FPS,
            format=record.mime_type.split("/", 1)[1],
            file_size=record.file_size_bytes,
            generation_type="image-to-video" if generation.parameters.get("image") else "text-to-video",
        )
    return row


class MetadataSink(Protocol):
    async def write(self, rows: list[dict[str, Any]]) -> None: ...


class SqlMetadataSink:
    """Writes metadata rows as ``GeneratedAsset`` records."""

    _columns = frozenset(c.name for c in GeneratedAsset.__table__.columns)

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    def _to_model(self, row: dict[str, Any]) -> GeneratedAsset:
        values = {k: v for k, v in row.items() if k in self._columns}
        created_at = values.get("created_at")
        if isinstance(created_at, str):
            values["created_at"] = datetime.fromisoformat(created_at)
        return GeneratedAsset(**values)

    async def write(self, rows: list[dict[str, Any]]) -> None:
        if not rows:
            return
        async with self._session_factory() as session:
            try:
                session.add_all([self._to_model(row) for row in rows])
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        logger.info("Stored %d generated asset row(s)", len(rows))
