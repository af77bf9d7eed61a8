from __future__ import annotations
"""GeneratedAsset ORM model: one row per stored (or ephemeral) generated asset."""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from mediaforge.database import Base


class GeneratedAsset(Base):
    __tablename__ = "generated_assets"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    prediction_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    original_prompt: Mapped[str] = mapped_column(Text, nullable=False, default="")
    file_path: Mapped[str] = mapped_column(String(2048), nullable=False)
    original_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    parameters: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    width: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    height: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    generation_time: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    storage_provider: Mapped[str] = mapped_column(String(20), nullable=False, default="none")
    stored_id: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    is_persistent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)

    # Video-only columns
    duration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    fps: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    format: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    file_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    generation_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
