from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Float, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from reelforge.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class LoopRender(Base, UUIDMixin, TimestampMixin):
    """Render target for a clip-loop video."""

    __tablename__ = "loop_renders"

    owner_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Inputs
    style: Mapped[str] = mapped_column(String(100), nullable=False)
    aspect_ratio: Mapped[str] = mapped_column(String(10), default="9:16")
    target_duration_seconds: Mapped[float] = mapped_column(Float, nullable=False)
    audio_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    captions: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list)

    # Status: pending, rendering, completed, failed
    render_status: Mapped[str] = mapped_column(String(50), default="pending", index=True)

    # Plan
    clip_ids: Mapped[list[str]] = mapped_column(JSONType, default=list)
    timeline: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    # Output
    output_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_placeholder: Mapped[bool] = mapped_column(Boolean, default=False)
    render_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timing
    render_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    render_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<LoopRender {self.id} ({self.render_status})>"
