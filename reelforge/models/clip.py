from sqlalchemy import Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from reelforge.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class Clip(Base, UUIDMixin, TimestampMixin):
    """A pre-recorded B-roll clip in the catalog."""

    __tablename__ = "clips"

    source_url: Mapped[str] = mapped_column(Text, nullable=False)
    duration_seconds: Mapped[float] = mapped_column(Float, nullable=False)

    # Catalog tags
    style: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    aspect_ratio: Mapped[str] = mapped_column(String(10), default="9:16", index=True)
    energy_level: Mapped[str] = mapped_column(String(20), default="medium")  # low, medium, high
    aesthetic: Mapped[list[str]] = mapped_column(JSONType, default=list)

    usage_count: Mapped[int] = mapped_column(Integer, default=0)

    def __repr__(self) -> str:
        return f"<Clip {self.id} ({self.style}, {self.duration_seconds}s)>"
