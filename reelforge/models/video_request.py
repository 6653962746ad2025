from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from reelforge.models.base import Base, TimestampMixin, UUIDMixin


class VideoRequest(Base, UUIDMixin, TimestampMixin):
    """Aggregate record tracking one or more generation segments."""

    __tablename__ = "video_requests"

    owner_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    size: Mapped[str] = mapped_column(String(20), nullable=False)
    target_duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False)

    # Status: pending, processing, completed, failed
    status: Mapped[str] = mapped_column(String(50), default="pending", index=True)
    # Stitch state: single, running, completed, failed
    stitch_state: Mapped[str] = mapped_column(String(50), default="single")
    progress: Mapped[int] = mapped_column(Integer, default=0)

    # Output
    output_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    thumbnail_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    jobs: Mapped[list["GenerationJob"]] = relationship(  # noqa: F821
        "GenerationJob",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="GenerationJob.segment_index",
        lazy="selectin",
    )

    @property
    def is_multi_segment(self) -> bool:
        return self.stitch_state != "single"

    def __repr__(self) -> str:
        return f"<VideoRequest {self.id} ({self.status}/{self.stitch_state})>"
