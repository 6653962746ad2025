import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from reelforge.models.base import Base, TimestampMixin, UUIDMixin


class GenerationJob(Base, UUIDMixin, TimestampMixin):
    """One segment of provider-side generation work."""

    __tablename__ = "generation_jobs"
    __table_args__ = (
        UniqueConstraint("owner_id", "provider_job_id", name="uq_generation_jobs_owner_provider_job"),
    )

    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("video_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    segment_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    prompt_suffix: Mapped[str | None] = mapped_column(Text, nullable=True)
    prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    size: Mapped[str] = mapped_column(String(20), nullable=False)

    # State: pending, queued, processing, completed, failed
    state: Mapped[str] = mapped_column(String(50), default="pending", index=True)

    # Canonical provider reference plus where it came from: submission, fallback
    provider_job_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    provider_job_source: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Output
    output_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    thumbnail_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timing
    submission_staged_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    request: Mapped["VideoRequest"] = relationship(  # noqa: F821
        "VideoRequest", back_populates="jobs", lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<GenerationJob {self.id} #{self.segment_index} ({self.state})>"
