"""Clip catalog.

Sampling clips is the only random input of the loop pipeline, so it lives
behind ``ClipCatalog`` and everything downstream stays deterministic.
"""

import logging
import uuid
from abc import ABC, abstractmethod

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reelforge.models.clip import Clip
from reelforge.render.timeline_builder import ClipSpec

logger = logging.getLogger(__name__)


class ClipCatalog(ABC):
    @abstractmethod
    async def sample(self, style: str, aspect_ratio: str, count: int) -> list[ClipSpec]:
        """Return up to ``count`` distinct clips matching the tags."""

    @abstractmethod
    async def record_usage(self, usage: dict[str, int]) -> None:
        """Add per-clip usage counts after a successful render."""


class SqlClipCatalog(ClipCatalog):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def sample(self, style: str, aspect_ratio: str, count: int) -> list[ClipSpec]:
        result = await self.session.execute(
            select(Clip)
            .where(Clip.style == style, Clip.aspect_ratio == aspect_ratio)
            .order_by(func.random())
            .limit(count)
        )
        clips = result.scalars().all()
        logger.info(f"[CATALOG] Sampled {len(clips)}/{count} clip(s) for {style} {aspect_ratio}")
        return [to_clip_spec(clip) for clip in clips]

    async def record_usage(self, usage: dict[str, int]) -> None:
        for clip_id, times in usage.items():
            if times <= 0:
                continue
            await self.session.execute(
                update(Clip)
                .where(Clip.id == _as_uuid(clip_id))
                .values(usage_count=Clip.usage_count + times)
            )


def to_clip_spec(clip: Clip) -> ClipSpec:
    return ClipSpec(
        id=str(clip.id),
        source_url=clip.source_url,
        duration_seconds=float(clip.duration_seconds),
        energy_level=clip.energy_level or "medium",
    )


def _as_uuid(value: str | uuid.UUID) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
