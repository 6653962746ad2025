"""Render invoker for clip-loop videos.

``render`` runs one loop render end to end: it takes the per-target guard,
samples the catalog, builds the timeline, stages media, encodes, uploads and
records the result. Only one render per target can hold the guard; a second
caller gets ``RenderConflictError`` and never starts an encode.
"""

import logging
import os
import random
import shutil
import tempfile
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from urllib.parse import urlparse

import httpx
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reelforge.config import Settings, get_settings
from reelforge.exceptions import (
    ReelforgeError,
    RenderConflictError,
    RenderError,
    RenderTargetNotFoundError,
    ResourceNotFoundError,
)
from reelforge.models.base import utcnow
from reelforge.models.loop_render import LoopRender
from reelforge.render.caption_renderer import render_caption_overlays
from reelforge.render.compositor import FFmpegCompositor, OutputSpec
from reelforge.render.timeline_builder import CaptionCue, Timeline, build_timeline
from reelforge.services.clip_catalog import ClipCatalog
from reelforge.services.storage_service import StorageService

logger = logging.getLogger(__name__)

PENDING = "pending"
RENDERING = "rendering"
COMPLETED = "completed"
FAILED = "failed"

Downloader = Callable[[str, str], Awaitable[str]]


@dataclass
class RenderOutcome:
    render_id: uuid.UUID
    status: str
    output_url: str | None
    is_placeholder: bool = False
    clip_ids: list[str] = field(default_factory=list)
    segment_count: int = 0
    error: str | None = None

    @classmethod
    def from_target(cls, target: LoopRender) -> "RenderOutcome":
        timeline = target.timeline or {}
        return cls(
            render_id=target.id,
            status=target.render_status,
            output_url=target.output_url,
            is_placeholder=bool(target.is_placeholder),
            clip_ids=list(target.clip_ids or []),
            segment_count=len(timeline.get("segments", [])),
            error=target.render_error,
        )


async def download_media(source: str, destination: str, timeout: float = 120.0) -> str:
    """Fetch ``source`` (http(s) URL or local path) into ``destination``."""
    scheme = urlparse(source).scheme
    if scheme in ("http", "https"):
        try:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
                async with client.stream("GET", source) as response:
                    response.raise_for_status()
                    with open(destination, "wb") as f:
                        async for chunk in response.aiter_bytes():
                            f.write(chunk)
        except httpx.HTTPError as e:
            raise RenderError(f"Failed to download {source}: {e}") from e
        return destination

    local_path = source[len("file://"):] if scheme == "file" else source
    try:
        shutil.copy(local_path, destination)
    except OSError as e:
        raise RenderError(f"Failed to stage {source}: {e}") from e
    return destination


def _extension(source: str, default: str) -> str:
    ext = os.path.splitext(urlparse(source).path)[1]
    return ext if ext and len(ext) <= 5 else default


class RenderInvoker:
    def __init__(
        self,
        session: AsyncSession,
        catalog: ClipCatalog,
        storage: StorageService,
        *,
        rng: random.Random | None = None,
        settings: Settings | None = None,
        compositor_factory: Callable[[OutputSpec], FFmpegCompositor] | None = None,
        downloader: Downloader | None = None,
    ):
        self.session = session
        self.catalog = catalog
        self.storage = storage
        self.rng = rng or random.Random()
        self.settings = settings or get_settings()
        self.compositor_factory = compositor_factory or FFmpegCompositor
        self.downloader = downloader or self._default_download

    async def _default_download(self, source: str, destination: str) -> str:
        return await download_media(source, destination, self.settings.render_download_timeout_seconds)

    async def render(self, render_id: uuid.UUID, owner_id: str | None = None) -> RenderOutcome:
        target = await self._load(render_id, owner_id)
        if target.render_status == COMPLETED and target.output_url:
            return RenderOutcome.from_target(target)

        await self._acquire(target)
        logger.info(f"[RENDER] Acquired render guard for {render_id}")

        try:
            return await self._render_locked(target)
        except ReelforgeError as e:
            return await self._handle_failure(target, e)
        except Exception as e:
            logger.exception(f"[RENDER] Unexpected failure rendering {render_id}")
            await self._release_failed(render_id, f"Unexpected render failure: {e}")
            raise

    async def _load(self, render_id: uuid.UUID, owner_id: str | None) -> LoopRender:
        query = select(LoopRender).where(LoopRender.id == render_id)
        if owner_id is not None:
            query = query.where(LoopRender.owner_id == owner_id)
        result = await self.session.execute(query)
        target = result.scalar_one_or_none()
        if target is None:
            raise RenderTargetNotFoundError(str(render_id))
        return target

    async def _acquire(self, target: LoopRender) -> None:
        """Atomic check-and-set: only one caller moves the target to rendering."""
        result = await self.session.execute(
            update(LoopRender)
            .where(LoopRender.id == target.id, LoopRender.render_status != RENDERING)
            .values(render_status=RENDERING, render_started_at=utcnow(), render_error=None)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        if result.rowcount != 1:
            logger.warning(f"[RENDER] {target.id} is already rendering, refusing second render")
            raise RenderConflictError(str(target.id))
        await self.session.refresh(target)

    async def _render_locked(self, target: LoopRender) -> RenderOutcome:
        settings = self.settings
        count = self.rng.randint(settings.render_min_clips, settings.render_max_clips)
        clips = await self.catalog.sample(target.style, target.aspect_ratio, count)
        if not clips:
            raise ResourceNotFoundError(
                f"No clips available for style={target.style} aspect_ratio={target.aspect_ratio}",
                code="NO_CLIPS_AVAILABLE",
            )

        cues = [CaptionCue.from_dict(cue) for cue in target.captions or []]
        timeline = build_timeline(
            clips,
            target.target_duration_seconds,
            cues,
            fade_seconds=settings.render_fade_seconds,
            align_threshold=settings.render_align_threshold_seconds,
        )
        target.clip_ids = [clip.id for clip in clips]
        target.timeline = timeline.to_dict()
        await self.session.commit()
        logger.info(
            f"[RENDER] Timeline for {target.id}: {len(timeline.segments)} segment(s) "
            f"from {len(clips)} clip(s), {timeline.total_duration:.2f}s"
        )

        output_url = await self._encode_and_upload(target, timeline, cues)

        target.render_status = COMPLETED
        target.output_url = output_url
        target.is_placeholder = False
        target.render_error = None
        target.render_completed_at = utcnow()
        await self.catalog.record_usage(timeline.clip_usage_count)
        await self.session.commit()
        logger.info(f"[RENDER] Completed {target.id}: {output_url}")
        return RenderOutcome.from_target(target)

    async def _encode_and_upload(
        self, target: LoopRender, timeline: Timeline, cues: list[CaptionCue]
    ) -> str:
        output = OutputSpec.for_aspect_ratio(target.aspect_ratio)
        staging_dir = tempfile.mkdtemp(prefix=f"reelforge_render_{target.id}_")
        try:
            media_paths: dict[str, str] = {}
            for segment in timeline.segments:
                if segment.clip_id in media_paths:
                    continue
                destination = os.path.join(
                    staging_dir, f"clip_{segment.clip_id}{_extension(segment.source_url, '.mp4')}"
                )
                media_paths[segment.clip_id] = await self.downloader(segment.source_url, destination)

            audio_path = None
            if target.audio_url:
                destination = os.path.join(staging_dir, f"audio{_extension(target.audio_url, '.mp3')}")
                audio_path = await self.downloader(target.audio_url, destination)

            captions = render_caption_overlays(
                cues,
                os.path.join(staging_dir, "captions"),
                output.width,
                output.height,
                font_size=self.settings.caption_font_size,
                font_path=self.settings.caption_font_path,
            )

            output_path = os.path.join(staging_dir, "output.mp4")
            compositor = self.compositor_factory(output)
            await compositor.compose(timeline, media_paths, output_path, audio_path, captions)

            storage_key = f"renders/{target.owner_id}/{target.id}/loop.mp4"
            return await self.storage.upload_file(output_path, storage_key, "video/mp4")
        finally:
            shutil.rmtree(staging_dir, ignore_errors=True)

    async def _handle_failure(self, target: LoopRender, error: ReelforgeError) -> RenderOutcome:
        if isinstance(error, RenderError) and self.settings.placeholder_allowed:
            logger.warning(
                f"[RENDER] Render of {target.id} failed ({error.message}); "
                f"serving placeholder, environment={self.settings.environment}"
            )
            target.render_status = COMPLETED
            target.output_url = self.settings.render_placeholder_url
            target.is_placeholder = True
            target.render_error = error.message
            target.render_completed_at = utcnow()
            await self.session.commit()
            return RenderOutcome.from_target(target)

        logger.error(f"[RENDER] Render of {target.id} failed: {error.message}")
        target.render_status = FAILED
        target.render_error = error.message
        target.render_completed_at = utcnow()
        await self.session.commit()
        raise error

    async def _release_failed(self, render_id: uuid.UUID, message: str) -> None:
        await self.session.rollback()
        await self.session.execute(
            update(LoopRender)
            .where(LoopRender.id == render_id)
            .values(render_status=FAILED, render_error=message, render_completed_at=utcnow())
        )
        await self.session.commit()
