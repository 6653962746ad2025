"""Fallback synchronizer.

Recovery entry point keyed by ``(owner_id, provider_job_id)``. It is called
when the provider accepted a job but the local record is missing or stale,
most often because the confirm write of a two-phase submission failed.
Calling it any number of times for the same pair yields one record.
"""

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from reelforge.config import get_settings
from reelforge.exceptions import PersistenceError, ValidationError
from reelforge.models.base import utcnow
from reelforge.models.generation_job import GenerationJob
from reelforge.models.video_request import VideoRequest
from reelforge.providers.generation import GenerationProvider, ProviderJob
from reelforge.services import job_state
from reelforge.services.generation_store import GenerationStore
from reelforge.services.job_submission import SOURCE_FALLBACK, build_video_request

logger = logging.getLogger(__name__)

RECOVERED_PROMPT = "Recovered generation"


@dataclass
class SyncRequest:
    provider_job_id: str
    video_id: uuid.UUID | None = None
    prompt: str | None = None
    title: str | None = None
    model: str | None = None
    size: str | None = None
    target_duration_seconds: int | None = None


@dataclass
class SyncResult:
    request_id: uuid.UUID
    job_id: uuid.UUID
    provider_job_id: str
    status: str
    progress: int
    output_url: str | None
    existed: bool = False
    attached: bool = False
    created: bool = False
    changed: bool = False


class FallbackSynchronizer:
    def __init__(self, store: GenerationStore, provider: GenerationProvider):
        self.store = store
        self.provider = provider

    async def sync(self, owner_id: str, sync_request: SyncRequest) -> SyncResult:
        provider_job_id = (sync_request.provider_job_id or "").strip()
        if not provider_job_id:
            raise ValidationError("provider_job_id is required", code="MISSING_REQUIRED_FIELDS")

        existing = await self.store.find_job_by_provider_id(owner_id, provider_job_id)
        if existing is not None:
            logger.info(f"[SYNC] {provider_job_id} already recorded as job {existing.id}, reconciling")
            return await self._reconcile(existing)

        remote = await self.provider.retrieve(provider_job_id)

        if sync_request.video_id is not None:
            request, staged = await self._find_staged_job(owner_id, sync_request.video_id)
            if staged is not None:
                return await self._attach(owner_id, request, staged, remote)

        return await self._create(owner_id, sync_request, remote)

    async def _reconcile(self, job: GenerationJob, refresh: bool = False) -> SyncResult:
        changed = False
        if not job_state.is_terminal(job.state):
            remote = await self.provider.retrieve(job.provider_job_id)
            changed = job_state.apply_provider_result(job, remote)

        request = await self.store.get_request(job.request_id, refresh=refresh)
        if job_state.recompute_aggregate(request):
            changed = True
        if changed:
            await self.store.commit(provider_job_id=job.provider_job_id, request_id=str(request.id))
        return self._result(request, job, existed=True, changed=changed)

    async def _find_staged_job(
        self, owner_id: str, video_id: uuid.UUID
    ) -> tuple[VideoRequest | None, GenerationJob | None]:
        request = await self.store.get_request(video_id, owner_id)
        if request is None:
            return None, None
        # Only the first unfinished segment can own a fresh provider job
        for job in sorted(request.jobs, key=lambda job: job.segment_index):
            if job.state == job_state.COMPLETED:
                continue
            if job.state == job_state.PENDING and not job.provider_job_id:
                return request, job
            break
        return request, None

    async def _attach(
        self, owner_id: str, request: VideoRequest, job: GenerationJob, remote: ProviderJob
    ) -> SyncResult:
        """Confirm a staged submission whose confirm write was lost."""
        job_state.apply_changes(
            job,
            {
                "provider_job_id": remote.id,
                "provider_job_source": SOURCE_FALLBACK,
                "state": job_state.QUEUED,
                "submitted_at": job.submitted_at or utcnow(),
                "submission_staged_at": None,
            },
        )
        job_state.apply_provider_result(job, remote)
        job_state.recompute_aggregate(request)
        try:
            await self.store.commit(provider_job_id=remote.id, request_id=str(request.id))
        except IntegrityError:
            return await self._resolve_race(owner_id, remote.id)

        logger.info(f"[SYNC] Attached {remote.id} to staged segment {job.segment_index} of {request.id}")
        return self._result(request, job, attached=True, changed=True)

    async def _create(self, owner_id: str, sync_request: SyncRequest, remote: ProviderJob) -> SyncResult:
        settings = get_settings()
        request = build_video_request(
            owner_id,
            sync_request.prompt or RECOVERED_PROMPT,
            title=sync_request.title,
            model=sync_request.model,
            size=sync_request.size,
            target_duration_seconds=sync_request.target_duration_seconds
            or settings.max_segment_seconds,
        )
        first = request.jobs[0]
        first.prompt = request.prompt + (first.prompt_suffix or "")
        first.provider_job_id = remote.id
        first.provider_job_source = SOURCE_FALLBACK
        first.state = job_state.QUEUED
        first.submitted_at = utcnow()
        job_state.apply_provider_result(first, remote)
        job_state.recompute_aggregate(request)

        self.store.add(request)
        try:
            await self.store.commit(provider_job_id=remote.id)
        except IntegrityError:
            return await self._resolve_race(owner_id, remote.id)

        logger.info(
            f"[SYNC] Created request {request.id} from provider job {remote.id} "
            f"({len(request.jobs)} segment(s))"
        )
        return self._result(request, first, created=True, changed=True)

    async def _resolve_race(self, owner_id: str, provider_job_id: str) -> SyncResult:
        """Another writer recorded the pair first; return its record."""
        logger.warning(f"[SYNC] Lost insert race for {provider_job_id}, re-reading winner")
        winner = await self.store.find_job_by_provider_id(owner_id, provider_job_id)
        if winner is None:
            raise PersistenceError(
                f"Could not record provider job {provider_job_id}", provider_job_id=provider_job_id
            )
        return await self._reconcile(winner, refresh=True)

    @staticmethod
    def _result(request: VideoRequest, job: GenerationJob, **flags) -> SyncResult:
        return SyncResult(
            request_id=request.id,
            job_id=job.id,
            provider_job_id=job.provider_job_id,
            status=request.status,
            progress=request.progress,
            output_url=request.output_url,
            **flags,
        )
