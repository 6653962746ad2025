"""Segment orchestrator.

One ``advance`` pass over a video request:

* refresh every in-flight segment from the provider;
* submit the next pending segment once all earlier ones are completed;
* recompute the request's status, stitch state and progress.

Passes are idempotent. Running ``advance`` again with nothing new at the
provider performs no writes, and a pass racing the status poller cannot move
a segment backwards.
"""

import logging
import uuid
from dataclasses import dataclass, field

from reelforge.config import get_settings
from reelforge.exceptions import (
    PersistenceError,
    ProviderError,
    ResourceNotFoundError,
    VideoRequestNotFoundError,
)
from reelforge.models.generation_job import GenerationJob
from reelforge.models.video_request import VideoRequest
from reelforge.providers.generation import GenerationProvider
from reelforge.services import job_state
from reelforge.services.generation_store import GenerationStore
from reelforge.services.job_submission import submit_job

logger = logging.getLogger(__name__)


@dataclass
class SegmentError:
    segment_index: int
    message: str
    provider_job_id: str | None = None


@dataclass
class AdvanceResult:
    request_id: uuid.UUID
    status: str
    stitch_state: str
    progress: int
    output_url: str | None = None
    error_message: str | None = None
    polled: int = 0
    submitted_segment: int | None = None
    changed: bool = False
    errors: list[SegmentError] = field(default_factory=list)

    @classmethod
    def from_request(cls, request: VideoRequest, **kwargs) -> "AdvanceResult":
        return cls(
            request_id=request.id,
            status=request.status,
            stitch_state=request.stitch_state,
            progress=request.progress,
            output_url=request.output_url,
            error_message=request.error_message,
            **kwargs,
        )


class SegmentOrchestrator:
    def __init__(self, store: GenerationStore, provider: GenerationProvider):
        self.store = store
        self.provider = provider
        self.settings = get_settings()

    async def advance(self, request_id: uuid.UUID, owner_id: str | None = None) -> AdvanceResult:
        request = await self.store.get_request(request_id, owner_id)
        if request is None:
            raise VideoRequestNotFoundError(str(request_id))

        if job_state.is_terminal(request.status):
            return AdvanceResult.from_request(request)

        jobs = sorted(request.jobs, key=lambda job: job.segment_index)
        if not jobs:
            raise ResourceNotFoundError(
                f"Video request {request_id} has no segments", code="NO_SEGMENTS_FOUND"
            )

        errors: list[SegmentError] = []
        changed = False
        polled = 0

        for job in jobs:
            if job_state.is_terminal(job.state) or not job.provider_job_id:
                continue
            polled += 1
            try:
                remote = await self.provider.retrieve(job.provider_job_id)
            except ProviderError as e:
                logger.warning(
                    f"[ORCHESTRATOR] Poll failed for segment {job.segment_index} "
                    f"({job.provider_job_id}): {e}"
                )
                errors.append(SegmentError(job.segment_index, e.message, job.provider_job_id))
                continue
            if job_state.apply_provider_result(job, remote):
                changed = True
                logger.info(
                    f"[ORCHESTRATOR] Segment {job.segment_index} of {request.id} -> {job.state}"
                )

        if job_state.recompute_aggregate(request):
            changed = True
        if changed:
            await self.store.commit(request_id=str(request.id))

        submitted_segment = None
        next_job = self._next_submittable(jobs)
        if next_job is not None and not job_state.is_terminal(request.status):
            prompt = request.prompt + (next_job.prompt_suffix or "")
            segment_index = next_job.segment_index
            try:
                await submit_job(self.store, self.provider, next_job, prompt)
                submitted_segment = segment_index
                changed = True
            except ProviderError as e:
                errors.append(SegmentError(segment_index, e.message))
                changed = True
            except PersistenceError as e:
                # Rolled back; the staged marker blocks a resubmit until sync attaches the job
                logger.error(
                    f"[ORCHESTRATOR] Segment {segment_index} of {request_id} "
                    f"submitted but not saved: {e}"
                )
                errors.append(SegmentError(segment_index, e.message, e.provider_job_id))
                request = await self.store.get_request(request_id, refresh=True)
                return AdvanceResult.from_request(
                    request, polled=polled, changed=True, errors=errors
                )
            if job_state.recompute_aggregate(request):
                await self.store.commit(request_id=str(request.id))

        return AdvanceResult.from_request(
            request,
            polled=polled,
            submitted_segment=submitted_segment,
            changed=changed,
            errors=errors,
        )

    def _next_submittable(self, jobs: list[GenerationJob]) -> GenerationJob | None:
        """First pending segment whose predecessors have all completed."""
        for job in jobs:
            if job.state == job_state.COMPLETED:
                continue
            if job.state != job_state.PENDING or job.provider_job_id:
                return None
            if self._has_live_intent(job):
                logger.info(
                    f"[ORCHESTRATOR] Segment {job.segment_index} has an unconfirmed submission, "
                    f"waiting for confirm or sync"
                )
                return None
            return job
        return None

    def _has_live_intent(self, job: GenerationJob) -> bool:
        age = job_state.seconds_since(job.submission_staged_at)
        return age is not None and age < self.settings.submission_intent_ttl_seconds
