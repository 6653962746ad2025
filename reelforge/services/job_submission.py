"""Job submission.

Creating a generation request plans its segments up front; each segment is
then submitted in two phases:

1. stage: the prompt and a ``submission_staged_at`` marker are persisted;
2. the provider is called;
3. confirm: the provider job id is written onto the staged segment.

If step 3 fails the provider job exists without a local reference. The
``PersistenceError`` raised then carries the provider job id so the caller
can hand it to the fallback synchronizer.
"""

import logging
import math
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from reelforge.config import get_settings
from reelforge.exceptions import PersistenceError, ProviderError, ValidationError
from reelforge.models.base import utcnow
from reelforge.models.generation_job import GenerationJob
from reelforge.models.video_request import VideoRequest
from reelforge.providers.generation import GenerationProvider
from reelforge.services import job_state
from reelforge.services.generation_store import GenerationStore

logger = logging.getLogger(__name__)

SOURCE_SUBMISSION = "submission"
SOURCE_FALLBACK = "fallback"

CONTINUATION_SUFFIX = " Continue seamlessly from the previous shot (part {part} of {total})."


@dataclass(frozen=True)
class SegmentPlan:
    index: int
    duration_seconds: int
    prompt_suffix: str


def _fit_duration(seconds: float, allowed: list[int]) -> int:
    """Smallest allowed duration covering ``seconds``."""
    for candidate in sorted(allowed):
        if candidate >= seconds:
            return candidate
    return max(allowed)


def plan_segments(target_duration_seconds: int, allowed_seconds: list[int] | None = None) -> list[SegmentPlan]:
    """Split a target duration into provider-sized segments.

    Every segment but the last runs the provider maximum; the last is rounded
    up to the nearest duration the provider accepts.
    """
    allowed = allowed_seconds or get_settings().provider_allowed_seconds
    if not allowed:
        raise ValidationError("No provider durations configured")
    if target_duration_seconds is None or target_duration_seconds <= 0:
        raise ValidationError(
            f"Target duration must be positive: {target_duration_seconds}",
            code="MISSING_REQUIRED_FIELDS",
        )

    max_seconds = max(allowed)
    count = max(1, math.ceil(target_duration_seconds / max_seconds))
    plans: list[SegmentPlan] = []
    for index in range(count):
        remaining = target_duration_seconds - index * max_seconds
        suffix = "" if index == 0 else CONTINUATION_SUFFIX.format(part=index + 1, total=count)
        plans.append(
            SegmentPlan(
                index=index,
                duration_seconds=_fit_duration(min(remaining, max_seconds), allowed),
                prompt_suffix=suffix,
            )
        )
    return plans


def build_video_request(
    owner_id: str,
    prompt: str,
    *,
    title: str | None = None,
    model: str | None = None,
    size: str | None = None,
    target_duration_seconds: int | None = None,
) -> VideoRequest:
    """Build (unsaved) a request and its pending segments."""
    settings = get_settings()
    if not prompt or not prompt.strip():
        raise ValidationError("Prompt is required", code="MISSING_PROMPT")

    target = target_duration_seconds or settings.provider_allowed_seconds[0]
    plans = plan_segments(target, settings.provider_allowed_seconds)
    model = model or settings.default_model
    size = size or settings.default_size

    request = VideoRequest(
        owner_id=owner_id,
        title=title,
        prompt=prompt.strip(),
        model=model,
        size=size,
        target_duration_seconds=target,
        status=job_state.PENDING,
        stitch_state=job_state.STITCH_RUNNING if len(plans) > 1 else job_state.STITCH_SINGLE,
        progress=0,
    )
    request.jobs = [
        GenerationJob(
            owner_id=owner_id,
            segment_index=plan.index,
            prompt_suffix=plan.prompt_suffix or None,
            model=model,
            duration_seconds=plan.duration_seconds,
            size=size,
            state=job_state.PENDING,
        )
        for plan in plans
    ]
    return request


async def submit_job(
    store: GenerationStore,
    provider: GenerationProvider,
    job: GenerationJob,
    prompt: str,
) -> GenerationJob:
    """Two-phase submission of one pending segment.

    Raises:
        ProviderError: the provider call failed. A rejected job is marked
            failed; a retryable failure leaves it pending.
        PersistenceError: the confirm write failed after the provider
            accepted the job; ``provider_job_id`` is set on the error.
    """
    job_id = str(job.id)
    request_ref = str(job.request_id)
    segment_index = job.segment_index

    # Phase 1: stage intent
    job_state.apply_changes(job, {"prompt": prompt, "submission_staged_at": utcnow()})
    await store.commit(request_id=request_ref)

    try:
        remote = await provider.submit(
            prompt=prompt,
            model=job.model,
            duration_seconds=job.duration_seconds,
            size=job.size,
        )
    except ProviderError as e:
        if e.retryable:
            logger.warning(f"[SUBMIT] Segment {segment_index} of {request_ref} not submitted, will retry: {e}")
            job_state.apply_changes(job, {"submission_staged_at": None})
        else:
            logger.error(f"[SUBMIT] Provider rejected segment {segment_index} of {request_ref}: {e}")
            job_state.fail_job(job, e.message)
            job.submission_staged_at = None
        await store.commit(request_id=request_ref)
        raise

    # Phase 2: confirm
    job_state.apply_changes(
        job,
        {
            "provider_job_id": remote.id,
            "provider_job_source": SOURCE_SUBMISSION,
            "state": job_state.QUEUED,
            "submitted_at": utcnow(),
            "submission_staged_at": None,
        },
    )
    try:
        await store.commit(provider_job_id=remote.id, request_id=request_ref)
    except IntegrityError as e:
        logger.error(f"[SUBMIT] Provider job {remote.id} already recorded elsewhere (job {job_id})")
        raise PersistenceError(
            f"Provider job {remote.id} is already attached to another record",
            provider_job_id=remote.id,
            request_id=request_ref,
        ) from e
    except PersistenceError:
        logger.error(
            f"[SUBMIT] Provider accepted job {remote.id} but it could not be saved; "
            f"recover with the sync endpoint"
        )
        raise

    logger.info(f"[SUBMIT] Segment {segment_index} of {request_ref} queued as {remote.id}")
    return job


async def create_video_request(
    store: GenerationStore,
    provider: GenerationProvider,
    owner_id: str,
    prompt: str,
    *,
    title: str | None = None,
    model: str | None = None,
    size: str | None = None,
    target_duration_seconds: int | None = None,
) -> VideoRequest:
    """Persist a new request and submit its first segment."""
    request = build_video_request(
        owner_id,
        prompt,
        title=title,
        model=model,
        size=size,
        target_duration_seconds=target_duration_seconds,
    )
    store.add(request)
    await store.commit()
    logger.info(
        f"[SUBMIT] Created request {request.id} with {len(request.jobs)} segment(s) "
        f"for {request.target_duration_seconds}s"
    )

    first = request.jobs[0]
    try:
        await submit_job(store, provider, first, request.prompt + (first.prompt_suffix or ""))
    except ProviderError:
        if job_state.recompute_aggregate(request):
            await store.commit(request_id=str(request.id))
        raise

    if job_state.recompute_aggregate(request):
        await store.commit(request_id=str(request.id))
    return request
