"""State rules shared by the orchestrator, the poller and fallback sync.

Every writer goes through these helpers so that concurrent passes converge:
states only move forward, terminal states are sticky, and a field is only
touched when its value actually differs.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from reelforge.models.base import utcnow
from reelforge.models.generation_job import GenerationJob
from reelforge.models.video_request import VideoRequest
from reelforge.providers.generation import ProviderJob

logger = logging.getLogger(__name__)

PENDING = "pending"
QUEUED = "queued"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

TERMINAL_STATES = frozenset({COMPLETED, FAILED})

STATE_RANK: dict[str, int] = {
    PENDING: 0,
    QUEUED: 1,
    PROCESSING: 2,
    COMPLETED: 3,
    FAILED: 3,
}

# Provider vocabulary -> internal state. Anything unknown is still in flight.
PROVIDER_STATUS_MAP: dict[str, str] = {
    "queued": PROCESSING,
    "pending": PROCESSING,
    "starting": PROCESSING,
    "running": PROCESSING,
    "processing": PROCESSING,
    "in_progress": PROCESSING,
    "completed": COMPLETED,
    "succeeded": COMPLETED,
    "failed": FAILED,
    "canceled": FAILED,
    "cancelled": FAILED,
    "error": FAILED,
}

STITCH_SINGLE = "single"
STITCH_RUNNING = "running"

PLAYLIST_SCHEME = "playlist://"


def map_provider_status(status: str | None) -> str:
    """Map a raw provider status onto the internal job state."""
    key = (status or "").strip().lower()
    mapped = PROVIDER_STATUS_MAP.get(key)
    if mapped is None:
        logger.warning(f"[JOB_STATE] Unknown provider status {status!r}, treating as processing")
        return PROCESSING
    return mapped


def seconds_since(moment: datetime | None, now: datetime | None = None) -> float | None:
    """Age of a stored timestamp. SQLite hands back naive datetimes; they are UTC."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return ((now or utcnow()) - moment).total_seconds()


def is_terminal(state: str) -> bool:
    return state in TERMINAL_STATES


def can_transition(current: str, new: str) -> bool:
    """True when moving ``current`` -> ``new`` is a forward step."""
    if current == new:
        return False
    if is_terminal(current):
        return False
    return STATE_RANK.get(new, 0) > STATE_RANK.get(current, 0)


def apply_changes(obj: Any, changes: dict[str, Any]) -> bool:
    """Set only the attributes whose value differs. Returns True if any did."""
    changed = False
    for name, value in changes.items():
        if getattr(obj, name) != value:
            setattr(obj, name, value)
            changed = True
    return changed


def apply_provider_result(job: GenerationJob, remote: ProviderJob) -> bool:
    """Fold a provider status read into ``job``.

    Returns True when at least one field changed. A terminal job is never
    modified and a lower-ranked state never overwrites a higher one.
    """
    if is_terminal(job.state):
        return False

    new_state = map_provider_status(remote.status)
    changes: dict[str, Any] = {}

    if can_transition(job.state, new_state):
        changes["state"] = new_state

    if new_state == COMPLETED:
        if remote.url:
            changes["output_url"] = remote.url
        if remote.thumbnail_url:
            changes["thumbnail_url"] = remote.thumbnail_url
        if job.completed_at is None:
            changes["completed_at"] = utcnow()
    elif new_state == FAILED:
        changes["error_message"] = remote.error or f"Provider reported status {remote.status!r}"
        if job.completed_at is None:
            changes["completed_at"] = utcnow()

    if "state" not in changes:
        # Output fields only ride along with a state change
        return False
    return apply_changes(job, changes)


def fail_job(job: GenerationJob, message: str) -> bool:
    if is_terminal(job.state):
        return False
    return apply_changes(
        job,
        {"state": FAILED, "error_message": message, "completed_at": job.completed_at or utcnow()},
    )


def compute_progress(jobs: list[GenerationJob]) -> int:
    if not jobs:
        return 0
    completed = sum(1 for job in jobs if job.state == COMPLETED)
    return (completed * 100) // len(jobs)


def recompute_aggregate(request: VideoRequest) -> bool:
    """Derive the request's status, stitch state and output from its jobs.

    The request is completed only when every job is completed and failed as
    soon as any job fails. Returns True when a field changed.
    """
    jobs = sorted(request.jobs, key=lambda job: job.segment_index)
    if not jobs:
        return False

    multi = request.is_multi_segment
    failed = next((job for job in jobs if job.state == FAILED), None)
    all_completed = all(job.state == COMPLETED for job in jobs)
    changes: dict[str, Any] = {"progress": compute_progress(jobs)}

    if failed is not None:
        changes["status"] = FAILED
        changes["error_message"] = (
            f"Segment {failed.segment_index} failed: {failed.error_message}"
            if multi
            else failed.error_message
        )
        if multi:
            changes["stitch_state"] = FAILED
    elif all_completed:
        changes["status"] = COMPLETED
        changes["progress"] = 100
        if multi:
            changes["stitch_state"] = COMPLETED
            changes["output_url"] = f"{PLAYLIST_SCHEME}{request.id}"
            changes["thumbnail_url"] = jobs[0].thumbnail_url
        else:
            changes["output_url"] = jobs[0].output_url
            changes["thumbnail_url"] = jobs[0].thumbnail_url
    elif any(job.state != PENDING for job in jobs):
        changes["status"] = PROCESSING
        if multi:
            changes["stitch_state"] = STITCH_RUNNING

    if request.status in TERMINAL_STATES:
        # A finished request keeps its outcome
        changes.pop("status", None)
        changes.pop("stitch_state", None)

    return apply_changes(request, changes)
