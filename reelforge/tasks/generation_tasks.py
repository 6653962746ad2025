"""Celery tasks for the generation pipeline."""

import logging
from uuid import UUID

from reelforge.celery_app import celery_app
from reelforge.models.database import task_session
from reelforge.providers.generation import get_provider
from reelforge.services.generation_store import GenerationStore
from reelforge.services.segment_orchestrator import SegmentOrchestrator
from reelforge.services.status_poller import StatusPoller
from reelforge.tasks import run_async

logger = logging.getLogger(__name__)


async def _sweep(limit: int | None) -> dict:
    async with task_session() as session:
        result = await StatusPoller(GenerationStore(session), get_provider()).sweep(limit)
    return {
        "checked": result.checked,
        "updated": result.updated,
        "completed": result.completed,
        "failed": result.failed,
        "errors": len(result.errors),
        "touched_request_ids": [str(request_id) for request_id in result.touched_request_ids],
    }


async def _advance(request_id: str) -> dict:
    async with task_session() as session:
        result = await SegmentOrchestrator(GenerationStore(session), get_provider()).advance(
            UUID(request_id)
        )
    return {
        "request_id": str(result.request_id),
        "status": result.status,
        "stitch_state": result.stitch_state,
        "progress": result.progress,
        "submitted_segment": result.submitted_segment,
        "errors": [error.message for error in result.errors],
    }


@celery_app.task
def sweep_generation_jobs(limit: int | None = None) -> dict:
    """Scheduled sweep; queues an advance for every multi-segment request it moved."""
    summary = run_async(_sweep(limit))
    for request_id in summary["touched_request_ids"]:
        advance_video_request.delay(request_id)
    logger.info(f"[POLL] Sweep summary: {summary}")
    return summary


@celery_app.task
def advance_video_request(request_id: str) -> dict:
    return run_async(_advance(request_id))
