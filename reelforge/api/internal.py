"""Scheduler-triggered endpoints, guarded by X-Internal-Token."""

import logging
from dataclasses import asdict

from fastapi import APIRouter

from reelforge.api.deps import InternalAuth, Provider, Store
from reelforge.exceptions import ReelforgeError
from reelforge.middleware.request_context import create_request_context, envelope_success
from reelforge.schemas.envelope import EnvelopeResponse
from reelforge.schemas.video import SweepResponse
from reelforge.services.segment_orchestrator import SegmentOrchestrator
from reelforge.services.status_poller import StatusPoller

router = APIRouter(dependencies=[InternalAuth])
logger = logging.getLogger(__name__)


@router.post("/poll", response_model=EnvelopeResponse)
async def poll_outstanding(store: Store, provider: Provider, limit: int | None = None) -> dict:
    """Sweep outstanding jobs, then advance the multi-segment requests it touched."""
    context = create_request_context()
    result = await StatusPoller(store, provider).sweep(limit)

    orchestrator = SegmentOrchestrator(store, provider)
    for request_id in sorted(result.touched_request_ids, key=str):
        try:
            advanced = await orchestrator.advance(request_id)
        except ReelforgeError as e:
            logger.error(f"[POLL] Advance failed for {request_id}: {e}")
            context.warnings.append(f"{request_id}: {e.message}")
            continue
        for error in advanced.errors:
            context.warnings.append(f"{request_id} segment {error.segment_index}: {error.message}")

    data = asdict(result)
    data["advanced_request_ids"] = sorted(data.pop("touched_request_ids"), key=str)
    return envelope_success(context, SweepResponse(**data))
