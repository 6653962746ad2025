"""Generation request endpoints."""

import logging
from dataclasses import asdict
from uuid import UUID

from fastapi import APIRouter, status

from reelforge.api.deps import CurrentOwner, Provider, Store
from reelforge.exceptions import VideoRequestNotFoundError
from reelforge.middleware.request_context import create_request_context, envelope_success
from reelforge.schemas.envelope import EnvelopeResponse
from reelforge.schemas.video import (
    AdvanceResponse,
    SyncResponse,
    VideoCreateRequest,
    VideoRequestResponse,
    VideoSyncRequest,
)
from reelforge.services.fallback_sync import FallbackSynchronizer, SyncRequest
from reelforge.services.job_submission import create_video_request
from reelforge.services.segment_orchestrator import SegmentOrchestrator

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/videos", response_model=EnvelopeResponse, status_code=status.HTTP_201_CREATED)
async def create_video(body: VideoCreateRequest, owner_id: CurrentOwner, store: Store, provider: Provider) -> dict:
    """Create a generation request and submit its first segment."""
    context = create_request_context()
    request = await create_video_request(
        store,
        provider,
        owner_id,
        body.prompt,
        title=body.title,
        model=body.model,
        size=body.size,
        target_duration_seconds=body.target_duration_seconds,
    )
    return envelope_success(context, VideoRequestResponse.model_validate(request))


# Declared before /videos/{video_id} routes so "sync" is not parsed as an id
@router.post("/videos/sync", response_model=EnvelopeResponse)
async def sync_video(body: VideoSyncRequest, owner_id: CurrentOwner, store: Store, provider: Provider) -> dict:
    """Recover or refresh a record from its provider job id."""
    context = create_request_context()
    result = await FallbackSynchronizer(store, provider).sync(
        owner_id, SyncRequest(**body.model_dump())
    )
    return envelope_success(context, SyncResponse(**asdict(result)))


@router.get("/videos/{video_id}", response_model=EnvelopeResponse)
async def get_video(video_id: UUID, owner_id: CurrentOwner, store: Store) -> dict:
    context = create_request_context()
    request = await store.get_request(video_id, owner_id)
    if request is None:
        raise VideoRequestNotFoundError(str(video_id))
    return envelope_success(context, VideoRequestResponse.model_validate(request))


@router.post("/videos/{video_id}/advance", response_model=EnvelopeResponse)
async def advance_video(video_id: UUID, owner_id: CurrentOwner, store: Store, provider: Provider) -> dict:
    """Run one orchestrator pass over the request."""
    context = create_request_context()
    result = await SegmentOrchestrator(store, provider).advance(video_id, owner_id)
    if result.errors:
        context.warnings.extend(
            f"segment {error.segment_index}: {error.message}" for error in result.errors
        )
    return envelope_success(context, AdvanceResponse(**asdict(result)))
