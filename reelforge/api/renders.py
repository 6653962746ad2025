"""Loop render endpoints."""

import logging
from dataclasses import asdict
from uuid import UUID

from fastapi import APIRouter, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reelforge.api.deps import CurrentOwner, DbSession, Storage
from reelforge.exceptions import RenderConflictError, RenderTargetNotFoundError
from reelforge.middleware.request_context import create_request_context, envelope_success
from reelforge.models.loop_render import LoopRender
from reelforge.schemas.envelope import EnvelopeResponse
from reelforge.schemas.render import (
    LoopRenderCreateRequest,
    LoopRenderResponse,
    RenderOutcomeResponse,
)
from reelforge.services.clip_catalog import SqlClipCatalog
from reelforge.services.render_invoker import RENDERING, RenderInvoker
from reelforge.tasks.render_task import render_loop_task

router = APIRouter()
logger = logging.getLogger(__name__)


async def _get_owned_target(db: AsyncSession, render_id: UUID, owner_id: str) -> LoopRender:
    result = await db.execute(
        select(LoopRender).where(LoopRender.id == render_id, LoopRender.owner_id == owner_id)
    )
    target = result.scalar_one_or_none()
    if target is None:
        raise RenderTargetNotFoundError(str(render_id))
    return target


@router.post("/renders", response_model=EnvelopeResponse, status_code=status.HTTP_201_CREATED)
async def create_render(body: LoopRenderCreateRequest, owner_id: CurrentOwner, db: DbSession) -> dict:
    context = create_request_context()
    target = LoopRender(
        owner_id=owner_id,
        title=body.title,
        style=body.style,
        aspect_ratio=body.aspect_ratio,
        target_duration_seconds=body.target_duration_seconds,
        audio_url=body.audio_url,
        captions=[cue.model_dump() for cue in body.captions],
        render_status="pending",
        clip_ids=[],
        is_placeholder=False,
    )
    db.add(target)
    await db.commit()
    return envelope_success(context, LoopRenderResponse.model_validate(target))


@router.get("/renders/{render_id}", response_model=EnvelopeResponse)
async def get_render(render_id: UUID, owner_id: CurrentOwner, db: DbSession) -> dict:
    context = create_request_context()
    target = await _get_owned_target(db, render_id, owner_id)
    return envelope_success(context, LoopRenderResponse.model_validate(target))


@router.post("/renders/{render_id}/render", response_model=EnvelopeResponse)
async def start_render(
    render_id: UUID,
    owner_id: CurrentOwner,
    db: DbSession,
    storage: Storage,
    background: bool = False,
) -> dict:
    """Render the target now, or queue it on the worker with ``background=true``.

    A render already in progress returns 409.
    """
    context = create_request_context()
    if background:
        target = await _get_owned_target(db, render_id, owner_id)
        if target.render_status == RENDERING:
            raise RenderConflictError(str(render_id))
        task = render_loop_task.delay(str(target.id), owner_id)
        logger.info(f"[RENDER] Queued {render_id} as task {task.id}")
        return envelope_success(
            context,
            RenderOutcomeResponse(
                render_id=target.id,
                status="queued",
                output_url=target.output_url,
                clip_ids=list(target.clip_ids or []),
            ),
        )

    invoker = RenderInvoker(db, SqlClipCatalog(db), storage)
    outcome = await invoker.render(render_id, owner_id)
    if outcome.is_placeholder:
        context.warnings.append("Render failed; a placeholder video was returned")
    return envelope_success(context, RenderOutcomeResponse(**asdict(outcome)))
