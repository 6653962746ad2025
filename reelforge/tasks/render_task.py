"""Celery task for loop rendering."""

import logging
from uuid import UUID

from reelforge.celery_app import celery_app
from reelforge.exceptions import RenderConflictError
from reelforge.models.database import task_session
from reelforge.services.clip_catalog import SqlClipCatalog
from reelforge.services.render_invoker import RenderInvoker
from reelforge.services.storage_service import get_storage_service
from reelforge.tasks import run_async

logger = logging.getLogger(__name__)


async def _render(render_id: str, owner_id: str | None) -> dict:
    async with task_session() as session:
        invoker = RenderInvoker(session, SqlClipCatalog(session), get_storage_service())
        outcome = await invoker.render(UUID(render_id), owner_id)
    return {
        "render_id": str(outcome.render_id),
        "status": outcome.status,
        "output_url": outcome.output_url,
        "is_placeholder": outcome.is_placeholder,
    }


@celery_app.task
def render_loop_task(render_id: str, owner_id: str | None = None) -> dict:
    """Render a loop target in the worker."""
    try:
        return run_async(_render(render_id, owner_id))
    except RenderConflictError as e:
        logger.warning(f"[RENDER] Skipping {render_id}: {e.message}")
        return {"render_id": render_id, "status": "conflict", "message": e.message}
