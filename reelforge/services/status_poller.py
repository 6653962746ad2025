"""Status poller.

A scheduled sweep that refreshes outstanding generation jobs in bulk. It
shares the job-state rules with the orchestrator, so the two may run over
the same records concurrently and still converge.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from reelforge.config import get_settings
from reelforge.exceptions import ReelforgeError
from reelforge.providers.generation import GenerationProvider
from reelforge.services import job_state
from reelforge.services.generation_store import GenerationStore

logger = logging.getLogger(__name__)


@dataclass
class SweepError:
    job_id: uuid.UUID
    provider_job_id: str | None
    message: str


@dataclass
class SweepResult:
    checked: int = 0
    updated: int = 0
    completed: int = 0
    failed: int = 0
    errors: list[SweepError] = field(default_factory=list)
    # Multi-segment requests whose segments moved; the scheduler advances these
    touched_request_ids: set[uuid.UUID] = field(default_factory=set)


class StatusPoller:
    def __init__(
        self,
        store: GenerationStore,
        provider: GenerationProvider,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.provider = provider
        self.settings = get_settings()
        self._sleep = sleep

    async def sweep(self, limit: int | None = None) -> SweepResult:
        batch_size = self.settings.poll_batch_size
        if limit is not None:
            batch_size = max(0, min(limit, batch_size))

        result = SweepResult()
        if batch_size == 0:
            return result

        jobs = await self.store.list_outstanding_jobs(batch_size)
        targets = [(job.id, job.provider_job_id) for job in jobs]
        logger.info(f"[POLL] Sweeping {len(targets)} outstanding job(s)")

        for position, (job_id, provider_job_id) in enumerate(targets):
            if position > 0 and self.settings.poll_delay_seconds > 0:
                await self._sleep(self.settings.poll_delay_seconds)
            try:
                await self._sweep_one(job_id, result)
            except (ReelforgeError, SQLAlchemyError) as e:
                logger.error(f"[POLL] Job {job_id} ({provider_job_id}) failed: {e}")
                result.errors.append(SweepError(job_id, provider_job_id, str(e)))

        logger.info(
            f"[POLL] Done: checked={result.checked} updated={result.updated} "
            f"completed={result.completed} failed={result.failed} errors={len(result.errors)}"
        )
        return result

    async def _sweep_one(self, job_id: uuid.UUID, result: SweepResult) -> None:
        job = await self.store.get_job(job_id)
        if job is None or job_state.is_terminal(job.state):
            return
        result.checked += 1
        provider_job_id = job.provider_job_id

        if self._is_stale(job):
            changed = job_state.fail_job(
                job,
                f"Generation timed out after {self.settings.generation_stale_after_seconds}s",
            )
            logger.warning(f"[POLL] Job {job_id} ({provider_job_id}) marked failed as stale")
        else:
            remote = await self.provider.retrieve(provider_job_id)
            changed = job_state.apply_provider_result(job, remote)

        request = await self.store.get_request(job.request_id)
        aggregate_changed = job_state.recompute_aggregate(request) if request else False

        if changed or aggregate_changed:
            await self.store.commit(provider_job_id=provider_job_id, request_id=str(job.request_id))

        if changed:
            result.updated += 1
            if job.state == job_state.COMPLETED:
                result.completed += 1
            elif job.state == job_state.FAILED:
                result.failed += 1
            if request is not None and request.is_multi_segment:
                result.touched_request_ids.add(request.id)

    def _is_stale(self, job) -> bool:
        limit = self.settings.generation_stale_after_seconds
        if limit <= 0:
            return False
        age = job_state.seconds_since(job.submitted_at or job.created_at)
        return age is not None and age > limit
