import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from reelforge.exceptions import PersistenceError
from reelforge.models.generation_job import GenerationJob
from reelforge.models.video_request import VideoRequest

logger = logging.getLogger(__name__)

OUTSTANDING_STATES = ("queued", "processing")


class GenerationStore:
    """Thin persistence layer over an AsyncSession for generation records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_request(
        self, request_id: uuid.UUID, owner_id: str | None = None, *, refresh: bool = False
    ) -> VideoRequest | None:
        query = select(VideoRequest).where(VideoRequest.id == request_id)
        if refresh:
            # Reload rows (and their jobs) that a rollback expired
            query = query.execution_options(populate_existing=True)
        if owner_id is not None:
            query = query.where(VideoRequest.owner_id == owner_id)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_job(self, job_id: uuid.UUID) -> GenerationJob | None:
        return await self.session.get(GenerationJob, job_id)

    async def find_job_by_provider_id(
        self, owner_id: str, provider_job_id: str
    ) -> GenerationJob | None:
        result = await self.session.execute(
            select(GenerationJob).where(
                GenerationJob.owner_id == owner_id,
                GenerationJob.provider_job_id == provider_job_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_outstanding_jobs(self, limit: int) -> list[GenerationJob]:
        """Oldest queued/processing jobs that have a provider reference."""
        result = await self.session.execute(
            select(GenerationJob)
            .where(
                GenerationJob.state.in_(OUTSTANDING_STATES),
                GenerationJob.provider_job_id.is_not(None),
            )
            .order_by(GenerationJob.created_at, GenerationJob.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    def add(self, obj: VideoRequest | GenerationJob) -> None:
        self.session.add(obj)

    async def commit(
        self, *, provider_job_id: str | None = None, request_id: str | None = None
    ) -> None:
        """Commit, translating driver errors into PersistenceError.

        Unique-constraint violations are re-raised untouched so callers that
        race on insert can resolve them.
        """
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"[STORE] Commit failed (provider_job_id={provider_job_id}): {e}")
            raise PersistenceError(
                f"Failed to persist generation record: {e}",
                provider_job_id=provider_job_id,
                request_id=request_id,
            ) from e
