"""
Shared fixtures for reelforge tests.

Store-level tests run against in-memory SQLite (aiosqlite) with a single
shared connection, so several sessions in one test see the same data.
The generation provider is replaced by ``FakeProvider``.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from reelforge.exceptions import ProviderError
from reelforge.models import Base, GenerationJob, VideoRequest
from reelforge.providers.generation import GenerationProvider, ProviderJob

OWNER = "owner-1"


class FakeProvider(GenerationProvider):
    """In-memory provider. Jobs start ``queued`` until a test moves them."""

    name = "fake"

    def __init__(self) -> None:
        self.jobs: dict[str, ProviderJob] = {}
        self.submitted: list[dict] = []
        self.retrieved: list[str] = []
        self.submit_error: ProviderError | None = None
        self.retrieve_errors: dict[str, ProviderError] = {}

    def set_status(
        self,
        provider_job_id: str,
        status: str,
        url: str | None = None,
        thumbnail_url: str | None = None,
        error: str | None = None,
    ) -> None:
        self.jobs[provider_job_id] = ProviderJob(
            id=provider_job_id,
            status=status,
            url=url,
            thumbnail_url=thumbnail_url,
            error=error,
        )

    async def submit(self, prompt, model, duration_seconds, size) -> ProviderJob:
        if self.submit_error is not None:
            raise self.submit_error
        job_id = f"job_{len(self.submitted) + 1}"
        self.submitted.append(
            {"id": job_id, "prompt": prompt, "model": model, "seconds": duration_seconds, "size": size}
        )
        self.set_status(job_id, "queued")
        return self.jobs[job_id]

    async def retrieve(self, provider_job_id: str) -> ProviderJob:
        self.retrieved.append(provider_job_id)
        if provider_job_id in self.retrieve_errors:
            raise self.retrieve_errors[provider_job_id]
        return self.jobs.get(provider_job_id) or ProviderJob(id=provider_job_id, status="queued")


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


async def make_request(
    session: AsyncSession,
    states: list[str],
    *,
    provider_ids: list[str | None] | None = None,
    owner_id: str = OWNER,
    status: str = "processing",
    prompt: str = "A neon city at night",
    created_at: datetime | None = None,
) -> VideoRequest:
    """Persist a request with one job per entry in ``states``."""
    provider_ids = provider_ids or [None] * len(states)
    multi = len(states) > 1
    created_at = created_at or datetime.now(timezone.utc)
    request = VideoRequest(
        owner_id=owner_id,
        prompt=prompt,
        model="sora-2",
        size="720x1280",
        target_duration_seconds=12 * len(states),
        status=status,
        stitch_state="running" if multi else "single",
        progress=0,
    )
    request.jobs = [
        GenerationJob(
            owner_id=owner_id,
            segment_index=index,
            prompt_suffix=f" (part {index + 1} of {len(states)})" if index else None,
            model="sora-2",
            duration_seconds=12,
            size="720x1280",
            state=state,
            provider_job_id=provider_ids[index],
            provider_job_source="submission" if provider_ids[index] else None,
            output_url=f"https://cdn.test/{provider_ids[index]}.mp4" if state == "completed" else None,
            thumbnail_url=f"https://cdn.test/{provider_ids[index]}.jpg" if state == "completed" else None,
            submitted_at=created_at if provider_ids[index] else None,
            created_at=created_at + timedelta(milliseconds=index),
        )
        for index, state in enumerate(states)
    ]
    session.add(request)
    await session.commit()
    return request
