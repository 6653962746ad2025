"""Tests for request creation and two-phase segment submission."""

import pytest
from conftest import OWNER
from sqlalchemy import func, select

from reelforge.exceptions import PersistenceError, ProviderError, ValidationError
from reelforge.models import GenerationJob, VideoRequest
from reelforge.services.fallback_sync import FallbackSynchronizer, SyncRequest
from reelforge.services.generation_store import GenerationStore
from reelforge.services.job_submission import (
    build_video_request,
    create_video_request,
    plan_segments,
)


async def only_request(session) -> VideoRequest:
    result = await session.execute(select(VideoRequest))
    return result.scalar_one()


# =============================================================================
# Segment planning
# =============================================================================


class TestPlanSegments:
    @pytest.mark.parametrize(
        "target,durations",
        [
            (30, [12, 12, 8]),
            (5, [8]),
            (13, [12, 4]),
            (12, [12]),
            (24, [12, 12]),
            (1, [4]),
        ],
    )
    def test_durations(self, target, durations):
        plans = plan_segments(target, [4, 8, 12])
        assert [p.duration_seconds for p in plans] == durations
        assert [p.index for p in plans] == list(range(len(durations)))

    def test_continuation_suffix_on_later_segments(self):
        plans = plan_segments(30, [4, 8, 12])
        assert plans[0].prompt_suffix == ""
        assert "part 2 of 3" in plans[1].prompt_suffix
        assert "part 3 of 3" in plans[2].prompt_suffix

    @pytest.mark.parametrize("target", [0, -4])
    def test_non_positive_target(self, target):
        with pytest.raises(ValidationError) as exc_info:
            plan_segments(target, [4, 8, 12])
        assert exc_info.value.code == "MISSING_REQUIRED_FIELDS"


class TestBuildVideoRequest:
    def test_multi_segment_request(self):
        request = build_video_request(OWNER, "  A fox in snow  ", target_duration_seconds=30)
        assert request.prompt == "A fox in snow"
        assert request.stitch_state == "running"
        assert request.is_multi_segment
        assert [job.state for job in request.jobs] == ["pending"] * 3
        assert request.jobs[0].prompt_suffix is None
        assert request.jobs[1].prompt_suffix is not None

    def test_single_segment_defaults(self):
        request = build_video_request(OWNER, "A fox")
        assert request.stitch_state == "single"
        assert request.target_duration_seconds == 4
        assert len(request.jobs) == 1

    @pytest.mark.parametrize("prompt", ["", "   ", None])
    def test_missing_prompt(self, prompt):
        with pytest.raises(ValidationError) as exc_info:
            build_video_request(OWNER, prompt)
        assert exc_info.value.code == "MISSING_PROMPT"


# =============================================================================
# Create + submit
# =============================================================================


class TestCreateVideoRequest:
    async def test_submits_first_segment_only(self, session, provider):
        store = GenerationStore(session)
        request = await create_video_request(
            store, provider, OWNER, "A fox in snow", target_duration_seconds=30
        )

        assert len(provider.submitted) == 1
        assert provider.submitted[0]["seconds"] == 12
        assert provider.submitted[0]["prompt"] == "A fox in snow"

        first, second, third = request.jobs
        assert first.state == "queued"
        assert first.provider_job_id == "job_1"
        assert first.provider_job_source == "submission"
        assert first.submitted_at is not None
        assert first.submission_staged_at is None
        assert [second.state, third.state] == ["pending", "pending"]
        assert third.duration_seconds == 8

        assert request.status == "processing"
        assert request.stitch_state == "running"
        assert request.progress == 0

    async def test_missing_prompt_touches_nothing(self, session, provider):
        store = GenerationStore(session)
        with pytest.raises(ValidationError):
            await create_video_request(store, provider, OWNER, "   ")

        assert provider.submitted == []
        count = await session.scalar(select(func.count()).select_from(VideoRequest))
        assert count == 0

    async def test_rejected_submission_fails_request(self, session, provider):
        provider.submit_error = ProviderError("Prompt violates policy", retryable=False)
        store = GenerationStore(session)

        with pytest.raises(ProviderError):
            await create_video_request(store, provider, OWNER, "Something disallowed")

        request = await only_request(session)
        assert request.status == "failed"
        assert request.error_message == "Prompt violates policy"
        assert request.jobs[0].state == "failed"
        assert request.jobs[0].provider_job_id is None

    async def test_retryable_failure_leaves_segment_pending(self, session, provider):
        provider.submit_error = ProviderError("Upstream 503", retryable=True)
        store = GenerationStore(session)

        with pytest.raises(ProviderError):
            await create_video_request(store, provider, OWNER, "A fox")

        request = await only_request(session)
        job = request.jobs[0]
        assert job.state == "pending"
        assert job.submission_staged_at is None
        assert job.prompt == "A fox"
        assert request.status == "pending"

    async def test_confirm_write_failure_is_recoverable(self, session_maker, provider):
        async with session_maker() as session:
            store = GenerationStore(session)
            real_commit = store.commit

            async def flaky_commit(*, provider_job_id=None, request_id=None):
                if provider_job_id is not None:
                    await session.rollback()
                    raise PersistenceError(
                        "connection reset", provider_job_id=provider_job_id, request_id=request_id
                    )
                await real_commit(provider_job_id=provider_job_id, request_id=request_id)

            store.commit = flaky_commit
            with pytest.raises(PersistenceError) as exc_info:
                await create_video_request(store, provider, OWNER, "A fox")

        error = exc_info.value
        assert error.provider_job_id == "job_1"
        assert error.code == "DB_INSERT_FAILED"
        assert error.to_error_info().location.provider_job_id == "job_1"

        async with session_maker() as session:
            request = await only_request(session)
            staged = request.jobs[0]
            assert staged.provider_job_id is None
            assert staged.submission_staged_at is not None

            result = await FallbackSynchronizer(GenerationStore(session), provider).sync(
                OWNER, SyncRequest(provider_job_id="job_1", video_id=request.id)
            )

            assert result.attached is True
            assert result.request_id == request.id
            assert result.job_id == staged.id
            jobs = (
                await session.execute(
                    select(GenerationJob).where(GenerationJob.provider_job_id == "job_1")
                )
            ).scalars().all()
            assert len(jobs) == 1
            assert jobs[0].provider_job_source == "fallback"
            assert jobs[0].submission_staged_at is None
