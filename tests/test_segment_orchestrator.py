"""Tests for SegmentOrchestrator.advance."""

import uuid
from datetime import timedelta
from unittest.mock import patch

import pytest
from conftest import OWNER, make_request

from reelforge.exceptions import PersistenceError, ProviderError, VideoRequestNotFoundError
from reelforge.models.base import utcnow
from reelforge.services.generation_store import GenerationStore
from reelforge.services.segment_orchestrator import SegmentOrchestrator


@pytest.fixture
def store(session):
    return GenerationStore(session)


@pytest.fixture
def orchestrator(store, provider):
    return SegmentOrchestrator(store, provider)


class TestAdvance:
    async def test_next_segment_submitted_exactly_once(self, session, provider, orchestrator):
        request = await make_request(
            session, ["completed", "pending", "pending"], provider_ids=["job_a", None, None]
        )

        first = await orchestrator.advance(request.id, OWNER)
        second = await orchestrator.advance(request.id, OWNER)

        assert len(provider.submitted) == 1
        assert provider.submitted[0]["prompt"] == "A neon city at night (part 2 of 3)"
        assert first.submitted_segment == 1
        assert second.submitted_segment is None

        jobs = request.jobs
        assert jobs[1].provider_job_id == "job_1"
        assert jobs[1].state in ("queued", "processing")
        assert jobs[2].state == "pending"
        assert jobs[2].provider_job_id is None
        assert second.progress == 33

    async def test_second_pass_without_news_writes_nothing(self, session, provider, store, orchestrator):
        request = await make_request(
            session, ["completed", "processing"], provider_ids=["job_a", "job_b"]
        )
        provider.set_status("job_b", "in_progress")

        await orchestrator.advance(request.id)
        with patch.object(store, "commit", wraps=store.commit) as commit:
            result = await orchestrator.advance(request.id)

        assert commit.await_count == 0
        assert result.changed is False
        assert result.polled == 1
        assert result.status == "processing"
        assert result.progress == 50

    async def test_poll_never_regresses_state(self, session, provider, orchestrator):
        request = await make_request(session, ["processing"], provider_ids=["job_a"])
        provider.set_status("job_a", "queued")

        result = await orchestrator.advance(request.id)

        assert request.jobs[0].state == "processing"
        assert result.changed is False

    async def test_poll_error_is_isolated(self, session, provider, orchestrator):
        request = await make_request(
            session, ["processing", "processing"], provider_ids=["job_a", "job_b"]
        )
        provider.retrieve_errors["job_a"] = ProviderError("read timeout")
        provider.set_status("job_b", "completed", url="https://cdn.test/b.mp4")

        result = await orchestrator.advance(request.id)

        assert len(result.errors) == 1
        assert result.errors[0].segment_index == 0
        assert result.errors[0].provider_job_id == "job_a"
        assert request.jobs[0].state == "processing"
        assert request.jobs[1].state == "completed"
        assert result.status == "processing"
        assert result.progress == 50

    async def test_failed_segment_fails_request_and_stops_submission(
        self, session, provider, orchestrator
    ):
        request = await make_request(
            session, ["completed", "processing", "pending"], provider_ids=["job_a", "job_b", None]
        )
        provider.set_status("job_b", "failed", error="moderation blocked")

        result = await orchestrator.advance(request.id)

        assert result.status == "failed"
        assert result.stitch_state == "failed"
        assert result.error_message == "Segment 1 failed: moderation blocked"
        assert provider.submitted == []
        assert request.jobs[2].state == "pending"

    async def test_all_segments_completed(self, session, provider, orchestrator):
        request = await make_request(
            session, ["completed", "processing"], provider_ids=["job_a", "job_b"]
        )
        provider.set_status("job_b", "completed", url="https://cdn.test/b.mp4")

        result = await orchestrator.advance(request.id)

        assert result.status == "completed"
        assert result.stitch_state == "completed"
        assert result.progress == 100
        assert result.output_url == f"playlist://{request.id}"
        assert request.thumbnail_url == "https://cdn.test/job_a.jpg"

    async def test_single_segment_completion_copies_output(self, session, provider, orchestrator):
        request = await make_request(session, ["queued"], provider_ids=["job_a"])
        provider.set_status(
            "job_a", "completed", url="https://cdn.test/a.mp4", thumbnail_url="https://cdn.test/a.jpg"
        )

        result = await orchestrator.advance(request.id)

        assert result.status == "completed"
        assert result.stitch_state == "single"
        assert result.output_url == "https://cdn.test/a.mp4"
        assert request.thumbnail_url == "https://cdn.test/a.jpg"

    async def test_rejected_submission_fails_request(self, session, provider, orchestrator):
        request = await make_request(session, ["completed", "pending"], provider_ids=["job_a", None])
        provider.submit_error = ProviderError("policy", retryable=False)

        result = await orchestrator.advance(request.id)

        assert result.status == "failed"
        assert result.errors[0].segment_index == 1
        assert request.jobs[1].state == "failed"

    async def test_retryable_submission_error_keeps_request_running(
        self, session, provider, orchestrator
    ):
        request = await make_request(session, ["completed", "pending"], provider_ids=["job_a", None])
        provider.submit_error = ProviderError("busy", retryable=True)

        result = await orchestrator.advance(request.id)

        assert result.status == "processing"
        assert result.errors[0].message == "busy"
        assert request.jobs[1].state == "pending"

        provider.submit_error = None
        retry = await orchestrator.advance(request.id)
        assert retry.submitted_segment == 1

    async def test_unsaved_confirm_is_reported_not_raised(
        self, session, provider, store, orchestrator
    ):
        request = await make_request(session, ["completed", "pending"], provider_ids=["job_a", None])
        real_commit = store.commit

        async def flaky_commit(*, provider_job_id=None, request_id=None):
            if provider_job_id is not None:
                await session.rollback()
                raise PersistenceError(
                    "connection reset", provider_job_id=provider_job_id, request_id=request_id
                )
            await real_commit(provider_job_id=provider_job_id, request_id=request_id)

        store.commit = flaky_commit
        result = await orchestrator.advance(request.id)

        assert result.submitted_segment is None
        assert result.status == "processing"
        assert result.errors[0].segment_index == 1
        assert result.errors[0].provider_job_id == "job_1"

        reloaded = await store.get_request(request.id, refresh=True)
        staged = reloaded.jobs[1]
        assert staged.provider_job_id is None
        assert staged.submission_staged_at is not None

        # The staged intent keeps the next pass from submitting a duplicate
        store.commit = real_commit
        again = await orchestrator.advance(request.id)
        assert again.submitted_segment is None
        assert len(provider.submitted) == 1

    async def test_live_submission_intent_blocks_resubmit(self, session, provider, orchestrator):
        request = await make_request(session, ["completed", "pending"], provider_ids=["job_a", None])
        request.jobs[1].submission_staged_at = utcnow()
        await session.commit()

        result = await orchestrator.advance(request.id)

        assert provider.submitted == []
        assert result.submitted_segment is None

    async def test_expired_submission_intent_is_resubmitted(self, session, provider, orchestrator):
        request = await make_request(session, ["completed", "pending"], provider_ids=["job_a", None])
        request.jobs[1].submission_staged_at = utcnow() - timedelta(hours=1)
        await session.commit()

        result = await orchestrator.advance(request.id)

        assert result.submitted_segment == 1
        assert len(provider.submitted) == 1

    async def test_terminal_request_is_left_alone(self, session, provider, orchestrator):
        request = await make_request(
            session, ["completed"], provider_ids=["job_a"], status="completed"
        )

        result = await orchestrator.advance(request.id)

        assert result.status == "completed"
        assert provider.retrieved == []

    async def test_unknown_request(self, orchestrator):
        with pytest.raises(VideoRequestNotFoundError) as exc_info:
            await orchestrator.advance(uuid.uuid4())
        assert exc_info.value.status_code == 404

    async def test_other_owner_cannot_advance(self, session, orchestrator):
        request = await make_request(session, ["pending"])
        with pytest.raises(VideoRequestNotFoundError):
            await orchestrator.advance(request.id, "someone-else")
