"""Tests for the OpenAI-style video provider client (httpx MockTransport)."""

import json

import httpx
import pytest

from reelforge.exceptions import ProviderError
from reelforge.providers.generation import OpenAIVideoProvider, extract_job_id


def make_provider(handler) -> OpenAIVideoProvider:
    return OpenAIVideoProvider(
        api_key="sk-test",
        base_url="https://provider.test/v1",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


class TestExtractJobId:
    @pytest.mark.parametrize(
        "payload,expected",
        [
            ({"id": "video_1"}, "video_1"),
            ({"job_id": "video_2"}, "video_2"),
            ({"data": {"id": "video_3"}}, "video_3"),
            ({"result": {"job_id": 42}}, "42"),
            ({"data": "not-a-dict", "result": {"id": "video_5"}}, "video_5"),
            ({"status": "queued"}, None),
            ({"id": ""}, None),
        ],
    )
    def test_paths(self, payload, expected):
        assert extract_job_id(payload) == expected


class TestSubmit:
    async def test_posts_prompt_and_parses_job(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "video_abc", "status": "queued"})

        job = await make_provider(handler).submit("A fox", "sora-2", 12, "720x1280")

        assert job.id == "video_abc"
        assert job.status == "queued"
        assert seen["method"] == "POST"
        assert seen["url"] == "https://provider.test/v1/videos"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"] == {"model": "sora-2", "prompt": "A fox", "seconds": "12", "size": "720x1280"}

    async def test_nested_job_id(self):
        provider = make_provider(lambda request: httpx.Response(200, json={"data": {"id": "nested"}}))
        job = await provider.submit("A fox", "sora-2", 4, "720x1280")
        assert job.id == "nested"

    async def test_missing_job_id_is_not_retryable(self):
        provider = make_provider(lambda request: httpx.Response(200, json={"status": "queued"}))

        with pytest.raises(ProviderError) as exc_info:
            await provider.submit("A fox", "sora-2", 4, "720x1280")

        assert exc_info.value.retryable is False
        assert exc_info.value.code == "MISSING_JOB_ID"

    @pytest.mark.parametrize(
        "status_code,retryable",
        [(400, False), (401, False), (429, True), (408, True), (500, True), (503, True)],
    )
    async def test_http_errors(self, status_code, retryable):
        provider = make_provider(
            lambda request: httpx.Response(status_code, json={"error": {"message": "nope"}})
        )

        with pytest.raises(ProviderError) as exc_info:
            await provider.submit("A fox", "sora-2", 4, "720x1280")

        assert exc_info.value.retryable is retryable
        assert "nope" in exc_info.value.message
        assert exc_info.value.code == ("PROVIDER_ERROR" if retryable else "PROVIDER_REJECTED")

    async def test_transport_failure_is_retryable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProviderError) as exc_info:
            await make_provider(handler).submit("A fox", "sora-2", 4, "720x1280")
        assert exc_info.value.retryable is True

    async def test_non_json_body(self):
        provider = make_provider(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(ProviderError) as exc_info:
            await provider.submit("A fox", "sora-2", 4, "720x1280")
        assert exc_info.value.retryable is True


class TestRetrieve:
    async def test_completed_without_url_uses_content_endpoint(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/videos/video_abc"
            return httpx.Response(200, json={"id": "video_abc", "status": "completed"})

        job = await make_provider(handler).retrieve("video_abc")

        assert job.status == "completed"
        assert job.url == "https://provider.test/v1/videos/video_abc/content"
        assert job.thumbnail_url == "https://provider.test/v1/videos/video_abc/content?variant=thumbnail"

    async def test_explicit_urls_are_kept(self):
        provider = make_provider(
            lambda request: httpx.Response(
                200,
                json={
                    "id": "v",
                    "status": "completed",
                    "video_url": "https://cdn.test/v.mp4",
                    "thumbnail_url": "https://cdn.test/v.jpg",
                },
            )
        )
        job = await provider.retrieve("v")
        assert job.url == "https://cdn.test/v.mp4"
        assert job.thumbnail_url == "https://cdn.test/v.jpg"

    async def test_failure_message(self):
        provider = make_provider(
            lambda request: httpx.Response(
                200, json={"id": "v", "status": "failed", "error": {"message": "moderation"}}
            )
        )
        job = await provider.retrieve("v")
        assert job.status == "failed"
        assert job.error == "moderation"

    async def test_missing_id_falls_back_to_requested(self):
        provider = make_provider(lambda request: httpx.Response(200, json={"status": "in_progress"}))
        job = await provider.retrieve("video_xyz")
        assert job.id == "video_xyz"

    async def test_not_found_carries_job_id(self):
        provider = make_provider(lambda request: httpx.Response(404, json={"error": "unknown video"}))

        with pytest.raises(ProviderError) as exc_info:
            await provider.retrieve("video_gone")

        assert exc_info.value.provider_job_id == "video_gone"
        assert exc_info.value.retryable is False
