"""Generation provider client.

The rest of the system only sees ``GenerationProvider``: submit a prompt,
read a job back. ``OpenAIVideoProvider`` talks to an OpenAI-style
``/videos`` endpoint over httpx.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from reelforge.config import get_settings
from reelforge.exceptions import ProviderError

logger = logging.getLogger(__name__)

# Response paths that may carry the job id, in lookup order
JOB_ID_PATHS: tuple[tuple[str, ...], ...] = (
    ("id",),
    ("job_id",),
    ("data", "id"),
    ("data", "job_id"),
    ("result", "id"),
    ("result", "job_id"),
)

RETRYABLE_STATUS_CODES = frozenset({408, 409, 425, 429})


@dataclass
class ProviderJob:
    """A provider-side job as last observed."""

    id: str
    status: str
    url: str | None = None
    thumbnail_url: str | None = None
    error: str | None = None


class GenerationProvider(ABC):
    name: str = "provider"

    @abstractmethod
    async def submit(
        self, prompt: str, model: str, duration_seconds: int, size: str
    ) -> ProviderJob:
        """Start a generation job. Raises ProviderError."""

    @abstractmethod
    async def retrieve(self, provider_job_id: str) -> ProviderJob:
        """Read a job's current status. Raises ProviderError."""


def extract_job_id(payload: dict[str, Any]) -> str | None:
    for path in JOB_ID_PATHS:
        node: Any = payload
        for key in path:
            if not isinstance(node, dict):
                node = None
                break
            node = node.get(key)
        if isinstance(node, (str, int)) and str(node):
            return str(node)
    return None


def _is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code in RETRYABLE_STATUS_CODES


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500]
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error)
    if error:
        return str(error)
    return response.text[:500]


class OpenAIVideoProvider(GenerationProvider):
    """Client for an OpenAI-compatible video generation API."""

    name = "sora"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.base_url = (base_url or settings.provider_base_url).rstrip("/")
        self.timeout = timeout or settings.provider_timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _request(
        self, method: str, path: str, *, provider_job_id: str | None = None, **kwargs: Any
    ) -> dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderError(
                f"Provider timed out: {e}", retryable=True, provider_job_id=provider_job_id
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(
                f"Provider request failed: {e}", retryable=True, provider_job_id=provider_job_id
            ) from e

        if response.status_code >= 400:
            raise ProviderError(
                f"Provider returned {response.status_code}: {_error_text(response)}",
                retryable=_is_retryable_status(response.status_code),
                provider_job_id=provider_job_id,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError(
                "Provider returned a non-JSON body", retryable=True, provider_job_id=provider_job_id
            ) from e
        if not isinstance(payload, dict):
            raise ProviderError(
                "Provider returned an unexpected body", retryable=True, provider_job_id=provider_job_id
            )
        return payload

    def _to_job(self, payload: dict[str, Any], fallback_id: str | None = None) -> ProviderJob:
        job_id = extract_job_id(payload) or fallback_id
        if not job_id:
            raise ProviderError(
                "Provider response is missing a job id", retryable=False, code="MISSING_JOB_ID"
            )
        status = str(payload.get("status") or "queued")

        url = payload.get("url") or payload.get("video_url")
        thumbnail_url = payload.get("thumbnail_url")
        if status in ("completed", "succeeded") and not url:
            url = f"{self.base_url}/videos/{job_id}/content"
            thumbnail_url = thumbnail_url or f"{url}?variant=thumbnail"

        error = payload.get("error")
        if isinstance(error, dict):
            error = error.get("message") or str(error)

        return ProviderJob(
            id=job_id,
            status=status,
            url=url,
            thumbnail_url=thumbnail_url,
            error=str(error) if error else None,
        )

    async def submit(
        self, prompt: str, model: str, duration_seconds: int, size: str
    ) -> ProviderJob:
        body = {
            "model": model,
            "prompt": prompt,
            "seconds": str(duration_seconds),
            "size": size,
        }
        payload = await self._request("POST", "/videos", json=body)
        job = self._to_job(payload)
        logger.info(f"[PROVIDER] Submitted job {job.id} ({model}, {duration_seconds}s, {size})")
        return job

    async def retrieve(self, provider_job_id: str) -> ProviderJob:
        payload = await self._request(
            "GET", f"/videos/{provider_job_id}", provider_job_id=provider_job_id
        )
        return self._to_job(payload, fallback_id=provider_job_id)


def get_provider() -> GenerationProvider:
    return OpenAIVideoProvider()
