"""Response envelope shared by every endpoint.

Success carries ``data``; failure carries ``error``. ``meta.warnings`` holds
non-fatal problems such as per-segment poll failures or a placeholder render.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ResponseMeta(BaseModel):
    api_version: str = "1.0"
    processing_time_ms: int
    timestamp: datetime
    warnings: list[str] = Field(default_factory=list)


class ErrorLocation(BaseModel):
    """Which record an error concerns; unset fields are omitted by clients."""

    field: str | None = None
    video_id: str | None = None
    render_id: str | None = None
    segment_index: int | None = None
    provider_job_id: str | None = None


class SuggestedAction(BaseModel):
    action: str
    endpoint: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)


class ErrorInfo(BaseModel):
    code: str
    message: str
    retryable: bool = False
    location: ErrorLocation | None = None
    suggested_fix: str | None = None
    suggested_actions: list[SuggestedAction] = Field(default_factory=list)
    # Every violation when several were collected (timeline validation)
    details: list[str] = Field(default_factory=list)


class EnvelopeResponse(BaseModel):
    request_id: str = Field(description="Per-call id, also logged")
    data: Any | None = None
    error: ErrorInfo | None = None
    meta: ResponseMeta
