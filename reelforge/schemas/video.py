from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class VideoCreateRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    title: str | None = Field(None, max_length=255)
    model: str | None = None
    size: str | None = None
    target_duration_seconds: int | None = Field(None, gt=0, le=600)


class VideoSyncRequest(BaseModel):
    provider_job_id: str = Field(..., min_length=1)
    video_id: UUID | None = None
    prompt: str | None = None
    title: str | None = None
    model: str | None = None
    size: str | None = None
    target_duration_seconds: int | None = Field(None, gt=0, le=600)


class GenerationJobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    segment_index: int
    state: str
    duration_seconds: int
    provider_job_id: str | None
    provider_job_source: str | None
    output_url: str | None
    thumbnail_url: str | None
    error_message: str | None
    submitted_at: datetime | None
    completed_at: datetime | None


class VideoRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str | None
    prompt: str
    model: str
    size: str
    target_duration_seconds: int
    status: str
    stitch_state: str
    progress: int
    output_url: str | None
    thumbnail_url: str | None
    error_message: str | None
    jobs: list[GenerationJobResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class SegmentErrorResponse(BaseModel):
    segment_index: int
    message: str
    provider_job_id: str | None = None


class AdvanceResponse(BaseModel):
    request_id: UUID
    status: str
    stitch_state: str
    progress: int
    output_url: str | None = None
    error_message: str | None = None
    polled: int
    submitted_segment: int | None = None
    changed: bool
    errors: list[SegmentErrorResponse] = Field(default_factory=list)


class SyncResponse(BaseModel):
    request_id: UUID
    job_id: UUID
    provider_job_id: str
    status: str
    progress: int
    output_url: str | None = None
    existed: bool
    attached: bool
    created: bool
    changed: bool


class SweepErrorResponse(BaseModel):
    job_id: UUID
    provider_job_id: str | None = None
    message: str


class SweepResponse(BaseModel):
    checked: int
    updated: int
    completed: int
    failed: int
    errors: list[SweepErrorResponse] = Field(default_factory=list)
    advanced_request_ids: list[UUID] = Field(default_factory=list)
