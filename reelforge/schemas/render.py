from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CaptionCueSchema(BaseModel):
    text: str
    start_time: float = Field(..., ge=0)
    end_time: float = Field(..., gt=0)

    @model_validator(mode="after")
    def check_window(self) -> "CaptionCueSchema":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class LoopRenderCreateRequest(BaseModel):
    style: str = Field(..., min_length=1, max_length=100)
    aspect_ratio: str = Field("9:16", pattern=r"^(9:16|16:9|1:1)$")
    target_duration_seconds: float = Field(..., gt=0, le=600)
    title: str | None = Field(None, max_length=255)
    audio_url: str | None = None
    captions: list[CaptionCueSchema] = Field(default_factory=list)


class LoopRenderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str | None
    style: str
    aspect_ratio: str
    target_duration_seconds: float
    audio_url: str | None
    render_status: str
    clip_ids: list[str] = Field(default_factory=list)
    output_url: str | None
    is_placeholder: bool
    render_error: str | None
    render_started_at: datetime | None
    render_completed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class RenderOutcomeResponse(BaseModel):
    render_id: UUID
    status: str
    output_url: str | None = None
    is_placeholder: bool = False
    clip_ids: list[str] = Field(default_factory=list)
    segment_count: int = 0
    error: str | None = None
