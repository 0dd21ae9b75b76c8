"""Request and response schemas for the Reel Studio API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from reelstudio.jobs.models import Job, JobKind
from reelstudio.jobs.notifier import JobStatusView


# ------------------------------------------------------------------
# Job requests
# ------------------------------------------------------------------


class JobCreateRequest(BaseModel):
    kind: JobKind = Field(..., description="Job kind (video_analysis/dubbing/avatar_video)")
    params: dict[str, Any] = Field(default_factory=dict, description="Kind-specific parameters")


# ------------------------------------------------------------------
# Job responses
# ------------------------------------------------------------------


class JobCreateResponse(BaseModel):
    job_id: str
    status: str
    kind: str


class JobStatusResponse(BaseModel):
    job_id: str
    status: str
    result: dict[str, Any] | None = None
    error: str | None = None

    @classmethod
    def from_view(cls, view: JobStatusView) -> JobStatusResponse:
        return cls(
            job_id=view.job_id,
            status=view.status.value,
            result=view.result,
            error=view.error,
        )


class JobListItem(BaseModel):
    job_id: str
    kind: str
    status: str
    created_at: datetime
    updated_at: datetime


class JobDetailResponse(BaseModel):
    job_id: str
    kind: str
    status: str
    params: dict[str, Any] = Field(default_factory=dict)
    result: dict[str, Any] | None = None
    error: str | None = None
    poll_attempts: int = 0
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_job(cls, job: Job, view: JobStatusView) -> JobDetailResponse:
        return cls(
            job_id=job.id,
            kind=job.kind.value,
            status=job.status.value,
            params=job.params,
            result=view.result,
            error=view.error,
            poll_attempts=job.poll_attempts,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class ErrorResponse(BaseModel):
    error: str


def error_responses(*status_codes: int) -> dict[int | str, dict[str, Any]]:
    """OpenAPI ``responses=`` entries documenting the ``{"error": ...}`` body."""
    return {code: {"model": ErrorResponse} for code in status_codes}


# ------------------------------------------------------------------
# Studio catalog
# ------------------------------------------------------------------


class VoiceItem(BaseModel):
    voice_id: str
    name: str
    category: str | None = None
    labels: dict[str, str] | None = None


class AvatarItem(BaseModel):
    avatar_id: str
    avatar_name: str
    gender: str | None = None
    preview_image_url: str | None = None


class DubbingQuota(BaseModel):
    character_count: int
    character_limit: int
    characters_remaining: int
    can_use_instant_voice_cloning: bool


class AvatarQuota(BaseModel):
    remaining_quota: float
    used_quota: float | None = None


class QuotaResponse(BaseModel):
    elevenlabs: DubbingQuota | None = None
    heygen: AvatarQuota | None = None


# ------------------------------------------------------------------
# Uploads and one-shot studio tools
# ------------------------------------------------------------------


class UploadResponse(BaseModel):
    upload_id: str
    filename: str
    media_type: str
    size_bytes: int


class ClonedVoiceResponse(BaseModel):
    voice_id: str
    name: str


class SpeechRequest(BaseModel):
    text: str = Field(..., min_length=1)
    voice_id: str | None = Field(None, min_length=1, max_length=64)


class AvatarVoiceItem(BaseModel):
    voice_id: str
    name: str | None = None
    language: str | None = None
    gender: str | None = None
    preview_audio: str | None = None
    support_pause: bool | None = None
    emotion_support: bool | None = None


class TalkingPhotoItem(BaseModel):
    talking_photo_id: str
    talking_photo_name: str | None = None
    preview_image_url: str | None = None
