"""AI avatar video provider backed by the HeyGen API."""

from __future__ import annotations

import logging
from typing import Any, Literal

import httpx
from pydantic import BaseModel, Field, ValidationError

from reelstudio.errors import InvalidInput, NotReady, ProviderUnavailable
from reelstudio.jobs.models import Artifact, JobKind, PollOutcome, Submission
from reelstudio.providers.base import ProviderHttpClient, invalid_params, parse_body

logger = logging.getLogger(__name__)

DEFAULT_AVATAR_ID = "Daisy-inskirt-20220818"
DEFAULT_VOICE_ID = "en-US-JennyNeural"


class AvatarParams(BaseModel):
    text: str = Field(..., min_length=1)
    avatar_id: str = DEFAULT_AVATAR_ID
    talking_photo_id: str | None = None
    voice_id: str = DEFAULT_VOICE_ID
    aspect_ratio: Literal["16:9", "9:16", "1:1"] = "9:16"
    background_color: str = Field("#1a1a2e", pattern=r"^#[0-9a-fA-F]{6}$")
    test: bool = False


class _GeneratedData(BaseModel):
    video_id: str = Field(..., min_length=1)


class VideoGenerated(BaseModel):
    error: Any = None
    data: _GeneratedData | None = None


class _StatusData(BaseModel):
    id: str | None = None
    status: Literal["pending", "waiting", "processing", "completed", "failed"]
    video_url: str | None = None
    thumbnail_url: str | None = None
    duration: float | None = None
    caption_url: str | None = None
    error: Any = None


class VideoStatus(BaseModel):
    error: Any = None
    data: _StatusData | None = None


class AvatarInfo(BaseModel):
    avatar_id: str
    avatar_name: str
    gender: str | None = None
    preview_image_url: str | None = None
    preview_video_url: str | None = None


class _AvatarListData(BaseModel):
    avatars: list[AvatarInfo] = Field(default_factory=list)


class AvatarList(BaseModel):
    data: _AvatarListData


class VoiceInfo(BaseModel):
    voice_id: str
    name: str | None = None
    language: str | None = None
    gender: str | None = None
    preview_audio: str | None = None
    support_pause: bool | None = None
    emotion_support: bool | None = None


class _VoiceListData(BaseModel):
    voices: list[VoiceInfo] = Field(default_factory=list)


class VoiceList(BaseModel):
    data: _VoiceListData


class TalkingPhoto(BaseModel):
    talking_photo_id: str = Field(..., min_length=1)
    talking_photo_name: str | None = None
    preview_image_url: str | None = None


class TalkingPhotoUploaded(BaseModel):
    error: Any = None
    data: TalkingPhoto | None = None


class _TalkingPhotoListData(BaseModel):
    talking_photos: list[TalkingPhoto] = Field(default_factory=list)


class TalkingPhotoList(BaseModel):
    data: _TalkingPhotoListData


class _QuotaData(BaseModel):
    remaining_quota: float
    used_quota: float | None = None


class Quota(BaseModel):
    data: _QuotaData


def _describe(error: Any) -> str:
    """HeyGen reports errors either as a string or as ``{code, message, detail}``."""
    if isinstance(error, dict):
        parts = [str(error[key]) for key in ("code", "message", "detail") if error.get(key)]
        return " / ".join(parts) or str(error)
    return str(error)


def build_generate_request(params: AvatarParams) -> dict[str, Any]:
    """Build the ``/v2/video/generate`` payload for a single-scene video."""
    if params.talking_photo_id:
        character = {
            "type": "talking_photo",
            "talking_photo_id": params.talking_photo_id,
            "talking_style": "expressive",
        }
    else:
        character = {
            "type": "avatar",
            "avatar_id": params.avatar_id,
            "avatar_style": "normal",
        }

    return {
        "video_inputs": [
            {
                "character": character,
                "voice": {
                    "type": "text",
                    "input_text": params.text,
                    "voice_id": params.voice_id,
                    "speed": 1.0,
                },
                "background": {"type": "color", "value": params.background_color},
            }
        ],
        "aspect_ratio": params.aspect_ratio,
        "test": params.test,
    }


class AvatarProvider:
    """Generates talking-avatar videos from a script."""

    kind = JobKind.AVATAR_VIDEO

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = "https://api.heygen.com",
        max_text_chars: int = 1500,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._max_text_chars = max_text_chars
        self._http = ProviderHttpClient(
            provider="HeyGen",
            base_url=base_url,
            headers={"X-Api-Key": api_key or ""},
            timeout=timeout,
            max_retries=max_retries,
            retry_delay=retry_delay,
            transport=transport,
        )
        if not api_key:
            logger.warning("AvatarProvider: No API key found, provider unavailable")

    @property
    def name(self) -> str:
        return "heygen"

    @property
    def is_available(self) -> bool:
        return bool(self._api_key)

    def validate(self, params: dict[str, Any]) -> dict[str, Any]:
        try:
            parsed = AvatarParams.model_validate(params)
        except ValidationError as exc:
            raise invalid_params("avatar", exc) from exc

        text = parsed.text.strip()
        if not text:
            raise InvalidInput("text is empty")
        if len(text) > self._max_text_chars:
            raise InvalidInput(f"text is too long ({len(text)} chars, max {self._max_text_chars})")
        return parsed.model_copy(update={"text": text}).model_dump(exclude_none=True)

    async def submit(self, params: dict[str, Any]) -> Submission:
        request = AvatarParams.model_validate(params)
        response = await self._http.request(
            "POST",
            "/v2/video/generate",
            idempotent=False,
            json=build_generate_request(request),
        )
        body = parse_body(self._http.provider, response, VideoGenerated)
        if body.error:
            raise InvalidInput(f"HeyGen rejected the video: {_describe(body.error)}")
        if body.data is None:
            raise ProviderUnavailable(f"HeyGen returned no video id: {response.text[:500]}")

        logger.info("Started avatar video %s (%s)", body.data.video_id, request.aspect_ratio)
        return Submission(external_ref=body.data.video_id)

    async def poll(self, external_ref: str) -> PollOutcome:
        response = await self._http.request(
            "GET", "/v1/video_status.get", params={"video_id": external_ref}
        )
        body = parse_body(self._http.provider, response, VideoStatus)
        if body.data is None:
            raise ProviderUnavailable(
                f"HeyGen status for {external_ref} has no data: {_describe(body.error)}"
            )

        data = body.data
        if data.status == "failed":
            return PollOutcome.failed(_describe(data.error or "video generation failed"))
        if data.status != "completed":
            return PollOutcome.processing()
        if not data.video_url:
            raise ProviderUnavailable(f"HeyGen video {external_ref} completed without a URL")

        return PollOutcome.completed(
            {
                "video_id": data.id or external_ref,
                "video_url": data.video_url,
                "thumbnail_url": data.thumbnail_url,
                "duration": data.duration,
                "caption_url": data.caption_url,
                "artifact": {"kind": "url", "url": data.video_url, "media_type": "video/mp4"},
            }
        )

    async def fetch_artifact(self, external_ref: str, result: dict[str, Any]) -> Artifact:
        video_url = result.get("video_url")
        if not video_url:
            raise NotReady(f"avatar video {external_ref} has no URL yet")
        return Artifact(filename=f"{external_ref}.mp4", media_type="video/mp4", url=video_url)

    async def cancel(self, external_ref: str) -> bool:
        try:
            await self._http.request(
                "DELETE", "/v1/video.delete", params={"video_id": external_ref}
            )
        except ProviderUnavailable:
            logger.warning("Could not cancel avatar video %s", external_ref, exc_info=True)
            return False
        return True

    # ------------------------------------------------------------------
    # Catalog and quota (one-shot calls, not jobs)
    # ------------------------------------------------------------------

    async def list_avatars(self, limit: int = 50) -> list[AvatarInfo]:
        response = await self._http.request("GET", "/v2/avatars")
        return parse_body(self._http.provider, response, AvatarList).data.avatars[:limit]

    async def get_quota(self) -> Quota:
        response = await self._http.request("GET", "/v1/user/remaining_quota")
        return parse_body(self._http.provider, response, Quota)

    async def list_voices(self, languages: list[str] | None = None) -> list[VoiceInfo]:
        """List HeyGen voices, keeping only ``languages`` when given."""
        response = await self._http.request("GET", "/v2/voices")
        voices = parse_body(self._http.provider, response, VoiceList).data.voices
        if not languages:
            return voices
        wanted = {language.lower() for language in languages}
        return [v for v in voices if (v.language or "").lower() in wanted]

    # ------------------------------------------------------------------
    # Talking photos (custom avatars)
    # ------------------------------------------------------------------

    async def upload_talking_photo(
        self, filename: str, content: bytes, media_type: str = "image/jpeg"
    ) -> TalkingPhoto:
        response = await self._http.request(
            "POST",
            "/v1/talking_photo",
            idempotent=False,
            files={"file": (filename, content, media_type)},
        )
        body = parse_body(self._http.provider, response, TalkingPhotoUploaded)
        if body.error:
            raise InvalidInput(f"HeyGen rejected the photo: {_describe(body.error)}")
        if body.data is None:
            raise ProviderUnavailable(f"HeyGen returned no talking photo id: {response.text[:500]}")

        logger.info("Uploaded talking photo %s", body.data.talking_photo_id)
        return body.data

    async def list_talking_photos(self) -> list[TalkingPhoto]:
        response = await self._http.request("GET", "/v1/talking_photo.list")
        return parse_body(self._http.provider, response, TalkingPhotoList).data.talking_photos
