"""Dubbing provider backed by the ElevenLabs dubbing API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Literal

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from reelstudio.errors import InvalidInput, NotReady, ProviderUnavailable
from reelstudio.jobs.models import Artifact, JobKind, PollOutcome, Submission
from reelstudio.providers.base import ProviderHttpClient, invalid_params, parse_body
from reelstudio.uploads import UPLOAD_ID_PATTERN, StoredUpload, UploadStore

logger = logging.getLogger(__name__)

DEFAULT_TTS_VOICE = "EXAVITQu4vr4xnSDxMaL"
DEFAULT_TTS_MODEL = "eleven_multilingual_v2"


class DubbingParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source_url: str | None = None
    upload_id: str | None = Field(None, pattern=UPLOAD_ID_PATTERN)
    target_lang: str = Field("en", min_length=2, max_length=8)
    source_lang: str = Field("ru", min_length=2, max_length=8)
    num_speakers: int | None = Field(None, ge=1, le=10)
    watermark: bool = False
    name: str | None = Field(None, max_length=200)

    @model_validator(mode="after")
    def _one_source(self) -> DubbingParams:
        if bool(self.source_url) == bool(self.upload_id):
            raise ValueError("exactly one of source_url or upload_id is required")
        return self


class DubbingCreated(BaseModel):
    dubbing_id: str = Field(..., min_length=1)
    expected_duration_sec: float | None = None


class DubbingStatus(BaseModel):
    dubbing_id: str
    status: Literal["dubbing", "dubbed", "failed"]
    target_languages: list[str] = Field(default_factory=list)
    error: str | None = None


class VoiceInfo(BaseModel):
    voice_id: str
    name: str
    category: str | None = None
    labels: dict[str, str] | None = None


class VoiceList(BaseModel):
    voices: list[VoiceInfo] = Field(default_factory=list)


class ClonedVoice(BaseModel):
    voice_id: str = Field(..., min_length=1)
    name: str | None = None


class Subscription(BaseModel):
    character_count: int
    character_limit: int
    can_use_instant_voice_cloning: bool = False


class DubbingProvider:
    """Translates the audio track of a video with the speaker's voice."""

    kind = JobKind.DUBBING

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = "https://api.elevenlabs.io/v1",
        uploads: UploadStore | None = None,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._uploads = uploads
        self._http = ProviderHttpClient(
            provider="ElevenLabs",
            base_url=base_url,
            headers={"xi-api-key": api_key or ""},
            timeout=timeout,
            max_retries=max_retries,
            retry_delay=retry_delay,
            transport=transport,
        )
        if not api_key:
            logger.warning("DubbingProvider: No API key found, provider unavailable")

    @property
    def name(self) -> str:
        return "elevenlabs"

    @property
    def is_available(self) -> bool:
        return bool(self._api_key)

    def validate(self, params: dict[str, Any]) -> dict[str, Any]:
        try:
            parsed = DubbingParams.model_validate(params)
        except ValidationError as exc:
            raise invalid_params("dubbing", exc) from exc

        if parsed.source_url and not parsed.source_url.startswith(("http://", "https://")):
            raise InvalidInput(f"source_url must be an http(s) URL: {parsed.source_url}")
        if parsed.upload_id:
            self._resolve_upload(parsed.upload_id)
        if parsed.source_lang == parsed.target_lang:
            raise InvalidInput("source_lang and target_lang must differ")
        return parsed.model_dump(exclude_none=True)

    def _resolve_upload(self, upload_id: str) -> StoredUpload:
        if self._uploads is None:
            raise InvalidInput("uploads are not enabled")
        return self._uploads.resolve(upload_id)

    async def submit(self, params: dict[str, Any]) -> Submission:
        request = DubbingParams.model_validate(params)
        data: dict[str, str] = {
            "target_lang": request.target_lang,
            "source_lang": request.source_lang,
            "watermark": str(request.watermark).lower(),
        }
        if request.num_speakers:
            data["num_speakers"] = str(request.num_speakers)
        if request.name:
            data["name"] = request.name

        if request.upload_id:
            upload = self._resolve_upload(request.upload_id)
            content = await asyncio.to_thread(upload.path.read_bytes)
            files = {"file": (upload.filename, content, upload.media_type)}
        else:
            # A plain form field, sent as multipart like the file upload
            files = {"source_url": (None, request.source_url)}

        response = await self._http.request(
            "POST", "/dubbing", idempotent=False, data=data, files=files
        )
        created = parse_body(self._http.provider, response, DubbingCreated)
        logger.info(
            "Started dubbing %s (%s -> %s, expected %.0fs)",
            created.dubbing_id,
            request.source_lang,
            request.target_lang,
            created.expected_duration_sec or 0,
        )
        return Submission(external_ref=created.dubbing_id)

    async def poll(self, external_ref: str) -> PollOutcome:
        response = await self._http.request("GET", f"/dubbing/{external_ref}")
        status = parse_body(self._http.provider, response, DubbingStatus)

        if status.status == "dubbing":
            return PollOutcome.processing()
        if status.status == "failed":
            return PollOutcome.failed(status.error or "dubbing failed without an error message")

        if not status.target_languages:
            raise ProviderUnavailable(f"dubbing {external_ref} finished without target languages")
        target_lang = status.target_languages[0]
        return PollOutcome.completed(
            {
                "dubbing_id": status.dubbing_id,
                "target_lang": target_lang,
                "target_languages": status.target_languages,
                "artifact": {
                    "kind": "download",
                    "path": f"/dubbing/{status.dubbing_id}/audio/{target_lang}",
                    "media_type": "audio/mpeg",
                },
            }
        )

    async def fetch_artifact(self, external_ref: str, result: dict[str, Any]) -> Artifact:
        target_lang = result.get("target_lang")
        if not target_lang:
            raise NotReady(f"dubbing {external_ref} has no dubbed language yet")

        response = await self._http.request("GET", f"/dubbing/{external_ref}/audio/{target_lang}")
        return Artifact(
            filename=f"dubbed_{target_lang}.mp3",
            media_type="audio/mpeg",
            content=response.content,
        )

    async def cancel(self, external_ref: str) -> bool:
        try:
            await self._http.request("DELETE", f"/dubbing/{external_ref}")
        except ProviderUnavailable:
            logger.warning("Could not cancel dubbing %s", external_ref, exc_info=True)
            return False
        return True

    # ------------------------------------------------------------------
    # Catalog and quota (one-shot calls, not jobs)
    # ------------------------------------------------------------------

    async def list_voices(self) -> list[VoiceInfo]:
        response = await self._http.request("GET", "/voices")
        return parse_body(self._http.provider, response, VoiceList).voices

    async def get_subscription(self) -> Subscription:
        response = await self._http.request("GET", "/user/subscription")
        return parse_body(self._http.provider, response, Subscription)

    # ------------------------------------------------------------------
    # Voice cloning and speech synthesis (one-shot calls, not jobs)
    # ------------------------------------------------------------------

    async def clone_voice(
        self,
        name: str,
        sample: tuple[str, bytes, str],
        description: str | None = None,
    ) -> ClonedVoice:
        """Create an instant voice clone from one audio sample.

        ``sample`` is ``(filename, content, media_type)``.
        """
        data = {"name": name}
        if description:
            data["description"] = description
        response = await self._http.request(
            "POST", "/voices/add", idempotent=False, data=data, files={"files": sample}
        )
        voice = parse_body(self._http.provider, response, ClonedVoice)
        logger.info("Cloned voice %s (%s)", voice.voice_id, name)
        return ClonedVoice(voice_id=voice.voice_id, name=voice.name or name)

    async def delete_voice(self, voice_id: str) -> None:
        await self._http.request("DELETE", f"/voices/{voice_id}")

    async def text_to_speech(
        self,
        text: str,
        voice_id: str = DEFAULT_TTS_VOICE,
        model_id: str = DEFAULT_TTS_MODEL,
    ) -> bytes:
        """Synthesize ``text`` and return MP3 audio."""
        payload = {
            "text": text,
            "model_id": model_id,
            "voice_settings": {
                "stability": 0.5,
                "similarity_boost": 0.75,
                "style": 0.5,
                "use_speaker_boost": True,
            },
        }
        response = await self._http.request(
            "POST",
            f"/text-to-speech/{voice_id}",
            idempotent=False,
            json=payload,
            headers={"Accept": "audio/mpeg"},
        )
        if not response.content:
            raise ProviderUnavailable(f"{self._http.provider} returned empty audio")
        return response.content
