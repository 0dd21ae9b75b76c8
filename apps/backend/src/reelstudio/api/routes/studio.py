"""Provider catalog, quota and one-shot studio tools.

These are direct calls to the dubbing and avatar providers; they do
not create jobs.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile

from reelstudio.api.deps import get_current_user_id, get_registry
from reelstudio.api.schemas import (
    AvatarItem,
    AvatarQuota,
    AvatarVoiceItem,
    ClonedVoiceResponse,
    DubbingQuota,
    QuotaResponse,
    SpeechRequest,
    TalkingPhotoItem,
    VoiceItem,
    error_responses,
)
from reelstudio.config import settings
from reelstudio.errors import InvalidInput, ProviderUnavailable
from reelstudio.jobs.models import JobKind
from reelstudio.providers.avatar import AvatarProvider
from reelstudio.providers.dubbing import DubbingProvider
from reelstudio.providers.registry import ProviderRegistry
from reelstudio.uploads import read_limited, safe_filename

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/studio",
    tags=["studio"],
    dependencies=[Depends(get_current_user_id)],
    responses=error_responses(401, 422, 502, 503),
)


def _dubbing(registry: ProviderRegistry) -> DubbingProvider | None:
    adapter = registry.get(JobKind.DUBBING)
    if isinstance(adapter, DubbingProvider) and adapter.is_available:
        return adapter
    return None


def _avatar(registry: ProviderRegistry) -> AvatarProvider | None:
    adapter = registry.get(JobKind.AVATAR_VIDEO)
    if isinstance(adapter, AvatarProvider) and adapter.is_available:
        return adapter
    return None


@router.get("/voices", response_model=list[VoiceItem])
async def list_voices(registry: ProviderRegistry = Depends(get_registry)) -> list[VoiceItem]:
    provider = _dubbing(registry)
    if provider is None:
        raise HTTPException(status_code=503, detail="dubbing provider is not available")
    voices = await provider.list_voices()
    return [VoiceItem(**voice.model_dump()) for voice in voices]


@router.get("/avatars", response_model=list[AvatarItem])
async def list_avatars(registry: ProviderRegistry = Depends(get_registry)) -> list[AvatarItem]:
    provider = _avatar(registry)
    if provider is None:
        raise HTTPException(status_code=503, detail="avatar provider is not available")
    avatars = await provider.list_avatars(limit=50)
    return [
        AvatarItem(
            avatar_id=avatar.avatar_id,
            avatar_name=avatar.avatar_name,
            gender=avatar.gender,
            preview_image_url=avatar.preview_image_url,
        )
        for avatar in avatars
    ]


@router.get("/quota", response_model=QuotaResponse)
async def get_quota(registry: ProviderRegistry = Depends(get_registry)) -> QuotaResponse:
    """Combined usage of the dubbing and avatar providers.

    A provider that is not configured or fails to answer is reported as
    ``null`` instead of failing the whole response.
    """
    response = QuotaResponse()

    dubbing = _dubbing(registry)
    if dubbing is not None:
        try:
            sub = await dubbing.get_subscription()
        except ProviderUnavailable as exc:
            logger.warning("Dubbing quota unavailable: %s", exc)
        else:
            response.elevenlabs = DubbingQuota(
                character_count=sub.character_count,
                character_limit=sub.character_limit,
                characters_remaining=max(sub.character_limit - sub.character_count, 0),
                can_use_instant_voice_cloning=sub.can_use_instant_voice_cloning,
            )

    avatar = _avatar(registry)
    if avatar is not None:
        try:
            quota = await avatar.get_quota()
        except ProviderUnavailable as exc:
            logger.warning("Avatar quota unavailable: %s", exc)
        else:
            response.heygen = AvatarQuota(
                remaining_quota=quota.data.remaining_quota,
                used_quota=quota.data.used_quota,
            )

    return response


# ------------------------------------------------------------------
# Voice cloning and text-to-speech
# ------------------------------------------------------------------


@router.post("/voices/clone", response_model=ClonedVoiceResponse, status_code=201)
async def clone_voice(
    name: str = Form(..., min_length=1, max_length=100),
    description: str | None = Form(None, max_length=500),
    audio: UploadFile = File(...),
    registry: ProviderRegistry = Depends(get_registry),
) -> ClonedVoiceResponse:
    """Create an instant voice clone from an audio sample."""
    provider = _dubbing(registry)
    if provider is None:
        raise HTTPException(status_code=503, detail="dubbing provider is not available")
    media_type = audio.content_type or ""
    if not media_type.startswith("audio/"):
        raise InvalidInput(f"voice sample must be audio, got {media_type or 'unknown'}")

    content = await read_limited(audio, settings.max_voice_sample_mb * 1024 * 1024)
    voice = await provider.clone_voice(
        name.strip(),
        (safe_filename(audio.filename, "sample.mp3"), content, media_type),
        description=description,
    )
    return ClonedVoiceResponse(voice_id=voice.voice_id, name=voice.name or name)


@router.delete("/voices/{voice_id}", status_code=204)
async def delete_voice(
    voice_id: str,
    registry: ProviderRegistry = Depends(get_registry),
) -> Response:
    provider = _dubbing(registry)
    if provider is None:
        raise HTTPException(status_code=503, detail="dubbing provider is not available")
    await provider.delete_voice(voice_id)
    return Response(status_code=204)


@router.post("/tts", response_class=Response)
async def text_to_speech(
    req: SpeechRequest,
    registry: ProviderRegistry = Depends(get_registry),
) -> Response:
    """Synthesize speech and return it as an MP3 attachment."""
    provider = _dubbing(registry)
    if provider is None:
        raise HTTPException(status_code=503, detail="dubbing provider is not available")
    text = req.text.strip()
    if not text:
        raise InvalidInput("text is empty")
    if len(text) > settings.max_tts_chars:
        raise InvalidInput(f"text is too long ({len(text)} chars, max {settings.max_tts_chars})")

    if req.voice_id:
        audio = await provider.text_to_speech(text, voice_id=req.voice_id)
    else:
        audio = await provider.text_to_speech(text)
    return Response(
        content=audio,
        media_type="audio/mpeg",
        headers={"Content-Disposition": 'attachment; filename="speech.mp3"'},
    )


# ------------------------------------------------------------------
# Avatar voices and talking photos
# ------------------------------------------------------------------


@router.get("/avatar-voices", response_model=list[AvatarVoiceItem])
async def list_avatar_voices(
    language: list[str] = Query(["English", "Russian"]),
    registry: ProviderRegistry = Depends(get_registry),
) -> list[AvatarVoiceItem]:
    provider = _avatar(registry)
    if provider is None:
        raise HTTPException(status_code=503, detail="avatar provider is not available")
    voices = await provider.list_voices(languages=language)
    return [AvatarVoiceItem(**voice.model_dump()) for voice in voices]


@router.get("/talking-photos", response_model=list[TalkingPhotoItem])
async def list_talking_photos(
    registry: ProviderRegistry = Depends(get_registry),
) -> list[TalkingPhotoItem]:
    provider = _avatar(registry)
    if provider is None:
        raise HTTPException(status_code=503, detail="avatar provider is not available")
    photos = await provider.list_talking_photos()
    return [TalkingPhotoItem(**photo.model_dump()) for photo in photos]


@router.post("/talking-photos", response_model=TalkingPhotoItem, status_code=201)
async def upload_talking_photo(
    photo: UploadFile = File(...),
    registry: ProviderRegistry = Depends(get_registry),
) -> TalkingPhotoItem:
    """Register a portrait as a talking photo usable in avatar video jobs."""
    provider = _avatar(registry)
    if provider is None:
        raise HTTPException(status_code=503, detail="avatar provider is not available")
    media_type = photo.content_type or ""
    if not media_type.startswith("image/"):
        raise InvalidInput(f"photo must be an image, got {media_type or 'unknown'}")

    content = await read_limited(photo, settings.max_photo_mb * 1024 * 1024)
    uploaded = await provider.upload_talking_photo(
        safe_filename(photo.filename, "photo.jpg"), content, media_type
    )
    return TalkingPhotoItem(**uploaded.model_dump())
