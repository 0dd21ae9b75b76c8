"""Media upload endpoints.

Dubbing jobs reference uploaded media by ``upload_id`` instead of a path.
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile

from reelstudio.api.deps import get_current_user_id, get_uploads
from reelstudio.api.schemas import UploadResponse, error_responses
from reelstudio.errors import InvalidInput
from reelstudio.uploads import UploadStore

router = APIRouter(
    prefix="/api/v1/uploads",
    tags=["uploads"],
    responses=error_responses(401, 422),
)


@router.post("", response_model=UploadResponse, status_code=201)
async def upload_media(
    file: UploadFile = File(...),
    user_id: str = Depends(get_current_user_id),
    uploads: UploadStore = Depends(get_uploads),
) -> UploadResponse:
    """Store a video or audio file for a later dubbing job."""
    stored = await uploads.save(user_id, file)
    return UploadResponse(
        upload_id=stored.upload_id,
        filename=stored.filename,
        media_type=stored.media_type,
        size_bytes=stored.size_bytes,
    )


@router.delete("/{upload_id}", status_code=204, responses=error_responses(404))
async def delete_upload(
    upload_id: str,
    user_id: str = Depends(get_current_user_id),
    uploads: UploadStore = Depends(get_uploads),
) -> Response:
    try:
        await asyncio.to_thread(uploads.resolve, upload_id, user_id)
    except InvalidInput as exc:
        raise HTTPException(status_code=404, detail="Upload not found") from exc
    await asyncio.to_thread(uploads.delete, upload_id)
    return Response(status_code=204)
