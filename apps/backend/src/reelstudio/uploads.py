"""Client uploads kept on disk until a job hands them to a provider.

Each upload lives in ``<upload_dir>/<upload_id>/`` next to an ``.owner``
file naming the user who sent it. Jobs refer to uploads by id only, so a
caller can never point a provider at an arbitrary server path.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import re
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path

from fastapi import UploadFile

from reelstudio.errors import InvalidInput

logger = logging.getLogger(__name__)

UPLOAD_ID_PATTERN = r"^[0-9a-f]{32}$"

_CHUNK_SIZE = 1024 * 1024
_OWNER_FILE = ".owner"
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class StoredUpload:
    upload_id: str
    filename: str
    media_type: str
    size_bytes: int
    path: Path


def safe_filename(filename: str | None, default: str = "upload") -> str:
    """Reduce a client-supplied filename to a plain basename."""
    name = Path(filename or "").name
    name = _UNSAFE_CHARS.sub("_", name).strip("._")
    return name[:120] or default


async def read_limited(upload: UploadFile, max_bytes: int) -> bytes:
    """Read a whole upload into memory, refusing anything over ``max_bytes``."""
    chunks: list[bytes] = []
    total = 0
    while chunk := await upload.read(_CHUNK_SIZE):
        total += len(chunk)
        if total > max_bytes:
            raise InvalidInput(f"file is too large (max {max_bytes // (1024 * 1024)} MB)")
        chunks.append(chunk)
    if not total:
        raise InvalidInput("file is empty")
    return b"".join(chunks)


class UploadStore:
    """Saves, resolves and removes uploaded media files."""

    def __init__(
        self,
        root: Path,
        max_upload_mb: int = 100,
        allowed_types: tuple[str, ...] = ("video/", "audio/"),
    ) -> None:
        self.root = Path(root)
        self.max_bytes = max_upload_mb * 1024 * 1024
        self._allowed_types = allowed_types

    async def save(self, owner_id: str, upload: UploadFile) -> StoredUpload:
        """Stream ``upload`` to disk in chunks.

        Raises:
            InvalidInput: Wrong media type, empty file or over the size limit.
        """
        media_type = upload.content_type or ""
        if not media_type.startswith(self._allowed_types):
            raise InvalidInput(f"unsupported media type: {media_type or 'unknown'}")

        upload_id = uuid.uuid4().hex
        upload_dir = self.root / upload_id
        filename = safe_filename(upload.filename)
        path = upload_dir / filename
        await asyncio.to_thread(upload_dir.mkdir, parents=True, exist_ok=True)

        total = 0
        try:
            with path.open("wb") as dst:
                while chunk := await upload.read(_CHUNK_SIZE):
                    total += len(chunk)
                    if total > self.max_bytes:
                        raise InvalidInput(
                            f"file is too large (max {self.max_bytes // (1024 * 1024)} MB)"
                        )
                    await asyncio.to_thread(dst.write, chunk)
            if not total:
                raise InvalidInput("file is empty")
            await asyncio.to_thread((upload_dir / _OWNER_FILE).write_text, owner_id, "utf-8")
        except BaseException:
            await asyncio.to_thread(shutil.rmtree, upload_dir, True)
            raise

        logger.info("Stored upload %s (%s, %d bytes)", upload_id, filename, total)
        return StoredUpload(upload_id, filename, media_type, total, path)

    def resolve(self, upload_id: str, owner_id: str | None = None) -> StoredUpload:
        """Find a stored upload, optionally requiring that ``owner_id`` sent it.

        Raises:
            InvalidInput: Unknown id or another user's upload. The message
                is the same in both cases.
        """
        if not re.match(UPLOAD_ID_PATTERN, upload_id or ""):
            raise InvalidInput("upload not found")
        upload_dir = self.root / upload_id
        owner_file = upload_dir / _OWNER_FILE
        if not owner_file.is_file():
            raise InvalidInput("upload not found")
        if owner_id is not None and owner_file.read_text("utf-8") != owner_id:
            raise InvalidInput("upload not found")

        files = [p for p in upload_dir.iterdir() if p.is_file() and p.name != _OWNER_FILE]
        if not files:
            raise InvalidInput("upload not found")
        path = files[0]
        media_type = mimetypes.guess_type(path.name)[0] or "video/mp4"
        return StoredUpload(upload_id, path.name, media_type, path.stat().st_size, path)

    def delete(self, upload_id: str) -> bool:
        if not re.match(UPLOAD_ID_PATTERN, upload_id or ""):
            return False
        upload_dir = self.root / upload_id
        if not upload_dir.is_dir():
            return False
        shutil.rmtree(upload_dir, ignore_errors=True)
        return True
