"""
Uploaded File Store

Files are uploaded by the request layer and referenced in the database by a
relative URL such as "/uploads/signed-1700000000-42.pdf". The cleanup job is
the only other component allowed to delete them.

Filesystem calls are blocking, so they run in the default thread pool.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

_LEADING_SLASHES = re.compile(r"^/+")
_UPLOADS_PREFIX = re.compile(r"^uploads/+")


class UnsafeFilePathError(ValueError):
    """Raised when a stored reference resolves outside the upload directory."""


class FileStore(Protocol):
    def resolve(self, file_ref: str) -> Path: ...

    async def exists(self, path: Path) -> bool: ...

    async def delete(self, path: Path) -> None: ...

    async def is_available(self) -> bool: ...


class LocalFileStore:
    """Files kept under a single directory on local disk."""

    def __init__(self, upload_dir: str | Path):
        self.upload_dir = Path(upload_dir).resolve()

    def resolve(self, file_ref: str) -> Path:
        """
        Build the absolute path for a stored file reference.

        Leading slashes and an "uploads/" prefix are stripped before joining
        onto the upload directory.

        Raises:
            UnsafeFilePathError: If the reference points outside upload_dir
        """
        clean = _UPLOADS_PREFIX.sub("", _LEADING_SLASHES.sub("", file_ref.strip()))
        if not clean:
            raise UnsafeFilePathError(f"Empty file reference: {file_ref!r}")

        path = (self.upload_dir / clean).resolve()
        if not path.is_relative_to(self.upload_dir):
            raise UnsafeFilePathError(f"File reference escapes upload directory: {file_ref!r}")
        return path

    async def exists(self, path: Path) -> bool:
        return await asyncio.to_thread(path.exists)

    async def delete(self, path: Path) -> None:
        """
        Delete a file.

        Raises:
            FileNotFoundError: If the file vanished since the last check
            OSError: On permission or I/O errors
        """
        await asyncio.to_thread(path.unlink)

    async def is_available(self) -> bool:
        return await asyncio.to_thread(self.upload_dir.is_dir)
