"""
media/staging.py -- Save multipart uploads to a temp directory for the uploader.

Every staged file lives only for the duration of the `with` block: on exit,
success or failure, all of them are removed. Uploads are read in chunks and
rejected with 413 past max_bytes so an oversized file never lands in full.

Usage:
    with StagingArea(temp_dir, max_bytes) as staging:
        avatar_path = staging.stage(avatar)        # Path or None
        service.register(form, avatar_path, ...)
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import BinaryIO, Optional, Protocol

from core.errors import ApiError, ErrorKind

logger = logging.getLogger("userauth.media")

_CHUNK = 64 * 1024


class _Upload(Protocol):
    # Structural match for starlette.datastructures.UploadFile.
    filename: Optional[str]
    file: BinaryIO


class StagingArea:
    def __init__(self, directory: Path | str, max_bytes: int) -> None:
        self.directory = Path(directory)
        self.max_bytes = max_bytes
        self._paths: list[Path] = []

    def __enter__(self) -> StagingArea:
        self.directory.mkdir(parents=True, exist_ok=True)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def stage(self, upload: Optional[_Upload], field: str = "file") -> Optional[Path]:
        """Copy an upload into the staging directory and return its path.

        Returns None when there is no upload or the part is empty (a form
        field submitted with no file selected).
        """
        if upload is None or not upload.filename:
            return None
        target = self.directory / f"{uuid.uuid4().hex}{Path(upload.filename).suffix.lower()}"
        self._paths.append(target)
        total = 0
        with open(target, "wb") as out:
            while chunk := upload.file.read(_CHUNK):
                total += len(chunk)
                if total > self.max_bytes:
                    raise ApiError(
                        ErrorKind.PAYLOAD_TOO_LARGE,
                        f"{field} exceeds the {self.max_bytes // 1024} KB upload limit",
                    )
                out.write(chunk)
        if total == 0:
            return None
        return target

    def cleanup(self) -> None:
        for path in self._paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Could not delete staged file %s: %s", path, e)
        self._paths.clear()
