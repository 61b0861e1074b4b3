"""
media/uploader.py -- The media hosting collaborator.

An uploader takes a local file (already staged by media/staging.py) and
returns the public URL it is reachable at, or None when the upload failed.
Failures are logged and reported as None rather than raised; the session
service decides whether a missing URL is fatal (avatar) or not (cover image).

Two implementations:
  LocalMediaUploader -- copies into a directory the app serves as static files.
  HttpMediaUploader  -- multipart POST to an external image host. The reply
                        must be JSON carrying "secure_url" or "url".

build_uploader() picks one from Settings.

Layer rule: imports from core/ only.
"""

from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Protocol

import requests

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("userauth.media")


class MediaUploader(Protocol):
    def upload(self, path: Optional[Path]) -> Optional[str]: ...


class LocalMediaUploader:
    """Store files under `directory` and return `base_url/<random name>`.

    The random name keeps the original suffix only, so a client-chosen
    filename never reaches the filesystem.
    """

    def __init__(self, directory: Path | str, base_url: str) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.base_url = base_url.rstrip("/")

    def upload(self, path: Optional[Path]) -> Optional[str]:
        if path is None:
            return None
        name = f"{uuid.uuid4().hex}{Path(path).suffix.lower()}"
        try:
            shutil.copyfile(path, self.directory / name)
        except OSError as e:
            logger.warning("Local media upload failed for %s: %s", path, e)
            return None
        return f"{self.base_url}/{name}"


class HttpMediaUploader:
    """Upload to an external image host over HTTP.

    A single requests.Session is reused for connection pooling. max_redirects
    is kept low -- this talks to one known endpoint.
    """

    def __init__(self, endpoint: str, api_key: str = "", timeout: float = 30.0) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self._session = requests.Session()
        self._session.max_redirects = 3
        if api_key:
            self._session.headers["Authorization"] = f"Bearer {api_key}"

    def upload(self, path: Optional[Path]) -> Optional[str]:
        if path is None:
            return None
        try:
            with open(path, "rb") as fh:
                resp = self._session.post(
                    self.endpoint,
                    files={"file": (Path(path).name, fh)},
                    timeout=self.timeout,
                )
            resp.raise_for_status()
            body = resp.json()
        except (OSError, requests.RequestException, ValueError) as e:
            logger.warning("Media upload to %s failed: %s", self.endpoint, e)
            return None
        url = (body.get("secure_url") or body.get("url")) if isinstance(body, dict) else None
        if not url:
            logger.warning("Media host reply had no url field")
            return None
        return str(url)

    def close(self) -> None:
        self._session.close()


def build_uploader(settings: Settings) -> MediaUploader:
    if settings.media_upload_url:
        logger.info("Media uploads go to %s", settings.media_upload_url)
        return HttpMediaUploader(
            settings.media_upload_url,
            api_key=settings.media_upload_api_key,
            timeout=settings.media_upload_timeout,
        )
    return LocalMediaUploader(settings.media_dir, settings.media_base_url)
