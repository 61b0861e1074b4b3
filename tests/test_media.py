"""Unit tests for media/ -- staging uploads and handing them to a media host.

Covers:
- StagingArea writes uploads, skips empty parts, enforces the size cap,
  and removes every staged file on exit (success or failure)
- LocalMediaUploader copies under a random name and returns a URL
- HttpMediaUploader posts multipart, reads secure_url/url, and reports
  failures as None
- build_uploader() picks the implementation from settings
"""

import io
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests

from core.errors import ApiError, ErrorKind
from media.staging import StagingArea
from media.uploader import HttpMediaUploader, LocalMediaUploader, build_uploader


def _upload(name, data: bytes):
    return SimpleNamespace(filename=name, file=io.BytesIO(data))


# ---------------------------------------------------------------------------
# StagingArea
# ---------------------------------------------------------------------------


class TestStagingArea:
    def test_stage_and_cleanup(self, tmp_path):
        with StagingArea(tmp_path / "temp", max_bytes=1024) as staging:
            path = staging.stage(_upload("Me.PNG", b"img-bytes"), "avatar")
            assert path.read_bytes() == b"img-bytes"
            assert path.suffix == ".png"
            assert path.name != "Me.PNG"
        assert not path.exists()

    def test_missing_or_empty_upload(self, tmp_path):
        with StagingArea(tmp_path, max_bytes=1024) as staging:
            assert staging.stage(None) is None
            assert staging.stage(_upload("", b"data")) is None
            assert staging.stage(_upload("empty.png", b"")) is None

    def test_size_cap(self, tmp_path):
        staging_dir = tmp_path / "temp"
        with pytest.raises(ApiError) as info:
            with StagingArea(staging_dir, max_bytes=10) as staging:
                staging.stage(_upload("big.png", b"x" * 11), "avatar")
        assert info.value.kind is ErrorKind.PAYLOAD_TOO_LARGE
        assert info.value.status_code == 413
        assert list(staging_dir.iterdir()) == []

    def test_cleanup_on_error(self, tmp_path):
        with pytest.raises(RuntimeError):
            with StagingArea(tmp_path, max_bytes=1024) as staging:
                path = staging.stage(_upload("a.png", b"img"))
                raise RuntimeError("downstream failure")
        assert not path.exists()


# ---------------------------------------------------------------------------
# LocalMediaUploader
# ---------------------------------------------------------------------------


class TestLocalMediaUploader:
    def test_copies_and_returns_url(self, tmp_path):
        src = tmp_path / "avatar.JPG"
        src.write_bytes(b"jpeg")
        uploader = LocalMediaUploader(tmp_path / "media", "/static/media/")
        url = uploader.upload(src)
        assert url.startswith("/static/media/")
        assert url.endswith(".jpg")
        stored = tmp_path / "media" / url.rsplit("/", 1)[1]
        assert stored.read_bytes() == b"jpeg"

    def test_none_and_missing_file(self, tmp_path):
        uploader = LocalMediaUploader(tmp_path / "media", "/m")
        assert uploader.upload(None) is None
        assert uploader.upload(tmp_path / "gone.png") is None


# ---------------------------------------------------------------------------
# HttpMediaUploader
# ---------------------------------------------------------------------------


def _http_uploader(response=None, exc=None) -> HttpMediaUploader:
    uploader = HttpMediaUploader("https://media.example/upload", api_key="k3y", timeout=5)
    session = MagicMock()
    if exc is not None:
        session.post.side_effect = exc
    else:
        session.post.return_value = response
    uploader._session = session
    return uploader


def _response(body, status_error=None):
    resp = MagicMock()
    resp.json.return_value = body
    if status_error is not None:
        resp.raise_for_status.side_effect = status_error
    return resp


class TestHttpMediaUploader:
    @pytest.fixture
    def image(self, tmp_path):
        path = tmp_path / "avatar.png"
        path.write_bytes(b"png")
        return path

    def test_auth_header_set(self):
        uploader = HttpMediaUploader("https://media.example/upload", api_key="k3y")
        assert uploader._session.headers["Authorization"] == "Bearer k3y"
        uploader.close()

    def test_secure_url_preferred(self, image):
        uploader = _http_uploader(_response({"secure_url": "https://cdn/a.png", "url": "http://cdn/a.png"}))
        assert uploader.upload(image) == "https://cdn/a.png"
        _, kwargs = uploader._session.post.call_args
        assert kwargs["timeout"] == 5
        assert kwargs["files"]["file"][0] == "avatar.png"

    def test_plain_url(self, image):
        assert _http_uploader(_response({"url": "http://cdn/a.png"})).upload(image) == "http://cdn/a.png"

    def test_reply_without_url(self, image):
        assert _http_uploader(_response({"id": 1})).upload(image) is None
        assert _http_uploader(_response(["not", "a", "dict"])).upload(image) is None

    def test_http_error(self, image):
        resp = _response({}, status_error=requests.HTTPError("502 Bad Gateway"))
        assert _http_uploader(resp).upload(image) is None

    def test_connection_error(self, image):
        assert _http_uploader(exc=requests.ConnectionError("refused")).upload(image) is None

    def test_bad_json(self, image):
        resp = MagicMock()
        resp.json.side_effect = ValueError("no json")
        assert _http_uploader(resp).upload(image) is None


def test_build_uploader_picks_implementation(tmp_path):
    local = SimpleNamespace(media_upload_url="", media_dir=str(tmp_path), media_base_url="/static/media")
    assert isinstance(build_uploader(local), LocalMediaUploader)

    remote = SimpleNamespace(
        media_upload_url="https://media.example/upload",
        media_upload_api_key="",
        media_upload_timeout=3.0,
    )
    uploader = build_uploader(remote)
    assert isinstance(uploader, HttpMediaUploader)
    assert uploader.timeout == 3.0
    uploader.close()
