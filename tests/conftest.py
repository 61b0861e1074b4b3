"""
tests/conftest.py -- Shared test fixtures.

This module provides:
  - FakeUploader: in-memory stand-in for the media host; records calls and
    can be told to fail.
  - token_config / tokens: a TokenService with fixed, distinct test secrets.
  - store: a plain in-memory UserStore for unit tests.
  - session_service: SessionService wired to store + tokens + FakeUploader.
  - api: Harness(client, store, tokens, uploader) -- TestClient over the real
    app with a patched lifespan and an isolated database per test.
  - alice: a user created directly through the store (password "p@ss1234").

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the TestClient because sync route handlers run in a thread pool. Plain
':memory:' DBs are per-connection and would present a blank schema to each
worker thread. The named URI shares one in-memory instance across all
connections in the process; a uuid in the name isolates each test.

Environment must be set before any app import: DEBUG lets Settings generate
signing secrets, RATE_LIMIT_ENABLED=false keeps repeated logins from tripping
the limiter, and the media/temp dirs point into a throwaway directory.
"""

from __future__ import annotations

import os
import tempfile
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path

_TMP = tempfile.mkdtemp(prefix="userauth-tests-")

# CRITICAL: Set before any api/auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("UPLOAD_TEMP_DIR", str(Path(_TMP) / "temp"))
os.environ.setdefault("MEDIA_DIR", str(Path(_TMP) / "media"))

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import User
from auth.sessions import SessionService
from auth.store import UserStore
from auth.tokens import TokenConfig, TokenService
from core.config import get_settings

ACCESS_SECRET = "a" * 48
REFRESH_SECRET = "r" * 48

ALICE_PASSWORD = "p@ss1234"


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


@dataclass
class FakeUploader:
    """Returns https://media.test/<name> for every upload unless fail is set."""

    fail: bool = False
    uploaded: list[Path] = field(default_factory=list)

    def upload(self, path):
        if path is None:
            return None
        self.uploaded.append(Path(path))
        if self.fail:
            return None
        return f"https://media.test/{Path(path).name}"


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def token_config() -> TokenConfig:
    return TokenConfig(
        access_secret=ACCESS_SECRET,
        refresh_secret=REFRESH_SECRET,
        access_expire_seconds=900,
        refresh_expire_seconds=86400,
    )


@pytest.fixture
def tokens(token_config: TokenConfig) -> TokenService:
    return TokenService(token_config)


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def uploader() -> FakeUploader:
    return FakeUploader()


@pytest.fixture
def session_service(store: UserStore, tokens: TokenService, uploader: FakeUploader) -> SessionService:
    return SessionService(store, tokens, uploader)


def make_user(store: UserStore, username: str = "alice", email: str = "a@x.com", password: str = ALICE_PASSWORD) -> int:
    return store.create_user(
        User(username=username, email=email, full_name="Alice A", avatar="https://media.test/alice.png"),
        password,
    )


@pytest.fixture
def alice(store: UserStore) -> int:
    """Create alice in the unit-test store and return her id."""
    return make_user(store)


@pytest.fixture
def create_user(store: UserStore):
    """Return a callable that adds another user to the unit-test store."""

    def _create(**kwargs) -> int:
        return make_user(store, **kwargs)

    return _create


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


@dataclass
class Harness:
    client: TestClient
    store: UserStore
    tokens: TokenService
    uploader: FakeUploader


def _patch_lifespan(store: UserStore, tokens: TokenService, uploader: FakeUploader):
    """Return a lifespan that wires the test collaborators into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = get_settings()
        app.state.user_store = store
        app.state.tokens = tokens
        app.state.uploader = uploader
        app.state.sessions = SessionService(store, tokens, uploader)
        yield

    return test_lifespan


@pytest.fixture
def api(token_config: TokenConfig) -> Generator[Harness, None, None]:
    """Yield a Harness around a TestClient for the real app.

    Function-scoped: every test gets an empty database, so login/refresh
    rotations in one test cannot leak into another.
    """
    db_url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    user_store = UserStore(db_url)
    token_service = TokenService(token_config)
    fake_uploader = FakeUploader()

    app.router.lifespan_context = _patch_lifespan(user_store, token_service, fake_uploader)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield Harness(client, user_store, token_service, fake_uploader)

    user_store.close()


@pytest.fixture
def api_alice(api: Harness) -> int:
    """Create alice in the integration store and return her id."""
    return make_user(api.store)
