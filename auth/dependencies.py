"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

This is the upstream gate in front of logout, change-password, profile and
/me. The access token is taken from, in priority order:
  1. the "accessToken" cookie -- set by login/refresh for browser clients.
  2. an Authorization: Bearer <token> header -- for API clients.

The token is validated with the TokenService on app.state, and the user is
loaded sanitized (no password hash, no refresh token). Any failure is a 401.

Layer rule: may import from fastapi (Request) because this module is part of
the FastAPI dependency injection system; no imports from api/.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import User
from auth.store import UserStore
from auth.tokens import TokenService
from core.errors import ApiError, ErrorKind, TokenError

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


def extract_access_token(request: Request) -> str | None:
    token: str | None = request.cookies.get(ACCESS_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


def get_current_user(request: Request) -> User:
    """Require a valid access token. Raises ApiError(401) otherwise.

    Use as a FastAPI dependency:
        @router.post("/users/logout")
        def route(current_user: User = Depends(get_current_user)): ...
    """
    tokens: TokenService = request.app.state.tokens
    user_store: UserStore = request.app.state.user_store

    token = extract_access_token(request)
    if token is None:
        raise ApiError(ErrorKind.UNAUTHORIZED, "Unauthorized request")
    try:
        user_id = tokens.validate_access(token)
    except TokenError as exc:
        raise ApiError(ErrorKind.UNAUTHORIZED, "Invalid access token") from exc

    user = user_store.get_by_id(user_id, include_secrets=False)
    if user is None:
        raise ApiError(ErrorKind.UNAUTHORIZED, "Invalid access token")
    return user
