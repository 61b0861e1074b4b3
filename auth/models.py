"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the session
service do the work; api/models.py owns the wire shape.

Layer rule: no imports from api/ or media/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A registered identity.

    username and email are stored lowercased; both are unique.

    hashed_password and refresh_token are the secret fields. A record fetched
    with UserStore.get_by_id(..., include_secrets=False) has both set to None,
    which is the "sanitized" view handed to routes.

    refresh_token holds the single live refresh token for this user, or None
    when no session is active. Overwriting it revokes the previous session.
    """

    username: str
    email: str
    full_name: str
    avatar: str
    id: int | None = None
    cover_image: str = ""
    hashed_password: str | None = None
    refresh_token: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class TokenPair:
    """An access/refresh token pair minted together."""

    access_token: str
    refresh_token: str
