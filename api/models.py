"""
API request and response models for the user/session REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Wire names are camelCase (fullName, accessToken, ...); Python attributes are
snake_case. populate_by_name lets tests and internal callers use either.

Request models only check shape and length. Blank-after-trim rules belong to
auth/sessions.py so they hold for every caller, not just HTTP ones.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import User

# Coarse character cap. The 72-byte bcrypt limit is enforced by auth/sessions.py.
_PASSWORD_MAX = 72


class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class _Response(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class LoginRequest(_Request):
    """Body for POST /users/login. One of username or email is required."""

    username: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=320)
    password: str = Field(default="", max_length=_PASSWORD_MAX)


class RefreshRequest(_Request):
    """Body for POST /users/refresh-token. The cookie takes precedence when both are sent."""

    refresh_token: Optional[str] = Field(default=None, max_length=4096)


class ChangePasswordRequest(_Request):
    old_password: str = Field(default="", max_length=_PASSWORD_MAX)
    new_password: str = Field(default="", max_length=_PASSWORD_MAX)


class ProfilePatch(_Request):
    """Body for PATCH /users/profile. At least one field must be non-blank."""

    full_name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=320)
    username: Optional[str] = Field(default=None, max_length=255)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class UserResponse(_Response):
    """Sanitized user record. There is no field for the password hash or refresh token."""

    id: int
    username: str
    email: str
    full_name: str
    avatar: str
    cover_image: str
    created_at: str
    updated_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            full_name=user.full_name,
            avatar=user.avatar,
            cover_image=user.cover_image or "",
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
        )


class TokenPairResponse(_Response):
    access_token: str
    refresh_token: str


class LoginData(_Response):
    user: UserResponse
    access_token: str
    refresh_token: str


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
