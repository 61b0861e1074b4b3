"""
api/routes/v1/users.py -- Registration and session REST endpoints.

Routes:
  POST  /api/v1/users/register         -- multipart signup with avatar; 201
  POST  /api/v1/users/login            -- password login; sets both cookies
  POST  /api/v1/users/logout           -- clears stored refresh token + cookies (requires auth)
  POST  /api/v1/users/refresh-token    -- rotate the token pair; resets cookies
  POST  /api/v1/users/change-password  -- verify old password, store new (requires auth)
  PATCH /api/v1/users/profile          -- update fullName/email/username (requires auth)
  GET   /api/v1/users/me               -- current sanitized user (requires auth)

Every success body is {statusCode, data, message, success: true}. Failures
are raised as ApiError and rendered by the handlers in api/main.py.

The handlers are thin: parse and validate the request into an api.models
schema, hand plain values to SessionService on the threadpool, and turn the
result into cookies + envelope.

Security:
  [H2] login and refresh-token are rate-limited per client IP.
  [M5] Cache-Control: no-store on every response that carries tokens.
  Cookies are httpOnly, samesite=lax, and secure unless SECURE_COOKIES=false.
"""

from __future__ import annotations

from typing import Optional, TypeVar

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter
from api.models import (
    ChangePasswordRequest,
    LoginData,
    LoginRequest,
    ProfilePatch,
    RefreshRequest,
    TokenPairResponse,
    UserResponse,
)
from auth.dependencies import ACCESS_COOKIE, REFRESH_COOKIE, get_current_user
from auth.models import TokenPair, User
from auth.sessions import SessionService
from core.config import get_settings
from core.errors import ApiError, ErrorKind, TokenError, TokenFailure, field_error, success_envelope
from media.staging import StagingArea

_settings = get_settings()

_Model = TypeVar("_Model", bound=BaseModel)

# Auth policy:
# - register, login, refresh-token: public
# - logout, change-password, profile, me: require a valid access token (get_current_user)
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/users/register", status_code=201)
async def register(
    request: Request,
    username: str = Form(default=""),
    email: str = Form(default=""),
    full_name: str = Form(default="", alias="fullName"),
    password: str = Form(default="", max_length=72),
    avatar: Optional[list[UploadFile]] = File(default=None),
    cover_image: Optional[list[UploadFile]] = File(default=None, alias="coverImage"),
) -> JSONResponse:
    """Create an account. The first file of the avatar part is required.

    Uploads are staged to the temp dir for the duration of the call and
    removed afterwards whatever the outcome.
    """
    service: SessionService = request.app.state.sessions
    settings = request.app.state.settings

    def _run() -> User:
        # Files are staged (and size-checked) before the service validates the
        # form fields, so an oversized upload is a 413 even on a bad form.
        with StagingArea(settings.upload_temp_dir, settings.max_upload_bytes) as staging:
            avatar_path = staging.stage(avatar[0] if avatar else None, "avatar")
            cover_path = staging.stage(cover_image[0] if cover_image else None, "coverImage")
            return service.register(username, email, full_name, password, avatar_path, cover_path)

    user = await run_in_threadpool(_run)
    data = UserResponse.from_user(user).model_dump(by_alias=True)
    return JSONResponse(status_code=201, content=success_envelope(201, data, "User registered successfully"))


@limiter.limit(_settings.login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/users/login")
async def login(request: Request) -> JSONResponse:
    """Authenticate with username or email plus password; set both token cookies.

    Accepts a JSON or form body. A failed login sets no cookies.
    """
    service: SessionService = request.app.state.sessions
    body = _parse(LoginRequest, await _read_body(request))

    result = await run_in_threadpool(service.login, body.password, body.username, body.email)

    data = LoginData(
        user=UserResponse.from_user(result.user),
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
    )
    resp = JSONResponse(
        status_code=200,
        content=success_envelope(200, data.model_dump(by_alias=True), "User logged in successfully"),
    )
    _set_session_cookies(request, resp, result.tokens)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@limiter.limit(_settings.refresh_rate_limit)  # [H2]
@router.post("/users/refresh-token")
async def refresh_token(request: Request) -> JSONResponse:
    """Exchange a current refresh token for a new pair (rotation).

    The token is read from the refreshToken cookie, else from the body field
    refreshToken. The presented token is dead after this call succeeds.
    """
    service: SessionService = request.app.state.sessions
    token = request.cookies.get(REFRESH_COOKIE)
    if not token:
        body = await _read_body(request)
        try:
            token = RefreshRequest.model_validate(body).refresh_token
        except ValidationError as exc:
            # A non-string or oversized token is just another invalid token.
            raise TokenError(TokenFailure.BAD_SIGNATURE, "Invalid refresh token") from exc

    pair = await run_in_threadpool(service.refresh, token)

    data = TokenPairResponse(access_token=pair.access_token, refresh_token=pair.refresh_token)
    resp = JSONResponse(
        status_code=200,
        content=success_envelope(200, data.model_dump(by_alias=True), "Access token refreshed"),
    )
    _set_session_cookies(request, resp, pair)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/users/logout")
def logout(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Revoke the caller's refresh token and clear both cookies.

    The store write finishes before the response is built.
    """
    service: SessionService = request.app.state.sessions
    service.logout(current_user.id)
    resp = JSONResponse(status_code=200, content=success_envelope(200, {}, "User logged out"))
    _clear_session_cookies(request, resp)
    return resp


@router.post("/users/change-password")
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Change the caller's password. Existing sessions are not revoked."""
    service: SessionService = request.app.state.sessions
    service.change_password(current_user.id, body.old_password, body.new_password)
    return JSONResponse(status_code=200, content=success_envelope(200, {}, "Password changed successfully"))


@router.patch("/users/profile")
def update_profile(
    request: Request,
    body: ProfilePatch,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    service: SessionService = request.app.state.sessions
    user = service.update_profile(current_user.id, body.full_name, body.email, body.username)
    return JSONResponse(
        status_code=200,
        content=success_envelope(200, UserResponse.from_user(user).model_dump(by_alias=True), "Profile updated"),
    )


@router.get("/users/me")
def me(current_user: User = Depends(get_current_user)) -> JSONResponse:
    return JSONResponse(
        status_code=200,
        content=success_envelope(200, UserResponse.from_user(current_user).model_dump(by_alias=True), "Current user"),
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _read_body(request: Request) -> dict:
    """Return the JSON object or form fields of the request; {} for an empty body."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        return {k: v for k, v in form.items() if isinstance(v, str)}
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        data = await request.json()
    except ValueError as exc:
        raise ApiError(ErrorKind.VALIDATION, "Malformed JSON body") from exc
    if not isinstance(data, dict):
        raise ApiError(ErrorKind.VALIDATION, "Request body must be a JSON object")
    return data


def _parse(model: type[_Model], data: dict) -> _Model:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        errors = [field_error(".".join(str(p) for p in e["loc"]) or "body", e["msg"]) for e in exc.errors()]
        raise ApiError(ErrorKind.VALIDATION, "Invalid request body", errors) from exc


def _set_session_cookies(request: Request, response: JSONResponse, pair: TokenPair) -> None:
    """Write both tokens as httpOnly cookies whose max_age matches the token lifetime."""
    settings = request.app.state.settings
    config = request.app.state.tokens.config
    for name, value, max_age in (
        (ACCESS_COOKIE, pair.access_token, config.access_expire_seconds),
        (REFRESH_COOKIE, pair.refresh_token, config.refresh_expire_seconds),
    ):
        response.set_cookie(
            name,
            value=value,
            httponly=True,
            secure=settings.secure_cookies,
            samesite="lax",
            max_age=max_age,
            path="/",
        )


def _clear_session_cookies(request: Request, response: JSONResponse) -> None:
    settings = request.app.state.settings
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, path="/", httponly=True, secure=settings.secure_cookies, samesite="lax")
