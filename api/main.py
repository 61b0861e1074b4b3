"""
api/main.py -- FastAPI application entry point for the user/session service.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- one access-log line per request
  2. limit_body_size       -- 413 for JSON/urlencoded bodies over MAX_BODY_BYTES
  3. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  4. CORSMiddleware        -- adds CORS headers for allowed browser origins (credentials on)
  5. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the store, the token service (from an immutable TokenConfig),
the media uploader and the session service once, and hangs them on app.state.
Routes and dependencies read them from there; nothing reads secrets at call
time.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException

from api.limiter import limiter
from api.models import HealthResponse
from api.routes.v1.users import router as users_router
from auth.sessions import SessionService
from auth.store import UserStore
from auth.tokens import TokenConfig, TokenService
from core.config import get_settings
from core.errors import ApiError, ErrorKind, error_envelope, field_error
from media.uploader import build_uploader

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("userauth.api")

settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters: the session service needs the store, the token
    service and the uploader, so it is built last.
    """
    logger.info("userauth API starting up")
    app.state.settings = settings
    app.state.user_store = UserStore(settings.database_url)
    app.state.tokens = TokenService(TokenConfig.from_settings(settings))
    app.state.uploader = build_uploader(settings)
    app.state.sessions = SessionService(app.state.user_store, app.state.tokens, app.state.uploader)
    logger.info(
        "Auth initialized (access ttl=%ss, refresh ttl=%ss, secure_cookies=%s)",
        settings.access_token_expire_seconds,
        settings.refresh_token_expire_seconds,
        settings.secure_cookies,
    )

    yield

    close = getattr(app.state.uploader, "close", None)
    if close is not None:
        close()
    app.state.user_store.close()
    logger.info("userauth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="userauth API",
    description="User registration and cookie/JWT session management with refresh-token rotation.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps: the LAST one added is the OUTERMOST. Register
# innermost first so a request meets TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Body size middleware
#
# JSON and urlencoded bodies are small by nature (credentials, profile fields).
# Multipart uploads are exempt here; media/staging.py enforces its own cap
# while streaming the file to disk.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def limit_body_size(request: Request, call_next):
    content_type = request.headers.get("content-type", "")
    if not content_type.startswith("multipart/form-data"):
        length = request.headers.get("content-length")
        if length is not None and length.isdigit() and int(length) > settings.max_body_bytes:
            return JSONResponse(
                status_code=413,
                content=error_envelope(413, f"Request body exceeds {settings.max_body_bytes // 1024} KB"),
            )
    return await call_next(request)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Registered after limit_body_size, so it is outside it and also logs the
# 413s that middleware produces.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(users_router, prefix="/api/v1", tags=["Users"])

# Serve locally stored avatars/cover images when no external media host is set.
if not settings.media_upload_url and settings.media_base_url.startswith("/"):
    app.mount(settings.media_base_url, StaticFiles(directory=settings.media_dir, check_dir=False), name="media")


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler returns the same error envelope
#   {statusCode, data: null, message, success: false, errors: [...]}
# so clients parse failures uniformly.
# ---------------------------------------------------------------------------


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    """Serialize a domain failure verbatim. 5xx are logged as errors, the rest as warnings."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with the standard envelope and a Retry-After header."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=ErrorKind.RATE_LIMITED.status_code,
        content=error_envelope(429, "Too many requests", [field_error("limit", str(exc.detail))]),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies/params are validation failures: 400, one entry per problem."""
    errors = [
        field_error(".".join(str(p) for p in err.get("loc", ()) if p != "body") or "body", err.get("msg", ""))
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content=error_envelope(400, "Request validation failed", errors))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(exc.status_code, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The exception and traceback go to the server log only. The client gets a
    fixed message -- never the raw exception value.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=error_envelope(500, "Internal server error"),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable regardless of router
# registration state. Not rate limited.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)
