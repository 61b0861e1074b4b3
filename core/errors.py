"""
core/errors.py -- The single failure carrier used by every layer.

Every domain check raises ApiError (or its TokenError subclass) immediately;
api/main.py is the only place that turns one into a wire response. The set of
kinds is closed: anything that is not an ApiError becomes a generic 500 whose
body never contains the raw exception.

Layer rule: no imports from api/, auth/, or media/.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    VALIDATION = "validation_error"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    RATE_LIMITED = "rate_limited"
    INTERNAL = "internal_error"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.PAYLOAD_TOO_LARGE: 413,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.INTERNAL: 500,
}


class ApiError(Exception):
    """Structured failure: kind (and so status code), message, error details.

    errors is a list of {"field": ..., "message": ...} dicts. It is serialized
    verbatim into the envelope's "errors" array.
    """

    def __init__(self, kind: ErrorKind, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.errors = list(errors or [])

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    def to_envelope(self) -> dict[str, Any]:
        return error_envelope(self.status_code, self.message, self.errors)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.kind.value!r}, {self.message!r})"


class TokenFailure(str, Enum):
    EXPIRED = "expired"
    BAD_SIGNATURE = "bad_signature"
    MISSING = "missing"
    STALE = "stale"


class TokenError(ApiError):
    """A presented token failed validation. Always 401.

    reason says why, for logs and callers that need to distinguish; the
    transport layer decides how much of that to reveal.
    """

    def __init__(self, reason: TokenFailure, message: str | None = None) -> None:
        super().__init__(ErrorKind.UNAUTHORIZED, message or _TOKEN_MESSAGES[reason])
        self.reason = reason


_TOKEN_MESSAGES: dict[TokenFailure, str] = {
    TokenFailure.EXPIRED: "Token has expired",
    TokenFailure.BAD_SIGNATURE: "Token is invalid",
    TokenFailure.MISSING: "Token is missing",
    TokenFailure.STALE: "Token is expired or used",
}


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


def success_envelope(status_code: int, data: Any, message: str = "Success") -> dict[str, Any]:
    return {
        "statusCode": status_code,
        "data": data,
        "message": message,
        "success": status_code < 400,
    }


def error_envelope(status_code: int, message: str, errors: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    return {
        "statusCode": status_code,
        "data": None,
        "message": message,
        "success": False,
        "errors": list(errors or []),
    }


def field_error(field: str, message: str) -> dict[str, str]:
    return {"field": field, "message": message}
