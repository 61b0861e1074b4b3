"""
auth/tokens.py -- Access/refresh token issuing and validation.

Security design decisions:
  JWT: python-jose with HS256. Two token types, each signed with its own
       secret. A "type" claim is carried as well, so even a misconfigured
       deployment with shared secrets cannot accept one type as the other.

  Access tokens are stateless: validity is signature + expiry, nothing else.
  Refresh tokens are stateful: after the signature/expiry check, the
       presented value must byte-match the one currently stored for the user.
       That comparison runs on every refresh attempt and is what makes a
       rotated-out or logged-out token STALE.

  jti: every token carries a random uuid4 hex id, so two tokens issued for
       the same user within the same second are still distinct.

  Config: TokenService takes an immutable TokenConfig at construction. No
       module-level secrets; nothing reads settings at call time.

Layer rule: no imports from api/ or media/. Import from core/ is allowed.
"""

from __future__ import annotations

import hmac
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import TokenPair
from core.errors import TokenError, TokenFailure

if TYPE_CHECKING:
    from auth.models import User
    from core.config import Settings

logger = logging.getLogger("userauth.tokens")

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class TokenConfig:
    """Signing material and lifetimes, fixed for the life of a TokenService."""

    access_secret: str
    refresh_secret: str
    access_expire_seconds: int
    refresh_expire_seconds: int
    algorithm: str = "HS256"

    def __post_init__(self) -> None:
        if not self.access_secret or not self.refresh_secret:
            raise ValueError("Token secrets must be non-empty.")
        if self.access_secret == self.refresh_secret:
            raise ValueError("Access and refresh token secrets must differ.")

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenConfig:
        return cls(
            access_secret=settings.access_token_secret,
            refresh_secret=settings.refresh_token_secret,
            access_expire_seconds=settings.access_token_expire_seconds,
            refresh_expire_seconds=settings.refresh_token_expire_seconds,
        )


class TokenService:
    """Mint and verify access/refresh tokens.

    Usage:
        tokens = TokenService(TokenConfig.from_settings(get_settings()))
        pair = tokens.issue_pair(user)
        user_id = tokens.validate_access(pair.access_token)
        user_id = tokens.validate_refresh(pair.refresh_token, store.get_refresh_token)

    Issuing never persists anything. Storing the refresh token on the user
    record is the caller's job (auth.sessions.SessionService).
    """

    def __init__(self, config: TokenConfig) -> None:
        self.config = config

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access_token(self, user_id: int, username: str | None = None, email: str | None = None) -> str:
        """Encode a signed access token. sub is the only claim validation relies on."""
        extra: dict[str, Any] = {}
        if username is not None:
            extra["username"] = username
        if email is not None:
            extra["email"] = email
        return self._encode(user_id, ACCESS, self.config.access_secret, self.config.access_expire_seconds, extra)

    def issue_refresh_token(self, user_id: int) -> str:
        return self._encode(user_id, REFRESH, self.config.refresh_secret, self.config.refresh_expire_seconds)

    def issue_pair(self, user: User) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access_token(user.id, user.username, user.email),
            refresh_token=self.issue_refresh_token(user.id),
        )

    # ------------------------------------------------------------------
    # Validate
    # ------------------------------------------------------------------

    def validate_access(self, token: str | None) -> int:
        """Return the user id carried by a valid access token.

        Raises TokenError with reason MISSING, EXPIRED or BAD_SIGNATURE.
        """
        return self._decode(token, ACCESS, self.config.access_secret)

    def decode_refresh(self, token: str | None) -> int:
        """Signature, expiry and type check only -- no stored-state comparison."""
        return self._decode(token, REFRESH, self.config.refresh_secret)

    def validate_refresh(self, token: str | None, lookup_stored_token: Callable[[int], str | None]) -> int:
        """Return the user id of a refresh token that is both well-formed and current.

        lookup_stored_token(user_id) returns the refresh token currently
        stored for that user, or None when there is no such user.

        Raises TokenError:
          MISSING        no token presented, or the subject no longer exists
          EXPIRED        exp is in the past
          BAD_SIGNATURE  wrong secret, tampered, malformed, or wrong type
          STALE          well-formed but not the value stored for the user
                         (rotated out by a later login/refresh, or logged out)
        """
        user_id = self.decode_refresh(token)
        stored = lookup_stored_token(user_id)
        if stored is None:
            raise TokenError(TokenFailure.MISSING)
        # stored == "" after logout; compare_digest is False for any mismatch.
        if not hmac.compare_digest(stored.encode("utf-8"), token.encode("utf-8")):
            logger.info("Stale refresh token presented for user_id=%s", user_id)
            raise TokenError(TokenFailure.STALE)
        return user_id

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _encode(
        self,
        user_id: int,
        token_type: str,
        secret: str,
        expire_seconds: int,
        extra: dict[str, Any] | None = None,
    ) -> str:
        now = int(datetime.now(timezone.utc).timestamp())
        payload: dict[str, Any] = {
            "sub": str(user_id),
            "type": token_type,
            "jti": uuid.uuid4().hex,
            "iat": now,
            "exp": now + expire_seconds,
        }
        if extra:
            payload.update(extra)
        return jwt.encode(payload, secret, algorithm=self.config.algorithm)

    def _decode(self, token: str | None, token_type: str, secret: str) -> int:
        if not token:
            raise TokenError(TokenFailure.MISSING)
        try:
            payload = jwt.decode(token, secret, algorithms=[self.config.algorithm])
        except ExpiredSignatureError as exc:
            raise TokenError(TokenFailure.EXPIRED) from exc
        except JWTError as exc:
            raise TokenError(TokenFailure.BAD_SIGNATURE) from exc
        if payload.get("type") != token_type:
            raise TokenError(TokenFailure.BAD_SIGNATURE)
        try:
            return int(payload["sub"])
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenError(TokenFailure.BAD_SIGNATURE) from exc
