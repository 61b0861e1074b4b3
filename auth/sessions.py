"""
auth/sessions.py -- Session lifecycle flows: register, login, logout, refresh,
change password, update profile.

Each flow is a short pipeline with early exits. A step raises ApiError and
nothing after it runs. There is no session object between requests; the only
state is the user record in the store.

Single active session: login and refresh overwrite the stored refresh token,
so any earlier refresh token for that user is STALE from then on. Two
concurrent refreshes for the same user race -- the last write wins and the
other caller's token is STALE. No locking; the single-row UPDATE is atomic.

Known, deliberate behaviours:
  - logout clears the stored refresh token before returning (synchronous).
  - change_password does NOT clear the stored refresh token; existing
    sessions stay valid until they expire or rotate.
  - access tokens have no server-side revocation; they die by expiry.

Layer rule: no imports from api/. media/ is reached only through the
MediaUploader passed in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.exc import IntegrityError

from auth.models import TokenPair, User
from auth.passwords import MAX_PASSWORD_BYTES, password_too_long, verify_password
from auth.store import UserStore
from auth.tokens import TokenService
from core.errors import ApiError, ErrorKind, TokenError, TokenFailure, field_error
from media.uploader import MediaUploader

logger = logging.getLogger("userauth.sessions")


@dataclass(frozen=True)
class LoginResult:
    user: User  # sanitized
    tokens: TokenPair


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def _password_too_long(field: str) -> ApiError:
    message = f"Password must be at most {MAX_PASSWORD_BYTES} bytes"
    return ApiError(ErrorKind.VALIDATION, message, [field_error(field, message)])


class SessionService:
    """Orchestrates the credential verifier, token service and store.

    Usage:
        service = SessionService(store, tokens, uploader)
        result = service.login("hunter2", username="alice")
        pair = service.refresh(result.tokens.refresh_token)
        service.logout(result.user.id)
    """

    def __init__(self, store: UserStore, tokens: TokenService, uploader: MediaUploader) -> None:
        self.store = store
        self.tokens = tokens
        self.uploader = uploader

    # ------------------------------------------------------------------
    # Register
    # ------------------------------------------------------------------

    def register(
        self,
        username: str | None,
        email: str | None,
        full_name: str | None,
        password: str | None,
        avatar: Path | None,
        cover_image: Path | None = None,
    ) -> User:
        """Create an account and return its sanitized record.

        Order matters: field checks and the duplicate check run before any
        upload, and the record insert is the only mutation.
        """
        fields = {"username": username, "email": email, "fullName": full_name, "password": password}
        missing = [field_error(name, f"{name} is required") for name, value in fields.items() if _blank(value)]
        if missing:
            raise ApiError(ErrorKind.VALIDATION, "All fields are required", missing)
        if password_too_long(password):
            raise _password_too_long("password")

        username = username.strip().lower()
        email = email.strip().lower()
        if self.store.find_by_username_or_email(username=username, email=email) is not None:
            raise ApiError(ErrorKind.VALIDATION, "User with email or username already exists")

        if avatar is None:
            raise ApiError(ErrorKind.VALIDATION, "Avatar file is required", [field_error("avatar", "required")])

        avatar_url = self.uploader.upload(avatar)
        if not avatar_url:
            raise ApiError(ErrorKind.VALIDATION, "Avatar upload failed", [field_error("avatar", "upload failed")])
        # A failed cover image upload is not fatal; the field stays empty.
        cover_url = self.uploader.upload(cover_image) if cover_image is not None else None

        new_user = User(
            username=username,
            email=email,
            full_name=full_name.strip(),
            avatar=avatar_url,
            cover_image=cover_url or "",
        )
        try:
            user_id = self.store.create_user(new_user, password)
        except IntegrityError as exc:
            # Lost a race with a concurrent registration for the same identity.
            raise ApiError(ErrorKind.VALIDATION, "User with email or username already exists") from exc

        created = self.store.get_by_id(user_id, include_secrets=False)
        if created is None:
            raise ApiError(ErrorKind.INTERNAL, "Something went wrong while registering the user")
        logger.info("Registered user_id=%s username=%s", user_id, username)
        return created

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def login(self, password: str | None, username: str | None = None, email: str | None = None) -> LoginResult:
        if _blank(username) and _blank(email):
            raise ApiError(
                ErrorKind.VALIDATION,
                "Username or email is required",
                [field_error("username", "username or email is required")],
            )
        if _blank(password):
            raise ApiError(ErrorKind.VALIDATION, "Password is required", [field_error("password", "required")])

        user = self.store.find_by_username_or_email(
            username=None if _blank(username) else username.strip(),
            email=None if _blank(email) else email.strip(),
        )
        if user is None:
            raise ApiError(ErrorKind.NOT_FOUND, "User does not exist")

        if not verify_password(password, user.hashed_password):
            logger.info("Failed login for user_id=%s", user.id)
            raise ApiError(ErrorKind.UNAUTHORIZED, "Invalid user credentials")

        tokens = self._rotate(user)
        logger.info("Login user_id=%s", user.id)
        return LoginResult(user=self._sanitized(user.id), tokens=tokens)

    def logout(self, user_id: int) -> None:
        """Clear the stored refresh token. Completes before the caller responds."""
        self.store.set_refresh_token(user_id, None)
        logger.info("Logout user_id=%s", user_id)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, token: str | None) -> TokenPair:
        """Rotate: validate the presented refresh token, then issue and store a new pair.

        Signature and expiry failures are flattened into one "Invalid refresh
        token" 401 -- callers cannot tell a tampered token from an old one.
        """
        if _blank(token):
            raise ApiError(ErrorKind.UNAUTHORIZED, "Unauthorized request")
        try:
            user_id = self.tokens.validate_refresh(token, self.store.get_refresh_token)
        except TokenError as exc:
            logger.info("Refresh rejected: %s", exc.reason.value)
            if exc.reason is TokenFailure.STALE:
                raise TokenError(TokenFailure.STALE, "Refresh token is expired or used") from exc
            raise TokenError(exc.reason, "Invalid refresh token") from exc

        user = self.store.get_by_id(user_id)
        if user is None:
            raise TokenError(TokenFailure.MISSING, "Invalid refresh token")
        return self._rotate(user)

    # ------------------------------------------------------------------
    # Account changes
    # ------------------------------------------------------------------

    def change_password(self, user_id: int, old_password: str | None, new_password: str | None) -> None:
        """Verify the old password and store the new one (hashed by the store).

        The stored refresh token is left untouched.
        """
        if _blank(old_password) or _blank(new_password):
            raise ApiError(
                ErrorKind.VALIDATION,
                "Old and new password are required",
                [
                    field_error(name, f"{name} is required")
                    for name, value in (("oldPassword", old_password), ("newPassword", new_password))
                    if _blank(value)
                ],
            )
        if password_too_long(new_password):
            raise _password_too_long("newPassword")
        user = self.store.get_by_id(user_id)
        if user is None:
            raise ApiError(ErrorKind.NOT_FOUND, "User does not exist")
        if not verify_password(old_password, user.hashed_password):
            raise ApiError(ErrorKind.UNAUTHORIZED, "Invalid old password")
        self.store.set_password(user_id, new_password)
        logger.info("Password changed for user_id=%s", user_id)

    def update_profile(
        self,
        user_id: int,
        full_name: str | None = None,
        email: str | None = None,
        username: str | None = None,
    ) -> User:
        changes: dict[str, str] = {}
        if not _blank(full_name):
            changes["full_name"] = full_name.strip()
        if not _blank(email):
            changes["email"] = email.strip().lower()
        if not _blank(username):
            changes["username"] = username.strip().lower()
        if not changes:
            raise ApiError(ErrorKind.VALIDATION, "At least one field is required")

        if "email" in changes or "username" in changes:
            clash = self.store.find_by_username_or_email(
                username=changes.get("username"), email=changes.get("email")
            )
            if clash is not None and clash.id != user_id:
                raise ApiError(ErrorKind.VALIDATION, "Username or email already taken")

        try:
            updated = self.store.update_profile(user_id, **changes)
        except IntegrityError as exc:
            raise ApiError(ErrorKind.VALIDATION, "Username or email already taken") from exc
        if not updated:
            raise ApiError(ErrorKind.NOT_FOUND, "User does not exist")
        return self._sanitized(user_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _rotate(self, user: User) -> TokenPair:
        try:
            pair = self.tokens.issue_pair(user)
        except Exception as exc:
            logger.exception("Token generation failed for user_id=%s", user.id)
            raise ApiError(ErrorKind.INTERNAL, "Something went wrong while generating tokens") from exc
        self.store.set_refresh_token(user.id, pair.refresh_token)
        return pair

    def _sanitized(self, user_id: int) -> User:
        user = self.store.get_by_id(user_id, include_secrets=False)
        if user is None:
            raise ApiError(ErrorKind.NOT_FOUND, "User does not exist")
        return user
