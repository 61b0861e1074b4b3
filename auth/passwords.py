"""
auth/passwords.py -- Credential hashing and verification.

bcrypt directly, no passlib wrapper: passlib's internal wrap-bug detection
builds a password longer than 72 bytes, which bcrypt 4.x rejects with an
explicit error.

bcrypt.checkpw compares digests with a constant-time primitive, so the
response time does not depend on where a mismatch occurs. Neither function
logs or returns the plaintext.

Layer rule: no imports from api/, media/, or core/.
"""

from __future__ import annotations

import bcrypt

# bcrypt only reads this many bytes of input; bcrypt 5 raises past it.
MAX_PASSWORD_BYTES = 72


def password_too_long(plain: str) -> bool:
    return len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Input over MAX_PASSWORD_BYTES of UTF-8 raises ValueError on bcrypt 5 and
    is truncated by older releases. Callers check password_too_long() first;
    the 72-character cap in api/models.py does not bound multibyte input.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A missing or malformed stored hash is a mismatch, not an error -- the
    caller decides how to surface a failed check.
    """
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False

