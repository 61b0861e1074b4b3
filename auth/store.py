"""
auth/store.py -- SQLAlchemy Core persistence layer for user records.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Passwords only enter the table through create_user() and set_password(),
  both of which hash the plaintext they are given. There is no path that
  writes a caller-supplied hash verbatim.

  set_refresh_token() is a single-column UPDATE on one row. It deliberately
  touches nothing else (no password re-hash, no updated_at bump), and the
  single-row write is what keeps "one live refresh token per user" atomic.

Layer rule: no imports from api/ or media/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, or_, select
from sqlalchemy.engine import Engine

from auth.models import User
from auth.passwords import hash_password

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True, index=True),
    Column("email", String(320), nullable=False, unique=True, index=True),
    Column("full_name", String(255), nullable=False),
    Column("hashed_password", Text, nullable=False),
    Column("avatar", Text, nullable=False),
    Column("cover_image", Text, nullable=False, server_default=""),
    Column("refresh_token", Text),  # NULL = no live session
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Everything a client may see. get_by_id(include_secrets=False) selects only
# these, so the sanitized view never even loads the secret columns.
_PUBLIC_COLUMNS = (
    _users.c.id,
    _users.c.username,
    _users.c.email,
    _users.c.full_name,
    _users.c.avatar,
    _users.c.cover_image,
    _users.c.created_at,
    _users.c.updated_at,
)

# Fields update_profile() accepts. Checked before any SQL is built.
_PROFILE_FIELDS = {"username", "email", "full_name"}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore()
        uid = store.create_user(User(username="alice", email="a@x.com", full_name="Alice", avatar=url), "secret")
        user = store.find_by_username_or_email(username="alice")
        store.set_refresh_token(uid, token)
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: int, include_secrets: bool = True) -> User | None:
        """Look up a user by primary key. Returns None if not found.

        include_secrets=False projects the public columns only; the returned
        User has hashed_password and refresh_token set to None.
        """
        columns = _users.c if include_secrets else _PUBLIC_COLUMNS
        with self.engine.connect() as conn:
            row = conn.execute(select(*columns).where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_username_or_email(self, username: str | None = None, email: str | None = None) -> User | None:
        """Return the first user whose username OR email matches (case-insensitive)."""
        clauses = []
        if username:
            clauses.append(func.lower(_users.c.username) == username.lower())
        if email:
            clauses.append(func.lower(_users.c.email) == email.lower())
        if not clauses:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(or_(*clauses)).order_by(_users.c.id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_refresh_token(self, user_id: int) -> str | None:
        """Return the stored refresh token for a user.

        None means the user does not exist; "" means the user exists but has
        no live session (never logged in, or logged out).
        """
        with self.engine.connect() as conn:
            row = conn.execute(select(_users.c.refresh_token).where(_users.c.id == user_id)).fetchone()
        if row is None:
            return None
        return row.refresh_token or ""

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User, password: str) -> int:
        """Insert a new user and return its assigned database ID.

        username and email are lowercased; password is hashed here. Any
        hashed_password / refresh_token already on the dataclass is ignored.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists. Callers treat that as a concurrent duplicate registration.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username.lower(),
                    email=user.email.lower(),
                    full_name=user.full_name,
                    hashed_password=hash_password(password),
                    avatar=user.avatar,
                    cover_image=user.cover_image or "",
                    refresh_token=None,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def set_refresh_token(self, user_id: int, token: str | None) -> bool:
        """Replace (or clear, with None) the user's single stored refresh token.

        Returns True if a row was updated, False if user_id was not found.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(refresh_token=token))
            conn.commit()
        return result.rowcount > 0

    def set_password(self, user_id: int, password: str) -> bool:
        """Hash the plaintext and store it. Returns False if user_id was not found."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(hashed_password=hash_password(password), updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def update_profile(self, user_id: int, **fields) -> bool:
        """Update username / email / full_name on an existing user.

        Unknown keys raise ValueError rather than being silently ignored.
        username and email are lowercased.

        Raises sqlalchemy.exc.IntegrityError on a unique-constraint clash.
        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {unknown!r}")
        if not fields:
            return False
        for key in ("username", "email"):
            if key in fields:
                fields[key] = fields[key].lower()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(updated_at=_now_iso(), **fields)
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    # Projected rows lack the secret columns; getattr keeps one mapper for both.
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        full_name=row.full_name,
        avatar=row.avatar,
        cover_image=row.cover_image or "",
        hashed_password=getattr(row, "hashed_password", None),
        refresh_token=getattr(row, "refresh_token", None),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
