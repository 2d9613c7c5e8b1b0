"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_token are the mappers.
Route and dependency code never touches SQL directly.

Schema:
  users           one row per account; email is UNIQUE.
  refresh_tokens  the per-user refresh-token ledger. One row per signed-in
                  device, keyed by (user_id, token_hash). valid_until is a
                  REAL epoch timestamp so expiry checks are plain numeric
                  comparisons on every backend.

Concurrency:
  Every mutation is a single field-level statement, never a load-modify-save
  of the whole user. Ledger rotation is a compare-and-swap:
      UPDATE refresh_tokens SET token_hash = :new, valid_until = :exp
      WHERE user_id = :uid AND token_hash = :old AND valid_until > :now
  so of two concurrent refreshes presenting the same token exactly one
  matches a row; the other sees rowcount == 0.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import Provider, RefreshTokenRecord, Role, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("username", String(255), nullable=False),
    Column("email", String(320), nullable=False, unique=True),
    Column("profile_picture", Text, nullable=False, server_default=""),
    Column("password_hash", Text),  # NULL for Google-created accounts
    Column("provider", String(16), nullable=False, server_default=Provider.local.value),
    Column("provider_id", Text),  # Google "sub" once linked
    Column("role", String(16), nullable=False, server_default=Role.user.value),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("token_hash", String(64), nullable=False),  # SHA-256 hex of the raw token
    Column("valid_until", Float, nullable=False),  # epoch seconds, UTC
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("user_id", "token_hash", name="uq_refresh_tokens_user_hash"),
    Index("ix_refresh_tokens_token_hash", "token_hash"),
)

# Columns update_user() may touch. Validated before any SQL is built.
_UPDATABLE_USER_FIELDS = frozenset(
    {"username", "email", "profile_picture", "password_hash", "provider", "provider_id", "role"}
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journaling and foreign-key enforcement per connection.

    SQLite PRAGMAs are not inherited by new connections from the pool, and
    ON DELETE CASCADE on refresh_tokens is a no-op without foreign_keys=ON.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _epoch(moment: datetime) -> float:
    return moment.timestamp()


def new_user_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records and their refresh-token ledgers.

    Usage:
        store = UserStore("sqlite:///reeltalk_auth.db")
        uid = store.create_user(User(username="ann", email="a@b.com", password_hash=hash_password("pw")))
        user = store.get_by_email("a@b.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> str:
        """Insert a new user and return its id.

        Raises sqlalchemy.exc.IntegrityError if the email is already
        registered. Callers translate that into a 409 (signup) or re-read the
        winning record (concurrent Google first-login).
        """
        user_id = user.id or new_user_id()
        now = _now_iso()
        with self.engine.begin() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    username=user.username,
                    email=user.email,
                    profile_picture=user.profile_picture or "",
                    password_hash=user.password_hash,
                    provider=Provider(user.provider).value,
                    provider_id=user.provider_id,
                    role=Role(user.role).value,
                    created_at=now,
                    updated_at=now,
                )
            )
        return user_id

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user (with ledger) by id. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
            if row is None:
                return None
            return _row_to_user(row, self._load_tokens(conn, row.id))

    def get_by_email(self, email: str) -> User | None:
        """Look up a user (with ledger) by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
            if row is None:
                return None
            return _row_to_user(row, self._load_tokens(conn, row.id))

    def list_users(self) -> list[User]:
        """Return all users ordered by username, without their ledgers. Admin-only."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
        return [_row_to_user(r, []) for r in rows]

    def update_user(self, user_id: str, **fields) -> bool:
        """Update whitelisted columns on one user.

        Enum values (Role, Provider) are stored by value. Unknown field names
        raise ValueError rather than being silently dropped.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _UPDATABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        values = {k: (v.value if isinstance(v, (Role, Provider)) else v) for k, v in fields.items()}
        values["updated_at"] = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
        return result.rowcount > 0

    def link_google(self, user_id: str, subject: str, username: str, profile_picture: str) -> bool:
        """Convert a non-Google account into a Google-linked one in one statement.

        username and profile_picture are only written where the stored value
        is empty; values the user already set are never overwritten. The
        provider guard makes a second concurrent link a no-op.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.provider != Provider.google.value))
                .values(
                    provider=Provider.google.value,
                    provider_id=subject,
                    username=func.coalesce(func.nullif(_users.c.username, ""), username),
                    profile_picture=func.coalesce(func.nullif(_users.c.profile_picture, ""), profile_picture),
                    updated_at=_now_iso(),
                )
            )
        return result.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        """Permanently delete a user and its ledger. Returns False if not found."""
        with self.engine.begin() as conn:
            conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Refresh-token ledger primitives (hashes only; see auth/ledger.py)
    # ------------------------------------------------------------------

    def insert_refresh_token(self, user_id: str, token_hash: str, valid_until: datetime) -> RefreshTokenRecord:
        created = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.insert().values(
                    user_id=user_id,
                    token_hash=token_hash,
                    valid_until=_epoch(valid_until),
                    created_at=created,
                )
            )
        return RefreshTokenRecord(
            token=token_hash,
            valid_until=valid_until,
            id=result.inserted_primary_key[0],
            created_at=created,
        )

    def find_user_id_by_token_hash(self, token_hash: str) -> str | None:
        """Return the owner of a ledger entry, expired or not."""
        with self.engine.connect() as conn:
            return conn.execute(
                select(_refresh_tokens.c.user_id).where(_refresh_tokens.c.token_hash == token_hash).limit(1)
            ).scalar()

    def replace_refresh_token(
        self,
        user_id: str,
        old_hash: str,
        new_hash: str,
        valid_until: datetime,
        now: datetime,
    ) -> bool:
        """Atomically swap an unexpired entry's hash and expiry in place.

        Returns False when no unexpired entry for (user_id, old_hash) exists,
        which includes losing a race against a concurrent rotation.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where(
                    (_refresh_tokens.c.user_id == user_id)
                    & (_refresh_tokens.c.token_hash == old_hash)
                    & (_refresh_tokens.c.valid_until > _epoch(now))
                )
                .values(token_hash=new_hash, valid_until=_epoch(valid_until))
            )
        return result.rowcount == 1

    def expire_refresh_token(self, user_id: str, token_hash: str, now: datetime) -> bool:
        """Mark one entry expired as of now. Returns False if no such entry."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.token_hash == token_hash))
                .values(valid_until=_epoch(now))
            )
        return result.rowcount > 0

    def expire_all_refresh_tokens(self, user_id: str, now: datetime) -> int:
        """Expire every still-valid entry of a user. Returns how many were live."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.valid_until > _epoch(now)))
                .values(valid_until=_epoch(now))
            )
        return result.rowcount

    def has_valid_refresh_token(self, user_id: str, now: datetime) -> bool:
        with self.engine.connect() as conn:
            found = conn.execute(
                select(_refresh_tokens.c.id)
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.valid_until > _epoch(now)))
                .limit(1)
            ).scalar()
        return found is not None

    def purge_expired_refresh_tokens(self, now: datetime) -> int:
        """Delete every ledger entry whose expiry has passed. Returns rows removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.valid_until <= _epoch(now)))
        return result.rowcount

    def _load_tokens(self, conn, user_id: str) -> list[RefreshTokenRecord]:
        rows = conn.execute(
            _refresh_tokens.select().where(_refresh_tokens.c.user_id == user_id).order_by(_refresh_tokens.c.id)
        ).fetchall()
        return [_row_to_token(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, tokens: list[RefreshTokenRecord]) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        profile_picture=row.profile_picture or "",
        password_hash=row.password_hash,
        provider=Provider(row.provider),
        provider_id=row.provider_id,
        role=Role(row.role),
        refresh_tokens=tokens,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_token(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row.id,
        token=row.token_hash,
        valid_until=datetime.fromtimestamp(row.valid_until, tz=timezone.utc),
        created_at=row.created_at,
    )
