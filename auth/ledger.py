"""
auth/ledger.py -- Per-user refresh-token ledger.

The ledger speaks in raw refresh tokens and hashes them on the way in; the
store underneath only ever sees SHA-256 digests.

Lifecycle of one entry:
  add()     signup / signin / google-signin append {digest, now + ttl}.
  rotate()  every successful refresh overwrites the entry in place with a new
            digest and a fresh expiry. The presented token is dead afterwards,
            whatever its clock expiry said. First use wins.
  revoke()  logout expires the entry in place. It stays visible to
            find_owner() (so a repeated logout is still recognised) until
            purge_expired() sweeps it.
  purge_expired()  removes expired and revoked entries; run periodically.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from auth.errors import TokenExpiredOrInvalid
from auth.models import RefreshTokenRecord, User
from auth.store import UserStore
from auth.tokens import hash_refresh_token

logger = logging.getLogger("reeltalk.auth.ledger")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefreshTokenLedger:
    """Refresh-token bookkeeping on top of UserStore.

    Usage:
        ledger = RefreshTokenLedger(store, ttl_seconds=settings.refresh_token_expire_seconds)
        ledger.add(user, raw)
        ledger.rotate(user, raw, generate_refresh_token())
    """

    def __init__(self, store: UserStore, ttl_seconds: int, clock: Callable[[], datetime] = _utcnow) -> None:
        self._store = store
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def add(self, user: User, raw_token: str, ttl: timedelta | None = None) -> RefreshTokenRecord:
        """Persist the digest of raw_token, valid for ttl (default: the ledger TTL)."""
        valid_until = self._clock() + (ttl or self.ttl)
        record = self._store.insert_refresh_token(user.id, hash_refresh_token(raw_token), valid_until)
        user.refresh_tokens.append(record)
        return record

    def find_owner(self, raw_token: str) -> User | None:
        """Return the user whose ledger holds raw_token's digest, expired or not."""
        user_id = self._store.find_user_id_by_token_hash(hash_refresh_token(raw_token))
        if user_id is None:
            return None
        return self._store.get_by_id(user_id)

    def rotate(
        self,
        user: User,
        old_raw_token: str,
        new_raw_token: str,
        ttl: timedelta | None = None,
    ) -> RefreshTokenRecord:
        """Replace the unexpired entry for old_raw_token with new_raw_token.

        Raises TokenExpiredOrInvalid if no unexpired entry matches -- the token
        expired, was revoked, was already rotated, or never existed.
        """
        now = self._clock()
        old_hash = hash_refresh_token(old_raw_token)
        record = RefreshTokenRecord(token=hash_refresh_token(new_raw_token), valid_until=now + (ttl or self.ttl))
        if not self._store.replace_refresh_token(user.id, old_hash, record.token, record.valid_until, now):
            logger.info("Refresh token rotation rejected for user %s", user.id)
            raise TokenExpiredOrInvalid()
        for i, existing in enumerate(user.refresh_tokens):
            if existing.token == old_hash:
                record.id = existing.id
                record.created_at = existing.created_at
                user.refresh_tokens[i] = record
                break
        return record

    def revoke(self, user: User, raw_token: str) -> bool:
        """Expire the entry for raw_token. Idempotent; returns whether it existed."""
        now = self._clock()
        token_hash = hash_refresh_token(raw_token)
        found = self._store.expire_refresh_token(user.id, token_hash, now)
        for existing in user.refresh_tokens:
            if existing.token == token_hash:
                existing.valid_until = now
        return found

    def revoke_all(self, user: User) -> int:
        """Expire every live entry of the user (sign out of all devices)."""
        now = self._clock()
        count = self._store.expire_all_refresh_tokens(user.id, now)
        for existing in user.refresh_tokens:
            if existing.is_valid(now):
                existing.valid_until = now
        return count

    def has_valid(self, user: User) -> bool:
        return self._store.has_valid_refresh_token(user.id, self._clock())

    def purge_expired(self) -> int:
        removed = self._store.purge_expired_refresh_tokens(self._clock())
        if removed:
            logger.info("Purged %d expired refresh tokens", removed)
        return removed
