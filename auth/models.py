"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work; these classes only own the domain shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    user = "user"
    admin = "admin"


class Provider(str, Enum):
    local = "local"
    google = "google"


@dataclass
class RefreshTokenRecord:
    """One entry of a user's refresh-token ledger.

    token is the SHA-256 hex digest of the raw refresh token. The raw value is
    handed to the client once at issuance and never persisted.
    """

    token: str
    valid_until: datetime
    id: int | None = None
    created_at: str | None = None

    def is_valid(self, now: datetime) -> bool:
        return self.valid_until > now


@dataclass
class User:
    """A ReelTalk account.

    password_hash is None for Google-created accounts (no local password).
    provider_id holds Google's stable subject id once the account is linked.
    refresh_tokens may hold several concurrently valid records, one per
    signed-in device.
    """

    username: str
    email: str
    id: str | None = None
    profile_picture: str = ""
    password_hash: str | None = None  # "salt:hexdigest"
    provider: Provider = Provider.local
    provider_id: str | None = None
    role: Role = Role.user
    refresh_tokens: list[RefreshTokenRecord] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.admin
