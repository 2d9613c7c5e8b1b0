"""
tests/conftest.py -- Shared test fixtures for the ReelTalk auth tests.

This module provides:
  - make_test_store(): isolated named in-memory SQLite UserStore
  - _patch_lifespan(): wires test components into app.state, bypassing real startup
  - client: TestClient against the real app with a patched lifespan
  - google_token: signs Google-style ID tokens with a locally generated RSA key
  - make_user / auth_headers: seed accounts and mint bearer headers without
    going through the rate-limited signin endpoint

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.

DEBUG and ALLOWED_HOSTS must be set before api.main is imported: the
middleware stack reads settings at import time, and TestClient sends
Host: testserver.
"""

from __future__ import annotations

import asyncio
import os
import time
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any api/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from authlib.jose import JsonWebKey, JsonWebToken
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.ledger import RefreshTokenLedger
from auth.models import Provider, Role, User
from auth.oauth import GoogleIdentityBridge, GoogleKeySet
from auth.passwords import hash_password
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.config import Settings

GOOGLE_CLIENT_ID = "test-client-id.apps.googleusercontent.com"
GOOGLE_KID = "test-google-kid"

# RSA key generation is slow; one key for the whole session is plenty.
_GOOGLE_KEY = JsonWebKey.generate_key("RSA", 2048, is_private=True)
_GOOGLE_JWT = JsonWebToken(["RS256"])


def _google_jwks() -> dict:
    public = _GOOGLE_KEY.as_dict(is_private=False)
    public["kid"] = GOOGLE_KID
    public["alg"] = "RS256"
    public["use"] = "sig"
    return {"keys": [public]}


# ---------------------------------------------------------------------------
# Component helpers
# ---------------------------------------------------------------------------


def make_test_store() -> UserStore:
    """Create a UserStore on a uniquely named shared-memory SQLite database."""
    return UserStore(f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "access_token_secret": "test-secret-" + "x" * 40,
        "google_client_id": GOOGLE_CLIENT_ID,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_google_bridge(settings: Settings, store: UserStore) -> GoogleIdentityBridge:
    key_set = GoogleKeySet(settings.google_certs_url, settings.google_certs_ttl_seconds, fetch=_google_jwks)
    return GoogleIdentityBridge(settings, store, key_set=key_set)


def _patch_lifespan(settings: Settings, store: UserStore):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.user_store = store
        app.state.token_issuer = TokenIssuer(settings)
        app.state.ledger = RefreshTokenLedger(store, settings.refresh_token_expire_seconds)
        app.state.google = make_google_bridge(settings, store)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    user_store = make_test_store()
    yield user_store
    user_store.close()


@pytest.fixture
def issuer(settings: Settings) -> TokenIssuer:
    return TokenIssuer(settings)


@pytest.fixture
def ledger(store: UserStore, settings: Settings) -> RefreshTokenLedger:
    return RefreshTokenLedger(store, settings.refresh_token_expire_seconds)


@pytest.fixture
def client(settings: Settings, store: UserStore) -> Generator[TestClient, None, None]:
    """TestClient on the real app, backed by this test's store.

    Function-scoped: every test gets a fresh database, cookie jar and
    rate-limit counters.
    """
    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(settings, store)
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture
def google_token():
    """Factory: google_token(email=..., **claim_overrides) -> signed ID token."""

    def _make(email: str = "fan@example.com", **overrides) -> str:
        now = int(time.time())
        claims = {
            "iss": "https://accounts.google.com",
            "aud": GOOGLE_CLIENT_ID,
            "sub": f"google-sub-{email}",
            "email": email,
            "email_verified": True,
            "name": "Film Fan",
            "picture": "https://lh3.googleusercontent.com/a/fan.png",
            "iat": now,
            "exp": now + 3600,
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        token = _GOOGLE_JWT.encode({"alg": "RS256", "kid": GOOGLE_KID}, claims, _GOOGLE_KEY)
        return token.decode("ascii")

    return _make


# ---------------------------------------------------------------------------
# Seeding helpers
# ---------------------------------------------------------------------------


def _create_user(
    store: UserStore,
    email: str = "critic@example.com",
    password: str = "popcorn123",
    username: str = "critic",
    role: Role = Role.user,
) -> User:
    """Insert a local account directly through the store and return it."""
    user_id = store.create_user(
        User(
            username=username,
            email=email,
            password_hash=hash_password(password),
            provider=Provider.local,
            role=role,
        )
    )
    return store.get_by_id(user_id)


@pytest.fixture
def make_user(store: UserStore):
    """Factory: make_user(email=..., role=Role.admin) -> persisted User."""

    def _make(**kwargs) -> User:
        return _create_user(store, **kwargs)

    return _make


@pytest.fixture
def auth_headers(issuer: TokenIssuer):
    """Factory: auth_headers(user) -> {"Authorization": "Bearer <fresh access token>"}."""

    def _make(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {issuer.issue_access_token(user)}"}

    return _make
