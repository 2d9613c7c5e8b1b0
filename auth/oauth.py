"""
auth/oauth.py -- Google identity verification and account resolution.

The browser obtains a Google ID token (the "credential" from Google Identity
Services) and posts it to /users/google-signin. This module verifies it and
maps it onto a ReelTalk account. There is no redirect/callback flow: the ID
token is the whole assertion.

Verification (authlib.jose, RS256 only):
  - signature against Google's published JWKS (fetched with requests, cached
    for google_certs_ttl_seconds, refetched once on an unknown kid so Google
    key rotation does not need a restart);
  - iss is accounts.google.com, aud is our GOOGLE_CLIENT_ID, exp not passed;
  - sub and email present.

Security notes:
  [H1] email_verified must be true. Accounts are linked by email, so an
       unverified address would let anyone claim an existing local account.

Resolution policy (GoogleIdentityBridge.resolve):
  email known, provider local  -> link in place: provider=google,
                                  provider_id=sub, backfill username and
                                  profile_picture only where empty.
  email known, provider google -> reuse as-is.
  email unknown                -> create a Google account with no password.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

import requests
from authlib.jose import JsonWebKey, JsonWebToken
from authlib.jose.errors import JoseError
from sqlalchemy.exc import IntegrityError

from auth.errors import InvalidAssertion, ServiceUnavailableError
from auth.models import Provider, User

if TYPE_CHECKING:
    from auth.store import UserStore
    from core.config import Settings

logger = logging.getLogger("reeltalk.auth.oauth")

GOOGLE_ISSUERS = ["accounts.google.com", "https://accounts.google.com"]

_jwt = JsonWebToken(["RS256"])

# Allowed clock skew between Google and this server, in seconds.
_LEEWAY = 60


@dataclass(frozen=True)
class GoogleIdentity:
    subject: str
    email: str
    name: str
    picture: str


# ---------------------------------------------------------------------------
# Google signing keys
# ---------------------------------------------------------------------------


class GoogleKeySet:
    """Cached view of Google's JWKS document.

    fetch is injectable so tests can supply locally generated keys instead of
    calling Google.
    """

    def __init__(self, certs_url: str, ttl_seconds: int, fetch: Callable[[], dict] | None = None) -> None:
        self._certs_url = certs_url
        self._ttl = ttl_seconds
        self._fetch = fetch or self._fetch_remote
        self._keys = None
        self._fetched_at = 0.0
        self._lock = threading.Lock()

    def _fetch_remote(self) -> dict:
        resp = requests.get(self._certs_url, timeout=10)
        resp.raise_for_status()
        return resp.json()

    def _key_set(self, force: bool = False):
        # Route handlers run in the threadpool; one refresh at a time.
        with self._lock:
            stale = time.monotonic() - self._fetched_at > self._ttl
            if force or self._keys is None or stale:
                self._keys = JsonWebKey.import_key_set(self._fetch())
                self._fetched_at = time.monotonic()
                logger.info("Google signing keys loaded")
            return self._keys

    def load_key(self, header: dict, payload) -> object:
        """authlib key resolver: pick the JWK whose kid matches the token header."""
        kid = header.get("kid")
        try:
            return self._key_set().find_by_kid(kid)
        except ValueError:
            # Unknown kid -- Google may have rotated keys since the last fetch.
            return self._key_set(force=True).find_by_kid(kid)


# ---------------------------------------------------------------------------
# Identity bridge
# ---------------------------------------------------------------------------


class GoogleIdentityBridge:
    """Verify Google ID tokens and resolve them to User records."""

    def __init__(self, settings: Settings, store: UserStore, key_set: GoogleKeySet | None = None) -> None:
        self._client_id = settings.google_client_id
        self._store = store
        self._key_set = key_set or GoogleKeySet(settings.google_certs_url, settings.google_certs_ttl_seconds)

    @property
    def enabled(self) -> bool:
        return bool(self._client_id)

    def verify(self, assertion: str) -> GoogleIdentity:
        """Verify a Google ID token and extract the identity it asserts.

        Raises:
            ServiceUnavailableError: GOOGLE_CLIENT_ID is not configured.
            InvalidAssertion: signature, issuer, audience, expiry, or required
                claims do not check out, or the email is not verified.
        """
        if not self.enabled:
            raise ServiceUnavailableError("Google sign-in is not configured", code="google_signin_disabled")
        try:
            claims = _jwt.decode(
                assertion,
                self._key_set.load_key,
                claims_options={
                    "iss": {"essential": True, "values": GOOGLE_ISSUERS},
                    "aud": {"essential": True, "value": self._client_id},
                    "exp": {"essential": True},
                    "sub": {"essential": True},
                    "email": {"essential": True},
                },
            )
            claims.validate(leeway=_LEEWAY)
        except (JoseError, ValueError) as exc:
            logger.warning("Google ID token rejected: %s", exc)
            raise InvalidAssertion("Invalid token") from exc

        if claims.get("email_verified") not in (True, "true"):
            logger.warning("Google ID token rejected: email not verified")
            raise InvalidAssertion("Google email is not verified")

        return GoogleIdentity(
            subject=str(claims["sub"]),
            email=str(claims["email"]).strip().lower(),
            name=claims.get("name") or "Unknown User",
            picture=claims.get("picture") or "",
        )

    def resolve(self, assertion: str) -> User:
        """Verify the assertion and return the matching (possibly new) User."""
        identity = self.verify(assertion)
        user = self._store.get_by_email(identity.email)
        if user is not None:
            return self._link(user, identity)

        try:
            user_id = self._store.create_user(
                User(
                    username=identity.name,
                    email=identity.email,
                    profile_picture=identity.picture,
                    provider=Provider.google,
                    provider_id=identity.subject,
                )
            )
        except IntegrityError:
            # A concurrent first login for the same email created the row first.
            user = self._store.get_by_email(identity.email)
            if user is None:
                raise
            return self._link(user, identity)
        logger.info("Created Google account %s", user_id)
        return self._store.get_by_id(user_id)

    def _link(self, user: User, identity: GoogleIdentity) -> User:
        if user.provider is Provider.google:
            return user
        self._store.link_google(user.id, identity.subject, identity.name, identity.picture)
        logger.info("Linked account %s to Google", user.id)
        return self._store.get_by_id(user.id)
