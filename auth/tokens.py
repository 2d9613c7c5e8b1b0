"""
auth/tokens.py -- Access-token signing and refresh-token generation.

Security design decisions:
  Access tokens: python-jose with HS256, signed with ACCESS_TOKEN_SECRET.
       Claims are {id, email, role, iat, exp} with a fixed 15-minute lifetime.
       They are never persisted server-side; validity is purely cryptographic
       plus expiry. Expiry and bad-signature failures raise distinct codes
       (token_expired / invalid_token) so clients know when a silent refresh
       is worth attempting.

  Refresh tokens: secrets.token_hex(64) gives 512 bits of entropy and carries
       no user claim at all -- it is meaningless without the ledger. Only its
       SHA-256 digest is stored. A plain digest (no HMAC, no salt) is enough
       because the input is already high-entropy, and it keeps lookup O(1).

  Configuration: TokenIssuer receives the Settings object at construction.
       Nothing in this module reads the environment.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import AuthenticationError, ServerError
from auth.models import Role

if TYPE_CHECKING:
    from auth.models import User
    from core.config import Settings

logger = logging.getLogger("reeltalk.auth")

_ALGORITHM = "HS256"
_REFRESH_TOKEN_BYTES = 64


@dataclass(frozen=True)
class AccessClaims:
    """The identity attached to a request once its access token verifies."""

    id: str
    email: str
    role: Role
    expires_at: datetime


class TokenIssuer:
    """Mint and verify signed access tokens.

    Usage:
        issuer = TokenIssuer(get_settings())
        token = issuer.issue_access_token(user)
        claims = issuer.verify_access_token(token)
    """

    def __init__(self, settings: Settings) -> None:
        self._secret = settings.access_token_secret
        self.ttl = timedelta(seconds=settings.access_token_expire_seconds)

    def issue_access_token(self, user: User, issued_at: datetime | None = None) -> str:
        """Encode a signed JWT carrying the user's id, email and role.

        issued_at defaults to now; an earlier time back-dates the token.
        """
        iat = issued_at or datetime.now(timezone.utc)
        payload = {
            "id": user.id,
            "email": user.email,
            "role": Role(user.role).value,
            "iat": iat,
            "exp": iat + self.ttl,
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def verify_access_token(self, token: str) -> AccessClaims:
        """Verify signature and expiry. Raises AuthenticationError on any failure."""
        try:
            payload = jwt.decode(token, self._secret, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise AuthenticationError("Access token has expired", code="token_expired") from exc
        except JWTError as exc:
            raise AuthenticationError("Invalid access token", code="invalid_token") from exc
        return _claims_from_payload(payload)

    def decode_ignoring_expiry(self, token: str) -> AccessClaims:
        """Verify the signature of a possibly expired token and return its claims.

        Used where an expired access token still identifies the caller
        (refresh-access-token, logout). A token that is not a JWT at all is a
        ServerError (malformed_token); a well-formed token whose signature
        does not verify is an AuthenticationError (invalid_token).
        """
        try:
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise ServerError("Malformed access token", code="malformed_token") from exc
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise AuthenticationError("Invalid access token", code="invalid_token") from exc
        return _claims_from_payload(payload)

    def token_status(self, token: str) -> str:
        """Return "valid", "expired" or "invalid" without raising."""
        try:
            self.verify_access_token(token)
        except AuthenticationError as exc:
            return "expired" if exc.code == "token_expired" else "invalid"
        return "valid"


def _claims_from_payload(payload: dict) -> AccessClaims:
    try:
        return AccessClaims(
            id=str(payload["id"]),
            email=str(payload.get("email", "")),
            role=Role(payload["role"]),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise AuthenticationError("Invalid access token", code="invalid_token") from exc


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


def generate_refresh_token() -> str:
    """Return 64 random bytes as 128 hex characters."""
    return secrets.token_hex(_REFRESH_TOKEN_BYTES)


def hash_refresh_token(raw_token: str) -> str:
    """Return the SHA-256 hex digest stored in the ledger for raw_token."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_refresh_cookie(response, raw_token: str, settings: Settings) -> None:
    """Write the raw refresh token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    max_age: matches the ledger expiry so cookie and record expire together.
    """
    response.set_cookie(
        settings.refresh_cookie_name,
        value=raw_token,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.refresh_token_expire_seconds,
    )


def clear_refresh_cookie(response, settings: Settings) -> None:
    response.delete_cookie(settings.refresh_cookie_name)
