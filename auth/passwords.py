"""
auth/passwords.py -- Salted password hashing for locally authenticated accounts.

Stored format is "salt:hexdigest" where
    hexdigest = PBKDF2-HMAC-SHA256(password, salt, 1000 iterations, 64 bytes)
and salt is 16 random bytes, hex encoded. The salt string itself (not its
decoded bytes) is fed to PBKDF2, so existing records stay verifiable.

verify_password() never raises: a missing, empty or malformed stored value is
simply a failed verification. Callers get a bool and nothing else, keeping
the signin path uniform.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

_ITERATIONS = 1000
_KEY_LENGTH = 64
_SALT_BYTES = 16


def _derive(password: str, salt: str) -> str:
    return hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt.encode("utf-8"),
        _ITERATIONS,
        dklen=_KEY_LENGTH,
    ).hex()


def hash_password(password: str) -> str:
    """Return "salt:hexdigest" for the given plaintext password."""
    salt = secrets.token_hex(_SALT_BYTES)
    return f"{salt}:{_derive(password, salt)}"


def verify_password(password: str | None, stored: str | None) -> bool:
    """Return True if password matches the stored "salt:hexdigest" value."""
    if not password or not stored:
        return False
    salt, sep, expected = stored.partition(":")
    if not sep or not salt or not expected:
        return False
    return hmac.compare_digest(_derive(password, salt), expected)
