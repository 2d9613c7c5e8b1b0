"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Each request walks a small state machine, with no memory across requests:

  NoToken    Authorization header missing or not "Bearer <token>"
             -> 401 missing_token
  Verifying  signature / expiry check via the app's TokenIssuer
             -> 401 invalid_token, or 401 token_expired (distinct code so the
                client knows a silent refresh is worth trying)
  Authenticated  claims {id, email, role} attached to request.state.session

require_admin() then applies the Authorization Gate: it re-reads the user
from the store (the role in the token may be stale) and rejects non-admins
with 403.

Dependencies raise auth.errors exceptions; api/main.py renders them.

Layer rule: no imports from api/ or core/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import AuthenticationError, AuthorizationError, NotFoundError
from auth.models import Role, User
from auth.tokens import AccessClaims


def get_bearer_token(request: Request) -> str:
    """Return the raw token from "Authorization: Bearer <token>" or raise 401."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme != "Bearer" or not token.strip():
        raise AuthenticationError("Access token is required", code="missing_token")
    return token.strip()


def get_session(request: Request) -> AccessClaims:
    """Require a valid, unexpired access token and attach its claims to the request.

    Stateless: no store lookup happens here. Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(session: AccessClaims = Depends(get_session)): ...
    """
    token = get_bearer_token(request)
    claims = request.app.state.token_issuer.verify_access_token(token)
    request.state.session = claims
    return claims


def get_current_user(request: Request) -> User:
    """Require authentication and load the caller's User record.

    A valid token whose user was deleted after issuance yields 404.
    """
    claims = get_session(request)
    user = request.app.state.user_store.get_by_id(claims.id)
    if user is None:
        raise NotFoundError("User not found", code="user_not_found")
    return user


def require_admin(request: Request) -> User:
    """Require admin role. 401 if unauthenticated, 403 if not an admin.

    The role is read from the store, not from the token, so a demotion takes
    effect immediately rather than when the access token expires.
    """
    claims = get_session(request)
    user = request.app.state.user_store.get_by_id(claims.id)
    if user is None:
        raise AuthorizationError("Access denied, no user information provided", code="no_user")
    if user.role is not Role.admin:
        raise AuthorizationError("Access denied, admin privileges required", code="not_admin")
    return user
