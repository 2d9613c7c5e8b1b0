"""
api/routes/users.py -- Authentication and user management REST endpoints.

Routes:
  POST   /users/signup                  -- local account; 201 + access token, refresh cookie
  POST   /users/signin                  -- password login; access token, refresh cookie
  POST   /users/google-signin           -- Google ID token login (creates/links account)
  POST   /users/google-signup           -- alias of google-signin
  POST   /users/refresh-token           -- rotate refresh token; new access token
  POST   /users/refresh-access-token    -- new access token for a (possibly expired) bearer
  POST   /users/access-token-status     -- report valid / expired / invalid
  POST   /users/logout                  -- revoke one refresh token (requires bearer)
  POST   /users/logout-all              -- revoke every refresh token of the caller
  GET    /users/me                      -- current user (requires auth)
  PUT    /users/update-username         -- rename self (requires auth)
  PUT    /users/update-profile-picture  -- set own picture URL (requires auth)
  GET    /users/admin/users             -- list all users (admin only)
  GET    /users/{id}                    -- public profile (requires auth)
  PUT    /users/{id}                    -- update profile (self or admin; role: admin only)
  DELETE /users/{id}                    -- delete account (admin only)

Refresh-token transport:
  The raw refresh token leaves the server once, in the response that issues
  it, always as the httpOnly refresh cookie. Password flows never put it in
  the JSON body; Google flows echo it in the body as well. Consumers
  (refresh-token, logout) read the JSON body first and fall back to the cookie.

Security:
  [H2] signup / signin / google-signin are rate-limited per IP.
  [M5] Cache-Control: no-store on every response that carries a token.
  Rotation-on-use: a refresh token works once; the ledger swaps it atomically.
"""

import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    AccessTokenResponse,
    AuthResponse,
    GoogleAuthResponse,
    GoogleCredentialRequest,
    LogoutAllResponse,
    MessageResponse,
    ProfilePictureUpdate,
    RefreshTokenRequest,
    SigninRequest,
    SignupRequest,
    TokenStatusResponse,
    UserEnvelope,
    UserListResponse,
    UsernameUpdate,
    UserSummary,
    UserUpdate,
    UserUpdatedResponse,
)
from auth.dependencies import get_bearer_token, get_current_user, get_session, require_admin
from auth.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ServerError,
    ValidationError,
)
from auth.models import Provider, User
from auth.passwords import hash_password, verify_password
from auth.tokens import AccessClaims, clear_refresh_cookie, generate_refresh_token, set_refresh_cookie
from core.config import get_settings

logger = logging.getLogger("reeltalk.api.users")

# Auth policy:
# - signup, signin, google-signin/-signup, refresh-token:  public
# - refresh-access-token, logout:   bearer required, expired-but-signed accepted
# - access-token-status:            bearer inspected, never 403
# - logout-all, me, update-*, GET /users/{id}:  valid bearer (get_session / get_current_user)
# - PUT /users/{id}:                valid bearer, self or admin (checked in handler)
# - GET /users/admin/users, DELETE /users/{id}:  admin (require_admin)
router = APIRouter(prefix="/users")

_USER_ID_RE = re.compile(r"^[0-9a-f]{32}$")


def _signin_rate_limit() -> str:
    return get_settings().signin_rate_limit


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _issue_tokens(request: Request, user: User) -> tuple[str, str]:
    """Mint an access token and record a fresh refresh token in the ledger."""
    access_token = request.app.state.token_issuer.issue_access_token(user)
    raw_refresh = generate_refresh_token()
    request.app.state.ledger.add(user, raw_refresh)
    return access_token, raw_refresh


def _token_response(request: Request, status_code: int, content: dict, raw_refresh: str) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=content)
    set_refresh_cookie(resp, raw_refresh, request.app.state.settings)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _presented_refresh_token(request: Request, body: Optional[RefreshTokenRequest]) -> str:
    raw = body.refresh_token if body is not None else None
    if not raw:
        raw = request.cookies.get(request.app.state.settings.refresh_cookie_name)
    if not raw:
        raise ValidationError("Refresh token is required", code="missing_token")
    return raw


def _claims_allowing_expiry(request: Request) -> AccessClaims:
    """Identify the caller from a signed bearer token, expired or not."""
    token = get_bearer_token(request)
    try:
        return request.app.state.token_issuer.decode_ignoring_expiry(token)
    except ServerError as exc:
        raise AuthenticationError("Invalid access token", code="invalid_token") from exc


def _check_user_id(user_id: str) -> None:
    if not _USER_ID_RE.match(user_id):
        raise ValidationError("Invalid user ID", code="invalid_id")


def _dump(model) -> dict:
    return model.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Identity establishment (public)
# ---------------------------------------------------------------------------


@router.post("/signup", response_model=AuthResponse, status_code=201)
@limiter.limit(_signin_rate_limit)  # [H2] innermost, so the registered endpoint is the limited wrapper
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Create a local account and sign it in."""
    store = request.app.state.user_store
    if store.get_by_email(body.email) is not None:
        raise ConflictError()
    try:
        user_id = store.create_user(
            User(
                username=body.username,
                email=body.email,
                password_hash=hash_password(body.password),
                provider=Provider.local,
            )
        )
    except IntegrityError as exc:
        raise ConflictError() from exc

    user = store.get_by_id(user_id)
    access_token, raw_refresh = _issue_tokens(request, user)
    logger.info("User %s signed up", user_id)
    return _token_response(
        request,
        201,
        _dump(
            AuthResponse(
                message="User created successfully",
                access_token=access_token,
                user=UserSummary.from_user(user),
            )
        ),
        raw_refresh,
    )


@router.post("/signin", response_model=AuthResponse)
@limiter.limit(_signin_rate_limit)  # [H2]
def signin(request: Request, body: SigninRequest) -> JSONResponse:
    """Authenticate with email and password."""
    user = request.app.state.user_store.get_by_email(body.email)
    if user is None:
        raise NotFoundError("User not found")
    if not verify_password(body.password, user.password_hash):
        logger.warning("Failed signin for user %s", user.id)
        raise AuthenticationError("Invalid email or password", code="invalid_credentials")

    access_token, raw_refresh = _issue_tokens(request, user)
    return _token_response(
        request,
        200,
        _dump(
            AuthResponse(
                message="Login successful",
                access_token=access_token,
                user=UserSummary.from_user(user),
            )
        ),
        raw_refresh,
    )


@router.post("/google-signin", response_model=GoogleAuthResponse)
@router.post("/google-signup", response_model=GoogleAuthResponse)
@limiter.limit(_signin_rate_limit)  # [H2]
def google_signin(request: Request, body: Optional[GoogleCredentialRequest] = None) -> JSONResponse:
    """Sign in (or up) with a Google ID token.

    The bridge links an existing local account with the same email instead of
    creating a duplicate. Token issuance is identical to password signin.
    """
    if body is None or not body.credential:
        raise ValidationError("Missing credential", code="missing_token")
    user = request.app.state.google.resolve(body.credential)

    access_token, raw_refresh = _issue_tokens(request, user)
    return _token_response(
        request,
        200,
        _dump(
            GoogleAuthResponse(
                message="Login successful",
                access_token=access_token,
                refresh_token=raw_refresh,
                user=UserSummary.from_user(user),
            )
        ),
        raw_refresh,
    )


# ---------------------------------------------------------------------------
# Token lifecycle
# ---------------------------------------------------------------------------


@router.post("/refresh-token", response_model=AccessTokenResponse)
def refresh_token(request: Request, body: Optional[RefreshTokenRequest] = None) -> JSONResponse:
    """Exchange a refresh token for a new access token, rotating the refresh token.

    "Not found" and "found but expired" are separate 401 codes. A token that
    was already rotated or revoked is no longer in any ledger (rotated) or is
    expired in place (revoked), so a replayed token always fails.
    """
    raw = _presented_refresh_token(request, body)
    ledger = request.app.state.ledger
    owner = ledger.find_owner(raw)
    if owner is None:
        raise AuthenticationError("Refresh token not found", code="invalid_refresh_token")

    new_raw = generate_refresh_token()
    ledger.rotate(owner, raw, new_raw)  # TokenExpiredOrInvalid -> 401 refresh_token_expired
    access_token = request.app.state.token_issuer.issue_access_token(owner)
    return _token_response(
        request,
        200,
        _dump(AccessTokenResponse(access_token=access_token, message="Tokens renewed successfully")),
        new_raw,
    )


@router.post("/refresh-access-token", response_model=AccessTokenResponse)
def refresh_access_token(request: Request) -> JSONResponse:
    """Issue a new access token for the bearer if the user still holds a live refresh token.

    The bearer may be expired but must carry a valid signature. A token that
    is not a JWT at all surfaces as 500 malformed_token.
    """
    token = get_bearer_token(request)
    claims = request.app.state.token_issuer.decode_ignoring_expiry(token)
    user = request.app.state.user_store.get_by_id(claims.id)
    if user is None:
        raise AuthenticationError("User not found", code="user_not_found")
    if not request.app.state.ledger.has_valid(user):
        raise AuthenticationError("No valid refresh token for user", code="no_valid_refresh_token")

    access_token = request.app.state.token_issuer.issue_access_token(user)
    resp = JSONResponse(content=_dump(AccessTokenResponse(access_token=access_token)))
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/access-token-status", response_model=TokenStatusResponse)
def access_token_status(request: Request) -> TokenStatusResponse:
    """Report whether the bearer token is valid.

    Failures are 401 with the token status (missing_token / expired / invalid)
    in error.detail so the client can branch without parsing messages.
    """
    try:
        token = get_bearer_token(request)
    except AuthenticationError as exc:
        exc.detail = "missing_token"
        raise
    status = request.app.state.token_issuer.token_status(token)
    if status == "expired":
        raise AuthenticationError("Access token has expired", code="token_expired", detail="expired")
    if status == "invalid":
        raise AuthenticationError("Access token is invalid", code="invalid_token", detail="invalid")
    return TokenStatusResponse(status="valid", message="Access token is valid and active")


@router.post("/logout", response_model=MessageResponse)
def logout(request: Request, body: Optional[RefreshTokenRequest] = None) -> JSONResponse:
    """Revoke one refresh token belonging to the bearer.

    An expired access token is accepted so a client can always sign out. A
    refresh token owned by someone else is reported as not found.
    """
    claims = _claims_allowing_expiry(request)
    raw = _presented_refresh_token(request, body)
    ledger = request.app.state.ledger
    owner = ledger.find_owner(raw)
    if owner is None or owner.id != claims.id:
        raise NotFoundError("Refresh token not found", code="token_not_found")

    ledger.revoke(owner, raw)
    logger.info("User %s logged out", owner.id)
    resp = JSONResponse(content=_dump(MessageResponse(message="Logged out successfully")))
    clear_refresh_cookie(resp, request.app.state.settings)
    return resp


@router.post("/logout-all", response_model=LogoutAllResponse)
def logout_all(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Revoke every refresh token of the caller (sign out of all devices)."""
    revoked = request.app.state.ledger.revoke_all(current_user)
    logger.info("User %s logged out of %d sessions", current_user.id, revoked)
    resp = JSONResponse(content=_dump(LogoutAllResponse(message="Logged out of all sessions", revoked=revoked)))
    clear_refresh_cookie(resp, request.app.state.settings)
    return resp


# ---------------------------------------------------------------------------
# Self-service profile (authenticated)
# ---------------------------------------------------------------------------


@router.get("/me", response_model=UserEnvelope)
async def me(current_user: User = Depends(get_current_user)) -> UserEnvelope:
    """Return the currently authenticated user."""
    return UserEnvelope(user=UserSummary.from_user(current_user))


@router.put("/update-username", response_model=UserUpdatedResponse)
def update_username(
    request: Request,
    body: UsernameUpdate,
    current_user: User = Depends(get_current_user),
) -> UserUpdatedResponse:
    store = request.app.state.user_store
    if not store.update_user(current_user.id, username=body.username):
        raise NotFoundError("User not found")
    return UserUpdatedResponse(
        message="Username updated successfully",
        user=UserSummary.from_user(store.get_by_id(current_user.id)),
    )


@router.put("/update-profile-picture", response_model=UserUpdatedResponse)
def update_profile_picture(
    request: Request,
    body: ProfilePictureUpdate,
    current_user: User = Depends(get_current_user),
) -> UserUpdatedResponse:
    store = request.app.state.user_store
    if not store.update_user(current_user.id, profile_picture=body.profile_picture):
        raise NotFoundError("User not found")
    return UserUpdatedResponse(
        message="Profile picture updated successfully",
        user=UserSummary.from_user(store.get_by_id(current_user.id)),
    )


# ---------------------------------------------------------------------------
# User management
# ---------------------------------------------------------------------------


@router.get("/admin/users", response_model=UserListResponse)
def list_users(request: Request, admin: User = Depends(require_admin)) -> UserListResponse:
    """List every account. Admin only."""
    users = request.app.state.user_store.list_users()
    return UserListResponse(users=[UserSummary.from_user(u) for u in users])


@router.get("/{user_id}", response_model=UserEnvelope)
def get_user(request: Request, user_id: str, session: AccessClaims = Depends(get_session)) -> UserEnvelope:
    """Return another user's public profile. Any authenticated caller."""
    _check_user_id(user_id)
    user = request.app.state.user_store.get_by_id(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return UserEnvelope(user=UserSummary.from_user(user))


@router.put("/{user_id}", response_model=UserUpdatedResponse)
def update_user(
    request: Request,
    user_id: str,
    body: UserUpdate,
    current_user: User = Depends(get_current_user),
) -> UserUpdatedResponse:
    """Update a profile. Owners edit their own display fields; admins edit anyone and roles."""
    _check_user_id(user_id)
    if current_user.id != user_id and not current_user.is_admin:
        raise AuthorizationError("You can only update your own profile", code="forbidden")
    if body.role is not None and not current_user.is_admin:
        raise AuthorizationError("Access denied, admin privileges required", code="not_admin")

    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise ValidationError("No fields to update", code="no_changes")

    store = request.app.state.user_store
    if not store.update_user(user_id, **updates):
        raise NotFoundError("User not found")
    if "role" in updates:
        logger.info("User %s role set to %s by %s", user_id, body.role.value, current_user.id)
    return UserUpdatedResponse(
        message="User updated successfully",
        user=UserSummary.from_user(store.get_by_id(user_id)),
    )


@router.delete("/{user_id}", response_model=MessageResponse)
def delete_user(request: Request, user_id: str, admin: User = Depends(require_admin)) -> MessageResponse:
    """Permanently delete an account and its sessions. Admin only."""
    _check_user_id(user_id)
    if not request.app.state.user_store.delete_user(user_id):
        raise NotFoundError("User not found")
    logger.info("User %s deleted by admin %s", user_id, admin.id)
    return MessageResponse(message="User deleted successfully")
