"""
API request and response models for ReelTalk REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format is camelCase (accessToken, profilePicture) to match the SPA
client; Python attributes stay snake_case via an alias generator.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import Role, User

# ---------------------------------------------------------------------------
# Base configs
# ---------------------------------------------------------------------------

_REQUEST_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    str_strip_whitespace=True,
    extra="ignore",
)

_RESPONSE_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    frozen=True,
)


def normalize_email_address(value: str) -> str:
    value = value.strip().lower()
    local, at, domain = value.partition("@")
    if not at or not local or "." not in domain:
        raise ValueError("Invalid email address")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /users/signup."""

    model_config = _REQUEST_CONFIG

    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1, max_length=255)
    username: str = Field(min_length=1, max_length=255)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return normalize_email_address(value)


class SigninRequest(BaseModel):
    """Request body for POST /users/signin."""

    model_config = _REQUEST_CONFIG

    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1, max_length=255)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return normalize_email_address(value)


class GoogleCredentialRequest(BaseModel):
    """Request body for POST /users/google-signin and /users/google-signup.

    credential is the Google ID token from Google Identity Services. Left
    optional so a missing value gets the explicit "Missing credential" error.
    """

    model_config = _REQUEST_CONFIG

    credential: Optional[str] = Field(default=None, max_length=8192)


class RefreshTokenRequest(BaseModel):
    """Request body for POST /users/refresh-token and /users/logout.

    refreshToken may be omitted when the client relies on the httpOnly cookie.
    """

    model_config = _REQUEST_CONFIG

    refresh_token: Optional[str] = Field(default=None, max_length=256)


class UsernameUpdate(BaseModel):
    model_config = _REQUEST_CONFIG

    username: str = Field(min_length=1, max_length=255)


class ProfilePictureUpdate(BaseModel):
    model_config = _REQUEST_CONFIG

    profile_picture: str = Field(min_length=1, max_length=2048)


class UserUpdate(BaseModel):
    """Request body for PUT /users/{id}.

    Only display fields and role are writable here. Unknown fields (password,
    email, provider, ...) are rejected by extra="forbid".
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="forbid",
    )

    username: Optional[str] = Field(default=None, min_length=1, max_length=255)
    profile_picture: Optional[str] = Field(default=None, max_length=2048)
    role: Optional[Role] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserSummary(BaseModel):
    """Public view of a user. Never carries password hash, provider id or ledger."""

    model_config = _RESPONSE_CONFIG

    id: str
    email: str
    username: str
    profile_picture: str
    role: Role

    @classmethod
    def from_user(cls, user: User) -> "UserSummary":
        """Factory Method: the domain -> contract mapping lives with the contract."""
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            profile_picture=user.profile_picture or "",
            role=user.role,
        )


class AuthResponse(BaseModel):
    """Signup / signin response. The refresh token travels only in the cookie."""

    model_config = _RESPONSE_CONFIG

    message: str
    access_token: str
    user: UserSummary


class GoogleAuthResponse(AuthResponse):
    """Google sign-in response. Echoes the refresh token in the body as well."""

    refresh_token: str


class AccessTokenResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    access_token: str
    message: Optional[str] = None


class TokenStatusResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    status: str
    message: str


class MessageResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    message: str


class LogoutAllResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    message: str
    revoked: int


class UserEnvelope(BaseModel):
    model_config = _RESPONSE_CONFIG

    user: UserSummary


class UserUpdatedResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    message: str
    user: UserSummary


class UserListResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    users: list[UserSummary]


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
