"""
API request and response models for CredGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

No response model has a password or hash field. UserResponse.from_user() is
the only path from a domain User to the wire, so the hash cannot leak.
"""

from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator

from auth.models import User
from auth.passwords import MAX_PASSWORD_LENGTH, MIN_PASSWORD_LENGTH

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", something on both sides, a dot in the domain.
# Deliverability is not our problem; uniqueness is.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PHONE_PATTERN = r"^\+?[0-9 ()-]{0,32}$"

# Whitespace is trimmed on these profile fields only. Passwords are taken
# byte-for-byte: leading and trailing spaces are part of the secret.
Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
Email = Annotated[str, StringConstraints(strip_whitespace=True, max_length=320, pattern=EMAIL_PATTERN)]
Phone = Annotated[str, StringConstraints(strip_whitespace=True, max_length=32, pattern=PHONE_PATTERN)]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    admin = "admin"
    user = "user"


class StatusEnum(str, Enum):
    active = "active"
    suspended = "suspended"
    pending = "pending"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/login.

    Only max_length is enforced here. An empty or short password must reach
    the service so it is rejected with the same invalid_credentials response
    as any other bad login, not with a distinguishable 422.
    """

    email: str = Field(max_length=320)
    password: str = Field(max_length=MAX_PASSWORD_LENGTH)


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users."""

    name: Name
    email: Email
    phone: Phone = ""
    role: RoleEnum = RoleEnum.user
    status: StatusEnum = StatusEnum.active
    password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=MAX_PASSWORD_LENGTH)
    push_token: Optional[str] = Field(default=None, max_length=512)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.lower()


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/users/{id}. Omitted fields are left unchanged.

    role and status are admin-only; name, phone and push_token may be
    changed by the user themselves.
    """

    name: Optional[Name] = None
    phone: Optional[Phone] = None
    push_token: Optional[str] = Field(default=None, max_length=512)
    role: Optional[RoleEnum] = None
    status: Optional[StatusEnum] = None

    @field_validator("name", "role", "status")
    @classmethod
    def reject_null(cls, value):
        # Omitting a field leaves it unchanged; an explicit null is not a value.
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class PasswordChange(BaseModel):
    """Request body for POST /api/v1/me/password."""

    current_password: str = Field(max_length=MAX_PASSWORD_LENGTH)
    new_password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=MAX_PASSWORD_LENGTH)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    """Response for a successful POST /api/v1/login."""

    model_config = ConfigDict(frozen=True)

    token: str
    token_type: str = "bearer"
    expires_in: int


class UserResponse(BaseModel):
    """Outward view of a user. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    phone: str
    role: RoleEnum
    status: StatusEnum
    push_token: Optional[str] = None
    created_at: str
    updated_at: str
    last_login: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        """Factory Method -- the domain-to-wire mapping lives with the wire model."""
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            phone=user.phone,
            role=user.role,
            status=user.status,
            push_token=user.push_token,
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
            last_login=user.last_login,
        )


class MeResponse(BaseModel):
    """Response for GET /api/v1/me."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    role: RoleEnum
    user: UserResponse


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
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
