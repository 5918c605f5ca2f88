"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store, the service and the routes do the work. The HTTP contract
lives separately in api/models.py and never carries hashed_password.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field

ROLES: tuple[str, ...] = ("admin", "user")
STATUSES: tuple[str, ...] = ("active", "suspended", "pending")

DEFAULT_ROLE = "user"
DEFAULT_STATUS = "active"


def normalize_email(email: str) -> str:
    """Canonical form used for storage and lookup (case-insensitive login key)."""
    return email.strip().lower()


@dataclass
class User:
    """A person who can authenticate against CredGate.

    email is stored normalized (see normalize_email) and is unique across the
    store. hashed_password is the bcrypt string produced by PasswordHasher; it
    is excluded from repr so a logged User never leaks it.

    Users are never hard-deleted. Suspension (status="suspended") is the soft
    delete -- it keeps the id valid for whatever else references it.
    """

    name: str
    email: str
    phone: str = ""
    role: str = DEFAULT_ROLE  # "admin", "user"
    status: str = DEFAULT_STATUS  # "active", "suspended", "pending"
    id: int | None = None
    hashed_password: str | None = field(default=None, repr=False)
    push_token: str | None = None  # external push notification token
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"


@dataclass(frozen=True)
class Credentials:
    """Email + plaintext password as presented at login. Never persisted."""

    email: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class Identity:
    """The resolved caller of an authenticated request.

    Returned by AuthService.authorize() and passed explicitly to every
    operation that needs to know who is acting.
    """

    user_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass(frozen=True)
class LoginResult:
    token: str
    user: User
    expires_in: int
