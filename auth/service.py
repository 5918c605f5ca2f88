"""
auth/service.py -- Login, request authorization and user management.

AuthService composes the four building blocks (CredentialStore,
PasswordHasher, TokenIssuer, TokenVerifier) and is the only object the HTTP
layer and the CLI talk to. It holds no per-request state: every call takes
its inputs explicitly (including the acting Identity) and returns values.

Login:          Unauthenticated -> CredentialsPresented -> Authenticated | Rejected
Authorization:  Unauthenticated -> TokenPresented       -> Authenticated | Rejected

  Rejected is always InvalidCredentialsError (login) or InvalidTokenError
  (authorization), whatever the underlying reason. The reason is logged on
  the "credgate.auth" logger and never returned.

  Forbidden (ForbiddenError) is a separate outcome: the identity is valid
  but its role does not allow the operation.

Timing equalization:
  login() always runs exactly one bcrypt verify, whether or not the email
  exists. Unknown emails verify against the hasher's dummy hash so response
  time does not reveal which addresses are registered.

Store failures:
  Reads (lookups) are retried once on StoreUnavailableError. create() is
  never retried; a store failure during create surfaces as
  WriteIndeterminateError because the row may or may not have been written.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from typing import TypeVar

from auth.errors import (
    ConflictError,
    ForbiddenError,
    InvalidCredentialsError,
    InvalidTokenError,
    NotFoundError,
    StoreUnavailableError,
    WriteIndeterminateError,
)
from auth.models import Credentials, Identity, LoginResult, User
from auth.store import CredentialStore
from auth.tokens import TokenIssuer, TokenVerifier

logger = logging.getLogger("credgate.auth")

T = TypeVar("T")


class AuthService:
    def __init__(
        self,
        store: CredentialStore,
        issuer: TokenIssuer,
        verifier: TokenVerifier,
        self_registration: bool = False,
    ) -> None:
        self.store = store
        self.hasher = store.hasher
        self.issuer = issuer
        self.verifier = verifier
        self.self_registration = self_registration

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, credentials: Credentials) -> LoginResult:
        """Verify credentials and issue a token. Raises InvalidCredentialsError on any failure."""
        email, password = credentials.email, credentials.password
        if not email or not email.strip() or not password:
            raise self._rejected_login(email, "empty email or password")

        try:
            user = self._read("find_by_email", self.store.find_by_email, email)
        except NotFoundError:
            # Equalize timing -- do NOT return before running bcrypt.
            self.hasher.dummy_verify(password)
            raise self._rejected_login(email, "unknown email") from None

        if not self.hasher.verify(password, user.hashed_password or ""):
            raise self._rejected_login(email, "wrong password")
        if not user.is_active:
            raise self._rejected_login(email, f"account status is {user.status!r}")

        self._after_login(user, password)
        token = self.issuer.issue(user)
        logger.info("Login succeeded for user %d", user.id)
        return LoginResult(token=token, user=user, expires_in=self.issuer.ttl_seconds)

    def _after_login(self, user: User, password: str) -> None:
        """Best-effort bookkeeping; a failure here must not fail the login."""
        try:
            self.store.record_login(user.id)
            if self.hasher.needs_rehash(user.hashed_password or ""):
                self.store.set_password(user.id, password)
                logger.info("Rehashed password for user %d with %d rounds", user.id, self.hasher.rounds)
        except StoreUnavailableError as exc:
            logger.warning("Post-login update failed for user %d: %s", user.id, exc.reason)

    @staticmethod
    def _rejected_login(email: str, reason: str) -> InvalidCredentialsError:
        logger.info("Login rejected for %r: %s", email, reason)
        return InvalidCredentialsError(reason)

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def authorize(self, token: str) -> Identity:
        """Resolve a bearer token to the caller's current Identity.

        The signature and expiry are checked by the verifier; the user is then
        re-read so suspended accounts lose access before their token expires,
        and the returned role is the user's current one.
        """
        claimed = self.verifier.verify(token)
        try:
            user = self._read("find_by_id", self.store.find_by_id, claimed.user_id)
        except NotFoundError:
            logger.info("Token rejected: user %d no longer exists", claimed.user_id)
            raise InvalidTokenError("subject not found") from None
        if not user.is_active:
            logger.info("Token rejected: user %d status is %r", user.id, user.status)
            raise InvalidTokenError("subject not active")
        return Identity(user_id=user.id, role=user.role)

    def authorize_header(self, header_value: str | None) -> Identity:
        """Authorize an ``Authorization: Bearer <token>`` header value."""
        scheme, _, token = (header_value or "").strip().partition(" ")
        token = token.strip()
        if scheme.lower() != "bearer" or not token or " " in token:
            logger.info("Token rejected: malformed Authorization header")
            raise InvalidTokenError("malformed Authorization header")
        return self.authorize(token)

    @staticmethod
    def require_role(identity: Identity, *roles: str) -> Identity:
        if identity.role not in roles:
            logger.info("Forbidden: user %d has role %r, needs one of %s", identity.user_id, identity.role, roles)
            raise ForbiddenError(f"role {identity.role!r} not in {roles}")
        return identity

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------

    def register(self, user: User, password: str, actor: Identity | None = None) -> User:
        """Create a user through one of three paths.

        admin actor          -- any role and status
        empty store          -- bootstrap of the first account, as requested
        self-registration    -- only when enabled; forced to role "user", status "active"

        Anything else is InvalidTokenError (no actor) or ForbiddenError.
        """
        if actor is not None and actor.is_admin:
            path = "admin"
        elif actor is None and not self._read("has_users", self.store.has_users):
            path = "bootstrap"
        elif self.self_registration:
            path = "self-registration"
            user = replace(user, role="user", status="active")
        elif actor is None:
            raise InvalidTokenError("registration requires an admin token")
        else:
            raise self._forbidden(actor, "create users")

        try:
            created = self.store.create(user, password)
        except StoreUnavailableError as exc:
            logger.error("Create for %r failed mid-write: %s", user.email, exc.reason)
            raise WriteIndeterminateError(exc.reason) from exc
        logger.info("Created user %d (%s, role=%s) via %s", created.id, created.email, created.role, path)
        return created

    def get_user(self, actor: Identity, user_id: int) -> User:
        if actor.user_id != user_id and not actor.is_admin:
            raise self._forbidden(actor, f"read user {user_id}")
        return self._read("find_by_id", self.store.find_by_id, user_id)

    def list_users(self, actor: Identity) -> list[User]:
        return self._read("list_users", self.store.list_users)

    def change_role(self, actor: Identity, user_id: int, role: str) -> User:
        self.require_role(actor, "admin")
        target = self._read("find_by_id", self.store.find_by_id, user_id)
        if target.role == role:
            return target
        if target.role == "admin" and target.is_active:
            self._guard_self(actor, target, "demote")
        updated = self.store.update_role(user_id, role, keep_active_admin=True)
        logger.info("User %d changed role of user %d to %s", actor.user_id, user_id, role)
        return updated

    def change_status(self, actor: Identity, user_id: int, status: str) -> User:
        self.require_role(actor, "admin")
        target = self._read("find_by_id", self.store.find_by_id, user_id)
        if target.status == status:
            return target
        if target.is_active and target.role == "admin":
            self._guard_self(actor, target, "deactivate")
        updated = self.store.update_status(user_id, status, keep_active_admin=True)
        logger.info("User %d changed status of user %d to %s", actor.user_id, user_id, status)
        return updated

    def update_profile(self, actor: Identity, user_id: int, **fields: str | None) -> User:
        if actor.user_id != user_id and not actor.is_admin:
            raise self._forbidden(actor, f"edit user {user_id}")
        return self.store.update_profile(user_id, **fields)

    def change_password(self, actor: Identity, current_password: str, new_password: str) -> User:
        """Self-service password change. The current password must verify."""
        user = self._read("find_by_id", self.store.find_by_id, actor.user_id)
        if not self.hasher.verify(current_password, user.hashed_password or ""):
            logger.info("Password change rejected for user %d: wrong current password", actor.user_id)
            raise InvalidCredentialsError("wrong current password")
        updated = self.store.set_password(actor.user_id, new_password)
        logger.info("User %d changed their password", actor.user_id)
        return updated

    @staticmethod
    def _guard_self(actor: Identity, target: User, action: str) -> None:
        # The last-active-admin rule is enforced by the store, atomically with the write.
        if target.id == actor.user_id:
            raise ConflictError(f"You cannot {action} your own account.")

    @staticmethod
    def _forbidden(actor: Identity, action: str) -> ForbiddenError:
        logger.info("Forbidden: user %d (role=%s) may not %s", actor.user_id, actor.role, action)
        return ForbiddenError(action)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _read(operation: str, fn: Callable[..., T], *args) -> T:
        """Run an idempotent store read, retrying once on StoreUnavailableError."""
        try:
            return fn(*args)
        except StoreUnavailableError as exc:
            logger.warning("Store %s unavailable (%s); retrying once", operation, exc.reason)
            return fn(*args)
