"""
auth/errors.py -- Error kinds raised by the authentication core.

Every error carries a machine-readable code, the HTTP-equivalent status and a
public message. api/main.py renders them through a single exception handler,
so routes raise these instead of building responses by hand.

Anti-enumeration: InvalidCredentialsError and InvalidTokenError always carry
the same public message regardless of which check failed. The reason passed
to the constructor is for logs only and is never rendered to a client.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all CredGate domain errors."""

    code: str = "auth_error"
    status_code: int = 400
    public_message: str = "Request could not be processed."

    def __init__(self, reason: str = "") -> None:
        self.reason = reason or self.public_message
        super().__init__(self.reason)


class DuplicateEmailError(AuthError):
    code = "conflict"
    status_code = 409
    public_message = "A user with that email already exists."


class ConflictError(AuthError):
    """A business rule refused the change (e.g. suspending the last admin)."""

    code = "conflict"
    status_code = 409
    public_message = "The requested change conflicts with the current state."

    def __init__(self, reason: str = "") -> None:
        super().__init__(reason)
        # Business-rule conflicts are safe to explain to the caller.
        if reason:
            self.public_message = reason


class NotFoundError(AuthError):
    code = "not_found"
    status_code = 404
    public_message = "User not found."


class InvalidCredentialsError(AuthError):
    code = "invalid_credentials"
    status_code = 401
    public_message = "Invalid email or password."


class InvalidTokenError(AuthError):
    code = "invalid_token"
    status_code = 401
    public_message = "Authentication required."


class ForbiddenError(AuthError):
    code = "forbidden"
    status_code = 403
    public_message = "You do not have permission to perform this action."


class PasswordPolicyError(AuthError, ValueError):
    code = "password_policy"
    status_code = 422
    public_message = "Password must be between 8 and 128 characters."


class StoreUnavailableError(AuthError):
    """The credential store failed or timed out. Distinct from NotFound/Duplicate."""

    code = "store_unavailable"
    status_code = 503
    public_message = "The user store is temporarily unavailable."


class WriteIndeterminateError(StoreUnavailableError):
    """A write failed mid-flight; it may or may not have been applied."""

    code = "write_indeterminate"
    public_message = "The request could not be confirmed. Check whether the change was applied before retrying."
