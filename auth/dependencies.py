"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Authenticated requests carry ``Authorization: Bearer <token>``. The routing
layer only extracts the header; AuthService decides everything else.

try_get_identity() is the soft variant (returns None when no header is sent).
get_current_identity() raises InvalidTokenError -> 401 if unauthenticated.
Role checks live in AuthService (ForbiddenError -> 403).

Errors are raised as auth.errors exceptions, not HTTPException, so the single
AuthError handler in api/main.py renders them with the standard envelope.

Layer rule: auth/dependencies.py may import from fastapi (for Request)
because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import Identity
from auth.service import AuthService


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def try_get_identity(request: Request) -> Identity | None:
    """Authenticate the request if it carries an Authorization header.

    Returns None only when the header is absent. A present but invalid
    header still raises InvalidTokenError -- a bad token is never silently
    downgraded to anonymous.
    """
    header = request.headers.get("Authorization")
    if not header:
        return None
    return get_auth_service(request).authorize_header(header)


def get_current_identity(request: Request) -> Identity:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: Identity = Depends(get_current_identity)): ...
    """
    return get_auth_service(request).authorize_header(request.headers.get("Authorization"))

