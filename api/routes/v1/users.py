"""
api/routes/v1/users.py -- User management REST endpoints.

Routes:
  POST  /api/v1/users          -- create user (admin, first-run bootstrap, or self-registration)
  GET   /api/v1/users          -- list users (requires auth)
  GET   /api/v1/users/{id}     -- one user (self or admin)
  PATCH /api/v1/users/{id}     -- profile (self or admin); role/status (admin only)

No route returns a password or hash: every response goes through
UserResponse.from_user().

Security:
  Role/status changes block self-deactivation, self-demotion and removing
  the last active admin (AuthService raises ConflictError -> 409).
  Users are never deleted; PATCH status=suspended is the soft delete.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import UserCreate, UserPatch, UserResponse
from auth.dependencies import get_auth_service, get_current_identity, try_get_identity
from auth.models import Identity, User
from auth.service import AuthService

# Auth policy:
# - POST  /api/v1/users:        optional auth -- AuthService.register decides
# - GET   /api/v1/users:        requires auth (get_current_identity)
# - GET   /api/v1/users/{id}:   requires auth; self or admin
# - PATCH /api/v1/users/{id}:   requires auth; self or admin, role/status admin only
router = APIRouter()


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    actor: Identity | None = Depends(try_get_identity),
) -> UserResponse:
    """Create a user account. Returns 409 if the email is already registered."""
    service: AuthService = get_auth_service(request)
    new_user = User(
        name=body.name,
        email=body.email,
        phone=body.phone,
        role=body.role.value,
        status=body.status.value,
        push_token=body.push_token,
    )
    created = service.register(new_user, body.password, actor=actor)
    return UserResponse.from_user(created)


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, identity: Identity = Depends(get_current_identity)) -> list[UserResponse]:
    """List all user accounts, ordered by id."""
    return [UserResponse.from_user(u) for u in get_auth_service(request).list_users(identity)]


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: int, identity: Identity = Depends(get_current_identity)) -> UserResponse:
    return UserResponse.from_user(get_auth_service(request).get_user(identity, user_id))


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    identity: Identity = Depends(get_current_identity),
) -> UserResponse:
    """Apply the supplied fields. Admin-only fields are checked before anything is written."""
    service: AuthService = get_auth_service(request)
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )
    if "role" in changes or "status" in changes:
        service.require_role(identity, "admin")

    # Guarded changes first so a ConflictError leaves the profile untouched.
    if changes.get("role") is not None:
        service.change_role(identity, user_id, changes["role"].value)
    if changes.get("status") is not None:
        service.change_status(identity, user_id, changes["status"].value)
    profile = {k: changes[k] for k in ("name", "phone", "push_token") if k in changes}
    if profile:
        service.update_profile(identity, user_id, **profile)
    return UserResponse.from_user(service.get_user(identity, user_id))
