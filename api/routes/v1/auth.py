"""
api/routes/v1/auth.py -- Login and current-identity endpoints.

Routes:
  POST /api/v1/login            -- email + password -> {token}
  GET  /api/v1/me               -- current identity and user record (requires auth)
  POST /api/v1/me/password      -- change own password (requires auth)

Security:
  POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT).
  AuthService.login() provides timing equalization -- use it, never inline
  find_by_email() + verify().
  Unknown email and wrong password produce byte-identical 401 responses.
  Cache-Control: no-store on login responses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import LoginRequest, LoginResponse, MeResponse, PasswordChange, UserResponse
from auth.dependencies import get_auth_service, get_current_identity
from auth.errors import InvalidCredentialsError
from auth.models import Credentials, Identity
from auth.service import AuthService

# Auth policy:
# - POST /api/v1/login:         public -- login endpoint must be unauthenticated
# - GET  /api/v1/me:            requires auth (get_current_identity)
# - POST /api/v1/me/password:   requires auth (get_current_identity)
router = APIRouter()


@router.post("/login", response_model=LoginResponse)
@limiter.limit(login_rate_limit)  # below @router so the registered endpoint is the rate-limited wrapper
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return a bearer token.

    Failures raise InvalidCredentialsError, rendered by the AuthError handler
    in api/main.py with the same body for every cause.
    """
    service: AuthService = get_auth_service(request)
    result = service.login(Credentials(email=body.email, password=body.password))
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(token=result.token, expires_in=result.expires_in).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/me", response_model=MeResponse)
def me(request: Request, identity: Identity = Depends(get_current_identity)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    user = get_auth_service(request).get_user(identity, identity.user_id)
    return MeResponse(user_id=identity.user_id, role=identity.role, user=UserResponse.from_user(user))


@router.post("/me/password", status_code=204)
def change_password(
    request: Request,
    body: PasswordChange,
    identity: Identity = Depends(get_current_identity),
) -> None:
    """Change the caller's password. The current password must be supplied."""
    service: AuthService = get_auth_service(request)
    try:
        service.change_password(identity, body.current_password, body.new_password)
    except InvalidCredentialsError:
        # The caller is already authenticated; a 401 here would read as
        # "your session is gone".
        raise HTTPException(
            status_code=422,
            detail={"code": "wrong_password", "message": "Current password is incorrect."},
        ) from None
