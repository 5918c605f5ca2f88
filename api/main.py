"""
api/main.py -- FastAPI application entry point for CredGate.

Exposes the authentication core over HTTP. The app is a thin adapter: routes
translate JSON to AuthService calls and AuthError subclasses back to JSON.

Run with:      uvicorn api.main:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. log_requests          -- access log line per request
  2. TrustedHostMiddleware -- rejects unexpected Host headers
  3. CORSMiddleware        -- CORS headers for the configured browser origins
  4. SlowAPIMiddleware     -- per-route rate limits (POST /login)

Lifespan builds the AuthService (and its store) from Settings on startup and
closes the store on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.errors import AuthError, InvalidTokenError
from auth.factory import build_auth_service
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("credgate.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the AuthService on startup; close its store on shutdown.

    Settings are read once here. The signing key and TTL are handed to the
    token issuer/verifier and never re-read for the life of the process.
    """
    logger.info("CredGate API starting up")
    service = build_auth_service(_settings)
    app.state.auth_service = service
    logger.info(
        "Auth initialized (store=%s, token_ttl=%ds, bcrypt_rounds=%d, self_registration=%s)",
        type(service.store).__name__,
        _settings.token_expire_seconds,
        _settings.bcrypt_rounds,
        _settings.self_registration_enabled,
    )

    yield

    service.store.close()
    logger.info("CredGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="CredGate API",
    description="Credential management and JWT authentication.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps each add_middleware() call around the previous ones, so the
# last one registered sees the request first. Registered innermost-first:
# SlowAPI, CORS, TrustedHost.
# ---------------------------------------------------------------------------

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# ---------------------------------------------------------------------------
# Access log
#
# One line per request on "credgate.api.access". Only method, path, status,
# latency and client address are logged: never headers or bodies, which
# carry bearer tokens and passwords.
# ---------------------------------------------------------------------------

access_logger = logging.getLogger("credgate.api.access")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    access_logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started) * 1000,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render a domain error.

    Only the class-level public message is sent. exc.reason (which may say
    "unknown email" or "expired at ...") has already been logged by the
    raiser and stays server-side.
    """
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.public_message)).model_dump(),
    )
    if isinstance(exc, InvalidTokenError):
        response.headers["WWW-Authenticate"] = "Bearer"
    if exc.status_code == 401:
        response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when POST /login exceeds LOGIN_RATE_LIMIT for the client address.

    Retry-After is the length of the limit's window, an upper bound on how
    long the client has to wait.
    """
    item = getattr(getattr(exc, "limit", None), "limit", None)
    retry_after = item.get_expiry() if item is not None else 60
    client = request.client.host if request.client else "unknown"
    logger.warning("Rate limit hit on %s from %s", request.url.path, client)
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(code="rate_limited", message="Too many login attempts. Try again later.")
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation.

    Error entries are reduced to location + message: pydantic's "input" field
    would echo submitted passwords back to the client.
    """
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(errors),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with detail={"code": ..., "message": ...}.
    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable.
# No rate limit -- health checks from load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness plus a store connectivity probe."""
    store_ok = request.app.state.auth_service.store.ping()
    return HealthResponse(
        status="healthy" if store_ok else "degraded",
        version=VERSION,
        components={"app": "ok", "database": "ok" if store_ok else "error"},
    )
