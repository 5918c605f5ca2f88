"""
tests/conftest.py -- Shared test fixtures for CredGate.

This module provides:
  - hasher / make_service(): a fast bcrypt hasher and AuthService builder
  - _patch_lifespan(): wires a test AuthService into app.state, bypassing real startup
  - api_client: TestClient with an admin user and JWT, shared per module
  - empty_client: TestClient over an empty store (first-run bootstrap)

Design: API tests use InMemoryUserStore so every module starts from a known
state without touching disk. SQL-backed behaviour is covered separately in
test_store.py against SQLite files under tmp_path.

Environment variables must be set before any api/ or core/ import:
get_settings() is evaluated at import time by api/main.py.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("DATABASE_URL", "memory://")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.memory import InMemoryUserStore
from auth.models import User
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.tokens import Clock, TokenIssuer, TokenVerifier, utc_now

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789"
ADMIN_EMAIL = "testadmin@example.com"
ADMIN_PASSWORD = "testpass123"

# ---------------------------------------------------------------------------
# Core helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def hasher() -> PasswordHasher:
    """Minimum bcrypt cost -- tests exercise behaviour, not brute-force resistance."""
    return PasswordHasher(rounds=4)


def make_service(
    store: InMemoryUserStore | None = None,
    clock: Clock = utc_now,
    self_registration: bool = False,
    ttl_seconds: int = 3600,
) -> AuthService:
    if store is None:
        store = InMemoryUserStore(PasswordHasher(rounds=4))
    return AuthService(
        store=store,
        issuer=TokenIssuer(TEST_SECRET, ttl_seconds=ttl_seconds, clock=clock),
        verifier=TokenVerifier(TEST_SECRET, clock=clock),
        self_registration=self_registration,
    )


@pytest.fixture
def service_factory():
    """Expose make_service() to test modules without importing conftest."""
    return make_service


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_service = service
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The admin user is created before the client starts and the JWT is
    generated for use in Authorization headers.
    """
    service = make_service()
    admin = service.store.create(
        User(name="Test Admin", email=ADMIN_EMAIL, phone="5550000000", role="admin"),
        ADMIN_PASSWORD,
    )
    token = service.issuer.issue(admin)

    app.router.lifespan_context = _patch_lifespan(service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, admin.id


@pytest.fixture
def empty_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient over an empty store, as on first startup."""
    app.router.lifespan_context = _patch_lifespan(make_service())

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client
