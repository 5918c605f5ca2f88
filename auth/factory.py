"""
auth/factory.py -- Assemble an AuthService from Settings.

The API lifespan and the CLI both build their service here so the wiring
(which store, which cost factor, which key, which TTL) lives in one place.
Unit tests construct AuthService directly with an InMemoryUserStore and a
fixed key; the CLI tests go through here against a SQLite file.

Layer rule: may import from core/ (the kernel). No imports from api/.
"""

from __future__ import annotations

from auth.memory import InMemoryUserStore
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.store import CredentialStore, UserStore
from auth.tokens import TokenIssuer, TokenVerifier
from core.config import Settings


def build_store(settings: Settings, hasher: PasswordHasher) -> CredentialStore:
    """Return the store named by DATABASE_URL ("memory://" selects the in-memory store)."""
    if settings.database_url == "memory://":
        return InMemoryUserStore(hasher)
    return UserStore(hasher, settings.database_url, timeout=settings.store_timeout_seconds)


def build_auth_service(settings: Settings, store: CredentialStore | None = None) -> AuthService:
    if store is None:
        store = build_store(settings, PasswordHasher(rounds=settings.bcrypt_rounds))
    return AuthService(
        store=store,
        issuer=TokenIssuer(settings.secret_key, ttl_seconds=settings.token_expire_seconds),
        verifier=TokenVerifier(settings.secret_key),
        self_registration=settings.self_registration_enabled,
    )
