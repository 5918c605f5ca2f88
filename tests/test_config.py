"""
tests/test_config.py -- Unit tests for core/config.py and auth/factory.py.

Covers:
  - SECRET_KEY policy: generated in DEBUG mode, required otherwise, >= 32 chars
  - token TTL and bcrypt cost bounds
  - Settings is frozen
  - build_auth_service() picks the store named by DATABASE_URL and carries
    TTL / cost / self-registration through to the service
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from auth.factory import build_auth_service
from auth.memory import InMemoryUserStore
from auth.store import UserStore
from core.config import Settings

GOOD_KEY = "x" * 32


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestSecretKey:
    def test_debug_generates_key(self, monkeypatch) -> None:
        monkeypatch.delenv("SECRET_KEY", raising=False)
        settings = _settings(debug=True)
        assert len(settings.secret_key) == 64

    def test_debug_keys_differ_per_instance(self, monkeypatch) -> None:
        monkeypatch.delenv("SECRET_KEY", raising=False)
        assert _settings(debug=True).secret_key != _settings(debug=True).secret_key

    def test_production_requires_key(self, monkeypatch) -> None:
        monkeypatch.delenv("SECRET_KEY", raising=False)
        with pytest.raises(ValidationError, match="SECRET_KEY is required"):
            _settings(debug=False)

    def test_short_key_rejected(self) -> None:
        with pytest.raises(ValidationError, match="at least 32 characters"):
            _settings(debug=False, secret_key="too-short")

    def test_key_from_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("SECRET_KEY", GOOD_KEY)
        monkeypatch.setenv("DEBUG", "false")
        assert _settings().secret_key == GOOD_KEY


class TestBounds:
    @pytest.mark.parametrize("ttl", [0, 299, 86401])
    def test_token_ttl_out_of_range(self, ttl: int) -> None:
        with pytest.raises(ValidationError):
            _settings(secret_key=GOOD_KEY, token_expire_seconds=ttl)

    @pytest.mark.parametrize("rounds", [3, 17])
    def test_bcrypt_rounds_out_of_range(self, rounds: int) -> None:
        with pytest.raises(ValidationError):
            _settings(secret_key=GOOD_KEY, bcrypt_rounds=rounds)

    def test_defaults(self, monkeypatch) -> None:
        for name in ("TOKEN_EXPIRE_SECONDS", "BCRYPT_ROUNDS", "SELF_REGISTRATION_ENABLED"):
            monkeypatch.delenv(name, raising=False)
        settings = _settings(secret_key=GOOD_KEY)
        assert settings.token_expire_seconds == 3600
        assert settings.bcrypt_rounds == 12
        assert settings.self_registration_enabled is False

    def test_frozen(self) -> None:
        settings = _settings(secret_key=GOOD_KEY)
        with pytest.raises(ValidationError):
            settings.secret_key = "y" * 32


class TestFactory:
    def test_memory_store(self) -> None:
        service = build_auth_service(_settings(secret_key=GOOD_KEY, database_url="memory://", bcrypt_rounds=4))
        assert isinstance(service.store, InMemoryUserStore)
        assert service.hasher.rounds == 4

    def test_sql_store(self, tmp_path) -> None:
        url = f"sqlite:///{tmp_path / 'factory.db'}"
        service = build_auth_service(_settings(secret_key=GOOD_KEY, database_url=url, bcrypt_rounds=4))
        try:
            assert isinstance(service.store, UserStore)
            assert service.store.ping() is True
        finally:
            service.store.close()

    def test_settings_carried_through(self) -> None:
        settings = _settings(
            secret_key=GOOD_KEY,
            database_url="memory://",
            bcrypt_rounds=4,
            token_expire_seconds=600,
            self_registration_enabled=True,
        )
        service = build_auth_service(settings)
        assert service.issuer.ttl_seconds == 600
        assert service.self_registration is True
