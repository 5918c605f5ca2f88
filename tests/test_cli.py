"""
tests/test_cli.py -- Tests for the operator CLI in main.py.

Each test points DATABASE_URL at a fresh SQLite file so separate main()
invocations share state the way separate shell commands would.
"""

from __future__ import annotations

import io
import sys

import pytest
from jose import jwt

from core.config import get_settings
from main import main


@pytest.fixture(autouse=True)
def sqlite_env(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _create(monkeypatch, email: str, password: str = "clipass1234", *extra: str) -> int:
    monkeypatch.setattr(sys, "stdin", io.StringIO(password + "\n"))
    return main(["create-user", "--name", "CLI User", "--email", email, "--password-stdin", *extra])


def test_create_and_list(monkeypatch, capsys) -> None:
    assert _create(monkeypatch, "Alice@Example.com", "clipass1234", "--role", "admin") == 0
    assert "Created user 1" in capsys.readouterr().out

    assert main(["list-users"]) == 0
    out = capsys.readouterr().out
    assert "alice@example.com" in out
    assert "admin" in out


def test_list_empty(capsys) -> None:
    assert main(["list-users"]) == 0
    assert "No users." in capsys.readouterr().out


def test_duplicate_email_exits_1(monkeypatch, capsys) -> None:
    assert _create(monkeypatch, "bob@example.com") == 0
    assert _create(monkeypatch, "BOB@example.com") == 1
    assert "already exists" in capsys.readouterr().err


def test_short_password_exits_1(monkeypatch, capsys) -> None:
    assert _create(monkeypatch, "carol@example.com", "short") == 1
    assert "between 8 and 128" in capsys.readouterr().err


def test_set_role_and_status(monkeypatch, capsys) -> None:
    _create(monkeypatch, "dave@example.com")
    capsys.readouterr()
    assert main(["set-role", "1", "admin"]) == 0
    assert main(["set-status", "1", "suspended"]) == 0
    out = capsys.readouterr().out
    assert "admin" in out and "suspended" in out


def test_unknown_user_exits_1(capsys) -> None:
    assert main(["set-status", "42", "suspended"]) == 1
    assert "User not found." in capsys.readouterr().err


def test_invalid_choice_is_usage_error() -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["set-role", "1", "root"])
    assert excinfo.value.code == 2


def test_issue_token(monkeypatch, capsys) -> None:
    _create(monkeypatch, "erin@example.com", "clipass1234", "--role", "admin")
    capsys.readouterr()
    assert main(["issue-token", "erin@example.com"]) == 0
    token = capsys.readouterr().out.strip()
    claims = jwt.get_unverified_claims(token)
    assert claims["sub"] == "1"
    assert claims["role"] == "admin"
