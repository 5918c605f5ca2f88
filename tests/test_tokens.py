"""
tests/test_tokens.py -- Unit tests for auth/tokens.py.

Covers:
  - issue() embeds sub/role/iat/exp/jti with exp = iat + TTL
  - a fresh token verifies; it still verifies at exactly exp and fails one
    second later
  - altered signature, altered payload, foreign key, alg=none, garbage and
    missing claims all raise the same InvalidTokenError
  - the failing check is logged but not exposed on the exception's public message

Clock: a FrozenClock instance is shared by issuer and verifier so expiry can
be tested without sleeping.
"""

from __future__ import annotations

import base64
import json
import logging
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.errors import InvalidTokenError
from auth.models import Identity, User
from auth.tokens import ALGORITHM, TokenIssuer, TokenVerifier

KEY = "k" * 48
OTHER_KEY = "z" * 48
T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(T0)


@pytest.fixture
def issuer(clock: FrozenClock) -> TokenIssuer:
    return TokenIssuer(KEY, ttl_seconds=3600, clock=clock)


@pytest.fixture
def verifier(clock: FrozenClock) -> TokenVerifier:
    return TokenVerifier(KEY, clock=clock)


@pytest.fixture
def alice() -> User:
    return User(id=7, name="Alice Smith", email="alice@example.com", role="admin")


def _b64(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()


def _flip_char(segment: str, index: int) -> str:
    replacement = "A" if segment[index] != "A" else "B"
    return segment[:index] + replacement + segment[index + 1 :]


class TestIssue:
    def test_claims(self, issuer: TokenIssuer, alice: User) -> None:
        token = issuer.issue(alice)
        claims = jwt.get_unverified_claims(token)
        assert claims["sub"] == "7"
        assert claims["role"] == "admin"
        assert claims["iat"] == int(T0.timestamp())
        assert claims["exp"] == claims["iat"] + 3600
        assert claims["jti"]

    def test_header_algorithm(self, issuer: TokenIssuer, alice: User) -> None:
        assert jwt.get_unverified_header(issuer.issue(alice))["alg"] == ALGORITHM

    def test_claim_change_changes_signature(self, issuer: TokenIssuer, alice: User) -> None:
        a = issuer.issue(alice).rsplit(".", 1)[1]
        alice.role = "user"
        b = issuer.issue(alice).rsplit(".", 1)[1]
        assert a != b

    def test_unsaved_user_rejected(self, issuer: TokenIssuer) -> None:
        with pytest.raises(ValueError):
            issuer.issue(User(name="Nobody", email="nobody@example.com"))

    def test_empty_key_rejected(self) -> None:
        with pytest.raises(ValueError):
            TokenIssuer("")


class TestVerifyAccepts:
    def test_fresh_token(self, issuer: TokenIssuer, verifier: TokenVerifier, alice: User) -> None:
        assert verifier.verify(issuer.issue(alice)) == Identity(user_id=7, role="admin")

    def test_valid_until_exactly_exp(
        self, issuer: TokenIssuer, verifier: TokenVerifier, clock: FrozenClock, alice: User
    ) -> None:
        token = issuer.issue(alice)
        clock.advance(3600)
        assert verifier.verify(token).user_id == 7


class TestVerifyRejects:
    def test_expired(self, issuer: TokenIssuer, verifier: TokenVerifier, clock: FrozenClock, alice: User) -> None:
        token = issuer.issue(alice)
        clock.advance(3601)
        with pytest.raises(InvalidTokenError):
            verifier.verify(token)

    def test_altered_signature(self, issuer: TokenIssuer, verifier: TokenVerifier, alice: User) -> None:
        header, payload, signature = issuer.issue(alice).split(".")
        # A middle character: every bit of it is significant in base64url.
        tampered = ".".join([header, payload, _flip_char(signature, 10)])
        with pytest.raises(InvalidTokenError):
            verifier.verify(tampered)

    def test_altered_payload(self, issuer: TokenIssuer, verifier: TokenVerifier, alice: User) -> None:
        header, _payload, signature = issuer.issue(alice).split(".")
        forged = _b64({"sub": "7", "role": "admin", "iat": int(T0.timestamp()), "exp": 2**31})
        with pytest.raises(InvalidTokenError):
            verifier.verify(".".join([header, forged, signature]))

    def test_foreign_key(self, clock: FrozenClock, verifier: TokenVerifier, alice: User) -> None:
        foreign = TokenIssuer(OTHER_KEY, clock=clock).issue(alice)
        with pytest.raises(InvalidTokenError):
            verifier.verify(foreign)

    def test_alg_none(self, verifier: TokenVerifier) -> None:
        token = ".".join(
            [_b64({"alg": "none", "typ": "JWT"}), _b64({"sub": "7", "role": "admin", "iat": 0, "exp": 2**31}), "x"]
        )
        with pytest.raises(InvalidTokenError):
            verifier.verify(token)

    @pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c.d", "..", "not.a.token", "Bearer x.y.z"])
    def test_malformed(self, verifier: TokenVerifier, token: str) -> None:
        with pytest.raises(InvalidTokenError):
            verifier.verify(token)

    @pytest.mark.parametrize("missing", ["sub", "role", "iat"])
    def test_missing_required_claim(self, verifier: TokenVerifier, missing: str) -> None:
        claims = {"sub": "7", "role": "admin", "iat": int(T0.timestamp()), "exp": int(T0.timestamp()) + 60}
        del claims[missing]
        with pytest.raises(InvalidTokenError):
            verifier.verify(jwt.encode(claims, KEY, algorithm=ALGORITHM))

    def test_missing_exp(self, verifier: TokenVerifier) -> None:
        token = jwt.encode({"sub": "7", "role": "admin", "iat": int(T0.timestamp())}, KEY, algorithm=ALGORITHM)
        with pytest.raises(InvalidTokenError):
            verifier.verify(token)

    @pytest.mark.parametrize("claims", [{"sub": "seven"}, {"role": "root"}])
    def test_bad_claim_values(self, verifier: TokenVerifier, claims: dict) -> None:
        payload = {"sub": "7", "role": "admin", "iat": int(T0.timestamp()), "exp": int(T0.timestamp()) + 60}
        payload.update(claims)
        with pytest.raises(InvalidTokenError):
            verifier.verify(jwt.encode(payload, KEY, algorithm=ALGORITHM))


class TestRejectionIsGeneric:
    def test_same_public_message_for_every_cause(
        self, issuer: TokenIssuer, verifier: TokenVerifier, clock: FrozenClock, alice: User
    ) -> None:
        token = issuer.issue(alice)
        messages = set()
        for bad in ("garbage", TokenIssuer(OTHER_KEY, clock=clock).issue(alice)):
            with pytest.raises(InvalidTokenError) as excinfo:
                verifier.verify(bad)
            messages.add(excinfo.value.public_message)
        clock.advance(7200)
        with pytest.raises(InvalidTokenError) as excinfo:
            verifier.verify(token)
        messages.add(excinfo.value.public_message)
        assert messages == {InvalidTokenError.public_message}

    def test_reason_is_logged(
        self, issuer: TokenIssuer, verifier: TokenVerifier, clock: FrozenClock, alice: User, caplog
    ) -> None:
        token = issuer.issue(alice)
        clock.advance(3601)
        with caplog.at_level(logging.INFO, logger="credgate.auth.tokens"):
            with pytest.raises(InvalidTokenError):
                verifier.verify(token)
        assert "expired" in caplog.text
