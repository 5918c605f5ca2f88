"""
auth/tokens.py -- JWT issuing and verification.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (user id), role, iat, exp and a random jti. The key and TTL are
       handed in at construction from the process-wide Settings, loaded once
       at startup and never mutated.

  Verification runs four checks in a fixed order and stops at the first
  failure:
       1. structure  -- three base64url segments, decodable header, expected alg
       2. signature  -- HMAC over header.payload with the configured key
       3. expiry     -- now <= exp, using the injected clock
       4. claims     -- sub, role and iat present and well-formed
  Every failure raises the same InvalidTokenError. The failing step is
  logged so operators can diagnose, but callers only ever see "invalid".

  Clock: both classes take a zero-argument callable returning an aware UTC
  datetime. Production uses the wall clock; tests pin it.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timezone

from jose import JWTError, jwt

from auth.errors import InvalidTokenError
from auth.models import ROLES, Identity, User

logger = logging.getLogger("credgate.auth.tokens")

ALGORITHM = "HS256"
REQUIRED_CLAIMS: tuple[str, ...] = ("sub", "role", "iat", "exp")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenIssuer:
    """Mints signed, time-bound access tokens for a verified user."""

    def __init__(self, secret_key: str, ttl_seconds: int = 3600, clock: Clock = utc_now) -> None:
        if not secret_key:
            raise ValueError("secret_key is required")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._secret_key = secret_key
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def issue(self, user: User) -> str:
        """Encode a signed JWT for the user. The user must already have an id."""
        if user.id is None:
            raise ValueError("cannot issue a token for an unsaved user")
        issued_at = int(self._clock().timestamp())
        payload = {
            "sub": str(user.id),
            "role": user.role,
            "iat": issued_at,
            "exp": issued_at + self._ttl_seconds,
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)


class TokenVerifier:
    """Validates a presented token and resolves it back to an Identity."""

    def __init__(self, secret_key: str, clock: Clock = utc_now) -> None:
        if not secret_key:
            raise ValueError("secret_key is required")
        self._secret_key = secret_key
        self._clock = clock

    def verify(self, token: str) -> Identity:
        """Return the Identity encoded in a valid token; raise InvalidTokenError otherwise."""
        # 1. Structure
        if not isinstance(token, str) or token.count(".") != 2 or not all(token.split(".")):
            raise _invalid("malformed token structure")
        try:
            header = jwt.get_unverified_header(token)
        except JWTError:
            raise _invalid("undecodable header") from None
        if header.get("alg") != ALGORITHM:
            raise _invalid(f"unexpected algorithm {header.get('alg')!r}")

        # 2. Signature (expiry is checked below against the injected clock)
        try:
            claims = jwt.decode(
                token,
                self._secret_key,
                algorithms=[ALGORITHM],
                options={"verify_exp": False, "verify_iat": False, "verify_nbf": False},
            )
        except JWTError as exc:
            raise _invalid(f"signature check failed: {exc}") from None

        # 3. Expiry
        exp = claims.get("exp")
        if not isinstance(exp, int) or isinstance(exp, bool):
            raise _invalid("missing or non-integer exp")
        if int(self._clock().timestamp()) > exp:
            raise _invalid(f"expired at {exp}")

        # 4. Required claims
        missing = [c for c in REQUIRED_CLAIMS if c not in claims]
        if missing:
            raise _invalid(f"missing claims {missing}")
        sub = claims["sub"]
        if not isinstance(sub, str) or not sub.isdigit():
            raise _invalid(f"bad sub claim {sub!r}")
        if claims["role"] not in ROLES:
            raise _invalid(f"unknown role {claims['role']!r}")
        if not isinstance(claims["iat"], int):
            raise _invalid("non-integer iat")

        return Identity(user_id=int(sub), role=claims["role"])


def _invalid(reason: str) -> InvalidTokenError:
    logger.info("Token rejected: %s", reason)
    return InvalidTokenError(reason)
