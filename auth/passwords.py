"""
auth/passwords.py -- bcrypt password hashing.

Security design decisions:
  bcrypt is used directly (no passlib wrapper). Its cost factor makes
  brute-force of low-entropy secrets expensive, and checkpw compares in
  constant time.

  bcrypt only consumes the first 72 bytes of its input, and bcrypt 5.x
  rejects longer input outright. Passwords may be up to 128 characters
  (up to 512 UTF-8 bytes), so the plaintext is first reduced to a fixed
  44-byte base64 SHA-256 digest. Base64 also guarantees no NUL bytes reach
  bcrypt.

  verify() never raises for attacker-controlled input: a wrong password, an
  out-of-range password, or a corrupt stored hash all return False. Passing
  None as the stored hash is a programmer error and raises TypeError.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import base64
import hashlib

import bcrypt

from auth.errors import PasswordPolicyError

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128


def _prehash(plain: str) -> bytes:
    return base64.b64encode(hashlib.sha256(plain.encode("utf-8")).digest())


class PasswordHasher:
    """Salted one-way hashing with a configurable bcrypt cost factor.

    Usage:
        hasher = PasswordHasher(rounds=12)
        stored = hasher.hash("correct horse battery")
        hasher.verify("correct horse battery", stored)  # True
    """

    def __init__(self, rounds: int = 12) -> None:
        if not 4 <= rounds <= 31:
            raise ValueError(f"bcrypt rounds must be between 4 and 31, got {rounds}")
        self.rounds = rounds
        self._dummy_hash: str | None = None

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the plaintext. Raises PasswordPolicyError if out of bounds."""
        if not MIN_PASSWORD_LENGTH <= len(plain) <= MAX_PASSWORD_LENGTH:
            raise PasswordPolicyError(f"password length {len(plain)} outside {MIN_PASSWORD_LENGTH}..{MAX_PASSWORD_LENGTH}")
        return bcrypt.hashpw(_prehash(plain), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext password matches the stored hash."""
        if not isinstance(hashed, str):
            raise TypeError("stored hash must be a str")
        if not isinstance(plain, str) or len(plain) > MAX_PASSWORD_LENGTH:
            return False
        try:
            return bcrypt.checkpw(_prehash(plain), hashed.encode("utf-8"))
        except ValueError:
            # Malformed or truncated stored hash ("Invalid salt").
            return False

    def dummy_verify(self, plain: str) -> None:
        """Spend one verify's worth of work against a throwaway hash.

        Called when the login email does not exist so the response time
        matches a wrong-password attempt. The dummy hash is computed on first
        use and reused, with the same cost factor as real hashes.
        """
        if self._dummy_hash is None:
            self._dummy_hash = self.hash("credgate-timing-dummy")
        self.verify(plain if isinstance(plain, str) else "", self._dummy_hash)

    def needs_rehash(self, hashed: str) -> bool:
        """True when a stored hash was produced with a different cost factor."""
        try:
            return int(hashed.split("$")[2]) != self.rounds
        except (IndexError, ValueError):
            return True
