"""
auth/memory.py -- Thread-safe in-memory CredentialStore.

Used by the test suite and by embedders that do not want a database. It
honours the same contract as UserStore: normalized unique emails, ids that
are monotonic and never reused, and copies in and out so callers can never
mutate stored state by holding on to a returned User.

A single lock covers every read and write. The duplicate check and the
insert happen under that one lock acquisition, which is this store's
equivalent of the SQL UNIQUE constraint.
The last-active-admin check in _update() runs under the same lock as the write.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import replace

from auth.errors import ConflictError, DuplicateEmailError, NotFoundError
from auth.models import User, normalize_email
from auth.passwords import PasswordHasher
from auth.store import CredentialStore, check_profile_fields, check_role, check_status, now_iso


class InMemoryUserStore(CredentialStore):
    def __init__(self, hasher: PasswordHasher) -> None:
        super().__init__(hasher)
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._by_id: dict[int, User] = {}
        self._id_by_email: dict[str, int] = {}

    def create(self, user: User, password: str) -> User:
        check_role(user.role)
        check_status(user.status)
        # Hash outside the lock -- bcrypt is deliberately slow.
        hashed = self.hasher.hash(password)
        email = normalize_email(user.email)
        stamp = now_iso()
        with self._lock:
            if email in self._id_by_email:
                raise DuplicateEmailError(f"email {email!r} already registered")
            stored = replace(
                user,
                id=next(self._ids),
                email=email,
                phone=user.phone or "",
                hashed_password=hashed,
                created_at=stamp,
                updated_at=stamp,
                last_login=None,
            )
            self._by_id[stored.id] = stored
            self._id_by_email[email] = stored.id
            return replace(stored)

    def find_by_email(self, email: str) -> User:
        key = normalize_email(email)
        with self._lock:
            user_id = self._id_by_email.get(key)
            if user_id is None:
                raise NotFoundError(f"no user with email {key!r}")
            return replace(self._by_id[user_id])

    def find_by_id(self, user_id: int) -> User:
        with self._lock:
            return replace(self._get(user_id))

    def list_users(self) -> list[User]:
        with self._lock:
            return [replace(self._by_id[k]) for k in sorted(self._by_id)]

    def update_status(self, user_id: int, status: str, keep_active_admin: bool = False) -> User:
        check_status(status)
        return self._update(user_id, keep_admin_action="deactivate" if keep_active_admin else None, status=status)

    def update_role(self, user_id: int, role: str, keep_active_admin: bool = False) -> User:
        check_role(role)
        return self._update(user_id, keep_admin_action="demote" if keep_active_admin else None, role=role)

    def update_profile(self, user_id: int, **fields: str | None) -> User:
        check_profile_fields(fields)
        if "phone" in fields and fields["phone"] is None:
            fields["phone"] = ""
        return self._update(user_id, **fields)

    def set_password(self, user_id: int, password: str) -> User:
        return self._update(user_id, hashed_password=self.hasher.hash(password))

    def record_login(self, user_id: int) -> None:
        with self._lock:
            if user_id in self._by_id:
                self._by_id[user_id] = replace(self._by_id[user_id], last_login=now_iso())

    def has_users(self) -> bool:
        with self._lock:
            return bool(self._by_id)

    def count_active_admins(self) -> int:
        with self._lock:
            return sum(1 for u in self._by_id.values() if _is_active_admin(u))

    def ping(self) -> bool:
        return True

    def _update(self, user_id: int, keep_admin_action: str | None = None, **values) -> User:
        with self._lock:
            current = self._get(user_id)
            if keep_admin_action and _is_active_admin(current):
                if not any(_is_active_admin(u) for uid, u in self._by_id.items() if uid != user_id):
                    raise ConflictError(f"Cannot {keep_admin_action} the last active admin account.")
            updated = replace(current, updated_at=now_iso(), **values)
            self._by_id[user_id] = updated
            return replace(updated)

    def _get(self, user_id: int) -> User:
        try:
            return self._by_id[user_id]
        except KeyError:
            raise NotFoundError(f"user {user_id} not found") from None


def _is_active_admin(user: User) -> bool:
    return user.role == "admin" and user.status == "active"
