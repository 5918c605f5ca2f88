"""
auth/store.py -- Credential store interface and its SQLAlchemy Core implementation.

Pattern: Repository + Data Mapper. CredentialStore is the repository contract
the AuthService depends on; UserStore implements it over SQLAlchemy Core and
_row_to_user is the mapper. InMemoryUserStore (auth/memory.py) implements the
same contract for tests and embedding. Nothing above this layer touches SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Email uniqueness is enforced by the UNIQUE constraint on the normalized
  email column, never by a read-then-insert in application code. Two
  concurrent registrations for the same address race inside the database
  and exactly one of them gets IntegrityError -> DuplicateEmailError.

  create() hashes the password before anything is written. The plaintext
  never reaches SQL.

  The last-active-admin rule is part of the UPDATE statement itself
  (keep_active_admin=True): the count of other active admins is a subquery
  in the WHERE clause, so two admins demoting each other cannot both win.

Failure mapping:
  IntegrityError                       -> DuplicateEmailError (create only)
  OperationalError, pool TimeoutError,
  any other DBAPIError                 -> StoreUnavailableError
  missing row                          -> NotFoundError

SQLite specifics:
  sqlite_autoincrement=True makes ids monotonic and never reused, even after
  the highest row is removed by hand. WAL mode is enabled per connection for
  concurrent read safety, and the driver busy timeout is the store timeout.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, not_, or_, select, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from auth.errors import ConflictError, DuplicateEmailError, NotFoundError, StoreUnavailableError
from auth.models import ROLES, STATUSES, User, normalize_email
from auth.passwords import PasswordHasher

logger = logging.getLogger("credgate.auth.store")

# Columns a caller may change through update_profile().
PROFILE_FIELDS: frozenset[str] = frozenset({"name", "phone", "push_token"})


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class CredentialStore(ABC):
    """Persistence boundary for user identities and hashed secrets.

    Every method either returns a User, raises NotFoundError when the target
    does not exist, or raises StoreUnavailableError when the backend fails.
    """

    def __init__(self, hasher: PasswordHasher) -> None:
        self.hasher = hasher

    @abstractmethod
    def create(self, user: User, password: str) -> User:
        """Hash the password, persist the user and return it with its new id.

        Raises DuplicateEmailError if the email (case-insensitive) exists.
        """

    @abstractmethod
    def find_by_email(self, email: str) -> User: ...

    @abstractmethod
    def find_by_id(self, user_id: int) -> User: ...

    @abstractmethod
    def list_users(self) -> list[User]: ...

    @abstractmethod
    def update_status(self, user_id: int, status: str, keep_active_admin: bool = False) -> User:
        """Set the status.

        With keep_active_admin, raise ConflictError instead of writing when the
        target is the only active admin. The check and the write are atomic.
        """

    @abstractmethod
    def update_role(self, user_id: int, role: str, keep_active_admin: bool = False) -> User:
        """Set the role. keep_active_admin behaves as for update_status()."""

    @abstractmethod
    def update_profile(self, user_id: int, **fields: str | None) -> User: ...

    @abstractmethod
    def set_password(self, user_id: int, password: str) -> User: ...

    @abstractmethod
    def record_login(self, user_id: int) -> None: ...

    @abstractmethod
    def has_users(self) -> bool: ...

    @abstractmethod
    def count_active_admins(self) -> int: ...

    @abstractmethod
    def ping(self) -> bool:
        """Cheap liveness probe for the health endpoint. Never raises."""

    def close(self) -> None:
        """Release backend resources. Default: nothing to release."""


def check_status(status: str) -> None:
    if status not in STATUSES:
        raise ValueError(f"Unknown status {status!r}; expected one of {STATUSES}")


def check_role(role: str) -> None:
    if role not in ROLES:
        raise ValueError(f"Unknown role {role!r}; expected one of {ROLES}")


def check_profile_fields(fields: dict) -> None:
    unknown = set(fields) - PROFILE_FIELDS
    if unknown:
        raise ValueError(f"Unknown profile fields: {sorted(unknown)!r}")
    if "name" in fields and not fields["name"]:
        raise ValueError("name must be a non-empty string")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(320), nullable=False, unique=True),  # normalized lower-case
    Column("phone", String(32), nullable=False, server_default=""),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("hashed_password", Text, nullable=False),
    Column("push_token", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", String(32)),
    sqlite_autoincrement=True,
)


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------


class UserStore(CredentialStore):
    """CredentialStore over SQLAlchemy Core.

    Usage:
        store = UserStore(PasswordHasher(), "sqlite:///credgate.db")
        alice = store.create(User(name="Alice", email="alice@example.com"), "adminpass123")
        store.find_by_email("ALICE@example.com").id == alice.id
        store.close()
    """

    def __init__(self, hasher: PasswordHasher, db_url: str, timeout: float = 5.0) -> None:
        super().__init__(hasher)
        connect_args: dict = {}
        engine_kwargs: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = timeout
        else:
            engine_kwargs["pool_timeout"] = timeout
            engine_kwargs["pool_pre_ping"] = True
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        with self._translate_errors("schema setup"):
            _metadata.create_all(self.engine)

    @contextmanager
    def _translate_errors(self, operation: str) -> Iterator[None]:
        """Turn backend failures into StoreUnavailableError.

        IntegrityError is re-raised untouched: only create() knows that it
        means a duplicate email.
        """
        try:
            yield
        except IntegrityError:
            raise
        except (PoolTimeoutError, DBAPIError) as exc:
            logger.warning("Store %s failed: %s", operation, exc)
            raise StoreUnavailableError(f"{operation}: {exc}") from exc
        except SQLAlchemyError as exc:
            logger.error("Store %s failed unexpectedly: %s", operation, exc)
            raise StoreUnavailableError(f"{operation}: {exc}") from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, user: User, password: str) -> User:
        check_role(user.role)
        check_status(user.status)
        hashed = self.hasher.hash(password)
        stamp = now_iso()
        with self._translate_errors("create"):
            try:
                with self.engine.begin() as conn:
                    result = conn.execute(
                        _users.insert().values(
                            name=user.name,
                            email=normalize_email(user.email),
                            phone=user.phone or "",
                            role=user.role,
                            status=user.status,
                            hashed_password=hashed,
                            push_token=user.push_token,
                            created_at=stamp,
                            updated_at=stamp,
                        )
                    )
                    new_id = result.inserted_primary_key[0]
                    row = self._fetch(conn, _users.c.id == new_id)
            except IntegrityError as exc:
                raise DuplicateEmailError(f"email {normalize_email(user.email)!r} already registered") from exc
        return _row_to_user(row)

    def update_status(self, user_id: int, status: str, keep_active_admin: bool = False) -> User:
        check_status(status)
        if keep_active_admin:
            return self._update_keeping_admin(user_id, "deactivate", status=status)
        return self._update(user_id, "update_status", status=status)

    def update_role(self, user_id: int, role: str, keep_active_admin: bool = False) -> User:
        check_role(role)
        if keep_active_admin:
            return self._update_keeping_admin(user_id, "demote", role=role)
        return self._update(user_id, "update_role", role=role)

    def update_profile(self, user_id: int, **fields: str | None) -> User:
        check_profile_fields(fields)
        if "phone" in fields and fields["phone"] is None:
            fields["phone"] = ""
        return self._update(user_id, "update_profile", **fields)

    def set_password(self, user_id: int, password: str) -> User:
        hashed = self.hasher.hash(password)
        return self._update(user_id, "set_password", hashed_password=hashed)

    def record_login(self, user_id: int) -> None:
        with self._translate_errors("record_login"):
            with self.engine.begin() as conn:
                conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=now_iso()))

    def _update(self, user_id: int, operation: str, **values) -> User:
        """Apply values and return the fresh row, all in one transaction."""
        with self._translate_errors(operation):
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.update().where(_users.c.id == user_id).values(updated_at=now_iso(), **values)
                )
                if result.rowcount == 0:
                    raise NotFoundError(f"user {user_id} not found")
                row = self._fetch(conn, _users.c.id == user_id)
        return _row_to_user(row)

    def _update_keeping_admin(self, user_id: int, action: str, **values) -> User:
        """Like _update(), but the WHERE clause refuses to touch the last active admin."""
        is_active_admin = (_users.c.role == "admin") & (_users.c.status == "active")
        other_admins = (
            select(func.count())
            .select_from(_users)
            .where(is_active_admin & (_users.c.id != user_id))
            .scalar_subquery()
        )
        with self._translate_errors(f"{action} user"):
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.update()
                    .where((_users.c.id == user_id) & or_(not_(is_active_admin), other_admins > 0))
                    .values(updated_at=now_iso(), **values)
                )
                row = self._fetch(conn, _users.c.id == user_id)
        if row is None:
            raise NotFoundError(f"user {user_id} not found")
        if result.rowcount == 0:
            raise ConflictError(f"Cannot {action} the last active admin account.")
        return _row_to_user(row)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> User:
        with self._translate_errors("find_by_email"):
            with self.engine.connect() as conn:
                row = self._fetch(conn, _users.c.email == normalize_email(email))
        if row is None:
            raise NotFoundError(f"no user with email {normalize_email(email)!r}")
        return _row_to_user(row)

    def find_by_id(self, user_id: int) -> User:
        with self._translate_errors("find_by_id"):
            with self.engine.connect() as conn:
                row = self._fetch(conn, _users.c.id == user_id)
        if row is None:
            raise NotFoundError(f"user {user_id} not found")
        return _row_to_user(row)

    def list_users(self) -> list[User]:
        with self._translate_errors("list_users"):
            with self.engine.connect() as conn:
                rows = conn.execute(_users.select().order_by(_users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    def has_users(self) -> bool:
        with self._translate_errors("has_users"):
            with self.engine.connect() as conn:
                first = conn.execute(select(_users.c.id).limit(1)).first()
        return first is not None

    def count_active_admins(self) -> int:
        with self._translate_errors("count_active_admins"):
            with self.engine.connect() as conn:
                result = conn.execute(
                    select(func.count())
                    .select_from(_users)
                    .where((_users.c.role == "admin") & (_users.c.status == "active"))
                ).scalar()
        return result or 0

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            logger.warning("Store ping failed", exc_info=True)
            return False

    def close(self) -> None:
        self.engine.dispose()

    @staticmethod
    def _fetch(conn: Connection, condition):
        return conn.execute(_users.select().where(condition)).fetchone()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        phone=row.phone,
        role=row.role,
        status=row.status,
        hashed_password=row.hashed_password,
        push_token=row.push_token,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login=row.last_login,
    )
