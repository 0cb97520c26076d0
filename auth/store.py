"""
auth/store.py -- SQLAlchemy Core persistence for local identities.

Pattern: Repository + Data Mapper. IdentityStore is the repository;
_row_to_identity is the mapper. The orchestrator never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Concurrency:
  UNIQUE(telegram_id) is enforced by the database. Two first-time logins for
  the same Telegram user can both miss in find_by_telegram_id(); the loser's
  INSERT fails with IntegrityError, surfaced here as ConflictError so the
  caller can retry and observe the winner's row.

  Driver failures are mapped once, in _storage_errors():
    sqlalchemy.exc.TimeoutError (pool checkout)   -> Timeout
    OperationalError "database is locked"         -> Timeout
    OperationalError / other DBAPIError           -> StorageUnavailable

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, Integer, MetaData, String, Table, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from auth.errors import ConflictError, IdentityNotFound, StorageUnavailable, Timeout
from auth.models import IdentityClaim, LocalIdentity

logger = logging.getLogger("miniapp.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("telegram_id", BigInteger, nullable=False, unique=True),
    Column("username", String(255), nullable=False, server_default=""),
    Column("first_name", String(255), nullable=False, server_default=""),
    Column("last_name", String(255), nullable=False, server_default=""),
    Column("language_code", String(35), nullable=False, server_default=""),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by the auth writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_lock_timeout(exc: OperationalError) -> bool:
    # SQLite reports an expired busy wait as "database is locked" and a
    # shared-cache conflict as "database table is locked".
    return "locked" in str(exc.orig).lower()


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except IntegrityError:
        raise
    except PoolTimeoutError as exc:
        logger.error("Storage timeout during %s", operation)
        raise Timeout(operation) from exc
    except OperationalError as exc:
        if not _is_lock_timeout(exc):
            logger.error("Storage failure during %s: %s", operation, type(exc.orig).__name__)
            raise StorageUnavailable(operation) from exc
        logger.error("Storage lock wait expired during %s", operation)
        raise Timeout(operation) from exc
    except DBAPIError as exc:
        logger.error("Storage failure during %s: %s", operation, type(exc.orig).__name__)
        raise StorageUnavailable(operation) from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for LocalIdentity records.

    Usage:
        store = IdentityStore("sqlite:///:memory:")
        identity = store.insert_identity(IdentityClaim(id=123, first_name="Ann"))
        store.find_by_telegram_id(123)
        store.close()
    """

    def __init__(self, db_url: str, timeout_seconds: float = 10.0) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = timeout_seconds
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def find_by_telegram_id(self, telegram_id: int) -> LocalIdentity | None:
        """Look up an identity by Telegram id. Returns None if not found."""
        with _storage_errors("find_by_telegram_id"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.telegram_id == telegram_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def get_by_id(self, user_id: int) -> LocalIdentity | None:
        """Look up an identity by durable key. Returns None if not found."""
        with _storage_errors("get_by_id"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def insert_identity(self, claim: IdentityClaim) -> LocalIdentity:
        """Create the record for a first-time user.

        Raises ConflictError if a row for claim.id already exists.
        """
        now = _now_iso()
        try:
            with _storage_errors("insert_identity"), self.engine.connect() as conn:
                row = conn.execute(
                    _users.insert()
                    .values(
                        telegram_id=claim.id,
                        username=claim.username,
                        first_name=claim.first_name,
                        last_name=claim.last_name,
                        language_code=claim.language_code,
                        created_at=now,
                        updated_at=now,
                    )
                    .returning(*_users.c)
                ).fetchone()
                conn.commit()
        except IntegrityError as exc:
            logger.info("Identity insert conflict for telegram_id=%d", claim.id)
            raise ConflictError("identity already exists") from exc
        return _row_to_identity(row)

    def update_identity(self, user_id: int, claim: IdentityClaim) -> LocalIdentity:
        """Overwrite the display fields of an existing record and bump updated_at.

        Raises IdentityNotFound if user_id does not exist.
        """
        with _storage_errors("update_identity"), self.engine.connect() as conn:
            row = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    username=claim.username,
                    first_name=claim.first_name,
                    last_name=claim.last_name,
                    language_code=claim.language_code,
                    updated_at=_now_iso(),
                )
                .returning(*_users.c)
            ).fetchone()
            conn.commit()
        if row is None:
            raise IdentityNotFound(user_id)
        return _row_to_identity(row)

    def ping(self) -> bool:
        """Return True if a trivial query succeeds. Used by the health check."""
        try:
            with self.engine.connect() as conn:
                conn.execute(_users.select().limit(1)).fetchall()
        except DBAPIError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> LocalIdentity:
    return LocalIdentity(
        id=row.id,
        telegram_id=row.telegram_id,
        username=row.username or "",
        first_name=row.first_name or "",
        last_name=row.last_name or "",
        language_code=row.language_code or "",
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
