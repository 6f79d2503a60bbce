"""Shared aiosqlite handle: schema, transactions and remote-call timeouts."""

import asyncio
import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Iterable, Optional, Sequence

import aiosqlite

from .config import settings
from .errors import InvariantViolation, TransactionAborted, TransientError

logger = logging.getLogger(__name__)

# The database whose transaction the current task is running inside, if any.
_active_transaction: ContextVar[Optional["Database"]] = ContextVar(
    "staterecon_active_transaction", default=None
)

_TRANSIENT_MARKERS = (
    "database is locked",
    "database is busy",
    "database table is locked",
    "unable to open database",
    "disk i/o error",
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS creators (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    full_name TEXT NOT NULL,
    state TEXT,
    city TEXT,
    instagram_handle TEXT,
    followers INTEGER,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS canonical_states (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    aliases TEXT NOT NULL DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS user_roles (
    principal_id TEXT PRIMARY KEY,
    role_name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_log (
    id TEXT PRIMARY KEY,
    action_type TEXT NOT NULL,
    table_name TEXT,
    record_id TEXT,
    old_value TEXT,
    new_value TEXT,
    principal_id TEXT,
    principal_email TEXT,
    principal_role TEXT,
    ip TEXT,
    user_agent TEXT,
    timestamp TEXT NOT NULL,
    risk_level TEXT NOT NULL,
    started_at TEXT,
    finished_at TEXT,
    total_attempted INTEGER,
    total_succeeded INTEGER,
    total_failed INTEGER,
    metadata TEXT
);

CREATE TABLE IF NOT EXISTS audit_batch_detail (
    batch_id TEXT NOT NULL REFERENCES audit_log(id),
    sequence_number INTEGER NOT NULL,
    record_identifier TEXT NOT NULL,
    field_name TEXT NOT NULL,
    old_value TEXT,
    new_value TEXT,
    updated_count INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL CHECK (status IN ('completed', 'error')),
    error_message TEXT,
    PRIMARY KEY (batch_id, sequence_number)
);

CREATE INDEX IF NOT EXISTS idx_creators_state ON creators(state);
CREATE INDEX IF NOT EXISTS idx_audit_log_timestamp ON audit_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_log_record ON audit_log(table_name, record_id);
CREATE INDEX IF NOT EXISTS idx_audit_log_principal ON audit_log(principal_id);
CREATE INDEX IF NOT EXISTS idx_audit_detail_record ON audit_batch_detail(record_identifier);

CREATE TRIGGER IF NOT EXISTS audit_log_no_update BEFORE UPDATE ON audit_log
BEGIN
    SELECT RAISE(ABORT, 'audit_log is append-only');
END;

CREATE TRIGGER IF NOT EXISTS audit_log_no_delete BEFORE DELETE ON audit_log
BEGIN
    SELECT RAISE(ABORT, 'audit_log is append-only');
END;

CREATE TRIGGER IF NOT EXISTS audit_detail_no_update BEFORE UPDATE ON audit_batch_detail
BEGIN
    SELECT RAISE(ABORT, 'audit_batch_detail is append-only');
END;

CREATE TRIGGER IF NOT EXISTS audit_detail_no_delete BEFORE DELETE ON audit_batch_detail
BEGIN
    SELECT RAISE(ABORT, 'audit_batch_detail is append-only');
END;
"""


def _is_transient(exc: Exception) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


async def _await(awaitable: Awaitable[Any]) -> Any:
    return await awaitable


class Database:
    """
    One aiosqlite connection shared by the record store, catalogue and audit store.

    The connection runs in autocommit mode; multi-statement atomicity comes from
    ``transaction()``. Only one transaction is open at a time. Readers go through
    ``snapshot()`` so they never observe a batch that has not committed yet.
    """

    def __init__(self, db_path: Optional[Path] = None, timeout_seconds: Optional[float] = None):
        self.db_path = Path(db_path) if db_path else settings.database_path
        self.timeout_seconds = timeout_seconds or settings.remote_timeout_seconds
        self._connection: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    async def initialize(self):
        """Open the connection and create tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(str(self.db_path), isolation_level=None)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA foreign_keys = ON")
        await self._connection.executescript(SCHEMA)
        logger.info(f"Database initialized at {self.db_path}")

    async def close(self):
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise TransientError("Database connection is not open")
        return self._connection

    @property
    def in_transaction(self) -> bool:
        """True when the calling task owns the open transaction."""
        return _active_transaction.get() is self

    async def _guard(self, awaitable: Awaitable[Any]) -> Any:
        """Run one remote call under the configured timeout."""
        try:
            return await asyncio.wait_for(_await(awaitable), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise TransientError(
                f"Database call timed out after {self.timeout_seconds:.1f}s"
            ) from exc
        except aiosqlite.OperationalError as exc:
            if _is_transient(exc):
                raise TransientError(str(exc)) from exc
            raise

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> aiosqlite.Cursor:
        """Execute one statement and return its (closed-on-GC) cursor."""
        return await self._guard(self.connection.execute(sql, tuple(params)))

    async def executemany(self, sql: str, rows: Iterable[Sequence[Any]]) -> aiosqlite.Cursor:
        return await self._guard(self.connection.executemany(sql, [tuple(r) for r in rows]))

    async def fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[aiosqlite.Row]:
        cursor = await self.execute(sql, params)
        try:
            return list(await self._guard(cursor.fetchall()))
        finally:
            await cursor.close()

    async def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[aiosqlite.Row]:
        cursor = await self.execute(sql, params)
        try:
            return await self._guard(cursor.fetchone())
        finally:
            await cursor.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["Database"]:
        """
        Open a write transaction, or join the one the calling task already owns.

        The body commits on normal exit and rolls back on any exception. If
        SQLite ended the transaction itself (a trigger's ``RAISE(ROLLBACK)``,
        a full disk), the body's work is gone and TransactionAborted is raised
        instead of committing whatever ran afterwards in autocommit mode.
        """
        if self.in_transaction:
            yield self
            return

        async with self._write_lock:
            token = _active_transaction.set(self)
            try:
                await self.execute("BEGIN IMMEDIATE")
                try:
                    yield self
                    self._check_open("commit")
                except BaseException:
                    await self._rollback()
                    raise
                try:
                    await self.execute("COMMIT")
                except BaseException:
                    await self._rollback()
                    raise
            finally:
                _active_transaction.reset(token)

    @asynccontextmanager
    async def savepoint(self, name: str) -> AsyncIterator["Database"]:
        """
        Run part of the open transaction so that an error undoes only that part.

        Transient errors are left to the enclosing transaction, which rolls back
        as a whole.
        """
        if not self.in_transaction:
            raise InvariantViolation(f"Savepoint {name} requires an open transaction")
        await self.execute(f"SAVEPOINT {name}")
        try:
            yield self
        except TransientError:
            raise
        except Exception as exc:
            if not self.connection.in_transaction:
                raise TransactionAborted(
                    f"Transaction ended inside savepoint {name}: {exc}"
                ) from exc
            await self.execute(f"ROLLBACK TO {name}")
            await self.execute(f"RELEASE {name}")
            raise
        self._check_open(f"release savepoint {name}")
        await self.execute(f"RELEASE {name}")

    def _check_open(self, step: str):
        if not self.connection.in_transaction:
            raise TransactionAborted(f"Transaction was ended by the database before {step}")

    @asynccontextmanager
    async def snapshot(self) -> AsyncIterator["Database"]:
        """Wait for any open transaction so reads see committed state only."""
        if self.in_transaction:
            yield self
            return
        async with self._write_lock:
            yield self

    async def _rollback(self):
        if self._connection is None or not self._connection.in_transaction:
            return
        try:
            await self._connection.execute("ROLLBACK")
        except aiosqlite.Error:
            logger.exception("Rollback failed")
        else:
            logger.warning("Transaction rolled back")
