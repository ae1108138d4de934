"""
SQLite store for the subscription registry.

Stores:
- topics: topic → publisher, notification flag
- subscribers: (topic, subscriber) membership, ordered by insertion id
- subscriptions: topic → lifecycle state + in-flight request id

The three tables are versioned as a unit through ``PRAGMA user_version``.
All registry reads and writes go through :meth:`SubscriptionStore.transaction`.
"""

from __future__ import annotations

import asyncio
import os
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiosqlite
import structlog

from .errors import StoreFailureError

log = structlog.get_logger()

SCHEMA_VERSION = 1

_SCHEMA = """
BEGIN;

CREATE TABLE IF NOT EXISTS topics (
    topic                TEXT PRIMARY KEY,
    publisher            TEXT NOT NULL,
    details              TEXT NOT NULL DEFAULT '',
    notification_enabled INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS subscribers (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    topic       TEXT NOT NULL,
    subscriber  TEXT NOT NULL,
    details     TEXT NOT NULL DEFAULT '[]',
    expiry      INTEGER NOT NULL DEFAULT 0,
    request_id  TEXT,
    UNIQUE (topic, subscriber)
);

CREATE TABLE IF NOT EXISTS subscriptions (
    topic       TEXT PRIMARY KEY,
    state       INTEGER NOT NULL,
    request_id  TEXT
);

CREATE INDEX IF NOT EXISTS idx_subscribers_subscriber
    ON subscribers(subscriber);

CREATE INDEX IF NOT EXISTS idx_subscriptions_request
    ON subscriptions(request_id);

PRAGMA user_version = 1;

COMMIT;
"""


class SubscriptionStore:
    """
    Explicitly owned handle to the registry database.

    The surrounding service opens and closes it; registry components receive
    it at construction and never manage its lifecycle.
    """

    def __init__(self, db_path: str, busy_timeout: float = 5.0):
        self._db_path = db_path
        self._busy_timeout = busy_timeout
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        # Task that opened the running transaction, if any.
        self._owner: asyncio.Task | None = None

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def is_open(self) -> bool:
        return self._db is not None

    async def open(self) -> None:
        if self._db is not None:
            return
        os.makedirs(os.path.dirname(self._db_path) or ".", exist_ok=True)
        try:
            db = await aiosqlite.connect(
                self._db_path, timeout=self._busy_timeout, isolation_level=None
            )
        except sqlite3.Error as exc:
            raise StoreFailureError(
                f"Cannot open store at {self._db_path}: {exc}", {"path": self._db_path}
            ) from exc
        db.row_factory = aiosqlite.Row
        try:
            await self._apply_schema(db)
        except BaseException:
            await db.close()
            raise
        self._db = db
        log.info("store.opened", path=self._db_path, schema_version=SCHEMA_VERSION)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None
            log.info("store.closed", path=self._db_path)

    async def _apply_schema(self, db: aiosqlite.Connection) -> None:
        try:
            cursor = await db.execute("PRAGMA user_version")
            row = await cursor.fetchone()
            version = row[0] if row else 0
            if version > SCHEMA_VERSION:
                raise StoreFailureError(
                    f"Store schema version {version} is newer than supported {SCHEMA_VERSION}",
                    {"path": self._db_path, "version": version},
                )
            if version < SCHEMA_VERSION:
                await db.executescript(_SCHEMA)
                log.info("store.schema_applied", path=self._db_path, from_version=version)
        except sqlite3.Error as exc:
            raise StoreFailureError(
                f"Cannot apply schema: {exc}", {"path": self._db_path}
            ) from exc

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Run a serialized read/write unit against the store.

        Opens ``BEGIN IMMEDIATE`` under the store lock and commits on exit.
        Any exception rolls back; ``sqlite3.Error`` is raised as
        :class:`StoreFailureError`. Entering again from the task that opened
        the transaction joins it; any other task waits for the lock.
        """
        current = asyncio.current_task()
        if self._owner is not None and self._owner is current:
            yield self._db
            return

        if self._db is None:
            raise StoreFailureError("Store is not open", {"path": self._db_path})

        async with self._lock:
            db = self._db
            if db is None:
                raise StoreFailureError("Store is not open", {"path": self._db_path})
            self._owner = current
            try:
                await db.execute("BEGIN IMMEDIATE")
                yield db
                await db.execute("COMMIT")
            except sqlite3.Error as exc:
                await self._rollback(db)
                raise StoreFailureError(f"Store transaction failed: {exc}") from exc
            except BaseException:
                await self._rollback(db)
                raise
            finally:
                self._owner = None

    async def _rollback(self, db: aiosqlite.Connection) -> None:
        if not db.in_transaction:
            return
        try:
            await db.execute("ROLLBACK")
        except sqlite3.Error as exc:
            log.warning("store.rollback_failed", error=str(exc))
