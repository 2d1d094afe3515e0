"""
SQLite driver built on aiosqlite.

One connection per driver, opened lazily on first use. The connection runs
in autocommit mode; :meth:`SQLiteDriver.transaction` and
:meth:`SQLiteDriver.with_migration_lock` open explicit ``BEGIN IMMEDIATE``
scopes, so the write lock is taken before the migration engine reads the
stored version.

Statements issued from inside an active scope (including tasks spawned
from it) run on that scope directly. Statements from anywhere else wait for
the scope to finish.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from contextvars import ContextVar
from pathlib import Path
from typing import Any, TypeVar

import aiosqlite

from tessera.errors import MigrationLockError
from tessera.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

MEMORY = ":memory:"

# Scopes held in the current task context, keyed by driver id.
_held_scopes: ContextVar[Mapping[int, str]] = ContextVar("tessera_sqlite_scopes", default={})


class SQLiteDriver:
    """Driver for SQLite files and in-memory databases.

    Args:
        path: Database file path, or ``":memory:"``.
        timeout: Seconds to wait on a locked database file.
    """

    dialect = "sqlite"
    supports_returning = True

    def __init__(self, path: str | Path = MEMORY, *, timeout: float = 5.0) -> None:
        self.path = str(path)
        self.timeout = timeout
        self._conn: aiosqlite.Connection | None = None
        # asyncio.Lock must be created inside the running loop
        self._init_lock: asyncio.Lock | None = None
        self._scope_lock: asyncio.Lock | None = None

    def __repr__(self) -> str:
        return f"SQLiteDriver({self.path!r})"

    @property
    def is_memory(self) -> bool:
        return self.path == MEMORY

    async def connect(self) -> aiosqlite.Connection:
        """Open the connection if needed and return it."""
        if self._conn is not None:
            return self._conn
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()
        async with self._init_lock:
            if self._conn is not None:
                return self._conn
            if not self.is_memory:
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            conn = await aiosqlite.connect(self.path, timeout=self.timeout, isolation_level=None)
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA foreign_keys=ON;")
            if not self.is_memory:
                await conn.execute("PRAGMA journal_mode=WAL;")
                await conn.execute(f"PRAGMA busy_timeout={int(self.timeout * 1000)};")
            self._conn = conn
            logger.debug("sqlite.connected", path=self.path)
        return self._conn

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.debug("sqlite.closed", path=self.path)

    # -- statements --------------------------------------------------------

    async def all(self, sql: str, params: list[Any]) -> list[dict[str, Any]]:
        async def fetch(conn: aiosqlite.Connection) -> list[dict[str, Any]]:
            async with conn.execute(sql, params) as cursor:
                return [dict(row) for row in await cursor.fetchall()]

        return await self._statement(fetch)

    async def get(self, sql: str, params: list[Any]) -> dict[str, Any] | None:
        async def fetch(conn: aiosqlite.Connection) -> dict[str, Any] | None:
            async with conn.execute(sql, params) as cursor:
                row = await cursor.fetchone()
                return dict(row) if row is not None else None

        return await self._statement(fetch)

    async def val(self, sql: str, params: list[Any]) -> Any:
        async def fetch(conn: aiosqlite.Connection) -> Any:
            async with conn.execute(sql, params) as cursor:
                row = await cursor.fetchone()
                return row[0] if row is not None else None

        return await self._statement(fetch)

    async def run(self, sql: str, params: list[Any]) -> int:
        async def execute(conn: aiosqlite.Connection) -> int:
            async with conn.execute(sql, params) as cursor:
                return cursor.rowcount

        return await self._statement(execute)

    async def _statement(self, fn: Callable[[aiosqlite.Connection], Awaitable[T]]) -> T:
        conn = await self.connect()
        if id(self) in _held_scopes.get():
            return await fn(conn)
        async with self._lock():
            return await fn(conn)

    # -- scopes ------------------------------------------------------------

    async def transaction(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` in a transaction; a nested call joins the active one."""
        if id(self) in _held_scopes.get():
            return await fn()
        return await self._exclusive("transaction", fn)

    async def with_migration_lock(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` holding the database write lock.

        Raises:
            MigrationLockError: If called inside an active scope of this driver.
        """
        if id(self) in _held_scopes.get():
            raise MigrationLockError("cannot start an exclusive upgrade scope inside another")
        return await self._exclusive("migration", fn)

    async def _exclusive(self, kind: str, fn: Callable[[], Awaitable[T]]) -> T:
        conn = await self.connect()
        async with self._lock():
            token = _held_scopes.set({**_held_scopes.get(), id(self): kind})
            try:
                await conn.execute("BEGIN IMMEDIATE")
                try:
                    result = await fn()
                except BaseException:
                    await conn.rollback()
                    logger.debug("sqlite.rolled_back", scope=kind)
                    raise
                await conn.commit()
                return result
            finally:
                _held_scopes.reset(token)

    def _lock(self) -> asyncio.Lock:
        if self._scope_lock is None:
            self._scope_lock = asyncio.Lock()
        return self._scope_lock


__all__ = ["SQLiteDriver", "MEMORY"]
