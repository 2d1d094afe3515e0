"""
Shared pytest fixtures for tessera tests.

This module provides:
- Sample table definitions (users / posts)
- An in-memory SQLite driver
- A recording driver that wraps another driver and tracks the SQL it
  receives plus migration-lock depth

Usage:
    Fixtures are auto-discovered by pytest::

        async def test_something(db, users_table):
            await db.open(1)
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncIterator, Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import pytest
import structlog

# Ensure tessera package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from tessera import (
    CURRENT_TIMESTAMP,
    Database,
    Table,
    index,
    primary,
    references,
    s,
    table,
    unique,
)
from tessera.drivers.sqlite import SQLiteDriver

T = TypeVar("T")


@pytest.fixture(autouse=True)
def _restore_logging():
    """Undo configure_logging() calls made by a test (CLI commands call it)."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("tessera").setLevel(logging.NOTSET)


# =============================================================================
# Sample tables
# =============================================================================


def make_users() -> Table:
    return table(
        "users",
        {
            "id": primary(s.uuid()),
            "email": unique(s.email()),
            "name": s.string(max_length=100).meta(label="Full name"),
            "role": s.enum(["user", "admin"]).default("user"),
            "createdAt": s.datetime().default(CURRENT_TIMESTAMP),
        },
    )


def make_posts(users: Table) -> Table:
    return table(
        "posts",
        {
            "id": primary(s.uuid()),
            "authorId": references(s.uuid(), users, alias="author", on_delete="cascade"),
            "title": s.string(max_length=200),
            "body": s.text(),
            "published": s.boolean().default(False),
            "createdAt": index(s.datetime()),
        },
        indexes=[("authorId", "createdAt")],
    )


@pytest.fixture
def users_table() -> Table:
    return make_users()


@pytest.fixture
def posts_table(users_table: Table) -> Table:
    return make_posts(users_table)


# =============================================================================
# Drivers
# =============================================================================


class RecordingDriver:
    """Driver wrapper that records statements and migration-lock usage."""

    def __init__(self, inner: Any, dialect: str | None = None) -> None:
        self.inner = inner
        self.dialect = dialect or inner.dialect
        self.supports_returning = inner.supports_returning
        self.statements: list[tuple[str, list[Any]]] = []
        self.lock_acquisitions = 0
        self.lock_depth = 0
        self.max_lock_depth = 0

    def _record(self, sql: str, params: list[Any]) -> None:
        self.statements.append((sql, list(params)))

    def sql_log(self) -> list[str]:
        return [sql for sql, _ in self.statements]

    async def all(self, sql: str, params: list[Any]) -> list[dict[str, Any]]:
        self._record(sql, params)
        return await self.inner.all(sql, params)

    async def get(self, sql: str, params: list[Any]) -> dict[str, Any] | None:
        self._record(sql, params)
        return await self.inner.get(sql, params)

    async def val(self, sql: str, params: list[Any]) -> Any:
        self._record(sql, params)
        return await self.inner.val(sql, params)

    async def run(self, sql: str, params: list[Any]) -> int:
        self._record(sql, params)
        return await self.inner.run(sql, params)

    async def close(self) -> None:
        await self.inner.close()

    async def transaction(self, fn: Callable[[], Awaitable[T]]) -> T:
        return await self.inner.transaction(fn)

    async def with_migration_lock(self, fn: Callable[[], Awaitable[T]]) -> T:
        self.lock_acquisitions += 1
        self.lock_depth += 1
        self.max_lock_depth = max(self.max_lock_depth, self.lock_depth)
        try:
            return await self.inner.with_migration_lock(fn)
        finally:
            self.lock_depth -= 1


@pytest.fixture
async def sqlite_driver() -> AsyncIterator[SQLiteDriver]:
    driver = SQLiteDriver(":memory:")
    yield driver
    await driver.close()


@pytest.fixture
def recording_driver(sqlite_driver: SQLiteDriver) -> RecordingDriver:
    return RecordingDriver(sqlite_driver)


@pytest.fixture
def db(recording_driver: RecordingDriver) -> Database:
    return Database(recording_driver)
