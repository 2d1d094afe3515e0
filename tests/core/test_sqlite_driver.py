"""Tests for the aiosqlite-backed SQLite driver."""

from __future__ import annotations

import asyncio

import pytest

from tessera.database import Driver
from tessera.drivers.sqlite import SQLiteDriver
from tessera.errors import MigrationLockError


@pytest.fixture
async def driver(sqlite_driver: SQLiteDriver) -> SQLiteDriver:
    await sqlite_driver.run("CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT)", [])
    await sqlite_driver.run("INSERT INTO items (name) VALUES (?), (?)", ["a", "b"])
    return sqlite_driver


class TestProtocol:
    def test_satisfies_driver_protocol(self):
        assert isinstance(SQLiteDriver(), Driver)

    def test_flags(self):
        d = SQLiteDriver()
        assert d.dialect == "sqlite"
        assert d.supports_returning is True
        assert d.is_memory


class TestStatements:
    async def test_all_returns_dicts(self, driver):
        rows = await driver.all("SELECT id, name FROM items ORDER BY id", [])
        assert rows == [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}]

    async def test_get(self, driver):
        assert await driver.get("SELECT name FROM items WHERE id = ?", [2]) == {"name": "b"}
        assert await driver.get("SELECT name FROM items WHERE id = ?", [9]) is None

    async def test_val(self, driver):
        assert await driver.val("SELECT COUNT(*) FROM items", []) == 2
        assert await driver.val("SELECT name FROM items WHERE id = ?", [9]) is None

    async def test_run_rowcount(self, driver):
        assert await driver.run("UPDATE items SET name = ?", ["z"]) == 2

    async def test_returning(self, driver):
        rows = await driver.all("INSERT INTO items (name) VALUES (?) RETURNING id", ["c"])
        assert rows == [{"id": 3}]

    async def test_close_and_reconnect(self, tmp_path):
        path = tmp_path / "data" / "app.db"
        d = SQLiteDriver(path)
        await d.run("CREATE TABLE t (x INTEGER)", [])
        await d.run("INSERT INTO t VALUES (?)", [1])
        await d.close()
        assert path.exists()
        assert await d.val("SELECT x FROM t", []) == 1
        await d.close()


class TestScopes:
    async def test_transaction_commit(self, driver):
        async def work():
            await driver.run("DELETE FROM items WHERE id = ?", [1])
            return "ok"

        assert await driver.transaction(work) == "ok"
        assert await driver.val("SELECT COUNT(*) FROM items", []) == 1

    async def test_transaction_rollback(self, driver):
        async def work():
            await driver.run("DELETE FROM items", [])
            raise ValueError("nope")

        with pytest.raises(ValueError):
            await driver.transaction(work)
        assert await driver.val("SELECT COUNT(*) FROM items", []) == 2

    async def test_nested_transaction_joins(self, driver):
        async def inner():
            await driver.run("DELETE FROM items WHERE id = ?", [2])

        async def outer():
            await driver.transaction(inner)
            raise RuntimeError("undo both")

        with pytest.raises(RuntimeError):
            await driver.transaction(outer)
        assert await driver.val("SELECT COUNT(*) FROM items", []) == 2

    async def test_transaction_inside_migration_lock(self, driver):
        async def inner():
            return await driver.val("SELECT COUNT(*) FROM items", [])

        async def locked():
            return await driver.transaction(inner)

        assert await driver.with_migration_lock(locked) == 2

    async def test_migration_lock_reentry(self, driver):
        async def locked():
            await driver.with_migration_lock(locked)

        with pytest.raises(MigrationLockError):
            await driver.with_migration_lock(locked)

    async def test_outside_statements_wait_for_scope(self, driver):
        order: list[str] = []
        gate = asyncio.Event()

        async def work():
            await driver.run("UPDATE items SET name = ?", ["locked"])
            gate.set()
            await asyncio.sleep(0.02)
            order.append("scope done")

        async def reader():
            await gate.wait()
            value = await driver.val("SELECT name FROM items WHERE id = ?", [1])
            order.append(f"read {value}")

        await asyncio.gather(driver.transaction(work), reader())
        assert order == ["scope done", "read locked"]
