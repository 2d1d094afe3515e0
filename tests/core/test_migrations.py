"""Tests for the migration engine (Database.open and upgrade events)."""

from __future__ import annotations

import asyncio

import pytest
import structlog
from structlog.testing import capture_logs

from tessera import Database, DatabaseUpgradeEvent
from tessera.errors import AlreadyOpenError, MigrationLockError, UsageError


async def migration_rows(db: Database) -> list[int]:
    rows = await db.all('SELECT version FROM "_migrations" ORDER BY version')
    return [row["version"] for row in rows]


class TestOpen:
    async def test_creates_migrations_table(self, db, recording_driver):
        await db.open(1)
        assert await db.val("SELECT name FROM sqlite_master WHERE name = '_migrations'") == "_migrations"
        assert any("_migrations" in stmt and "CREATE TABLE" in stmt for stmt in recording_driver.sql_log())

    async def test_sets_version(self, db):
        assert db.version == 0
        assert db.opened is False
        await db.open(1)
        assert db.version == 1
        assert db.opened is True

    async def test_records_version_row(self, db):
        await db.open(3)
        assert await migration_rows(db) == [3]
        assert await db.val('SELECT applied_at FROM "_migrations"') is not None

    async def test_second_open_raises(self, db):
        await db.open(1)
        with pytest.raises(AlreadyOpenError):
            await db.open(2)

    @pytest.mark.parametrize("bad", [-1, 1.5, "2", True])
    async def test_invalid_version(self, db, bad):
        with pytest.raises(UsageError):
            await db.open(bad)

    async def test_takes_migration_lock_once(self, db, recording_driver):
        await db.open(1)
        assert recording_driver.lock_acquisitions == 1

    async def test_logs_opened(self, db):
        with capture_logs() as logs:
            await db.open(1)
        events = [entry["event"] for entry in logs]
        assert "migration.started" in events
        assert "migration.applied" in events
        assert "database.opened" in events


class TestUpgradeEvent:
    async def test_fires_on_fresh_database(self, db):
        seen: list[DatabaseUpgradeEvent] = []
        db.add_event_listener("upgradeneeded", seen.append)
        await db.open(2)
        assert len(seen) == 1
        assert (seen[0].old_version, seen[0].new_version) == (0, 2)

    async def test_idempotent_across_instances(self, recording_driver):
        first = Database(recording_driver)
        fired: list[int] = []
        first.add_event_listener("upgradeneeded", lambda e: fired.append(e.new_version))
        await first.open(1)

        second = Database(recording_driver)
        second.add_event_listener("upgradeneeded", lambda e: fired.append(e.new_version))
        await second.open(1)

        assert fired == [1]
        assert first.version == 1
        assert second.version == 1

    async def test_upgrade_carries_old_version(self, recording_driver):
        await Database(recording_driver).open(1)

        db = Database(recording_driver)
        seen: list[tuple[int, int]] = []

        @db.on_upgrade
        def capture(event):
            seen.append((event.old_version, event.new_version))

        await db.open(2)
        assert seen == [(1, 2)]
        assert await migration_rows(db) == [1, 2]

    async def test_lower_version_plateaus_at_stored(self, recording_driver):
        await Database(recording_driver).open(3)

        db = Database(recording_driver)
        fired = []
        db.add_event_listener("upgradeneeded", fired.append)
        await db.open(1)
        assert fired == []
        assert db.version == 3
        assert await migration_rows(db) == [3]

    async def test_failed_unit_writes_no_row(self, recording_driver):
        await Database(recording_driver).open(1)

        db = Database(recording_driver)
        boom = RuntimeError("migration exploded")

        async def failing():
            raise boom

        db.add_event_listener("upgradeneeded", lambda e: e.wait_until(failing()))

        with pytest.raises(RuntimeError) as exc_info:
            await db.open(2)
        assert exc_info.value is boom
        assert db.version == 1
        assert await migration_rows(db) == [1]

    async def test_failure_is_logged(self, db):
        async def failing():
            raise ValueError("bad")

        db.add_event_listener("upgradeneeded", lambda e: e.wait_until(failing()))
        with capture_logs() as logs, pytest.raises(ValueError):
            await db.open(1)
        assert any(entry["event"] == "migration.failed" for entry in logs)

    async def test_failed_upgrade_reruns_next_time(self, recording_driver):
        attempts = []

        def flaky(event):
            attempts.append(event.new_version)
            if len(attempts) == 1:
                raise RuntimeError("first try fails")

        db = Database(recording_driver)
        db.add_event_listener("upgradeneeded", flaky)
        with pytest.raises(RuntimeError):
            await db.open(1)

        retry = Database(recording_driver)
        retry.add_event_listener("upgradeneeded", flaky)
        await retry.open(1)
        assert attempts == [1, 1]
        assert retry.version == 1

    async def test_waits_for_all_units(self, db):
        done: list[str] = []

        async def unit(name: str, delay: float) -> None:
            await asyncio.sleep(delay)
            done.append(name)

        def listener(event):
            event.wait_until(unit("slow", 0.02))
            event.wait_until(unit("fast", 0))

        db.add_event_listener("upgradeneeded", listener)
        await db.open(1)
        assert sorted(done) == ["fast", "slow"]

    async def test_units_registered_while_settling(self, db):
        done: list[str] = []

        def listener(event):
            async def outer():
                await asyncio.sleep(0)
                event.wait_until(inner())
                done.append("outer")

            async def inner():
                await asyncio.sleep(0.01)
                done.append("inner")

            event.wait_until(outer())

        db.add_event_listener("upgradeneeded", listener)
        await db.open(1)
        assert done == ["outer", "inner"]

    async def test_units_log_with_migration_version(self, db):
        seen = []

        async def unit():
            await asyncio.sleep(0)
            seen.append(structlog.contextvars.get_contextvars().get("migration_version"))

        db.add_event_listener("upgradeneeded", lambda e: e.wait_until(unit()))
        await db.open(2)
        assert seen == [2]
        assert "migration_version" not in structlog.contextvars.get_contextvars()

    async def test_async_listener_result_awaited(self, db):
        done = []

        async def listener(event):
            await asyncio.sleep(0)
            done.append(event.new_version)

        db.add_event_listener("upgradeneeded", listener)
        await db.open(4)
        assert done == [4]

    async def test_listeners_called_in_registration_order(self, db):
        order = []
        db.add_event_listener("upgradeneeded", lambda e: order.append("a"))
        db.add_event_listener("upgradeneeded", lambda e: order.append("b"))
        db.add_event_listener("upgradeneeded", lambda e: order.append("c"))
        await db.open(1)
        assert order == ["a", "b", "c"]

    async def test_remove_listener(self, db):
        fired = []
        listener = fired.append
        db.add_event_listener("upgradeneeded", listener)
        db.remove_event_listener("upgradeneeded", listener)
        await db.open(1)
        assert fired == []

    async def test_unknown_event_type(self, db):
        with pytest.raises(UsageError):
            db.add_event_listener("versionchange", print)


class TestUpgradeScope:
    async def test_ensure_table_reuses_lock(self, db, recording_driver, users_table, posts_table):
        def listener(event):
            async def migrate():
                await db.ensure_table(users_table)
                await db.ensure_table(posts_table)
                await db.ensure_table(users_table)

            event.wait_until(migrate())

        db.add_event_listener("upgradeneeded", listener)
        await db.open(1)
        assert recording_driver.max_lock_depth == 1
        assert recording_driver.lock_acquisitions == 1

    async def test_sibling_units_finish_inside_lock_after_failure(self, db, recording_driver, users_table):
        observed: dict[str, int] = {}

        async def failing():
            raise RuntimeError("unit failed")

        async def slow():
            await asyncio.sleep(0.05)
            observed["depth"] = recording_driver.lock_depth
            await db.ensure_table(users_table)

        def listener(event):
            event.wait_until(failing())
            event.wait_until(slow())

        db.add_event_listener("upgradeneeded", listener)
        with pytest.raises(RuntimeError, match="unit failed"):
            await db.open(1)

        assert observed["depth"] == 1
        assert recording_driver.lock_acquisitions == 1
        assert recording_driver.lock_depth == 0
        # rolled back with the rest of the upgrade scope
        assert await db.val("SELECT name FROM sqlite_master WHERE name = 'users'") is None

    async def test_earliest_failure_is_raised(self, db):
        async def late():
            await asyncio.sleep(0.02)
            raise ValueError("late")

        async def early():
            raise KeyError("early")

        def listener(event):
            event.wait_until(late())
            event.wait_until(early())

        db.add_event_listener("upgradeneeded", listener)
        with pytest.raises(KeyError):
            await db.open(1)

    async def test_listener_error_waits_for_scheduled_units(self, db, recording_driver):
        observed: dict[str, int] = {}

        async def unit():
            await asyncio.sleep(0.02)
            observed["depth"] = recording_driver.lock_depth

        def scheduling(event):
            event.wait_until(unit())

        def broken(event):
            raise RuntimeError("listener failed")

        db.add_event_listener("upgradeneeded", scheduling)
        db.add_event_listener("upgradeneeded", broken)
        with pytest.raises(RuntimeError, match="listener failed"):
            await db.open(1)
        assert observed["depth"] == 1

    async def test_ensure_table_outside_upgrade_takes_lock(self, db, recording_driver, users_table):
        await db.ensure_table(users_table)
        assert recording_driver.lock_acquisitions == 1

    async def test_nested_exclusive_scope_rejected(self, recording_driver, users_table):
        outer = Database(recording_driver)
        other = Database(recording_driver)

        async def migrate():
            await other.ensure_table(users_table)

        outer.add_event_listener("upgradeneeded", lambda e: e.wait_until(migrate()))
        with pytest.raises(MigrationLockError, match="cannot start an exclusive upgrade scope inside another"):
            await outer.open(1)

    async def test_driver_rejects_reentrant_lock(self, sqlite_driver):
        async def inner():
            return "never"

        async def outer():
            return await sqlite_driver.with_migration_lock(inner)

        with pytest.raises(MigrationLockError):
            await sqlite_driver.with_migration_lock(outer)
