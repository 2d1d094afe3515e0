"""
Database handle: query facade and versioned schema migrations.

A :class:`Database` wraps a :class:`Driver` (the thing that actually talks
to SQLite, Postgres or MySQL) and adds two things on top of it:

- a query facade that renders templates for the driver's dialect, and
- a migration engine that tracks the applied schema version in the
  ``_migrations`` table and runs ``upgradeneeded`` listeners when a caller
  opens the database at a newer version.

Architecture:
    ::

        await db.open(2)
            │
            ▼
        driver.with_migration_lock ─────────────────────────────┐
            │  CREATE TABLE IF NOT EXISTS _migrations            │
            │  SELECT MAX(version)            -> current = 1     │
            │  target > current?                                 │
            │     dispatch DatabaseUpgradeEvent(1, 2)            │
            │        listener(event) -> event.wait_until(...)    │
            │     await event.settle()     (fail fast)           │
            │     INSERT INTO _migrations (version=2)            │
            └────────────────────────────────────────────────────┘

    The upgrade scope is tracked in a context variable, so
    ``db.ensure_table(...)`` called from a listener (or from a unit of work
    it registered) runs under the lock already held by ``open``.

Examples:
    >>> db = Database(SQLiteDriver(":memory:"))
    >>> @db.on_upgrade
    ... async def migrate(event):
    ...     if event.old_version < 1:
    ...         await db.ensure_table(Users)
    >>> await db.open(1)
    >>> db.version
    1

Guardrails:
    ❌ DON'T: Call ``open()`` twice on the same instance
    ✅ DO: Create a new Database per open; the second call raises
       AlreadyOpenError

    ❌ DON'T: Catch failures inside migration units to "keep going"
    ✅ DO: Let them propagate; no version row is written and the next
       open() re-runs the upgrade
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Mapping
from contextvars import ContextVar
from typing import Any, NamedTuple, Protocol, TypeVar, runtime_checkable

from tessera.ddl import create_table
from tessera.dialect import Dialect, get_dialect
from tessera.errors import (
    AlreadyOpenError,
    MigrationError,
    MigrationLockError,
    QueryError,
    TesseraError,
    UsageError,
)
from tessera.logging import LogContext, get_logger
from tessera.markers import CURRENT_TIMESTAMP, ident
from tessera.render import RenderedSQL, render_ddl, render_sql
from tessera.table import Table
from tessera.template import Template, sql

logger = get_logger(__name__)

T = TypeVar("T")

MIGRATIONS_TABLE = "_migrations"
UPGRADE_NEEDED = "upgradeneeded"

UpgradeListener = Callable[["DatabaseUpgradeEvent"], Any]

# The Database whose upgrade scope is active in the current task context.
_active_upgrade: ContextVar[Database | None] = ContextVar("tessera_active_upgrade", default=None)


@runtime_checkable
class Driver(Protocol):
    """Capability a Database needs from a backend driver.

    Every method takes rendered SQL plus positional parameters. Rows are
    mappings of column name to value. A driver may additionally provide
    ``async ensure_table(table) -> EnsureResult``.
    """

    dialect: str
    supports_returning: bool

    async def all(self, sql: str, params: list[Any]) -> list[dict[str, Any]]: ...

    async def get(self, sql: str, params: list[Any]) -> dict[str, Any] | None: ...

    async def val(self, sql: str, params: list[Any]) -> Any: ...

    async def run(self, sql: str, params: list[Any]) -> int: ...

    async def close(self) -> None: ...

    async def transaction(self, fn: Callable[[], Awaitable[T]]) -> T: ...

    async def with_migration_lock(self, fn: Callable[[], Awaitable[T]]) -> T: ...


class EnsureResult(NamedTuple):
    """Outcome of :meth:`Database.ensure_table`."""

    applied: bool
    statements: list[str]


class DatabaseUpgradeEvent:
    """Fired when ``open(version)`` finds an older stored version.

    Listeners hand asynchronous work to :meth:`wait_until`; ``open`` waits
    for all of it before recording the new version.
    """

    type = UPGRADE_NEEDED

    def __init__(self, old_version: int, new_version: int) -> None:
        self.old_version = old_version
        self.new_version = new_version
        self._pending: list[asyncio.Future[Any]] = []
        self._failures: list[BaseException] = []

    def __repr__(self) -> str:
        return f"DatabaseUpgradeEvent(old_version={self.old_version}, new_version={self.new_version})"

    def wait_until(self, work: Awaitable[Any]) -> None:
        """Register a unit of migration work. Scheduled immediately."""
        future = asyncio.ensure_future(work)
        future.add_done_callback(self._record_failure)
        self._pending.append(future)

    @property
    def pending(self) -> int:
        return sum(1 for f in self._pending if not f.done())

    async def drain(self) -> None:
        """Wait for every registered unit, including ones added while waiting."""
        settled = 0
        while settled < len(self._pending):
            batch = self._pending[settled:]
            settled = len(self._pending)
            await asyncio.gather(*batch, return_exceptions=True)

    async def settle(self) -> None:
        """Wait for every unit, then raise the earliest failure (the unit's own exception).

        Units still running when another fails are awaited rather than
        cancelled, so none of them outlives the upgrade scope.
        """
        await self.drain()
        if self._failures:
            raise self._failures[0]

    def _record_failure(self, future: asyncio.Future[Any]) -> None:
        if future.cancelled():
            self._failures.append(asyncio.CancelledError("migration unit was cancelled"))
            return
        exc = future.exception()
        if exc is not None:
            logger.debug("migration.unit_failed", error=str(exc), error_type=type(exc).__name__)
            self._failures.append(exc)


class Database:
    """Query facade plus migration engine over a :class:`Driver`.

    Args:
        driver: Backend driver.
        dialect: Dialect tag or instance; defaults to ``driver.dialect``.

    Raises:
        DialectError: If no usable dialect can be determined.
    """

    def __init__(self, driver: Driver, *, dialect: str | Dialect | None = None) -> None:
        self._driver = driver
        self._dialect = get_dialect(dialect if dialect is not None else getattr(driver, "dialect", None))
        self._version = 0
        self._opened = False
        self._listeners: list[UpgradeListener] = []

    def __repr__(self) -> str:
        return f"Database(dialect={self._dialect.name!r}, version={self._version}, opened={self._opened})"

    # -- state -------------------------------------------------------------

    @property
    def driver(self) -> Driver:
        return self._driver

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    @property
    def version(self) -> int:
        """Schema version; 0 until :meth:`open` has read the stored version."""
        return self._version

    @property
    def opened(self) -> bool:
        return self._opened

    # -- listeners ---------------------------------------------------------

    def add_event_listener(self, event_type: str, listener: UpgradeListener) -> None:
        if event_type != UPGRADE_NEEDED:
            raise UsageError(f"Unknown event type '{event_type}'. Supported: ['{UPGRADE_NEEDED}']")
        self._listeners.append(listener)

    def remove_event_listener(self, event_type: str, listener: UpgradeListener) -> None:
        if event_type != UPGRADE_NEEDED:
            raise UsageError(f"Unknown event type '{event_type}'. Supported: ['{UPGRADE_NEEDED}']")
        if listener in self._listeners:
            self._listeners.remove(listener)

    def on_upgrade(self, listener: UpgradeListener) -> UpgradeListener:
        """Decorator form of ``add_event_listener("upgradeneeded", fn)``."""
        self.add_event_listener(UPGRADE_NEEDED, listener)
        return listener

    # -- migrations --------------------------------------------------------

    async def open(self, version: int) -> None:
        """Open the database at schema ``version``, upgrading if needed.

        Raises:
            AlreadyOpenError: If this instance was already opened.
            UsageError: If ``version`` is not a non-negative integer.
            Exception: Whatever a migration unit raised, unchanged.
        """
        if self._opened:
            raise AlreadyOpenError("Database is already open").with_context(version=self._version)
        if isinstance(version, bool) or not isinstance(version, int) or version < 0:
            raise UsageError(f"open() expects a non-negative integer version, got {version!r}")
        self._opened = True
        await self._exclusive(lambda: self._upgrade(version))
        logger.info("database.opened", dialect=self._dialect.name, version=self._version)

    async def _exclusive(self, fn: Callable[[], Awaitable[T]]) -> T:
        if _active_upgrade.get() is not None:
            raise MigrationLockError("cannot start an exclusive upgrade scope inside another")

        async def scoped() -> T:
            token = _active_upgrade.set(self)
            try:
                return await fn()
            finally:
                _active_upgrade.reset(token)

        return await self._driver.with_migration_lock(scoped)

    async def _upgrade(self, target: int) -> None:
        create = sql(
            "CREATE TABLE IF NOT EXISTS {} ({} INTEGER PRIMARY KEY, {} TIMESTAMP DEFAULT {})",
            ident(MIGRATIONS_TABLE),
            ident("version"),
            ident("applied_at"),
            CURRENT_TIMESTAMP,
        )
        await self._run_rendered("run", RenderedSQL(render_ddl(create, self._dialect), []))
        current = await self._stored_version()
        self._version = current

        if target <= current:
            return

        event = DatabaseUpgradeEvent(current, target)
        logger.info("migration.started", old_version=current, new_version=target)
        try:
            # units inherit the bound context, so their logs carry the version
            async with LogContext(migration_version=target):
                await self._dispatch(event)
        except Exception as exc:
            logger.error(
                "migration.failed",
                old_version=current,
                new_version=target,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise

        await self._execute(
            "run",
            sql(
                "INSERT INTO {} ({}, {}) VALUES ({}, {})",
                ident(MIGRATIONS_TABLE),
                ident("version"),
                ident("applied_at"),
                target,
                CURRENT_TIMESTAMP,
            ),
        )
        self._version = target
        logger.info("migration.applied", version=target)

    async def _dispatch(self, event: DatabaseUpgradeEvent) -> None:
        try:
            for listener in list(self._listeners):
                result = listener(event)
                if inspect.isawaitable(result):
                    event.wait_until(result)
        except Exception:
            # units already scheduled must finish inside the lock
            await event.drain()
            raise
        await event.settle()

    async def stored_version(self) -> int:
        """Highest recorded version, read without opening or migrating."""
        if await self._execute("get", self._dialect.table_exists(MIGRATIONS_TABLE)) is None:
            return 0
        return await self._stored_version()

    async def _stored_version(self) -> int:
        row = await self._execute(
            "get",
            sql("SELECT MAX({}) AS {} FROM {}", ident("version"), ident("version"), ident(MIGRATIONS_TABLE)),
        )
        if row is None:
            return 0
        value = row.get("version") if isinstance(row, Mapping) else row[0]
        if value is None:
            return 0
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise MigrationError(
                f"Stored migration version is not an integer: {value!r}", cause=exc
            ).with_context(dialect=self._dialect.name)

    async def ensure_table(self, table: Table) -> EnsureResult:
        """Create ``table`` (and its indexes) if it does not exist.

        Inside an upgrade listener this reuses the lock held by ``open``;
        elsewhere it takes the migration lock itself.
        """
        if _active_upgrade.get() is self:
            return await self._ensure(table)
        return await self._exclusive(lambda: self._ensure(table))

    async def _ensure(self, table: Table) -> EnsureResult:
        driver_ensure = getattr(self._driver, "ensure_table", None)
        if driver_ensure is not None:
            result = await driver_ensure(table)
            logger.info("table.ensured", table=table.name, applied=result.applied, delegated=True)
            return result

        if await self._execute("get", self._dialect.table_exists(table.name)) is not None:
            logger.debug("table.ensured", table=table.name, applied=False)
            return EnsureResult(False, [])

        statements = create_table(table, self._dialect)
        for statement in statements:
            await self._run_rendered("run", RenderedSQL(statement, []))
        logger.info("table.ensured", table=table.name, applied=True, statements=len(statements))
        return EnsureResult(True, statements)

    # -- query facade ------------------------------------------------------

    def render(self, query: Template | str) -> RenderedSQL:
        """Render ``query`` for this database's dialect."""
        if isinstance(query, str):
            query = Template.literal(query)
        return render_sql(query, self._dialect)

    async def all(self, query: Template | str) -> list[dict[str, Any]]:
        return await self._execute("all", query)

    async def get(self, query: Template | str) -> dict[str, Any] | None:
        return await self._execute("get", query)

    async def val(self, query: Template | str) -> Any:
        return await self._execute("val", query)

    async def exec(self, query: Template | str) -> int:
        """Execute for effect; returns the affected row count."""
        return await self._execute("run", query)

    async def transaction(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` inside a driver transaction (rolled back if it raises)."""
        return await self._driver.transaction(fn)

    async def close(self) -> None:
        await self._driver.close()

    async def _execute(self, method: str, query: Template | str) -> Any:
        return await self._run_rendered(method, self.render(query))

    async def _run_rendered(self, method: str, rendered: RenderedSQL) -> Any:
        try:
            return await getattr(self._driver, method)(rendered.sql, rendered.params)
        except TesseraError:
            raise
        except Exception as exc:
            raise QueryError(
                f"{method}() failed: {exc}", cause=exc
            ).with_context(sql=rendered.sql, dialect=self._dialect.name) from exc


__all__ = [
    "MIGRATIONS_TABLE",
    "UPGRADE_NEEDED",
    "Driver",
    "EnsureResult",
    "DatabaseUpgradeEvent",
    "Database",
]
