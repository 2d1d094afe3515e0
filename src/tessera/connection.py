"""Driver factory: create a driver (or a Database) from a URL string.

Supported URL schemes
---------------------
==================  ==========================================  ============
Scheme              Example                                     Backend
==================  ==========================================  ============
``memory``          ``memory`` or ``:memory:`` or ``None``       SQLite RAM
``sqlite``          ``sqlite:///path/to/file.db``                SQLite file
``(file path)``     ``./data/app.db`` or ``/tmp/app.db``         SQLite file
==================  ==========================================  ============

Postgres and MySQL are supported by the renderer but no driver ships for
them; bring your own object implementing :class:`tessera.database.Driver`.
Their URLs raise :class:`~tessera.errors.DialectError` here rather than
silently falling back to SQLite.

Usage
-----
::

    from tessera.connection import connect, create_driver

    driver, info = create_driver("sqlite:///app.db")
    db = connect(TesseraSettings(database_url="app.db"))
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from tessera.database import Database
from tessera.drivers.sqlite import MEMORY, SQLiteDriver
from tessera.errors import DialectError
from tessera.logging import get_logger
from tessera.settings import TesseraSettings

logger = get_logger(__name__)


@dataclass(frozen=True)
class ConnectionInfo:
    """Metadata about a created driver."""

    backend: str
    """Backend identifier, e.g. ``"sqlite"``."""

    persistent: bool
    """Whether data survives process exit."""

    url: str
    """The original URL or path."""

    resolved_path: str | None = None
    """For file-based SQLite, the resolved absolute path."""

    def __repr__(self) -> str:
        parts = [f"backend={self.backend!r}", f"persistent={self.persistent}"]
        if self.resolved_path:
            parts.append(f"path={self.resolved_path!r}")
        else:
            parts.append(f"url={self.url!r}")
        return f"ConnectionInfo({', '.join(parts)})"


def parse_url(url: str | None) -> tuple[str, str]:
    """Split a database URL into ``(scheme, target)``.

    ``scheme`` is ``"memory"``, ``"sqlite"`` or ``"file"``.

    Raises:
        DialectError: For any other ``scheme://`` URL.
    """
    if url is None or url in ("", "memory", MEMORY):
        return "memory", MEMORY

    for prefix in ("sqlite:///", "sqlite://"):
        if url.startswith(prefix):
            path = url[len(prefix):]
            if not path or path == MEMORY:
                return "memory", MEMORY
            return "sqlite", path

    if "://" in url:
        scheme = url.split("://", 1)[0]
        raise DialectError(
            f"No driver available for '{scheme}://' URLs. "
            "Supported: memory, sqlite:///path, or a file path"
        ).with_context(scheme=scheme)

    return "file", url


def create_driver(url: str | None = None) -> tuple[SQLiteDriver, ConnectionInfo]:
    """Create a driver for ``url`` plus metadata about it."""
    scheme, target = parse_url(url)
    if scheme == "memory":
        return SQLiteDriver(MEMORY), ConnectionInfo(backend="sqlite", persistent=False, url=MEMORY)

    resolved = str(Path(target).resolve())
    logger.debug("connection.created", backend="sqlite", path=resolved)
    return SQLiteDriver(resolved), ConnectionInfo(
        backend="sqlite",
        persistent=True,
        url=url or target,
        resolved_path=resolved,
    )


def connect(settings: TesseraSettings | None = None) -> Database:
    """Build a :class:`Database` from settings (environment by default)."""
    settings = settings or TesseraSettings()
    driver, _ = create_driver(settings.database_url)
    return Database(driver, dialect=settings.dialect)


__all__ = ["ConnectionInfo", "parse_url", "create_driver", "connect"]
