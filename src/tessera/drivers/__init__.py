"""Backend drivers implementing :class:`tessera.database.Driver`."""

from tessera.drivers.sqlite import SQLiteDriver

__all__ = ["SQLiteDriver"]
