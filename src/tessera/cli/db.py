"""
CLI: ``tessera db`` commands for migration state, DDL and field metadata.
"""

from __future__ import annotations

import asyncio
import importlib

import typer

from tessera.cli.utils import fail, output_fields
from tessera.connection import create_driver
from tessera.database import Database
from tessera.ddl import create_table
from tessera.errors import TesseraError
from tessera.logging import configure_logging
from tessera.settings import TesseraSettings
from tessera.table import Table, is_table

app = typer.Typer(no_args_is_help=True)


def _settings(database: str | None) -> TesseraSettings:
    settings = TesseraSettings()
    if database is not None:
        settings = settings.model_copy(update={"database_url": database})
    configure_logging(level=settings.log_level, json_format=settings.log_json)
    return settings


async def _read_version(url: str) -> int:
    driver, _ = create_driver(url)
    db = Database(driver)
    try:
        return await db.stored_version()
    finally:
        await db.close()


def load_table(target: str) -> Table:
    """Resolve ``package.module:ATTR`` to a table object."""
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise typer.BadParameter(f"expected MODULE:ATTR, got {target!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise typer.BadParameter(f"cannot import {module_name!r}: {exc}") from exc
    obj = getattr(module, attr, None)
    if not is_table(obj):
        raise typer.BadParameter(f"{target!r} is not a table")
    return obj


@app.command()
def version(
    database: str | None = typer.Option(None, "--database", "-d", help="Database URL or path"),
) -> None:
    """Print the stored migration version (0 if never migrated)."""
    settings = _settings(database)
    try:
        stored = asyncio.run(_read_version(settings.database_url))
    except TesseraError as exc:
        fail(exc.message)
    typer.echo(str(stored))


@app.command()
def ddl(
    target: str = typer.Argument(..., help="Table object as MODULE:ATTR"),
    dialect: str = typer.Option("sqlite", "--dialect", help="sqlite, postgresql or mysql"),
) -> None:
    """Print CREATE statements for a table."""
    table = load_table(target)
    try:
        statements = create_table(table, dialect)
    except TesseraError as exc:
        fail(exc.message)
    typer.echo(";\n\n".join(statements) + ";")


@app.command()
def fields(
    target: str = typer.Argument(..., help="Table object as MODULE:ATTR"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Show field metadata for a table."""
    output_fields(load_table(target), as_json=as_json)
