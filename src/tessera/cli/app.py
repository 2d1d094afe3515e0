"""
Root Typer application for the tessera CLI.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version

import typer
from typer import Typer

from tessera import __version__

app = Typer(
    name="tessera",
    help="tessera: schema-driven SQL templates and migrations.",
    no_args_is_help=True,
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        try:
            v = pkg_version("tessera")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"tessera {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """tessera CLI: inspect migration state and generate DDL."""


# ── Sub-command registration ─────────────────────────────────────────────

from tessera.cli.db import app as db_app  # noqa: E402

app.add_typer(db_app, name="db", help="Database operations.")
