"""
CLI utility helpers: consoles, error exits and table-field rendering.
"""

from __future__ import annotations

import json
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table as RichTable

from tessera.table import Table

console = Console()
err_console = Console(stderr=True)


def fail(message: str) -> NoReturn:
    """Print an error to stderr and exit with code 1."""
    err_console.print(f"[bold red]Error[/bold red]: {escape(message)}", highlight=False)
    raise typer.Exit(code=1)


def _flags(meta: dict) -> str:
    flags = [name for name in ("primary_key", "unique", "indexed") if meta.get(name)]
    if meta.get("reference"):
        ref = meta["reference"]
        flags.append(f"-> {ref['table']}.{ref['field']}")
    return ", ".join(flags)


def output_fields(table: Table, *, as_json: bool = False) -> None:
    """Render a table's field metadata as JSON or a rich table."""
    fields = {name: meta.model_dump(exclude_none=True) for name, meta in table.fields().items()}

    if as_json:
        console.print_json(json.dumps(fields, default=str))
        return

    view = RichTable(title=table.name, show_lines=False)
    view.add_column("Field", style="cyan")
    view.add_column("Column")
    view.add_column("Type", style="green")
    view.add_column("Required")
    view.add_column("Keys")
    columns = table.columns()
    for name, meta in fields.items():
        view.add_row(
            name,
            columns[name],
            str(meta["type"]),
            "yes" if meta["required"] else "no",
            _flags(meta),
        )
    console.print(view)
