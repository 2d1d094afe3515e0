"""DDL generation from table definitions.

Statements are composed as templates and rendered with
:func:`~tessera.render.render_ddl`, so defaults are inlined as escaped
literals and identifiers are quoted for the target dialect.

Examples:
    >>> for stmt in create_table(Posts, "sqlite"):
    ...     print(stmt)
    CREATE TABLE IF NOT EXISTS "posts" (
      "id" TEXT NOT NULL PRIMARY KEY,
      "author_id" TEXT NOT NULL,
      "title" TEXT NOT NULL,
      FOREIGN KEY ("author_id") REFERENCES "users" ("id") ON DELETE CASCADE
    )
"""

from __future__ import annotations

import json

from tessera.dialect import Dialect, get_dialect
from tessera.fragments import column_name
from tessera.markers import UNSET, Identifier
from tessera.render import render_ddl
from tessera.schema import StringDecl
from tessera.table import Reference, Table, classify
from tessera.template import Template, join, sql


def index_name(table: Table, fields: list[str] | tuple[str, ...]) -> str:
    return "idx_" + "_".join([table.name, *(table.column(f) for f in fields)])


def _column_list(table: Table, fields: list[str] | tuple[str, ...]) -> Template:
    return join([Template.value(Identifier(table.column(f))) for f in fields])


def _keyed_fields(table: Table) -> set[str]:
    keyed = set(table.unique_fields()) | set(table.indexed_fields())
    keyed.update(ref.field_name for ref in table.references())
    for idx in table.indexes:
        keyed.update(idx)
    if table.primary_key() is not None:
        keyed.add(table.primary_key())
    return keyed


def column_definition(table: Table, field_name: str, dialect: Dialect, *, keyed: bool = False) -> Template:
    """``"col" TYPE [NOT NULL] [PRIMARY KEY] [UNIQUE] [DEFAULT ...]``."""
    info = table.unwrapped(field_name)
    core = info.core
    max_length = core.max_length if isinstance(core, StringDecl) else None
    col_type = dialect.column_type(classify(core).value, max_length=max_length, keyed=keyed)

    parts = sql("{} " + col_type, Identifier(table.column(field_name)))
    if not (info.is_optional or info.is_nullable):
        parts += " NOT NULL"
    if table.primary_key() == field_name:
        parts += " PRIMARY KEY"
    elif field_name in table.unique_fields():
        parts += " UNIQUE"

    default = info.default
    if info.has_default and info.default_factory is None and default is not UNSET:
        if isinstance(default, (dict, list)):
            default = json.dumps(default)
        parts += sql(" DEFAULT {}", default)
    return parts


def _foreign_key(table: Table, ref: Reference) -> Template:
    target = ref.table
    clause = sql(
        "FOREIGN KEY ({}) REFERENCES {} ({})",
        Identifier(table.column(ref.field_name)),
        Identifier(target.name),
        Identifier(column_name(ref.referenced_field, target.casing)),
    )
    if ref.on_delete:
        clause += " ON DELETE " + ref.on_delete.upper()
    return clause


def _index_specs(table: Table) -> list[tuple[str, ...]]:
    specs = [(f,) for f in table.indexed_fields() if f not in table.unique_fields()]
    specs.extend(tuple(idx) for idx in table.indexes)
    return specs


def create_table(table: Table, dialect: str | Dialect) -> list[str]:
    """``CREATE TABLE IF NOT EXISTS`` plus index statements for ``table``.

    Raises:
        DialectError: If ``dialect`` is missing or unknown.
    """
    d = get_dialect(dialect)
    keyed = _keyed_fields(table)

    body: list[Template] = [
        column_definition(table, f, d, keyed=f in keyed) for f in table.field_names()
    ]
    body.extend(_foreign_key(table, ref) for ref in table.references())
    if d.inline_indexes:
        for cols in _index_specs(table):
            body.append(sql("INDEX {} (", Identifier(index_name(table, cols))) + _column_list(table, cols) + ")")

    statement = (
        sql("CREATE TABLE IF NOT EXISTS {} (\n  ", Identifier(table.name))
        + join(body, ",\n  ")
        + "\n)"
    )
    statements = [render_ddl(statement, d)]

    if not d.inline_indexes:
        prefix = "CREATE INDEX IF NOT EXISTS " if d.supports_create_index_if_not_exists else "CREATE INDEX "
        for cols in _index_specs(table):
            stmt = (
                sql(prefix + "{} ON {} (", Identifier(index_name(table, cols)), Identifier(table.name))
                + _column_list(table, cols)
                + ")"
            )
            statements.append(render_ddl(stmt, d))
    return statements


def drop_table(table: Table, dialect: str | Dialect) -> str:
    return render_ddl(sql("DROP TABLE IF EXISTS {}", Identifier(table.name)), dialect)


__all__ = ["create_table", "drop_table", "column_definition", "index_name"]
