"""Render templates to dialect-specific SQL.

This is the single place where a :class:`~tessera.template.Template` turns
into text:

- :func:`render_sql` — queries. Identifiers are quoted, builtins inlined,
  every other value becomes a placeholder plus a bound parameter.
- :func:`render_ddl` — schema statements, which do not accept placeholders
  in value positions. Values are inlined as escaped literals.

Both are pure functions of ``(template, dialect)``. Any string that is not
inlined through :func:`inline_literal` goes through the placeholder path;
there is no partial escaping anywhere else.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, NamedTuple

from tessera.dialect import Dialect, get_dialect
from tessera.markers import UNSET, Builtin, Identifier, resolve_builtin
from tessera.template import Template


class RenderedSQL(NamedTuple):
    """Final SQL text plus positional parameters."""

    sql: str
    params: list[Any]


def render_sql(template: Template, dialect: str | Dialect) -> RenderedSQL:
    """Render ``template`` for execution with bound parameters.

    Placeholders are numbered by the count of parameters emitted so far,
    not by textual position, so identifiers and builtins do not consume
    placeholder numbers.
    """
    d = get_dialect(dialect)
    parts: list[str] = [template.strings[0]]
    params: list[Any] = []
    for value, literal in zip(template.values, template.strings[1:]):
        if isinstance(value, Identifier):
            parts.append(d.quote_identifier(value.name))
        elif isinstance(value, Builtin):
            parts.append(resolve_builtin(value, d.name))
        else:
            params.append(value)
            parts.append(d.placeholder(len(params)))
        parts.append(literal)
    return RenderedSQL("".join(parts), params)


def render_ddl(template: Template, dialect: str | Dialect) -> str:
    """Render ``template`` with every value inlined as a SQL literal."""
    d = get_dialect(dialect)
    parts: list[str] = [template.strings[0]]
    for value, literal in zip(template.values, template.strings[1:]):
        if isinstance(value, Identifier):
            parts.append(d.quote_identifier(value.name))
        elif isinstance(value, Builtin):
            parts.append(resolve_builtin(value, d.name))
        else:
            parts.append(inline_literal(value, d))
        parts.append(literal)
    return "".join(parts)


def inline_literal(value: Any, dialect: str | Dialect) -> str:
    """Convert ``value`` to an inline SQL literal."""
    d = get_dialect(dialect)
    if value is None or value is UNSET:
        return "NULL"
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return d.boolean_true() if value else d.boolean_false()
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, str):
        return _quote(value)
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return _quote(value.isoformat())
    return _quote(str(value))


def _quote(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


__all__ = ["RenderedSQL", "render_sql", "render_ddl", "inline_literal"]
