"""Schema-aware SQL fragment helpers.

``where``, ``set_values`` and ``on`` turn structured conditions and updates
into :class:`~tessera.template.Template` fragments. They never emit SQL
keywords like ``WHERE`` or ``SET`` themselves, so the caller stays in control
of the statement shape. Column names are emitted as identifier markers and
quoted per dialect at render time.

Examples:
    >>> frag = where(Posts, {"published": True, "createdAt": {"$gt": cutoff}})
    >>> render_sql(frag, "postgresql").sql
    '"published" = $1 AND "created_at" > $2'
    >>> render_sql(set_values(Posts, {"title": "x"}), "sqlite").sql
    '"title" = ?'
    >>> render_sql(on(Posts, "authorId"), "sqlite").sql
    '"users"."id" = "posts"."author_id"'
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Literal

from tessera.errors import UsageError
from tessera.markers import UNSET, Identifier
from tessera.template import Template, join

if TYPE_CHECKING:
    from tessera.table import Table

ColumnCasing = Literal["snake_case", "none"]

# Expansion order inside one condition mapping.
OPERATORS: tuple[str, ...] = (
    "$eq",
    "$neq",
    "$lt",
    "$gt",
    "$gte",
    "$lte",
    "$like",
    "$in",
    "$is_null",
)

_COMPARISONS = {
    "$eq": " = ",
    "$neq": " != ",
    "$lt": " < ",
    "$gt": " > ",
    "$gte": " >= ",
    "$lte": " <= ",
    "$like": " LIKE ",
}

_ALWAYS_TRUE = Template.literal("1 = 1")
_ALWAYS_FALSE = Template.literal("1 = 0")


def to_snake_case(name: str) -> str:
    """``createdAt`` -> ``created_at``."""
    return re.sub(r"[A-Z]", lambda m: "_" + m.group(0).lower(), name)


def column_name(field_name: str, casing: ColumnCasing) -> str:
    """Column name for ``field_name`` under ``casing``."""
    if casing == "snake_case":
        return to_snake_case(field_name)
    return field_name


def is_operator_mapping(value: Any) -> bool:
    return isinstance(value, Mapping) and any(
        isinstance(k, str) and k.startswith("$") for k in value
    )


def _comparison(column: Identifier, op: str, value: Any) -> Template:
    return Template(("", _COMPARISONS[op], ""), (column, value))


def _in_clause(column: Identifier, values: Any) -> Template:
    if isinstance(values, (str, bytes)) or not hasattr(values, "__iter__"):
        raise UsageError(f"$in expects a list of values, got {type(values).__name__}")
    items = list(values)
    if not items:
        return _ALWAYS_FALSE
    strings = ["", " IN ("] + [", "] * (len(items) - 1) + [")"]
    return Template(strings, [column, *items])


def _null_check(column: Identifier, is_null: Any) -> Template:
    return Template(("", " IS NULL" if is_null else " IS NOT NULL"), (column,))


def _condition(column: Identifier, value: Any) -> list[Template]:
    if not is_operator_mapping(value):
        if value is None:
            return [_null_check(column, True)]
        return [_comparison(column, "$eq", value)]

    unknown = [k for k in value if k not in OPERATORS]
    if unknown:
        raise UsageError(
            f"Unknown condition operator(s) {unknown}. Supported: {list(OPERATORS)}"
        )
    clauses: list[Template] = []
    for op in OPERATORS:
        operand = value.get(op, UNSET)
        if operand is UNSET:
            continue
        if op == "$in":
            clauses.append(_in_clause(column, operand))
        elif op == "$is_null":
            clauses.append(_null_check(column, operand))
        else:
            clauses.append(_comparison(column, op, operand))
    return clauses


def where(table: Table, conditions: Mapping[str, Any]) -> Template:
    """AND-joined condition fragment for WHERE/HAVING clauses.

    A plain value is shorthand for ``$eq`` (``None`` for ``$is_null``);
    ``UNSET`` entries are skipped. With nothing left, returns ``1 = 1``.

    Raises:
        UsageError: On an unknown field or operator.
    """
    clauses: list[Template] = []
    for field_name, value in conditions.items():
        if value is UNSET:
            continue
        column = Identifier(table.column(field_name))
        clauses.extend(_condition(column, value))
    if not clauses:
        return _ALWAYS_TRUE
    return join(clauses, " AND ")


def set_values(table: Table, values: Mapping[str, Any]) -> Template:
    """Assignment fragment for UPDATE ... SET.

    ``None`` assigns SQL NULL; ``UNSET`` entries are skipped.

    Raises:
        UsageError: If no field remains, or on an unknown field.
    """
    assignments: list[Template] = []
    for field_name, value in values.items():
        if value is UNSET:
            continue
        column = Identifier(table.column(field_name))
        assignments.append(Template(("", " = ", ""), (column, value)))
    if not assignments:
        raise UsageError(
            f'set_values() on "{table.name}" requires at least one field that is not UNSET'
        ).with_context(table=table.name)
    return join(assignments, ", ")


set_ = set_values


def on(table: Table, field_name: str) -> Template:
    """Foreign-key equality fragment for JOIN ... ON.

    Raises:
        UsageError: If ``field_name`` is not a registered reference.
    """
    ref = table.reference(field_name)
    target = ref.table
    return Template(
        ("", ".", " = ", ".", ""),
        (
            Identifier(target.name),
            Identifier(column_name(ref.referenced_field, target.casing)),
            Identifier(table.name),
            Identifier(table.column(field_name)),
        ),
    )


__all__ = [
    "OPERATORS",
    "to_snake_case",
    "column_name",
    "is_operator_mapping",
    "where",
    "set_values",
    "set_",
    "on",
]
