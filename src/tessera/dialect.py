"""SQL dialect abstraction.

Provides a ``Dialect`` protocol and concrete implementations for the three
supported backends. The renderer (:mod:`tessera.render`) asks a dialect how
to quote identifiers, which placeholder to emit and how to spell booleans;
the DDL generator (:mod:`tessera.ddl`) asks it for column types and index
syntax.

Architecture::

    ┌──────────────────────────────────────────────────────────────────┐
    │                     Dialect Abstraction Layer                     │
    └──────────────────────────────────────────────────────────────────┘

    ┌──────────────┐   ┌──────────────┐   ┌──────────────┐
    │ PostgreSQL   │   │ MySQL        │   │ SQLite       │
    │ $1, $2, $3   │   │ ?, ?, ?      │   │ ?, ?, ?      │
    │ "ident"      │   │ `ident`      │   │ "ident"      │
    │ TRUE / FALSE │   │ TRUE / FALSE │   │ 1 / 0        │
    └──────────────┘   └──────────────┘   └──────────────┘

Examples:
    >>> from tessera.dialect import get_dialect
    >>> d = get_dialect("postgresql")
    >>> d.placeholder(3)
    '$3'
    >>> get_dialect("mysql").quote_identifier("we`ird")
    '`we``ird`'

Guardrails:
    ❌ DON'T: Default to some dialect when the tag is missing
    ✅ DO: Raise DialectError and let the caller fix its configuration
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from tessera.errors import DialectError
from tessera.template import Template


@runtime_checkable
class Dialect(Protocol):
    """SQL dialect contract."""

    @property
    def name(self) -> str:
        """Dialect tag (e.g. ``'sqlite'``)."""
        ...

    # -- Rendering ---------------------------------------------------------

    def quote_identifier(self, name: str) -> str:
        """Quote ``name``, doubling any embedded quote character."""
        ...

    def placeholder(self, index: int) -> str:
        """Positional placeholder for the ``index``-th parameter (1-based).

        ``index`` is ignored by dialects with anonymous placeholders.
        """
        ...

    def boolean_true(self) -> str:
        ...

    def boolean_false(self) -> str:
        ...

    # -- DDL helpers -------------------------------------------------------

    def column_type(self, field_type: str, *, max_length: int | None = None, keyed: bool = False) -> str:
        """Column type for a field type (see ``tessera.table.FieldType``).

        ``keyed`` marks columns that take part in a key or index, which
        some backends require to have a bounded length.
        """
        ...

    @property
    def inline_indexes(self) -> bool:
        """Whether indexes are declared inside ``CREATE TABLE``."""
        ...

    @property
    def supports_create_index_if_not_exists(self) -> bool:
        ...

    def table_exists(self, table_name: str) -> Template:
        """Query returning a row if ``table_name`` exists."""
        ...


# =========================================================================
# Concrete Dialect Implementations
# =========================================================================


class _QuotingMixin:
    quote_char = '"'

    def quote_identifier(self, name: str) -> str:
        q = self.quote_char
        return f"{q}{name.replace(q, q + q)}{q}"


class SQLiteDialect(_QuotingMixin):
    """SQLite dialect — ``?`` placeholders, ``"ident"``, 0/1 booleans."""

    _TYPES = {
        "integer": "INTEGER",
        "number": "REAL",
        "checkbox": "INTEGER",
        "json": "TEXT",
    }

    @property
    def name(self) -> str:
        return "sqlite"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def boolean_true(self) -> str:
        return "1"

    def boolean_false(self) -> str:
        return "0"

    def column_type(self, field_type: str, *, max_length: int | None = None, keyed: bool = False) -> str:  # noqa: ARG002
        # SQLite stores dates and times as ISO-8601 text
        return self._TYPES.get(field_type, "TEXT")

    @property
    def inline_indexes(self) -> bool:
        return False

    @property
    def supports_create_index_if_not_exists(self) -> bool:
        return True

    def table_exists(self, table_name: str) -> Template:
        return Template(
            ("SELECT name FROM sqlite_master WHERE type = 'table' AND name = ", ""),
            (table_name,),
        )


class PostgreSQLDialect(_QuotingMixin):
    """PostgreSQL dialect — ``$n`` numbered placeholders (asyncpg style)."""

    _TYPES = {
        "integer": "INTEGER",
        "number": "DOUBLE PRECISION",
        "checkbox": "BOOLEAN",
        "date": "DATE",
        "datetime": "TIMESTAMPTZ",
        "time": "TIME",
        "json": "JSONB",
    }

    @property
    def name(self) -> str:
        return "postgresql"

    def placeholder(self, index: int) -> str:
        return f"${index}"

    def boolean_true(self) -> str:
        return "TRUE"

    def boolean_false(self) -> str:
        return "FALSE"

    def column_type(self, field_type: str, *, max_length: int | None = None, keyed: bool = False) -> str:  # noqa: ARG002
        if field_type in self._TYPES:
            return self._TYPES[field_type]
        if max_length is not None:
            return f"VARCHAR({max_length})"
        return "TEXT"

    @property
    def inline_indexes(self) -> bool:
        return False

    @property
    def supports_create_index_if_not_exists(self) -> bool:
        return True

    def table_exists(self, table_name: str) -> Template:
        return Template(
            (
                "SELECT table_name FROM information_schema.tables "
                "WHERE table_schema = current_schema() AND table_name = ",
                "",
            ),
            (table_name,),
        )


class MySQLDialect(_QuotingMixin):
    """MySQL dialect — ``?`` placeholders, backtick identifiers.

    MySQL cannot index unbounded ``TEXT`` columns, so keyed text columns
    become ``VARCHAR(255)`` unless a max length says otherwise.
    """

    quote_char = "`"

    _TYPES = {
        "integer": "INT",
        "number": "DOUBLE",
        "checkbox": "BOOLEAN",
        "date": "DATE",
        "datetime": "DATETIME(6)",
        "time": "TIME",
        "json": "JSON",
    }

    @property
    def name(self) -> str:
        return "mysql"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def boolean_true(self) -> str:
        return "TRUE"

    def boolean_false(self) -> str:
        return "FALSE"

    def column_type(self, field_type: str, *, max_length: int | None = None, keyed: bool = False) -> str:
        if field_type in self._TYPES:
            return self._TYPES[field_type]
        if max_length is not None and max_length <= 16383:
            return f"VARCHAR({max_length})"
        if keyed:
            return "VARCHAR(255)"
        return "TEXT"

    @property
    def inline_indexes(self) -> bool:
        return True

    @property
    def supports_create_index_if_not_exists(self) -> bool:
        return False

    def table_exists(self, table_name: str) -> Template:
        return Template(
            (
                "SELECT TABLE_NAME FROM INFORMATION_SCHEMA.TABLES "
                "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = ",
                "",
            ),
            (table_name,),
        )


# =========================================================================
# Registry / Factory
# =========================================================================

# Pre-instantiated singletons (dialects are stateless)
_DIALECTS: dict[str, Dialect] = {
    "sqlite": SQLiteDialect(),
    "postgresql": PostgreSQLDialect(),
    "postgres": PostgreSQLDialect(),  # alias
    "mysql": MySQLDialect(),
}


def get_dialect(db_type: str | Dialect | None) -> Dialect:
    """Get a dialect by tag.

    Args:
        db_type: One of ``'sqlite'``, ``'postgresql'``, ``'postgres'``,
                 ``'mysql'``, or an object already implementing
                 :class:`Dialect`.

    Raises:
        DialectError: If ``db_type`` is missing or not recognised.
    """
    if db_type is None or db_type == "":
        raise DialectError(
            "No SQL dialect configured. "
            f"Supported: {sorted(set(_DIALECTS) - {'postgres'})}"
        )
    if not isinstance(db_type, str):
        if isinstance(db_type, Dialect):
            return db_type
        raise DialectError(f"Not a dialect: {db_type!r}")
    key = db_type.lower()
    if key not in _DIALECTS:
        raise DialectError(
            f"Unknown dialect '{db_type}'. "
            f"Supported: {sorted(set(_DIALECTS) - {'postgres'})}"
        ).with_context(dialect=db_type)
    return _DIALECTS[key]


def register_dialect(name: str, dialect: Dialect) -> None:
    """Register a custom dialect implementation (lower-cased key)."""
    _DIALECTS[name.lower()] = dialect


__all__ = [
    "Dialect",
    "SQLiteDialect",
    "PostgreSQLDialect",
    "MySQLDialect",
    "get_dialect",
    "register_dialect",
]
