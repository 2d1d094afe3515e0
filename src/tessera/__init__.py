"""
tessera - schema-driven SQL templates, fragments and migrations.

Tables are declared once; fragments (``where``, ``set_values``, ``on``),
DDL and row validation are derived from the declarations, and a
:class:`Database` renders composed templates for its driver's dialect and
runs versioned migrations.
"""

__version__ = "0.1.0"

from tessera.database import Database, DatabaseUpgradeEvent, Driver, EnsureResult
from tessera.ddl import create_table
from tessera.dialect import Dialect, get_dialect, register_dialect
from tessera.errors import (
    AlreadyOpenError,
    DefinitionError,
    DialectError,
    ErrorCategory,
    MigrationError,
    MigrationLockError,
    QueryError,
    TableDefinitionError,
    TemplateError,
    TesseraError,
    UsageError,
)
from tessera.fragments import column_name, on, set_, set_values, to_snake_case, where
from tessera.markers import (
    CURRENT_DATE,
    CURRENT_TIME,
    CURRENT_TIMESTAMP,
    UNSET,
    Builtin,
    Identifier,
    ident,
    is_builtin,
    is_identifier,
)
from tessera.render import RenderedSQL, render_ddl, render_sql
from tessera.schema import Schema, s
from tessera.table import (
    FieldMeta,
    FieldType,
    Reference,
    Table,
    index,
    is_table,
    primary,
    references,
    table,
    unique,
)
from tessera.template import Template, join, merge_template, sql

__all__ = [
    "__version__",
    # template
    "Template",
    "merge_template",
    "sql",
    "join",
    # markers
    "Identifier",
    "Builtin",
    "UNSET",
    "CURRENT_TIMESTAMP",
    "CURRENT_DATE",
    "CURRENT_TIME",
    "ident",
    "is_identifier",
    "is_builtin",
    # dialects / rendering
    "Dialect",
    "get_dialect",
    "register_dialect",
    "RenderedSQL",
    "render_sql",
    "render_ddl",
    # fragments
    "where",
    "set_values",
    "set_",
    "on",
    "column_name",
    "to_snake_case",
    # schema / tables
    "Schema",
    "s",
    "Table",
    "FieldMeta",
    "FieldType",
    "Reference",
    "table",
    "primary",
    "unique",
    "index",
    "references",
    "is_table",
    "create_table",
    # database
    "Database",
    "DatabaseUpgradeEvent",
    "Driver",
    "EnsureResult",
    # errors
    "ErrorCategory",
    "TesseraError",
    "DefinitionError",
    "TableDefinitionError",
    "UsageError",
    "AlreadyOpenError",
    "MigrationLockError",
    "TemplateError",
    "MigrationError",
    "DialectError",
    "QueryError",
]
