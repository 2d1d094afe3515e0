"""
Structured error types for tessera.

Every error raised by tessera extends :class:`TesseraError`, which carries a
category for routing, a structured :class:`ErrorContext` for logging, and an
optional chained cause.

Manifesto:
    - **Typed hierarchy:** Definition, usage, migration, dialect and query
      failures are distinct types, so callers catch exactly what they mean.
    - **Fail fast:** Definition and usage errors are raised synchronously at
      the call that triggered them.
    - **Rich context:** Errors carry table/field/SQL metadata for logs.
    - **Error chaining:** Driver exceptions are preserved as ``cause``.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        TesseraError                           │
        │              (category, context, cause)                       │
        ├──────────────────────────────────────────────────────────────┤
        │                                                               │
        │  DefinitionError       UsageError          MigrationError     │
        │  (DEFINITION)          (USAGE)             (MIGRATION)        │
        │       │                    │                                  │
        │  TableDefinitionError  AlreadyOpenError                      │
        │                        MigrationLockError                     │
        │                        TemplateError                          │
        │                                                               │
        │  DialectError          QueryError                             │
        │  (CONFIG)              (DATABASE)                             │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> err = TableDefinitionError("bad name", table="a.b")
    >>> err.category
    <ErrorCategory.DEFINITION: 'DEFINITION'>
    >>> err.context.table
    'a.b'

Guardrails:
    ❌ DON'T: Wrap a failing migration unit in MigrationError
    ✅ DO: Let the unit's own exception reach the ``open()`` caller

    ❌ DON'T: Fall back to a default dialect on DialectError
    ✅ DO: Surface the configuration mistake
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    DEFINITION = "DEFINITION"
    USAGE = "USAGE"
    MIGRATION = "MIGRATION"
    CONFIG = "CONFIG"
    DATABASE = "DATABASE"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        table: Table name involved, if any
        field: Field name involved, if any
        dialect: Dialect tag in use
        sql: Rendered SQL text of a failing statement
        version: Migration version involved
        metadata: Additional key-value pairs
    """

    table: str | None = None
    field: str | None = None
    dialect: str | None = None
    sql: str | None = None
    version: int | None = None

    metadata: dict[str, Any] = dataclasses.field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["table", "field", "dialect", "sql", "version"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class TesseraError(Exception):
    """
    Base exception for all tessera errors.

    Subclasses set ``default_category`` so callers and log processors can
    route on it without isinstance chains.

    Examples:
        >>> error = TesseraError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>

        >>> error = TesseraError("Fetch failed").with_context(table="users")
        >>> error.context.table
        'users'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> TesseraError:
        """
        Add context to this error (fluent API).

        Usage:
            raise QueryError("failed").with_context(sql=rendered.sql)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# DEFINITION ERRORS
# =============================================================================


class DefinitionError(TesseraError):
    """Invalid schema or table definition."""

    default_category = ErrorCategory.DEFINITION


class TableDefinitionError(DefinitionError):
    """Table or field name rejected at definition time."""

    def __init__(
        self,
        message: str,
        table: str | None = None,
        field: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.context.table = table
        self.context.field = field

    @property
    def table(self) -> str | None:
        return self.context.table

    @property
    def field(self) -> str | None:
        return self.context.field


# =============================================================================
# USAGE ERRORS
# =============================================================================


class UsageError(TesseraError):
    """An API was called in a way that can never succeed."""

    default_category = ErrorCategory.USAGE


class AlreadyOpenError(UsageError):
    """``Database.open()`` called on an already-opened instance."""


class MigrationLockError(UsageError):
    """An exclusive upgrade scope was requested inside another one."""


class TemplateError(UsageError):
    """A template was constructed with mismatched segments and values."""


# =============================================================================
# MIGRATION / CONFIG / DATABASE
# =============================================================================


class MigrationError(TesseraError):
    """Failure of the migration bookkeeping itself."""

    default_category = ErrorCategory.MIGRATION


class DialectError(TesseraError):
    """Missing or unknown SQL dialect, or an unsupported backend URL."""

    default_category = ErrorCategory.CONFIG


class QueryError(TesseraError):
    """A driver call failed while executing a rendered statement."""

    default_category = ErrorCategory.DATABASE


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def categorize_error(error: Exception) -> ErrorCategory:
    """Category of ``error``; non-tessera exceptions are INTERNAL."""
    if isinstance(error, TesseraError):
        return error.category
    return ErrorCategory.INTERNAL


def is_tessera_error(error: object) -> bool:
    return isinstance(error, TesseraError)


__all__ = [
    "ErrorCategory",
    "ErrorContext",
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
    "categorize_error",
    "is_tessera_error",
]
