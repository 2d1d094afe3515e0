"""Identifier and builtin markers.

A value interpolated into a :class:`~tessera.template.Template` is one of
three things:

- an :class:`Identifier`, quoted for the target dialect at render time,
- a :class:`Builtin`, resolved to literal SQL text (``CURRENT_TIMESTAMP``)
  and spliced inline,
- anything else, which becomes a bound parameter.

Membership is decided by class, so no dict, string or tuple coming from user
data can ever be mistaken for a marker.

Examples:
    >>> from tessera.markers import ident, is_identifier, CURRENT_TIMESTAMP
    >>> is_identifier(ident("users"))
    True
    >>> is_identifier({"name": "users"})
    False
    >>> resolve_builtin(CURRENT_TIMESTAMP, "sqlite")
    'CURRENT_TIMESTAMP'
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from tessera.errors import UsageError


@dataclass(frozen=True, slots=True)
class Identifier:
    """A table or column name to be dialect-quoted at render time."""

    name: str

    def __repr__(self) -> str:
        return f"ident({self.name!r})"

    def __deepcopy__(self, memo: dict) -> Identifier:
        return self


@dataclass(frozen=True, slots=True)
class Builtin:
    """A SQL expression evaluated by the database, never parameterized."""

    name: str

    def __repr__(self) -> str:
        return f"Builtin({self.name!r})"

    def __deepcopy__(self, memo: dict) -> Builtin:
        return self


class _Unset:
    """Sentinel for an absent value. Mapping entries holding it are dropped."""

    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False

    def __copy__(self) -> _Unset:
        return self

    def __deepcopy__(self, memo: dict) -> _Unset:
        return self

    def __reduce__(self) -> str:
        return "UNSET"


UNSET = _Unset()

CURRENT_TIMESTAMP = Builtin("CURRENT_TIMESTAMP")
CURRENT_DATE = Builtin("CURRENT_DATE")
CURRENT_TIME = Builtin("CURRENT_TIME")

# Builtin name -> per-dialect SQL text. A missing dialect key falls back to
# the "*" entry.
_BUILTIN_SQL: dict[str, dict[str, str]] = {
    "CURRENT_TIMESTAMP": {"*": "CURRENT_TIMESTAMP"},
    "CURRENT_DATE": {"*": "CURRENT_DATE"},
    "CURRENT_TIME": {"*": "CURRENT_TIME"},
}


def ident(name: str) -> Identifier:
    """Create an identifier marker."""
    return Identifier(name)


def is_identifier(value: Any) -> bool:
    return isinstance(value, Identifier)


def is_builtin(value: Any) -> bool:
    return isinstance(value, Builtin)


def resolve_builtin(builtin: Builtin, dialect: str) -> str:
    """Return the SQL text for ``builtin`` in ``dialect``.

    Raises:
        UsageError: If the builtin is not known.
    """
    variants = _BUILTIN_SQL.get(builtin.name)
    if variants is None:
        raise UsageError(f"Unknown SQL builtin '{builtin.name}'")
    return variants.get(dialect, variants["*"])


__all__ = [
    "Identifier",
    "Builtin",
    "UNSET",
    "CURRENT_TIMESTAMP",
    "CURRENT_DATE",
    "CURRENT_TIME",
    "ident",
    "is_identifier",
    "is_builtin",
    "resolve_builtin",
]
