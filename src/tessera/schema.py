"""Field declarations: the schema-description API.

A field declaration is a small closed tree. Core nodes describe the value
type and its facets; wrapper nodes describe optionality, nullability and
defaults. Every node may carry display metadata (label, help text, widget,
...). Tables read declarations with :func:`unwrap`, which never needs to
look at anything but these public node types.

Manifesto:
    Declarations are plain frozen dataclasses built by an explicit
    :class:`Schema` instance. Nothing is patched into a shared library at
    import time; a project that needs extra string formats constructs its
    own ``Schema`` and passes it around.

Architecture::

    s.string(max_length=100).optional().meta(label="Nickname")

    OptionalDecl(metadata={"label": "Nickname"})
        └── StringDecl(max_length=100)

Examples:
    >>> from tessera.schema import Schema
    >>> s = Schema()
    >>> decl = s.enum(["user", "admin"]).default("user")
    >>> u = unwrap(decl)
    >>> u.has_default, u.default
    (True, 'user')
"""

from __future__ import annotations

import datetime as dt
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Annotated, Any, Literal

from pydantic import Field, StringConstraints

from tessera.logging import get_logger
from tessera.markers import UNSET

logger = get_logger(__name__)

# Patterns for the formats every Schema understands.
BUILTIN_FORMATS: dict[str, str] = {
    "email": r"^[^@\s]+@[^@\s]+\.[^@\s]+$",
    "url": r"^[A-Za-z][A-Za-z0-9+.-]*://\S+$",
    "uuid": r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$",
}


# =========================================================================
# Declaration nodes
# =========================================================================


@dataclass(frozen=True, kw_only=True)
class FieldDecl:
    """Base node. Chainable modifiers return new nodes."""

    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def optional(self) -> OptionalDecl:
        return OptionalDecl(inner=self)

    def nullable(self) -> NullableDecl:
        return NullableDecl(inner=self)

    def nullish(self) -> OptionalDecl:
        return OptionalDecl(inner=NullableDecl(inner=self))

    def default(self, value: Any) -> DefaultDecl:
        """Attach a default. A zero-argument callable is used as a factory."""
        if callable(value):
            return DefaultDecl(inner=self, factory=value)
        return DefaultDecl(inner=self, value=value)

    def meta(self, **metadata: Any) -> FieldDecl:
        """Attach display metadata to this layer (merged into existing)."""
        merged = {**self.metadata, **metadata}
        return replace(self, metadata=MappingProxyType(merged))


@dataclass(frozen=True, kw_only=True)
class StringDecl(FieldDecl):
    format: str | None = None
    pattern: str | None = None
    min_length: int | None = None
    max_length: int | None = None


@dataclass(frozen=True, kw_only=True)
class NumberDecl(FieldDecl):
    integer: bool = False
    minimum: float | None = None
    maximum: float | None = None


@dataclass(frozen=True, kw_only=True)
class BooleanDecl(FieldDecl):
    pass


@dataclass(frozen=True, kw_only=True)
class DateTimeDecl(FieldDecl):
    kind: Literal["datetime", "date", "time"] = "datetime"


@dataclass(frozen=True, kw_only=True)
class EnumDecl(FieldDecl):
    options: tuple[str, ...] = ()


@dataclass(frozen=True, kw_only=True)
class JsonDecl(FieldDecl):
    shape: Literal["any", "array", "object"] = "any"


@dataclass(frozen=True, kw_only=True)
class OptionalDecl(FieldDecl):
    inner: FieldDecl


@dataclass(frozen=True, kw_only=True)
class NullableDecl(FieldDecl):
    inner: FieldDecl


@dataclass(frozen=True, kw_only=True)
class DefaultDecl(FieldDecl):
    inner: FieldDecl
    value: Any = UNSET
    factory: Callable[[], Any] | None = None


CoreDecl = StringDecl | NumberDecl | BooleanDecl | DateTimeDecl | EnumDecl | JsonDecl
WrapperDecl = OptionalDecl | NullableDecl | DefaultDecl


# =========================================================================
# Builder
# =========================================================================


class Schema:
    """Builds field declarations.

    Args:
        formats: Extra named string formats (name -> regex) on top of
            ``email``, ``url`` and ``uuid``.
    """

    def __init__(self, formats: Mapping[str, str] | None = None) -> None:
        self._formats: dict[str, str] = {**BUILTIN_FORMATS, **(formats or {})}

    @property
    def formats(self) -> Mapping[str, str]:
        return MappingProxyType(self._formats)

    def with_format(self, name: str, pattern: str) -> Schema:
        """Return a new Schema that also understands format ``name``."""
        re.compile(pattern)
        return Schema({**self._formats, name: pattern})

    # -- strings -----------------------------------------------------------

    def string(
        self,
        *,
        min_length: int | None = None,
        max_length: int | None = None,
        format: str | None = None,
        pattern: str | None = None,
    ) -> StringDecl:
        if format is not None and format not in self._formats:
            raise ValueError(f"Unknown string format '{format}'. Known: {sorted(self._formats)}")
        if format is not None and pattern is None:
            pattern = self._formats[format]
        return StringDecl(format=format, pattern=pattern, min_length=min_length, max_length=max_length)

    def email(self, **kwargs: Any) -> StringDecl:
        return self.string(format="email", **kwargs)

    def url(self, **kwargs: Any) -> StringDecl:
        return self.string(format="url", **kwargs)

    def uuid(self) -> StringDecl:
        return self.string(format="uuid")

    def text(self, max_length: int = 10_000) -> StringDecl:
        """Long-form text (classified as ``textarea``)."""
        return self.string(max_length=max_length)

    # -- numbers -----------------------------------------------------------

    def number(self, *, ge: float | None = None, le: float | None = None) -> NumberDecl:
        return NumberDecl(minimum=ge, maximum=le)

    def integer(self, *, ge: int | None = None, le: int | None = None) -> NumberDecl:
        return NumberDecl(integer=True, minimum=ge, maximum=le)

    # -- others ------------------------------------------------------------

    def boolean(self) -> BooleanDecl:
        return BooleanDecl()

    def datetime(self) -> DateTimeDecl:
        return DateTimeDecl(kind="datetime")

    def date(self) -> DateTimeDecl:
        return DateTimeDecl(kind="date")

    def time(self) -> DateTimeDecl:
        return DateTimeDecl(kind="time")

    def enum(self, options: Iterable[str]) -> EnumDecl:
        opts = tuple(options)
        if not opts:
            raise ValueError("enum() needs at least one option")
        return EnumDecl(options=opts)

    def json(self) -> JsonDecl:
        return JsonDecl()

    def array(self) -> JsonDecl:
        return JsonDecl(shape="array")

    def object(self) -> JsonDecl:
        return JsonDecl(shape="object")


# Default builder. Stateless apart from its format table, which is never
# mutated; use Schema(...) or with_format() for project-specific formats.
s = Schema()


# =========================================================================
# Unwrapping
# =========================================================================


@dataclass(frozen=True)
class Unwrapped:
    """Result of walking a declaration's wrapper layers."""

    core: CoreDecl
    is_optional: bool
    is_nullable: bool
    has_default: bool
    default: Any = UNSET
    default_factory: Callable[[], Any] | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


def unwrap(decl: FieldDecl) -> Unwrapped:
    """Walk wrapper layers down to the core node.

    Metadata from every layer is merged so that outer layers override inner
    ones. A default factory is evaluated once; if it raises, the default
    stays unset (the field still counts as having a default).
    """
    is_optional = False
    is_nullable = False
    has_default = False
    default: Any = UNSET
    factory: Callable[[], Any] | None = None
    layers: list[Mapping[str, Any]] = []

    node = decl
    while True:
        layers.append(node.metadata)
        if isinstance(node, DefaultDecl):
            # the outermost default wins
            if not has_default:
                has_default = True
                factory = node.factory
                default = _evaluate_default(node)
            node = node.inner
        elif isinstance(node, OptionalDecl):
            is_optional = True
            node = node.inner
        elif isinstance(node, NullableDecl):
            is_nullable = True
            node = node.inner
        else:
            break

    if not isinstance(node, (StringDecl, NumberDecl, BooleanDecl, DateTimeDecl, EnumDecl, JsonDecl)):
        raise TypeError(f"Unsupported field declaration: {type(node).__name__}")

    merged: dict[str, Any] = {}
    for layer in reversed(layers):
        merged.update(layer)

    return Unwrapped(
        core=node,
        is_optional=is_optional,
        is_nullable=is_nullable,
        has_default=has_default,
        default=default,
        default_factory=factory,
        metadata=merged,
    )


def _evaluate_default(node: DefaultDecl) -> Any:
    if node.factory is None:
        return node.value
    try:
        return node.factory()
    except Exception as exc:  # noqa: BLE001
        logger.debug("schema.default_failed", factory=repr(node.factory), error=str(exc))
        return UNSET


# =========================================================================
# Pydantic annotations
# =========================================================================


def python_type(core: CoreDecl) -> Any:
    """Annotated Python type used to build pydantic row models."""
    if isinstance(core, StringDecl):
        return Annotated[
            str,
            StringConstraints(
                min_length=core.min_length,
                max_length=core.max_length,
                pattern=core.pattern,
            ),
        ]
    if isinstance(core, NumberDecl):
        base = int if core.integer else float
        return Annotated[base, Field(ge=core.minimum, le=core.maximum)]
    if isinstance(core, BooleanDecl):
        return bool
    if isinstance(core, DateTimeDecl):
        return {"datetime": dt.datetime, "date": dt.date, "time": dt.time}[core.kind]
    if isinstance(core, EnumDecl):
        return Literal[core.options]  # type: ignore[valid-type]
    if isinstance(core, JsonDecl):
        return {"any": Any, "array": list[Any], "object": dict[str, Any]}[core.shape]
    raise TypeError(f"Unsupported field declaration: {type(core).__name__}")


__all__ = [
    "BUILTIN_FORMATS",
    "FieldDecl",
    "StringDecl",
    "NumberDecl",
    "BooleanDecl",
    "DateTimeDecl",
    "EnumDecl",
    "JsonDecl",
    "OptionalDecl",
    "NullableDecl",
    "DefaultDecl",
    "Schema",
    "s",
    "Unwrapped",
    "unwrap",
    "python_type",
]
