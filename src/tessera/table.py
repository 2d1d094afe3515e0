"""Table definitions with wrapper-based field extensions.

A table is a name plus a mapping of field declarations. Database concerns
(primary key, unique, index, foreign key) are attached with wrapper
functions rather than by extending the declaration nodes, and every piece of
metadata is extracted once, when :func:`table` is called.

Examples:
    >>> from tessera import s, table, primary, unique, references
    >>> Users = table("users", {
    ...     "id": primary(s.uuid()),
    ...     "email": unique(s.email()),
    ...     "name": s.string(max_length=100),
    ... })
    >>> Posts = table("posts", {
    ...     "id": primary(s.uuid()),
    ...     "authorId": references(s.uuid(), Users, alias="author"),
    ...     "title": s.string(),
    ... })
    >>> Posts.references()[0].referenced_field
    'id'
    >>> Posts.column("authorId")
    'author_id'
"""

from __future__ import annotations

import copy
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, create_model

from tessera.errors import TableDefinitionError, UsageError
from tessera.fragments import ColumnCasing, column_name
from tessera.logging import get_logger
from tessera.markers import UNSET, Builtin
from tessera.schema import (
    BooleanDecl,
    DateTimeDecl,
    EnumDecl,
    FieldDecl,
    JsonDecl,
    NumberDecl,
    StringDecl,
    Unwrapped,
    python_type,
    unwrap,
)

logger = get_logger(__name__)

OnDelete = Literal["cascade", "set null", "restrict"]

# Strings longer than this are long-form text.
TEXTAREA_THRESHOLD = 500

# Reserved for qualified names ("table.field").
PATH_SEPARATOR = "."


# =========================================================================
# Wrappers
# =========================================================================


@dataclass(frozen=True)
class ReferenceSpec:
    table: Table
    alias: str
    field: str | None = None
    on_delete: OnDelete | None = None


@dataclass(frozen=True)
class DbMeta:
    primary_key: bool = False
    unique: bool = False
    indexed: bool = False
    reference: ReferenceSpec | None = None


@dataclass(frozen=True)
class Column:
    """A field declaration plus database metadata."""

    decl: FieldDecl
    db: DbMeta = field(default_factory=DbMeta)


def _wrap(decl: FieldDecl | Column, **changes: Any) -> Column:
    if isinstance(decl, Column):
        return Column(decl.decl, replace(decl.db, **changes))
    return Column(decl, DbMeta(**changes))


def primary(decl: FieldDecl | Column) -> Column:
    """Mark a field as the primary key."""
    return _wrap(decl, primary_key=True)


def unique(decl: FieldDecl | Column) -> Column:
    """Mark a field as unique."""
    return _wrap(decl, unique=True)


def index(decl: FieldDecl | Column) -> Column:
    """Mark a field for indexing."""
    return _wrap(decl, indexed=True)


def references(
    decl: FieldDecl | Column,
    table: Table,
    *,
    alias: str,
    field: str | None = None,
    on_delete: OnDelete | None = None,
) -> Column:
    """Declare a foreign key to ``table``.

    ``field`` defaults to the target's primary key (then ``"id"``).
    """
    if not is_table(table):
        raise TableDefinitionError(f"references() target must be a table, got {type(table).__name__}")
    if on_delete not in (None, "cascade", "set null", "restrict"):
        raise TableDefinitionError(f"Invalid on_delete '{on_delete}'", table=table.name)
    return _wrap(decl, reference=ReferenceSpec(table=table, alias=alias, field=field, on_delete=on_delete))


# =========================================================================
# Field metadata
# =========================================================================


class FieldType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    EMAIL = "email"
    URL = "url"
    TEL = "tel"
    PASSWORD = "password"
    NUMBER = "number"
    INTEGER = "integer"
    CHECKBOX = "checkbox"
    SELECT = "select"
    DATE = "date"
    DATETIME = "datetime"
    TIME = "time"
    JSON = "json"
    HIDDEN = "hidden"


class ReferenceMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    table: str
    field: str
    alias: str


class FieldMeta(BaseModel):
    """Field metadata for forms and admin screens.

    User display metadata from ``.meta(...)`` (label, help_text, widget, ...)
    is exposed as extra attributes.
    """

    model_config = ConfigDict(frozen=True, extra="allow", use_enum_values=True)

    name: str
    type: FieldType
    required: bool
    primary_key: bool | None = None
    unique: bool | None = None
    indexed: bool | None = None
    default: Any = None
    min_length: int | None = None
    max_length: int | None = None
    min: float | None = None
    max: float | None = None
    options: tuple[str, ...] | None = None
    reference: ReferenceMeta | None = None


@dataclass(frozen=True)
class Reference:
    """A foreign key from ``field_name`` to ``table.referenced_field``."""

    field_name: str
    table: Table
    referenced_field: str
    alias: str
    on_delete: OnDelete | None = None


def classify(core: Any) -> FieldType:
    """Map a core declaration to its :class:`FieldType`."""
    if isinstance(core, StringDecl):
        # long strings are textarea whatever their format
        if core.max_length is not None and core.max_length > TEXTAREA_THRESHOLD:
            return FieldType.TEXTAREA
        if core.format == "email":
            return FieldType.EMAIL
        if core.format == "url":
            return FieldType.URL
        return FieldType.TEXT
    if isinstance(core, NumberDecl):
        return FieldType.INTEGER if core.integer else FieldType.NUMBER
    if isinstance(core, BooleanDecl):
        return FieldType.CHECKBOX
    if isinstance(core, DateTimeDecl):
        return FieldType(core.kind)
    if isinstance(core, EnumDecl):
        return FieldType.SELECT
    if isinstance(core, JsonDecl):
        return FieldType.JSON
    return FieldType.TEXT


def _field_meta(name: str, info: Unwrapped, db: DbMeta) -> FieldMeta:
    core = info.core
    derived: dict[str, Any] = {
        "name": name,
        "type": classify(core),
        "required": not (info.is_optional or info.is_nullable or info.has_default),
    }
    if db.primary_key:
        derived["primary_key"] = True
    if db.unique:
        derived["unique"] = True
    if db.indexed:
        derived["indexed"] = True
    if db.reference is not None:
        ref = db.reference
        derived["reference"] = ReferenceMeta(
            table=ref.table.name,
            field=ref.field or ref.table.primary_key() or "id",
            alias=ref.alias,
        )
    if info.default is not UNSET:
        derived["default"] = info.default
    if isinstance(core, StringDecl):
        if core.max_length is not None:
            derived["max_length"] = core.max_length
        if core.min_length is not None:
            derived["min_length"] = core.min_length
    elif isinstance(core, NumberDecl):
        if core.minimum is not None:
            derived["min"] = core.minimum
        if core.maximum is not None:
            derived["max"] = core.maximum
    elif isinstance(core, EnumDecl):
        derived["options"] = core.options

    # derived keys win over user metadata of the same name
    extras = {k: v for k, v in info.metadata.items() if k not in FieldMeta.model_fields}
    return FieldMeta(**derived, **extras)


# =========================================================================
# Table
# =========================================================================


@dataclass(frozen=True)
class _TableMeta:
    primary: str | None
    unique: tuple[str, ...]
    indexed: tuple[str, ...]
    references: tuple[Reference, ...]
    db: Mapping[str, DbMeta]
    unwrapped: Mapping[str, Unwrapped]
    fields: Mapping[str, FieldMeta]


class Table:
    """A table definition. Construct with :func:`table`."""

    __slots__ = ("_name", "_decls", "_indexes", "_casing", "_meta", "_model")

    def __init__(
        self,
        name: str,
        decls: Mapping[str, FieldDecl],
        meta: _TableMeta,
        indexes: tuple[tuple[str, ...], ...],
        casing: ColumnCasing,
    ) -> None:
        self._name = name
        self._decls = MappingProxyType(dict(decls))
        self._meta = meta
        self._indexes = indexes
        self._casing = casing
        self._model: type[BaseModel] | None = None

    def __repr__(self) -> str:
        return f"Table({self._name!r}, fields={list(self._decls)!r})"

    @property
    def name(self) -> str:
        return self._name

    @property
    def casing(self) -> ColumnCasing:
        return self._casing

    @property
    def indexes(self) -> list[list[str]]:
        """Compound indexes (copies)."""
        return [list(idx) for idx in self._indexes]

    @property
    def declarations(self) -> Mapping[str, FieldDecl]:
        return self._decls

    def fields(self) -> dict[str, FieldMeta]:
        """Field metadata for forms/admin, keyed by field name."""
        return dict(self._meta.fields)

    def field_names(self) -> list[str]:
        return list(self._decls)

    def unwrapped(self, field_name: str) -> Unwrapped:
        self._require_field(field_name)
        return self._meta.unwrapped[field_name]

    def primary_key(self) -> str | None:
        return self._meta.primary

    def unique_fields(self) -> list[str]:
        return list(self._meta.unique)

    def indexed_fields(self) -> list[str]:
        return list(self._meta.indexed)

    def references(self) -> list[Reference]:
        return list(self._meta.references)

    def reference(self, field_name: str) -> Reference:
        """The reference registered on ``field_name``.

        Raises:
            UsageError: If ``field_name`` is not a foreign key of this table.
        """
        for ref in self._meta.references:
            if ref.field_name == field_name:
                return ref
        raise UsageError(
            f'Field "{field_name}" is not a foreign key reference in table "{self._name}"'
        ).with_context(table=self._name, field=field_name)

    def column(self, field_name: str) -> str:
        """Column name for ``field_name`` under this table's casing."""
        self._require_field(field_name)
        return column_name(field_name, self._casing)

    def columns(self) -> dict[str, str]:
        """Field name to column name, in declaration order."""
        return {f: column_name(f, self._casing) for f in self._decls}

    def pick(self, *field_names: str) -> Table:
        """Derive an independent table restricted to ``field_names``.

        Metadata, references and compound indexes are filtered: a reference
        survives if its field does, an index only if all of its fields do.
        """
        for f in field_names:
            self._require_field(f)
        keep = set(field_names)
        ordered = [f for f in self._decls if f in keep]
        meta = _TableMeta(
            primary=self._meta.primary if self._meta.primary in keep else None,
            unique=tuple(f for f in self._meta.unique if f in keep),
            indexed=tuple(f for f in self._meta.indexed if f in keep),
            references=tuple(r for r in self._meta.references if r.field_name in keep),
            db=MappingProxyType({f: self._meta.db[f] for f in ordered}),
            unwrapped=MappingProxyType({f: self._meta.unwrapped[f] for f in ordered}),
            fields=MappingProxyType({f: copy.deepcopy(self._meta.fields[f]) for f in ordered}),
        )
        indexes = tuple(idx for idx in self._indexes if all(f in keep for f in idx))
        return Table(
            self._name,
            {f: self._decls[f] for f in ordered},
            meta,
            indexes,
            self._casing,
        )

    # -- validation --------------------------------------------------------

    @property
    def model(self) -> type[BaseModel]:
        """Pydantic model generated from the field declarations."""
        if self._model is None:
            self._model = _build_model(self)
        return self._model

    def validate(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Validate ``data`` against the declarations; returns clean values.

        Raises:
            pydantic.ValidationError: If the data does not conform.
        """
        return self.model.model_validate(dict(data)).model_dump()

    def _require_field(self, field_name: str) -> None:
        if field_name not in self._decls:
            raise UsageError(
                f'Unknown field "{field_name}" in table "{self._name}"'
            ).with_context(table=self._name, field=field_name)


def _build_model(tbl: Table) -> type[BaseModel]:
    definitions: dict[str, Any] = {}
    for name in tbl.field_names():
        info = tbl.unwrapped(name)
        annotation = python_type(info.core)
        if info.is_nullable or info.is_optional:
            annotation = annotation | None
        if info.has_default and info.default_factory is not None:
            definitions[name] = (annotation, Field(default_factory=info.default_factory))
        elif info.has_default and not isinstance(info.default, Builtin):
            definitions[name] = (annotation, info.default)
        elif info.has_default or info.is_optional:
            # database-side defaults are filled in by the database
            definitions[name] = (annotation | None, None)
        else:
            definitions[name] = (annotation, ...)
    model_name = "".join(part.title() for part in re.split(r"[^0-9A-Za-z]+", tbl.name) if part) or "Row"
    return create_model(model_name, __config__=ConfigDict(extra="ignore"), **definitions)


def is_table(value: Any) -> bool:
    return isinstance(value, Table)


def table(
    name: str,
    shape: Mapping[str, FieldDecl | Column],
    *,
    indexes: Iterable[Sequence[str]] = (),
    casing: ColumnCasing = "snake_case",
) -> Table:
    """Define a database table.

    Raises:
        TableDefinitionError: On a table or field name containing ``"."``,
            an unknown compound-index field, or an invalid declaration.
    """
    if not name or PATH_SEPARATOR in name:
        raise TableDefinitionError(
            f'Invalid table name "{name}": table names cannot contain "{PATH_SEPARATOR}" '
            "as it is reserved for qualified names",
            table=name,
        )
    if casing not in ("snake_case", "none"):
        raise TableDefinitionError(f"Invalid casing '{casing}'", table=name)

    decls: dict[str, FieldDecl] = {}
    db_meta: dict[str, DbMeta] = {}
    unwrapped: dict[str, Unwrapped] = {}
    primary_key: str | None = None
    unique_fields: list[str] = []
    indexed_fields: list[str] = []
    refs: list[Reference] = []

    for key, value in shape.items():
        if PATH_SEPARATOR in key:
            raise TableDefinitionError(
                f'Invalid field name "{key}" in table "{name}": field names cannot contain '
                f'"{PATH_SEPARATOR}" as it is reserved for qualified names',
                table=name,
                field=key,
            )
        if isinstance(value, Column):
            decl, db = value.decl, value.db
        elif isinstance(value, FieldDecl):
            decl, db = value, DbMeta()
        else:
            raise TableDefinitionError(
                f'Field "{key}" in table "{name}" is not a field declaration',
                table=name,
                field=key,
            )
        try:
            unwrapped[key] = unwrap(decl)
        except TypeError as exc:
            raise TableDefinitionError(str(exc), table=name, field=key, cause=exc) from exc
        decls[key] = decl
        db_meta[key] = db

        if db.primary_key:
            if primary_key is not None:
                logger.warning(
                    "table.primary_key_overridden",
                    table=name,
                    previous=primary_key,
                    field=key,
                )
            primary_key = key
        if db.unique:
            unique_fields.append(key)
        if db.indexed:
            indexed_fields.append(key)
        if db.reference is not None:
            ref = db.reference
            refs.append(
                Reference(
                    field_name=key,
                    table=ref.table,
                    referenced_field=ref.field or ref.table.primary_key() or "id",
                    alias=ref.alias,
                    on_delete=ref.on_delete,
                )
            )

    compound = tuple(tuple(idx) for idx in indexes)
    for idx in compound:
        missing = [f for f in idx if f not in decls]
        if not idx or missing:
            raise TableDefinitionError(
                f'Invalid index {list(idx)} in table "{name}": unknown fields {missing}',
                table=name,
            )

    fields = {key: _field_meta(key, unwrapped[key], db_meta[key]) for key in decls}
    meta = _TableMeta(
        primary=primary_key,
        unique=tuple(unique_fields),
        indexed=tuple(indexed_fields),
        references=tuple(refs),
        db=MappingProxyType(db_meta),
        unwrapped=MappingProxyType(unwrapped),
        fields=MappingProxyType(fields),
    )
    return Table(name, decls, meta, compound, casing)


__all__ = [
    "TEXTAREA_THRESHOLD",
    "Column",
    "FieldType",
    "FieldMeta",
    "ReferenceMeta",
    "Reference",
    "Table",
    "classify",
    "primary",
    "unique",
    "index",
    "references",
    "is_table",
    "table",
]
