"""Template model: literal segments interleaved with values.

A :class:`Template` is the atomic unit every higher layer composes. It holds
``strings`` (literal SQL text) and ``values`` (interpolated values) with the
invariant ``len(strings) == len(values) + 1``. Templates compose by merging,
never by string parsing, so a value can never leak into the SQL text.

Architecture::

    sql("SELECT * FROM {} WHERE {}", ident("posts"), where(Posts, {...}))
         │
         ▼
    strings: ("SELECT * FROM ", " WHERE ", " AND ", "")
    values:  (ident("posts"),   True,      datetime(...))
         │
         ▼  render_sql(template, "postgresql")
    'SELECT * FROM "posts" WHERE "published" = $1 AND "created_at" > $2'

Examples:
    >>> t = sql("SELECT * FROM users WHERE id = {}", 5)
    >>> t.strings
    ('SELECT * FROM users WHERE id = ', '')
    >>> t.values
    (5,)
"""

from __future__ import annotations

import string
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from tessera.errors import TemplateError

_formatter = string.Formatter()

_MIXED_NUMBERING = "cannot switch between automatic and manual field numbering in sql()"


@dataclass(frozen=True, slots=True)
class Template:
    """Immutable tuple of literal segments and interleaved values."""

    strings: tuple[str, ...]
    values: tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        # Accept lists from callers but store tuples.
        object.__setattr__(self, "strings", tuple(self.strings))
        object.__setattr__(self, "values", tuple(self.values))
        if len(self.strings) != len(self.values) + 1:
            raise TemplateError(
                f"Template needs exactly one more string than values "
                f"(got {len(self.strings)} strings, {len(self.values)} values)"
            )

    @classmethod
    def literal(cls, text: str) -> Template:
        return cls((text,))

    @classmethod
    def empty(cls) -> Template:
        return cls(("",))

    @classmethod
    def value(cls, value: Any) -> Template:
        """A template consisting of a single interpolated value."""
        return cls(("", ""), (value,))

    def __add__(self, other: Template | str) -> Template:
        if isinstance(other, str):
            other = Template.literal(other)
        if not isinstance(other, Template):
            return NotImplemented
        strings = list(self.strings)
        values = list(self.values)
        merge_template(strings, values, other)
        return Template(strings, values)

    def __radd__(self, other: str) -> Template:
        if not isinstance(other, str):
            return NotImplemented
        return Template.literal(other) + self


def merge_template(strings: list[str], values: list[Any], fragment: Template) -> None:
    """Merge ``fragment`` into the accumulator lists ``strings`` / ``values``.

    The fragment's first literal is appended to the accumulator's last
    literal, then its remaining (value, literal) pairs are appended in order.
    Only the accumulator lists are mutated.
    """
    strings[-1] += fragment.strings[0]
    for i, value in enumerate(fragment.values):
        values.append(value)
        strings.append(fragment.strings[i + 1])


def sql(fmt: str, /, *args: Any, **kwargs: Any) -> Template:
    """Build a template from a ``str.format``-style string.

    Replacement fields (``{}``, ``{0}``, ``{name}``) mark interpolation
    points; ``{{`` and ``}}`` produce literal braces. A :class:`Template`
    argument is merged in place, so its values join the parameter list at
    that position. Any other argument becomes an interpolated value.

    Examples:
        >>> sql("UPDATE {} SET {} WHERE id = {id}", ident("posts"),
        ...     set_values(Posts, {"title": "x"}), id=7)
    """
    strings = [""]
    values: list[Any] = []
    auto_index = 0
    numbering: str | None = None
    for literal, field_name, format_spec, conversion in _formatter.parse(fmt):
        strings[-1] += literal
        if field_name is None:
            continue
        if format_spec or conversion:
            raise TemplateError(
                f"Format specs and conversions are not supported in sql(): {{{field_name}}}"
            )
        if field_name == "":
            if numbering == "manual":
                raise TemplateError(_MIXED_NUMBERING)
            numbering = "automatic"
            key: int | str = auto_index
            auto_index += 1
        elif field_name.isdigit():
            if numbering == "automatic":
                raise TemplateError(_MIXED_NUMBERING)
            numbering = "manual"
            key = int(field_name)
        else:
            key = field_name
        try:
            value = args[key] if isinstance(key, int) else kwargs[key]
        except (IndexError, KeyError) as exc:
            raise TemplateError(f"No value supplied for field {{{field_name}}}") from exc

        if isinstance(value, Template):
            merge_template(strings, values, value)
        else:
            values.append(value)
            strings.append("")
    return Template(strings, values)


def join(fragments: Iterable[Template], separator: str = ", ") -> Template:
    """Concatenate ``fragments`` with a literal ``separator`` between them."""
    strings = [""]
    values: list[Any] = []
    for i, fragment in enumerate(fragments):
        if i:
            strings[-1] += separator
        merge_template(strings, values, fragment)
    return Template(strings, values)


__all__ = ["Template", "merge_template", "sql", "join"]
