"""Variable declarations, typed binding and template rendering.

Templates use ``{{ name }}`` placeholders. A required placeholder without a
usable binding is rendered as ``[[unresolved:name]]`` and reported back to the
caller instead of raising, so a broken script can still be walked end to end.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional, Union

Value = Union[str, int, float]

PLACEHOLDER_RE = re.compile(r"{{\s*(\w+)\s*}}")
UNRESOLVED_MARKER = "[[unresolved:{name}]]"
UNRESOLVED_RE = re.compile(r"\[\[unresolved:(\w+)\]\]")


class VariableType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    ENUM = "enum"


@dataclass(frozen=True)
class VariableDecl:
    """A declared script variable."""

    name: str
    type: VariableType = VariableType.STRING
    values: tuple[str, ...] = ()
    required: bool = False
    default: Optional[Value] = None


class TypeMismatch(ValueError):
    """Raised when a value does not satisfy its variable declaration."""

    def __init__(self, name: str, value: object, expected: str):
        self.name = name
        self.value = value
        self.expected = expected
        super().__init__(f"{name}: {value!r} is not a valid {expected}")


@dataclass(frozen=True)
class Rendered:
    text: str
    unresolved: tuple[str, ...] = ()


def _parse_number(name: str, raw: Value) -> Union[int, float]:
    if isinstance(raw, bool):
        raise TypeMismatch(name, raw, "number")
    if isinstance(raw, (int, float)):
        number: Union[int, float] = raw
    else:
        text = str(raw).strip()
        try:
            number = int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError:
                raise TypeMismatch(name, raw, "number") from None
    if isinstance(number, float) and not math.isfinite(number):
        raise TypeMismatch(name, raw, "finite number")
    return number


def bind(name: str, raw_value: Value, decl: VariableDecl) -> Value:
    """Coerce ``raw_value`` to the type declared by ``decl``.

    Enum values must match one of the declared values exactly (case-sensitive),
    numbers must be finite, strings accept any text.
    """

    if decl.type is VariableType.NUMBER:
        return _parse_number(name, raw_value)
    if decl.type is VariableType.ENUM:
        text = str(raw_value).strip()
        if text not in decl.values:
            raise TypeMismatch(name, raw_value, f"one of {list(decl.values)}")
        return text
    if isinstance(raw_value, bool):
        raise TypeMismatch(name, raw_value, "string")
    return str(raw_value).strip()


def placeholders(template: str) -> list[str]:
    """Return the placeholder names in ``template`` in first-seen order."""

    seen: dict[str, None] = {}
    for match in PLACEHOLDER_RE.finditer(template or ""):
        seen.setdefault(match.group(1), None)
    return list(seen)


def render(
    template: str,
    bindings: Mapping[str, Value],
    variables: Optional[Mapping[str, VariableDecl]] = None,
) -> Rendered:
    """Substitute ``bindings`` into ``template``.

    When ``variables`` is given, bound values are re-checked against their
    declarations and a value that no longer fits is treated as unbound. An
    unbound optional variable without a default renders as empty text; only
    required or undeclared names leave an unresolved marker.
    """

    unresolved: dict[str, None] = {}

    def substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        decl = variables.get(name) if variables is not None else None
        if name in bindings:
            value = bindings[name]
            if decl is None:
                return str(value)
            try:
                return str(bind(name, value, decl))
            except TypeMismatch:
                pass
        if decl is not None and not decl.required and decl.default is None:
            return ""
        unresolved.setdefault(name, None)
        return UNRESOLVED_MARKER.format(name=name)

    text = PLACEHOLDER_RE.sub(substitute, template or "")
    return Rendered(text=text, unresolved=tuple(unresolved))


def unresolved_markers(text: str) -> list[str]:
    return UNRESOLVED_RE.findall(text)


__all__ = [
    "PLACEHOLDER_RE",
    "Rendered",
    "TypeMismatch",
    "UNRESOLVED_MARKER",
    "Value",
    "VariableDecl",
    "VariableType",
    "bind",
    "placeholders",
    "render",
    "unresolved_markers",
]
