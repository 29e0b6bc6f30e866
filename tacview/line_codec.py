"""Parse and render single ACMI text lines.

One logical line maps to one record:

    #12.5                      TimeFrame
    -3f2                       ObjectRemoval
    // free text               Comment
    0,Event=Bookmark|Takeoff   Event
    0,Title=Training flight    GlobalUpdate
    3f2,T=41|42|3000,Mach=0.8  ObjectUpdate

Object IDs are hexadecimal. Text values escape commas and line breaks with a
backslash; a line ending in a backslash continues on the next physical line.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from tacview.errors import ParseError
from tacview.properties import (
    COORDINATE_LAYOUTS,
    DEFAULT_REGISTRY,
    Coordinates,
    PropertyKind,
    PropertyRegistry,
)

# Decimal with optional sign/exponent ("-12", "0.5", ".5", "1e-3")
NUM_RE = r"[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?"
INT_RE = r"[-+]?\d+"
HEX_RE = r"[0-9a-fA-F]+"

_NUMBER = re.compile(NUM_RE)
_INT = re.compile(INT_RE)
_HEX = re.compile(HEX_RE)

KNOWN_EVENT_KINDS = (
    "Message",
    "Bookmark",
    "Debug",
    "LeftArea",
    "Destroyed",
    "TakenOff",
    "Landed",
    "Timeout",
)

GLOBAL_OBJECT_ID = 0
FILE_TYPE_LINE = "FileType=text/acmi/tacview"


# ---------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------

@dataclass
class TimeFrame:
    """``#seconds`` marker starting a new frame."""

    time: float


@dataclass
class ObjectRemoval:
    """``-ID``: the object left the battlefield."""

    object_id: int


@dataclass
class Comment:
    """``//...`` line, ignored by readers."""

    text: str


@dataclass
class ObjectUpdate:
    """Property changes for one object."""

    object_id: int
    properties: dict[str, Any] = field(default_factory=dict)


@dataclass
class GlobalUpdate:
    """Property changes for the global object (ID 0)."""

    properties: dict[str, Any] = field(default_factory=dict)


@dataclass
class Event:
    """``0,Event=Kind|param|...|text``.

    Kinds outside ``KNOWN_EVENT_KINDS`` are kept as-is.
    """

    kind: str
    params: list[str] = field(default_factory=list)
    text: Optional[str] = None


Record = Union[TimeFrame, ObjectRemoval, Comment, ObjectUpdate, GlobalUpdate, Event]


# ---------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------

def format_number(value: float) -> str:
    """Render a float in its shortest form ("1" rather than "1.0").

    Raises:
        ValueError: If the value is NaN or infinite
    """
    value = float(value)
    if not math.isfinite(value):
        raise ValueError(f"Cannot encode non-finite number: {value!r}")
    text = repr(value)
    if text.endswith(".0"):
        text = text[:-2]
    return text


def escape_text(value: str) -> str:
    """Escape commas, line breaks and significant backslashes."""
    out = []
    for i, ch in enumerate(value):
        if ch == ",":
            out.append("\\,")
        elif ch == "\n":
            out.append("\\\n")
        elif ch == "\\":
            nxt = value[i + 1] if i + 1 < len(value) else ""
            out.append("\\\\" if nxt in ("", ",", "\\", "\n") else "\\")
        else:
            out.append(ch)
    return "".join(out)


def _split_fields(text: str, line_number: Optional[int]) -> list[str]:
    """Split on unescaped commas and resolve escapes in each field."""
    fields: list[str] = []
    current: list[str] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            if i + 1 >= len(text):
                raise ParseError("unterminated escape", line_number)
            nxt = text[i + 1]
            if nxt in (",", "\\", "\n"):
                current.append(nxt)
                i += 2
                continue
            current.append(ch)
        elif ch == ",":
            fields.append("".join(current))
            current = []
        else:
            current.append(ch)
        i += 1
    fields.append("".join(current))
    return fields


def parse_number(literal: str, line_number: Optional[int] = None) -> float:
    if not _NUMBER.fullmatch(literal):
        raise ParseError(f"malformed numeric literal {literal!r}", line_number)
    result = float(literal)
    if not math.isfinite(result):
        raise ParseError(f"numeric literal out of range {literal!r}", line_number)
    return result


def parse_object_id(literal: str, line_number: Optional[int] = None) -> int:
    if not _HEX.fullmatch(literal):
        raise ParseError(f"malformed object id {literal!r}", line_number)
    return int(literal, 16)


def parse_coordinates(literal: str, line_number: Optional[int] = None) -> Coordinates:
    parts = literal.split("|")
    layout = COORDINATE_LAYOUTS.get(len(parts))
    if layout is None:
        raise ParseError(
            f"coordinates need 3, 5, 6 or 9 fields, got {len(parts)}", line_number
        )
    values = {
        name: parse_number(part, line_number)
        for name, part in zip(layout, parts)
        if part
    }
    return Coordinates(arity=len(parts), **values)


def parse_value(kind: PropertyKind, literal: str, line_number: Optional[int] = None):
    """Decode an unescaped literal as the given kind.

    Raises:
        ParseError: If the literal is not valid for the kind
    """
    if kind is PropertyKind.NUMBER:
        return parse_number(literal, line_number)
    if kind is PropertyKind.TEXT:
        return literal
    if kind is PropertyKind.BOOLEAN:
        if not _INT.fullmatch(literal):
            raise ParseError(f"malformed boolean literal {literal!r}", line_number)
        return int(literal) != 0
    if kind is PropertyKind.REFERENCE:
        return parse_object_id(literal, line_number)
    if kind is PropertyKind.COORDINATES:
        return parse_coordinates(literal, line_number)
    raise ValueError(f"Unknown property kind: {kind!r}")


def render_value(value) -> str:
    """Encode a property value as an escaped ACMI literal."""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"Object reference must be non-negative: {value}")
        return format(value, "x")
    if isinstance(value, float):
        return format_number(value)
    if isinstance(value, str):
        return escape_text(value)
    if isinstance(value, Coordinates):
        return "|".join(
            "" if getattr(value, name) is None else format_number(getattr(value, name))
            for name in value.layout()
        )
    raise TypeError(f"Unsupported property value type: {type(value).__name__}")


def _parse_object_property(
    name: str, literal: str, registry: PropertyRegistry, line_number: Optional[int]
):
    kind = registry.object_kind(name) or PropertyKind.TEXT
    if kind in (PropertyKind.TEXT, PropertyKind.COORDINATES):
        return parse_value(kind, literal, line_number)
    try:
        return parse_value(kind, literal, line_number)
    except ParseError:
        # Left as text; the tracker reports it as a kind conflict.
        return literal


def _parse_event(value: str, line_number: Optional[int]) -> Event:
    parts = value.split("|")
    if not parts[0]:
        raise ParseError("event without a kind", line_number)
    if len(parts) == 1:
        return Event(kind=parts[0])
    return Event(kind=parts[0], params=parts[1:-1], text=parts[-1] or None)


def _split_pairs(rest: str, line_number: Optional[int]) -> list[tuple[str, str]]:
    pairs = []
    for segment in _split_fields(rest, line_number):
        if not segment:
            continue
        if "=" not in segment:
            raise ParseError(f"could not find '=' in {segment!r}", line_number)
        key, value = segment.split("=", 1)
        if not key:
            raise ParseError("empty property name", line_number)
        pairs.append((key, value))
    return pairs


# ---------------------------------------------------------------------
# Lines
# ---------------------------------------------------------------------

def parse_line(
    text: str,
    line_number: Optional[int] = None,
    registry: PropertyRegistry = DEFAULT_REGISTRY,
) -> Record:
    """Parse one logical ACMI line.

    Args:
        text: Line without its terminator (may contain escaped line breaks)
        line_number: Physical line number, used in error messages
        registry: Property kinds used to decode values

    Returns:
        The decoded record

    Raises:
        ParseError: If the line is malformed
    """
    if not text:
        raise ParseError("empty line", line_number)

    if text.startswith("#"):
        return TimeFrame(parse_number(text[1:], line_number))
    if text.startswith("-"):
        return ObjectRemoval(parse_object_id(text[1:], line_number))
    if text.startswith("//"):
        return Comment(text[2:])
    if "," not in text:
        raise ParseError(f"unknown record {text[:20]!r}", line_number)

    id_text, rest = text.split(",", 1)
    object_id = parse_object_id(id_text, line_number)
    pairs = _split_pairs(rest, line_number)

    if object_id != GLOBAL_OBJECT_ID:
        return ObjectUpdate(
            object_id,
            {k: _parse_object_property(k, v, registry, line_number) for k, v in pairs},
        )

    if pairs and pairs[0][0] == "Event":
        if len(pairs) > 1:
            raise ParseError("unexpected fields after Event", line_number)
        return _parse_event(pairs[0][1], line_number)

    properties = {}
    for key, value in pairs:
        kind = registry.global_kind(key) or PropertyKind.TEXT
        properties[key] = parse_value(kind, value, line_number)
    return GlobalUpdate(properties)


def _render_properties(properties: dict[str, Any]) -> str:
    return "".join(f",{key}={render_value(value)}" for key, value in properties.items())


def render_record(record: Record) -> str:
    """Render a record as one logical ACMI line (no terminator)."""
    if isinstance(record, TimeFrame):
        return "#" + format_number(record.time)
    if isinstance(record, ObjectRemoval):
        return f"-{record.object_id:x}"
    if isinstance(record, Comment):
        return "//" + record.text
    if isinstance(record, ObjectUpdate):
        if not record.properties:
            return f"{record.object_id:x},"
        return f"{record.object_id:x}" + _render_properties(record.properties)
    if isinstance(record, GlobalUpdate):
        if not record.properties:
            return "0,"
        return "0" + _render_properties(record.properties)
    if isinstance(record, Event):
        parts = [record.kind, *record.params]
        if record.params or record.text is not None:
            parts.append(record.text or "")
        # "|" has no escape inside an event
        if any("|" in part for part in parts):
            raise ValueError(f"Event fields cannot contain '|': {parts!r}")
        return "0,Event=" + escape_text("|".join(parts))
    raise TypeError(f"Unsupported record type: {type(record).__name__}")
