"""Exception types raised while reading or writing ACMI recordings.

Per-line problems (``ParseError``, ``KindMismatch``, ``ReuseOfRetiredId``) are
recoverable: a best-effort reader records them on the frame and carries on.
``HeaderError`` and ``ContainerError`` are raised when a stream is opened and
end the session. I/O failures are left as the built-in ``OSError``.
"""
from __future__ import annotations

from typing import Optional


class AcmiError(Exception):
    """Base class for every error raised by this package."""


class ParseError(AcmiError):
    """A line could not be decoded."""

    def __init__(self, reason: str, line_number: Optional[int] = None) -> None:
        self.reason = reason
        self.line_number = line_number
        if line_number is None:
            super().__init__(reason)
        else:
            super().__init__(f"line {line_number}: {reason}")

    def at_line(self, line_number: int) -> "ParseError":
        """Return a copy of this error located at ``line_number``."""
        return type(self)(self.reason, line_number)


class HeaderError(ParseError):
    """The stream does not start with a valid ACMI 2.x header."""


class KindMismatch(AcmiError):
    """A property value does not match the kind established for it."""

    def __init__(self, object_id: int, name: str, expected, actual) -> None:
        self.object_id = object_id
        self.name = name
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"object {object_id:x}: property {name} is {expected.value}, "
            f"got {actual.value}"
        )


class ReuseOfRetiredId(AcmiError):
    """An object ID was referenced again after its removal."""

    def __init__(self, object_id: int) -> None:
        self.object_id = object_id
        super().__init__(f"object {object_id:x} was already removed")


class ObjectNotFound(AcmiError, KeyError):
    """No live object exists with the requested ID."""

    def __init__(self, object_id: int) -> None:
        self.object_id = object_id
        super().__init__(object_id)

    def __str__(self) -> str:
        return f"no live object {self.object_id:x}"


class ContainerError(AcmiError):
    """The compressed container could not be opened."""


class StreamClosed(AcmiError):
    """The reader or writer has been closed."""
