"""Stream ACMI recordings frame by frame.

Typical use::

    with open_reader("flight.zip.acmi") as reader:
        print(reader.session.metadata.get("Title"))
        for frame in reader:
            for update in frame.updates:
                ...

Only the frame being assembled is held in memory, so arbitrarily long
recordings can be read. Per-line problems are logged and attached to
``Frame.errors`` unless the config asks for strict mode.
"""
from __future__ import annotations

import logging
import re
from contextlib import ExitStack
from enum import Enum
from typing import Callable, Iterable, Iterator, Optional

from tacview.compression import PathOrFile, open_text_source, source_name
from tacview.config import AcmiConfig
from tacview.errors import (
    AcmiError,
    HeaderError,
    KindMismatch,
    ParseError,
    ReuseOfRetiredId,
    StreamClosed,
)
from tacview.line_codec import (
    FILE_TYPE_LINE,
    Comment,
    Event,
    GlobalUpdate,
    ObjectRemoval,
    ObjectUpdate,
    Record,
    TimeFrame,
    parse_line,
)
from tacview.session import Frame, Session
from tacview.tracker import ObjectTracker

LOGGER = logging.getLogger(__name__)

FILE_VERSION_RE = re.compile(r"FileVersion=(2\.\d+)")


class ReaderState(Enum):
    HEADER = "header"
    STREAMING = "streaming"
    CLOSED = "closed"


def _trailing_backslashes(line: str) -> int:
    return len(line) - len(line.rstrip("\\"))


def iter_logical_lines(lines: Iterable[str]) -> Iterator[tuple[int, str]]:
    """Yield ``(line_number, text)`` for each logical line.

    A physical line ending in an unescaped backslash continues on the next
    one; the backslash and line break are kept for the codec to unescape.
    ``\\r\\n`` terminators and a leading BOM are accepted.
    """
    parts: list[str] = []
    start = 0
    for number, raw in enumerate(lines, 1):
        line = raw[:-1] if raw.endswith("\n") else raw
        if line.endswith("\r"):
            line = line[:-1]
        if number == 1:
            line = line.lstrip("\ufeff")
        if not parts:
            start = number
        if _trailing_backslashes(line) % 2 == 1:
            parts.append(line + "\n")
            continue
        parts.append(line)
        yield start, "".join(parts)
        parts = []
    if parts:
        # Continuation at end of input: the dangling backslash is reported
        # by the codec as an unterminated escape.
        yield start, "".join(parts)[:-1]


class AcmiReader:
    """Pull-based iterator over the frames of one recording.

    The header is read on construction, so a stream that is not ACMI fails
    immediately with ``HeaderError``. Iteration yields ``Frame`` objects in
    non-decreasing time order; the session tracker reflects the state as of
    the frame most recently returned.
    """

    def __init__(
        self,
        stream: Iterable[str],
        config: Optional[AcmiConfig] = None,
        *,
        name: str = "<stream>",
        on_close: Optional[Callable[[], None]] = None,
    ) -> None:
        self.config = config or AcmiConfig()
        self.name = name
        self.state = ReaderState.HEADER
        self.frames_read = 0
        self._on_close = on_close
        self._lines = iter_logical_lines(stream)
        self._pushed_back: Optional[tuple[int, str]] = None
        self._next_frame: Optional[Frame] = None
        self._carried_errors: list[AcmiError] = []
        self._exhausted = False
        try:
            self.session = self._read_header()
        except Exception:
            self.close()
            raise
        self.state = ReaderState.STREAMING

    # -----------------------------------------------------------------
    # Context manager / iterator protocol
    # -----------------------------------------------------------------

    def __enter__(self) -> "AcmiReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __iter__(self) -> "AcmiReader":
        return self

    def __next__(self) -> Frame:
        if self.state is ReaderState.CLOSED:
            if self._exhausted:
                raise StopIteration
            raise StreamClosed(f"{self.name} is closed")

        try:
            frame = self._read_frame()
        except Exception:
            self.close()
            raise

        if frame is None:
            self._exhausted = True
            self.close()
            raise StopIteration
        self.frames_read += 1
        return frame

    def close(self) -> None:
        """Release the byte source; further reads raise ``StreamClosed``."""
        if self.state is ReaderState.CLOSED:
            return
        self.state = ReaderState.CLOSED
        callback, self._on_close = self._on_close, None
        if callback is not None:
            callback()

    # -----------------------------------------------------------------
    # Parsing
    # -----------------------------------------------------------------

    def _next_line(self) -> Optional[tuple[int, str]]:
        if self._pushed_back is not None:
            item, self._pushed_back = self._pushed_back, None
            return item
        for number, text in self._lines:
            if text.strip():
                return number, text
        return None

    def _read_header(self) -> Session:
        registry = self.config.registry()
        tracker = ObjectTracker(registry, self.config.kind_policy)
        version: Optional[str] = None

        first = self._next_line()
        if first is not None and first[1].startswith("FileType="):
            if first[1] != FILE_TYPE_LINE:
                raise HeaderError(f"input is not an ACMI file ({first[1]!r})", first[0])
            second = self._next_line()
            match = FILE_VERSION_RE.fullmatch(second[1]) if second is not None else None
            if match is None:
                raise HeaderError(
                    "invalid version, expected ACMI v2.x", second[0] if second else first[0] + 1
                )
            version = match.group(1)
        elif self.config.require_header:
            raise HeaderError("input is not an ACMI file", first[0] if first else 1)
        else:
            self._pushed_back = first

        metadata = {}
        while True:
            item = self._next_line()
            if item is None:
                break
            number, text = item
            if text.startswith("//"):
                continue
            if not text.startswith("0,"):
                self._pushed_back = item
                break
            try:
                record = parse_line(text, number, registry)
            except ParseError as exc:
                if self.config.strict:
                    raise
                LOGGER.warning("%s: skipping header line %d: %s", self.name, number, exc)
                self._carried_errors.append(exc)
                continue
            if isinstance(record, Event):
                self._pushed_back = item
                break
            metadata.update(record.properties)

        LOGGER.debug("%s: ACMI %s, %d header properties", self.name, version, len(metadata))
        return Session(metadata, version, registry, tracker)

    def _recover(self, frame: Frame, error: AcmiError, line_number: int) -> None:
        if isinstance(error, ParseError) and error.line_number is None:
            error = error.at_line(line_number)
        if self.config.strict:
            raise error
        LOGGER.warning("%s: skipping line %d: %s", self.name, line_number, error)
        frame.errors.append(error)

    def _apply(self, frame: Frame, record: Record, line_number: int) -> None:
        session = self.session
        try:
            if isinstance(record, ObjectUpdate):
                diff = session.tracker.apply(record.object_id, record.properties)
                frame.updates.append(ObjectUpdate(record.object_id, diff.applied))
                frame.errors.extend(diff.errors)
            elif isinstance(record, ObjectRemoval):
                session.tracker.remove(record.object_id)
                frame.removals.append(record.object_id)
            elif isinstance(record, GlobalUpdate):
                session.apply_global(record)
                frame.global_updates.append(record)
            elif isinstance(record, Event):
                frame.events.append(record)
            elif isinstance(record, Comment):
                LOGGER.debug("%s: comment on line %d: %s", self.name, line_number, record.text)
        except (KindMismatch, ReuseOfRetiredId) as exc:
            self._recover(frame, exc, line_number)

    def _start_frame(self, time: float) -> Frame:
        frame = Frame(time)
        if self._carried_errors:
            frame.errors.extend(self._carried_errors)
            self._carried_errors = []
        return frame

    def _read_frame(self) -> Optional[Frame]:
        frame, self._next_frame = self._next_frame, None
        while True:
            item = self._next_line()
            if item is None:
                return frame
            number, text = item

            try:
                record = parse_line(text, number, self.session.registry)
            except ParseError as exc:
                if frame is None:
                    frame = self._start_frame(0.0)
                self._recover(frame, exc, number)
                continue

            if isinstance(record, TimeFrame):
                if frame is None:
                    frame = self._start_frame(record.time)
                elif record.time < frame.time:
                    error = ParseError(
                        f"timestamp {record.time} precedes current frame {frame.time}", number
                    )
                    self._recover(frame, error, number)
                elif record.time > frame.time:
                    self._next_frame = self._start_frame(record.time)
                    return frame
                continue

            if frame is None:
                # Records before the first time marker belong to t=0.
                frame = self._start_frame(0.0)
            self._apply(frame, record, number)


def open_reader(source: PathOrFile, config: Optional[AcmiConfig] = None) -> AcmiReader:
    """Open a recording from a path or binary file object.

    Zip compression is detected automatically unless the config forces it.

    Raises:
        ContainerError: If a zip container cannot be opened
        HeaderError: If the content is not ACMI 2.x
        OSError: If the source cannot be read
    """
    config = config or AcmiConfig()
    stack = ExitStack()
    try:
        stream = stack.enter_context(open_text_source(source, config.compression))
        return AcmiReader(stream, config, name=source_name(source), on_close=stack.close)
    except Exception:
        stack.close()
        raise
