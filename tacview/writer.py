"""Write ACMI recordings with differential encoding.

Records are grouped by timestamp: everything written for the current time is
buffered and emitted in one write, preceded by its ``#time`` marker, once the
time advances or the writer is flushed or closed. Each object update is
diffed against the last values written for that object so only changed
properties reach the file.
"""
from __future__ import annotations

import logging
import math
from contextlib import ExitStack
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, TextIO

from tacview.compression import (
    PathOrFile,
    detect_compression,
    is_path,
    open_text_sink,
    source_name,
)
from tacview.config import AcmiConfig
from tacview.errors import StreamClosed
from tacview.line_codec import (
    FILE_TYPE_LINE,
    Event,
    GlobalUpdate,
    ObjectRemoval,
    ObjectUpdate,
    TimeFrame,
    render_record,
)
from tacview.properties import normalize_value
from tacview.session import Frame
from tacview.tracker import Diff, ObjectTracker

LOGGER = logging.getLogger(__name__)


class AcmiWriter:
    """Produce one recording on a text sink the writer owns."""

    def __init__(
        self,
        stream: TextIO,
        config: Optional[AcmiConfig] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        *,
        name: str = "<stream>",
        on_close: Optional[Callable[[], None]] = None,
    ) -> None:
        self.config = config or AcmiConfig()
        self.name = name
        self.registry = self.config.registry()
        self.tracker = ObjectTracker(self.registry, self.config.kind_policy)
        self.metadata: Mapping[str, Any] = MappingProxyType(dict(metadata or {}))
        self.frames_written = 0
        self._stream = stream
        self._on_close = on_close
        self._closed = False
        self._time: Optional[float] = None
        self._marker_written = False
        self._lines: list[str] = []
        self._last_keyframe: Optional[float] = None
        self._write_header()

    def __enter__(self) -> "AcmiWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise StreamClosed(f"{self.name} is closed")

    def _global_line(self, properties: Mapping[str, Any]) -> str:
        values = {
            name: normalize_value(self.registry.global_kind(name), value)
            for name, value in properties.items()
        }
        return render_record(GlobalUpdate(values))

    def _write_header(self) -> None:
        lines = [FILE_TYPE_LINE, f"FileVersion={self.config.file_version}"]
        lines.extend(self._global_line({name: value}) for name, value in self.metadata.items())
        self._stream.write("\n".join(lines) + "\n")

    def _advance(self, time: float) -> None:
        """Move to ``time``, flushing the buffered frame if time moved on."""
        self._check_open()
        time = float(time)
        if not math.isfinite(time):
            raise ValueError(f"Timestamp must be finite, got {time!r}")

        if self._time is None:
            self._time = time
            self._last_keyframe = time
            return
        if time < self._time:
            raise ValueError(f"Timestamp {time} precedes current frame {self._time}")
        if time == self._time:
            return

        self.flush()
        self._time = time
        self._marker_written = False
        interval = self.config.keyframe_interval
        if interval is not None and time - self._last_keyframe >= interval:
            self._emit_keyframe()

    def _emit_keyframe(self) -> None:
        for object_id in self.tracker.live_ids():
            snapshot = self.tracker.snapshot(object_id)
            if snapshot:
                self._lines.append(render_record(ObjectUpdate(object_id, snapshot)))
        self._last_keyframe = self._time

    # -----------------------------------------------------------------
    # Public operations
    # -----------------------------------------------------------------

    def update(self, time: float, object_id: int, properties: Mapping[str, Any]) -> Diff:
        """Record property values for an object at ``time``.

        Returns:
            The tracker diff (empty when nothing changed)

        Raises:
            ValueError: If the ID is not positive or time goes backwards
            KindMismatch: On a kind conflict under ``KindPolicy.ABORT``
            ReuseOfRetiredId: If the object was already removed
        """
        if object_id <= 0:
            raise ValueError(f"Object IDs must be positive, got {object_id}")
        self._advance(time)
        full_state = self.config.full_state
        diff = self.tracker.apply(object_id, properties, keyframe=full_state)
        changes = self.tracker.snapshot(object_id) if full_state else diff.changes
        if changes:
            self._lines.append(render_record(ObjectUpdate(object_id, changes)))
        else:
            LOGGER.debug("No change for object %x at %s", object_id, time)
        return diff

    def remove(self, time: float, object_id: int) -> None:
        """Record that an object left the recording at ``time``."""
        self._advance(time)
        self.tracker.remove(object_id)
        self._lines.append(render_record(ObjectRemoval(object_id)))

    def set_global(self, time: float, name: str, value) -> None:
        """Set a session-wide property at ``time``."""
        self.set_globals(time, {name: value})

    def set_globals(self, time: float, properties: Mapping[str, Any]) -> None:
        """Set several session-wide properties on one line."""
        self._advance(time)
        if properties:
            self._lines.append(self._global_line(properties))

    def event(self, time: float, event: Event) -> None:
        self._advance(time)
        self._lines.append(render_record(event))

    def keyframe(self, time: float) -> None:
        """Write the full state of every live object at ``time``."""
        self._advance(time)
        self._emit_keyframe()

    def write_frame(self, frame: Frame) -> None:
        """Write every record of a frame; an empty frame becomes a heartbeat.

        Object updates are written with the properties the frame supplies,
        unchanged values included, so reading the output gives the same
        frames back. Values still go through the tracker's kind checks.
        """
        self._advance(frame.time)
        for record in frame.records():
            if isinstance(record, GlobalUpdate):
                self.set_globals(frame.time, record.properties)
            elif isinstance(record, Event):
                self.event(frame.time, record)
            elif isinstance(record, ObjectUpdate):
                self._write_update(record)
            else:
                self.remove(frame.time, record.object_id)

    def _write_update(self, record: ObjectUpdate) -> None:
        if record.object_id <= 0:
            raise ValueError(f"Object IDs must be positive, got {record.object_id}")
        diff = self.tracker.apply(record.object_id, record.properties, keyframe=True)
        if self.config.full_state:
            values = self.tracker.snapshot(record.object_id)
        else:
            values = diff.applied
        if values or not record.properties:
            self._lines.append(render_record(ObjectUpdate(record.object_id, values)))

    def flush(self) -> None:
        """Write out the buffered frame without closing it."""
        self._check_open()
        if self._time is not None and (self._lines or not self._marker_written):
            chunk = []
            if not self._marker_written:
                chunk.append(render_record(TimeFrame(self._time)))
                self._marker_written = True
                self.frames_written += 1
            chunk.extend(self._lines)
            self._lines = []
            self._stream.write("\n".join(chunk) + "\n")
        self._stream.flush()

    def close(self) -> None:
        """Flush the last frame and release the sink."""
        if self._closed:
            return
        try:
            self.flush()
        finally:
            self._closed = True
            callback, self._on_close = self._on_close, None
            if callback is not None:
                callback()


def open_writer(
    target: PathOrFile,
    config: Optional[AcmiConfig] = None,
    metadata: Optional[Mapping[str, Any]] = None,
) -> AcmiWriter:
    """Create a recording at a path or on a binary file object.

    Without an explicit ``config.compression``, paths ending in ``.zip.acmi``
    are zip-compressed and everything else is written as plain text.
    """
    config = config or AcmiConfig()
    compression = config.compression
    if compression is None:
        compression = detect_compression(target if is_path(target) else None)

    stack = ExitStack()
    try:
        stream = stack.enter_context(open_text_sink(target, compression, config.archive_member))
        return AcmiWriter(
            stream, config, metadata, name=source_name(target), on_close=stack.close
        )
    except Exception:
        stack.close()
        raise
