"""Session and frame containers shared by the reader and the writer."""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional

from tacview.errors import AcmiError
from tacview.line_codec import Event, GlobalUpdate, ObjectRemoval, ObjectUpdate, Record
from tacview.properties import DEFAULT_REGISTRY, Coordinates, PropertyRegistry
from tacview.tracker import ObjectTracker


@dataclass
class Frame:
    """Everything recorded at one timestamp.

    ``errors`` collects the recoverable problems met while decoding the frame;
    it is not part of equality.
    """

    time: float
    updates: list[ObjectUpdate] = field(default_factory=list)
    removals: list[int] = field(default_factory=list)
    global_updates: list[GlobalUpdate] = field(default_factory=list)
    events: list[Event] = field(default_factory=list)
    errors: list[AcmiError] = field(default_factory=list, compare=False)

    def is_empty(self) -> bool:
        """True for a heartbeat frame with no records."""
        return not (self.updates or self.removals or self.global_updates or self.events)

    def records(self) -> Iterator[Record]:
        """Records in write order: globals, events, updates, then removals."""
        yield from self.global_updates
        yield from self.events
        yield from self.updates
        for object_id in self.removals:
            yield ObjectRemoval(object_id)


class Session:
    """Header metadata plus the live state of one recording."""

    def __init__(
        self,
        metadata: Optional[Mapping[str, Any]] = None,
        file_version: Optional[str] = None,
        registry: PropertyRegistry = DEFAULT_REGISTRY,
        tracker: Optional[ObjectTracker] = None,
    ) -> None:
        self.metadata: Mapping[str, Any] = MappingProxyType(dict(metadata or {}))
        self.file_version = file_version
        self.registry = registry
        self.tracker = tracker if tracker is not None else ObjectTracker(registry)
        # Last write wins; starts from the header values.
        self.global_properties: dict[str, Any] = dict(self.metadata)

    def apply_global(self, update: GlobalUpdate) -> None:
        self.global_properties.update(update.properties)

    @property
    def reference_time(self) -> Optional[str]:
        return self.global_properties.get("ReferenceTime")

    @property
    def reference_longitude(self) -> float:
        return float(self.global_properties.get("ReferenceLongitude", 0.0))

    @property
    def reference_latitude(self) -> float:
        return float(self.global_properties.get("ReferenceLatitude", 0.0))

    def absolute_position(self, object_id: int) -> Optional[Coordinates]:
        """Current transform of an object with the reference point applied."""
        transform = self.tracker.snapshot(object_id).get("T")
        if transform is None:
            return None
        return transform.offset(self.reference_longitude, self.reference_latitude)

    def __repr__(self) -> str:
        return (
            f"Session(version={self.file_version!r}, metadata={dict(self.metadata)!r}, "
            f"live_objects={len(self.tracker)})"
        )
