"""Per-object property state for one recording session.

The tracker keeps the last known value of every property of every live
object. Applying an update merges it into that state and returns a ``Diff``
holding only what actually changed, which is what a writer needs to emit for
differential encoding and what a reader uses to keep a live snapshot.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from tacview.errors import AcmiError, KindMismatch, ObjectNotFound, ParseError, ReuseOfRetiredId
from tacview.line_codec import parse_value
from tacview.properties import (
    DEFAULT_REGISTRY,
    Coordinates,
    PropertyKind,
    PropertyRegistry,
    kind_of,
    normalize_value,
)

LOGGER = logging.getLogger(__name__)


class KindPolicy(Enum):
    """What to do when a value's kind conflicts with the established one."""

    ABORT = "abort"
    DROP = "drop"
    COERCE = "coerce"


@dataclass
class Diff:
    """Properties that changed on one object after an update.

    ``applied`` holds every value that was accepted (after coercion), while
    ``errors`` lists the kind conflicts that a DROP or COERCE policy resolved.
    """

    object_id: int
    changes: dict[str, Any] = field(default_factory=dict)
    applied: dict[str, Any] = field(default_factory=dict)
    errors: list[AcmiError] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.changes)


class ObjectTracker:
    """Live property maps keyed by object ID."""

    def __init__(
        self,
        registry: PropertyRegistry = DEFAULT_REGISTRY,
        kind_policy: KindPolicy = KindPolicy.ABORT,
    ) -> None:
        self.registry = registry
        self.kind_policy = kind_policy
        self._objects: dict[int, dict[str, Any]] = {}
        self._kinds: dict[int, dict[str, PropertyKind]] = {}
        self._retired: set[int] = set()

    def __contains__(self, object_id: object) -> bool:
        return object_id in self._objects

    def __len__(self) -> int:
        return len(self._objects)

    def live_ids(self) -> list[int]:
        """IDs of objects seen and not yet removed, in first-seen order."""
        return list(self._objects)

    def is_retired(self, object_id: int) -> bool:
        return object_id in self._retired

    def _expected_kind(self, object_id: int, name: str, actual: PropertyKind) -> PropertyKind:
        established = self._kinds.get(object_id, {}).get(name)
        if established is not None:
            return established
        return self.registry.object_kind(name) or actual

    @staticmethod
    def _coerce(value, kind: PropertyKind) -> Optional[Any]:
        """Convert ``value`` to ``kind``, or return None if it cannot be."""
        if isinstance(value, str):
            try:
                return parse_value(kind, value)
            except ParseError:
                return None
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            if kind is PropertyKind.NUMBER:
                return float(value)
            if kind is PropertyKind.BOOLEAN:
                return value != 0
            return None
        if isinstance(value, float) and value.is_integer():
            if kind is PropertyKind.REFERENCE and value >= 0:
                return int(value)
            if kind is PropertyKind.BOOLEAN:
                return value != 0
        return None

    def _check(self, object_id: int, updates: Mapping[str, Any], diff: Diff) -> dict[str, Any]:
        accepted: dict[str, Any] = {}
        for name, value in updates.items():
            value = normalize_value(self.registry.object_kind(name), value)
            actual = kind_of(value)
            expected = self._expected_kind(object_id, name, actual)
            if actual is expected:
                accepted[name] = value
                continue

            error = KindMismatch(object_id, name, expected, actual)
            if self.kind_policy is KindPolicy.ABORT:
                raise error
            if self.kind_policy is KindPolicy.COERCE:
                coerced = self._coerce(value, expected)
                if coerced is not None:
                    LOGGER.debug("Coerced %s on object %x to %s", name, object_id, expected.value)
                    accepted[name] = coerced
                    continue
            LOGGER.warning("Dropping property: %s", error)
            diff.errors.append(error)
        return accepted

    def apply(self, object_id: int, updates: Mapping[str, Any], keyframe: bool = False) -> Diff:
        """Merge property updates into an object's state.

        Args:
            object_id: Object to update (created on first use)
            updates: Property name to new value
            keyframe: Report every supplied property, not only the changed ones

        Returns:
            Diff of new or changed properties

        Raises:
            ReuseOfRetiredId: If the object was already removed
            KindMismatch: On a kind conflict under ``KindPolicy.ABORT``
        """
        if object_id in self._retired:
            raise ReuseOfRetiredId(object_id)

        diff = Diff(object_id)
        # Validate everything first so an aborted update leaves no trace.
        accepted = self._check(object_id, updates, diff)
        diff.applied = dict(accepted)

        state = self._objects.setdefault(object_id, {})
        kinds = self._kinds.setdefault(object_id, {})
        for name, value in accepted.items():
            kinds.setdefault(name, kind_of(value))
            previous = state.get(name)

            if isinstance(value, Coordinates):
                merged = previous.merged(value) if previous is not None else value.merged(Coordinates())
                state[name] = merged
                change = merged if keyframe else value.changed_from(previous)
                if not change.is_empty():
                    diff.changes[name] = change
                continue

            if keyframe or name not in state or previous != value:
                diff.changes[name] = value
            state[name] = value
        return diff

    def remove(self, object_id: int) -> None:
        """Forget an object and retire its ID for the rest of the session."""
        if object_id in self._retired:
            raise ReuseOfRetiredId(object_id)
        self._objects.pop(object_id, None)
        self._kinds.pop(object_id, None)
        self._retired.add(object_id)

    def snapshot(self, object_id: int) -> dict[str, Any]:
        """Return a copy of an object's current properties.

        Raises:
            ObjectNotFound: If the object is unknown or removed
        """
        try:
            return dict(self._objects[object_id])
        except KeyError:
            raise ObjectNotFound(object_id) from None
