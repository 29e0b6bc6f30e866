"""Known ACMI property names and the kinds of value they carry.

The registry is an immutable table handed to each session; extra names come
from configuration rather than from mutating a shared module-level dict.

ACMI Format Reference: https://www.tacview.net/documentation/acmi/en/
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional


class PropertyKind(Enum):
    """Closed set of value kinds a property can hold."""

    NUMBER = "number"
    TEXT = "text"
    BOOLEAN = "boolean"
    COORDINATES = "coordinates"
    REFERENCE = "reference"


# Component names for each accepted T= arity.
COORDINATE_LAYOUTS: dict[int, tuple[str, ...]] = {
    3: ("longitude", "latitude", "altitude"),
    5: ("longitude", "latitude", "altitude", "u", "v"),
    6: ("longitude", "latitude", "altitude", "roll", "pitch", "yaw"),
    9: (
        "longitude",
        "latitude",
        "altitude",
        "roll",
        "pitch",
        "yaw",
        "u",
        "v",
        "heading",
    ),
}


@dataclass(frozen=True)
class Coordinates:
    """Object transform (the ACMI ``T`` property).

    Any component may be ``None``, meaning "unchanged since the last update".
    ``arity`` remembers how many fields the literal had so rendering can
    reproduce it; it does not take part in equality.
    """

    longitude: Optional[float] = None  # deg
    latitude: Optional[float] = None  # deg
    altitude: Optional[float] = None  # m
    u: Optional[float] = None  # Native X coordinate (meters)
    v: Optional[float] = None  # Native Y coordinate (meters)
    roll: Optional[float] = None  # deg
    pitch: Optional[float] = None  # deg
    yaw: Optional[float] = None  # deg
    heading: Optional[float] = None  # deg
    arity: Optional[int] = field(default=None, compare=False, repr=False)

    def components(self) -> dict[str, float]:
        """Return the components that are set."""
        names = COORDINATE_LAYOUTS[9]
        return {n: getattr(self, n) for n in names if getattr(self, n) is not None}

    def is_empty(self) -> bool:
        return not self.components()

    def merged(self, other: "Coordinates") -> "Coordinates":
        """Overlay the set components of ``other`` on this transform."""
        values = self.components()
        values.update(other.components())
        return Coordinates(**values)

    def changed_from(self, previous: Optional["Coordinates"]) -> "Coordinates":
        """Return only the components that differ from ``previous``."""
        if previous is None:
            return Coordinates(**self.components())
        old = previous.components()
        changed = {n: v for n, v in self.components().items() if old.get(n) != v}
        return Coordinates(**changed)

    def offset(self, reference_longitude: float, reference_latitude: float) -> "Coordinates":
        """Apply the session reference point to longitude/latitude."""
        values = self.components()
        if "longitude" in values:
            values["longitude"] += reference_longitude
        if "latitude" in values:
            values["latitude"] += reference_latitude
        return Coordinates(**values)

    def layout(self) -> tuple[str, ...]:
        """Pick the field layout used to render this transform."""
        present = set(self.components())
        if self.arity in COORDINATE_LAYOUTS and present <= set(COORDINATE_LAYOUTS[self.arity]):
            return COORDINATE_LAYOUTS[self.arity]
        for arity in (3, 5, 6, 9):
            if present <= set(COORDINATE_LAYOUTS[arity]):
                return COORDINATE_LAYOUTS[arity]
        return COORDINATE_LAYOUTS[9]


def kind_of(value) -> PropertyKind:
    """Return the kind of a decoded property value.

    Raises:
        TypeError: If the value is not one of the supported Python types
    """
    # bool must be checked before int
    if isinstance(value, bool):
        return PropertyKind.BOOLEAN
    if isinstance(value, int):
        return PropertyKind.REFERENCE
    if isinstance(value, float):
        return PropertyKind.NUMBER
    if isinstance(value, str):
        return PropertyKind.TEXT
    if isinstance(value, Coordinates):
        return PropertyKind.COORDINATES
    raise TypeError(f"Unsupported property value type: {type(value).__name__}")


def normalize_value(kind: Optional[PropertyKind], value):
    """Promote plain ints to floats for numeric properties."""
    if kind is PropertyKind.NUMBER and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    return value


class Tag(str, Enum):
    """Known object classes used in the ``Type`` property (``Air+FixedWing``)."""

    # Class
    AIR = "Air"
    GROUND = "Ground"
    SEA = "Sea"
    WEAPON = "Weapon"
    SENSOR = "Sensor"
    NAVAID = "Navaid"
    MISC = "Misc"
    # Attributes
    STATIC = "Static"
    HEAVY = "Heavy"
    MEDIUM = "Medium"
    LIGHT = "Light"
    MINOR = "Minor"
    # Basic types
    FIXED_WING = "FixedWing"
    ROTORCRAFT = "Rotorcraft"
    ARMOR = "Armor"
    ANTI_AIRCRAFT = "AntiAircraft"
    VEHICLE = "Vehicle"
    WATERCRAFT = "Watercraft"
    HUMAN = "Human"
    BIOLOGIC = "Biologic"
    MISSILE = "Missile"
    ROCKET = "Rocket"
    BOMB = "Bomb"
    TORPEDO = "Torpedo"
    PROJECTILE = "Projectile"
    BEAM = "Beam"
    DECOY = "Decoy"
    BUILDING = "Building"
    BULLSEYE = "Bullseye"
    WAYPOINT = "Waypoint"
    # Specific types
    TANK = "Tank"
    WARSHIP = "Warship"
    AIRCRAFT_CARRIER = "AircraftCarrier"
    SUBMARINE = "Submarine"
    INFANTRY = "Infantry"
    PARACHUTIST = "Parachutist"
    SHELL = "Shell"
    BULLET = "Bullet"
    FLARE = "Flare"
    CHAFF = "Chaff"
    SMOKE_GRENADE = "SmokeGrenade"
    AERODROME = "Aerodrome"
    CONTAINER = "Container"
    SHRAPNEL = "Shrapnel"


class Color(str, Enum):
    """Colors Tacview knows for the ``Color`` property."""

    RED = "Red"
    ORANGE = "Orange"
    GREEN = "Green"
    BLUE = "Blue"
    VIOLET = "Violet"
    GREY = "Grey"


_TAGS = {tag.value: tag for tag in Tag}
_COLORS = {color.value: color for color in Color}


def object_tags(value: str) -> frozenset:
    """Split a ``Type`` value into its tags.

    Known tags become ``Tag`` members; unknown ones are kept as strings.
    """
    return frozenset(_TAGS.get(part, part) for part in value.split("+") if part)


def format_tags(tags) -> str:
    """Join tags into a ``Type`` value, in the order given."""
    return "+".join(tag.value if isinstance(tag, Tag) else tag for tag in tags)


def object_color(value: str):
    """Return the ``Color`` member for a name, or the name itself if unknown."""
    return _COLORS.get(value, value)


def _indexed(base: str, count: int) -> list[str]:
    # FuelWeight, FuelWeight2, ... FuelWeight<count>
    return [base] + [f"{base}{i}" for i in range(2, count + 1)]


_TEXT_PROPERTIES = [
    "Name",
    "Type",
    "CallSign",
    "Registration",
    "Squawk",
    "ICAO24",
    "Pilot",
    "Group",
    "Country",
    "Coalition",
    "Color",
    "Shape",
    "Debug",
    "Label",
]

_REFERENCE_PROPERTIES = ["Parent", "Next", "FocusedTarget", "LockedTarget"]

_BOOLEAN_PROPERTIES = ["Disabled", "Visible"]

_NUMBER_PROPERTIES = [
    "Importance",
    "Slot",
    "Health",
    "Length",
    "Width",
    "Height",
    "Radius",
    "IAS",
    "CAS",
    "TAS",
    "Mach",
    "AOA",
    "AOS",
    "AGL",
    "HDG",
    "HDM",
    "Throttle",
    "Throttle2",
    "Afterburner",
    "AirBrakes",
    "Flaps",
    "LandingGear",
    "LandingGearHandle",
    "Tailhook",
    "Parachute",
    "DragChute",
    *_indexed("FuelWeight", 9),
    *_indexed("FuelVolume", 9),
    *_indexed("FuelFlowWeight", 8),
    *_indexed("FuelFlowVolume", 8),
    "RadarMode",
    "RadarAzimuth",
    "RadarElevation",
    "RadarRoll",
    "RadarRange",
    "RadarHorizontalBeamwidth",
    "RadarVerticalBeamwidth",
    "LockedTargetMode",
    "LockedTargetAzimuth",
    "LockedTargetElevation",
    "LockedTargetRange",
    "EngagementMode",
    "EngagementMode2",
    "EngagementRange",
    "EngagementRange2",
    "VerticalEngagementRange",
    "VerticalEngagementRange2",
    "RollControlInput",
    "PitchControlInput",
    "YawControlInput",
    "RollControlPosition",
    "PitchControlPosition",
    "YawControlPosition",
    "RollTrimTab",
    "PitchTrimTab",
    "YawTrimTab",
    "AileronLeft",
    "AileronRight",
    "Elevator",
    "Rudder",
    "PilotHeadRoll",
    "PilotHeadPitch",
    "PilotHeadYaw",
    "VerticalGForce",
    "LongitudinalGForce",
    "LateralGForce",
    "ENL",
]

_GLOBAL_TEXT_PROPERTIES = [
    "DataSource",
    "DataRecorder",
    "ReferenceTime",
    "RecordingTime",
    "Author",
    "Title",
    "Category",
    "Briefing",
    "Debriefing",
    "Comments",
]

_GLOBAL_NUMBER_PROPERTIES = ["ReferenceLongitude", "ReferenceLatitude"]


class PropertyRegistry:
    """Immutable table of known object and global property kinds."""

    def __init__(
        self,
        objects: Mapping[str, PropertyKind],
        global_properties: Mapping[str, PropertyKind],
    ) -> None:
        self._objects = MappingProxyType(dict(objects))
        self._globals = MappingProxyType(dict(global_properties))

    @property
    def objects(self) -> Mapping[str, PropertyKind]:
        return self._objects

    @property
    def global_properties(self) -> Mapping[str, PropertyKind]:
        return self._globals

    def object_kind(self, name: str) -> Optional[PropertyKind]:
        """Return the registered kind of an object property, or None."""
        return self._objects.get(name)

    def global_kind(self, name: str) -> Optional[PropertyKind]:
        """Return the registered kind of a global property, or None."""
        return self._globals.get(name)

    def extend(
        self,
        objects: Optional[Mapping[str, PropertyKind]] = None,
        global_properties: Optional[Mapping[str, PropertyKind]] = None,
    ) -> "PropertyRegistry":
        """Return a new registry with additional (or overridden) names."""
        merged_objects = dict(self._objects)
        merged_objects.update(objects or {})
        merged_globals = dict(self._globals)
        merged_globals.update(global_properties or {})
        return PropertyRegistry(merged_objects, merged_globals)

    def __contains__(self, name: object) -> bool:
        return name in self._objects

    def __repr__(self) -> str:
        return (
            f"PropertyRegistry({len(self._objects)} object properties, "
            f"{len(self._globals)} global properties)"
        )


def _default_registry() -> PropertyRegistry:
    objects: dict[str, PropertyKind] = {"T": PropertyKind.COORDINATES}
    objects.update({name: PropertyKind.TEXT for name in _TEXT_PROPERTIES})
    objects.update({name: PropertyKind.REFERENCE for name in _REFERENCE_PROPERTIES})
    objects.update({name: PropertyKind.BOOLEAN for name in _BOOLEAN_PROPERTIES})
    objects.update({name: PropertyKind.NUMBER for name in _NUMBER_PROPERTIES})

    global_properties = {name: PropertyKind.TEXT for name in _GLOBAL_TEXT_PROPERTIES}
    global_properties.update({name: PropertyKind.NUMBER for name in _GLOBAL_NUMBER_PROPERTIES})
    return PropertyRegistry(objects, global_properties)


DEFAULT_REGISTRY = _default_registry()
