"""Reader/writer settings and their JSON representation.

Example ``acmi_config.json``::

    {
      "strict": false,
      "kind_policy": "coerce",
      "compression": "zip",
      "keyframe_interval": 10.0,
      "extra_properties": {"Throttle3": "number"}
    }
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

from tacview.compression import DEFAULT_ARCHIVE_MEMBER, Compression
from tacview.properties import DEFAULT_REGISTRY, PropertyKind, PropertyRegistry
from tacview.tracker import KindPolicy

LOGGER = logging.getLogger(__name__)

FILE_VERSION_RE = re.compile(r"2\.\d+")


def _enum(enum_cls, value, label: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        choices = ", ".join(member.value for member in enum_cls)
        raise ValueError(f"Invalid {label}: {value!r} (expected one of: {choices})") from None


def _kinds(mapping: Mapping[str, Any], label: str) -> Mapping[str, PropertyKind]:
    return MappingProxyType(
        {name: _enum(PropertyKind, kind, f"{label}.{name}") for name, kind in mapping.items()}
    )


@dataclass(frozen=True)
class AcmiConfig:
    """Settings shared by readers and writers.

    strict: abort on the first per-line error instead of skipping the line
    kind_policy: reaction to property kind conflicts
    compression: force RAW/ZIP; None detects from content or file name
    require_header: reject input without the FileType/FileVersion lines
    file_version: version written in new recordings
    archive_member: member name used for zip output
    full_state: write every update in full (no differential encoding)
    keyframe_interval: seconds between full snapshots when writing
    extra_properties / extra_global_properties: additions to the registry
    """

    strict: bool = False
    kind_policy: KindPolicy = KindPolicy.ABORT
    compression: Optional[Compression] = None
    require_header: bool = True
    file_version: str = "2.2"
    archive_member: str = DEFAULT_ARCHIVE_MEMBER
    full_state: bool = False
    keyframe_interval: Optional[float] = None
    extra_properties: Mapping[str, PropertyKind] = field(default_factory=dict)
    extra_global_properties: Mapping[str, PropertyKind] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind_policy", _enum(KindPolicy, self.kind_policy, "kind_policy"))
        if self.compression is not None:
            object.__setattr__(
                self, "compression", _enum(Compression, self.compression, "compression")
            )
        object.__setattr__(
            self, "extra_properties", _kinds(self.extra_properties, "extra_properties")
        )
        object.__setattr__(
            self,
            "extra_global_properties",
            _kinds(self.extra_global_properties, "extra_global_properties"),
        )
        if not FILE_VERSION_RE.fullmatch(self.file_version):
            raise ValueError(f"Unsupported file_version {self.file_version!r}, expected 2.x")
        if self.keyframe_interval is not None and self.keyframe_interval <= 0:
            raise ValueError("keyframe_interval must be positive")

    def registry(self) -> PropertyRegistry:
        """Property registry for sessions using this config."""
        if not self.extra_properties and not self.extra_global_properties:
            return DEFAULT_REGISTRY
        return DEFAULT_REGISTRY.extend(self.extra_properties, self.extra_global_properties)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AcmiConfig":
        """Build a config from decoded JSON, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            LOGGER.warning("Ignoring unknown config keys: %s", ", ".join(unknown))

        kwargs = {key: value for key, value in data.items() if key in known}
        for key in ("strict", "require_header", "full_state"):
            if key in kwargs and not isinstance(kwargs[key], bool):
                raise ValueError(f"{key} must be true or false, got {kwargs[key]!r}")
        if kwargs.get("keyframe_interval") is not None:
            kwargs["keyframe_interval"] = float(kwargs["keyframe_interval"])
        return cls(**kwargs)


def load_config(json_path: Optional[Union[str, Path]]) -> AcmiConfig:
    """Load settings from a JSON file, falling back to defaults if absent.

    Raises:
        ValueError: If the file parses but holds invalid values
    """
    if not json_path:
        return AcmiConfig()

    try:
        with open(json_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        LOGGER.warning("Failed to load config JSON (%s), using defaults.", e)
        return AcmiConfig()

    if not isinstance(data, dict):
        raise ValueError(f"Config JSON must be an object, got {type(data).__name__}")
    return AcmiConfig.from_dict(data)
