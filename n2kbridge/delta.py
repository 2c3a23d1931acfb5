"""
Delta Normalizer

Flattens one Signal K delta message into (path, value, meta, source) tuples.
Source descriptors are normalized here so downstream code only ever sees a
SourceDescriptor, never the bare-string form Signal K uses for derived data.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional
import logging

log = logging.getLogger(__name__)

_SCALARS = (int, float, str, bool, type(None))


@dataclass(frozen=True)
class MetaInfo:
    """Unit hint supplied by the telemetry source for a path."""
    units: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["MetaInfo"]:
        if not isinstance(raw, dict):
            return None
        units = raw.get("units")
        if not isinstance(units, str) or not units:
            return None
        return cls(units=units)


@dataclass(frozen=True)
class SourceDescriptor:
    id: str
    label: str
    type: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Any) -> "SourceDescriptor":
        if isinstance(raw, str) and raw:
            return cls(id=raw, label=raw)
        if not isinstance(raw, dict):
            raw = {}
        src = raw.get("src")
        label = raw.get("label")
        source_id = str(src or label or "unknown")
        return cls(
            id=source_id,
            label=str(label) if label else f"N2K Source {source_id}",
            type=raw.get("type") if isinstance(raw.get("type"), str) else None,
        )


@dataclass(frozen=True)
class FlatValue:
    path: str
    value: Any
    meta: Optional[MetaInfo]
    source: SourceDescriptor


def is_position_path(path: str) -> bool:
    return "position" in path.split(".")


def _is_geo_pair(value: Any) -> bool:
    return isinstance(value, dict) and "latitude" in value and "longitude" in value


def expand_value(path: str, value: Any) -> List[tuple]:
    """Split a flat object of scalars into sibling (path, value) pairs.

    Position objects stay whole; anything else that is not an object of
    scalars is returned unchanged.
    """
    if value is None:
        return [(path, value)]
    if is_position_path(path) and _is_geo_pair(value):
        return [(path, value)]
    if isinstance(value, dict) and value and all(isinstance(v, _SCALARS) for v in value.values()):
        return [(f"{path}.{key}", v) for key, v in value.items()]
    return [(path, value)]


def flatten_delta(message: Any) -> Iterator[FlatValue]:
    """Yield FlatValue tuples for every usable entry of a delta message.

    Malformed updates and value entries are skipped; a message without
    updates yields nothing.
    """
    if not isinstance(message, dict):
        return
    updates = message.get("updates")
    if not isinstance(updates, list):
        return
    for update in updates:
        if not isinstance(update, dict):
            continue
        values = update.get("values")
        if not isinstance(values, list) or not values:
            continue
        source = SourceDescriptor.from_raw(update.get("source") or update.get("$source"))
        for entry in values:
            if not isinstance(entry, dict) or not isinstance(entry.get("path"), str) or not entry["path"]:
                log.debug("Skipping malformed delta value from %s: %r", source.id, entry)
                continue
            meta = MetaInfo.from_raw(entry.get("meta"))
            for path, value in expand_value(entry["path"], entry.get("value")):
                yield FlatValue(path=path, value=value, meta=meta, source=source)


def delta_context(message: Dict[str, Any]) -> str:
    return message.get("context") or "vessels.self"
