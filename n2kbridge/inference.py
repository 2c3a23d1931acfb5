"""
Metadata inference for Signal K paths.

Decides device class, target unit, icon and the numeric transform that
takes a Signal K (SI) value to the unit Home Assistant is told about.

Two sources are consulted, in this order:
  1. meta.units from the Signal K server, looked up in UNIT_TABLE.
     This is authoritative and the only source of a non-identity transform.
  2. HEURISTIC_RULES, an ordered list of path patterns. The first rule
     that matches wins, so the order below is part of the behaviour
     (e.g. "speed" before "wind", "current" must not match "currentLevel").
"""

import math
import re
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from n2kbridge.delta import MetaInfo

log = logging.getLogger(__name__)

Transform = Callable[[float], float]

DEFAULT_ICON = "mdi:gauge"
BOOLEAN_ICON = "mdi:toggle-switch"
TEMPERATURE_RANGE_C = (-50.0, 100.0)


def identity(v: float) -> float:
    return v


def kelvin_to_celsius(v: float) -> float:
    return v - 273.15


def fahrenheit_to_celsius(v: float) -> float:
    return (v - 32.0) * 5.0 / 9.0


def radians_to_degrees(v: float) -> float:
    return v * 180.0 / math.pi


@dataclass(frozen=True)
class UnitSpec:
    device_class: Optional[str]
    unit: str
    icon: str
    transform: Transform = identity


@dataclass(frozen=True)
class InferredMetadata:
    device_class: Optional[str]
    unit: Optional[str]
    icon: str
    transform: Transform = identity


UNIT_TABLE: Dict[str, UnitSpec] = {
    "K": UnitSpec("temperature", "°C", "mdi:thermometer", kelvin_to_celsius),
    "°C": UnitSpec("temperature", "°C", "mdi:thermometer"),
    "C": UnitSpec("temperature", "°C", "mdi:thermometer"),
    "°F": UnitSpec("temperature", "°C", "mdi:thermometer", fahrenheit_to_celsius),
    "F": UnitSpec("temperature", "°C", "mdi:thermometer", fahrenheit_to_celsius),
    "m/s": UnitSpec("speed", "m/s", "mdi:speedometer"),
    "m": UnitSpec("distance", "m", "mdi:map-marker-distance"),
    "rad": UnitSpec(None, "°", "mdi:compass", radians_to_degrees),
    "V": UnitSpec("voltage", "V", "mdi:flash"),
    "A": UnitSpec("current", "A", "mdi:current-ac"),
    "Pa": UnitSpec("pressure", "Pa", "mdi:gauge"),
}

WIND_SPEED = UnitSpec("wind_speed", "m/s", "mdi:weather-windy")


def lookup_unit(units: Optional[str], path: str) -> Optional[UnitSpec]:
    """Return the UnitSpec for a meta.units string, or None if unrecognized."""
    if not units:
        return None
    spec = UNIT_TABLE.get(units)
    if spec is not None and units == "m/s" and "wind" in path:
        return WIND_SPEED
    return spec


@dataclass(frozen=True)
class HeuristicRule:
    name: str
    pattern: "re.Pattern[str]"
    device_class: Optional[str] = None
    unit: Optional[str] = None
    icon: str = DEFAULT_ICON

    def matches(self, path: str) -> bool:
        return self.pattern.search(path) is not None


# Values without meta are still SI, so units here are the Signal K ones and
# no transform is applied.
HEURISTIC_RULES: List[HeuristicRule] = [
    HeuristicRule("temperature", re.compile(r"temperature"), "temperature", "K", "mdi:thermometer"),
    HeuristicRule("speed", re.compile(r"speed", re.I), "speed", "m/s", "mdi:speedometer"),
    HeuristicRule("distance", re.compile(r"depth|log|distance"), "distance", "m", "mdi:map-marker-distance"),
    HeuristicRule("voltage", re.compile(r"voltage"), "voltage", "V", "mdi:flash"),
    HeuristicRule("current", re.compile(r"current(?![A-Z])"), "current", "A", "mdi:current-ac"),
    HeuristicRule("pressure", re.compile(r"pressure"), "pressure", "Pa", "mdi:gauge"),
    HeuristicRule("angle", re.compile(r"angle|heading|course|direction|bearing", re.I), None, "rad", "mdi:compass"),
    HeuristicRule("position", re.compile(r"position"), icon="mdi:crosshairs-gps"),
    HeuristicRule("volume", re.compile(r"volume"), icon="mdi:volume-high"),
    HeuristicRule("state", re.compile(r"state"), icon="mdi:power"),
    HeuristicRule("muted", re.compile(r"muted", re.I), icon="mdi:volume-mute"),
    HeuristicRule("media", re.compile(r"track|artist|album"), icon="mdi:music"),
    HeuristicRule("satellites", re.compile(r"satellites"), icon="mdi:satellite-variant"),
    HeuristicRule("wind", re.compile(r"wind"), "wind_speed", "m/s", "mdi:weather-windy"),
]


def match_rule(path: str) -> Optional[HeuristicRule]:
    for rule in HEURISTIC_RULES:
        if rule.matches(path):
            return rule
    return None


def infer(path: str, value: Any, meta: Optional[MetaInfo] = None) -> InferredMetadata:
    spec = lookup_unit(meta.units if meta else None, path)
    if spec is not None:
        return InferredMetadata(spec.device_class, spec.unit, spec.icon, spec.transform)

    rule = match_rule(path)
    if rule is not None:
        return InferredMetadata(rule.device_class, rule.unit, rule.icon)

    if isinstance(value, bool):
        return InferredMetadata(None, None, BOOLEAN_ICON)
    return InferredMetadata(None, None, DEFAULT_ICON)


def transform_for(path: str, meta: Optional[MetaInfo], target_unit: Optional[str] = None) -> Transform:
    """Transform implied by meta for this path.

    Identity when meta is absent or unrecognized, or when the sensor is
    configured to stay in the source unit (target_unit == meta.units).
    """
    if meta is None or not meta.units:
        return identity
    if target_unit is not None and target_unit == meta.units:
        return identity
    spec = lookup_unit(meta.units, path)
    return spec.transform if spec is not None else identity


def check_temperature(path: str, celsius: float) -> bool:
    """Warn when a converted temperature is implausible; True if in range."""
    lo, hi = TEMPERATURE_RANGE_C
    if lo <= celsius <= hi:
        return True
    log.warning(
        "Temperature %s converted to %.2f°C is outside [%g, %g]; check the unit reported for this path",
        path, celsius, lo, hi,
    )
    return False
