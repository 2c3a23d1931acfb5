"""
Value Converter

Turns a Signal K value into the string published on a sensor state topic.
Numeric values get the meta-implied unit transform (once) and smart
rounding; positions become a small JSON document; timestamps become ISO-8601.
Anything non-finite or missing becomes "unknown".
"""

import json
import math
import logging
from datetime import datetime
from typing import Any, Optional

import pytz

from n2kbridge.config import SensorConfig
from n2kbridge.delta import MetaInfo, is_position_path
from n2kbridge import inference

log = logging.getLogger(__name__)

UNKNOWN = "unknown"

ANGLE_UNITS = {"°", "deg", "rad"}
ONE_DECIMAL_CLASSES = {"temperature", "speed", "wind_speed", "distance"}

# Epoch numbers above this are taken as milliseconds
_EPOCH_MS_THRESHOLD = 1e11


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_timestamp_path(path: str) -> bool:
    return "datetime" in path.lower()


def is_finite(value: Any) -> bool:
    """math.isfinite that treats ints too large for a float as non-finite."""
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def _json_safe(obj: Any) -> Any:
    if isinstance(obj, float) and not math.isfinite(obj):
        return None
    if isinstance(obj, dict):
        return {str(k): _json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_json_safe(v) for v in obj]
    return obj


def to_json(obj: Any) -> str:
    return json.dumps(_json_safe(obj), separators=(",", ":"), default=str)


def format_position(value: dict) -> str:
    lat, lon = value.get("latitude"), value.get("longitude")
    if not (is_number(lat) and is_number(lon)) or not (is_finite(lat) and is_finite(lon)):
        return UNKNOWN
    return to_json({
        "value": f"{lat:.6f}, {lon:.6f}",
        "latitude": lat,
        "longitude": lon,
    })


def format_timestamp(value: Any) -> str:
    """ISO-8601 UTC with milliseconds, e.g. 2024-01-15T12:00:00.000Z"""
    try:
        if is_number(value):
            if not math.isfinite(value):
                return UNKNOWN
            secs = value / 1000.0 if abs(value) > _EPOCH_MS_THRESHOLD else float(value)
            dt = datetime.fromtimestamp(secs, tz=pytz.UTC)
        elif isinstance(value, str):
            text = value.strip()
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            dt = datetime.fromisoformat(text)
            if dt.tzinfo is None:
                dt = pytz.UTC.localize(dt)
            dt = dt.astimezone(pytz.UTC)
        else:
            return UNKNOWN
    except (ValueError, OverflowError, OSError) as e:
        log.debug(f"Unparseable timestamp {value!r}: {e}")
        return UNKNOWN
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def decimals_for(path: str, cfg: SensorConfig) -> Optional[int]:
    """Decimal places for a converted number; None means do not round."""
    if is_position_path(path):
        return None
    if cfg.device_class == "pressure":
        return 2
    if cfg.device_class in ONE_DECIMAL_CLASSES or cfg.unit in ANGLE_UNITS:
        return 1
    return 2


def smart_round(path: str, value: float, cfg: SensorConfig) -> str:
    places = decimals_for(path, cfg)
    if places is None:
        return str(value)
    return f"{value:.{places}f}"


def convert_number(path: str, value: float, cfg: SensorConfig, meta: Optional[MetaInfo]) -> str:
    transform = inference.transform_for(path, meta, cfg.unit)
    converted = transform(float(value))
    if not math.isfinite(converted):
        return UNKNOWN
    if cfg.device_class == "temperature" and cfg.unit == "°C":
        inference.check_temperature(path, converted)
    return smart_round(path, converted, cfg)


def convert(path: str, value: Any, cfg: SensorConfig, meta: Optional[MetaInfo] = None, raw_mode: bool = False) -> str:
    if value is None:
        return UNKNOWN

    if is_position_path(path) and isinstance(value, dict) and "latitude" in value and "longitude" in value:
        return format_position(value)

    if is_timestamp_path(path) or cfg.device_class == "timestamp":
        return format_timestamp(value)

    if is_number(value):
        if not is_finite(value):
            return UNKNOWN
        if raw_mode:
            return str(value)
        return convert_number(path, value, cfg, meta)

    if isinstance(value, (dict, list)):
        return to_json(value)

    if isinstance(value, bool):
        return "true" if value else "false"

    return str(value)
