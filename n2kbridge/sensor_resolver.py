"""
Sensor config resolution.

Order (first match wins):
  1. exact path entry in the sensors table
  2. wildcard entries, in the order they are declared in config.yaml
  3. auto-generated config from n2kbridge.inference

A path resolves once; later calls return the cached config unchanged.
"""

import re
import logging
from typing import Any, Dict, List, Optional, Tuple

from n2kbridge.config import SensorConfig
from n2kbridge.delta import MetaInfo
from n2kbridge import inference

log = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def wildcard_regex(pattern: str) -> "re.Pattern[str]":
    """Compile a dotted pattern where '*' stands for exactly one segment."""
    parts = ["[^.]+" if seg == "*" else re.escape(seg) for seg in pattern.split(".")]
    return re.compile("^" + r"\.".join(parts) + "$")


def friendly_name(path: str) -> str:
    """environment.water.temperature -> 'Water Temperature'"""
    words: List[str] = []
    for part in path.split(".")[-2:]:
        for word in _CAMEL_BOUNDARY.sub(" ", part).split():
            words.append(word[:1].upper() + word[1:])
    return " ".join(words)


class SensorConfigResolver:
    def __init__(self, sensors: Optional[Dict[str, SensorConfig]] = None):
        sensors = sensors or {}
        self._exact: Dict[str, SensorConfig] = {k: v for k, v in sensors.items() if "*" not in k}
        self._wildcards: List[Tuple[str, "re.Pattern[str]", SensorConfig]] = [
            (k, wildcard_regex(k), v) for k, v in sensors.items() if "*" in k
        ]
        self._resolved: Dict[str, SensorConfig] = {}

    def match_configured(self, path: str) -> Optional[SensorConfig]:
        cfg = self._exact.get(path)
        if cfg is not None:
            return cfg
        for pattern, regex, wc_cfg in self._wildcards:
            if regex.match(path):
                log.debug("Path %s matched wildcard %s", path, pattern)
                return wc_cfg
        return None

    def resolve(self, path: str, value: Any = None, meta: Optional[MetaInfo] = None) -> SensorConfig:
        cached = self._resolved.get(path)
        if cached is not None:
            return cached
        cfg = self.match_configured(path)
        if cfg is None:
            cfg = self.auto_generate(path, value, meta)
        self._resolved[path] = cfg
        return cfg

    @staticmethod
    def auto_generate(path: str, value: Any, meta: Optional[MetaInfo] = None) -> SensorConfig:
        md = inference.infer(path, value, meta)
        return SensorConfig(
            enabled=True,
            name=friendly_name(path),
            device_class=md.device_class,
            unit=md.unit,
            icon=md.icon,
        )
