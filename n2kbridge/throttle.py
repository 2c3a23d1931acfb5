from typing import Dict, Hashable, Optional
import logging

log = logging.getLogger(__name__)

DEFAULT_WINDOW_MS = 1000


class PublishThrottler:
    """Per-sensor rate limit for state publications.

    Keys are SensorKeys, (source id, path) pairs. Discovery is never throttled.
    """

    def __init__(self, window_ms: int = DEFAULT_WINDOW_MS):
        self.window_ms = window_ms
        self._last: Dict[Hashable, float] = {}

    def should_publish(self, key: Hashable, now_ms: float, window_ms: Optional[int] = None) -> bool:
        window = self.window_ms if window_ms is None else window_ms
        last = self._last.get(key)
        if last is not None and now_ms - last < window:
            return False
        self._last[key] = now_ms
        return True

    def last_publish(self, key: Hashable) -> Optional[float]:
        return self._last.get(key)

    def __len__(self) -> int:
        return len(self._last)
