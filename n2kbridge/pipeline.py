"""
Delta -> Home Assistant pipeline.

One Signal K delta goes in through handle_delta(); zero or more MQTT
publications come out through the bus client's pub():

    flatten -> resolve sensor config -> discovery (once per sensor key)
            -> throttle -> convert value -> publish state

Batches are handled one at a time and each flattened value is finished
before the next one starts. The discovery set and the throttle table belong
to the pipeline instance; they are only touched from the thread (or event
loop) that calls handle_delta().
"""

import time
import logging
from typing import Any, Callable, Dict, Optional, Set, Tuple

from n2kbridge.config import BridgeConfig
from n2kbridge import converter
from n2kbridge.delta import FlatValue, delta_context, flatten_delta
from n2kbridge.device_registry import DeviceRegistry
from n2kbridge.ha.discovery import DiscoveryEmitter
from n2kbridge.meta_store import MetaStore
from n2kbridge.sensor_resolver import SensorConfigResolver
from n2kbridge.throttle import PublishThrottler

log = logging.getLogger(__name__)


SensorKey = Tuple[str, str]


def sensor_key(source_id: str, path: str) -> SensorKey:
    return (source_id, path)


class DeltaPipeline:
    def __init__(self, cfg: BridgeConfig, mqtt, registry: Optional[DeviceRegistry] = None,
                 meta_store: Optional[MetaStore] = None, clock: Callable[[], float] = time.monotonic):
        self.cfg = cfg
        self.mqtt = mqtt
        self.raw_mode = cfg.raw_mode
        self.resolver = SensorConfigResolver(cfg.sensors)
        self.meta_store = meta_store if meta_store is not None else MetaStore()
        self.discovered: Set[SensorKey] = set()
        self.throttler = PublishThrottler(cfg.publish_throttle_ms)
        self.discovery = DiscoveryEmitter(
            mqtt, cfg.homeassistant, registry, cfg.raw_mode, discovered=self.discovered
        )
        self._clock = clock
        self.ready = False
        self.stats: Dict[str, int] = {
            "deltas": 0,
            "dropped": 0,
            "values": 0,
            "discovered": 0,
            "published": 0,
            "throttled": 0,
            "errors": 0,
        }

    def mark_ready(self) -> None:
        if not self.ready:
            log.info("Device registry ready, processing Signal K deltas")
        self.ready = True

    def handle_delta(self, message: Any) -> int:
        """Process one delta message; returns the number of state publications."""
        self.stats["deltas"] += 1
        if not self.ready:
            self.stats["dropped"] += 1
            log.debug("Dropping delta received before the device registry was ready")
            return 0
        if not isinstance(message, dict) or not message.get("updates"):
            return 0

        published = 0
        for item in flatten_delta(message):
            self.stats["values"] += 1
            try:
                if self.process_value(item):
                    published += 1
            except Exception as e:
                self.stats["errors"] += 1
                log.error(f"Error processing {item.path} from source {item.source.id} "
                          f"({delta_context(message)}): {e}")
                log.debug("Traceback for failed value", exc_info=True)
        return published

    def process_value(self, item: FlatValue) -> bool:
        meta = self.meta_store.remember(item.path, item.meta)
        cfg = self.resolver.resolve(item.path, item.value, meta)
        if not cfg.enabled:
            return False

        key = sensor_key(item.source.id, item.path)
        if self.discovery.maybe_publish(key, item.path, cfg, item.source, meta, item.value):
            self.stats["discovered"] += 1

        if not self.throttler.should_publish(key, self._clock() * 1000.0):
            self.stats["throttled"] += 1
            log.debug(f"Throttled state update for {item.path} from source {item.source.id}")
            return False

        state = converter.convert(item.path, item.value, cfg, meta, self.raw_mode)
        self.mqtt.pub(self.discovery.state_topic(item.path, item.source.id), state, retain=False)
        self.stats["published"] += 1
        return True
