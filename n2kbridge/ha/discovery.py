# discovery.py
import logging
from typing import Any, Dict, Hashable, Optional, Set

from n2kbridge import converter
from n2kbridge.config import HomeAssistantConfig, SensorConfig
from n2kbridge.delta import MetaInfo, SourceDescriptor, is_position_path
from n2kbridge.device_registry import DeviceRegistry, DEFAULT_MANUFACTURER, DEFAULT_MODEL

log = logging.getLogger("n2kbridge.ha.discovery")

DEGREE_UNITS = ("°", "deg")


def sensor_id(path: str) -> str:
    return path.replace(".", "_").replace("*", "wildcard")


def device_id(source_id: str) -> str:
    return f"n2k_src_{source_id}"


def is_complex_sensor(path: str) -> bool:
    # position publishes a JSON document instead of a scalar
    return is_position_path(path)


def is_measurement(path: str, cfg: SensorConfig, value: Any) -> bool:
    """True when the state will be a plain number HA can keep statistics for.

    value is the first value seen for the sensor; None counts as numeric.
    """
    if is_complex_sensor(path) or converter.is_timestamp_path(path) or cfg.device_class == "timestamp":
        return False
    return value is None or converter.is_number(value)


class DiscoveryEmitter:
    """
    Home Assistant MQTT discovery for Signal K sensors:
      - config topic:  <prefix>/sensor/n2k_src_<source>/<sensor_id>/config  (retained)
      - state topic:   <prefix>/sensor/n2k_src_<source>/<sensor_id>/state
    Each (source, path) pair is announced at most once per process.
    """

    def __init__(self, mqtt_client, ha_cfg: Optional[HomeAssistantConfig] = None,
                 registry: Optional[DeviceRegistry] = None, raw_mode: bool = False,
                 discovered: Optional[Set[Hashable]] = None) -> None:
        self.mqtt = mqtt_client
        self.ha_cfg = ha_cfg or HomeAssistantConfig()
        self.discovery_prefix = self.ha_cfg.discovery_prefix.rstrip("/")
        self.registry = registry
        self.raw_mode = raw_mode
        self.discovered: Set[Hashable] = discovered if discovered is not None else set()

    def discovery_topic(self, path: str, source_id: str) -> str:
        return f"{self.discovery_prefix}/sensor/{device_id(source_id)}/{sensor_id(path)}/config"

    def state_topic(self, path: str, source_id: str) -> str:
        return f"{self.discovery_prefix}/sensor/{device_id(source_id)}/{sensor_id(path)}/state"

    def device_name(self, source: SourceDescriptor) -> str:
        if self.registry:
            device = self.registry.get_device(source.id)
            if device and device.manufacturer and device.model:
                return f"{device.manufacturer} {device.model}"
        fallback = f"N2K Source {source.id}"
        if source.label and source.label != fallback:
            return source.label
        return fallback

    def device_manufacturer(self, source: SourceDescriptor) -> str:
        device = self.registry.get_device(source.id) if self.registry else None
        if device:
            return device.manufacturer
        return DEFAULT_MANUFACTURER

    def device_model(self, source: SourceDescriptor) -> str:
        if self.registry:
            model = self.registry.get_model(source.id)
            if model and model != DEFAULT_MODEL:
                return model
        if source.type:
            return source.type
        return DEFAULT_MODEL

    def _device_block(self, source: SourceDescriptor) -> Dict[str, Any]:
        return {
            "identifiers": [device_id(source.id)],
            "name": self.device_name(source),
            "manufacturer": self.device_manufacturer(source),
            "model": self.device_model(source),
            "via_device": self.ha_cfg.device_id,
        }

    def build_payload(self, path: str, cfg: SensorConfig, source: SourceDescriptor,
                      meta: Optional[MetaInfo] = None, value: Any = None) -> Dict[str, Any]:
        dev_id = device_id(source.id)
        state_topic = self.state_topic(path, source.id)
        payload: Dict[str, Any] = {
            "name": f"{cfg.name} (raw)" if self.raw_mode else cfg.name,
            "unique_id": f"{dev_id}_{sensor_id(path)}" + ("_raw" if self.raw_mode else ""),
            "state_topic": state_topic,
            "device": self._device_block(source),
        }

        # text, booleans and JSON documents carry no numeric device class or unit
        measurement = is_measurement(path, cfg, value)
        if not measurement:
            if cfg.device_class == "timestamp" and not self.raw_mode:
                payload["device_class"] = "timestamp"
        elif self.raw_mode:
            # HA must not convert raw values, so only the source unit is declared
            if meta and meta.units:
                payload["unit_of_measurement"] = meta.units
        else:
            if cfg.device_class:
                payload["device_class"] = cfg.device_class
            if cfg.unit:
                payload["unit_of_measurement"] = cfg.unit
                if cfg.unit in DEGREE_UNITS:
                    payload["suggested_display_precision"] = 1

        if cfg.icon:
            payload["icon"] = cfg.icon

        if measurement and payload.get("unit_of_measurement"):
            payload["state_class"] = "measurement"
        if is_complex_sensor(path):
            payload["value_template"] = "{{ value_json.value }}"
            payload["json_attributes_topic"] = state_topic
        return payload

    def maybe_publish(self, sensor_key: Hashable, path: str, cfg: SensorConfig, source: SourceDescriptor,
                      meta: Optional[MetaInfo] = None, value: Any = None) -> bool:
        """Publish the discovery config once per sensor key; True if published now.

        The key is only recorded after the publish call returns, so a failed
        publish is retried on the next delta.
        """
        if sensor_key in self.discovered:
            return False
        topic = self.discovery_topic(path, source.id)
        payload = self.build_payload(path, cfg, source, meta, value)
        self.mqtt.pub(topic, payload, retain=True)
        self.discovered.add(sensor_key)
        log.info(f"Discovered: {cfg.name} ({path}) on {self.device_name(source)}")
        return True
