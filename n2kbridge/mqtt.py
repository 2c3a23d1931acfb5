import json
from typing import Any, Dict, Optional, Union
from paho.mqtt import client as mqtt
from paho.mqtt.enums import CallbackAPIVersion
import logging
log = logging.getLogger(__name__)


class PublishError(RuntimeError):
    """The broker client refused a publish."""


class Mqtt:
    def __init__(self, cfg):
        self.cfg = cfg
        self.cli = mqtt.Client(CallbackAPIVersion.VERSION2, client_id=cfg.client_id, clean_session=True)
        if cfg.username:
            self.cli.username_pw_set(cfg.username, cfg.password or "")
        self.cli.on_connect = self._on_connect
        self.cli.on_disconnect = self._on_disconnect
        self.cli.connect_async(cfg.host, cfg.port, keepalive=30)
        self.cli.loop_start()

    def _on_connect(self, _cli, _ud, _flags, reason_code, _props=None):
        if reason_code.is_failure:
            log.error(f"MQTT connection to {self.cfg.host}:{self.cfg.port} refused: {reason_code}")
        else:
            log.info(f"Connected to MQTT broker {self.cfg.host}:{self.cfg.port}")

    def _on_disconnect(self, _cli, _ud, _flags, reason_code, _props=None):
        log.warning(f"Disconnected from MQTT broker ({reason_code}); paho will reconnect")

    def pub(self, topic: str, payload: Union[str, Dict[str, Any]], retain: bool = False, qos: Optional[int] = None):
        if qos is None:
            qos = self.cfg.qos if retain else 0
        if isinstance(payload, (str, bytes)):
            p = payload
        else:
            p = json.dumps(self._make_json_serializable(payload), separators=(",", ":"))
        log.debug("MQTT PUB %s %s", topic, p)
        info = self.cli.publish(topic, p, qos=qos, retain=retain)
        if info.rc == mqtt.MQTT_ERR_NO_CONN and qos > 0:
            # paho keeps QoS 1/2 messages and sends them after reconnecting
            log.debug(f"MQTT offline, queued {topic} for delivery on reconnect")
            return info
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(f"Publish to {topic} failed: {mqtt.error_string(info.rc)}")
        return info

    def _make_json_serializable(self, obj: Any) -> Any:
        """Recursively convert object to JSON-serializable format."""
        if isinstance(obj, dict):
            return {str(k): self._make_json_serializable(v) for k, v in obj.items()}
        elif isinstance(obj, (list, tuple)):
            return [self._make_json_serializable(item) for item in obj]
        elif isinstance(obj, (str, int, float, bool, type(None))):
            return obj
        else:
            return str(obj)

    def close(self):
        try:
            self.cli.loop_stop()
            self.cli.disconnect()
        except Exception as e:
            log.warning(f"Error while closing MQTT client: {e}")
