from typing import Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator

class MqttConfig(BaseModel):
    host: str
    port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: str = "n2k-ha-bridge"
    qos: int = Field(ge=0, le=2, default=1)  # used for discovery publications

class SignalKConfig(BaseModel):
    host: str = "localhost"
    port: int = 3000
    registry_timeout_secs: float = Field(gt=0, default=10.0)
    meta_timeout_secs: float = Field(gt=0, default=10.0)
    reconnect_secs: float = Field(ge=0.5, default=5.0)
    subscribe_path: str = "*"

    @property
    def http_base(self) -> str:
        return f"http://{self.host}:{self.port}/signalk/v1"

    @property
    def stream_url(self) -> str:
        return f"ws://{self.host}:{self.port}/signalk/v1/stream?subscribe=none&sendMeta=all"

class HomeAssistantConfig(BaseModel):
    discovery_prefix: str = "homeassistant"
    device_id: str = "n2k_ha_bridge"  # parent device for via_device

class SensorConfig(BaseModel):
    """Per-path sensor settings, either declared in config.yaml or auto-generated."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    enabled: bool = True
    name: str
    device_class: Optional[str] = Field(default=None, alias="deviceClass")
    unit: Optional[str] = None
    icon: Optional[str] = None

    @field_validator("device_class", mode="before")
    @classmethod
    def _blank_device_class(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

class LoggingConfig(BaseModel):
    level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    ha_debug: bool = False  # Enable debug logging for Home Assistant messages

class BridgeConfig(BaseModel):
    mqtt: MqttConfig
    signalk: SignalKConfig = SignalKConfig()
    homeassistant: HomeAssistantConfig = HomeAssistantConfig()
    # Declaration order matters: the first matching wildcard pattern wins.
    sensors: Dict[str, SensorConfig] = Field(default_factory=dict)
    raw_mode: bool = False
    publish_throttle_ms: int = Field(ge=0, default=1000)
    logging: LoggingConfig = LoggingConfig()

    @field_validator("sensors", mode="before")
    @classmethod
    def _none_sensors(cls, v: Any) -> Any:
        # an empty "sensors:" key in YAML loads as None
        return {} if v is None else v


ENV_OVERRIDES = {
    "MQTT_BROKER": ("mqtt", "host", str),
    "MQTT_PORT": ("mqtt", "port", int),
    "MQTT_USERNAME": ("mqtt", "username", str),
    "MQTT_PASSWORD": ("mqtt", "password", str),
    "SIGNALK_HOST": ("signalk", "host", str),
    "SIGNALK_PORT": ("signalk", "port", int),
}


def apply_env_overrides(data: Dict[str, Any], environ: Dict[str, str]) -> Dict[str, Any]:
    """Return a copy of raw config data with environment overrides applied."""
    data = dict(data or {})
    for var, (section, key, cast) in ENV_OVERRIDES.items():
        raw = environ.get(var)
        if raw is None or raw == "":
            continue
        block = dict(data.get(section) or {})
        block[key] = cast(raw)
        data[section] = block
    if "RAW_MODE" in environ:
        data["raw_mode"] = environ["RAW_MODE"].strip().lower() == "true"
    return data
