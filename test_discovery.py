"""
Unit tests for Home Assistant discovery
Tests topics, payload fields, device grouping and once-only publication
"""

from unittest.mock import MagicMock

import pytest

from n2kbridge.config import HomeAssistantConfig, SensorConfig, SignalKConfig
from n2kbridge.delta import MetaInfo, SourceDescriptor
from n2kbridge.device_registry import DeviceRegistry
from n2kbridge.ha.discovery import DiscoveryEmitter, sensor_id, device_id
from n2kbridge.mqtt import PublishError

SOURCE = SourceDescriptor(id="35", label="can0", type="NMEA2000")
TEMP = SensorConfig(name="Water Temperature", device_class="temperature", unit="°C", icon="mdi:thermometer")
HEADING = SensorConfig(name="Heading Magnetic", unit="°", icon="mdi:compass")


@pytest.fixture
def registry():
    reg = DeviceRegistry(SignalKConfig())
    reg.parse_devices({
        "can0": {
            "35": {"n2k": {"manufacturerCode": "Airmar", "modelId": "DST800", "deviceClass": "Sensor"}},
        }
    })
    return reg


class TestTopics:
    def test_ids(self):
        assert sensor_id("environment.water.temperature") == "environment_water_temperature"
        assert device_id("35") == "n2k_src_35"

    def test_topics(self):
        emitter = DiscoveryEmitter(MagicMock())

        assert emitter.discovery_topic("environment.water.temperature", "35") == \
            "homeassistant/sensor/n2k_src_35/environment_water_temperature/config"
        assert emitter.state_topic("environment.water.temperature", "35") == \
            "homeassistant/sensor/n2k_src_35/environment_water_temperature/state"

    def test_custom_prefix(self):
        emitter = DiscoveryEmitter(MagicMock(), HomeAssistantConfig(discovery_prefix="ha/"))
        assert emitter.state_topic("a.b", "1") == "ha/sensor/n2k_src_1/a_b/state"


class TestPayload:
    def test_normal_payload(self, registry):
        emitter = DiscoveryEmitter(MagicMock(), registry=registry)
        payload = emitter.build_payload("environment.water.temperature", TEMP, SOURCE, MetaInfo(units="K"))

        assert payload["name"] == "Water Temperature"
        assert payload["unique_id"] == "n2k_src_35_environment_water_temperature"
        assert payload["state_topic"] == "homeassistant/sensor/n2k_src_35/environment_water_temperature/state"
        assert payload["device_class"] == "temperature"
        assert payload["unit_of_measurement"] == "°C"
        assert payload["state_class"] == "measurement"
        assert payload["icon"] == "mdi:thermometer"
        assert "value_template" not in payload
        assert payload["device"] == {
            "identifiers": ["n2k_src_35"],
            "name": "Airmar DST800",
            "manufacturer": "Airmar",
            "model": "DST800",
            "via_device": "n2k_ha_bridge",
        }

    def test_degree_precision(self):
        payload = DiscoveryEmitter(MagicMock()).build_payload("navigation.headingMagnetic", HEADING, SOURCE)

        assert payload["suggested_display_precision"] == 1
        assert "device_class" not in payload

    def test_raw_mode_payload(self):
        emitter = DiscoveryEmitter(MagicMock(), raw_mode=True)
        payload = emitter.build_payload("environment.water.temperature", TEMP, SOURCE, MetaInfo(units="K"))

        assert payload["name"] == "Water Temperature (raw)"
        assert payload["unique_id"] == "n2k_src_35_environment_water_temperature_raw"
        assert "device_class" not in payload
        assert payload["unit_of_measurement"] == "K"
        assert payload["state_class"] == "measurement"

    def test_raw_mode_without_meta(self):
        payload = DiscoveryEmitter(MagicMock(), raw_mode=True).build_payload(
            "environment.water.temperature", TEMP, SOURCE)

        assert "unit_of_measurement" not in payload
        assert "state_class" not in payload

    def test_position_payload(self):
        cfg = SensorConfig(name="Navigation Position", icon="mdi:crosshairs-gps")
        payload = DiscoveryEmitter(MagicMock()).build_payload("navigation.position", cfg, SOURCE)

        assert payload["value_template"] == "{{ value_json.value }}"
        assert payload["json_attributes_topic"] == payload["state_topic"]
        assert "state_class" not in payload

    def test_unitless_sensor_has_no_state_class(self):
        cfg = SensorConfig(name="Gnss Type", icon="mdi:gauge")
        payload = DiscoveryEmitter(MagicMock()).build_payload("navigation.gnss.type", cfg, SOURCE)
        assert "state_class" not in payload
        assert "unit_of_measurement" not in payload


class TestDeviceFallbacks:
    def test_unknown_source_uses_label_and_type(self):
        emitter = DiscoveryEmitter(MagicMock())
        device = emitter.build_payload("a.b", TEMP, SOURCE)["device"]

        assert device["name"] == "can0"
        assert device["manufacturer"] == "NMEA 2000"
        assert device["model"] == "NMEA2000"

    def test_bare_source(self):
        emitter = DiscoveryEmitter(MagicMock())
        device = emitter.build_payload("a.b", TEMP, SourceDescriptor(id="7", label="N2K Source 7"))["device"]

        assert device["name"] == "N2K Source 7"
        assert device["model"] == "NMEA 2000 Device"

    def test_prefixed_source_id(self, registry):
        emitter = DiscoveryEmitter(MagicMock(), registry=registry)
        source = SourceDescriptor(id="can0.35", label="can0")

        assert emitter.device_name(source) == "Airmar DST800"


class TestMaybePublish:
    def test_published_once(self):
        mqtt = MagicMock()
        emitter = DiscoveryEmitter(mqtt)

        assert emitter.maybe_publish("35_environment.water.temperature", "environment.water.temperature", TEMP, SOURCE)
        assert not emitter.maybe_publish("35_environment.water.temperature", "environment.water.temperature", TEMP, SOURCE)

        mqtt.pub.assert_called_once()
        args, kwargs = mqtt.pub.call_args
        assert args[0] == "homeassistant/sensor/n2k_src_35/environment_water_temperature/config"
        assert args[1]["unique_id"] == "n2k_src_35_environment_water_temperature"
        assert kwargs["retain"] is True

    def test_failed_publish_retried(self):
        mqtt = MagicMock()
        mqtt.pub.side_effect = [PublishError("broker gone"), None]
        emitter = DiscoveryEmitter(mqtt)

        with pytest.raises(PublishError):
            emitter.maybe_publish("k", "environment.water.temperature", TEMP, SOURCE)
        assert "k" not in emitter.discovered

        assert emitter.maybe_publish("k", "environment.water.temperature", TEMP, SOURCE)
        assert mqtt.pub.call_count == 2


class TestNonNumericSensors:
    """Text and boolean states must not be announced as measurements"""

    SPEED = SensorConfig(name="Speed Through Water Reference Type", device_class="speed", unit="m/s",
                         icon="mdi:speedometer")

    def test_string_value(self):
        payload = DiscoveryEmitter(MagicMock()).build_payload(
            "navigation.speedThroughWaterReferenceType", self.SPEED, SOURCE, value="Paddle wheel")

        assert "state_class" not in payload
        assert "device_class" not in payload
        assert "unit_of_measurement" not in payload
        assert payload["icon"] == "mdi:speedometer"

    def test_boolean_value(self):
        cfg = SensorConfig(name="Bank Voltage Alarm", device_class="voltage", unit="V")
        payload = DiscoveryEmitter(MagicMock()).build_payload(
            "electrical.batteries.0.voltageAlarm", cfg, SOURCE, value=True)

        assert "state_class" not in payload
        assert "device_class" not in payload

    def test_string_value_raw_mode(self):
        payload = DiscoveryEmitter(MagicMock(), raw_mode=True).build_payload(
            "navigation.speedThroughWaterReferenceType", self.SPEED, SOURCE, MetaInfo(units="m/s"),
            value="Paddle wheel")

        assert "unit_of_measurement" not in payload
        assert "state_class" not in payload

    def test_numeric_value_is_measurement(self):
        payload = DiscoveryEmitter(MagicMock()).build_payload(
            "navigation.speedThroughWater", self.SPEED, SOURCE, value=3.4)

        assert payload["device_class"] == "speed"
        assert payload["state_class"] == "measurement"

    def test_timestamp_keeps_device_class(self):
        cfg = SensorConfig(name="Fix Time", device_class="timestamp")
        payload = DiscoveryEmitter(MagicMock()).build_payload(
            "navigation.gnss.fixTime", cfg, SOURCE, value="2024-01-15T12:00:00Z")

        assert payload["device_class"] == "timestamp"
        assert "state_class" not in payload

    def test_value_passed_through_maybe_publish(self):
        mqtt = MagicMock()
        DiscoveryEmitter(mqtt).maybe_publish(
            ("35", "navigation.speedThroughWaterReferenceType"),
            "navigation.speedThroughWaterReferenceType", self.SPEED, SOURCE, value="Paddle wheel")

        payload = mqtt.pub.call_args[0][1]
        assert "state_class" not in payload
