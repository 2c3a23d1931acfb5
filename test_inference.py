"""
Unit tests for metadata inference
Tests the meta.units table, the ordered path heuristics and the fallbacks
"""

import logging
import math

import pytest

from n2kbridge import inference
from n2kbridge.delta import MetaInfo
from n2kbridge.inference import (
    infer, lookup_unit, match_rule, transform_for, check_temperature,
    identity, HEURISTIC_RULES, DEFAULT_ICON, BOOLEAN_ICON
)


class TestUnitTable:
    """meta.units is authoritative"""

    def test_kelvin(self):
        md = infer("environment.outside.temperature", 293.15, MetaInfo(units="K"))

        assert md.device_class == "temperature"
        assert md.unit == "°C"
        assert md.transform(293.15) == pytest.approx(20.0)

    @pytest.mark.parametrize("units", ["°C", "C"])
    def test_celsius_identity(self, units):
        md = infer("environment.inside.temperature", 21.5, MetaInfo(units=units))

        assert md.device_class == "temperature"
        assert md.unit == "°C"
        assert md.transform is identity

    @pytest.mark.parametrize("units", ["°F", "F"])
    def test_fahrenheit(self, units):
        md = infer("environment.inside.temperature", 212.0, MetaInfo(units=units))

        assert md.unit == "°C"
        assert md.transform(212.0) == pytest.approx(100.0)
        assert md.transform(32.0) == pytest.approx(0.0)

    def test_radians_to_degrees(self):
        md = infer("navigation.headingMagnetic", 1.5708, MetaInfo(units="rad"))

        assert md.device_class is None
        assert md.unit == "°"
        assert md.icon == "mdi:compass"
        assert md.transform(1.5708) == pytest.approx(90.0, abs=0.01)
        assert md.transform(math.pi) == pytest.approx(180.0)

    def test_speed_vs_wind_speed(self):
        """m/s is disambiguated by 'wind' in the path"""
        boat = infer("navigation.speedOverGround", 3.2, MetaInfo(units="m/s"))
        wind = infer("environment.wind.speedApparent", 7.0, MetaInfo(units="m/s"))

        assert boat.device_class == "speed"
        assert wind.device_class == "wind_speed"
        assert wind.icon == "mdi:weather-windy"
        assert boat.unit == wind.unit == "m/s"

    @pytest.mark.parametrize("units,device_class", [
        ("m", "distance"),
        ("V", "voltage"),
        ("A", "current"),
        ("Pa", "pressure"),
    ])
    def test_identity_units(self, units, device_class):
        md = infer("some.path", 1.0, MetaInfo(units=units))

        assert md.device_class == device_class
        assert md.unit == units
        assert md.transform is identity

    def test_meta_beats_path_heuristics(self):
        """A path that says 'temperature' but reports volts is a voltage"""
        md = infer("propulsion.main.temperatureSensor", 12.1, MetaInfo(units="V"))
        assert md.device_class == "voltage"

    def test_unknown_units_fall_back(self):
        assert lookup_unit("ratio", "tanks.fuel.0.currentLevel") is None
        md = infer("environment.water.temperature", 290.0, MetaInfo(units="furlongs"))

        assert md.device_class == "temperature"
        assert md.unit == "K"
        assert md.transform is identity


class TestHeuristicRules:
    """Ordered path rules used when meta is missing"""

    @pytest.mark.parametrize("path,rule", [
        ("environment.water.temperature", "temperature"),
        ("navigation.speedThroughWater", "speed"),
        ("performance.velocityMadeGoodSpeed", "speed"),
        ("environment.depth.belowTransducer", "distance"),
        ("navigation.log", "distance"),
        ("electrical.batteries.0.voltage", "voltage"),
        ("electrical.batteries.0.current", "current"),
        ("environment.outside.pressure", "pressure"),
        ("environment.wind.angleApparent", "angle"),
        ("navigation.headingTrue", "angle"),
        ("navigation.courseOverGroundTrue", "angle"),
        ("steering.rudderAngle", "angle"),
        ("navigation.position", "position"),
        ("navigation.gnss.satellites", "satellites"),
        ("environment.wind.gust", "wind"),
    ])
    def test_rule_match(self, path, rule):
        assert match_rule(path).name == rule

    def test_current_negative_lookahead(self):
        """'currentLevel' of a tank is not an electrical current"""
        assert match_rule("tanks.fuel.0.currentLevel") is None
        md = infer("tanks.fuel.0.currentLevel", 0.5)
        assert md.device_class is None
        assert md.icon == DEFAULT_ICON

    def test_speed_before_wind(self):
        """Rule order decides: wind speeds without meta hit the speed rule first"""
        assert match_rule("environment.wind.speedTrue").name == "speed"

    def test_wind_direction_is_an_angle(self):
        assert match_rule("environment.wind.directionTrue").name == "angle"

    def test_temperature_before_pressure(self):
        assert match_rule("propulsion.main.oilTemperature.pressure").name == "pressure"
        assert match_rule("propulsion.main.temperature.pressure").name == "temperature"

    def test_rule_order_is_documented_order(self):
        names = [r.name for r in HEURISTIC_RULES]
        assert names[:7] == ["temperature", "speed", "distance", "voltage", "current", "pressure", "angle"]
        assert names.index("position") < names.index("satellites") < names.index("wind")

    def test_heuristic_has_no_transform(self):
        md = infer("navigation.headingTrue", 1.0)
        assert md.unit == "rad"
        assert md.transform is identity


class TestFallbacks:
    def test_boolean_toggle_icon(self):
        md = infer("electrical.switches.bank.1.on", True)

        assert md.icon == BOOLEAN_ICON
        assert md.device_class is None
        assert md.unit is None

    def test_generic_gauge(self):
        md = infer("navigation.gnss.type", "GPS")

        assert md.icon == DEFAULT_ICON
        assert md.device_class is None
        assert md.unit is None


class TestTransformFor:
    def test_no_meta(self):
        assert transform_for("environment.water.temperature", None) is identity

    def test_applies_meta_transform(self):
        t = transform_for("environment.water.temperature", MetaInfo(units="K"), "°C")
        assert t(273.15) == pytest.approx(0.0)

    def test_configured_source_unit_is_not_converted(self):
        """A sensor configured to stay in Kelvin gets no transform"""
        assert transform_for("environment.water.temperature", MetaInfo(units="K"), "K") is identity


class TestTemperatureSanity:
    def test_in_range(self, caplog):
        with caplog.at_level(logging.WARNING, logger=inference.__name__):
            assert check_temperature("environment.water.temperature", 18.0) is True
        assert caplog.records == []

    def test_out_of_range_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger=inference.__name__):
            assert check_temperature("environment.water.temperature", 293.15) is False
        assert any("outside" in r.getMessage() for r in caplog.records)
