"""Tests de identidad (client id, topics) y parseo de la salida del muestreador."""

import json
import subprocess
import sys
from unittest.mock import MagicMock, patch

import pytest

from device_telemetry.core.domain.identity import Identity
from device_telemetry.errors import ConfigError, MalformedSampleError, SamplerExecutionError
from device_telemetry.sampler.parser import parse_sample
from device_telemetry.sampler.runner import SensorSampler


# =============================================================================
# IDENTIDAD
# =============================================================================

class TestIdentity:
    """Client id y topics son funciones puras de la identidad."""

    def test_scenario_topics_and_client_id(self, identity):
        assert identity.publish_topic == "/devices/d1/events"
        assert identity.config_topic == "/devices/d1/config"
        assert identity.client_id == "projects/p/locations/us-central1/registries/r1/devices/d1"

    def test_state_message_type(self):
        ident = Identity("p", "us-central1", "r", "d", message_type="state")

        assert ident.publish_topic == "/devices/d/state"

    def test_equal_identities_derive_equal_names(self):
        a = Identity("p", "us-central1", "r", "d")
        b = Identity("p", "us-central1", "r", "d")

        assert a.client_id == b.client_id
        assert a.publish_topic == b.publish_topic == "/devices/d/events"

    def test_names_are_cached(self, identity):
        assert identity.client_id is identity.client_id

    def test_invalid_message_type(self):
        with pytest.raises(ConfigError):
            Identity("p", "us-central1", "r", "d", message_type="telemetry")

    def test_missing_device_id(self):
        with pytest.raises(ConfigError):
            Identity("p", "us-central1", "r", "  ")


# =============================================================================
# PARSEO DE MUESTRAS
# =============================================================================

class TestParseSample:
    """Línea timestamp,temperature,humidity,moisture,light."""

    def test_valid_sample(self):
        record = parse_sample("2024-01-01T00:00:00Z,21.5,55.0,300,120")

        assert record.timestamp == "2024-01-01T00:00:00Z"
        assert record.temperature == 21.5
        assert record.humidity == 55.0
        assert record.moisture == 300
        assert record.light == 120

    def test_trailing_newline(self):
        record = parse_sample("2024-01-01 10:00,20,40,1,2\r\n")

        assert record.light == 2

    def test_wrong_field_count(self):
        with pytest.raises(MalformedSampleError) as exc:
            parse_sample("bad,data")

        assert exc.value.raw == "bad,data"

    def test_non_numeric_field(self):
        with pytest.raises(MalformedSampleError):
            parse_sample("2024-01-01T00:00:00Z,warm,55.0,300,120")

    def test_nan_field(self):
        with pytest.raises(MalformedSampleError) as exc:
            parse_sample("2024-01-01T00:00:00Z,nan,55.0,300,120")

        assert "temperature" in str(exc.value)

    def test_infinite_field(self):
        with pytest.raises(MalformedSampleError):
            parse_sample("2024-01-01T00:00:00Z,21.5,inf,300,120")

    def test_empty_output(self):
        with pytest.raises(MalformedSampleError):
            parse_sample("")

    def test_payload_format(self, identity):
        record = parse_sample("2024-01-01T00:00:00Z,21.5,55.0,300,120")
        payload = json.loads(record.to_json(identity))

        assert payload == {
            "registryid": "r1",
            "deviceid": "d1",
            "timestamp": "2024-01-01T00:00:00Z",
            "temperature": 21.5,
            "humidity": 55.0,
            "moisture": 300,
            "light": 120,
        }


# =============================================================================
# MUESTREADOR
# =============================================================================

class TestSensorSampler:
    """Ejecución del proceso externo."""

    def test_returns_stdout_without_newlines(self):
        sampler = SensorSampler([sys.executable, "-c", "print('2024-01-01,1,2,3,4')"])

        assert sampler.sample() == "2024-01-01,1,2,3,4"

    def test_string_command_is_split(self):
        sampler = SensorSampler("python ./pythin-grovepi/script.py")

        assert sampler.command == ["python", "./pythin-grovepi/script.py"]

    def test_non_zero_exit(self):
        sampler = SensorSampler([sys.executable, "-c", "import sys; sys.stderr.write('i2c'); sys.exit(3)"])

        with pytest.raises(SamplerExecutionError) as exc:
            sampler.sample()

        assert exc.value.returncode == 3
        assert "i2c" in exc.value.stderr

    def test_missing_executable(self):
        sampler = SensorSampler(["/nonexistent/sensor-script"])

        with pytest.raises(SamplerExecutionError):
            sampler.sample()

    def test_timeout(self):
        sampler = SensorSampler(["sensor"], timeout=1.0)

        with patch(
            "device_telemetry.sampler.runner.subprocess.run",
            MagicMock(side_effect=subprocess.TimeoutExpired(cmd="sensor", timeout=1.0)),
        ):
            with pytest.raises(SamplerExecutionError) as exc:
                sampler.sample()

        assert "timed out" in str(exc.value)
