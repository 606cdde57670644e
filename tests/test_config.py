"""Tests for configuration loading and validation."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from mysbridge.config.model import RuntimeConfig
from mysbridge.config.settings import load_runtime_config, parse_broker, parse_listen
from mysbridge.const import DEFAULT_METRICS_PORT, DEFAULT_MQTT_TOPIC


def test_defaults_without_config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    config = load_runtime_config([])

    assert config.serial_port == "/dev/ttyUSB0"
    assert config.serial_baud == 115200
    assert config.mqtt_topic == DEFAULT_MQTT_TOPIC
    assert config.mqtt_client_id == "mysensors-"
    assert config.metrics_port == DEFAULT_METRICS_PORT
    assert not config.mqtt_enabled
    assert config.config_source == "defaults"


def test_config_file_and_flag_precedence(tmp_path: Path) -> None:
    path = tmp_path / "mysensors.cfg"
    path.write_text(
        json.dumps(
            {
                "serial_port": "/dev/ttyACM0",
                "mqtt_topic": "/home//sensors/",
                "status_interval": 0,
                "Locations": {"4": "kitchen"},
                "legacy_option": True,
            }
        )
    )

    config = load_runtime_config(["--config_file", str(path), "--port", "/dev/ttyS1", "--baud", "9600"])

    assert config.serial_port == "/dev/ttyS1"
    assert config.serial_baud == 9600
    assert config.mqtt_topic == "home/sensors"
    assert config.status_interval == 0
    assert config.locations == {"4": "kitchen"}
    assert config.config_source == str(path)


def test_original_flag_aliases(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    config = load_runtime_config(
        [
            "--broker",
            "tcp://192.168.0.1:1884",
            "--topic_prefix",
            "house",
            "--client_prefix",
            "bridge-",
            "--listen",
            ":9100",
            "--state_file",
            "net.json",
        ]
    )

    assert config.mqtt_host == "192.168.0.1"
    assert config.mqtt_port == 1884
    assert config.mqtt_enabled
    assert config.mqtt_topic == "house"
    assert config.mqtt_client_id == "bridge-"
    assert config.metrics_host == "0.0.0.0"
    assert config.metrics_port == 9100
    assert config.state_file == "net.json"


def test_explicit_config_file_must_exist(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="does not exist"):
        load_runtime_config(["--config", str(tmp_path / "absent.cfg")])


def test_malformed_config_file(tmp_path: Path) -> None:
    path = tmp_path / "mysensors.cfg"
    path.write_text("{nope")

    with pytest.raises(ValueError, match="malformed config file"):
        load_runtime_config(["--config", str(path)])


@pytest.mark.parametrize(
    "payload",
    [
        {"serial_baud": 12345},
        {"mqtt_queue_limit": 0},
        {"snapshot_interval": -1},
        {"mqtt_topic": "///"},
        {"metrics_port": 70000},
        {"locations": {"kitchen": "4"}},
    ],
)
def test_invalid_values_raise_value_error(tmp_path: Path, payload: dict[str, object]) -> None:
    path = tmp_path / "mysensors.cfg"
    path.write_text(json.dumps(payload))

    with pytest.raises(ValueError, match="invalid configuration"):
        load_runtime_config(["--config", str(path)])


def test_parse_broker() -> None:
    assert parse_broker("tcp://broker:1883") == {"mqtt_host": "broker", "mqtt_port": 1883}
    assert parse_broker("broker") == {"mqtt_host": "broker", "mqtt_port": 1883}
    assert parse_broker("ssl://broker") == {"mqtt_host": "broker", "mqtt_port": 8883, "mqtt_tls": True}
    assert parse_broker("") == {"mqtt_host": ""}
    with pytest.raises(ValueError):
        parse_broker("tcp://:1883")


def test_parse_listen() -> None:
    assert parse_listen("127.0.0.1:9001") == {"metrics_host": "127.0.0.1", "metrics_port": 9001}
    with pytest.raises(ValueError):
        parse_listen("9001")


def test_model_validation() -> None:
    with pytest.raises(ValueError):
        RuntimeConfig(reconnect_delay=0)
    with pytest.raises(ValueError):
        RuntimeConfig(serial_port=" ")

    assert RuntimeConfig(mqtt_topic="a//b/").mqtt_topic == "a/b"
