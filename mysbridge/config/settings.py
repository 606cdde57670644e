"""Settings loader for the mysbridge daemon.

Configuration is layered, lowest precedence first: built-in defaults, an
optional JSON config file, then command-line flags. The historical flag
names (``--port``, ``--broker``, ``--listen``...) are accepted as aliases.
"""

from __future__ import annotations

import argparse
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import msgspec
from marshmallow import ValidationError

from ..const import DEFAULT_CONFIG_FILE, DEFAULT_METRICS_HOST, DEFAULT_MQTT_PORT
from .model import RuntimeConfig
from .schema import RuntimeConfigSchema

logger = logging.getLogger("mysbridge.config")

_TLS_SCHEMES = frozenset({"ssl", "tls", "mqtts"})
_MQTT_TLS_PORT = 8883


def parse_broker(value: str) -> dict[str, Any]:
    """Split a ``tcp://host:port`` broker address into config keys."""
    candidate = value.strip()
    if not candidate:
        return {"mqtt_host": ""}
    if "://" not in candidate:
        candidate = f"tcp://{candidate}"
    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError as exc:
        raise ValueError(f"invalid broker address {value!r}") from exc
    if not parts.hostname:
        raise ValueError(f"invalid broker address {value!r}")
    tls = parts.scheme.lower() in _TLS_SCHEMES
    result: dict[str, Any] = {
        "mqtt_host": parts.hostname,
        "mqtt_port": port or (_MQTT_TLS_PORT if tls else DEFAULT_MQTT_PORT),
    }
    if tls:
        result["mqtt_tls"] = True
    return result


def parse_listen(value: str) -> dict[str, Any]:
    """Split a ``host:port`` listen address; an empty host binds all interfaces."""
    host, sep, port = value.strip().rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid listen address {value!r}")
    return {
        "metrics_host": host.strip("[]") or DEFAULT_METRICS_HOST,
        "metrics_port": int(port),
    }


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mysbridge",
        description="Bridge a MySensors serial gateway to Prometheus and MQTT.",
        argument_default=argparse.SUPPRESS,
    )
    parser.add_argument("--config", "--config_file", dest="config_file", help="JSON config file")
    parser.add_argument("--serial-port", "--port", dest="serial_port", help="Serial port to open")
    parser.add_argument("--serial-baud", "--baud", dest="serial_baud", type=int, help="Baud rate")
    parser.add_argument("--state-file", "--state_file", dest="state_file", help="File to save/read state")
    parser.add_argument("--snapshot-interval", dest="snapshot_interval", type=int)
    parser.add_argument("--status-interval", dest="status_interval", type=int)
    parser.add_argument("--broker", dest="broker", help="MQTT broker address, eg tcp://192.168.0.1:1883")
    parser.add_argument("--mqtt-host", dest="mqtt_host")
    parser.add_argument("--mqtt-port", dest="mqtt_port", type=int)
    parser.add_argument("--mqtt-user", dest="mqtt_user")
    parser.add_argument("--mqtt-pass", dest="mqtt_pass")
    parser.add_argument("--mqtt-tls", dest="mqtt_tls", action="store_true")
    parser.add_argument("--mqtt-cafile", dest="mqtt_cafile")
    parser.add_argument("--mqtt-topic", "--topic_prefix", dest="mqtt_topic", help="Prefix for MQTT topic")
    parser.add_argument(
        "--mqtt-client-id", "--client_prefix", dest="mqtt_client_id", help="Prefix for MQTT client name"
    )
    parser.add_argument("--mqtt-queue-limit", dest="mqtt_queue_limit", type=int)
    parser.add_argument("--reconnect-delay", dest="reconnect_delay", type=int)
    parser.add_argument("--listen", dest="listen", help="Metrics address to listen on, eg :9001")
    parser.add_argument("--no-metrics", dest="metrics_enabled", action="store_false")
    parser.add_argument("--debug", dest="debug_logging", action="store_true")
    return parser


def _read_config_file(path: Path, *, explicit: bool) -> dict[str, Any]:
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        if explicit:
            raise ValueError(f"config file {path} does not exist") from None
        logger.info("Config file %s not found; using defaults.", path)
        return {}
    except OSError as exc:
        raise ValueError(f"cannot read config file {path}: {exc}") from exc
    try:
        return msgspec.json.decode(data, type=dict[str, Any])
    except (msgspec.DecodeError, msgspec.ValidationError) as exc:
        raise ValueError(f"malformed config file {path}: {exc}") from exc


def _cli_overrides(options: dict[str, Any]) -> dict[str, Any]:
    overrides = dict(options)
    broker = overrides.pop("broker", None)
    if broker is not None:
        overrides = {**parse_broker(broker), **overrides}
    listen = overrides.pop("listen", None)
    if listen is not None:
        overrides = {**parse_listen(listen), **overrides}
    return overrides


def load_runtime_config(argv: Sequence[str] | None = None) -> RuntimeConfig:
    """Load configuration from defaults, the config file and ``argv``.

    Raises ValueError for any invalid setting.
    """
    options = vars(build_arg_parser().parse_args(argv))
    explicit = "config_file" in options
    config_path = Path(options.pop("config_file", DEFAULT_CONFIG_FILE))

    raw = _read_config_file(config_path, explicit=explicit)
    schema = RuntimeConfigSchema()
    unknown = sorted(set(raw) - set(schema.fields) - {"Locations"})
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
    config_source = str(config_path) if raw else "defaults"

    raw.update(_cli_overrides(options))
    raw["config_source"] = config_source
    try:
        return schema.load(raw)
    except ValidationError as exc:
        raise ValueError(f"invalid configuration: {exc.messages}") from exc


__all__ = [
    "RuntimeConfig",
    "build_arg_parser",
    "load_runtime_config",
    "parse_broker",
    "parse_listen",
]
