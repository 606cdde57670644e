"""Data model for mysbridge configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..const import (
    DEFAULT_DEBUG_LOGGING,
    DEFAULT_METRICS_ENABLED,
    DEFAULT_METRICS_HOST,
    DEFAULT_METRICS_PORT,
    DEFAULT_MQTT_CLIENT_ID,
    DEFAULT_MQTT_HOST,
    DEFAULT_MQTT_PORT,
    DEFAULT_MQTT_QUEUE_LIMIT,
    DEFAULT_MQTT_TOPIC,
    DEFAULT_RECONNECT_DELAY,
    DEFAULT_SERIAL_BAUD,
    DEFAULT_SERIAL_PORT,
    DEFAULT_SNAPSHOT_INTERVAL,
    DEFAULT_STATE_FILE,
    DEFAULT_STATUS_INTERVAL,
    SUPPORTED_BAUDRATES,
)
from ..protocol.topics import normalize_prefix

logger = logging.getLogger("mysbridge.config")


@dataclass(slots=True)
class RuntimeConfig:
    """Strongly typed configuration for the daemon."""

    serial_port: str = DEFAULT_SERIAL_PORT
    serial_baud: int = DEFAULT_SERIAL_BAUD
    state_file: str = DEFAULT_STATE_FILE
    snapshot_interval: int = DEFAULT_SNAPSHOT_INTERVAL
    status_interval: int = DEFAULT_STATUS_INTERVAL
    mqtt_host: str = DEFAULT_MQTT_HOST
    mqtt_port: int = DEFAULT_MQTT_PORT
    mqtt_user: str | None = None
    mqtt_pass: str | None = field(default=None, repr=False)
    mqtt_tls: bool = False
    mqtt_cafile: str | None = None
    mqtt_topic: str = DEFAULT_MQTT_TOPIC
    mqtt_client_id: str = DEFAULT_MQTT_CLIENT_ID
    mqtt_queue_limit: int = DEFAULT_MQTT_QUEUE_LIMIT
    reconnect_delay: int = DEFAULT_RECONNECT_DELAY
    metrics_enabled: bool = DEFAULT_METRICS_ENABLED
    metrics_host: str = DEFAULT_METRICS_HOST
    metrics_port: int = DEFAULT_METRICS_PORT
    locations: dict[str, str] = field(default_factory=dict)
    debug_logging: bool = DEFAULT_DEBUG_LOGGING
    config_source: str = "defaults"

    @property
    def mqtt_enabled(self) -> bool:
        return bool(self.mqtt_host)

    def __post_init__(self) -> None:
        if not self.serial_port.strip():
            raise ValueError("serial_port must be a non-empty path")
        if self.serial_baud not in SUPPORTED_BAUDRATES:
            raise ValueError(f"serial_baud {self.serial_baud} is not a supported baud rate")
        if not self.state_file.strip():
            raise ValueError("state_file must be a non-empty path")
        self.snapshot_interval = self._require_non_negative("snapshot_interval", self.snapshot_interval)
        self.status_interval = self._require_non_negative("status_interval", self.status_interval)
        self.mqtt_queue_limit = self._require_positive("mqtt_queue_limit", self.mqtt_queue_limit)
        self.reconnect_delay = self._require_positive("reconnect_delay", self.reconnect_delay)
        self._require_port("mqtt_port", self.mqtt_port, allow_zero=False)
        self._require_port("metrics_port", self.metrics_port, allow_zero=True)
        self.mqtt_topic = self._build_topic_prefix(self.mqtt_topic)
        if not self.mqtt_client_id:
            raise ValueError("mqtt_client_id must not be empty")
        self._validate_locations()
        if self.mqtt_enabled:
            self._warn_transport_security()

    def _validate_locations(self) -> None:
        for key in self.locations:
            if not key.isdigit():
                raise ValueError(f"locations key {key!r} is not a node ID")

    def _warn_transport_security(self) -> None:
        if not self.mqtt_tls:
            logger.warning("MQTT TLS is disabled; MQTT credentials and payloads will be sent in plaintext.")
        elif not self.mqtt_cafile:
            logger.info("MQTT TLS is enabled with no mqtt_cafile configured; using system trust store.")

    @staticmethod
    def _require_positive(name: str, value: int) -> int:
        if value <= 0:
            raise ValueError(f"{name} must be a positive integer")
        return value

    @staticmethod
    def _require_non_negative(name: str, value: int) -> int:
        if value < 0:
            raise ValueError(f"{name} must be zero or a positive integer")
        return value

    @staticmethod
    def _require_port(name: str, value: int, *, allow_zero: bool) -> None:
        low = 0 if allow_zero else 1
        if not low <= value <= 65535:
            raise ValueError(f"{name} must be between {low} and 65535")

    @staticmethod
    def _build_topic_prefix(prefix: str) -> str:
        normalized = normalize_prefix(prefix)
        if not normalized:
            raise ValueError("mqtt_topic must contain at least one segment")
        return normalized
