"""Marshmallow schema for RuntimeConfig validation."""

from __future__ import annotations

from typing import Any, Dict

from marshmallow import EXCLUDE, Schema, ValidationError, fields, post_load, pre_load, validate, validates_schema

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
from .model import RuntimeConfig


class RuntimeConfigSchema(Schema):
    """Declarative validation schema for the bridge configuration."""

    class Meta:
        unknown = EXCLUDE

    # Serial
    serial_port = fields.Str(load_default=DEFAULT_SERIAL_PORT, validate=validate.Length(min=1))
    serial_baud = fields.Int(load_default=DEFAULT_SERIAL_BAUD, validate=validate.OneOf(sorted(SUPPORTED_BAUDRATES)))
    state_file = fields.Str(load_default=DEFAULT_STATE_FILE, validate=validate.Length(min=1))
    snapshot_interval = fields.Int(load_default=DEFAULT_SNAPSHOT_INTERVAL, validate=validate.Range(min=0))
    status_interval = fields.Int(load_default=DEFAULT_STATUS_INTERVAL, validate=validate.Range(min=0))

    # MQTT
    mqtt_host = fields.Str(load_default=DEFAULT_MQTT_HOST)
    mqtt_port = fields.Int(load_default=DEFAULT_MQTT_PORT, validate=validate.Range(min=1, max=65535))
    mqtt_user = fields.Str(load_default=None, allow_none=True)
    mqtt_pass = fields.Str(load_default=None, allow_none=True)
    mqtt_tls = fields.Bool(load_default=False)
    mqtt_cafile = fields.Str(load_default=None, allow_none=True)
    mqtt_topic = fields.Str(load_default=DEFAULT_MQTT_TOPIC, validate=validate.Length(min=1))
    mqtt_client_id = fields.Str(load_default=DEFAULT_MQTT_CLIENT_ID, validate=validate.Length(min=1))
    mqtt_queue_limit = fields.Int(load_default=DEFAULT_MQTT_QUEUE_LIMIT, validate=validate.Range(min=1))
    reconnect_delay = fields.Int(load_default=DEFAULT_RECONNECT_DELAY, validate=validate.Range(min=1))

    # Metrics
    metrics_enabled = fields.Bool(load_default=DEFAULT_METRICS_ENABLED)
    metrics_host = fields.Str(load_default=DEFAULT_METRICS_HOST)
    metrics_port = fields.Int(load_default=DEFAULT_METRICS_PORT, validate=validate.Range(min=0, max=65535))

    # Network
    locations = fields.Dict(keys=fields.Str(), values=fields.Str(), load_default=dict)

    # System
    debug_logging = fields.Bool(load_default=DEFAULT_DEBUG_LOGGING)
    config_source = fields.Str(load_default="defaults")

    @pre_load
    def normalize_keys(self, data: Dict[str, Any], **kwargs: Any) -> Dict[str, Any]:
        data = dict(data)
        legacy_locations = data.pop("Locations", None)
        if legacy_locations is not None and "locations" not in data:
            data["locations"] = legacy_locations
        if isinstance(data.get("mqtt_topic"), str):
            # An all-slash prefix becomes "" and fails the length check.
            data["mqtt_topic"] = normalize_prefix(data["mqtt_topic"])
        return data

    @validates_schema
    def validate_locations(self, data: Dict[str, Any], **kwargs: Any) -> None:
        invalid = [key for key in data.get("locations", {}) if not key.isdigit()]
        if invalid:
            raise ValidationError(
                f"location keys must be node ids, got {', '.join(sorted(invalid))}",
                field_name="locations",
            )

    @post_load
    def make_config(self, data: Dict[str, Any], **kwargs: Any) -> RuntimeConfig:
        return RuntimeConfig(**data)
