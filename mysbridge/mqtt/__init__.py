"""MQTT v5 property builders for forwarded sensor messages."""

from __future__ import annotations

from typing import TYPE_CHECKING

from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.properties import Properties

if TYPE_CHECKING:
    from mysbridge.mqtt.messages import QueuedPublish

__all__ = [
    "build_mqtt_connect_properties",
    "build_mqtt_properties",
]


def build_mqtt_properties(message: QueuedPublish) -> Properties | None:
    """PUBLISH properties for ``message``, or None when it carries none."""
    if message.content_type is None and not message.user_properties:
        return None

    props = Properties(PacketTypes.PUBLISH)
    if message.content_type is not None:
        props.ContentType = message.content_type
    if message.user_properties:
        props.UserProperty = list(message.user_properties)
    return props


def build_mqtt_connect_properties() -> Properties:
    # Every reconnect uses a new client id, so broker sessions are never resumed.
    props = Properties(PacketTypes.CONNECT)
    props.SessionExpiryInterval = 0
    props.RequestProblemInformation = 1
    return props
