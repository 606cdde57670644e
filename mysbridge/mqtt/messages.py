"""Bus envelopes for routed sensor messages."""

from __future__ import annotations

from enum import Enum

import msgspec

from mysbridge.protocol.message import Message
from mysbridge.protocol.protocol import subtype_name
from mysbridge.protocol.topics import message_topic

UserProperty = tuple[str, str]


class QueuedPublish(msgspec.Struct, frozen=True):
    """MQTT publish waiting in the bus queue."""

    topic_name: str
    payload: bytes
    qos: int = 0
    retain: bool = True
    content_type: str | None = None
    user_properties: tuple[UserProperty, ...] = ()

    @classmethod
    def from_message(cls, prefix: str, message: Message) -> QueuedPublish:
        """Wrap a routed message: raw payload, QoS 0, retained.

        The symbolic type and subtype travel as MQTT v5 user properties; the
        topic itself only carries wire integers.
        """
        msg_type = message.msg_type.name if isinstance(message.msg_type, Enum) else str(message.msg_type)
        return cls(
            topic_name=message_topic(prefix, message),
            payload=message.payload,
            user_properties=(
                ("type", msg_type),
                ("subtype", subtype_name(message.subtype)),
            ),
        )


__all__ = ["QueuedPublish", "UserProperty"]
