"""MQTT topic helpers for forwarded sensor messages.

This module is the single place that knows how bus topics are laid out.
Every routed message lands on::

    <prefix>/<node>/<child>/<type>/<ack>/<subtype>

with all trailing segments rendered as wire integers.
"""

from __future__ import annotations

import msgspec

from .message import Message


class TopicRoute(msgspec.Struct, frozen=True):
    """Parsed representation of a sensor message topic."""

    raw: str
    prefix: str
    node_id: int
    child_sensor_id: int
    msg_type: int
    ack: int
    subtype: int


def _split_segments(path: str) -> tuple[str, ...]:
    if not path:
        return ()
    return tuple(segment for segment in path.split("/") if segment)


def normalize_prefix(prefix: str) -> str:
    """Collapse a configured prefix into ``a/b`` form."""
    return "/".join(_split_segments(prefix))


def topic_path(prefix: str, *segments: str | int) -> str:
    """Join prefix and sub-segments into a topic path."""
    parts = list(_split_segments(prefix))
    for segment in segments:
        cleaned = str(segment).strip("/")
        if cleaned:
            parts.append(cleaned)
    if not parts:
        raise ValueError("topic cannot be empty")
    return "/".join(parts)


def message_topic(prefix: str, message: Message) -> str:
    """e.g. mysensors/4/1/1/0/0"""
    subtype = 0 if message.subtype is None else int(message.subtype)
    return topic_path(
        prefix,
        message.node_id,
        message.child_sensor_id,
        int(message.msg_type),
        int(message.ack),
        subtype,
    )


def parse_topic(prefix: str, topic_name: str) -> TopicRoute | None:
    """Parse a sensor message topic back into its numeric fields."""
    prefix_segments = _split_segments(prefix)
    topic_segments = _split_segments(topic_name)
    if len(topic_segments) != len(prefix_segments) + 5:
        return None
    if topic_segments[: len(prefix_segments)] != prefix_segments:
        return None
    remainder = topic_segments[len(prefix_segments) :]
    if not all(segment.isdigit() for segment in remainder):
        return None
    node_id, child_id, msg_type, ack, subtype = (int(segment) for segment in remainder)
    return TopicRoute(
        raw=topic_name,
        prefix="/".join(prefix_segments),
        node_id=node_id,
        child_sensor_id=child_id,
        msg_type=msg_type,
        ack=ack,
        subtype=subtype,
    )


__all__ = [
    "TopicRoute",
    "message_topic",
    "normalize_prefix",
    "parse_topic",
    "topic_path",
]
