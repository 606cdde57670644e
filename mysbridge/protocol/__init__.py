"""MySensors serial protocol: enumerations, wire codec and bus topics."""

from . import protocol
from .message import Message, MessageDecodeError, MessageError, decode_message
from .topics import TopicRoute, message_topic, parse_topic, topic_path

__all__ = [
    "Message",
    "MessageDecodeError",
    "MessageError",
    "TopicRoute",
    "decode_message",
    "message_topic",
    "parse_topic",
    "protocol",
    "topic_path",
]
