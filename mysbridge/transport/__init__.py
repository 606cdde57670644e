"""Transports for the gateway link (serial) and the message bus (MQTT)."""

from .serial import (
    LinkClosedError,
    LinkError,
    LinkReadError,
    LinkWriteError,
    SerialLink,
)

__all__ = [
    "LinkClosedError",
    "LinkError",
    "LinkReadError",
    "LinkWriteError",
    "SerialLink",
]
