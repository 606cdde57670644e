"""Wire codec for MySensors serial messages.

A message travels as one ASCII line::

    node-id;child-sensor-id;type;ack;subtype;payload\\n

The five leading fields are decimal integers. The subtype integer is only
interpreted after the type has been decoded, because presentation, set/req
and internal subtypes reuse the same numeric range.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Final

import msgspec

from . import protocol
from .protocol import (
    SUBTYPE_ENUMS,
    AckType,
    MessageType,
    SubType,
    subtype_name,
)

_FIELD_NAMES: Final[tuple[str, ...]] = (
    "node_id",
    "child_sensor_id",
    "type",
    "ack",
    "subtype",
)


class MessageError(ValueError):
    """Base class for protocol level message errors."""


class MessageDecodeError(MessageError):
    """Raised when a wire line cannot be decoded into a :class:`Message`."""

    def __init__(self, reason: str, raw: bytes = b"") -> None:
        super().__init__(reason)
        self.reason = reason
        self.raw = raw


class Message(msgspec.Struct, frozen=True):
    """A single MySensors protocol unit."""

    node_id: int
    child_sensor_id: int
    msg_type: MessageType | int
    ack: AckType | int = AckType.NOACK
    subtype: SubType | None = None
    payload: bytes = b""

    def __str__(self) -> str:
        type_label = self.msg_type.name.lower() if isinstance(self.msg_type, MessageType) else str(self.msg_type)
        ack_label = self.ack.name.lower() if isinstance(self.ack, AckType) else str(self.ack)
        return "%d:%d:%s:%s:%s:%s" % (
            self.node_id,
            self.child_sensor_id,
            type_label,
            ack_label,
            subtype_name(self.subtype),
            self.text,
        )

    @property
    def text(self) -> str:
        return self.payload.decode(protocol.PAYLOAD_ENCODING)

    def reply(self, *, subtype: SubType | None = None, payload: bytes | str) -> Message:
        """Copy this message, overwriting subtype and payload only."""
        if isinstance(payload, str):
            payload = payload.encode(protocol.PAYLOAD_ENCODING)
        return msgspec.structs.replace(
            self,
            subtype=self.subtype if subtype is None else subtype,
            payload=payload,
        )

    def encode(self) -> bytes:
        """Serialise to the wire line, terminator included."""
        subtype = 0 if self.subtype is None else int(self.subtype)
        header = "%d;%d;%d;%d;%d;" % (
            self.node_id,
            self.child_sensor_id,
            int(self.msg_type),
            int(self.ack),
            subtype,
        )
        return header.encode("ascii") + self.payload + protocol.LINE_TERMINATOR


def _parse_field(name: str, raw: bytes, line: bytes) -> int:
    # bytes.isdigit() only accepts ASCII digits: no sign, whitespace or underscores.
    if not raw or not raw.isdigit():
        raise MessageDecodeError(f"invalid {name} field {raw!r}", line)
    value = int(raw)
    if value > protocol.MAX_WIRE_ID:
        raise MessageDecodeError(f"{name} out of range: {value}", line)
    return value


def _coerce_enum(enum_type: type[IntEnum], value: int) -> IntEnum | int:
    try:
        return enum_type(value)
    except ValueError:
        return value


def resolve_subtype(msg_type: MessageType | int, value: int) -> SubType | None:
    """Interpret a wire subtype according to the already decoded type.

    Unknown types leave the subtype unset. Stream messages and subtype values
    newer than this implementation are kept as plain integers.
    """
    if not isinstance(msg_type, MessageType):
        return None
    enum_type = SUBTYPE_ENUMS.get(msg_type)
    if enum_type is None:
        return value
    return _coerce_enum(enum_type, value)


def decode_message(line: bytes) -> Message:
    """Decode one wire line into a :class:`Message`."""
    data = line[:-1] if line.endswith(protocol.LINE_TERMINATOR) else line
    parts = data.split(protocol.FIELD_SEPARATOR)
    if len(parts) != protocol.MESSAGE_FIELD_COUNT:
        raise MessageDecodeError(
            f"invalid format, {len(parts)} fields (expected {protocol.MESSAGE_FIELD_COUNT})",
            line,
        )

    node_id, child_id, raw_type, raw_ack, raw_subtype = (
        _parse_field(name, raw, line) for name, raw in zip(_FIELD_NAMES, parts[:5])
    )
    msg_type = _coerce_enum(MessageType, raw_type)

    return Message(
        node_id=node_id,
        child_sensor_id=child_id,
        msg_type=msg_type,
        ack=_coerce_enum(AckType, raw_ack),
        subtype=resolve_subtype(msg_type, raw_subtype),
        payload=bytes(parts[5]),
    )


__all__ = [
    "Message",
    "MessageDecodeError",
    "MessageError",
    "decode_message",
    "resolve_subtype",
]
