"""MySensors serial protocol bindings.

Numeric values follow the MySensors serial API. Presentation, set/req and
internal subtypes share the same wire integer space and are only meaningful
once the message type is known.
"""
from __future__ import annotations

from enum import IntEnum
from typing import Final

GATEWAY_ID: Final[int] = 0
NO_CHILD: Final[int] = 255
FIRST_NODE_ID: Final[int] = 1
MAX_NODE_ID: Final[int] = 254
MAX_WIRE_ID: Final[int] = 255

FIELD_SEPARATOR: Final[bytes] = b";"
LINE_TERMINATOR: Final[bytes] = b"\n"
MESSAGE_FIELD_COUNT: Final[int] = 6
MAX_MESSAGE_BYTES: Final[int] = 256

CONFIG_UNIT_METRIC: Final[bytes] = b"M"
REQ_DEFAULT_VALUE: Final[str] = "0"
FLOAT_VALUE_FORMAT: Final[str] = "{:.2f}"
# Payloads are opaque bytes; latin-1 maps every byte to one code point and back.
PAYLOAD_ENCODING: Final[str] = "latin-1"


class MessageType(IntEnum):
    PRESENTATION = 0
    SET = 1
    REQ = 2
    INTERNAL = 3
    STREAM = 4


class AckType(IntEnum):
    NOACK = 0
    ACK = 1


class SubTypePresentation(IntEnum):
    S_DOOR = 0
    S_MOTION = 1
    S_SMOKE = 2
    S_LIGHT = 3
    S_BINARY = 3
    S_DIMMER = 4
    S_COVER = 5
    S_TEMP = 6
    S_HUM = 7
    S_BARO = 8
    S_WIND = 9
    S_RAIN = 10
    S_UV = 11
    S_WEIGHT = 12
    S_POWER = 13
    S_HEATER = 14
    S_DISTANCE = 15
    S_LIGHT_LEVEL = 16
    S_ARDUINO_NODE = 17
    S_ARDUINO_REPEATER_NODE = 18
    S_LOCK = 19
    S_IR = 20
    S_WATER = 21
    S_AIR_QUALITY = 22
    S_CUSTOM = 23
    S_DUST = 24
    S_SCENE_CONTROLLER = 25
    S_RGB_LIGHT = 26
    S_RGBW_LIGHT = 27
    S_COLOR_SENSOR = 28
    S_HVAC = 29
    S_MULTIMETER = 30
    S_SPRINKLER = 31
    S_WATER_LEAK = 32
    S_SOUND = 33
    S_VIBRATION = 34
    S_MOISTURE = 35


class SubTypeSetReq(IntEnum):
    # V_LIGHT and V_DIMMER are deprecated aliases of V_STATUS / V_PERCENTAGE.
    V_TEMP = 0
    V_HUM = 1
    V_STATUS = 2
    V_PERCENTAGE = 3
    V_PRESSURE = 4
    V_FORECAST = 5
    V_RAIN = 6
    V_RAINRATE = 7
    V_WIND = 8
    V_GUST = 9
    V_DIRECTION = 10
    V_UV = 11
    V_WEIGHT = 12
    V_DISTANCE = 13
    V_IMPEDANCE = 14
    V_ARMED = 15
    V_TRIPPED = 16
    V_WATT = 17
    V_KWH = 18
    V_SCENE_ON = 19
    V_SCENE_OFF = 20
    V_HVAC_FLOW_STATE = 21
    V_HVAC_SPEED = 22
    V_LIGHT_LEVEL = 23
    V_VAR1 = 24
    V_VAR2 = 25
    V_VAR3 = 26
    V_VAR4 = 27
    V_VAR5 = 28
    V_UP = 29
    V_DOWN = 30
    V_STOP = 31
    V_IR_SEND = 32
    V_IR_RECEIVE = 33
    V_FLOW = 34
    V_VOLUME = 35
    V_LOCK_STATUS = 36
    V_LEVEL = 37
    V_VOLTAGE = 38
    V_CURRENT = 39
    V_RGB = 40
    V_RGBW = 41
    V_ID = 42
    V_UNIT_PREFIX = 43
    V_HVAC_SETPOINT_COOL = 44
    V_HVAC_SETPOINT_HEAT = 45
    V_HVAC_FLOW_MODE = 46


class SubTypeInternal(IntEnum):
    I_BATTERY_LEVEL = 0
    I_TIME = 1
    I_VERSION = 2
    I_ID_REQUEST = 3
    I_ID_RESPONSE = 4
    I_INCLUSION_MODE = 5
    I_CONFIG = 6
    I_FIND_PARENT = 7
    I_FIND_PARENT_RESPONSE = 8
    I_LOG_MESSAGE = 9
    I_CHILDREN = 10
    I_SKETCH_NAME = 11
    I_SKETCH_VERSION = 12
    I_REBOOT = 13
    I_GATEWAY_READY = 14
    I_REQUEST_SIGNING = 15
    I_GET_NONCE = 16
    I_GET_NONCE_RESPONSE = 17


SubType = SubTypePresentation | SubTypeSetReq | SubTypeInternal | int

SUBTYPE_ENUMS: Final[dict[MessageType, type[IntEnum]]] = {
    MessageType.PRESENTATION: SubTypePresentation,
    MessageType.SET: SubTypeSetReq,
    MessageType.REQ: SubTypeSetReq,
    MessageType.INTERNAL: SubTypeInternal,
}

# Set subtypes stored as floats; every other subtype is kept as a string.
FLOAT_SUBTYPES: Final[frozenset[SubTypeSetReq]] = frozenset(
    {
        SubTypeSetReq.V_TEMP,
        SubTypeSetReq.V_HUM,
        SubTypeSetReq.V_PRESSURE,
        SubTypeSetReq.V_LEVEL,
        SubTypeSetReq.V_VOLUME,
        SubTypeSetReq.V_VOLTAGE,
        SubTypeSetReq.V_LIGHT_LEVEL,
    }
)


def subtype_name(subtype: SubType | None) -> str:
    """Symbolic name of a subtype, falling back to its wire integer."""
    if subtype is None:
        return "UNKNOWN"
    if isinstance(subtype, IntEnum):
        return subtype.name
    return str(int(subtype))
