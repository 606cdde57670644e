"""Built-in defaults for the mysbridge daemon."""

from __future__ import annotations

import ssl
from typing import Final

DEFAULT_SERIAL_PORT: Final[str] = "/dev/ttyUSB0"
DEFAULT_SERIAL_BAUD: Final[int] = 115200
DEFAULT_STATE_FILE: Final[str] = ".mysensors-state"
DEFAULT_CONFIG_FILE: Final[str] = "mysensors.cfg"
DEFAULT_SNAPSHOT_INTERVAL: Final[int] = 300
DEFAULT_STATUS_INTERVAL: Final[int] = 30

DEFAULT_MQTT_HOST: Final[str] = ""
DEFAULT_MQTT_PORT: Final[int] = 1883
DEFAULT_MQTT_TOPIC: Final[str] = "mysensors"
DEFAULT_MQTT_CLIENT_ID: Final[str] = "mysensors-"
DEFAULT_MQTT_QUEUE_LIMIT: Final[int] = 256
DEFAULT_RECONNECT_DELAY: Final[int] = 5
MQTT_TLS_MIN_VERSION: Final[ssl.TLSVersion] = ssl.TLSVersion.TLSv1_2

DEFAULT_METRICS_ENABLED: Final[bool] = True
DEFAULT_METRICS_HOST: Final[str] = "0.0.0.0"
DEFAULT_METRICS_PORT: Final[int] = 9001

DEFAULT_DEBUG_LOGGING: Final[bool] = False

SUPERVISOR_DEFAULT_MIN_BACKOFF: Final[float] = 1.0
SUPERVISOR_DEFAULT_MAX_BACKOFF: Final[float] = 30.0

SYSLOG_SOCKET: Final[str] = "/dev/log"
LOG_STREAM_ENV: Final[str] = "MYSBRIDGE_LOG_STREAM"

SUPPORTED_BAUDRATES: Final[frozenset[int]] = frozenset(
    {
        1200,
        2400,
        4800,
        9600,
        19200,
        38400,
        57600,
        115200,
        230400,
        460800,
        500000,
        921600,
        1000000,
    }
)
