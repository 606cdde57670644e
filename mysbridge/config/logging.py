"""Logging configuration for the mysbridge daemon.

Every record becomes one JSON object (``ts``, ``level``, ``logger``,
``message`` plus optional ``extra`` and ``exception``) written to syslog when
a socket is available, otherwise to stderr.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from enum import Enum
from logging import Handler
from logging.config import dictConfig
from logging.handlers import SysLogHandler
from pathlib import Path
from typing import Any

import msgspec

from ..const import LOG_STREAM_ENV, SYSLOG_SOCKET as SYSLOG_SOCKET_PATH
from ..util import format_hex
from .model import RuntimeConfig

SYSLOG_SOCKET = Path(SYSLOG_SOCKET_PATH)
SYSLOG_SOCKET_FALLBACK = Path("/var/run/log")
SYSLOG_IDENT = "mysbridge "

# Third-party loggers that are chatty at INFO.
QUIET_LOGGERS = ("transitions", "mysbridge.mqtt.client")

_RESERVED_LOG_KEYS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def _serialise_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (bytes, bytearray)):
        return format_hex(value)
    return str(value)


class StructuredLogFormatter(logging.Formatter):
    """Emit JSON per log line while trimming the shared prefix."""

    PREFIX = "mysbridge."

    def format(self, record: logging.LogRecord) -> str:
        logger_name = record.name
        if logger_name.startswith(self.PREFIX):
            logger_name = logger_name[len(self.PREFIX) :]

        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": logger_name,
            "message": record.getMessage(),
        }

        extras = {
            key: _serialise_value(value)
            for key, value in record.__dict__.items()
            if key not in _RESERVED_LOG_KEYS and not key.startswith("_")
        }
        if extras:
            payload["extra"] = extras

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return msgspec.json.encode(payload).decode("utf-8")


def _syslog_socket() -> Path | None:
    for candidate in (SYSLOG_SOCKET, SYSLOG_SOCKET_FALLBACK):
        if candidate.exists():
            return candidate
    return None


def _build_handler() -> Handler:
    if os.environ.get(LOG_STREAM_ENV):
        return logging.StreamHandler()

    socket_path = _syslog_socket()
    if socket_path is None:
        return logging.StreamHandler()
    syslog_handler = SysLogHandler(address=str(socket_path), facility=SysLogHandler.LOG_DAEMON)
    syslog_handler.ident = SYSLOG_IDENT
    return syslog_handler


def logging_config(config: RuntimeConfig) -> dict[str, Any]:
    """Build the ``dictConfig`` payload for ``config``."""
    level_name = "DEBUG" if config.debug_logging else "INFO"
    quiet_level = "DEBUG" if config.debug_logging else "WARNING"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": "mysbridge.config.logging.StructuredLogFormatter",
            }
        },
        "handlers": {
            "mysbridge": {
                "()": _build_handler,
                "level": level_name,
                "formatter": "structured",
            }
        },
        "loggers": {name: {"level": quiet_level} for name in QUIET_LOGGERS},
        "root": {
            "level": level_name,
            "handlers": ["mysbridge"],
        },
    }


def configure_logging(config: RuntimeConfig) -> None:
    """Configure root logging based on runtime settings."""
    settings = logging_config(config)
    dictConfig(settings)
    logging.getLogger("mysbridge").info(
        "Logging configured at level %s",
        settings["root"]["level"],
        extra={"config_source": config.config_source},
    )
