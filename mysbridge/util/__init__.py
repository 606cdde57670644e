"""General-purpose helpers for mysbridge."""

from __future__ import annotations

import logging

__all__ = [
    "format_hex",
    "log_hexdump",
]


def format_hex(data: bytes | bytearray) -> str:
    """Render raw bytes as ``[34 3B 31]``; serial lines are never decoded blindly."""
    return f"[{bytes(data).hex(' ').upper()}]"


def log_hexdump(logger_instance: logging.Logger, level: int, label: str, data: bytes) -> None:
    if not logger_instance.isEnabledFor(level):
        return
    logger_instance.log(level, "%s %s (%d bytes)", label, format_hex(data), len(data))
