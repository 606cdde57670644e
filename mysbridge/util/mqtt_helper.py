"""TLS setup for the MQTT bus client."""

from __future__ import annotations

import logging
import ssl
from pathlib import Path

from mysbridge.config.settings import RuntimeConfig
from mysbridge.const import MQTT_TLS_MIN_VERSION

logger = logging.getLogger("mysbridge.util.mqtt")


def configure_tls_context(config: RuntimeConfig) -> ssl.SSLContext | None:
    """Create an ssl.SSLContext for the broker, or None when TLS is off."""
    if not config.mqtt_tls:
        return None

    try:
        if config.mqtt_cafile:
            if not Path(config.mqtt_cafile).exists():
                raise RuntimeError(f"MQTT TLS CA file missing: {config.mqtt_cafile}")
            context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH, cafile=config.mqtt_cafile)
        else:
            context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)

        context.minimum_version = MQTT_TLS_MIN_VERSION
        return context
    except (OSError, ssl.SSLError) as exc:
        raise RuntimeError(f"TLS setup failed: {exc}") from exc
