"""Periodic status report of the sensor network."""

from __future__ import annotations

import asyncio
import logging

from .network import Network

logger = logging.getLogger("mysbridge.status")


def log_status(network: Network) -> None:
    logger.info(">>> status")
    for line in network.status_lines():
        logger.info(line)
    logger.info("<<< status")


async def status_reporter(network: Network, interval: int) -> None:
    """Log the network status now and then every ``interval`` seconds."""

    try:
        while True:
            log_status(network)
            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        logger.info("Status reporter task cancelled.")
        raise
