"""Metrics emission policy and Prometheus exporter for mysbridge."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from http import HTTPStatus
from typing import Final

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, generate_latest

from .protocol.protocol import SubTypeSetReq

logger = logging.getLogger("mysbridge.metrics")

SENSOR_LABELS: Final[tuple[str, ...]] = ("location", "node", "sensor")
PACKET_LABELS: Final[tuple[str, ...]] = ("node", "location")
COUNTER_NAMESPACE: Final[str] = "mysensors"

# Set/req subtypes exported as gauges, keyed to the metric name.
GAUGE_MAP: Final[dict[SubTypeSetReq, str]] = {
    SubTypeSetReq.V_TEMP: "temperature",
    SubTypeSetReq.V_HUM: "humidity",
    SubTypeSetReq.V_PRESSURE: "pressure",
    SubTypeSetReq.V_LEVEL: "light_level",
    SubTypeSetReq.V_LIGHT_LEVEL: "light_percent",
    SubTypeSetReq.V_VOLUME: "volume",
    SubTypeSetReq.V_PERCENTAGE: "battery_level",
    SubTypeSetReq.V_VOLTAGE: "battery_voltage",
}

# Counters live under COUNTER_NAMESPACE so they never collide with a gauge.
COUNTER_MAP: Final[dict[SubTypeSetReq, str]] = {
    SubTypeSetReq.V_VOLUME: "volume",
}


def _help_text(subtype: SubTypeSetReq) -> str:
    return f"MYSENSORS {subtype.name}"


class MetricsPolicy:
    """Turns sensor values into gauges and counters on an owned registry.

    Metric objects are created lazily, once per subtype, the first time a
    value for that subtype is emitted. Subtypes absent from both tables are
    ignored.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        self._gauges: dict[SubTypeSetReq, Gauge] = {}
        self._counters: dict[SubTypeSetReq, Counter] = {}
        self.received_packets = Counter(
            "mysensors_received_packets",
            "Packets received from sensor nodes",
            PACKET_LABELS,
            registry=self.registry,
        )

    def exported(self, subtype: object) -> bool:
        return subtype in GAUGE_MAP or subtype in COUNTER_MAP

    def gauge(self, subtype: SubTypeSetReq) -> Gauge | None:
        name = GAUGE_MAP.get(subtype)
        if name is None:
            return None
        gauge = self._gauges.get(subtype)
        if gauge is None:
            gauge = Gauge(name, _help_text(subtype), SENSOR_LABELS, registry=self.registry)
            self._gauges[subtype] = gauge
        return gauge

    def counter(self, subtype: SubTypeSetReq) -> Counter | None:
        name = COUNTER_MAP.get(subtype)
        if name is None:
            return None
        counter = self._counters.get(subtype)
        if counter is None:
            counter = Counter(
                name,
                _help_text(subtype),
                SENSOR_LABELS,
                namespace=COUNTER_NAMESPACE,
                registry=self.registry,
            )
            self._counters[subtype] = counter
        return counter

    def emit(self, subtype: object, labels: Sequence[str], value: float) -> None:
        """Record ``value`` for ``subtype`` under ``(location, node, sensor)``."""
        if not isinstance(subtype, SubTypeSetReq):
            return
        gauge = self.gauge(subtype)
        if gauge is not None:
            gauge.labels(*labels).set(value)
        counter = self.counter(subtype)
        if counter is not None:
            if value < 0:
                logger.warning("Negative %s value %s not added to counter.", subtype.name, value)
            else:
                counter.labels(*labels).inc(value)

    def count_packet(self, node_id: int, location: str) -> None:
        self.received_packets.labels(str(node_id), location).inc()

    def sample(self, name: str, labels: dict[str, str]) -> float | None:
        return self.registry.get_sample_value(name, labels)


SCRAPE_PATH: Final[str] = "/metrics"


class PrometheusExporter:
    """Answers ``GET /metrics`` with the policy registry, one request per connection."""

    def __init__(self, registry: CollectorRegistry, host: str, port: int) -> None:
        self.registry = registry
        self.host = host
        self.port = port
        self._server: asyncio.Server | None = None

    async def start(self) -> None:
        if self._server is not None:
            return
        self._server = await asyncio.start_server(self._serve_scrape, host=self.host, port=self.port)
        if self.port == 0 and self._server.sockets:
            # Ephemeral port: report the one the kernel picked.
            self.port = self._server.sockets[0].getsockname()[1]
        logger.info("Serving metrics on http://%s:%d%s", self.host, self.port, SCRAPE_PATH)

    async def stop(self) -> None:
        server, self._server = self._server, None
        if server is None:
            return
        server.close()
        await server.wait_closed()

    async def run(self) -> None:
        await self.start()
        assert self._server is not None
        try:
            await self._server.serve_forever()
        finally:
            await self.stop()

    async def _serve_scrape(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            request = await reader.readuntil(b"\r\n\r\n")
            method, _, rest = request.partition(b" ")
            path = rest.split(b" ", 1)[0]
            if method != b"GET":
                status, body, content_type = HTTPStatus.METHOD_NOT_ALLOWED, b"", "text/plain"
            elif path != SCRAPE_PATH.encode():
                status, body, content_type = HTTPStatus.NOT_FOUND, b"", "text/plain"
            else:
                status, body, content_type = HTTPStatus.OK, generate_latest(self.registry), CONTENT_TYPE_LATEST
            head = (
                f"HTTP/1.1 {status.value} {status.phrase}\r\n"
                f"Content-Type: {content_type}\r\n"
                f"Content-Length: {len(body)}\r\n"
                "Connection: close\r\n\r\n"
            )
            writer.write(head.encode("ascii") + body)
            await writer.drain()
        except (asyncio.IncompleteReadError, asyncio.LimitOverrunError, ConnectionError) as exc:
            logger.debug("Metrics scrape aborted: %s", exc)
        finally:
            writer.close()


__all__ = [
    "COUNTER_MAP",
    "GAUGE_MAP",
    "MetricsPolicy",
    "PrometheusExporter",
]
