"""Pytest configuration for mysbridge tests."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from mysbridge.config.model import RuntimeConfig
from mysbridge.metrics import MetricsPolicy
from mysbridge.services import GatewayReadiness, ReplyGate
from mysbridge.state.network import Network

LOCATIONS = {"4": "kitchen"}


@pytest.fixture(autouse=True)
def reset_logging_handlers():
    """Close and remove all logging handlers after each test to prevent ResourceWarnings."""
    yield
    root = logging.getLogger()
    for handler in root.handlers[:]:
        try:
            handler.close()
        except (OSError, RuntimeError):
            pass
        root.removeHandler(handler)


@pytest.fixture()
def runtime_config(tmp_path: Path) -> RuntimeConfig:
    return RuntimeConfig(
        serial_port="/dev/null",
        state_file=str(tmp_path / "state.json"),
        snapshot_interval=0,
        status_interval=0,
        mqtt_host="localhost",
        mqtt_tls=False,
        mqtt_queue_limit=4,
        reconnect_delay=1,
        metrics_enabled=False,
        locations=dict(LOCATIONS),
    )


@pytest.fixture()
def readiness() -> GatewayReadiness:
    return GatewayReadiness()


@pytest.fixture()
def reply_gate(readiness: GatewayReadiness) -> ReplyGate:
    return ReplyGate(readiness)


@pytest.fixture()
def ready_gate(reply_gate: ReplyGate) -> ReplyGate:
    reply_gate.readiness.mark_gateway_ready()
    return reply_gate


@pytest.fixture()
def metrics() -> MetricsPolicy:
    return MetricsPolicy()


@pytest.fixture()
def network(reply_gate: ReplyGate, metrics: MetricsPolicy) -> Network:
    return Network(gate=reply_gate, metrics=metrics, locations=LOCATIONS)
