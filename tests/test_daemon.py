"""Tests for daemon wiring, supervision and shutdown."""

from __future__ import annotations

import asyncio
import dataclasses
import importlib
import json
import sys
import types
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

import mysbridge
from mysbridge import daemon as daemon_mod
from mysbridge.config.model import RuntimeConfig
from mysbridge.daemon import BridgeDaemon, SupervisedTaskSpec
from mysbridge.protocol.message import decode_message
from mysbridge.state.snapshot import SnapshotError
from mysbridge.transport import LinkClosedError, LinkWriteError


@pytest.fixture()
def offline_config(runtime_config: RuntimeConfig) -> RuntimeConfig:
    return dataclasses.replace(runtime_config, mqtt_host="")


def _state(config: RuntimeConfig) -> dict:
    return json.loads(Path(config.state_file).read_text())


def test_optional_tasks_follow_config(runtime_config: RuntimeConfig) -> None:
    config = dataclasses.replace(runtime_config, metrics_enabled=True, status_interval=30, snapshot_interval=60)

    names = [spec.name for spec in BridgeDaemon(config)._setup_supervision()]

    assert names == [
        "serial-link",
        "protocol-handler",
        "network-consumer",
        "mqtt-link",
        "prometheus-exporter",
        "status-reporter",
        "snapshot-saver",
    ]


def test_offline_config_runs_core_tasks_only(offline_config: RuntimeConfig) -> None:
    daemon = BridgeDaemon(offline_config)

    assert daemon.bus is None
    assert daemon.exporter is None
    assert [spec.name for spec in daemon._setup_supervision()] == [
        "serial-link",
        "protocol-handler",
        "network-consumer",
    ]


@pytest.mark.asyncio
async def test_consumer_routes_and_forwards(runtime_config: RuntimeConfig) -> None:
    daemon = BridgeDaemon(runtime_config)
    assert daemon.bus is not None
    daemon.routed.put_nowait(decode_message(b"4;1;1;0;0;21.5\n"))
    daemon.routed.put_nowait(decode_message(b"4;1;1;0;0;warm\n"))
    daemon.routed.put_nowait(None)

    with pytest.raises(LinkClosedError):
        await daemon.consume_routed()

    assert daemon.network.nodes["4"].sensors["1"].variables["V_TEMP"].render() == "21.50"
    assert daemon.bus.queue.qsize() == 1
    assert daemon.bus.queue.get_nowait().topic_name == "mysensors/4/1/1/0/0"


@pytest.mark.asyncio
async def test_link_close_flushes_snapshot_and_fails(offline_config: RuntimeConfig) -> None:
    daemon = BridgeDaemon(offline_config)

    async def fake_link_run() -> None:
        daemon.decoded.put_nowait(decode_message(b"4;255;3;0;11;Weather\n"))
        daemon.decoded.put_nowait(decode_message(b"4;1;1;0;0;21.5\n"))
        daemon.decoded.put_nowait(None)

    daemon.link.run = fake_link_run  # type: ignore[method-assign]

    with pytest.raises(ExceptionGroup) as excinfo:
        await asyncio.wait_for(daemon.run(), timeout=2)

    assert excinfo.value.subgroup(LinkClosedError) is not None
    assert _state(offline_config)["Nodes"]["4"]["SketchName"] == "Weather"
    assert daemon.readiness.ready_reason == "set_received"


@pytest.mark.asyncio
async def test_cancellation_flushes_snapshot(offline_config: RuntimeConfig) -> None:
    daemon = BridgeDaemon(offline_config)
    started = asyncio.Event()

    async def fake_link_run() -> None:
        daemon.decoded.put_nowait(decode_message(b"7;255;3;0;0;90\n"))
        started.set()
        await asyncio.Event().wait()

    daemon.link.run = fake_link_run  # type: ignore[method-assign]

    task = asyncio.create_task(daemon.run())
    await asyncio.wait_for(started.wait(), timeout=1)
    await asyncio.sleep(0.05)
    task.cancel()
    await asyncio.wait_for(task, timeout=2)

    assert _state(offline_config)["Nodes"]["7"]["Battery"] == 90


@pytest.mark.asyncio
async def test_malformed_snapshot_aborts_startup(offline_config: RuntimeConfig) -> None:
    path = Path(offline_config.state_file)
    path.write_text("{broken")
    daemon = BridgeDaemon(offline_config)

    with pytest.raises(SnapshotError):
        await daemon.run()

    assert path.read_text() == "{broken"


@pytest.mark.asyncio
async def test_supervisor_restarts_failed_task(offline_config: RuntimeConfig) -> None:
    daemon = BridgeDaemon(offline_config)
    factory = AsyncMock(side_effect=[RuntimeError("boom"), None])

    await daemon._supervise_task(SupervisedTaskSpec(name="flaky", factory=factory, min_backoff=0.01, max_backoff=0.01))

    assert factory.await_count == 2


@pytest.mark.asyncio
async def test_supervisor_propagates_fatal_exceptions(offline_config: RuntimeConfig) -> None:
    daemon = BridgeDaemon(offline_config)
    factory = AsyncMock(side_effect=LinkWriteError("short write"))

    with pytest.raises(LinkWriteError):
        await daemon._supervise_task(SupervisedTaskSpec(name="serial-link", factory=factory, fatal_exceptions=(OSError,)))

    assert factory.await_count == 1


@pytest.mark.asyncio
async def test_supervisor_gives_up_after_max_restarts(offline_config: RuntimeConfig) -> None:
    daemon = BridgeDaemon(offline_config)
    factory = AsyncMock(side_effect=RuntimeError("boom"))

    with pytest.raises(RuntimeError):
        await daemon._supervise_task(
            SupervisedTaskSpec(name="aux", factory=factory, max_restarts=2, min_backoff=0.01, max_backoff=0.01)
        )

    assert factory.await_count == 3


def test_main_exits_on_invalid_config(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        daemon_mod.main(["--config", str(tmp_path / "absent.cfg")])

    assert excinfo.value.code == 1


def test_package_import_has_no_side_effects(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setitem(sys.modules, "paho.mqtt.client", types.ModuleType("paho.mqtt.client"))

    reloaded = importlib.reload(mysbridge)

    assert reloaded.__version__ == "1.0.0"
