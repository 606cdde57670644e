#!/usr/bin/env python3
"""Async orchestrator for the MySensors gateway bridge.

Architecture:
    main() -> BridgeDaemon -> TaskGroup
        ├── serial-link (SerialLink: reader protocol + writer pump)
        ├── protocol-handler (ProtocolHandler)
        ├── network-consumer (Network routing, bus hand-off)
        ├── mqtt-link (optional)
        ├── prometheus-exporter (optional)
        ├── status-reporter (optional)
        ├── snapshot-saver (optional)

The snapshot is loaded before any task starts and flushed once more on the
way out, whatever ended the run.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import NoReturn

import msgspec
import tenacity

# uvloop is mandatory; a missing install fails at import.
import uvloop

from mysbridge.config.logging import configure_logging
from mysbridge.config.model import RuntimeConfig
from mysbridge.config.settings import load_runtime_config
from mysbridge.const import SUPERVISOR_DEFAULT_MAX_BACKOFF, SUPERVISOR_DEFAULT_MIN_BACKOFF
from mysbridge.metrics import MetricsPolicy, PrometheusExporter
from mysbridge.protocol.message import Message
from mysbridge.services import GatewayReadiness, ReplyGate
from mysbridge.services.handler import MessageQueue, ProtocolHandler
from mysbridge.state.network import Network, RoutingError
from mysbridge.state.snapshot import SnapshotError, flush_snapshot, load_snapshot, snapshot_saver
from mysbridge.state.status import status_reporter
from mysbridge.transport import LinkClosedError, SerialLink
from mysbridge.transport.mqtt import BusQueue, mqtt_task

logger = logging.getLogger("mysbridge")

SUPERVISOR_RESTART_WINDOW = 10.0
SUPERVISOR_AUX_MAX_RESTARTS = 5


class SupervisedTaskSpec(msgspec.Struct):
    """Specification for a supervised async task."""

    name: str
    factory: Callable[[], Awaitable[None]]
    fatal_exceptions: tuple[type[BaseException], ...] = ()
    max_restarts: int | None = None
    min_backoff: float = SUPERVISOR_DEFAULT_MIN_BACKOFF
    max_backoff: float = SUPERVISOR_DEFAULT_MAX_BACKOFF


class BridgeDaemon:
    """Wires the link, the protocol handler, the network and the outputs.

    Attributes:
        config: Validated runtime configuration.
        network: Sensor network model, owned by the network consumer task.
        readiness: Gateway readiness state machine.
        gate: Single entry point for replies to the gateway.
        bus: MQTT hand-off queue, None when forwarding is disabled.
        exporter: Prometheus exporter, None when metrics are disabled.
    """

    def __init__(self, config: RuntimeConfig):
        self.config = config
        self.readiness = GatewayReadiness()
        self.gate = ReplyGate(self.readiness)
        self.metrics = MetricsPolicy()
        self.network = Network(gate=self.gate, metrics=self.metrics, locations=config.locations)
        self.decoded: MessageQueue = asyncio.Queue()
        self.routed: MessageQueue = asyncio.Queue()
        self.handler = ProtocolHandler(self.network, self.readiness, self.gate, self.routed)
        self.link = SerialLink(config, self.decoded, self.gate.outbound)
        self.bus: BusQueue | None = None
        if config.mqtt_enabled:
            self.bus = BusQueue(config.mqtt_topic, config.mqtt_queue_limit)
        self.exporter: PrometheusExporter | None = None
        if config.metrics_enabled:
            self.exporter = PrometheusExporter(self.metrics.registry, config.metrics_host, config.metrics_port)

    def load_state(self) -> bool:
        """Hydrate the network from the state file.

        Raises :class:`SnapshotError` when the file exists but is unusable.
        """
        return load_snapshot(self.network, self.config.state_file)

    async def consume_routed(self) -> None:
        """Apply routed messages to the network and hand them to the bus."""
        while True:
            message = await self.routed.get()
            if message is None:
                raise LinkClosedError("Read channel closed")
            self._route(message)

    def _route(self, message: Message) -> None:
        try:
            self.network.handle_message(message)
        except RoutingError as exc:
            logger.warning("Message not routed (%s): %s", exc, message)
            return
        if self.bus is not None:
            self.bus.forward(message)

    async def _run_serial_link(self) -> None:
        await self.link.run()

    async def _run_protocol_handler(self) -> None:
        await self.handler.run(self.decoded)

    async def _run_mqtt_link(self) -> None:
        assert self.bus is not None
        await mqtt_task(self.config, self.bus)

    async def _run_status_reporter(self) -> None:
        await status_reporter(self.network, self.config.status_interval)

    async def _run_snapshot_saver(self) -> None:
        await snapshot_saver(self.network, self.config.state_file, self.config.snapshot_interval)

    def _setup_supervision(self) -> list[SupervisedTaskSpec]:
        """Prepare the list of tasks to be supervised."""
        specs: list[SupervisedTaskSpec] = [
            SupervisedTaskSpec(
                name="serial-link",
                factory=self._run_serial_link,
                fatal_exceptions=(OSError,),
            ),
            SupervisedTaskSpec(
                name="protocol-handler",
                factory=self._run_protocol_handler,
            ),
            SupervisedTaskSpec(
                name="network-consumer",
                factory=self.consume_routed,
                fatal_exceptions=(LinkClosedError,),
            ),
        ]

        if self.bus is not None:
            specs.append(SupervisedTaskSpec(name="mqtt-link", factory=self._run_mqtt_link))

        if self.exporter is not None:
            specs.append(
                SupervisedTaskSpec(
                    name="prometheus-exporter",
                    factory=self.exporter.run,
                    max_restarts=SUPERVISOR_AUX_MAX_RESTARTS,
                )
            )

        if self.config.status_interval > 0:
            specs.append(
                SupervisedTaskSpec(
                    name="status-reporter",
                    factory=self._run_status_reporter,
                    max_restarts=SUPERVISOR_AUX_MAX_RESTARTS,
                )
            )

        if self.config.snapshot_interval > 0:
            specs.append(
                SupervisedTaskSpec(
                    name="snapshot-saver",
                    factory=self._run_snapshot_saver,
                    max_restarts=SUPERVISOR_AUX_MAX_RESTARTS,
                )
            )

        return specs

    async def _supervise_task(self, spec: SupervisedTaskSpec) -> None:
        """Run ``spec.factory`` restarting it on failures using tenacity."""
        log = logging.getLogger("mysbridge.supervisor")
        callbacks = self._SupervisorCallbacks(spec.name, log)

        retryer = tenacity.AsyncRetrying(
            wait=tenacity.wait_exponential(multiplier=spec.min_backoff, max=spec.max_backoff),
            retry=tenacity.retry_if_not_exception_type(
                (asyncio.CancelledError, SystemExit, KeyboardInterrupt, GeneratorExit) + spec.fatal_exceptions
            ),
            stop=tenacity.stop_after_attempt(
                spec.max_restarts + 1
            ) if spec.max_restarts is not None else tenacity.stop_never,
            before_sleep=callbacks.before_sleep,
            reraise=True,
        )

        last_start_time = 0.0

        try:
            while True:
                try:
                    async for attempt in retryer:
                        with attempt:
                            last_start_time = time.monotonic()
                            await spec.factory()

                            log.info("%s task exited cleanly; supervisor exiting", spec.name)
                            return
                except spec.fatal_exceptions as exc:
                    log.critical("%s failed with fatal exception: %s", spec.name, exc)
                    raise
                except Exception:
                    if last_start_time > 0 and (time.monotonic() - last_start_time) > SUPERVISOR_RESTART_WINDOW:
                        log.info("%s was healthy long enough; resetting backoff", spec.name)
                        continue
                    log.error("%s exceeded max restarts (%s); giving up", spec.name, spec.max_restarts)
                    raise

        except asyncio.CancelledError:
            log.debug("%s supervisor cancelled", spec.name)
            raise

    class _SupervisorCallbacks:
        """Helper to avoid nested functions in supervisor."""

        __slots__ = ("name", "log")

        def __init__(self, name: str, log: logging.Logger):
            self.name = name
            self.log = log

        def before_sleep(self, retry_state: tenacity.RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            self.log.error("%s failed (%s); restarting in %.1fs", self.name, exc, delay)

    def _install_signal_handlers(self, task: asyncio.Task[None]) -> list[signal.Signals]:
        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._request_shutdown, task, signum)
            except (NotImplementedError, RuntimeError):
                continue
            installed.append(signum)
        return installed

    @staticmethod
    def _request_shutdown(task: asyncio.Task[None], signum: signal.Signals) -> None:
        logger.info("Received %s; shutting down.", signum.name)
        task.cancel()

    async def run(self) -> None:
        """Main async entry point."""
        self.load_state()
        supervised_tasks = self._setup_supervision()
        main_task = asyncio.current_task()
        assert main_task is not None
        installed = self._install_signal_handlers(main_task)

        try:
            async with asyncio.TaskGroup() as task_group:
                for spec in supervised_tasks:
                    task_group.create_task(self._supervise_task(spec), name=spec.name)
        except* asyncio.CancelledError:
            logger.info("Main task cancelled; shutting down.")
        except* Exception as exc_group:
            for group_exc in exc_group.exceptions:
                logger.critical(
                    "Unhandled exception in main task group: %s",
                    group_exc,
                    exc_info=group_exc,
                )
            raise
        finally:
            loop = asyncio.get_running_loop()
            for signum in installed:
                loop.remove_signal_handler(signum)
            self.link.close()
            await flush_snapshot(self.network, self.config.state_file)
            logger.info("MySensors bridge stopped.")


def main(argv: Sequence[str] | None = None) -> NoReturn:  # pragma: no cover (Entry point wrapper)
    try:
        config = load_runtime_config(argv)
    except ValueError as exc:
        logger.critical("Invalid configuration: %s", exc)
        sys.exit(1)
    configure_logging(config)

    logger.info(
        "Starting MySensors bridge. Serial: %s@%d MQTT: %s Metrics: %s (config: %s)",
        config.serial_port,
        config.serial_baud,
        f"{config.mqtt_host}:{config.mqtt_port}" if config.mqtt_enabled else "disabled",
        f"{config.metrics_host}:{config.metrics_port}" if config.metrics_enabled else "disabled",
        config.config_source,
    )

    try:
        daemon = BridgeDaemon(config)
        asyncio.run(daemon.run(), loop_factory=uvloop.new_event_loop)
    except KeyboardInterrupt:
        logger.info("Daemon interrupted by user.")
    except SnapshotError as exc:
        logger.critical("Startup aborted: %s", exc)
        sys.exit(1)
    except ExceptionGroup as exc_group:
        for group_exc in exc_group.exceptions:
            logger.critical("Fatal error in task group: %s", group_exc)
        sys.exit(1)
    except OSError as exc:
        logger.critical("System/OS error during daemon execution: %s", exc, exc_info=True)
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    main()
