"""MQTT forwarding of routed sensor messages."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiomqtt
import tenacity
from transitions import Machine

from mysbridge.config.settings import RuntimeConfig
from mysbridge.mqtt import build_mqtt_connect_properties, build_mqtt_properties
from mysbridge.mqtt.messages import QueuedPublish
from mysbridge.protocol.message import Message
from mysbridge.util import log_hexdump
from mysbridge.util.mqtt_helper import configure_tls_context

logger = logging.getLogger("mysbridge.mqtt")


class BusQueue:
    """Bounded hand-off between the network consumer and the MQTT client.

    :meth:`forward` never blocks: when the queue is full the oldest pending
    publish is dropped and counted.
    """

    def __init__(self, prefix: str, limit: int) -> None:
        self.prefix = prefix
        self.limit = limit
        self.queue: asyncio.Queue[QueuedPublish] = asyncio.Queue(maxsize=limit)
        self.dropped_messages = 0
        self.drop_counts: dict[str, int] = {}

    def forward(self, message: Message) -> None:
        self.enqueue(QueuedPublish.from_message(self.prefix, message))

    def enqueue(self, publish: QueuedPublish) -> None:
        while True:
            try:
                self.queue.put_nowait(publish)
                return
            except asyncio.QueueFull:
                dropped = self.queue.get_nowait()
                self.queue.task_done()
                self.record_drop(dropped.topic_name)
                logger.warning(
                    "MQTT publish queue saturated (%d/%d); dropping oldest topic=%s",
                    self.queue.qsize(),
                    self.limit,
                    dropped.topic_name,
                )

    def record_drop(self, topic: str) -> None:
        self.dropped_messages += 1
        self.drop_counts[topic] = self.drop_counts.get(topic, 0) + 1


def _log_retry_attempt(retry_state: tenacity.RetryCallState) -> None:
    if retry_state.attempt_number > 1:
        logger.info(
            "Reconnecting MQTT (attempt %d, next wait %.2fs)...",
            retry_state.attempt_number,
            retry_state.next_action.sleep if retry_state.next_action else 0,
        )


class MqttTransport:
    """MQTT publisher with FSM-based connection state."""

    STATE_DISCONNECTED = "disconnected"
    STATE_CONNECTING = "connecting"
    STATE_READY = "ready"

    def __init__(self, config: RuntimeConfig, bus: BusQueue) -> None:
        self.config = config
        self.bus = bus
        self.fsm_state = self.STATE_DISCONNECTED
        self.sessions = 0

        self.machine = Machine(
            model=self,
            states=[
                self.STATE_DISCONNECTED,
                self.STATE_CONNECTING,
                self.STATE_READY,
            ],
            initial=self.STATE_DISCONNECTED,
            model_attribute="fsm_state",
            ignore_invalid_triggers=True,
        )

        self.machine.add_transition("connect", "*", self.STATE_CONNECTING)
        self.machine.add_transition("connected", self.STATE_CONNECTING, self.STATE_READY)
        self.machine.add_transition("disconnect", "*", self.STATE_DISCONNECTED)

    @property
    def client_id(self) -> str:
        """Client identifier for the current session.

        The first session uses the configured prefix as is; every reconnect
        appends an increasing counter (``mysensors-1``, ``mysensors-2``...).
        """
        if self.sessions <= 1:
            return self.config.mqtt_client_id
        return f"{self.config.mqtt_client_id}{self.sessions - 1}"

    async def run(self) -> None:
        """Main run loop with reconnection logic."""
        tls_context = configure_tls_context(self.config)
        reconnect_delay = max(1, self.config.reconnect_delay)

        retryer = tenacity.AsyncRetrying(
            wait=tenacity.wait_exponential(multiplier=reconnect_delay, max=60) + tenacity.wait_random(0, 2),
            retry=tenacity.retry_if_exception_type((aiomqtt.MqttError, OSError, asyncio.TimeoutError)),
            before_sleep=_log_retry_attempt,
            reraise=True,
        )

        try:
            async for attempt in retryer:
                with attempt:
                    try:
                        await self._connect_session(tls_context)
                    except* (aiomqtt.MqttError, OSError, asyncio.TimeoutError) as exc_group:
                        for exc in exc_group.exceptions:
                            logger.error("MQTT publish error: %s", exc)
                        raise exc_group.exceptions[0]
                    finally:
                        if self.fsm_state != self.STATE_DISCONNECTED:
                            self.trigger("disconnect")
        except asyncio.CancelledError:
            logger.info("MQTT transport stopping.")
            self.trigger("disconnect")
            raise

    async def _connect_session(self, tls_context: Any) -> None:
        if not self.config.mqtt_user:
            logger.warning("MQTT connecting without authentication (anonymous).")

        self.sessions += 1
        self.trigger("connect")

        async with aiomqtt.Client(
            hostname=self.config.mqtt_host,
            port=self.config.mqtt_port,
            identifier=self.client_id,
            username=self.config.mqtt_user or None,
            password=self.config.mqtt_pass or None,
            tls_context=tls_context,
            logger=logging.getLogger("mysbridge.mqtt.client"),
            protocol=aiomqtt.ProtocolVersion.V5,
            clean_session=None,
            properties=build_mqtt_connect_properties(),
        ) as client:
            self.trigger("connected")
            logger.info(
                "Connected to MQTT broker %s:%d as %s.",
                self.config.mqtt_host,
                self.config.mqtt_port,
                self.client_id,
            )
            await self._publisher_loop(client)

    async def _publisher_loop(self, client: aiomqtt.Client) -> None:
        queue = self.bus.queue
        while True:
            message = await queue.get()
            if logger.isEnabledFor(logging.DEBUG):
                log_hexdump(logger, logging.DEBUG, f"MQTT PUB > {message.topic_name}", message.payload)

            try:
                await client.publish(
                    message.topic_name,
                    message.payload,
                    qos=int(message.qos),
                    retain=message.retain,
                    properties=build_mqtt_properties(message),
                )
            except asyncio.CancelledError:
                logger.debug("MQTT publisher loop cancelled.")
                self._requeue(message)
                raise
            except aiomqtt.MqttError as exc:
                logger.warning("MQTT publish failed (%s); requeuing.", exc)
                self._requeue(message)
                raise
            finally:
                queue.task_done()

    def _requeue(self, message: QueuedPublish) -> None:
        try:
            self.bus.queue.put_nowait(message)
        except asyncio.QueueFull:
            self.bus.record_drop(message.topic_name)
            logger.warning("MQTT queue full; message dropped topic=%s", message.topic_name)


async def mqtt_task(config: RuntimeConfig, bus: BusQueue) -> None:
    """Wrapper to run the MqttTransport."""
    transport = MqttTransport(config, bus)
    await transport.run()


__all__ = ["BusQueue", "MqttTransport", "mqtt_task"]
