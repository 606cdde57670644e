"""Gateway-facing protocol handler."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from mysbridge.protocol import protocol
from mysbridge.protocol.message import Message
from mysbridge.protocol.protocol import MessageType, SubTypeInternal
from mysbridge.state.network import Network, NodeIdExhaustedError

from .readiness import GatewayReadiness, ReplyGate

logger = logging.getLogger("mysbridge.handler")

MessageQueue = asyncio.Queue[Message | None]


class ProtocolHandler:
    """Drives the readiness machine and answers internal requests.

    Every decoded message passes through :meth:`handle`, which forwards it to
    the network consumer, computes at most one reply and hands that reply to
    the :class:`ReplyGate`. The gate decides whether it reaches the link.
    """

    def __init__(
        self,
        network: Network,
        readiness: GatewayReadiness,
        gate: ReplyGate,
        routed: MessageQueue,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.network = network
        self.readiness = readiness
        self.gate = gate
        self.routed = routed
        self._clock = clock

    async def run(self, decoded: MessageQueue) -> None:
        """Consume decoded messages until the end-of-stream marker."""
        while True:
            message = await decoded.get()
            if message is None:
                logger.info("Read channel closed.")
                self.routed.put_nowait(None)
                return
            self.handle(message)

    def handle(self, message: Message) -> Message | None:
        """Process one message and return the reply it produced, if any."""
        reply: Message | None = None
        match message.msg_type:
            case MessageType.INTERNAL:
                reply = self._handle_internal(message)
            case MessageType.SET:
                self._forward(message)
                self.readiness.mark_set_received()
            case MessageType.REQ:
                self.gate.note_request(message)
                self._forward(message)
            case MessageType.PRESENTATION:
                self._forward(message)
            case _:
                logger.warning("Unknown msg type: %s", message)
        if reply is not None:
            self.gate.submit(reply)
        return reply

    def _forward(self, message: Message) -> None:
        self.routed.put_nowait(message)

    def _handle_internal(self, message: Message) -> Message | None:
        match message.subtype:
            case SubTypeInternal.I_ID_REQUEST:
                try:
                    node_id = self.network.next_node_id()
                except NodeIdExhaustedError as exc:
                    logger.error("ID request not answered: %s", exc)
                    return None
                return message.reply(subtype=SubTypeInternal.I_ID_RESPONSE, payload=str(node_id))
            case SubTypeInternal.I_CONFIG:
                return message.reply(subtype=SubTypeInternal.I_CONFIG, payload=protocol.CONFIG_UNIT_METRIC)
            case SubTypeInternal.I_TIME:
                return message.reply(payload=str(int(self._clock())))
            case SubTypeInternal.I_GATEWAY_READY:
                self.readiness.mark_gateway_ready()
                self._forward(message)
                logger.info("Gateway ready!")
            case _:
                logger.info("UNSUPPORTED MSG: %s", message)
                self._forward(message)
        return None


__all__ = ["MessageQueue", "ProtocolHandler"]
