"""Gateway readiness state machine and the gated outbound reply channel."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter

from transitions import EventData, Machine

from mysbridge.protocol.message import Message

logger = logging.getLogger("mysbridge.handler")


class GatewayReadiness:
    """Tracks whether the gateway finished its own startup handshake.

    The machine only ever moves forward: once ``ready`` it stays there for
    the lifetime of the process. Two distinct triggers reach ``ready``:

    * ``gateway_ready``: the gateway announced ``I_GATEWAY_READY``.
    * ``set_received``: any SET message came through, which implies the
      gateway is already relaying sensor traffic.
    """

    STATE_NOT_READY = "not_ready"
    STATE_READY = "ready"

    def __init__(self) -> None:
        self.fsm_state = self.STATE_NOT_READY
        self.ready_reason: str | None = None

        self.machine = Machine(
            model=self,
            states=[self.STATE_NOT_READY, self.STATE_READY],
            initial=self.STATE_NOT_READY,
            model_attribute="fsm_state",
            ignore_invalid_triggers=True,
            send_event=True,
        )

        self.machine.add_transition(
            "gateway_ready",
            self.STATE_NOT_READY,
            self.STATE_READY,
            after="_record_reason",
        )
        self.machine.add_transition(
            "set_received",
            self.STATE_NOT_READY,
            self.STATE_READY,
            after="_record_reason",
        )

    def _record_reason(self, event: EventData) -> None:
        self.ready_reason = event.event.name
        logger.info("Gateway link ready (trigger: %s).", self.ready_reason)

    @property
    def is_ready(self) -> bool:
        return self.fsm_state == self.STATE_READY

    def mark_gateway_ready(self) -> None:
        self.trigger("gateway_ready")

    def mark_set_received(self) -> None:
        self.trigger("set_received")


class ReplyGate:
    """Single entry point for every message destined for the link.

    Both the protocol handler and the network model submit replies here.
    Replies submitted while the gateway is not ready are discarded on the
    spot; they are never buffered for later delivery. A request that arrived
    before the gateway was ready gets no answer even when the network only
    gets to it after the transition.
    """

    def __init__(
        self,
        readiness: GatewayReadiness,
        outbound: asyncio.Queue[Message] | None = None,
    ) -> None:
        self.readiness = readiness
        self.outbound: asyncio.Queue[Message] = outbound if outbound is not None else asyncio.Queue()
        self.dropped = 0
        self._early_requests: Counter[Message] = Counter()

    def submit(self, message: Message) -> bool:
        """Queue ``message`` for the link writer if the gateway is ready."""
        if not self.readiness.is_ready:
            self.dropped += 1
            logger.debug("Gateway not ready; reply dropped: %s", message)
            return False
        self.outbound.put_nowait(message)
        return True

    def note_request(self, request: Message) -> None:
        """Record the readiness seen when ``request`` came off the link."""
        if not self.readiness.is_ready:
            self._early_requests[request] += 1

    def answer(self, request: Message, reply: Message) -> bool:
        """Submit ``reply`` unless ``request`` arrived before the gateway was ready."""
        if self._early_requests[request] > 0:
            self._early_requests[request] -= 1
            if not self._early_requests[request]:
                del self._early_requests[request]
            self.dropped += 1
            logger.debug("Request predates gateway readiness; reply dropped: %s", reply)
            return False
        return self.submit(reply)


__all__ = ["GatewayReadiness", "ReplyGate"]
