"""Protocol services: readiness tracking and the gated reply channel."""

from .readiness import GatewayReadiness, ReplyGate

__all__ = ["GatewayReadiness", "ReplyGate"]
