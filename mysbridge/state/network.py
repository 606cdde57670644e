"""In-memory model of the sensor network.

The model is a strict tree: a :class:`Network` owns its :class:`Node`
objects, each node owns its :class:`Sensor` objects and each sensor owns the
variables it has reported. Children keep a plain parent pointer for metric
labels and replies; those pointers are never persisted and are rebuilt by
:meth:`Network.reattach` after a snapshot load.

Only the network consumer task mutates the model, so nothing here locks.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field

import msgspec

from mysbridge.metrics import MetricsPolicy
from mysbridge.protocol import protocol
from mysbridge.protocol.message import Message
from mysbridge.protocol.protocol import (
    FLOAT_SUBTYPES,
    MessageType,
    SubType,
    SubTypeInternal,
    SubTypeSetReq,
    subtype_name,
)
from mysbridge.services.readiness import GatewayReadiness, ReplyGate

logger = logging.getLogger("mysbridge.network")

# Plain decimal with optional exponent: no whitespace, underscores, inf or nan.
FLOAT_PAYLOAD = re.compile(r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")


class RoutingError(ValueError):
    """A decoded message that cannot be applied to the model."""


class PayloadError(RoutingError):
    """A payload that does not fit the variable or field it targets."""


class NodeIdExhaustedError(RoutingError):
    """No node ID is left in the assignable range."""


class FloatVariable(msgspec.Struct, tag="float"):
    subtype: SubType
    value: float = 0.0

    def set(self, raw: str) -> None:
        value = float(raw) if FLOAT_PAYLOAD.fullmatch(raw) else math.nan
        if not math.isfinite(value):
            raise PayloadError(f"{subtype_name(self.subtype)}: not a number: {raw!r}")
        self.value = value

    def render(self) -> str:
        return protocol.FLOAT_VALUE_FORMAT.format(self.value)


class StringVariable(msgspec.Struct, tag="string"):
    subtype: SubType
    value: str = ""

    def set(self, raw: str) -> None:
        self.value = raw

    def render(self) -> str:
        return self.value


Variable = FloatVariable | StringVariable


def new_variable(subtype: SubType, raw: str) -> Variable:
    """Build the variable kind fixed for ``subtype`` and load ``raw`` into it.

    Raises :class:`PayloadError` before anything is created when a float
    subtype receives a non-numeric first value.
    """
    variable: Variable
    if subtype in FLOAT_SUBTYPES:
        variable = FloatVariable(subtype)
    else:
        variable = StringVariable(subtype)
    variable.set(raw)
    return variable


@dataclass(eq=False)
class Sensor:
    id: int
    presentation: SubType | None = None
    variables: dict[str, Variable] = field(default_factory=dict)
    node: Node | None = field(default=None, repr=False)

    @property
    def network(self) -> Network:
        if self.node is None or self.node.network is None:
            raise RuntimeError(f"sensor {self.id} is not attached to a network")
        return self.node.network

    def labels(self) -> tuple[str, str, str]:
        node = self.node
        if node is None:
            return ("", "", str(self.id))
        return (node.location, str(node.id), str(self.id))

    def handle_message(self, message: Message) -> None:
        self.id = message.child_sensor_id
        match message.msg_type:
            case MessageType.PRESENTATION:
                self.presentation = message.subtype
                logger.info("PRES: %s", message)
            case MessageType.SET:
                self._handle_set(message)
                logger.info("SET: %s", message)
            case MessageType.REQ:
                self._handle_req(message)
                logger.info("REQ: %s", message)
            case _:
                logger.debug("Ignoring %s message for sensor: %s", message.msg_type, message)

    def _handle_set(self, message: Message) -> None:
        subtype = message.subtype if message.subtype is not None else 0
        key = subtype_name(subtype)
        variable = self.variables.get(key)
        if variable is None:
            variable = new_variable(subtype, message.text)
            self.variables[key] = variable
        else:
            variable.set(message.text)
        if isinstance(variable, FloatVariable):
            self.network.metrics.emit(subtype, self.labels(), variable.value)

    def _handle_req(self, message: Message) -> None:
        variable = self.variables.get(subtype_name(message.subtype))
        value = variable.render() if variable is not None else protocol.REQ_DEFAULT_VALUE
        self.network.gate.answer(message, message.reply(payload=value))


@dataclass(eq=False)
class Node:
    id: int
    battery: int = 0
    location: str = ""
    version: str = ""
    sketch_name: str = ""
    sketch_version: str = ""
    sensors: dict[str, Sensor] = field(default_factory=dict)
    network: Network | None = field(default=None, repr=False)

    def handle_message(self, message: Message) -> None:
        self.id = message.node_id
        if self.network is not None:
            self.network.metrics.count_packet(self.id, self.location)
        if message.child_sensor_id == protocol.NO_CHILD:
            self._handle_node_message(message)
            return
        key = str(message.child_sensor_id)
        sensor = self.sensors.get(key)
        if sensor is None:
            sensor = Sensor(id=message.child_sensor_id, node=self)
            self.sensors[key] = sensor
        sensor.handle_message(message)

    def _handle_node_message(self, message: Message) -> None:
        if message.msg_type != MessageType.INTERNAL:
            raise RoutingError(
                f"{subtype_name(message.subtype)} message of type {message.msg_type} "
                f"sent to node-level child {protocol.NO_CHILD}"
            )
        match message.subtype:
            case SubTypeInternal.I_BATTERY_LEVEL:
                self._set_battery(message.text)
            case SubTypeInternal.I_VERSION:
                self.version = message.text
            case SubTypeInternal.I_SKETCH_NAME:
                self.sketch_name = message.text
            case SubTypeInternal.I_SKETCH_VERSION:
                self.sketch_version = message.text
            case _:
                logger.info("UNKN: %s", message)

    def _set_battery(self, raw: str) -> None:
        if not (raw.isascii() and raw.isdigit()) or int(raw) > 100:
            raise PayloadError(f"invalid battery level {raw!r} for node {self.id}")
        self.battery = int(raw)
        if self.network is not None:
            self.network.metrics.emit(
                SubTypeSetReq.V_PERCENTAGE,
                (self.location, str(self.id), "0"),
                self.battery / 100.0,
            )


class Network:
    """Root of the model: every node seen on the gateway, keyed by ID string."""

    def __init__(
        self,
        gate: ReplyGate | None = None,
        metrics: MetricsPolicy | None = None,
        locations: Mapping[str, str] | None = None,
    ) -> None:
        self.gate = gate if gate is not None else ReplyGate(GatewayReadiness())
        self.metrics = metrics if metrics is not None else MetricsPolicy()
        self.locations: dict[str, str] = dict(locations or {})
        self.nodes: dict[str, Node] = {}

    def handle_message(self, message: Message) -> None:
        """Route ``message`` to its node, creating the node on first sight.

        Raises :class:`RoutingError` when the message cannot be applied.
        """
        if message.node_id == protocol.GATEWAY_ID:
            # The gateway may host sensors of its own, so routing continues.
            logger.info("GW MSG: %s", message)
        key = str(message.node_id)
        node = self.nodes.get(key)
        if node is None:
            node = Node(id=message.node_id, location=self.locations.get(key, ""), network=self)
            self.nodes[key] = node
        node.handle_message(message)

    def next_node_id(self) -> int:
        """One past the highest known node ID; freed IDs are never reused."""
        next_id = protocol.FIRST_NODE_ID
        for node in self.nodes.values():
            if node.id >= next_id:
                next_id = node.id + 1
        if next_id > protocol.MAX_NODE_ID:
            raise NodeIdExhaustedError(f"no node ID left above {next_id - 1}")
        return next_id

    def reattach(self) -> None:
        """Restore parent pointers after nodes were rebuilt from a snapshot."""
        for node in self.nodes.values():
            node.network = self
            for sensor in node.sensors.values():
                sensor.node = node

    def assign_locations(self) -> None:
        """Apply operator configured locations to the nodes they name."""
        for key, location in self.locations.items():
            node = self.nodes.get(key)
            if node is not None:
                node.location = location

    def sorted_nodes(self) -> Iterator[Node]:
        return iter(sorted(self.nodes.values(), key=lambda node: node.id))

    def status_lines(self) -> list[str]:
        lines: list[str] = []
        for node in self.sorted_nodes():
            lines.append(
                f"Node {node.id} [{node.sketch_name} {node.sketch_version}]    "
                f"Location: {node.location}    Battery: {node.battery}%"
            )
            for sensor in sorted(node.sensors.values(), key=lambda sensor: sensor.id):
                values = "".join(
                    f" {name}: {sensor.variables[name].render()}   " for name in sorted(sensor.variables)
                )
                lines.append(f" Sensor {sensor.id} [{subtype_name(sensor.presentation)}]: {values}")
        return lines


__all__ = [
    "FloatVariable",
    "Network",
    "Node",
    "NodeIdExhaustedError",
    "PayloadError",
    "RoutingError",
    "Sensor",
    "StringVariable",
    "Variable",
    "new_variable",
]
