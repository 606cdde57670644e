"""Tests for the sensor network model."""

from __future__ import annotations

import logging

import pytest

from mysbridge.metrics import MetricsPolicy
from mysbridge.protocol.message import decode_message
from mysbridge.protocol.protocol import SubTypePresentation, SubTypeSetReq
from mysbridge.services import ReplyGate
from mysbridge.state.network import (
    FloatVariable,
    Network,
    Node,
    NodeIdExhaustedError,
    PayloadError,
    RoutingError,
    StringVariable,
    new_variable,
)


def test_set_creates_float_variable_and_gauge(network: Network, metrics: MetricsPolicy) -> None:
    network.handle_message(decode_message(b"4;1;1;0;0;21.5\n"))

    node = network.nodes["4"]
    sensor = node.sensors["1"]
    variable = sensor.variables["V_TEMP"]
    assert isinstance(variable, FloatVariable)
    assert variable.value == 21.5
    assert node.location == "kitchen"
    assert sensor.node is node
    assert node.network is network
    assert metrics.sample("temperature", {"location": "kitchen", "node": "4", "sensor": "1"}) == 21.5
    assert metrics.sample("mysensors_received_packets_total", {"node": "4", "location": "kitchen"}) == 1.0


def test_string_variable_does_not_emit(network: Network, metrics: MetricsPolicy) -> None:
    network.handle_message(decode_message(b"5;2;1;0;2;1\n"))

    variable = network.nodes["5"].sensors["2"].variables["V_STATUS"]
    assert isinstance(variable, StringVariable)
    assert variable.value == "1"
    assert metrics.sample("temperature", {"location": "", "node": "5", "sensor": "2"}) is None


def test_float_parse_failure_is_rejected(network: Network) -> None:
    with pytest.raises(PayloadError):
        network.handle_message(decode_message(b"4;1;1;0;0;warm\n"))

    # The sensor exists but no variable was created from the bad payload.
    assert "V_TEMP" not in network.nodes["4"].sensors["1"].variables


def test_float_parse_failure_keeps_previous_value(network: Network) -> None:
    network.handle_message(decode_message(b"4;1;1;0;0;21.5\n"))

    with pytest.raises(PayloadError):
        network.handle_message(decode_message(b"4;1;1;0;0;\n"))

    assert network.nodes["4"].sensors["1"].variables["V_TEMP"].render() == "21.50"


@pytest.mark.parametrize(
    "payload",
    [b"1_000", b" 21.5", b"21.5 ", b"inf", b"-Infinity", b"nan", b"1e999", b"0x1p3", b"."],
)
def test_float_payload_must_be_plain_decimal(network: Network, metrics: MetricsPolicy, payload: bytes) -> None:
    network.handle_message(decode_message(b"4;1;1;0;0;21.5\n"))

    with pytest.raises(PayloadError):
        network.handle_message(decode_message(b"4;1;1;0;0;" + payload + b"\n"))

    assert network.nodes["4"].sensors["1"].variables["V_TEMP"].render() == "21.50"
    assert metrics.sample("temperature", {"location": "kitchen", "node": "4", "sensor": "1"}) == 21.5


@pytest.mark.parametrize(
    ("payload", "expected"),
    [(b"-3", -3.0), (b"+2.5", 2.5), (b".5", 0.5), (b"7.", 7.0), (b"1.5e2", 150.0), (b"2E-1", 0.2)],
)
def test_float_payload_accepts_decimal_forms(network: Network, payload: bytes, expected: float) -> None:
    network.handle_message(decode_message(b"4;1;1;0;0;" + payload + b"\n"))

    assert network.nodes["4"].sensors["1"].variables["V_TEMP"].value == pytest.approx(expected)


def test_infinite_volume_never_reaches_counter(network: Network, metrics: MetricsPolicy) -> None:
    network.handle_message(decode_message(b"4;1;1;0;35;10\n"))

    with pytest.raises(PayloadError):
        network.handle_message(decode_message(b"4;1;1;0;35;inf\n"))

    labels = {"location": "kitchen", "node": "4", "sensor": "1"}
    assert metrics.sample("mysensors_volume_total", labels) == 10.0


def test_non_ascii_text_survives_set_and_req(network: Network, ready_gate: ReplyGate) -> None:
    network.handle_message(decode_message("4;1;1;0;24;café\n".encode("utf-8")))

    network.handle_message(decode_message(b"4;1;2;0;24;\n"))

    reply = ready_gate.outbound.get_nowait()
    assert reply.encode() == "4;1;2;0;24;café\n".encode("utf-8")


def test_non_ascii_sketch_name_keeps_its_bytes(network: Network) -> None:
    raw = "Küche".encode("utf-8") + b"\xff"
    network.handle_message(decode_message(b"4;255;3;0;11;" + raw + b"\n"))

    assert network.nodes["4"].sketch_name.encode("latin-1") == raw


def test_variable_kind_is_fixed_by_subtype() -> None:
    assert isinstance(new_variable(SubTypeSetReq.V_HUM, "40"), FloatVariable)
    assert isinstance(new_variable(SubTypeSetReq.V_TRIPPED, "1"), StringVariable)
    assert isinstance(new_variable(99, "anything"), StringVariable)


def test_presentation_is_stored(network: Network) -> None:
    network.handle_message(decode_message(b"4;1;0;0;6;2.0\n"))

    assert network.nodes["4"].sensors["1"].presentation is SubTypePresentation.S_TEMP


def test_req_replies_with_current_value(network: Network, ready_gate: ReplyGate) -> None:
    network.handle_message(decode_message(b"4;1;1;0;0;21.5\n"))

    network.handle_message(decode_message(b"4;1;2;0;0;\n"))

    reply = ready_gate.outbound.get_nowait()
    assert reply.encode() == b"4;1;2;0;0;21.50\n"


def test_req_for_unknown_variable_replies_zero(network: Network, ready_gate: ReplyGate) -> None:
    network.handle_message(decode_message(b"4;1;2;0;2;\n"))

    assert ready_gate.outbound.get_nowait().payload == b"0"


def test_req_reply_is_gated(network: Network, reply_gate: ReplyGate) -> None:
    network.handle_message(decode_message(b"4;1;2;0;2;\n"))

    assert reply_gate.outbound.empty()
    assert reply_gate.dropped == 1


def test_node_level_internal_messages(network: Network, metrics: MetricsPolicy) -> None:
    for line in (
        b"4;255;3;0;11;Weather Station\n",
        b"4;255;3;0;12;1.2\n",
        b"4;255;3;0;2;2.3.2\n",
        b"4;255;3;0;0;87\n",
    ):
        network.handle_message(decode_message(line))

    node = network.nodes["4"]
    assert node.sketch_name == "Weather Station"
    assert node.sketch_version == "1.2"
    assert node.version == "2.3.2"
    assert node.battery == 87
    assert metrics.sample("battery_level", {"location": "kitchen", "node": "4", "sensor": "0"}) == pytest.approx(0.87)
    assert node.sensors == {}


@pytest.mark.parametrize("payload", [b"", b"-1", b"101", b"9.5", b"full", b"\xb2"])
def test_invalid_battery_level(network: Network, payload: bytes) -> None:
    with pytest.raises(PayloadError):
        network.handle_message(decode_message(b"4;255;3;0;0;" + payload + b"\n"))

    assert network.nodes["4"].battery == 0


def test_non_internal_message_to_node_child_is_rejected(network: Network) -> None:
    with pytest.raises(RoutingError):
        network.handle_message(decode_message(b"4;255;1;0;0;21.5\n"))


def test_unknown_node_internal_is_logged(network: Network, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger="mysbridge.network"):
        network.handle_message(decode_message(b"4;255;3;0;9;hello\n"))

    assert "UNKN: 4:255:internal:noack:I_LOG_MESSAGE:hello" in caplog.text


def test_gateway_messages_are_logged(network: Network, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger="mysbridge.network"):
        network.handle_message(decode_message(b"0;255;3;0;14;Gateway startup complete.\n"))

    assert "GW MSG:" in caplog.text
    assert "0" in network.nodes


def test_next_node_id_is_monotonic(network: Network) -> None:
    assert network.next_node_id() == 1

    network.handle_message(decode_message(b"3;1;1;0;0;1\n"))
    network.handle_message(decode_message(b"12;1;1;0;0;1\n"))
    assert network.next_node_id() == 13
    assert network.next_node_id() == 13


def test_next_node_id_ignores_gateway(network: Network) -> None:
    network.nodes["0"] = Node(id=0, network=network)

    assert network.next_node_id() == 1


def test_next_node_id_exhausted(network: Network) -> None:
    network.nodes["254"] = Node(id=254, network=network)

    with pytest.raises(NodeIdExhaustedError):
        network.next_node_id()


def test_status_lines(network: Network) -> None:
    for line in (
        b"4;255;3;0;11;Weather\n",
        b"4;255;3;0;12;1.0\n",
        b"4;255;3;0;0;50\n",
        b"4;2;1;0;1;40\n",
        b"4;1;0;0;6;\n",
        b"4;1;1;0;0;21.5\n",
        b"2;1;1;0;2;1\n",
    ):
        network.handle_message(decode_message(line))

    assert network.status_lines() == [
        "Node 2 [ ]    Location:     Battery: 0%",
        " Sensor 1 [UNKNOWN]:  V_STATUS: 1   ",
        "Node 4 [Weather 1.0]    Location: kitchen    Battery: 50%",
        " Sensor 1 [S_TEMP]:  V_TEMP: 21.50   ",
        " Sensor 2 [UNKNOWN]:  V_HUM: 40.00   ",
    ]


def test_assign_locations_after_load(reply_gate: ReplyGate) -> None:
    network = Network(gate=reply_gate, locations={"9": "garage"})
    network.nodes["9"] = Node(id=9)

    network.reattach()
    network.assign_locations()

    assert network.nodes["9"].location == "garage"
    assert network.nodes["9"].network is network
