"""Network snapshot persistence.

The snapshot keeps topology and node metadata only. Variables are rebuilt
from live traffic and are never written. Field names match the historical
state file layout (``Nodes``, ``ID``, ``SketchName``...), so older files
load unchanged; keys this reader does not know, such as ``Vars``, are
ignored.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from tempfile import NamedTemporaryFile

import msgspec

from mysbridge.protocol.message import resolve_subtype
from mysbridge.protocol.protocol import MessageType

from .network import Network, Node, Sensor

logger = logging.getLogger("mysbridge.snapshot")


class SnapshotError(RuntimeError):
    """A snapshot file exists but cannot be read or written."""


class SensorRecord(msgspec.Struct, rename="pascal"):
    id: int = msgspec.field(name="ID")
    presentation: int | None = None


class NodeRecord(msgspec.Struct, rename="pascal"):
    id: int = msgspec.field(name="ID")
    battery: int = 0
    location: str = ""
    version: str = ""
    sketch_name: str = ""
    sketch_version: str = ""
    sensors: dict[str, SensorRecord] = msgspec.field(default_factory=dict)


class NetworkRecord(msgspec.Struct, rename="pascal"):
    nodes: dict[str, NodeRecord] = msgspec.field(default_factory=dict)


_DECODER = msgspec.json.Decoder(NetworkRecord)


def to_record(network: Network) -> NetworkRecord:
    return NetworkRecord(
        nodes={
            key: NodeRecord(
                id=node.id,
                battery=node.battery,
                location=node.location,
                version=node.version,
                sketch_name=node.sketch_name,
                sketch_version=node.sketch_version,
                sensors={
                    sensor_key: SensorRecord(
                        id=sensor.id,
                        presentation=None if sensor.presentation is None else int(sensor.presentation),
                    )
                    for sensor_key, sensor in node.sensors.items()
                },
            )
            for key, node in network.nodes.items()
        }
    )


def apply_record(network: Network, record: NetworkRecord) -> None:
    """Replace the network topology with ``record`` and relink parents."""
    nodes: dict[str, Node] = {}
    for key, node_record in record.nodes.items():
        node = Node(
            id=node_record.id,
            battery=node_record.battery,
            location=node_record.location,
            version=node_record.version,
            sketch_name=node_record.sketch_name,
            sketch_version=node_record.sketch_version,
        )
        for sensor_key, sensor_record in node_record.sensors.items():
            presentation = None
            if sensor_record.presentation is not None:
                presentation = resolve_subtype(MessageType.PRESENTATION, sensor_record.presentation)
            node.sensors[sensor_key] = Sensor(id=sensor_record.id, presentation=presentation)
        nodes[key] = node
    network.nodes = nodes
    network.reattach()
    network.assign_locations()


def encode_snapshot(network: Network) -> bytes:
    return msgspec.json.format(msgspec.json.encode(to_record(network)), indent=2)


def load_snapshot(network: Network, path: str | Path) -> bool:
    """Hydrate ``network`` from ``path``.

    Returns False when the file does not exist; the network is left empty.
    Raises :class:`SnapshotError` when the file exists but is unreadable or
    malformed.
    """
    snapshot_path = Path(path)
    try:
        data = snapshot_path.read_bytes()
    except FileNotFoundError:
        logger.warning("State file (%s) does not exist, starting anew", snapshot_path)
        return False
    except OSError as exc:
        raise SnapshotError(f"cannot read state file {snapshot_path}: {exc}") from exc

    try:
        record = _DECODER.decode(data)
    except (msgspec.DecodeError, msgspec.ValidationError) as exc:
        raise SnapshotError(f"malformed state file {snapshot_path}: {exc}") from exc

    apply_record(network, record)
    logger.info(
        "Loaded state file %s",
        snapshot_path,
        extra={"nodes": len(network.nodes)},
    )
    return True


def save_snapshot(network: Network, path: str | Path) -> None:
    write_snapshot_file(encode_snapshot(network), path)


def write_snapshot_file(payload: bytes, path: str | Path) -> None:
    """Write ``payload`` atomically (temporary file then rename)."""
    snapshot_path = Path(path)
    try:
        directory = snapshot_path.parent
        directory.mkdir(parents=True, exist_ok=True)
        with NamedTemporaryFile("wb", dir=directory, prefix=f".{snapshot_path.name}.", delete=False) as handle:
            handle.write(payload)
            temp_name = handle.name
        Path(temp_name).replace(snapshot_path)
    except OSError as exc:
        raise SnapshotError(f"cannot write state file {snapshot_path}: {exc}") from exc


async def flush_snapshot(network: Network, path: str | Path) -> bool:
    """Persist the network; failures are logged and reported as False."""
    # Encode on the loop: the model may only be read by its owning task.
    payload = encode_snapshot(network)
    write_task = asyncio.create_task(asyncio.to_thread(write_snapshot_file, payload, path))
    try:
        await asyncio.shield(write_task)
    except asyncio.CancelledError:
        await write_task
        raise
    except SnapshotError as exc:
        logger.error("Error writing state file: %s", exc)
        return False
    logger.debug("State file %s written.", path)
    return True


async def snapshot_saver(network: Network, path: str | Path, interval: int) -> None:
    """Persist the network every ``interval`` seconds."""
    while True:
        await asyncio.sleep(interval)
        await flush_snapshot(network, path)


__all__ = [
    "NetworkRecord",
    "NodeRecord",
    "SensorRecord",
    "SnapshotError",
    "apply_record",
    "encode_snapshot",
    "flush_snapshot",
    "load_snapshot",
    "save_snapshot",
    "snapshot_saver",
    "to_record",
    "write_snapshot_file",
]
