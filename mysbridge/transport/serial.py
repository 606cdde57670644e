"""Serial link to the MySensors gateway.

The read side is an asyncio Protocol fed by pyserial-asyncio-fast: incoming
bytes are split on line feeds, decoded and queued for the protocol handler.
The write side is a single task draining the outbound queue. Neither side
tries to resynchronise a broken link; a read failure ends the pipeline and a
write failure ends the process.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from typing import cast

# pyserial-asyncio-fast is mandatory; a missing install fails at import.
import serial_asyncio_fast  # type: ignore
import tenacity

from mysbridge.config.settings import RuntimeConfig
from mysbridge.protocol import protocol
from mysbridge.protocol.message import Message, MessageDecodeError, decode_message
from mysbridge.util import log_hexdump

logger = logging.getLogger("mysbridge.link")

MessageQueue = asyncio.Queue[Message | None]
LineSink = Callable[[bytes], int]

SERIAL_OPEN_ATTEMPTS = 3


class LinkError(OSError):
    """Failure of the byte stream to the gateway."""


class LinkReadError(LinkError):
    """The gateway link failed while reading."""


class LinkWriteError(LinkError):
    """A line could not be written to the gateway in full."""


class LinkClosedError(LinkError):
    """The inbound message stream ended."""


class LineSplitter:
    """Accumulates raw bytes and yields complete protocol lines.

    Lines longer than ``max_bytes`` are dropped up to the next terminator.
    """

    def __init__(self, max_bytes: int = protocol.MAX_MESSAGE_BYTES) -> None:
        self._max_bytes = max_bytes
        self._buffer = bytearray()
        self._discarding = False
        self.oversize_lines = 0

    def feed(self, data: bytes) -> list[bytes]:
        lines: list[bytes] = []
        start = 0
        while True:
            end = data.find(protocol.LINE_TERMINATOR, start)
            if end < 0:
                self._append(data[start:])
                return lines
            self._append(data[start:end])
            if self._discarding:
                self._discarding = False
            elif self._buffer:
                lines.append(bytes(self._buffer))
            self._buffer.clear()
            start = end + 1

    def _append(self, chunk: bytes) -> None:
        if self._discarding or not chunk:
            return
        self._buffer.extend(chunk)
        if len(self._buffer) > self._max_bytes:
            logger.warning("Serial line too long (>%d bytes), discarding.", self._max_bytes)
            self.oversize_lines += 1
            self._buffer.clear()
            self._discarding = True


class GatewaySerialProtocol(asyncio.Protocol):
    """Read side of the link: bytes in, decoded messages out."""

    def __init__(self, decoded: MessageQueue, loop: asyncio.AbstractEventLoop) -> None:
        self.decoded = decoded
        self.transport: asyncio.Transport | None = None
        self.splitter = LineSplitter()
        self.decode_errors = 0
        self.read_error: LinkReadError | None = None
        self.connected_future: asyncio.Future[None] = loop.create_future()
        self.closed_future: asyncio.Future[None] = loop.create_future()

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = cast(asyncio.Transport, transport)
        logger.info("Serial transport established.")
        if not self.connected_future.done():
            self.connected_future.set_result(None)

    def connection_lost(self, exc: Exception | None) -> None:
        self.transport = None
        if exc is not None:
            self.read_error = LinkReadError(f"Read error: {exc}")
            logger.error("Serial link failed: %s", exc)
        else:
            logger.warning("Serial link closed by peer.")
        if not self.connected_future.done():
            self.connected_future.set_exception(self.read_error or LinkReadError("Closed"))
        if not self.closed_future.done():
            self.closed_future.set_result(None)
            self.decoded.put_nowait(None)

    def data_received(self, data: bytes) -> None:
        for line in self.splitter.feed(data):
            self._dispatch(line)

    def _dispatch(self, line: bytes) -> None:
        try:
            message = decode_message(line)
        except MessageDecodeError as exc:
            self.decode_errors += 1
            logger.warning(
                "Error parsing [%s]: %s",
                line.decode("ascii", errors="replace"),
                exc.reason,
                extra={"raw": line},
            )
            return
        logger.info("RX: %s", message)
        self.decoded.put_nowait(message)

    def write_line(self, data: bytes) -> int:
        transport = self.transport
        if transport is None or transport.is_closing():
            raise LinkWriteError("Write error: serial link is closed")
        try:
            transport.write(data)
        except (OSError, RuntimeError) as exc:
            raise LinkWriteError(f"Write error: {exc}") from exc
        return len(data)


async def link_writer(outbound: asyncio.Queue[Message], sink: LineSink) -> None:
    """Drain ``outbound`` into ``sink``, one full line per message."""
    while True:
        message = await outbound.get()
        try:
            data = message.encode()
            logger.info("TX: %s", data.rstrip(protocol.LINE_TERMINATOR).decode("ascii", errors="replace"))
            written = sink(data)
            if written != len(data):
                log_hexdump(logger, logging.ERROR, "Short write", data)
                raise LinkWriteError(f"Write error: short write ({written}/{len(data)} bytes)")
        finally:
            outbound.task_done()


def _log_open_retry(retry_state: tenacity.RetryCallState) -> None:
    logger.warning(
        "Opening serial port failed (attempt %d): %s",
        retry_state.attempt_number,
        retry_state.outcome.exception() if retry_state.outcome else None,
    )


class SerialLink:
    """Owns the serial connection and both link pumps."""

    def __init__(
        self,
        config: RuntimeConfig,
        decoded: MessageQueue,
        outbound: asyncio.Queue[Message],
    ) -> None:
        self.config = config
        self.decoded = decoded
        self.outbound = outbound
        self.protocol: GatewaySerialProtocol | None = None
        self.transport: asyncio.BaseTransport | None = None

    async def open(self) -> GatewaySerialProtocol:
        loop = asyncio.get_running_loop()
        factory = functools.partial(GatewaySerialProtocol, self.decoded, loop)
        retryer = tenacity.AsyncRetrying(
            stop=tenacity.stop_after_attempt(SERIAL_OPEN_ATTEMPTS),
            wait=tenacity.wait_fixed(max(1, self.config.reconnect_delay)),
            retry=tenacity.retry_if_exception_type(OSError),
            before_sleep=_log_open_retry,
            reraise=True,
        )
        logger.info("Opening %s at %d baud...", self.config.serial_port, self.config.serial_baud)
        async for attempt in retryer:
            with attempt:
                transport, proto = await serial_asyncio_fast.create_serial_connection(
                    loop,
                    factory,
                    self.config.serial_port,
                    baudrate=self.config.serial_baud,
                )
        self.transport = transport
        self.protocol = cast(GatewaySerialProtocol, proto)
        await self.protocol.connected_future
        return self.protocol

    async def run(self) -> None:
        """Run the writer until it fails or the read side closes."""
        proto = self.protocol or await self.open()
        writer = asyncio.create_task(link_writer(self.outbound, proto.write_line), name="link-writer")
        try:
            done, _ = await asyncio.wait(
                {writer, proto.closed_future},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if writer in done:
                writer.result()
        finally:
            writer.cancel()
            await asyncio.wait({writer})
            self.close()

    def close(self) -> None:
        if self.transport is not None and not self.transport.is_closing():
            self.transport.close()


__all__ = [
    "GatewaySerialProtocol",
    "LineSplitter",
    "LinkClosedError",
    "LinkError",
    "LinkReadError",
    "LinkWriteError",
    "SerialLink",
    "link_writer",
]
