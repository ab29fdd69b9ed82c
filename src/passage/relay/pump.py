"""Byte pumps between the transport and an outbound connection."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from passage.observability.metrics import BYTES_RELAYED

if TYPE_CHECKING:
    from passage.relay.outbound import TcpConnection

SendFunc = Callable[[bytes], Awaitable[None]]


class ResponseHeaderWriter:
    """Sends to the transport, prefixing the response header to the first chunk."""

    def __init__(self, send: SendFunc, header: bytes) -> None:
        self._send = send
        self._header = header
        self._sent = False

    @property
    def sent(self) -> bool:
        return self._sent

    async def send(self, chunk: bytes) -> None:
        if not self._sent:
            self._sent = True
            chunk = self._header + chunk
        await self._send(chunk)


async def pump_outbound_to_transport(
    connection: TcpConnection,
    writer: ResponseHeaderWriter,
    chunk_size: int = 64 * 1024,
) -> None:
    """Copy destination bytes to the transport until EOF.

    Raises:
        RelayIOError: If reading from the destination fails
        TransportError: If sending to the transport fails
    """
    while True:
        data = await connection.read(chunk_size)
        if not data:
            return
        BYTES_RELAYED.labels(direction="downstream").inc(len(data))
        await writer.send(data)


async def pump_chunk_to_outbound(connection: TcpConnection, chunk: bytes) -> None:
    """Write one transport chunk to the destination, waiting on backpressure."""
    if not chunk:
        return
    await connection.write(chunk)
    BYTES_RELAYED.labels(direction="upstream").inc(len(chunk))
