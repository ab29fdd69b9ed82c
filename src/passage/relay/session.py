"""Per-connection session: header parsing, outbound setup and teardown."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import uuid4

import structlog

from passage.core.config import RelayConfig
from passage.core.exceptions import (
    ConnectError,
    PassageError,
    ProtocolError,
    RelayIOError,
    TransportError,
)
from passage.observability.metrics import ACTIVE_SESSIONS, SESSION_ERRORS, SESSIONS
from passage.protocol.header import (
    Command,
    SessionHeader,
    decode_header,
    encode_response_header,
)
from passage.relay.outbound import DnsRelay, DnsResolver, TcpConnection, open_dns_relay, open_tcp
from passage.relay.pump import (
    ResponseHeaderWriter,
    pump_chunk_to_outbound,
    pump_outbound_to_transport,
)
from passage.relay.transport import Transport, decode_early_data

logger = structlog.get_logger()


class SessionState(Enum):
    NEW = "new"
    AWAITING_HEADER = "awaiting_header"
    TCP_ESTABLISHED = "tcp_established"
    UDP_ESTABLISHED = "udp_established"
    CLOSED = "closed"


@dataclass(frozen=True)
class Unset:
    """No outbound yet."""


@dataclass(frozen=True)
class TcpOutbound:
    connection: TcpConnection


@dataclass(frozen=True)
class UdpOutbound:
    relay: DnsRelay


Outbound = Unset | TcpOutbound | UdpOutbound

UNSET = Unset()


class Session:
    """One accepted upgraded connection.

    ``closed`` is the session's cancellation token: both pump directions stop
    once it is set, and it is never cleared.
    """

    def __init__(
        self,
        transport: Transport,
        config: RelayConfig,
        *,
        peer: str | None = None,
        resolver: DnsResolver | None = None,
    ) -> None:
        self.id = uuid4().hex[:8]
        self.config = config
        self.state = SessionState.NEW
        self.outbound: Outbound = UNSET
        self.error: PassageError | None = None
        self.closed = asyncio.Event()
        self._transport = transport
        self._resolver = resolver
        self._tasks: set[asyncio.Task[None]] = set()
        # one-slot handoff from the transport reader to the upstream writer
        self._inbound: asyncio.Queue[bytes] = asyncio.Queue(maxsize=1)
        self._log = logger.bind(session=self.id, peer=peer or "unknown")

    @property
    def is_closed(self) -> bool:
        return self.state is SessionState.CLOSED

    async def run(self, early_data_header: str | None = None) -> None:
        """Drive the session until either side ends, then tear both down."""
        ACTIVE_SESSIONS.inc()
        try:
            self._spawn(self._read_transport(early_data_header))
            self._spawn(self._write_upstream())
            await self.closed.wait()
        finally:
            try:
                await self.close()
            finally:
                ACTIVE_SESSIONS.dec()

    async def feed(self, chunk: bytes) -> None:
        """Handle one chunk from the transport."""
        if self.is_closed:
            return

        outbound = self.outbound
        if isinstance(outbound, TcpOutbound):
            await pump_chunk_to_outbound(outbound.connection, chunk)
        elif isinstance(outbound, UdpOutbound):
            outbound.relay.write(chunk)
        elif chunk:
            self.state = SessionState.AWAITING_HEADER
            header = decode_header(chunk, self.config.token)
            await self._establish(header, bytes(chunk[header.payload_offset :]))

    async def close(self) -> None:
        """Tear down both endpoints. Calling it again is a no-op."""
        if self.is_closed:
            return
        self.state = SessionState.CLOSED
        self.closed.set()

        current = asyncio.current_task()
        tasks = [task for task in self._tasks if task is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        outbound = self.outbound
        try:
            if isinstance(outbound, TcpOutbound):
                await outbound.connection.close()
            elif isinstance(outbound, UdpOutbound):
                await outbound.relay.close()
        except Exception as e:
            self._log.warning("Outbound close failed", error=str(e), type=type(e).__name__)
        finally:
            await self._transport.close()
            self._log.info("Session closed", error=self.error.code if self.error else None)

    def fail(self, error: BaseException) -> None:
        """Record the error that ends this session and request teardown.

        Only the first error is reported; anything after it (or after close)
        is a consequence of the teardown.
        """
        if self.error is not None or self.is_closed:
            self._log.debug("Ignoring error after teardown", error=str(error))
            self.closed.set()
            return

        if not isinstance(error, PassageError):
            self._log.error("Unexpected session error", error=str(error), type=type(error).__name__)
            error = RelayIOError(str(error) or type(error).__name__)
        elif isinstance(error, ProtocolError):
            self._log.warning("Session rejected", kind=error.kind.value, error=error.message)
        elif isinstance(error, ConnectError):
            self._log.warning("Outbound connection failed", error=error.message)
        elif isinstance(error, TransportError):
            self._log.info("Transport ended", error=error.message)
        else:
            self._log.warning("Relay error", error=error.message)

        self.error = error
        kind = error.kind.value if isinstance(error, ProtocolError) else error.code
        SESSION_ERRORS.labels(kind=kind).inc()
        self.closed.set()

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.fail(error)
        self.closed.set()

    async def _read_transport(self, early_data_header: str | None) -> None:
        """Receive from the transport until it ends.

        Returning (or raising) sets ``closed``, which cancels a dial or write
        still in progress on the upstream side.
        """
        early_data = decode_early_data(early_data_header)
        if early_data:
            await self._inbound.put(early_data)
        async for chunk in self._transport:
            await self._inbound.put(chunk)

    async def _write_upstream(self) -> None:
        while True:
            chunk = await self._inbound.get()
            await self.feed(chunk)

    async def _establish(self, header: SessionHeader, payload: bytes) -> None:
        command = header.command.name.lower()
        self._log = self._log.bind(destination=f"{header.address}:{header.port}", command=command)
        writer = ResponseHeaderWriter(
            self._transport.send, encode_response_header(header.version)
        )

        if header.command == Command.UDP:
            relay = open_dns_relay(writer, self.config, self._resolver)
            self.outbound = UdpOutbound(relay)
            self.state = SessionState.UDP_ESTABLISHED
            SESSIONS.labels(command=command).inc()
            self._log.info("Session established")
            relay.write(payload)
            return

        connection = await open_tcp(
            header.address,
            header.port,
            egress_hint=self.config.egress_hint,
            egress_mode=self.config.egress_mode,
            timeout=self.config.dial_timeout,
        )
        self.outbound = TcpOutbound(connection)
        self.state = SessionState.TCP_ESTABLISHED
        SESSIONS.labels(command=command).inc()
        self._log.info("Session established")

        self._spawn(
            pump_outbound_to_transport(connection, writer, self.config.read_chunk_size)
        )
        await pump_chunk_to_outbound(connection, payload)
