"""Outbound connections: TCP dialing and the DNS-over-UDP exchange."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Literal, Protocol

import httpx
import structlog

from passage.core.exceptions import ConnectError, RelayIOError, TransportError
from passage.observability.metrics import DNS_QUERIES
from passage.protocol.header import frame_datagram

if TYPE_CHECKING:
    from passage.core.config import RelayConfig
    from passage.relay.pump import ResponseHeaderWriter

logger = structlog.get_logger()

DNS_MESSAGE_TYPE = "application/dns-message"
CLOSE_TIMEOUT = 2.0


class TcpConnection:
    """An established outbound TCP connection."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        host: str,
        port: int,
        close_timeout: float = CLOSE_TIMEOUT,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self.host = host
        self.port = port
        self.close_timeout = close_timeout
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def peer(self) -> tuple[str, int] | None:
        return self._writer.get_extra_info("peername")

    async def read(self, n: int) -> bytes:
        try:
            return await self._reader.read(n)
        except OSError as e:
            raise RelayIOError(f"Read from {self.host}:{self.port} failed: {e}") from e

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise RelayIOError(f"Connection to {self.host}:{self.port} is closed")
        try:
            self._writer.write(data)
            await self._writer.drain()
        except OSError as e:
            raise RelayIOError(f"Write to {self.host}:{self.port} failed: {e}") from e

    async def close(self) -> None:
        """Close the socket, aborting it if buffered data cannot be flushed in time."""
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await asyncio.wait_for(self._writer.wait_closed(), timeout=self.close_timeout)
        except TimeoutError:
            logger.debug("Aborting stalled connection", host=self.host, port=self.port)
            self._writer.transport.abort()
        except OSError as e:
            logger.debug("Connection closed with error", host=self.host, port=self.port, error=str(e))


async def open_tcp(
    address: str,
    port: int,
    *,
    egress_hint: str | None = None,
    egress_mode: Literal["bind", "relay"] = "bind",
    timeout: float | None = None,
) -> TcpConnection:
    """Dial ``address:port`` once.

    With ``egress_mode="bind"`` the hint is the local source address; with
    ``"relay"`` the hint host is dialed in place of ``address``.

    Raises:
        ConnectError: On timeout, refusal, resolution failure or any socket error
    """
    host = address
    local_addr = None
    if egress_hint:
        if egress_mode == "relay":
            host = egress_hint
        else:
            local_addr = (egress_hint, 0)

    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port, local_addr=local_addr),
            timeout=timeout,
        )
    except TimeoutError:
        raise ConnectError(address, port, f"timed out after {timeout}s") from None
    except OSError as e:
        raise ConnectError(address, port, str(e) or type(e).__name__) from e

    logger.debug("Outbound connected", host=host, port=port, via=egress_mode if egress_hint else None)
    return TcpConnection(reader, writer, address, port)


class DnsResolver(Protocol):
    async def query(self, packet: bytes) -> bytes: ...

    async def close(self) -> None: ...


class _DnsQueryProtocol(asyncio.DatagramProtocol):
    def __init__(self) -> None:
        self.answer: asyncio.Future[bytes] = asyncio.get_running_loop().create_future()

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        if not self.answer.done():
            self.answer.set_result(data)

    def error_received(self, exc: Exception) -> None:
        if not self.answer.done():
            self.answer.set_exception(exc)

    def connection_lost(self, exc: Exception | None) -> None:
        if not self.answer.done():
            self.answer.set_exception(exc or ConnectionError("DNS socket closed"))


class UdpDnsResolver:
    """Sends each query as one UDP datagram and waits for one answer."""

    def __init__(self, server: str, port: int = 53, timeout: float = 5.0) -> None:
        self.server = server
        self.port = port
        self.timeout = timeout

    async def query(self, packet: bytes) -> bytes:
        loop = asyncio.get_running_loop()
        transport: asyncio.DatagramTransport | None = None
        try:
            transport, protocol = await loop.create_datagram_endpoint(
                _DnsQueryProtocol, remote_addr=(self.server, self.port)
            )
            transport.sendto(packet)
            return await asyncio.wait_for(protocol.answer, timeout=self.timeout)
        except TimeoutError:
            raise RelayIOError(f"DNS query to {self.server}:{self.port} timed out") from None
        except OSError as e:
            raise RelayIOError(f"DNS query to {self.server}:{self.port} failed: {e}") from e
        finally:
            if transport is not None:
                transport.close()

    async def close(self) -> None:
        return None


class DohDnsResolver:
    """Resolves queries with DNS over HTTPS (RFC 8484 POST)."""

    def __init__(
        self, url: str, timeout: float = 5.0, client: httpx.AsyncClient | None = None
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._client = client

    async def query(self, packet: bytes) -> bytes:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        try:
            resp = await self._client.post(
                self.url,
                content=packet,
                headers={"content-type": DNS_MESSAGE_TYPE, "accept": DNS_MESSAGE_TYPE},
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise RelayIOError(f"DNS over HTTPS query failed: {e}") from e
        return resp.content

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class DnsRelay:
    """Write path for a UDP (DNS) session.

    Every chunk written is one complete DNS query. Answers are sent back to the
    transport as length-prefixed datagrams in the order they arrive.
    """

    def __init__(self, writer: ResponseHeaderWriter, resolver: DnsResolver) -> None:
        self._writer = writer
        self._resolver = resolver
        self._tasks: set[asyncio.Task[None]] = set()
        self._send_lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def write(self, chunk: bytes) -> None:
        if self._closed:
            raise RelayIOError("DNS relay is closed")
        if not chunk:
            return
        task = asyncio.create_task(self._exchange(bytes(chunk)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _exchange(self, query: bytes) -> None:
        try:
            answer = await self._resolver.query(query)
            framed = frame_datagram(answer)
        except Exception as e:
            DNS_QUERIES.labels(result="error").inc()
            logger.warning("DNS query failed", error=str(e), type=type(e).__name__)
            return
        DNS_QUERIES.labels(result="ok").inc()
        try:
            async with self._send_lock:
                await self._writer.send(framed)
        except TransportError as e:
            logger.debug("Dropping DNS answer, transport closed", error=str(e))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._resolver.close()


def create_resolver(config: RelayConfig) -> DnsResolver:
    if config.dns_transport == "doh":
        return DohDnsResolver(config.doh_url, timeout=config.dns_timeout)
    return UdpDnsResolver(config.dns_server, config.dns_port, timeout=config.dns_timeout)


def open_dns_relay(
    writer: ResponseHeaderWriter,
    config: RelayConfig,
    resolver: DnsResolver | None = None,
) -> DnsRelay:
    return DnsRelay(writer, resolver or create_resolver(config))
