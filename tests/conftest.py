"""Shared fixtures: in-memory transport, fake outbound endpoints and loopback servers."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest

from passage.core.config import RelayConfig
from passage.core.exceptions import RelayIOError, TransportError

IDENTITY = "d342d11e-d424-4583-b36e-524ab1f0afa4"


class FakeTransport:
    """Transport backed by a queue. ``None`` in the queue ends the stream."""

    def __init__(self, chunks: list[bytes] | None = None) -> None:
        self.inbound: asyncio.Queue[bytes | BaseException | None] = asyncio.Queue()
        for chunk in chunks or []:
            self.inbound.put_nowait(chunk)
        self.sent: list[bytes] = []
        self.close_calls = 0
        self.sent_event = asyncio.Event()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def received(self) -> bytes:
        return b"".join(self.sent)

    def push(self, chunk: bytes) -> None:
        self.inbound.put_nowait(chunk)

    def fail_with(self, error: BaseException) -> None:
        self.inbound.put_nowait(error)

    def end(self) -> None:
        self.inbound.put_nowait(None)

    async def send(self, chunk: bytes) -> None:
        if self._closed:
            raise TransportError("closed")
        self.sent.append(bytes(chunk))
        self.sent_event.set()

    async def close(self) -> None:
        self.close_calls += 1
        self._closed = True
        self.inbound.put_nowait(None)

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._receive()

    async def _receive(self) -> AsyncIterator[bytes]:
        while True:
            item = await self.inbound.get()
            if item is None:
                return
            if isinstance(item, BaseException):
                raise item
            yield item


class FakeConnection:
    """Outbound connection whose reads come from a queue; ``b""`` is EOF."""

    def __init__(
        self, responses: list[bytes] | None = None, stall_writes: bool = False
    ) -> None:
        self.stall_writes = stall_writes
        self.reads: asyncio.Queue[bytes] = asyncio.Queue()
        for response in responses or []:
            self.reads.put_nowait(response)
        self.written: list[bytes] = []
        self.close_calls = 0
        self.host = "fake"
        self.port = 0

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    async def read(self, n: int) -> bytes:
        return await self.reads.get()

    async def write(self, data: bytes) -> None:
        if self.stall_writes:
            # a destination that stopped reading
            await asyncio.Event().wait()
        self.written.append(bytes(data))

    async def close(self) -> None:
        self.close_calls += 1


class FakeResolver:
    """DNS resolver answering every query with ``b"answer:" + query``."""

    def __init__(self, fail: bool = False, block: bool = False) -> None:
        self.queries: list[bytes] = []
        self.closed = False
        self.fail = fail
        self.block = block

    async def query(self, packet: bytes) -> bytes:
        self.queries.append(packet)
        if self.block:
            await asyncio.Event().wait()
        if self.fail:
            raise RelayIOError("resolver unavailable")
        return b"answer:" + packet

    async def close(self) -> None:
        self.closed = True


async def start_echo_server() -> tuple[asyncio.Server, int]:
    """Start a loopback TCP server that echoes every byte back."""

    async def echo(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            while data := await reader.read(65536):
                writer.write(data)
                await writer.drain()
        except ConnectionError:
            pass
        finally:
            writer.close()

    server = await asyncio.start_server(echo, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    return server, port


async def wait_until(predicate, timeout: float = 5.0) -> None:
    """Poll ``predicate`` until it is true or the timeout expires."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)


@pytest.fixture
def identity() -> str:
    return IDENTITY


@pytest.fixture
def config() -> RelayConfig:
    return RelayConfig.create(IDENTITY, dial_timeout=2.0, dns_timeout=1.0)


@pytest.fixture
def token(config: RelayConfig) -> bytes:
    return config.token


@pytest.fixture
def fake_transport():
    return FakeTransport


@pytest.fixture
def fake_connection():
    return FakeConnection


@pytest.fixture
def fake_resolver():
    return FakeResolver


@pytest.fixture
def echo_server():
    return start_echo_server


@pytest.fixture
def eventually():
    return wait_until
