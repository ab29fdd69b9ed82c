"""Client-facing transport: the upgraded WebSocket and its early data."""

from __future__ import annotations

import base64
import binascii
import contextlib
from collections.abc import AsyncIterator
from typing import Protocol

import structlog
from aiohttp import WSMsgType, web

from passage.core.exceptions import ProtocolError, ProtocolErrorKind, TransportError

logger = structlog.get_logger()

EARLY_DATA_HEADER = "Sec-WebSocket-Protocol"

_URLSAFE = str.maketrans("-_", "+/")


class Transport(Protocol):
    """Bidirectional chunk transport as seen by a session."""

    @property
    def closed(self) -> bool: ...

    async def send(self, chunk: bytes) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[bytes]: ...


def decode_early_data(header: str | None) -> bytes:
    """Decode the base64 early data carried alongside the upgrade request.

    Both the standard and URL-safe alphabets are accepted and padding is
    optional. A missing or empty header yields no data.

    Raises:
        ProtocolError: If the header is not valid base64
    """
    if not header:
        return b""
    text = header.strip().translate(_URLSAFE)
    text += "=" * (-len(text) % 4)
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ProtocolError(
            ProtocolErrorKind.MALFORMED_EARLY_DATA, f"Invalid early data: {e}"
        ) from e


class WebSocketTransport:
    """Adapts an aiohttp WebSocketResponse to the Transport protocol."""

    def __init__(self, ws: web.WebSocketResponse) -> None:
        self._ws = ws

    @property
    def closed(self) -> bool:
        return self._ws.closed

    async def send(self, chunk: bytes) -> None:
        if self._ws.closed:
            raise TransportError("WebSocket is closed")
        try:
            await self._ws.send_bytes(chunk)
        except (ConnectionResetError, RuntimeError) as e:
            raise TransportError(f"WebSocket send failed: {e}") from e

    async def close(self) -> None:
        if self._ws.closed:
            return
        with contextlib.suppress(ConnectionResetError, RuntimeError):
            await self._ws.close()

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._receive()

    async def _receive(self) -> AsyncIterator[bytes]:
        while not self._ws.closed:
            msg = await self._ws.receive()
            if msg.type == WSMsgType.BINARY:
                yield msg.data
            elif msg.type == WSMsgType.TEXT:
                yield msg.data.encode("utf-8")
            elif msg.type == WSMsgType.ERROR:
                raise TransportError(f"WebSocket error: {self._ws.exception()}")
            elif msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
                return
