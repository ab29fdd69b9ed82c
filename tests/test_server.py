"""Tests for the HTTP front door and share links."""

from __future__ import annotations

import base64
from urllib.parse import parse_qs, urlsplit

import pytest
from aiohttp import WSMsgType, test_utils

from passage.core.config import RelayConfig
from passage.protocol.header import encode_header
from passage.server.app import RelayServer
from passage.server.links import build_share_link


def _client(config: RelayConfig) -> test_utils.TestClient:
    server = RelayServer(config, heartbeat=None)
    return test_utils.TestClient(test_utils.TestServer(server.create_app()))


class TestShareLink:
    """Tests for build_share_link."""

    def test_link_fields(self, identity: str) -> None:
        link = build_share_link(identity, "relay.example.com")
        parts = urlsplit(link)

        assert parts.scheme == "vless"
        assert parts.username == identity
        assert parts.hostname == "relay.example.com"
        assert parts.port == 443
        assert parts.fragment == "relay.example.com"
        query = parse_qs(parts.query)
        assert query["type"] == ["ws"]
        assert query["security"] == ["tls"]
        assert query["sni"] == ["relay.example.com"]
        assert query["path"] == ["/"]

    def test_path_is_quoted(self, identity: str) -> None:
        link = build_share_link(identity, "relay.example.com", port=8443, path="/ws?ed=2048")
        assert "path=%2Fws%3Fed%3D2048" in link
        assert ":8443?" in link

    def test_ipv6_host_is_bracketed(self, identity: str) -> None:
        link = build_share_link(identity, "::1")
        parts = urlsplit(link)

        assert f"@[::1]:443?" in link
        assert parts.hostname == "::1"
        assert parts.port == 443
        assert parse_qs(parts.query)["sni"] == ["::1"]


class TestHttpRoutes:
    """Tests for the plain GET routes."""

    @pytest.mark.asyncio
    async def test_root_returns_request_info(self, config: RelayConfig) -> None:
        async with _client(config) as client:
            resp = await client.get("/", headers={"User-Agent": "tests"})
            assert resp.status == 200
            body = await resp.json()
        assert body["user_agent"] == "tests"
        assert body["scheme"] == "http"
        assert "remote" in body

    @pytest.mark.asyncio
    async def test_identity_path_returns_link(self, config: RelayConfig) -> None:
        async with _client(config) as client:
            resp = await client.get(f"/{config.identity}")
            assert resp.status == 200
            text = await resp.text()
        assert text.startswith(f"vless://{config.identity}@")

    @pytest.mark.asyncio
    async def test_identity_path_ignores_case(self, identity: str) -> None:
        config = RelayConfig.create(identity.upper())
        async with _client(config) as client:
            resp = await client.get(f"/{identity.upper()}")
            assert resp.status == 200
            text = await resp.text()
        assert text.startswith(f"vless://{identity}@")

    @pytest.mark.asyncio
    async def test_link_host_drops_port_from_ipv6_host(self, config: RelayConfig) -> None:
        async with _client(config) as client:
            resp = await client.get(f"/{config.identity}", headers={"Host": "[::1]:8080"})
            assert resp.status == 200
            text = await resp.text()
        assert text.startswith(f"vless://{config.identity}@[::1]:443?")
        assert "sni=%3A%3A1" in text

    @pytest.mark.asyncio
    async def test_other_path_is_404(self, config: RelayConfig) -> None:
        async with _client(config) as client:
            resp = await client.get("/somewhere")
            assert resp.status == 404

    @pytest.mark.asyncio
    async def test_health(self, config: RelayConfig) -> None:
        async with _client(config) as client:
            resp = await client.get("/health")
            assert resp.status == 200
            assert await resp.json() == {"status": "healthy", "sessions": 0}

    @pytest.mark.asyncio
    async def test_metrics(self, config: RelayConfig) -> None:
        async with _client(config) as client:
            resp = await client.get("/metrics")
            assert resp.status == 200
            assert "passage_" in await resp.text()


class TestWebSocketRelay:
    """End-to-end sessions through the WebSocket upgrade."""

    @pytest.mark.asyncio
    async def test_relay_to_loopback_echo(
        self, config: RelayConfig, token: bytes, echo_server
    ) -> None:
        server, port = await echo_server()
        try:
            async with _client(config) as client:
                ws = await client.ws_connect("/")
                await ws.send_bytes(encode_header(token, "127.0.0.1", port) + b"ping")

                received = b""
                while len(received) < 6:
                    msg = await ws.receive(timeout=5.0)
                    assert msg.type == WSMsgType.BINARY
                    received += msg.data
                await ws.close()
        finally:
            server.close()
            await server.wait_closed()

        assert received == b"\x00\x00ping"

    @pytest.mark.asyncio
    async def test_early_data_in_protocol_header(
        self, config: RelayConfig, token: bytes, echo_server
    ) -> None:
        server, port = await echo_server()
        early = base64.urlsafe_b64encode(
            encode_header(token, "127.0.0.1", port) + b"early"
        ).decode().rstrip("=")
        try:
            async with _client(config) as client:
                ws = await client.ws_connect("/", protocols=(early,))
                assert ws.protocol == early

                received = b""
                while len(received) < 7:
                    msg = await ws.receive(timeout=5.0)
                    assert msg.type == WSMsgType.BINARY
                    received += msg.data
                await ws.close()
        finally:
            server.close()
            await server.wait_closed()

        assert received == b"\x00\x00early"

    @pytest.mark.asyncio
    async def test_unauthorized_session_is_closed(self, config: RelayConfig) -> None:
        async with _client(config) as client:
            ws = await client.ws_connect("/")
            await ws.send_bytes(encode_header(bytes(16), "127.0.0.1", 80) + b"x")

            msg = await ws.receive(timeout=5.0)
            assert msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSED)
