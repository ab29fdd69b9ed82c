"""HTTP front door: plain GET routes and the WebSocket upgrade into the relay."""

from __future__ import annotations

import contextlib
import weakref

import structlog
from aiohttp import web

from passage.core.config import RelayConfig
from passage.observability.metrics import generate_metrics, get_content_type
from passage.relay.handler import handle
from passage.relay.transport import EARLY_DATA_HEADER, WebSocketTransport
from passage.server.links import build_share_link

logger = structlog.get_logger()


def _is_upgrade(request: web.Request) -> bool:
    return request.headers.get("Upgrade", "").lower() == "websocket"


class RelayServer:
    """aiohttp server that hands every upgraded connection to the relay."""

    def __init__(
        self,
        config: RelayConfig,
        bind: str = "0.0.0.0:8080",
        *,
        ws_max_size: int = 4 * 1024 * 1024,
        heartbeat: float | None = 30.0,
    ) -> None:
        self.config = config
        self.bind = bind
        self.ws_max_size = ws_max_size
        self.heartbeat = heartbeat
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._websockets: weakref.WeakSet[web.WebSocketResponse] = weakref.WeakSet()

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self._handle_health_check)
        app.router.add_get("/metrics", self._handle_metrics)
        app.router.add_get("/{path:.*}", self._handle_request)
        return app

    async def start(self) -> None:
        """Start serving on the configured bind address."""
        self._app = self.create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        host, port = self._parse_bind(self.bind)
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        logger.info(
            "Relay server started",
            host=host,
            port=port,
            egress_hint=self.config.egress_hint,
            egress_mode=self.config.egress_mode,
            dns_transport=self.config.dns_transport,
        )

    def _parse_bind(self, bind: str) -> tuple[str, int]:
        """Parse bind address into host and port."""
        if ":" in bind:
            host, port = bind.rsplit(":", 1)
            return host, int(port)
        return "0.0.0.0", int(bind)

    async def stop(self) -> None:
        """Stop the relay server gracefully."""
        logger.info("Stopping relay server...")

        for ws in list(self._websockets):
            with contextlib.suppress(Exception):
                await ws.close()

        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        logger.info("Relay server stopped")

    async def _handle_health_check(self, request: web.Request) -> web.Response:
        return web.json_response(
            {"status": "healthy", "sessions": len(self._websockets)}
        )

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        return web.Response(
            body=generate_metrics(),
            headers={"Content-Type": get_content_type()},
        )

    async def _handle_request(self, request: web.Request) -> web.StreamResponse:
        if _is_upgrade(request):
            return await self._handle_websocket(request)

        path = request.match_info.get("path", "")
        if path == "":
            return web.json_response(
                {
                    "remote": request.remote,
                    "host": request.host,
                    "scheme": request.scheme,
                    "user_agent": request.headers.get("User-Agent"),
                }
            )
        if path.lower() == self.config.identity:
            link = build_share_link(self.config.identity, request.url.host or "")
            return web.Response(text=link, content_type="text/plain", charset="utf-8")
        return web.Response(text="Not found", status=404)

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        early_data = request.headers.get(EARLY_DATA_HEADER)
        ws = web.WebSocketResponse(
            protocols=(early_data,) if early_data else (),
            heartbeat=self.heartbeat,
            max_msg_size=self.ws_max_size,
        )
        await ws.prepare(request)
        self._websockets.add(ws)

        peer = request.remote or "unknown"
        logger.debug("WebSocket accepted", peer=peer, early_data=bool(early_data))
        try:
            await handle(WebSocketTransport(ws), early_data, self.config, peer=peer)
        finally:
            self._websockets.discard(ws)
        return ws
