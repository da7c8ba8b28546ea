"""Relay server: WebSocket fan-out plus a few plain HTTP endpoints.

Every WebSocket upgrade, on any path, joins the relay. Plain HTTP
requests are answered before the handshake:

    GET /health  -> 200 {"status": "ok"}
    GET /stats   -> 200 relay counters (JSON)
    GET /        -> 200 plain-text banner

The library's own keepalive is disabled; liveness is owned by the
relay heartbeat so reaping shows up in the registry and the stats.
"""

import json
import logging
from http import HTTPStatus
from typing import Optional

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed
from websockets.http11 import Request, Response

from src.logging_config import ConnectionContext
from src.relay.broadcaster import BroadcastRelay
from src.relay.config import RelayConfig
from src.relay.transport import WebsocketsTransport

logger = logging.getLogger(__name__)


class RelayServer:
    """Binds a ``BroadcastRelay`` to a listening socket.

    Example::

        server = RelayServer(RelayConfig(port=8080))
        await server.start()
        ...
        await server.stop()
    """

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        relay: Optional[BroadcastRelay] = None,
    ):
        self.config = config or RelayConfig()
        self.relay = relay or BroadcastRelay(self.config)
        self._server: Optional[Server] = None

    @property
    def port(self) -> Optional[int]:
        """Bound port (useful when configured with port 0)."""
        if self._server is None:
            return None
        for sock in self._server.sockets:
            return sock.getsockname()[1]
        return None

    async def start(self) -> None:
        self._server = await serve(
            self.handle_connection,
            self.config.host,
            self.config.port,
            process_request=self.process_request,
            ping_interval=None,
        )
        self.relay.start()
        logger.info("WebSocket relay listening on %s:%s", self.config.host, self.port)

    async def stop(self) -> None:
        """Stop the heartbeat, close every socket and release the port."""
        await self.relay.stop()
        closed = await self.relay.close_all()
        if closed:
            logger.info("Closed %d connection(s) on shutdown", closed)
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        logger.info("Relay shut down")

    # ── HTTP ─────────────────────────────────────────────────────────

    def process_request(
        self, connection: ServerConnection, request: Request
    ) -> Optional[Response]:
        """Answer plain HTTP requests; return None to continue the upgrade."""
        if request.headers.get("Upgrade", "").lower() == "websocket":
            return None
        path = request.path.split("?", 1)[0]
        if path == "/health":
            return _json_response(connection, {"status": "ok"})
        if path == "/stats":
            return _json_response(connection, self.relay.get_stats())
        if path == "/":
            return connection.respond(HTTPStatus.OK, f"{self.config.banner}\n")
        return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")

    # ── WebSocket ────────────────────────────────────────────────────

    async def handle_connection(self, connection: ServerConnection) -> None:
        """Register a producer or subscriber and pump its frames into the relay."""
        conn_id = self.relay.connect(WebsocketsTransport(connection))

        with ConnectionContext(connection_id=conn_id) as ctx:
            ctx.bind(path=connection.request.path)
            try:
                async for message in connection:
                    if isinstance(message, bytes):
                        message = message.decode("utf-8", errors="replace")
                    await self.relay.on_message(conn_id, message)
            except ConnectionClosed:
                pass
            except Exception as e:
                logger.warning("WebSocket %s errored: %s", conn_id, e)
            finally:
                self.relay.disconnect(conn_id)
                logger.debug("Connection %s closed after %.0f ms", conn_id, ctx.elapsed_ms)


def _json_response(connection: ServerConnection, body: dict) -> Response:
    response = connection.respond(HTTPStatus.OK, json.dumps(body))
    del response.headers["Content-Type"]
    response.headers["Content-Type"] = "application/json"
    return response
