"""
Signaling relay server.

A WebSocket hub: every text frame a client sends is rebroadcast, unchanged,
to every other connected client. The relay does not parse frames; peers
filter by receiver id themselves.
"""
import datetime
import itertools
import json
from typing import Any, Dict, Optional

from aiohttp import WSMsgType, web

from peermesh.core.logging import LoggerMixin, debug_log


class RelayServer(LoggerMixin):
    """Broadcast hub for signaling frames."""

    def __init__(self):
        super().__init__()
        self.clients: Dict[str, web.WebSocketResponse] = {}
        self.frames_relayed = 0
        self.started_at: Optional[datetime.datetime] = None
        self._ids = itertools.count(1)
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

        self.app = web.Application()
        self.app[relay_key] = self
        self.app.router.add_get("/", handle_websocket)
        self.app.router.add_get("/status", handle_status)

    def _next_client_id(self) -> str:
        return f"client_{next(self._ids)}"

    async def broadcast(self, frame: str, sender_id: Optional[str] = None) -> int:
        """Send a frame to every open client except its sender."""
        delivered = 0
        for client_id, ws in list(self.clients.items()):
            if client_id == sender_id or ws.closed:
                continue
            try:
                await ws.send_str(frame)
                delivered += 1
            except ConnectionError as e:
                self.log_warning("Failed to relay frame", {"client_id": client_id, "error": str(e)})
        self.frames_relayed += 1
        return delivered

    async def serve_client(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        client_id = self._next_client_id()
        self.clients[client_id] = ws
        debug_log(f"✅ [Relay] Client connected", {
            "client_id": client_id,
            "user_agent": request.headers.get("User-Agent"),
            "clients": len(self.clients)
        })

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    delivered = await self.broadcast(msg.data, client_id)
                    debug_log(f"📡 [Relay] Frame from {client_id} relayed to {delivered} clients", level="DEBUG")
                elif msg.type == WSMsgType.ERROR:
                    self.log_error("Relay client error", {
                        "client_id": client_id,
                        "error": str(ws.exception())
                    })
                    break
        finally:
            self.clients.pop(client_id, None)
            debug_log(f"🔌 [Relay] Client disconnected", {
                "client_id": client_id,
                "clients": len(self.clients)
            })

        return ws

    def get_status(self) -> Dict[str, Any]:
        return {
            "clients": len(self.clients),
            "frames_relayed": self.frames_relayed,
            "started_at": self.started_at.isoformat() if self.started_at else None
        }

    async def start(self, host: str = "0.0.0.0", port: int = 8765):
        """Start serving on host:port."""
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()
        self.started_at = datetime.datetime.now()
        debug_log(f"🌐 [Relay] Relay server listening on ws://{host}:{port}/")

    async def cleanup(self):
        """Close every client and stop the server."""
        for ws in list(self.clients.values()):
            await ws.close()
        self.clients.clear()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        debug_log(f"🛑 [Relay] Relay server stopped")


relay_key = web.AppKey("relay", RelayServer)


async def handle_websocket(request: web.Request):
    """Handle a relay client connection."""
    relay = request.app[relay_key]
    return await relay.serve_client(request)


async def handle_status(request: web.Request):
    """Handle status request."""
    try:
        relay = request.app[relay_key]
        return web.Response(
            content_type="application/json",
            text=json.dumps(relay.get_status())
        )
    except Exception as e:
        debug_log(f"❌ [HTTP] Status handling error", {
            "error": str(e),
            "error_type": type(e).__name__
        })
        return web.Response(
            content_type="application/json",
            text=json.dumps({'error': str(e)}),
            status=500
        )
