"""
Relay channel: the duplex WebSocket used to reach the signaling relay.
"""
import asyncio
from typing import Any, Callable, Dict, List, Optional

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from peermesh.core.exceptions import TransportUnavailable
from peermesh.core.logging import LoggerMixin, debug_log

RELAY_EVENTS = ('open', 'message', 'close', 'error')


class RelayChannel(LoggerMixin):
    """Reliable, per-direction ordered text channel to the relay.

    Inbound frames are delivered one at a time to the ``message`` callbacks;
    the next frame is not read until every callback for the previous one has
    returned, so handlers observe relay delivery order.
    """

    def __init__(self):
        super().__init__()
        self._websocket = None
        self._listener_task: Optional[asyncio.Task] = None
        self.url: Optional[str] = None
        self.connecting = False
        self.callbacks: Dict[str, List[Callable]] = {event: [] for event in RELAY_EVENTS}

    @property
    def is_connected(self) -> bool:
        return self._websocket is not None and not self.connecting

    def on(self, event: str, callback: Callable):
        """Register a callback for ``open``, ``message``, ``close`` or ``error``."""
        if event not in self.callbacks:
            raise ValueError(f"Unknown relay event: {event}")
        self.callbacks[event].append(callback)

    async def _emit(self, event: str, *args: Any):
        for callback in list(self.callbacks[event]):
            try:
                result = callback(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                self.log_error("Error in relay callback", {
                    "event": event,
                    "error": str(e),
                    "error_type": type(e).__name__
                })

    async def connect(self, url: str, user_agent: Optional[str] = None) -> bool:
        """Open the relay connection and start delivering frames."""
        if self._websocket is not None or self.connecting:
            self.log_warning("Relay connection already open or in progress", {"url": self.url})
            return False

        self.url = url
        self.connecting = True
        debug_log("🔌 [Relay] Connecting", {"url": url, "user_agent": user_agent})

        options: Dict[str, Any] = {"ping_interval": 30, "ping_timeout": 10, "close_timeout": 10}
        if user_agent:
            options["user_agent_header"] = user_agent

        try:
            websocket = await connect(url, **options)
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            self.connecting = False
            self.log_error("Relay connection failed", {"url": url, "error": str(e)})
            await self._emit('error', e)
            await self._emit('close')
            return False

        self._websocket = websocket
        self.connecting = False
        self.log_info("Relay connection opened", {"url": url})

        self._listener_task = asyncio.create_task(self._listen(websocket))
        await self._emit('open')
        return True

    async def _listen(self, websocket):
        try:
            async for frame in websocket:
                await self._emit('message', frame)
        except ConnectionClosed as e:
            debug_log("🔌 [Relay] Connection closed by remote", {"code": e.rcvd.code if e.rcvd else None})
        except Exception as e:
            self.log_error("Relay listener error", {"error": str(e), "error_type": type(e).__name__})
            await self._emit('error', e)
        finally:
            if self._websocket is websocket:
                self._websocket = None
                self.log_info("Relay connection closed", {"url": self.url})
                await self._emit('close')

    async def send(self, text: str):
        """Send one frame; raises TransportUnavailable when not connected."""
        websocket = self._websocket
        if websocket is None or self.connecting:
            raise TransportUnavailable("Relay channel not connected", {"url": self.url})
        try:
            await websocket.send(text)
        except ConnectionClosed as e:
            raise TransportUnavailable("Relay channel closed during send", {"error": str(e)})

    async def close(self):
        """Close the relay connection. Safe to call when already closed."""
        websocket = self._websocket
        if websocket is None:
            return

        self._websocket = None
        try:
            await websocket.close()
        except WebSocketException as e:
            self.log_warning("Error closing relay connection", {"error": str(e)})

        task = self._listener_task
        self._listener_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self.log_info("Relay connection closed", {"url": self.url})
        await self._emit('close')
