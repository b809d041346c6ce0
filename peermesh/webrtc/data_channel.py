"""
Data channel management for peer sessions.

Every session opens one outbound channel toward its peer when it is created.
The peer's outbound channel shows up here as an inbound ``datachannel``
event; the receiving side then sends DATA back over the relay so the
sending side knows its channel has a listener.
"""
from typing import Any, Awaitable, Callable, Dict, Optional

from peermesh.core.logging import LoggerMixin, debug_log
from peermesh.signaling.messages import MessageType, SignalingMessage
from peermesh.webrtc.session import PeerSession


class DataChannelHandshake(LoggerMixin):
    """Manages per-peer data channels and the DATA readiness handshake."""

    def __init__(self, local_peer_id: str, registry, show_logs: bool = True):
        super().__init__()
        self.local_peer_id = local_peer_id
        self.registry = registry
        self.show_logs = show_logs
        self.send_callback: Optional[Callable[..., Awaitable[bool]]] = None
        self.notify: Optional[Callable] = None

    def set_send_callback(self, callback: Callable[..., Awaitable[bool]]):
        self.send_callback = callback

    def set_notify_callback(self, callback: Callable):
        self.notify = callback

    def _notify(self, event: str, peer_id: str, data: Any = None):
        if self.notify:
            self.notify(event, peer_id, data)

    def _log(self, message: str, data: Optional[Any] = None):
        if self.show_logs:
            debug_log(f"💬 [DataChannel] {message}", data)

    def open_sending_channel(self, session: PeerSession):
        """Create the session's outbound channel, labelled with the peer id."""
        channel = session.connection.create_data_channel(session.peer_id)
        session.sending_channel = channel
        self._setup_sending_handlers(session, channel)
        self._log(f"SenderDataChannel for {session.peer_id} created on {self.local_peer_id}.")

    def _setup_sending_handlers(self, session: PeerSession, channel):

        @channel.on("open")
        def on_open():
            self._log(f"DataChannel {session.peer_id} opened on {self.local_peer_id}.")
            if session.data_ready_pending and self.registry.is_current(session):
                session.data_ready_pending = False
                self._notify('data_channel_ready', session.peer_id, channel)

        @channel.on("message")
        def on_message(message):
            self._on_message(session.peer_id, "senderDataChannel", message)

        @channel.on("close")
        def on_close():
            self._log(f"DataChannel {session.peer_id} closed on {self.local_peer_id}.")

    async def handle_inbound_channel(self, session: PeerSession, channel):
        """Record the peer's channel and confirm the receive path over the relay."""
        session.receiving_channel = channel

        @channel.on("message")
        def on_message(message):
            self._on_message(session.peer_id, "receiverDataChannel", message)

        self._log(f"ReceiverDataChannel connection for {session.peer_id} established on {self.local_peer_id}.", {
            "label": getattr(channel, "label", None)
        })

        if self.send_callback:
            await self.send_callback(
                MessageType.DATA,
                session.peer_id,
                f"ReceiverDataChannel on {self.local_peer_id} for {session.peer_id} established."
            )

    def handle_data(self, message: SignalingMessage) -> bool:
        """The peer's receive path is ready; raise readiness once ours is open."""
        session = self.registry.get(message.sender_id)
        if session is None:
            debug_log(f"📭 [DataChannel] DATA from unknown peer {message.sender_id} ignored", level="DEBUG")
            return False

        if session.sending_channel_open():
            session.data_ready_pending = False
            self._notify('data_channel_ready', session.peer_id, session.sending_channel)
            return True

        session.data_ready_pending = True
        self._log(f"DATA from {session.peer_id} before channel open, waiting", {
            "ready_state": getattr(session.sending_channel, "readyState", None)
        })
        return False

    def _on_message(self, peer_id: str, channel_name: str, message):
        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="replace")
        self._log(f"{self.local_peer_id} received on {peer_id} {channel_name}: {message}")
        self._notify('data_channel_message', peer_id, message)

    def send(self, message: str, peer_id: Optional[str] = None) -> int:
        """Send on one peer's outbound channel, or on all of them.

        Channels that are not open drop the message.
        """
        if peer_id is not None:
            session = self.registry.get(peer_id)
            targets = [session] if session is not None else []
            if session is None:
                self.log_warning("Cannot send message: peer not found", {
                    "peer_id": peer_id,
                    "available_peers": self.registry.peer_ids()
                })
        else:
            targets = self.registry.sessions()

        sent_count = 0
        for session in targets:
            if not session.sending_channel_open():
                debug_log(f"📤 [DataChannel] Channel to {session.peer_id} not open, message dropped", {
                    "ready_state": getattr(session.sending_channel, "readyState", None)
                }, "DEBUG")
                continue
            session.sending_channel.send(message)
            sent_count += 1
        return sent_count

    def close_channels(self, session: PeerSession):
        """Close both channels of a session."""
        for channel in (session.sending_channel, session.receiving_channel):
            if channel is None:
                continue
            try:
                channel.close()
            except Exception as e:
                self.log_warning("Error closing data channel", {
                    "peer_id": session.peer_id,
                    "error": str(e),
                    "error_type": type(e).__name__
                })

    def get_channel_info(self, peer_id: str) -> Optional[Dict[str, Any]]:
        """Get information about a peer's channels."""
        session = self.registry.get(peer_id)
        if session is None:
            return None
        return {
            "peer_id": peer_id,
            "sending": getattr(session.sending_channel, "readyState", None),
            "receiving": getattr(session.receiving_channel, "readyState", None),
            "ready_pending": session.data_ready_pending
        }

    def get_all_channels_info(self) -> Dict[str, Dict[str, Any]]:
        return {peer_id: self.get_channel_info(peer_id) for peer_id in self.registry.peer_ids()}
