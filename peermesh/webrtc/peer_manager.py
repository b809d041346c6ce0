"""
Peer mesh management: wires the relay, registry, orchestrator, data-channel
handshake and media resources into one explicitly constructed manager.
"""
from typing import Any, Callable, Dict, List, Optional, Set

from peermesh.core.config import PeerConfig
from peermesh.core.exceptions import MalformedMessage, TransportUnavailable
from peermesh.core.logging import LoggerMixin, debug_log
from peermesh.signaling import codec
from peermesh.signaling.dispatcher import SignalingDispatcher
from peermesh.signaling.messages import BROADCAST, MessageType, SignalingMessage
from peermesh.signaling.relay import RelayChannel
from peermesh.webrtc.data_channel import DataChannelHandshake
from peermesh.webrtc.engine import TransportEngine
from peermesh.webrtc.orchestrator import ConnectionOrchestrator
from peermesh.webrtc.registry import PeerRegistry
from peermesh.webrtc.resources import ResourceLifecycleManager

CONNECTION_EVENTS = (
    'relay_state',
    'converged',
    'webrtc_connected',
    'data_channel_ready',
    'data_channel_message',
    'video_stream',
    'audio_stream'
)


class PeerMeshManager(LoggerMixin):
    """Manages every peer session of one local participant."""

    def __init__(self, config: PeerConfig, engine=None, relay=None,
                 sink_factory: Optional[Callable[[str, str], Any]] = None):
        super().__init__()
        self.config = config
        self.local_peer_id = config.peer_id
        self.capabilities = config.capabilities()

        self.engine = engine or TransportEngine(config.rtc_config)
        self.relay = relay or RelayChannel()

        self.registry = PeerRegistry(self.local_peer_id, self.capabilities)
        self.resources = ResourceLifecycleManager(self.registry, sink_factory)
        self.handshake = DataChannelHandshake(self.local_peer_id, self.registry, config.data_channel_logs)
        self.orchestrator = ConnectionOrchestrator(
            self.local_peer_id, self.engine, self.registry, self.resources, self.handshake
        )
        self.dispatcher = SignalingDispatcher(self.local_peer_id)

        self.webrtc_active = False
        self.relay_connected = False

        self.connection_callbacks: Dict[str, Set[Callable]] = {event: set() for event in CONNECTION_EVENTS}

        self._setup_module_integrations()

        debug_log(f"🚀 [PeerManager] Peer manager initialized for {self.local_peer_id}", {
            "is_media_sender": self.capabilities.is_media_sender,
            "is_media_receiver": self.capabilities.is_media_receiver
        })

    def _setup_module_integrations(self):
        """Set up integrations between modules."""
        self.registry.set_resources(self.resources)
        self.registry.set_session_factory(self.orchestrator.create_session)
        self.registry.set_session_closer(self.orchestrator.close_session)
        self.registry.set_send_callback(self.send_signal)
        self.registry.set_converged_callback(self._on_converged)

        self.resources.set_renegotiate_callback(self.orchestrator.begin_negotiation)
        self.resources.set_notify_callback(self._notify_callbacks)

        self.handshake.set_send_callback(self.send_signal)
        self.handshake.set_notify_callback(self._notify_callbacks)

        self.orchestrator.set_send_callback(self.send_signal)
        self.orchestrator.set_notify_callback(self._notify_callbacks)

        self.dispatcher.add_listener(MessageType.NEWPEER, self.registry.handle_new_peer)
        self.dispatcher.add_listener(MessageType.NEWPEERACK, self.registry.handle_new_peer_ack)
        self.dispatcher.add_listener(MessageType.OFFER, self.orchestrator.handle_offer, addressed_only=True)
        self.dispatcher.add_listener(MessageType.ANSWER, self.orchestrator.handle_answer, addressed_only=True)
        self.dispatcher.add_listener(MessageType.CANDIDATE, self.orchestrator.handle_candidate)
        self.dispatcher.add_listener(MessageType.DISPOSE, self.registry.handle_dispose)
        self.dispatcher.add_listener(MessageType.DATA, self.handshake.handle_data, addressed_only=True)
        self.dispatcher.add_listener(MessageType.COMPLETE, self.orchestrator.handle_complete, addressed_only=True)

        self.relay.on('open', self._on_relay_open)
        self.relay.on('message', self.dispatcher.dispatch)
        self.relay.on('close', self._on_relay_close)
        self.relay.on('error', self._on_relay_error)

    # Callbacks

    def add_connection_callback(self, event: str, callback: Callable):
        """Add a callback for connection events."""
        if event in self.connection_callbacks:
            self.connection_callbacks[event].add(callback)

    def remove_connection_callback(self, event: str, callback: Callable):
        """Remove a callback for connection events."""
        if event in self.connection_callbacks:
            self.connection_callbacks[event].discard(callback)

    def _notify_callbacks(self, event: str, peer_id: Optional[str], data: Any = None):
        """Notify all callbacks for an event."""
        for callback in list(self.connection_callbacks.get(event, ())):
            try:
                callback(peer_id, data)
            except Exception as e:
                self.log_error("Error in connection callback", {
                    "event": event,
                    "peer_id": peer_id,
                    "error": str(e)
                })

    # Relay

    async def connect(self, url: Optional[str] = None) -> bool:
        """Open the relay; NEWPEER is broadcast once it is open."""
        return await self.relay.connect(url or self.config.relay_url, self.config.get_relay_headers())

    async def _on_relay_open(self):
        self.relay_connected = True
        self._notify_callbacks('relay_state', self.local_peer_id, "open")
        await self.send_signal(MessageType.NEWPEER, BROADCAST, f"New peer {self.local_peer_id}")

    def _on_relay_close(self):
        self.relay_connected = False
        self._notify_callbacks('relay_state', self.local_peer_id, "closed")

    def _on_relay_error(self, error: Exception):
        self.log_error("Relay error", {"error": str(error), "error_type": type(error).__name__})

    async def close_relay(self):
        await self.relay.close()

    async def send_signal(self, message_type: MessageType, receiver_id: str, payload: str,
                          peer_count: Optional[int] = None, sender_is_media_source: Optional[bool] = None) -> bool:
        """Encode and send one signaling message from the local peer."""
        message = SignalingMessage(
            type=message_type,
            sender_id=self.local_peer_id,
            receiver_id=receiver_id,
            payload=payload,
            peer_count=self.registry.count() if peer_count is None else peer_count,
            sender_is_media_source=(self.capabilities.is_media_sender
                                    if sender_is_media_source is None else sender_is_media_source)
        )

        try:
            frame = codec.encode(message)
            await self.relay.send(frame)
        except MalformedMessage as e:
            self.log_error(f"Cannot encode {message_type.value}", {"error": str(e)})
            return False
        except TransportUnavailable as e:
            self.log_warning(f"{message_type.value} not sent, relay unavailable", {
                "receiver_id": receiver_id,
                "error": str(e)
            })
            return False

        debug_log(f"📤 [PeerManager] {message_type.value} to {receiver_id}", {
            "peer_count": message.peer_count,
            "payload_length": len(payload)
        }, "DEBUG")
        return True

    async def send_relay_test_message(self, text: str) -> bool:
        """Send a raw, non-protocol frame over the relay."""
        try:
            await self.relay.send(text)
        except TransportUnavailable as e:
            self.log_warning("Test message not sent, relay unavailable", {"error": str(e)})
            return False
        return True

    # Negotiation

    def _on_converged(self):
        self._notify_callbacks('converged', self.local_peer_id, self.registry.count())
        self.connect_webrtc()

    def connect_webrtc(self) -> List:
        """Begin negotiation with every known peer, once per activation."""
        if self.webrtc_active:
            return []
        self.webrtc_active = True
        return self.orchestrator.begin_negotiation()

    async def drain(self):
        """Wait for in-flight negotiation steps."""
        await self.orchestrator.drain()

    async def close_connections(self):
        """Tear down every session and tell remote peers to release theirs."""
        self.webrtc_active = False
        sessions = self.registry.sessions()

        for session in sessions:
            for task in list(session.tasks):
                task.cancel()
            self.handshake.close_channels(session)
        await self.resources.release_all()

        # must go out before the registry is cleared
        await self.send_signal(MessageType.DISPOSE, BROADCAST, f"Remove peerConnection for {self.local_peer_id}.")

        for session in self.registry.clear():
            await self.orchestrator.close_session(session)

        self.log_info(f"All peer connections closed on {self.local_peer_id}", {"sessions": len(sessions)})

    # Data channels

    def send_data_channel_message(self, message: str, peer_id: Optional[str] = None) -> int:
        """Send over the outbound data channel to one peer or all peers."""
        if not self.relay.is_connected:
            self.log_error(f"Relay not connected on {self.local_peer_id}")
            return 0
        return self.handshake.send(message, peer_id)

    # Media

    def _can_send_media(self, kind: str) -> bool:
        if not self.capabilities.is_media_sender:
            self.log_warning(f"{kind} track ignored, {self.local_peer_id} is not a media sender")
            return False
        return True

    def add_video_track(self, track) -> List:
        if not self._can_send_media("video"):
            return []
        return self.resources.add_video_track(track)

    def add_audio_track(self, track) -> List:
        if not self._can_send_media("audio"):
            return []
        return self.resources.add_audio_track(track)

    def remove_video_track(self) -> List:
        return self.resources.remove_video_track()

    def remove_audio_track(self) -> List:
        return self.resources.remove_audio_track()

    # Status

    def get_peer_count(self) -> int:
        return self.registry.count()

    def get_connected_peers(self) -> list:
        return [session.peer_id for session in self.registry.sessions() if session.connected]

    def get_status(self) -> Dict[str, Any]:
        return {
            "local_peer_id": self.local_peer_id,
            "relay_connected": self.relay_connected,
            "webrtc_active": self.webrtc_active,
            "converged": self.registry.converged,
            "orchestrator": self.orchestrator.get_status(),
            "resources": self.resources.get_status(),
            "dispatcher": self.dispatcher.get_status(),
            "channels": self.handshake.get_all_channels_info()
        }
