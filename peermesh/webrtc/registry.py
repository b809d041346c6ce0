"""
Peer registry and join convergence.

The registry is the only map from peer id to session. Join convergence is a
heuristic: a NEWPEERACK from a newly learned peer carries that peer's session
count, and when it equals the local count the local peer assumes it has seen
everybody and starts negotiating. Joins in quick succession or reordered
delivery can make it fire early, late or never.
"""
from typing import Awaitable, Callable, Dict, List, Optional

from peermesh.core.config import LocalCapabilities
from peermesh.core.exceptions import UnknownPeer
from peermesh.core.logging import LoggerMixin, debug_log
from peermesh.signaling.messages import BROADCAST, MessageType, SignalingMessage
from peermesh.webrtc.session import PeerSession, ReceivingResources

SessionFactory = Callable[[str, bool, Optional[ReceivingResources]], PeerSession]


class PeerRegistry(LoggerMixin):
    """Tracks known remote peers and drives join convergence."""

    def __init__(self, local_peer_id: str, capabilities: LocalCapabilities):
        super().__init__()
        self.local_peer_id = local_peer_id
        self.capabilities = capabilities
        self._sessions: Dict[str, PeerSession] = {}
        self.converged = False

        self.resources = None
        self.session_factory: Optional[SessionFactory] = None
        self.session_closer: Optional[Callable[[PeerSession], Awaitable[None]]] = None
        self.send_callback: Optional[Callable[..., Awaitable[bool]]] = None
        self.converged_callback: Optional[Callable[[], None]] = None

    def set_resources(self, resources):
        self.resources = resources

    def set_session_factory(self, factory: SessionFactory):
        self.session_factory = factory

    def set_session_closer(self, closer: Callable[[PeerSession], Awaitable[None]]):
        self.session_closer = closer

    def set_send_callback(self, callback: Callable[..., Awaitable[bool]]):
        self.send_callback = callback

    def set_converged_callback(self, callback: Callable[[], None]):
        self.converged_callback = callback

    # Lookup

    def get(self, peer_id: str) -> Optional[PeerSession]:
        return self._sessions.get(peer_id)

    def require(self, peer_id: str) -> PeerSession:
        session = self._sessions.get(peer_id)
        if session is None:
            raise UnknownPeer(peer_id)
        return session

    def sessions(self) -> List[PeerSession]:
        return list(self._sessions.values())

    def peer_ids(self) -> List[str]:
        return list(self._sessions.keys())

    def count(self) -> int:
        return len(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, peer_id: str) -> bool:
        return peer_id in self._sessions

    def is_current(self, session: PeerSession) -> bool:
        """True while ``session`` is the registered session for its peer."""
        return self._sessions.get(session.peer_id) is session

    # Creation

    def _create_session(self, peer_id: str, remote_is_sender: bool) -> PeerSession:
        receiving = None
        if remote_is_sender and self.capabilities.is_media_receiver and self.resources is not None:
            receiving = self.resources.create_receiving_resources(peer_id)

        session = self.session_factory(peer_id, remote_is_sender, receiving)
        self._sessions[peer_id] = session
        return session

    def ensure_session(self, peer_id: str, remote_is_sender: bool = False) -> PeerSession:
        """Return the session for ``peer_id``, creating it if needed."""
        try:
            return self.require(peer_id)
        except UnknownPeer:
            self.log_info(f"Creating session for unannounced peer {peer_id}")
            return self._create_session(peer_id, remote_is_sender)

    async def _send(self, message_type: MessageType, receiver_id: str, payload: str, **kwargs) -> bool:
        if self.send_callback is None:
            return False
        return await self.send_callback(message_type, receiver_id, payload, **kwargs)

    # Join protocol

    async def handle_new_peer(self, message: SignalingMessage):
        """A peer announced itself: create its session and acknowledge to all."""
        peer_id = message.sender_id
        if peer_id == self.local_peer_id:
            return

        if peer_id in self._sessions:
            self.log_warning(f"Duplicate NEWPEER for {peer_id} ignored", {
                "local_peer_id": self.local_peer_id,
                "sessions": self.count()
            })
        else:
            self._create_session(peer_id, message.sender_is_media_source)
            self.log_info(f"NEWPEER: Created new peerconnection {peer_id} on peer {self.local_peer_id}")

        await self._send(
            MessageType.NEWPEERACK,
            BROADCAST,
            "New peer ACK",
            peer_count=self.count()
        )

    async def handle_new_peer_ack(self, message: SignalingMessage):
        """A peer acknowledged a join; learn it if new and check convergence."""
        peer_id = message.sender_id
        if peer_id == self.local_peer_id or peer_id in self._sessions:
            return

        self._create_session(peer_id, message.sender_is_media_source)
        self.log_info(f"NEWPEERACK: Created new peerconnection {peer_id} on peer {self.local_peer_id}")

        debug_log("🧮 [Registry] Convergence check", {
            "local_peer_id": self.local_peer_id,
            "announced_count": message.peer_count,
            "local_count": self.count()
        }, "DEBUG")

        if message.peer_count == self.count():
            self.converged = True
            self.log_info(f"Peer discovery converged on {self.local_peer_id}", {"sessions": self.count()})
            if self.converged_callback:
                self.converged_callback()

    async def handle_dispose(self, message: SignalingMessage):
        """Release everything held for the sender. Unknown peers are a no-op."""
        if message.sender_id not in self._sessions:
            debug_log(f"🗑️ [Registry] DISPOSE for unknown peer {message.sender_id} ignored", level="DEBUG")
            return
        await self.remove(message.sender_id)
        self.log_info(f"DISPOSE: Peerconnection for {message.sender_id} removed on peer {self.local_peer_id}")

    async def remove(self, peer_id: str):
        session = self._sessions.pop(peer_id, None)
        if session is None:
            return
        if self.session_closer:
            await self.session_closer(session)

    def clear(self) -> List[PeerSession]:
        """Forget every session, returning them for cleanup."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        self.converged = False
        return sessions
