"""
Per-peer session aggregate.
"""
import asyncio
import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Set

_tokens = itertools.count(1)


class NegotiationState(Enum):
    IDLE = "idle"
    OFFER_SENT = "offer_sent"
    REMOTE_OFFER_RECEIVED = "remote_offer_received"
    ANSWER_SENT = "answer_sent"
    ANSWER_RECEIVED = "answer_received"
    CONNECTED = "connected"
    CLOSED = "closed"


@dataclass
class ReceivingResources:
    """Receive-side sinks for one remote media sender."""

    peer_id: str
    video_sink: Any = None
    audio_sink: Any = None

    def sink_for(self, kind: str):
        if kind == "video":
            return self.video_sink
        if kind == "audio":
            return self.audio_sink
        return None


@dataclass
class SessionEvent:
    """An engine event tagged with the session it was raised for."""

    token: int
    peer_id: str
    kind: str
    data: Any = None


@dataclass(eq=False)
class PeerSession:
    """Everything the local peer owns for one remote peer.

    ``token`` distinguishes a session from a later one created for the same
    peer id; ``generation`` is bumped by every negotiation attempt so stale
    continuations can be recognised. ``state`` is the negotiation phase;
    connectivity lives in ``transport_connected``, and ``connected_once``
    keeps the connected notification to a single time per session.
    """

    peer_id: str
    connection: Any
    remote_is_media_source: bool = False
    state: NegotiationState = NegotiationState.IDLE
    generation: int = 0
    token: int = field(default_factory=lambda: next(_tokens))
    sending_channel: Any = None
    receiving_channel: Any = None
    track_senders: Dict[str, Any] = field(default_factory=dict)
    receiving: Optional[ReceivingResources] = None
    data_ready_pending: bool = False
    transport_connected: bool = False
    connected_once: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    tasks: Set[asyncio.Task] = field(default_factory=set)

    @property
    def closed(self) -> bool:
        return self.state is NegotiationState.CLOSED

    @property
    def connected(self) -> bool:
        """Transport connectivity, independent of any renegotiation in progress."""
        return self.transport_connected and not self.closed

    def next_generation(self) -> int:
        self.generation += 1
        return self.generation

    def event(self, kind: str, data: Any = None) -> SessionEvent:
        return SessionEvent(token=self.token, peer_id=self.peer_id, kind=kind, data=data)

    def sending_channel_open(self) -> bool:
        return self.sending_channel is not None and self.sending_channel.readyState == "open"

    def describe(self) -> Dict[str, Any]:
        return {
            "peer_id": self.peer_id,
            "state": self.state.value,
            "connected": self.connected,
            "generation": self.generation,
            "sending_channel": getattr(self.sending_channel, "readyState", None),
            "receiving_channel": getattr(self.receiving_channel, "readyState", None),
            "track_senders": sorted(self.track_senders.keys()),
            "has_receiving_resources": self.receiving is not None,
            "pending_tasks": len(self.tasks)
        }
