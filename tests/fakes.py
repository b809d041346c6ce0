"""
In-memory stand-ins for the relay and the transport engine.

``FakeHub`` plays the relay server: frames sent by one ``FakeRelay`` are
queued for every other connected relay and delivered by ``flush()``.
``FakeEngine`` hands out ``FakePeerConnection`` objects that record every
call and can be told to fail or to hold a step until released.
"""
import asyncio
import itertools
from collections import defaultdict, deque
from typing import Callable, Dict, List, Optional

from peermesh.core.config import PeerConfig
from peermesh.core.exceptions import NegotiationFailure, TransportUnavailable
from peermesh.signaling import codec
from peermesh.signaling.messages import CandidateEnvelope, SessionDescriptionEnvelope
from peermesh.webrtc.peer_manager import PeerMeshManager

_sdp_ids = itertools.count(1)


class Emitter:
    """Minimal ``on``/decorator event registry."""

    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = defaultdict(list)

    def on(self, event: str, handler: Optional[Callable] = None):
        def register(func):
            self._handlers[event].append(func)
            return func

        if handler is None:
            return register
        return register(handler)

    def fire(self, event: str, *args):
        for handler in list(self._handlers[event]):
            handler(*args)

    async def emit(self, event: str, *args):
        for handler in list(self._handlers[event]):
            result = handler(*args)
            if asyncio.iscoroutine(result):
                await result


class FakeDataChannel(Emitter):
    def __init__(self, label: str, ready_state: str = "connecting"):
        super().__init__()
        self.label = label
        self.readyState = ready_state
        self.sent: List[str] = []

    def open(self):
        self.readyState = "open"
        self.fire("open")

    def receive(self, message):
        self.fire("message", message)

    def send(self, message):
        self.sent.append(message)

    def close(self):
        if self.readyState != "closed":
            self.readyState = "closed"
            self.fire("close")


class FakeTrack:
    def __init__(self, kind: str):
        self.kind = kind


class FakeSender:
    def __init__(self, track):
        self.track = track


class FakeSink:
    def __init__(self):
        self.tracks = []
        self.started = False
        self.stopped = False

    def addTrack(self, track):
        self.tracks.append(track)

    async def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True


class FakePeerConnection(Emitter):
    """Records engine calls; ``fail`` and ``hold`` steer individual steps."""

    def __init__(self):
        super().__init__()
        self.calls: List[str] = []
        self.fail = set()
        self.hold: Dict[str, asyncio.Event] = {}
        self.local_description: Optional[SessionDescriptionEnvelope] = None
        self.remote_description: Optional[SessionDescriptionEnvelope] = None
        self.candidates: List[CandidateEnvelope] = []
        self.channels: List[FakeDataChannel] = []
        self.senders: List[FakeSender] = []
        self.removed_senders: List[FakeSender] = []
        self.closed = False

    async def _step(self, name: str):
        self.calls.append(name)
        gate = self.hold.get(name)
        if gate is not None:
            await gate.wait()
        if name in self.fail:
            raise NegotiationFailure(f"{name} rejected")

    def count(self, name: str) -> int:
        return self.calls.count(name)

    async def create_offer(self) -> SessionDescriptionEnvelope:
        await self._step("create_offer")
        return SessionDescriptionEnvelope(kind="offer", sdp=f"v=0 offer-{next(_sdp_ids)}")

    async def create_answer(self) -> SessionDescriptionEnvelope:
        await self._step("create_answer")
        return SessionDescriptionEnvelope(kind="answer", sdp=f"v=0 answer-{next(_sdp_ids)}")

    async def set_local_description(self, description):
        await self._step("set_local_description")
        self.local_description = description
        return description

    async def set_remote_description(self, description):
        await self._step("set_remote_description")
        self.remote_description = description

    async def add_ice_candidate(self, envelope):
        await self._step("add_ice_candidate")
        self.candidates.append(envelope)

    def create_data_channel(self, label: str):
        channel = FakeDataChannel(label)
        self.channels.append(channel)
        return channel

    def add_track(self, track):
        sender = FakeSender(track)
        self.senders.append(sender)
        return sender

    def remove_track(self, sender):
        self.removed_senders.append(sender)

    async def close(self):
        self.closed = True


class FakeEngine:
    def __init__(self):
        self.connections: List[FakePeerConnection] = []

    def create_connection(self) -> FakePeerConnection:
        connection = FakePeerConnection()
        self.connections.append(connection)
        return connection


class FakeRelay:
    """Relay channel double with the same callback surface as RelayChannel."""

    def __init__(self, hub: Optional["FakeHub"] = None):
        self.hub = hub
        self.connected = False
        self.url = None
        self.user_agent = None
        self.sent: List[str] = []
        self.callbacks: Dict[str, List[Callable]] = {event: [] for event in ('open', 'message', 'close', 'error')}

    @property
    def is_connected(self) -> bool:
        return self.connected

    def on(self, event: str, callback: Callable):
        self.callbacks[event].append(callback)

    async def _emit(self, event: str, *args):
        for callback in list(self.callbacks[event]):
            result = callback(*args)
            if asyncio.iscoroutine(result):
                await result

    async def connect(self, url: str, user_agent: Optional[str] = None) -> bool:
        self.url = url
        self.user_agent = user_agent
        self.connected = True
        await self._emit('open')
        return True

    async def send(self, text: str):
        if not self.connected:
            raise TransportUnavailable("Relay channel not connected")
        self.sent.append(text)
        if self.hub is not None:
            self.hub.publish(self, text)

    async def close(self):
        if self.connected:
            self.connected = False
            await self._emit('close')

    async def deliver(self, frame: str):
        await self._emit('message', frame)

    def sent_messages(self):
        return [codec.decode(frame) for frame in self.sent]


class FakeHub:
    """Broadcast relay: every frame reaches every other connected relay."""

    def __init__(self):
        self.relays: List[FakeRelay] = []
        self.queue = deque()

    def relay(self) -> FakeRelay:
        relay = FakeRelay(self)
        self.relays.append(relay)
        return relay

    def publish(self, sender: FakeRelay, frame: str):
        for relay in self.relays:
            if relay is not sender and relay.connected:
                self.queue.append((relay, frame))

    async def flush(self, managers=(), max_rounds: int = 100):
        """Deliver queued frames and wait on negotiation until quiet."""
        for _ in range(max_rounds):
            while self.queue:
                relay, frame = self.queue.popleft()
                await relay.deliver(frame)
            for manager in managers:
                await manager.drain()
            if not self.queue:
                return
        raise AssertionError("relay traffic did not settle")


def make_config(peer_id: str, sender: bool = True, receiver: bool = True) -> PeerConfig:
    return PeerConfig(
        peer_id=peer_id,
        random_peer_id=False,
        is_media_sender=sender,
        is_media_receiver=receiver,
        stun_server=""
    )


def make_manager(peer_id: str, hub: Optional[FakeHub] = None, sender: bool = True,
                 receiver: bool = True):
    """Build a manager on fakes; returns (manager, engine, relay)."""
    engine = FakeEngine()
    relay = hub.relay() if hub is not None else FakeRelay()
    manager = PeerMeshManager(
        make_config(peer_id, sender, receiver),
        engine=engine,
        relay=relay,
        sink_factory=lambda peer, kind: FakeSink()
    )
    return manager, engine, relay
