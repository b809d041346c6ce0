"""
Connection orchestration: one negotiation state machine per remote peer.

Negotiation steps run as tasks, one lock per session, so steps for the same
peer stay in order while other peers' messages keep being handled. Every
continuation re-checks that its session is still registered, still on the
generation it started with and not closed; otherwise the result is dropped.
"""
import asyncio
from functools import partial
from typing import Any, Awaitable, Callable, List, Optional, Set

from peermesh.core.exceptions import MalformedMessage, NegotiationFailure
from peermesh.core.logging import LoggerMixin, debug_log
from peermesh.signaling.messages import (
    CandidateEnvelope,
    MessageType,
    SessionDescriptionEnvelope,
    SignalingMessage
)
from peermesh.webrtc.session import NegotiationState, PeerSession, ReceivingResources, SessionEvent

CONNECTED_ICE_STATES = ("connected", "completed")
FAILED_ICE_STATES = ("failed", "closed")


class StaleContinuation(Exception):
    """A negotiation step finished for a superseded or closed session."""


class ConnectionOrchestrator(LoggerMixin):
    """Drives offer/answer/candidate exchange for every session."""

    def __init__(self, local_peer_id: str, engine, registry, resources, handshake):
        super().__init__()
        self.local_peer_id = local_peer_id
        self.engine = engine
        self.registry = registry
        self.resources = resources
        self.handshake = handshake
        self.send_callback: Optional[Callable[..., Awaitable[bool]]] = None
        self.notify: Optional[Callable] = None
        self._tasks: Set[asyncio.Task] = set()

    def set_send_callback(self, callback: Callable[..., Awaitable[bool]]):
        self.send_callback = callback

    def set_notify_callback(self, callback: Callable):
        self.notify = callback

    def _notify(self, event: str, peer_id: str, data: Any = None):
        if self.notify:
            self.notify(event, peer_id, data)

    async def _send(self, message_type: MessageType, receiver_id: str, payload: str) -> bool:
        if self.send_callback is None:
            return False
        return await self.send_callback(message_type, receiver_id, payload)

    # Session construction

    def create_session(self, peer_id: str, remote_is_sender: bool,
                       receiving: Optional[ReceivingResources] = None) -> PeerSession:
        """Build a session: transport connection, events, outbound channel, local tracks."""
        connection = self.engine.create_connection()
        session = PeerSession(
            peer_id=peer_id,
            connection=connection,
            remote_is_media_source=remote_is_sender,
            receiving=receiving
        )
        self._bind_events(session)
        self.handshake.open_sending_channel(session)
        self.resources.attach_local_tracks(session)
        return session

    def _bind_events(self, session: PeerSession):
        connection = session.connection

        connection.on("iceconnectionstatechange",
                      lambda state: self.handle_session_event(session.event("iceconnectionstatechange", state)))
        connection.on("icecandidate",
                      lambda candidate: self.handle_session_event(session.event("icecandidate", candidate)))
        connection.on("datachannel",
                      lambda channel: self.handle_session_event(session.event("datachannel", channel)))
        connection.on("track",
                      lambda track: self.handle_session_event(session.event("track", track)))

    # Task bookkeeping

    def _is_current(self, session: PeerSession, generation: Optional[int] = None) -> bool:
        if session.closed or not self.registry.is_current(session):
            return False
        return generation is None or session.generation == generation

    def _check(self, session: PeerSession, generation: int):
        if not self._is_current(session, generation):
            raise StaleContinuation()

    def _spawn(self, session: PeerSession, step_factory: Callable[[], Awaitable], step: str) -> asyncio.Task:
        task = asyncio.ensure_future(self._run_step(session, step_factory, step))
        session.tasks.add(task)
        self._tasks.add(task)

        def done(finished: asyncio.Task):
            session.tasks.discard(finished)
            self._tasks.discard(finished)

        task.add_done_callback(done)
        return task

    async def _run_step(self, session: PeerSession, step_factory: Callable[[], Awaitable], step: str):
        try:
            async with session.lock:
                await step_factory()
        except StaleContinuation:
            debug_log(f"♻️ [Orchestrator] Discarded stale {step} for {session.peer_id}", {
                "generation": session.generation,
                "state": session.state.value
            }, "DEBUG")
        except NegotiationFailure as e:
            if not self._is_current(session):
                debug_log(f"♻️ [Orchestrator] {step} failed after {session.peer_id} was closed", level="DEBUG")
                return
            self.log_error(f"{self.local_peer_id} - {step} failed for {session.peer_id}", {
                "error": str(e),
                "state": session.state.value
            })
        except MalformedMessage as e:
            self.log_warning(f"Malformed {step} payload from {session.peer_id}", {"error": str(e)})

    async def drain(self):
        """Wait until every in-flight negotiation step has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # Offers

    def begin_negotiation(self) -> List[asyncio.Task]:
        """Issue a fresh offer to every known session."""
        sessions = self.registry.sessions()
        self.log_info(f"Beginning negotiation on {self.local_peer_id}", {"sessions": len(sessions)})
        return [self._spawn(session, partial(self._offer, session, session.next_generation()), "create-offer")
                for session in sessions]

    async def _offer(self, session: PeerSession, generation: int):
        self._check(session, generation)
        offer = await session.connection.create_offer()
        self._check(session, generation)
        local = await session.connection.set_local_description(offer)
        self._check(session, generation)

        await self._send(MessageType.OFFER, session.peer_id, local.to_json())
        session.state = NegotiationState.OFFER_SENT
        debug_log(f"📨 [Orchestrator] OFFER sent to {session.peer_id}", {"generation": generation})

    # Inbound signaling

    def _session_for(self, message: SignalingMessage) -> PeerSession:
        # offers, answers and candidates may precede NEWPEER; learn the peer lazily
        return self.registry.ensure_session(message.sender_id, message.sender_is_media_source)

    def handle_offer(self, message: SignalingMessage) -> asyncio.Task:
        self.log_info(f"{self.local_peer_id} got OFFER from {message.sender_id}")
        session = self._session_for(message)
        return self._spawn(session, partial(self._answer, session, session.next_generation(), message.payload), "create-answer")

    async def _answer(self, session: PeerSession, generation: int, payload: str):
        offer = SessionDescriptionEnvelope.from_json(payload)
        if offer.kind != "offer":
            raise MalformedMessage("OFFER carries a non-offer description", {"kind": offer.kind})

        self._check(session, generation)
        await session.connection.set_remote_description(offer)
        self._check(session, generation)
        session.state = NegotiationState.REMOTE_OFFER_RECEIVED

        answer = await session.connection.create_answer()
        self._check(session, generation)
        if answer.kind != "answer" or not answer.sdp:
            raise NegotiationFailure(f"{self.local_peer_id} has no answer sdp for {session.peer_id}", {
                "kind": answer.kind
            })

        local = await session.connection.set_local_description(answer)
        self._check(session, generation)

        await self._send(MessageType.ANSWER, session.peer_id, local.to_json())
        session.state = NegotiationState.ANSWER_SENT
        debug_log(f"📨 [Orchestrator] ANSWER sent to {session.peer_id}", {"generation": generation})

    def handle_answer(self, message: SignalingMessage) -> asyncio.Task:
        self.log_info(f"{self.local_peer_id} got ANSWER from {message.sender_id}")
        session = self._session_for(message)
        return self._spawn(session, partial(self._apply_answer, session, session.generation, message.payload), "set-remote-answer")

    async def _apply_answer(self, session: PeerSession, generation: int, payload: str):
        answer = SessionDescriptionEnvelope.from_json(payload)
        self._check(session, generation)
        await session.connection.set_remote_description(answer)
        self._check(session, generation)
        session.state = NegotiationState.ANSWER_RECEIVED

    def handle_candidate(self, message: SignalingMessage) -> asyncio.Task:
        debug_log(f"🧊 [Orchestrator] {self.local_peer_id} got CANDIDATE from {message.sender_id}", level="DEBUG")
        session = self._session_for(message)
        return self._spawn(session, partial(self._add_candidate, session, message.payload), "add-ice-candidate")

    async def _add_candidate(self, session: PeerSession, payload: str):
        candidate = CandidateEnvelope.from_json(payload)
        if not self._is_current(session):
            raise StaleContinuation()
        await session.connection.add_ice_candidate(candidate)

    def handle_complete(self, message: SignalingMessage):
        """The counterpart reached connectivity first; mirror it locally."""
        session = self.registry.get(message.sender_id)
        if session is None:
            debug_log(f"📭 [Orchestrator] COMPLETE from unknown peer {message.sender_id} ignored", level="DEBUG")
            return
        if self._mark_connected(session):
            self.log_info(f"Peerconnection between {message.sender_id} and {self.local_peer_id} completed remotely")

    def _mark_connected(self, session: PeerSession) -> bool:
        """Record connectivity; True only the first time for this session."""
        if session.closed:
            return False
        session.transport_connected = True
        if session.connected_once:
            return False
        session.connected_once = True
        session.state = NegotiationState.CONNECTED
        self._notify('webrtc_connected', session.peer_id)
        return True

    # Engine events

    async def handle_session_event(self, event: SessionEvent):
        session = self.registry.get(event.peer_id)
        if session is None or session.token != event.token or session.closed:
            debug_log(f"♻️ [Orchestrator] Event {event.kind} for retired session {event.peer_id} dropped", level="DEBUG")
            return

        try:
            if event.kind == "iceconnectionstatechange":
                await self._on_ice_connection_state(session, event.data)
            elif event.kind == "icecandidate":
                await self._on_local_candidate(session, event.data)
            elif event.kind == "datachannel":
                await self.handshake.handle_inbound_channel(session, event.data)
            elif event.kind == "track":
                await self.resources.attach_remote_track(session, event.data)
            else:
                self.log_warning("Unhandled session event", {"kind": event.kind, "peer_id": event.peer_id})
        except Exception as e:
            self.log_error("Error handling session event", {
                "kind": event.kind,
                "peer_id": event.peer_id,
                "error": str(e),
                "error_type": type(e).__name__
            })

    async def _on_ice_connection_state(self, session: PeerSession, state: str):
        self.log_info(f"{self.local_peer_id} connection {session.peer_id} changed to {state}")

        if state in CONNECTED_ICE_STATES:
            if self._mark_connected(session):
                await self._send(
                    MessageType.COMPLETE,
                    session.peer_id,
                    f"Peerconnection between {self.local_peer_id} and {session.peer_id} completed."
                )
        elif state in FAILED_ICE_STATES:
            session.transport_connected = False
            self.log_warning(f"Connection to {session.peer_id} {state}", {"state": session.state.value})

    async def _on_local_candidate(self, session: PeerSession, candidate: Optional[CandidateEnvelope]):
        if candidate is None:
            return
        await self._send(MessageType.CANDIDATE, session.peer_id, candidate.to_json())

    # Teardown

    async def close_session(self, session: PeerSession):
        """Cancel pending steps and release every handle the session owns."""
        session.state = NegotiationState.CLOSED
        session.transport_connected = False

        for task in list(session.tasks):
            if task is not asyncio.current_task():
                task.cancel()

        self.handshake.close_channels(session)
        await self.resources.release_session(session)

        try:
            await session.connection.close()
        except Exception as e:
            self.log_warning("Error closing peer connection", {
                "peer_id": session.peer_id,
                "error": str(e),
                "error_type": type(e).__name__
            })

    def get_status(self) -> dict:
        return {
            "in_flight": len(self._tasks),
            "sessions": [session.describe() for session in self.registry.sessions()]
        }
