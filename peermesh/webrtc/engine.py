"""
Transport engine adapter.

Wraps aiortc's RTCPeerConnection behind the small capability surface the
orchestrator drives: descriptions in and out as envelopes, candidates as
envelopes, and the ``iceconnectionstatechange``, ``icecandidate``,
``datachannel`` and ``track`` events.
"""
import asyncio
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Set

from aiortc import RTCConfiguration, RTCPeerConnection, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp

from peermesh.core.exceptions import NegotiationFailure
from peermesh.core.logging import LoggerMixin
from peermesh.signaling.messages import CandidateEnvelope, SessionDescriptionEnvelope

ENGINE_EVENTS = ('iceconnectionstatechange', 'icecandidate', 'datachannel', 'track')


class PeerConnection(LoggerMixin):
    """One transport-engine connection to a single remote peer."""

    def __init__(self, pc: RTCPeerConnection):
        super().__init__()
        self._pc = pc
        self._handlers: Dict[str, List[Callable]] = defaultdict(list)
        self._tasks: Set[asyncio.Task] = set()

        pc.on("iceconnectionstatechange", self._on_ice_connection_state_change)
        pc.on("datachannel", lambda channel: self._emit("datachannel", channel))
        pc.on("track", lambda track: self._emit("track", track))

    def on(self, event: str, handler: Optional[Callable] = None):
        """Register an event handler, usable as a decorator."""
        if event not in ENGINE_EVENTS:
            raise ValueError(f"Unknown engine event: {event}")

        def register(func: Callable):
            self._handlers[event].append(func)
            return func

        if handler is None:
            return register
        return register(handler)

    def _emit(self, event: str, *args):
        for handler in list(self._handlers[event]):
            result = handler(*args)
            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

    def _on_ice_connection_state_change(self):
        self._emit("iceconnectionstatechange", self._pc.iceConnectionState)

    @property
    def ice_connection_state(self) -> str:
        return self._pc.iceConnectionState

    @property
    def signaling_state(self) -> str:
        return self._pc.signalingState

    async def create_offer(self) -> SessionDescriptionEnvelope:
        try:
            offer = await self._pc.createOffer()
        except Exception as e:
            raise NegotiationFailure("create-offer rejected", {"error": str(e)})
        return SessionDescriptionEnvelope(kind=offer.type, sdp=offer.sdp)

    async def create_answer(self) -> SessionDescriptionEnvelope:
        try:
            answer = await self._pc.createAnswer()
        except Exception as e:
            raise NegotiationFailure("create-answer rejected", {"error": str(e)})
        return SessionDescriptionEnvelope(kind=answer.type, sdp=answer.sdp)

    async def set_local_description(self, description: SessionDescriptionEnvelope) -> SessionDescriptionEnvelope:
        """Apply a local description.

        Returns the description as applied; aiortc gathers candidates while
        applying it, so the returned SDP carries them.
        """
        try:
            await self._pc.setLocalDescription(RTCSessionDescription(sdp=description.sdp, type=description.kind))
        except Exception as e:
            raise NegotiationFailure("set-local-description rejected", {"kind": description.kind, "error": str(e)})
        local = self._pc.localDescription
        return SessionDescriptionEnvelope(kind=local.type, sdp=local.sdp)

    async def set_remote_description(self, description: SessionDescriptionEnvelope):
        try:
            await self._pc.setRemoteDescription(RTCSessionDescription(sdp=description.sdp, type=description.kind))
        except Exception as e:
            raise NegotiationFailure("set-remote-description rejected", {"kind": description.kind, "error": str(e)})

    async def add_ice_candidate(self, envelope: CandidateEnvelope):
        if not envelope.candidate:
            # end-of-candidates marker
            return
        sdp = envelope.candidate
        if sdp.startswith("candidate:"):
            sdp = sdp[len("candidate:"):]
        try:
            candidate = candidate_from_sdp(sdp)
            candidate.sdpMid = envelope.media_id or None
            candidate.sdpMLineIndex = envelope.media_line_index
            await self._pc.addIceCandidate(candidate)
        except Exception as e:
            raise NegotiationFailure("add-ice-candidate rejected", {"candidate": envelope.candidate, "error": str(e)})

    def create_data_channel(self, label: str):
        return self._pc.createDataChannel(label)

    def add_track(self, track):
        """Attach a local track, returning its sender handle."""
        return self._pc.addTrack(track)

    def remove_track(self, sender):
        """Detach a sender's track and stop sending on its transceiver."""
        sender.replaceTrack(None)
        for transceiver in self._pc.getTransceivers():
            if transceiver.sender is sender:
                transceiver.direction = "recvonly" if "recv" in transceiver.direction else "inactive"

    async def close(self):
        await self._pc.close()


class TransportEngine:
    """Creates aiortc peer connections with the configured ICE servers."""

    def __init__(self, rtc_config: Optional[RTCConfiguration] = None):
        self.rtc_config = rtc_config

    def create_connection(self) -> PeerConnection:
        return PeerConnection(RTCPeerConnection(configuration=self.rtc_config))
