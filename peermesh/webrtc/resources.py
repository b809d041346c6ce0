"""
Per-peer media resources: outgoing track senders and incoming sinks.
"""
import asyncio
from typing import Any, Callable, Dict, List, Optional

from aiortc.contrib.media import MediaBlackhole

from peermesh.core.logging import LoggerMixin, debug_log
from peermesh.webrtc.session import PeerSession, ReceivingResources

MEDIA_KINDS = ("video", "audio")


def default_sink_factory(peer_id: str, kind: str):
    """Consume and discard incoming media; rendering is left to the caller."""
    return MediaBlackhole()


class ResourceLifecycleManager(LoggerMixin):
    """Owns track senders and receive sinks for every session."""

    def __init__(self, registry, sink_factory: Optional[Callable[[str, str], Any]] = None):
        super().__init__()
        self.registry = registry
        self.sink_factory = sink_factory or default_sink_factory
        self.local_tracks: Dict[str, Any] = {}
        self.renegotiate: Optional[Callable[[], List[asyncio.Task]]] = None
        self.notify: Optional[Callable] = None

    def set_renegotiate_callback(self, callback: Callable[[], List[asyncio.Task]]):
        self.renegotiate = callback

    def set_notify_callback(self, callback: Callable):
        self.notify = callback

    def _notify(self, event: str, peer_id: str, data: Any = None):
        if self.notify:
            self.notify(event, peer_id, data)

    def _renegotiate(self) -> List[asyncio.Task]:
        if self.renegotiate is None:
            return []
        return self.renegotiate()

    # Receiving side

    def create_receiving_resources(self, peer_id: str) -> ReceivingResources:
        """Create the video and audio sinks for a remote media sender."""
        resources = ReceivingResources(
            peer_id=peer_id,
            video_sink=self.sink_factory(peer_id, "video"),
            audio_sink=self.sink_factory(peer_id, "audio")
        )
        debug_log(f"🎞️ [Resources] Receiving resources created for {peer_id}")
        return resources

    async def attach_remote_track(self, session: PeerSession, track) -> bool:
        """Feed an incoming track into the session's sink of the same kind."""
        kind = getattr(track, "kind", None)
        if session.receiving is None:
            self.log_warning("Track received without receiving resources", {
                "peer_id": session.peer_id,
                "kind": kind
            })
            return False

        sink = session.receiving.sink_for(kind)
        if sink is None:
            self.log_warning("No sink for track kind", {"peer_id": session.peer_id, "kind": kind})
            return False

        sink.addTrack(track)
        await sink.start()

        self.log_info(f"Receiving {kind} stream", {"peer_id": session.peer_id})
        self._notify(f"{kind}_stream", session.peer_id, track)
        return True

    # Sending side

    def _attach(self, session: PeerSession, kind: str, track):
        if kind in session.track_senders:
            self._detach(session, kind)
        session.track_senders[kind] = session.connection.add_track(track)

    def _detach(self, session: PeerSession, kind: str) -> bool:
        sender = session.track_senders.pop(kind, None)
        if sender is None:
            return False
        session.connection.remove_track(sender)
        return True

    def attach_local_tracks(self, session: PeerSession):
        """Attach every active local track to a newly created session."""
        for kind, track in self.local_tracks.items():
            self._attach(session, kind, track)

    def _add_track(self, kind: str, track) -> List[asyncio.Task]:
        self.local_tracks[kind] = track
        attached = 0
        for session in self.registry.sessions():
            try:
                self._attach(session, kind, track)
                attached += 1
            except Exception as e:
                self.log_error(f"Failed to attach {kind} track", {
                    "peer_id": session.peer_id,
                    "error": str(e),
                    "error_type": type(e).__name__
                })

        self.log_info(f"Local {kind} track added", {"sessions": attached})
        return self._renegotiate()

    def _remove_track(self, kind: str) -> List[asyncio.Task]:
        self.local_tracks.pop(kind, None)
        removed = 0
        for session in self.registry.sessions():
            if self._detach(session, kind):
                removed += 1

        self.log_info(f"Local {kind} track removed", {"sessions": removed})
        if not removed:
            return []
        return self._renegotiate()

    def add_video_track(self, track) -> List[asyncio.Task]:
        return self._add_track("video", track)

    def add_audio_track(self, track) -> List[asyncio.Task]:
        return self._add_track("audio", track)

    def remove_video_track(self) -> List[asyncio.Task]:
        return self._remove_track("video")

    def remove_audio_track(self) -> List[asyncio.Task]:
        return self._remove_track("audio")

    # Teardown

    def dispose_senders(self, session: PeerSession):
        """Detach every outgoing sender the session holds."""
        for kind in list(session.track_senders.keys()):
            try:
                self._detach(session, kind)
            except Exception as e:
                self.log_warning(f"Error disposing {kind} sender", {"peer_id": session.peer_id, "error": str(e)})

    async def release_session(self, session: PeerSession):
        """Dispose the session's senders and stop its sinks."""
        self.dispose_senders(session)

        receiving = session.receiving
        session.receiving = None
        if receiving is None:
            return
        for kind in MEDIA_KINDS:
            sink = receiving.sink_for(kind)
            if sink is None:
                continue
            try:
                await sink.stop()
            except Exception as e:
                self.log_warning(f"Error stopping {kind} sink", {"peer_id": session.peer_id, "error": str(e)})

    async def release_all(self):
        """Release every registered session and forget the local tracks."""
        for session in self.registry.sessions():
            await self.release_session(session)
        self.local_tracks.clear()

    def get_status(self) -> Dict[str, Any]:
        return {"local_tracks": sorted(self.local_tracks.keys())}
