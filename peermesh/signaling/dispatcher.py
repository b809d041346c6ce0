"""
Signaling message dispatch and routing.
"""
import asyncio
from typing import Callable, Dict, List, Tuple, Union

from peermesh.core.exceptions import MalformedMessage
from peermesh.core.logging import LoggerMixin, debug_log
from peermesh.signaling import codec
from peermesh.signaling.messages import MessageType, SignalingMessage


class SignalingDispatcher(LoggerMixin):
    """Decodes inbound relay frames and routes them to registered listeners."""

    def __init__(self, local_peer_id: str):
        super().__init__()
        self.local_peer_id = local_peer_id
        self.type_listeners: Dict[MessageType, List[Tuple[Callable, bool]]] = {}
        self.stats = {
            'received': 0,
            'malformed': 0,
            'unknown': 0,
            'ignored': 0
        }

    def add_listener(self, message_type: MessageType, callback: Callable, addressed_only: bool = False):
        """Add a listener for a message type.

        With ``addressed_only`` the listener only sees messages whose receiver
        is the local peer.
        """
        self.type_listeners.setdefault(message_type, []).append((callback, addressed_only))

    def remove_listener(self, message_type: MessageType, callback: Callable):
        """Remove a listener for a message type."""
        listeners = self.type_listeners.get(message_type, [])
        listeners[:] = [(cb, addressed) for cb, addressed in listeners if cb != callback]

    async def dispatch(self, frame: Union[str, bytes]) -> bool:
        """Handle one inbound frame. Returns True if any listener ran."""
        self.stats['received'] += 1

        try:
            message = codec.decode(frame)
        except MalformedMessage as e:
            self.stats['malformed'] += 1
            self.log_warning("Dropping malformed signaling frame", {
                "error": str(e),
                "frame": str(frame)[:200]
            })
            return False

        debug_log(f"📥 [Dispatcher] {message.type.value} from {message.sender_id}", {
            "receiver_id": message.receiver_id,
            "peer_count": message.peer_count,
            "sender_is_media_source": message.sender_is_media_source,
            "payload_length": len(message.payload)
        }, "DEBUG")

        if message.type is MessageType.UNKNOWN:
            self.stats['unknown'] += 1
            self.log_info(f"Received NOTYPE from {message.sender_id}", {"frame": str(frame)[:200]})
            return False

        return await self.route(message)

    async def route(self, message: SignalingMessage) -> bool:
        """Route an already decoded message to its listeners."""
        listeners = self.type_listeners.get(message.type)
        if not listeners:
            self.log_warning("No listeners found for message type", {
                "type": message.type.value,
                "available_types": [t.value for t in self.type_listeners.keys()]
            })
            return False

        handled = False
        for callback, addressed_only in list(listeners):
            if addressed_only and not message.is_addressed_to(self.local_peer_id):
                continue
            handled = True
            try:
                result = callback(message)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                self.log_error("Error in signaling listener", {
                    "type": message.type.value,
                    "sender_id": message.sender_id,
                    "error": str(e),
                    "error_type": type(e).__name__
                })

        if not handled:
            self.stats['ignored'] += 1
            debug_log(f"📭 [Dispatcher] {message.type.value} not addressed to {self.local_peer_id}", {
                "receiver_id": message.receiver_id
            }, "DEBUG")
        return handled

    def get_status(self) -> dict:
        return dict(self.stats, listeners={t.value: len(l) for t, l in self.type_listeners.items()})
