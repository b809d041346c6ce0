"""
Signaling message types and payload envelopes.
"""
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

from peermesh.core.exceptions import MalformedMessage

BROADCAST = "ALL"


class MessageType(Enum):
    """Signaling message types carried over the relay."""

    NEWPEER = "NEWPEER"
    NEWPEERACK = "NEWPEERACK"
    OFFER = "OFFER"
    ANSWER = "ANSWER"
    CANDIDATE = "CANDIDATE"
    DISPOSE = "DISPOSE"
    DATA = "DATA"
    COMPLETE = "COMPLETE"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: str) -> "MessageType":
        """Map a wire type name to a member, UNKNOWN when unrecognised."""
        try:
            member = cls(value)
        except ValueError:
            return cls.UNKNOWN
        return member


@dataclass(frozen=True)
class SignalingMessage:
    """A single signaling frame."""

    type: MessageType
    sender_id: str
    receiver_id: str
    payload: str = ""
    peer_count: int = 0
    sender_is_media_source: bool = False

    @property
    def is_broadcast(self) -> bool:
        return self.receiver_id == BROADCAST

    def is_addressed_to(self, peer_id: str) -> bool:
        """True when the message names ``peer_id`` as its receiver."""
        return self.receiver_id == peer_id


def _load_json_object(payload: str, kind: str) -> Dict[str, Any]:
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise MalformedMessage(f"Invalid {kind} payload", {"error": str(e)})
    if not isinstance(data, dict):
        raise MalformedMessage(f"Invalid {kind} payload", {"payload_type": type(data).__name__})
    return data


@dataclass(frozen=True)
class SessionDescriptionEnvelope:
    """Role-tagged session description, opaque beyond ``kind``."""

    kind: str
    sdp: str

    def to_json(self) -> str:
        return json.dumps({"SessionType": self.kind, "Sdp": self.sdp})

    @classmethod
    def from_json(cls, payload: str) -> "SessionDescriptionEnvelope":
        data = _load_json_object(payload, "session description")
        kind = str(data.get("SessionType", "")).lower()
        sdp = data.get("Sdp")
        if kind not in ("offer", "answer") or not isinstance(sdp, str):
            raise MalformedMessage("Invalid session description", {
                "session_type": data.get("SessionType"),
                "has_sdp": isinstance(sdp, str)
            })
        return cls(kind=kind, sdp=sdp)


@dataclass(frozen=True)
class CandidateEnvelope:
    """ICE candidate as exchanged over the relay."""

    media_id: str
    media_line_index: int
    candidate: str

    def to_json(self) -> str:
        return json.dumps({
            "SdpMid": self.media_id,
            "SdpMLineIndex": self.media_line_index,
            "Candidate": self.candidate
        })

    @classmethod
    def from_json(cls, payload: str) -> "CandidateEnvelope":
        data = _load_json_object(payload, "candidate")
        candidate = data.get("Candidate")
        if not isinstance(candidate, str):
            raise MalformedMessage("Candidate payload missing candidate string", {
                "payload_keys": list(data.keys())
            })
        try:
            index = int(data.get("SdpMLineIndex") or 0)
        except (TypeError, ValueError):
            raise MalformedMessage("Invalid SdpMLineIndex", {"value": data.get("SdpMLineIndex")})
        return cls(
            media_id=str(data.get("SdpMid") or ""),
            media_line_index=index,
            candidate=candidate
        )
