"""
Signaling module for PeerMesh.
Handles the wire format, the relay channel and inbound message routing.
"""

from .messages import (
    BROADCAST,
    MessageType,
    SignalingMessage,
    SessionDescriptionEnvelope,
    CandidateEnvelope
)
from .codec import encode, decode
from .relay import RelayChannel
from .dispatcher import SignalingDispatcher

__all__ = [
    'BROADCAST',
    'MessageType',
    'SignalingMessage',
    'SessionDescriptionEnvelope',
    'CandidateEnvelope',
    'encode',
    'decode',
    'RelayChannel',
    'SignalingDispatcher'
]
