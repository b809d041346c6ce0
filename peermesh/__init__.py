"""
PeerMesh: full-mesh WebRTC peers coordinated over a broadcast signaling relay.
"""

from .core import PeerConfig, LocalCapabilities, setup_logging
from .signaling import MessageType, SignalingMessage, RelayChannel
from .webrtc import PeerMeshManager, NegotiationState
from .services import RelayServer

__version__ = "0.1.0"

__all__ = [
    'PeerConfig',
    'LocalCapabilities',
    'setup_logging',
    'MessageType',
    'SignalingMessage',
    'RelayChannel',
    'PeerMeshManager',
    'NegotiationState',
    'RelayServer'
]
