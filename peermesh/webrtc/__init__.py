"""
WebRTC module for PeerMesh.
Handles peer sessions, negotiation, data channels and media resources.
"""

from .engine import PeerConnection, TransportEngine
from .session import NegotiationState, PeerSession, ReceivingResources, SessionEvent
from .registry import PeerRegistry
from .resources import ResourceLifecycleManager
from .data_channel import DataChannelHandshake
from .orchestrator import ConnectionOrchestrator
from .peer_manager import PeerMeshManager

__all__ = [
    'PeerConnection',
    'TransportEngine',
    'NegotiationState',
    'PeerSession',
    'ReceivingResources',
    'SessionEvent',
    'PeerRegistry',
    'ResourceLifecycleManager',
    'DataChannelHandshake',
    'ConnectionOrchestrator',
    'PeerMeshManager'
]
