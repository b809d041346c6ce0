"""
Service layer for PeerMesh.
"""

from .relay_server import RelayServer

__all__ = [
    'RelayServer'
]
