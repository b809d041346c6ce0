"""
Core module for PeerMesh.
Contains configuration, logging, and common exceptions.
"""

from .config import PeerConfig, LocalCapabilities
from .logging import setup_logging, debug_log, LoggerMixin
from .exceptions import (
    PeerMeshError,
    MalformedMessage,
    UnknownPeer,
    NegotiationFailure,
    TransportUnavailable
)

__all__ = [
    'PeerConfig',
    'LocalCapabilities',
    'setup_logging',
    'debug_log',
    'LoggerMixin',
    'PeerMeshError',
    'MalformedMessage',
    'UnknownPeer',
    'NegotiationFailure',
    'TransportUnavailable'
]
