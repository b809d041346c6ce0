"""
Custom exception classes for PeerMesh.
"""


class PeerMeshError(Exception):
    """Base exception for PeerMesh."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{super().__str__()} - {self.details}"
        return super().__str__()


class MalformedMessage(PeerMeshError):
    """Raised when a signaling frame cannot be encoded or decoded."""
    pass


class UnknownPeer(PeerMeshError):
    """Raised when a message references a peer with no session."""

    def __init__(self, peer_id: str, details: dict = None):
        super().__init__(f"No session for peer {peer_id}", details)
        self.peer_id = peer_id


class NegotiationFailure(PeerMeshError):
    """Raised when the transport engine rejects a negotiation step."""
    pass


class TransportUnavailable(PeerMeshError):
    """Raised when the relay channel is not connected."""
    pass
