"""
Configuration management for PeerMesh.
"""
import os
import random
import string
from dataclasses import dataclass
from typing import Optional

from aiortc import RTCConfiguration, RTCIceServer


def _env_flag(name: str, default: bool) -> bool:
    return os.environ.get(name, 'true' if default else 'false').lower() == 'true'


def generate_peer_id() -> str:
    """Random 3-5 letter id with a ``-PeerId`` suffix."""
    length = random.randint(3, 5)
    name = ''.join(random.choice(string.ascii_letters) for _ in range(length))
    return f"{name}-PeerId"


@dataclass(frozen=True)
class LocalCapabilities:
    """Local media roles, fixed for the lifetime of a peer manager."""

    is_media_sender: bool = True
    is_media_receiver: bool = True


@dataclass
class PeerConfig:
    """Peer and relay configuration settings."""

    # Relay (signaling) settings
    relay_url: str = "ws://localhost:8765"
    use_http_header: bool = True
    user_agent: str = "unity webrtc"

    # Relay server settings
    relay_host: str = "0.0.0.0"
    relay_port: int = 8765

    # ICE servers
    stun_server: str = "stun:stun.l.google.com:19302"
    turn_address: Optional[str] = None
    turn_username: str = "user"
    turn_password: str = "password"

    # Local peer
    peer_id: str = "PeerId"
    random_peer_id: bool = True
    is_media_sender: bool = True
    is_media_receiver: bool = True

    # Logging
    log_level: str = "INFO"
    data_channel_logs: bool = True

    # WebRTC configuration
    rtc_config: Optional[RTCConfiguration] = None

    def __post_init__(self):
        """Initialize configuration from environment variables."""
        self.relay_url = os.environ.get('PEERMESH_RELAY_URL', self.relay_url)
        self.use_http_header = _env_flag('PEERMESH_USE_HTTP_HEADER', self.use_http_header)

        self.relay_host = os.environ.get('PEERMESH_RELAY_HOST', self.relay_host)
        self.relay_port = int(os.environ.get('PEERMESH_RELAY_PORT', self.relay_port))

        self.stun_server = os.environ.get('PEERMESH_STUN_SERVER', self.stun_server)
        self.turn_address = os.environ.get('TURN_ADDRESS', self.turn_address)
        self.turn_username = os.environ.get('TURN_USERNAME', self.turn_username)
        self.turn_password = os.environ.get('TURN_PASSWORD', self.turn_password)

        self.random_peer_id = _env_flag('PEERMESH_RANDOM_PEER_ID', self.random_peer_id)
        self.peer_id = os.environ.get('PEERMESH_PEER_ID', self.peer_id)
        if self.random_peer_id and 'PEERMESH_PEER_ID' not in os.environ:
            self.peer_id = generate_peer_id()

        self.is_media_sender = _env_flag('PEERMESH_MEDIA_SENDER', self.is_media_sender)
        self.is_media_receiver = _env_flag('PEERMESH_MEDIA_RECEIVER', self.is_media_receiver)

        self.log_level = os.environ.get('PEERMESH_LOG_LEVEL', self.log_level)
        self.data_channel_logs = _env_flag('PEERMESH_DATA_CHANNEL_LOGS', self.data_channel_logs)

        if self.rtc_config is None:
            self._build_rtc_config()

    def _build_rtc_config(self):
        """Build WebRTC configuration from the configured ICE servers."""
        ice_servers = []

        if self.stun_server:
            ice_servers.append(RTCIceServer(urls=self.stun_server))

        if self.turn_address:
            ice_servers.append(
                RTCIceServer(
                    urls=f"turn:{self.turn_address}",
                    username=self.turn_username,
                    credential=self.turn_password
                )
            )

        self.rtc_config = RTCConfiguration(iceServers=ice_servers)

    def capabilities(self) -> LocalCapabilities:
        """Local media roles for this peer."""
        return LocalCapabilities(
            is_media_sender=self.is_media_sender,
            is_media_receiver=self.is_media_receiver
        )

    def get_relay_headers(self) -> Optional[str]:
        """User agent sent with the relay handshake, if enabled."""
        return self.user_agent if self.use_http_header else None

    def __str__(self) -> str:
        return f"PeerConfig(peer_id={self.peer_id}, relay_url={self.relay_url}, sender={self.is_media_sender}, receiver={self.is_media_receiver})"
