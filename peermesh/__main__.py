"""
Main entry point for PeerMesh.
Run with: python -m peermesh [peer|relay]
"""
import asyncio
import os
import sys

from aiortc.contrib.media import MediaPlayer

from peermesh.core.config import PeerConfig
from peermesh.core.logging import debug_log, setup_logging
from peermesh.services.relay_server import RelayServer
from peermesh.webrtc.peer_manager import PeerMeshManager

MODES = ("peer", "relay")


async def run_relay(config: PeerConfig):
    """Run the signaling relay until cancelled."""
    server = RelayServer()
    try:
        await server.start(config.relay_host, config.relay_port)
        print(f"Relay started at ws://{config.relay_host}:{config.relay_port}/")
        await asyncio.Future()
    finally:
        await server.cleanup()


def _attach_media(manager: PeerMeshManager, media_file: str):
    player = MediaPlayer(media_file)
    if player.video is not None:
        manager.add_video_track(player.video)
    if player.audio is not None:
        manager.add_audio_track(player.audio)
    debug_log(f"🎬 [Main] Playing {media_file}", {
        "video": player.video is not None,
        "audio": player.audio is not None
    })
    return player


async def run_peer(config: PeerConfig):
    """Join the mesh and stay connected until cancelled."""
    manager = PeerMeshManager(config)

    def on_ready(peer_id, channel):
        manager.send_data_channel_message(f"Hello {peer_id} from {manager.local_peer_id}", peer_id)

    def on_message(peer_id, message):
        print(f"[{peer_id}] {message}")

    manager.add_connection_callback('data_channel_ready', on_ready)
    manager.add_connection_callback('data_channel_message', on_message)

    player = None
    media_file = os.environ.get('PEERMESH_MEDIA_FILE')
    if media_file and config.is_media_sender:
        player = _attach_media(manager, media_file)

    try:
        if not await manager.connect():
            debug_log(f"❌ [Main] Could not reach relay at {config.relay_url}", level="ERROR")
            return
        print(f"Peer {config.peer_id} connected to {config.relay_url}")
        await asyncio.Future()
    finally:
        await manager.close_connections()
        await manager.close_relay()
        if player is not None:
            for track in (player.video, player.audio):
                if track is not None:
                    track.stop()


async def main(mode: str = "peer"):
    """Main function."""
    config = PeerConfig()
    setup_logging(config.log_level, log_file=f"peermesh_{mode}.log")
    debug_log(f"🚀 [Main] Starting PeerMesh {mode}", {"config": str(config)})

    try:
        if mode == "relay":
            await run_relay(config)
        else:
            await run_peer(config)
    except Exception as e:
        debug_log(f"❌ [Main] {mode} error", {
            "error": str(e),
            "error_type": type(e).__name__
        }, "ERROR")
        raise


def run():
    mode = sys.argv[1] if len(sys.argv) > 1 else os.environ.get('PEERMESH_MODE', 'peer')
    if mode not in MODES:
        print(f"Usage: python -m peermesh [{'|'.join(MODES)}]", file=sys.stderr)
        sys.exit(2)
    try:
        asyncio.run(main(mode))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
