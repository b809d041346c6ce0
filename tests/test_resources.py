"""Media sender and receiver lifecycle tests."""

import pytest

from fakes import FakeTrack, make_manager


async def with_peers(*remote_ids, peer_id="A", sender=True):
    manager, engine, relay = make_manager(peer_id, sender=sender)
    await manager.connect()
    for remote_id in remote_ids:
        await relay.deliver(f"NEWPEER|{remote_id}|ALL|New peer {remote_id}|0|true")
    return manager, engine, relay


def total_offers(engine):
    return sum(conn.count("create_offer") for conn in engine.connections)


@pytest.mark.asyncio
async def test_adding_track_renegotiates_every_session():
    manager, engine, relay = await with_peers("B", "C")
    track = FakeTrack("video")

    tasks = manager.add_video_track(track)
    await manager.drain()

    assert len(tasks) == 2
    assert total_offers(engine) == 2
    for conn in engine.connections:
        assert [s.track for s in conn.senders] == [track]
    assert set(manager.registry.get("B").track_senders) == {"video"}


@pytest.mark.asyncio
async def test_replacing_track_detaches_previous_sender():
    manager, engine, relay = await with_peers("B")
    conn = engine.connections[0]

    manager.add_audio_track(FakeTrack("audio"))
    manager.add_audio_track(FakeTrack("audio"))
    await manager.drain()

    assert len(conn.senders) == 2
    assert conn.removed_senders == [conn.senders[0]]
    assert manager.registry.get("B").track_senders["audio"] is conn.senders[1]


@pytest.mark.asyncio
async def test_removing_track_renegotiates():
    manager, engine, relay = await with_peers("B", "C")
    manager.add_video_track(FakeTrack("video"))
    await manager.drain()

    tasks = manager.remove_video_track()
    await manager.drain()

    assert len(tasks) == 2
    assert total_offers(engine) == 4
    for conn in engine.connections:
        assert conn.removed_senders == conn.senders
    assert manager.registry.get("B").track_senders == {}


@pytest.mark.asyncio
async def test_removing_absent_track_is_a_no_op():
    manager, engine, relay = await with_peers("B")

    assert manager.remove_audio_track() == []
    await manager.drain()

    assert total_offers(engine) == 0


@pytest.mark.asyncio
async def test_non_sender_ignores_local_tracks():
    manager, engine, relay = await with_peers("B", sender=False)

    assert manager.add_video_track(FakeTrack("video")) == []
    await manager.drain()

    assert engine.connections[0].senders == []
    assert total_offers(engine) == 0


@pytest.mark.asyncio
async def test_local_tracks_reach_later_sessions():
    manager, engine, relay = await with_peers()
    track = FakeTrack("video")

    assert manager.add_video_track(track) == []
    await relay.deliver("NEWPEER|B|ALL|New peer B|0|true")

    assert [s.track for s in engine.connections[0].senders] == [track]


@pytest.mark.asyncio
async def test_remote_track_feeds_sink():
    manager, engine, relay = await with_peers("B")
    streams = []
    manager.add_connection_callback('video_stream', lambda peer_id, track: streams.append((peer_id, track)))
    track = FakeTrack("video")

    await engine.connections[0].emit("track", track)

    sink = manager.registry.get("B").receiving.video_sink
    assert sink.tracks == [track]
    assert sink.started
    assert streams == [("B", track)]


@pytest.mark.asyncio
async def test_remote_track_without_resources_is_ignored():
    manager, engine, relay = make_manager("A")
    await manager.connect()
    await relay.deliver("NEWPEER|B|ALL|New peer B|0|false")
    streams = []
    manager.add_connection_callback('audio_stream', lambda peer_id, track: streams.append(peer_id))

    await engine.connections[0].emit("track", FakeTrack("audio"))

    assert streams == []


@pytest.mark.asyncio
async def test_dispose_releases_senders_and_sinks():
    manager, engine, relay = await with_peers("B")
    manager.add_video_track(FakeTrack("video"))
    await manager.drain()
    receiving = manager.registry.get("B").receiving
    conn = engine.connections[0]

    await relay.deliver("DISPOSE|B|ALL|Remove peerConnection for B.|0|true")

    assert conn.removed_senders == conn.senders
    assert receiving.video_sink.stopped
    assert receiving.audio_sink.stopped
    assert conn.closed


@pytest.mark.asyncio
async def test_release_all_forgets_local_tracks():
    manager, engine, relay = await with_peers("B", "C")
    manager.add_audio_track(FakeTrack("audio"))
    await manager.drain()

    await manager.resources.release_all()

    assert manager.resources.local_tracks == {}
    for session in manager.registry.sessions():
        assert session.track_senders == {}
        assert session.receiving is None
