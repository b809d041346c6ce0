"""Data channel handshake tests."""

import pytest

from peermesh.signaling.messages import MessageType

from fakes import FakeDataChannel, make_manager


async def joined(*remote_ids):
    manager, engine, relay = make_manager("A")
    await manager.connect()
    for remote_id in remote_ids:
        await relay.deliver(f"NEWPEER|{remote_id}|ALL|New peer {remote_id}|0|true")
    ready = []
    manager.add_connection_callback('data_channel_ready', lambda peer_id, channel: ready.append(peer_id))
    return manager, engine, relay, ready


@pytest.mark.asyncio
async def test_sending_channel_is_labelled_with_peer_id():
    manager, engine, relay, ready = await joined("B")

    channel = engine.connections[0].channels[0]
    assert channel.label == "B"
    assert manager.registry.get("B").sending_channel is channel


@pytest.mark.asyncio
async def test_inbound_channel_is_confirmed_over_relay():
    manager, engine, relay, ready = await joined("B")
    inbound = FakeDataChannel("A", "open")

    await engine.connections[0].emit("datachannel", inbound)

    data = [m for m in relay.sent_messages() if m.type is MessageType.DATA]
    assert len(data) == 1
    assert data[0].receiver_id == "B"
    assert data[0].payload == "ReceiverDataChannel on A for B established."
    assert manager.registry.get("B").receiving_channel is inbound


@pytest.mark.asyncio
async def test_data_before_open_waits_for_channel():
    manager, engine, relay, ready = await joined("B")
    channel = engine.connections[0].channels[0]

    await relay.deliver("DATA|B|A|ReceiverDataChannel on B for A established.|1|true")
    assert ready == []
    assert manager.registry.get("B").data_ready_pending

    channel.open()
    channel.open()

    assert ready == ["B"]
    assert not manager.registry.get("B").data_ready_pending


@pytest.mark.asyncio
async def test_data_after_open_is_ready_immediately():
    manager, engine, relay, ready = await joined("B")
    engine.connections[0].channels[0].open()
    assert ready == []

    await relay.deliver("DATA|B|A|ReceiverDataChannel on B for A established.|1|true")

    assert ready == ["B"]


@pytest.mark.asyncio
async def test_data_from_unknown_peer_is_ignored():
    manager, engine, relay, ready = await joined()

    await relay.deliver("DATA|Z|A|ReceiverDataChannel on Z for A established.|0|true")

    assert ready == []
    assert "Z" not in manager.registry


@pytest.mark.asyncio
async def test_channel_messages_are_surfaced():
    manager, engine, relay, ready = await joined("B")
    messages = []
    manager.add_connection_callback('data_channel_message', lambda peer_id, message: messages.append((peer_id, message)))
    inbound = FakeDataChannel("A", "open")
    await engine.connections[0].emit("datachannel", inbound)

    inbound.receive(b"hello")
    engine.connections[0].channels[0].receive("hi")

    assert messages == [("B", "hello"), ("B", "hi")]


@pytest.mark.asyncio
async def test_send_only_uses_open_channels():
    manager, engine, relay, ready = await joined("B", "C")
    open_channel = engine.connections[0].channels[0]
    open_channel.open()

    assert manager.send_data_channel_message("to everyone") == 1
    assert manager.send_data_channel_message("to C", "C") == 0
    assert manager.send_data_channel_message("to nobody", "Z") == 0
    assert open_channel.sent == ["to everyone"]


@pytest.mark.asyncio
async def test_send_requires_relay():
    manager, engine, relay, ready = await joined("B")
    engine.connections[0].channels[0].open()
    await manager.close_relay()

    assert manager.send_data_channel_message("hello") == 0
