"""Signaling dispatcher routing tests."""

import pytest

from peermesh.signaling.dispatcher import SignalingDispatcher
from peermesh.signaling.messages import MessageType


@pytest.fixture
def dispatcher():
    return SignalingDispatcher("A")


@pytest.mark.asyncio
async def test_routes_by_type(dispatcher):
    received = []
    dispatcher.add_listener(MessageType.NEWPEER, received.append)

    assert await dispatcher.dispatch("NEWPEER|B|ALL|New peer B|0|true") is True
    assert [m.sender_id for m in received] == ["B"]


@pytest.mark.asyncio
async def test_addressed_only_listener_skips_other_receivers(dispatcher):
    received = []
    dispatcher.add_listener(MessageType.OFFER, received.append, addressed_only=True)

    assert await dispatcher.dispatch("OFFER|B|C|{}|1|true") is False
    assert await dispatcher.dispatch("OFFER|B|A|{}|1|true") is True
    assert len(received) == 1
    assert dispatcher.stats['ignored'] == 1


@pytest.mark.asyncio
async def test_awaits_coroutine_listeners_in_order(dispatcher):
    order = []

    async def first(message):
        order.append(("first", message.payload))

    def second(message):
        order.append(("second", message.payload))

    dispatcher.add_listener(MessageType.DATA, first)
    dispatcher.add_listener(MessageType.DATA, second)

    await dispatcher.dispatch("DATA|B|A|one|1|false")
    await dispatcher.dispatch("DATA|B|A|two|1|false")

    assert order == [("first", "one"), ("second", "one"), ("first", "two"), ("second", "two")]


@pytest.mark.asyncio
async def test_malformed_and_unknown_frames_are_dropped(dispatcher):
    received = []
    dispatcher.add_listener(MessageType.NEWPEER, received.append)

    assert await dispatcher.dispatch("garbage") is False
    assert await dispatcher.dispatch("HELLO|B|ALL|x|0|false") is False

    assert received == []
    assert dispatcher.stats['malformed'] == 1
    assert dispatcher.stats['unknown'] == 1


@pytest.mark.asyncio
async def test_listener_errors_do_not_stop_routing(dispatcher):
    received = []

    def broken(message):
        raise RuntimeError("boom")

    dispatcher.add_listener(MessageType.DISPOSE, broken)
    dispatcher.add_listener(MessageType.DISPOSE, received.append)

    assert await dispatcher.dispatch("DISPOSE|B|ALL|bye|0|false") is True
    assert len(received) == 1


@pytest.mark.asyncio
async def test_remove_listener(dispatcher):
    received = []
    dispatcher.add_listener(MessageType.NEWPEER, received.append)
    dispatcher.remove_listener(MessageType.NEWPEER, received.append)

    await dispatcher.dispatch("NEWPEER|B|ALL|x|0|false")

    assert received == []
