import asyncio
from contextlib import contextmanager

import pytest

from blockexchange.blocks import Block
from blockexchange.notifications import PubSub


async def _next(subscription):
    return await asyncio.wait_for(anext(subscription), 1)


async def _collect(subscription):
    async def run():
        return [block async for block in subscription]

    return await asyncio.wait_for(run(), 5)


def _assert_blocks_equal(a, b):
    assert a.data == b.data
    assert a.cid == b.cid


@contextmanager
def open_hub():
    hub = PubSub()
    try:
        yield hub
    finally:
        hub.shutdown()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payloads, steps",
    [
        # single block
        ([b"Greetings from The Interval"], [(0, 0)]),
        # several keys on one subscription
        ([b"1", b"2"], [(0, 0), (1, 1)]),
        # a duplicate publish is ignored
        ([b"1", b"2"], [(0, 0), (0, None), (1, 1)]),
    ],
)
async def test_publish_delivers_subscribed_blocks(payloads, steps):
    blocks = [Block(p) for p in payloads]
    with open_hub() as hub:
        sub = hub.subscribe(*(b.cid for b in blocks))
        for published, expected in steps:
            hub.publish(blocks[published])
            if expected is not None:
                _assert_blocks_equal(blocks[expected], await _next(sub))
        assert await _collect(sub) == []


@pytest.mark.asyncio
async def test_duplicate_subscribe():
    e1 = Block(b"1")
    with open_hub() as hub:
        subs = [hub.subscribe(e1.cid), hub.subscribe(e1.cid)]
        hub.publish(e1)
        for sub in subs:
            _assert_blocks_equal(e1, await _next(sub))


@pytest.mark.asyncio
async def test_shutdown_before_unsubscribe():
    e1 = Block(b"1")
    hub = PubSub()
    sub = hub.subscribe(e1.cid)
    hub.shutdown()
    sub.close()
    assert await _collect(sub) == []


@pytest.mark.asyncio
async def test_shutdown_ends_waiting_subscription():
    e1 = Block(b"1")
    hub = PubSub()
    sub = hub.subscribe(e1.cid)
    task = asyncio.ensure_future(_collect(sub))
    await asyncio.sleep(0)
    hub.shutdown()
    assert await task == []


@pytest.mark.asyncio
async def test_subscribe_is_a_noop_when_called_with_no_keys():
    with open_hub() as hub:
        assert await _collect(hub.subscribe()) == []


@pytest.mark.asyncio
async def test_subscribe_after_shutdown_is_closed():
    e1 = Block(b"1")
    hub = PubSub()
    hub.shutdown()
    sub = hub.subscribe(e1.cid)
    hub.publish(e1)
    assert await _collect(sub) == []


@pytest.mark.asyncio
async def test_carry_on_when_deadline_expires():
    block = Block(b"A Missed Connection")
    with open_hub() as hub:
        sub = hub.subscribe(block.cid)
        asyncio.get_running_loop().call_later(1e-9, sub.close)
        assert await _collect(sub) == []


@pytest.mark.asyncio
async def test_does_not_deadlock_if_closed_before_publish():
    blocks = [Block(str(i).encode()) for i in range(1000)]
    with open_hub() as hub:
        sub = hub.subscribe(*(b.cid for b in blocks))
        sub.close()
        for b in blocks:
            hub.publish(b)
        assert await _collect(sub) == []


@pytest.mark.asyncio
async def test_closed_subscription_stops_receiving_other_keys():
    e1 = Block(b"1")
    e2 = Block(b"2")
    with open_hub() as hub:
        closed = hub.subscribe(e1.cid, e2.cid)
        other = hub.subscribe(e2.cid)
        closed.close()

        hub.publish(e2)
        _assert_blocks_equal(e2, await _next(other))
        assert await _collect(closed) == []