# blockexchange

This package provides asyncio building blocks for exchanging content-addressed
blocks between peers:

- it wakes up whoever is waiting for a block when that block arrives;
- it fetches one block or many through a notification hub;
- it acts as if a peer answered "don't have" when the peer is too slow to respond;
- it finds peers that provide a given block.

## Installation

```
pip install .
```

The package has no runtime dependencies. To run the test suite:

```
pip install ".[test]"
pytest
```

## Modules

- `blockexchange.blocks`
  - `Block(data)` is a frozen dataclass that holds raw bytes and their `cid`.
  - `make_cid(data)` returns the hex sha2-256 multihash of `data`, which serves as its content identifier.
- `blockexchange.notifications`
  - `PubSub.subscribe(*keys)` returns a `Subscription`, which is an async iterator.
  - A `Subscription` yields each requested block at most once. It ends in three cases: every key has been delivered, `close()` is called, or `PubSub.shutdown()` is called.
  - `publish(block)` has no effect after shutdown.
  - A subscription to no keys is already finished.
- `blockexchange.getter`
  - `await async_get_blocks(keys, notif, want, cancel_wants)` subscribes to the keys and calls `want(keys)`. It returns an async iterator of the blocks as they arrive.
  - When that iterator ends or is closed, `cancel_wants` is called with the keys whose blocks never arrived.
  - `await sync_get_block(key, get_blocks)` waits for a single block, using a function that fetches many.
  - `sync_get_block` raises `BlockNotFoundError` for an empty key. It raises `PromiseClosedError` if the stream ends without yielding a block.
- `blockexchange.clock`
  - `Clock` works in real monotonic time and runs timers on background threads.
  - `MockClock` is a simulated clock whose time moves only when `add(delta)` is called. At that point, the timers that have come due fire in deadline order.
  - Both clocks return a cancellable `Timer` from `call_later(delay, callback)`.
- `blockexchange.donthavetimeoutmgr`
  - `DontHaveTimeoutManager` tracks keys given to `add_pending` and forgets keys given to `cancel_pending`.
  - It calls `on_timeout(keys)` with the keys that were not cancelled before the timeout.
  - The timeout starts from a default. Once the peer has been pinged, it is taken from ping latency. Once `update_message_latency` has been called, it is taken from a `LatencyEwma` of message latency. It is always capped at a maximum.
  - After `shutdown()` no timeout fires.
  - The peer connection must provide `ping(timeout)`, which returns a `PingResult`, and `latency()`.
- `blockexchange.providerquerymanager`
  - `ProviderQueryManager(network)` finds providers for blocks. The `network` must provide `connect_to` and `find_providers_async`.
  - At most six searches run at once. Concurrent requests for the same key share one search.
  - Peers that cannot be connected to are left out.
  - Each search stops after a timeout: ten seconds by default, adjustable with `set_find_provider_timeout`.
  - Call `startup()` from inside a running event loop.
  - `find_providers_async(key)` returns an async iterator of peers. Closing it cancels the request.
- `blockexchange.defaults`
  - Tuning constants such as worker counts and `MAX_OUTSTANDING_BYTES_PER_PEER`.

## Example

```python
import asyncio

from blockexchange.blocks import Block
from blockexchange.getter import async_get_blocks
from blockexchange.notifications import PubSub


async def main():
    hub = PubSub()
    block = Block(b"hello")

    stream = await async_get_blocks(
        [block.cid],
        hub,
        want=lambda keys: print("wanting", keys),
        cancel_wants=lambda keys: print("never arrived", keys),
    )
    hub.publish(block)
    async for received in stream:
        print(received.data)
    hub.shutdown()


asyncio.run(main())
```

## What this package does not do

This is a library of components. It does not include:

- a command-line program;
- a network transport, so it does not send or receive messages between peers;
- a block store;
- anything that tracks which wants have been sent to which peer, or that manages a pool of connected peers.

You supply the networking through the small interfaces the components expect.