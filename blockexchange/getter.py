"""Helpers for fetching blocks through a notification hub."""

from __future__ import annotations

import logging
from typing import AsyncIterator, Awaitable, Callable, Sequence

from .blocks import Block
from .notifications import PubSub, Subscription

log = logging.getLogger("bitswap")

GetBlocksFunc = Callable[[list[str]], Awaitable[AsyncIterator[Block]]]
WantFunc = Callable[[list[str]], None]
CancelWantsFunc = Callable[[list[str]], None]

_MISSING = object()


class BlockNotFoundError(LookupError):
    """The requested block cannot be found."""


class PromiseClosedError(RuntimeError):
    """The block source finished without producing a block."""


async def _close(stream: object) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()
        return
    close = getattr(stream, "close", None)
    if close is not None:
        close()


async def sync_get_block(key: str, get_blocks: GetBlocksFunc) -> Block:
    """Fetch a single block using a function that fetches many.

    The block stream opened for the request is always closed before
    returning, so no work started here outlives the call.
    """
    if not key:
        log.error("undefined cid in GetBlock")
        raise BlockNotFoundError("blockstore: block not found")

    promise = await get_blocks([key])
    try:
        block = await anext(promise, _MISSING)
        if block is _MISSING:
            raise PromiseClosedError("promise channel was closed")
        return block
    finally:
        await _close(promise)


class _IncomingBlocks:
    """Blocks arriving for one request; reports unreceived keys when done."""

    def __init__(
        self,
        subscription: Subscription,
        keys: Sequence[str],
        cancel_wants: CancelWantsFunc,
    ) -> None:
        self._subscription = subscription
        self._remaining = dict.fromkeys(keys)
        self._cancel_wants = cancel_wants
        self._finished = False

    def __aiter__(self) -> "_IncomingBlocks":
        return self

    async def __anext__(self) -> Block:
        if self._finished:
            raise StopAsyncIteration
        try:
            block = await anext(self._subscription)
        except BaseException:
            self._finish()
            raise
        self._remaining.pop(block.cid, None)
        return block

    async def aclose(self) -> None:
        self._finish()

    def _finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        self._subscription.close()
        self._cancel_wants(list(self._remaining))


async def async_get_blocks(
    keys: Sequence[str],
    notif: PubSub,
    want: WantFunc,
    cancel_wants: CancelWantsFunc,
) -> AsyncIterator[Block]:
    """Subscribe to ``keys``, express a want for them and stream the blocks.

    When the stream ends or is closed, ``cancel_wants`` is called with the
    keys whose blocks never arrived.
    """
    if not keys:
        # A subscription to no keys is already finished.
        return notif.subscribe()

    keys = list(dict.fromkeys(keys))
    subscription = notif.subscribe(*keys)
    for key in keys:
        log.debug("Bitswap.GetBlockRequest.Start cid=%s", key)

    want(keys)
    return _IncomingBlocks(subscription, keys, cancel_wants)