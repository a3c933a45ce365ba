"""Publish blocks and subscribe to them by content identifier."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Callable, Iterable

from .blocks import Block


class Subscription:
    """An async iterator over the blocks of one subscription.

    Each subscribed key is delivered at most once. Iteration ends once every
    key has been received, when the subscription is closed, or when the
    owning :class:`PubSub` shuts down.
    """

    def __init__(
        self,
        keys: Iterable[str],
        unsubscribe: Callable[["Subscription", tuple[str, ...]], None],
    ) -> None:
        self._remaining = set(keys)
        self._unsubscribe = unsubscribe
        self._pending: deque[Block] = deque()
        self._closed = False
        self._wakeup = asyncio.Event()

    def close(self) -> None:
        """Stop the subscription; pending blocks are discarded."""
        if self._closed:
            return
        self._closed = True
        self._pending.clear()
        self._unsubscribe(self, tuple(self._remaining))
        self._remaining.clear()
        self._wakeup.set()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Block:
        while True:
            if self._closed:
                raise StopAsyncIteration
            if self._pending:
                return self._pending.popleft()
            if not self._remaining:
                raise StopAsyncIteration
            self._wakeup.clear()
            await self._wakeup.wait()

    def _deliver(self, block: Block) -> None:
        if self._closed or block.cid not in self._remaining:
            return
        self._remaining.discard(block.cid)
        self._pending.append(block)
        self._wakeup.set()

    def _end(self) -> None:
        self._remaining.clear()
        self._wakeup.set()


class PubSub:
    """Routes published blocks to the subscriptions waiting for them."""

    def __init__(self) -> None:
        self._subscribers: dict[str, set[Subscription]] = {}
        self._closed = False

    def publish(self, block: Block) -> None:
        """Deliver ``block`` to every subscription still waiting for it."""
        if self._closed:
            return
        for subscription in self._subscribers.pop(block.cid, ()):
            subscription._deliver(block)

    def subscribe(self, *keys: str) -> Subscription:
        """Subscribe to the blocks with the given content identifiers."""
        subscription = Subscription(keys, self._unsubscribe)
        if not keys or self._closed:
            subscription.close()
            return subscription
        for key in set(keys):
            self._subscribers.setdefault(key, set()).add(subscription)
        return subscription

    def shutdown(self) -> None:
        """End every subscription and ignore later publications."""
        if self._closed:
            return
        self._closed = True
        subscriptions = {s for subs in self._subscribers.values() for s in subs}
        self._subscribers.clear()
        for subscription in subscriptions:
            subscription._end()

    def _unsubscribe(self, subscription: Subscription, keys: tuple[str, ...]) -> None:
        for key in keys:
            subs = self._subscribers.get(key)
            if subs is None:
                continue
            subs.discard(subscription)
            if not subs:
                del self._subscribers[key]