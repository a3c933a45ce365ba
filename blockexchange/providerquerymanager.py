"""Find providers for blocks, rate limited and deduplicated per key.

The :class:`ProviderQueryManager` keeps a bounded number of provider
searches running at once. It connects to each provider it finds and passes
on only the ones it could connect to. Concurrent requests for the same key
share one search. Durations are expressed in seconds.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import AsyncIterator, Optional, Protocol

log = logging.getLogger("bitswap")

MAX_PROVIDERS = 10
MAX_IN_PROCESS_REQUESTS = 6
DEFAULT_TIMEOUT = 10.0


class ProviderQueryNetwork(Protocol):
    """A network that can find providers for a key and connect to peers."""

    async def connect_to(self, peer: str) -> None:
        """Connect to ``peer``, raising an exception on failure."""
        ...

    def find_providers_async(self, key: str, max_providers: int) -> AsyncIterator[str]:
        """Yield up to ``max_providers`` peers that provide ``key``."""
        ...


class _ProviderStream:
    """An async iterator over the providers found for one request."""

    def __init__(self, manager: "ProviderQueryManager", request: Optional["_Request"]) -> None:
        self._manager = manager
        self._request = request
        self._pending: deque[str] = deque()
        self._done = False
        self._wakeup = asyncio.Event()

    def __aiter__(self) -> "_ProviderStream":
        return self

    async def __anext__(self) -> str:
        while True:
            if self._pending:
                return self._pending.popleft()
            if self._done:
                raise StopAsyncIteration
            self._wakeup.clear()
            await self._wakeup.wait()

    def close(self) -> None:
        """Stop receiving providers; the search stops once nobody listens."""
        if self._request is not None:
            self._manager._cancel_listener(self)
        self._end(drop=True)

    async def aclose(self) -> None:
        """Asynchronous form of :meth:`close`."""
        self.close()

    def _push(self, peer: str) -> None:
        if self._done:
            return
        self._pending.append(peer)
        self._wakeup.set()

    def _end(self, drop: bool) -> None:
        self._done = True
        if drop:
            self._pending.clear()
        self._wakeup.set()


class _Request:
    """The state of one provider search in progress."""

    def __init__(self, key: str) -> None:
        self.key = key
        self.providers_so_far: list[str] = []
        self.listeners: dict[_ProviderStream, None] = {}
        self.cancelled = False
        self.query: Optional[asyncio.Future] = None

    def cancel(self) -> None:
        self.cancelled = True
        if self.query is not None and not self.query.done():
            self.query.cancel()


class ProviderQueryManager:
    """Rate limits, deduplicates and times out searches for block providers."""

    def __init__(self, network: ProviderQueryNetwork) -> None:
        self._network = network
        self._timeout = DEFAULT_TIMEOUT
        self._requests: asyncio.Queue[_Request] = asyncio.Queue()
        self._statuses: dict[str, _Request] = {}
        self._workers: list[asyncio.Task] = []
        self._closed = False

    def startup(self) -> None:
        """Start the search workers; must be called with a running event loop."""
        if self._workers or self._closed:
            return
        self._workers = [
            asyncio.get_running_loop().create_task(self._worker())
            for _ in range(MAX_IN_PROCESS_REQUESTS)
        ]

    def shutdown(self) -> None:
        """Stop all searches and end every open provider stream."""
        if self._closed:
            return
        self._closed = True
        for worker in self._workers:
            worker.cancel()
        self._workers.clear()
        for request in self._statuses.values():
            for listener in request.listeners:
                listener._end(drop=True)
            request.cancel()
        self._statuses.clear()

    def set_find_provider_timeout(self, timeout: float) -> None:
        """Change the time limit of searches started from now on."""
        self._timeout = timeout

    def find_providers_async(self, key: str) -> _ProviderStream:
        """Return an async iterator over the reachable providers of ``key``.

        Closing the iterator cancels the request; the underlying search stops
        when no request for the key remains.
        """
        if self._closed:
            stream = _ProviderStream(self, None)
            stream._end(drop=True)
            return stream

        request = self._statuses.get(key)
        if request is None:
            request = _Request(key)
            self._statuses[key] = request
            self._requests.put_nowait(request)
            log.debug("New Provider Query on cid: %s", key)

        stream = _ProviderStream(self, request)
        stream._pending.extend(request.providers_so_far)
        request.listeners[stream] = None
        return stream

    def _cancel_listener(self, stream: _ProviderStream) -> None:
        request = stream._request
        if request is None or self._statuses.get(request.key) is not request:
            # The request finished, or finished and restarted, meanwhile.
            return
        if stream not in request.listeners:
            return
        log.debug("Cancel provider query on cid: %s", request.key)
        del request.listeners[stream]
        if not request.listeners:
            del self._statuses[request.key]
            request.cancel()

    async def _worker(self) -> None:
        while True:
            request = await self._requests.get()
            if request.cancelled:
                continue
            log.debug("Beginning Find Provider Request for cid: %s", request.key)
            query = asyncio.ensure_future(
                asyncio.wait_for(self._query(request), self._timeout)
            )
            request.query = query
            try:
                await asyncio.wait({query})
            finally:
                if not query.done():
                    query.cancel()
            if not query.cancelled():
                error = query.exception()
                if error is not None and not isinstance(error, asyncio.TimeoutError):
                    log.warning("provider search for %s failed: %s", request.key, error)
            self._finish(request)

    async def _query(self, request: _Request) -> None:
        connects: list[asyncio.Task] = []
        providers = self._network.find_providers_async(request.key, MAX_PROVIDERS)
        try:
            async for peer in providers:
                connects.append(asyncio.ensure_future(self._connect(request, peer)))
            if connects:
                await asyncio.gather(*connects)
        finally:
            for task in connects:
                task.cancel()
            aclose = getattr(providers, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _connect(self, request: _Request, peer: str) -> None:
        try:
            await self._network.connect_to(peer)
        except asyncio.CancelledError:
            raise
        except Exception as err:
            log.debug("failed to connect to provider %s: %s", peer, err)
            return
        self._received(request, peer)

    def _received(self, request: _Request, peer: str) -> None:
        if self._statuses.get(request.key) is not request:
            log.debug("Received provider (%s) for cid (%s) not requested", peer, request.key)
            return
        log.debug("Received provider (%s) for cid (%s)", peer, request.key)
        request.providers_so_far.append(peer)
        for listener in request.listeners:
            listener._push(peer)

    def _finish(self, request: _Request) -> None:
        if self._statuses.get(request.key) is not request:
            # The request was cancelled as it finished.
            return
        log.debug("Finished Provider Query on cid: %s", request.key)
        del self._statuses[request.key]
        for listener in request.listeners:
            listener._end(drop=False)
        request.cancel()