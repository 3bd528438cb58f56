"""Live views: derived state recomputed from the latest store snapshots.

A ``LiveView`` subscribes to one or more store paths, keeps the most recent
snapshot of each, and once every source has delivered at least once it
re-derives its state on each delivery and publishes the result to every
listener queue. Derivation always starts from full snapshots, so a listener
that falls behind only loses intermediate states, never the latest one.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Generic, List, Mapping, TypeVar

from .errors import ViewClosed
from .store import Snapshot, Store, Subscription

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


class LiveView(Generic[T]):
    def __init__(
        self,
        store: Store,
        sources: Mapping[str, str],
        derive: Callable[[Mapping[str, Any]], T],
        *,
        maxsize: int = 64,
    ) -> None:
        self._store = store
        self._sources = dict(sources)
        self._derive = derive
        self._maxsize = maxsize
        self._latest: Dict[str, Any] = {}
        self._subscriptions: List[Subscription] = []
        self._queues: List[asyncio.Queue] = []
        self._version = 0
        self._closed = False
        self._default = self.listen()
        self.value: T | None = None
        self.ready = asyncio.Event()

    @classmethod
    def of(cls, store: Store, path: str, derive: Callable[[Any], T], **kwargs: Any) -> "LiveView[T]":
        """View over a single path; ``derive`` receives the raw snapshot value."""

        return cls(store, {"value": path}, lambda latest: derive(latest["value"]), **kwargs)

    @property
    def version(self) -> int:
        """Number of states published so far."""

        return self._version

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> "LiveView[T]":
        try:
            for name, path in self._sources.items():
                subscription = await self._store.subscribe(path, self._callback_for(name))
                self._subscriptions.append(subscription)
        except Exception:
            await self.close()
            raise
        return self

    def _callback_for(self, name: str) -> Callable[[Snapshot], None]:
        def _callback(snapshot: Snapshot) -> None:
            if self._closed:
                return
            self._latest[name] = snapshot.value
            if len(self._latest) == len(self._sources):
                self._publish()

        return _callback

    def _publish(self) -> None:
        try:
            state = self._derive(dict(self._latest))
        except Exception:
            logger.exception("failed to derive live view state from %s", list(self._sources.values()))
            return
        self.value = state
        self._version += 1
        for queue in self._queues:
            _offer(queue, state)
        self.ready.set()

    def listen(self) -> asyncio.Queue:
        """Open an extra output queue that receives every published state."""

        queue: asyncio.Queue = asyncio.Queue(maxsize=self._maxsize)
        if self._closed:
            _offer(queue, _CLOSED)
        self._queues.append(queue)
        return queue

    def unlisten(self, queue: asyncio.Queue) -> None:
        try:
            self._queues.remove(queue)
        except ValueError:
            return

    async def next(self, timeout: float | None = None) -> T:
        return await self._take(self._default, timeout)

    async def wait_until(self, predicate: Callable[[T], bool], timeout: float | None = None) -> T:
        """Return the first state (current included) satisfying ``predicate``."""

        queue = self.listen()
        try:
            if self.ready.is_set() and predicate(self.value):
                return self.value

            async def _wait() -> T:
                while True:
                    state = await self._take(queue, None)
                    if predicate(state):
                        return state

            return await asyncio.wait_for(_wait(), timeout)
        finally:
            self.unlisten(queue)

    async def _take(self, queue: asyncio.Queue, timeout: float | None) -> T:
        item = await asyncio.wait_for(queue.get(), timeout)
        if item is _CLOSED:
            _offer(queue, _CLOSED)
            raise ViewClosed("live view closed")
        return item

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            try:
                yield await self.next()
            except ViewClosed:
                return

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            await self._store.unsubscribe(subscription)
        for queue in self._queues:
            _offer(queue, _CLOSED)

    async def __aenter__(self) -> "LiveView[T]":
        return await self.start()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


def _offer(queue: asyncio.Queue, item: Any) -> None:
    """Put without blocking, dropping the oldest entry when the queue is full."""

    while True:
        try:
            queue.put_nowait(item)
            return
        except asyncio.QueueFull:
            try:
                queue.get_nowait()
            except asyncio.QueueEmpty:
                pass

