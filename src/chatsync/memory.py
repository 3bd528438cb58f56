"""In-memory implementation of the shared store.

``InMemoryStore`` is the single authoritative tree. Clients talk to it through
``MemoryConnection`` objects, each of which owns its subscriptions and its
disconnect-triggered writes. The store service wraps one connection around
every websocket; tests use connections directly.
"""

from __future__ import annotations

import itertools
import logging
import sqlite3
import threading
from typing import Any, Callable, Dict, List, Mapping, Tuple

from . import paths
from . import store as tree_ops
from .errors import StoreError
from .hub import SubscriptionHub
from .keys import PushKeyGenerator, _now_ms
from .ordering import iso_timestamp
from .sqlite_backend import SQLiteBackend
from .store import DISCONNECT_OPS, DisconnectOp, Snapshot, SnapshotCallback, Store, Subscription

logger = logging.getLogger(__name__)

Write = Tuple[List[str], Any]


class InMemoryStore:
    """Concurrency-safe tree map that broadcasts full snapshots on change."""

    def __init__(
        self,
        *,
        backend: SQLiteBackend | None = None,
        now_func: Callable[[], int] = _now_ms,
    ) -> None:
        self._now = now_func
        self._lock = threading.RLock()
        self._backend = backend
        self._tree: Dict[str, Any] = backend.load() if backend is not None else {}
        self._hub = SubscriptionHub()
        self._keys = PushKeyGenerator(now_func=now_func)
        self._connection_ids = itertools.count(1)
        self._connections: Dict[str, MemoryConnection] = {}

    @property
    def hub(self) -> SubscriptionHub:
        return self._hub

    def connect(self) -> MemoryConnection:
        conn_id = f"c{next(self._connection_ids)}"
        connection = MemoryConnection(self, conn_id)
        self._connections[conn_id] = connection
        logger.debug("store connection %s opened", conn_id)
        return connection

    def connection_count(self) -> int:
        return len(self._connections)

    def server_timestamp(self) -> str:
        return iso_timestamp(self._now())

    def new_key(self) -> str:
        return self._keys()

    def read(self, path: str) -> Any:
        segments = paths.validate(path)
        with self._lock:
            return tree_ops.read(self._tree, segments)

    def set(self, path: str, value: Any) -> None:
        segments = paths.validate(path)
        self._apply([(segments, self._prepare(value))])

    def update(self, path: str, values: Mapping[str, Any]) -> None:
        base = paths.validate(path)
        writes: List[Write] = []
        for child_path, value in values.items():
            segments = base + paths.validate(child_path)
            if not segments[len(base):]:
                raise ValueError("update keys must name a child path")
            writes.append((segments, self._prepare(value)))
        for (a, _), (b, _) in itertools.combinations(writes, 2):
            if paths.is_related("/".join(a), "/".join(b)):
                raise ValueError("update paths overlap")
        if writes:
            self._apply(writes)

    def push(self, path: str, value: Any) -> str:
        key = self.new_key()
        segments = paths.validate(path) + [key]
        self._apply([(segments, self._prepare(value))])
        return key

    def subscribe(self, path: str, callback: SnapshotCallback) -> Subscription:
        segments = paths.validate(path)
        with self._lock:
            subscription = self._hub.subscribe(path, callback)
            current = tree_ops.read(self._tree, segments)
        subscription.deliver(Snapshot(subscription.path, current))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._hub.unsubscribe(subscription)

    def _prepare(self, value: Any) -> Any:
        return tree_ops.normalize(tree_ops.resolve(value, self.server_timestamp()))

    def _apply(self, writes: List[Write]) -> None:
        with self._lock:
            changed = ["/".join(segments) for segments, _ in writes]
            watched = self._hub.watched_paths(changed)
            before = {path: tree_ops.read(self._tree, paths.split(path)) for path in watched}
            if self._backend is not None:
                self._backend.replace(writes)
            for segments, value in writes:
                self._tree = tree_ops.write(self._tree, segments, value)
            after = {path: tree_ops.read(self._tree, paths.split(path)) for path in watched}
        for path in watched:
            if before[path] != after[path]:
                self._hub.broadcast(Snapshot(path, after[path]))

    def release(self, connection: MemoryConnection) -> None:
        self._connections.pop(connection.conn_id, None)
        for op in connection.take_disconnect_ops():
            try:
                if op.op == "set":
                    self.set(op.path, op.value)
                elif op.op == "update":
                    self.update(op.path, op.value or {})
                else:
                    self.set(op.path, None)
            except Exception:
                logger.warning("disconnect write on %s for %s failed", op.path, connection.conn_id, exc_info=True)
                continue
            logger.debug("fired disconnect %s on %s for %s", op.op, op.path, connection.conn_id)


def _store_error(exc: Exception) -> StoreError:
    if isinstance(exc, sqlite3.Error):
        return StoreError(f"store backend failed: {exc}", code="unavailable")
    code = "invalid_path" if isinstance(exc, paths.InvalidPath) else "invalid_request"
    return StoreError(str(exc), code=code)


class MemoryConnection(Store):
    """A client session against an ``InMemoryStore``."""

    def __init__(self, store: InMemoryStore, conn_id: str) -> None:
        self._store = store
        self.conn_id = conn_id
        self._subscriptions: Dict[str, Subscription] = {}
        self._disconnect_ops: Dict[str, DisconnectOp] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _require_open(self) -> None:
        if self._closed:
            raise StoreError("connection closed", code="disconnected")

    async def get(self, path: str) -> Any:
        self._require_open()
        try:
            return self._store.read(path)
        except (ValueError, sqlite3.Error) as exc:
            raise _store_error(exc) from exc

    async def set(self, path: str, value: Any) -> None:
        self._require_open()
        try:
            self._store.set(path, value)
        except (ValueError, sqlite3.Error) as exc:
            raise _store_error(exc) from exc

    async def update(self, path: str, values: Mapping[str, Any]) -> None:
        self._require_open()
        try:
            self._store.update(path, values)
        except (ValueError, sqlite3.Error) as exc:
            raise _store_error(exc) from exc

    async def remove(self, path: str) -> None:
        await self.set(path, None)

    async def push(self, path: str, value: Any) -> str:
        self._require_open()
        try:
            return self._store.push(path, value)
        except (ValueError, sqlite3.Error) as exc:
            raise _store_error(exc) from exc

    async def subscribe(self, path: str, callback: SnapshotCallback) -> Subscription:
        self._require_open()
        try:
            subscription = self._store.subscribe(path, callback)
        except (ValueError, sqlite3.Error) as exc:
            raise _store_error(exc) from exc
        self._subscriptions[subscription.sub_id] = subscription
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        if self._subscriptions.pop(subscription.sub_id, None) is not None:
            self._store.unsubscribe(subscription)

    async def on_disconnect(self, path: str, op: str, value: Any = None) -> None:
        self._require_open()
        if op not in DISCONNECT_OPS:
            raise StoreError(f"unknown disconnect op {op!r}", code="invalid_request")
        try:
            paths.validate(path)
        except (ValueError, sqlite3.Error) as exc:
            raise _store_error(exc) from exc
        if op == "update" and not isinstance(value, Mapping):
            raise StoreError("disconnect update needs a mapping", code="invalid_request")
        self._disconnect_ops[paths.join(path)] = DisconnectOp(path=paths.join(path), op=op, value=value)

    async def cancel_on_disconnect(self, path: str) -> None:
        self._disconnect_ops.pop(paths.join(path), None)

    def take_disconnect_ops(self) -> List[DisconnectOp]:
        ops = list(self._disconnect_ops.values())
        self._disconnect_ops.clear()
        return ops

    def disconnect(self) -> None:
        """Drop the connection as a network failure would.

        Subscriptions stop and the registered disconnect writes fire exactly
        once; later calls are no-ops.
        """

        if self._closed:
            return
        self._closed = True
        for subscription in list(self._subscriptions.values()):
            self._store.unsubscribe(subscription)
        self._subscriptions.clear()
        self._store.release(self)
        logger.debug("store connection %s closed", self.conn_id)
