"""The store capability the synchronization components are written against.

The store is a tree of JSON values addressed by slash separated paths.
Subscribers always receive the full current value of the subscribed subtree,
never a diff, so a subscriber that misses intermediate states still converges
on the next delivery.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping

from . import paths

# Placeholder resolved by the store to its own clock at write time.
SERVER_TIMESTAMP: Dict[str, str] = {".sv": "timestamp"}

DISCONNECT_OPS = ("set", "update", "remove")


@dataclass(frozen=True)
class Snapshot:
    path: str
    value: Any


SnapshotCallback = Callable[[Snapshot], None]


@dataclass
class Subscription:
    sub_id: str
    path: str
    callback: SnapshotCallback

    def deliver(self, snapshot: Snapshot) -> None:
        self.callback(snapshot)


@dataclass(frozen=True)
class DisconnectOp:
    path: str
    op: str
    value: Any = None


class Store:
    """One client's connection to the shared store.

    ``update`` takes child paths relative to ``path`` (they may contain
    slashes) and applies them as one atomic multi-location write. ``push``
    stores ``value`` under a fresh ordered key and returns the key.
    ``on_disconnect`` registers a write the store performs by itself when this
    connection is lost; registering again for the same path replaces it.
    """

    async def get(self, path: str) -> Any:
        raise NotImplementedError

    async def set(self, path: str, value: Any) -> None:
        raise NotImplementedError

    async def update(self, path: str, values: Mapping[str, Any]) -> None:
        raise NotImplementedError

    async def remove(self, path: str) -> None:
        raise NotImplementedError

    async def push(self, path: str, value: Any) -> str:
        raise NotImplementedError

    async def subscribe(self, path: str, callback: SnapshotCallback) -> Subscription:
        raise NotImplementedError

    async def unsubscribe(self, subscription: Subscription) -> None:
        raise NotImplementedError

    async def on_disconnect(self, path: str, op: str, value: Any = None) -> None:
        raise NotImplementedError

    async def cancel_on_disconnect(self, path: str) -> None:
        raise NotImplementedError


def is_server_value(value: Any) -> bool:
    return isinstance(value, dict) and set(value) == {".sv"}


def resolve(value: Any, server_timestamp: str) -> Any:
    """Replace server value placeholders with the store's timestamp."""

    if is_server_value(value):
        if value[".sv"] != "timestamp":
            raise ValueError(f"unsupported server value {value['.sv']!r}")
        return server_timestamp
    if isinstance(value, dict):
        return {key: resolve(child, server_timestamp) for key, child in value.items()}
    return value


def normalize(value: Any) -> Any:
    """Validate keys and drop ``None`` children and empty containers.

    Returns ``None`` when nothing remains, which the store treats as absent.
    """

    if isinstance(value, dict):
        result = {}
        for key, child in value.items():
            if not isinstance(key, str) or not key or "/" in key:
                raise paths.InvalidPath(f"invalid key {key!r}")
            paths.validate(key)
            normalized = normalize(child)
            if normalized is not None:
                result[key] = normalized
        return result or None
    if isinstance(value, list):
        # lists are stored as index-keyed children
        return normalize({str(index): child for index, child in enumerate(value)})
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    raise ValueError(f"unsupported value type {type(value).__name__}")


def read(tree: Any, segments: List[str]) -> Any:
    node = tree
    for segment in segments:
        if not isinstance(node, dict):
            return None
        node = node.get(segment)
        if node is None:
            return None
    if node == {}:
        return None
    return copy.deepcopy(node)


def write(tree: Dict[str, Any], segments: List[str], value: Any) -> Dict[str, Any]:
    """Replace the node at ``segments`` in ``tree`` and prune empty parents.

    ``value`` must already be normalized. Returns the (possibly new) root.
    """

    if not segments:
        return value if isinstance(value, dict) else {}

    head, rest = segments[0], segments[1:]
    if rest:
        child = tree.get(head)
        if not isinstance(child, dict):
            child = {}
        child = write(child, rest, value)
        if child:
            tree[head] = child
        else:
            tree.pop(head, None)
    elif value is None:
        tree.pop(head, None)
    else:
        tree[head] = value
    return tree
