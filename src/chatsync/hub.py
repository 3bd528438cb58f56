from __future__ import annotations

import itertools
from typing import Dict, Iterable, List

from . import paths
from .store import Snapshot, SnapshotCallback, Subscription


class SubscriptionHub:
    """Registers path subscriptions and broadcasts snapshots to all listeners."""

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._ids = itertools.count(1)

    def subscribe(self, path: str, callback: SnapshotCallback) -> Subscription:
        key = paths.join(path)
        subscription = Subscription(sub_id=f"s{next(self._ids)}", path=key, callback=callback)
        self._subscriptions.setdefault(key, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subs = self._subscriptions.get(subscription.path)
        if not subs:
            return
        try:
            subs.remove(subscription)
        except ValueError:
            return
        if not subs:
            self._subscriptions.pop(subscription.path, None)

    def watched_paths(self, changed: Iterable[str]) -> List[str]:
        """Subscribed paths whose subtree overlaps any of the ``changed`` paths."""

        changed = list(changed)
        return [
            path
            for path in self._subscriptions
            if any(paths.is_related(path, candidate) for candidate in changed)
        ]

    def broadcast(self, snapshot: Snapshot) -> None:
        for subscription in list(self._subscriptions.get(snapshot.path, [])):
            subscription.deliver(snapshot)

    def subscriber_count(self, path: str | None = None) -> int:
        if path is None:
            return sum(len(subs) for subs in self._subscriptions.values())
        return len(self._subscriptions.get(paths.join(path), []))
