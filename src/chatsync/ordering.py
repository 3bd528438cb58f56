from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Set, Tuple, TypeVar

T = TypeVar("T")

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def iso_timestamp(ts_ms: int) -> str:
    """Format a millisecond clock value as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""

    moment = datetime.fromtimestamp(ts_ms // 1000, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts_ms % 1000:03d}Z"


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO timestamp; anything unparseable sorts as the epoch."""

    if not isinstance(value, str) or not value:
        return _EPOCH
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def timestamp_ms(value: Any) -> int:
    return int(parse_timestamp(value).timestamp() * 1000)


def children(value: Any) -> List[Tuple[str, Any]]:
    """Return ``(key, child)`` pairs of a snapshot value in key order.

    A missing or scalar value has no children.
    """

    if not isinstance(value, dict):
        return []
    return sorted(value.items(), key=lambda item: item[0])


def records(value: Any, factory: Callable[[str, dict], T]) -> List[T]:
    """Convert every dict child of a snapshot into a record, in key order."""

    return [factory(key, child) for key, child in children(value) if isinstance(child, dict)]


def sort_by_timestamp(items: Iterable[T], *, newest_first: bool = False) -> List[T]:
    """Sort records carrying ``timestamp`` and ``id``; ties fall back to the id."""

    ordered = sorted(items, key=lambda item: (parse_timestamp(item.timestamp), item.id))
    if newest_first:
        ordered.reverse()
    return ordered


class SeenIds:
    """Remembers which record ids have already been observed."""

    def __init__(self) -> None:
        self._seen: Set[str] = set()

    def fresh(self, items: Iterable[T], key: Callable[[T], str]) -> List[T]:
        """Return the items not observed before and mark them as seen."""

        result = []
        for item in items:
            item_id = key(item)
            if item_id in self._seen:
                continue
            self._seen.add(item_id)
            result.append(item)
        return result

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._seen

    def __len__(self) -> int:
        return len(self._seen)
