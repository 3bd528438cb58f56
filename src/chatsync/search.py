from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from . import paths
from .models import Room, User
from .presence import users_from_snapshot
from .rooms import rooms_from_snapshot
from .store import Store


@dataclass
class SearchResults:
    users: List[User] = field(default_factory=list)
    rooms: List[Room] = field(default_factory=list)


async def search(store: Store, term: str, viewer_handle: str | None = None) -> SearchResults:
    """Case-insensitive substring match on user handles and room names.

    A blank term returns empty results without reading the store.
    """

    needle = term.strip().lower()
    if not needle:
        return SearchResults()
    users = [
        user
        for user in users_from_snapshot(await store.get(paths.USERS), viewer_handle)
        if needle in user.email.lower()
    ]
    rooms = [room for room in rooms_from_snapshot(await store.get(paths.ROOMS)) if needle in room.name.lower()]
    return SearchResults(users=users, rooms=rooms)
