"""Global online/offline state of users.

Presence is driven entirely by the store's disconnect trigger: every fresh
connection marks the user online and pre-registers the write that marks them
offline when the connection is lost. Logging out does not touch ``online``.
Presence is unrelated to room membership, which only says a user is viewing a
particular room.
"""

from __future__ import annotations

import logging
from typing import Any, List

from . import paths
from .errors import StoreError, ValidationError
from .live import LiveView
from .models import User
from .ordering import records, timestamp_ms
from .store import SERVER_TIMESTAMP, Store

logger = logging.getLogger(__name__)


def online_record(email: str) -> dict:
    return {"email": email, "online": True, "lastSeen": SERVER_TIMESTAMP}


OFFLINE_UPDATE = {"online": False, "lastSeen": SERVER_TIMESTAMP}


def users_from_snapshot(value: Any, exclude_handle: str | None = None) -> List[User]:
    users = records(value, User.from_record)
    if exclude_handle is not None:
        users = [user for user in users if user.email != exclude_handle]
    return users


def last_seen_label(user: User, now_ms: int) -> str:
    if user.online:
        return "Online"
    delta_s = max(0, (now_ms - timestamp_ms(user.last_seen)) // 1000)
    if delta_s < 60:
        return "Last seen just now"
    if delta_s < 60 * 60:
        return f"Last seen {delta_s // 60}m ago"
    if delta_s < 24 * 60 * 60:
        return f"Last seen {delta_s // 3600}h ago"
    return f"Last seen {delta_s // 86400}d ago"


class PresenceTracker:
    def __init__(self, store: Store) -> None:
        self._store = store
        self._views: List[LiveView] = []
        self.user_id: str | None = None

    async def signup(self, user_id: str, email: str) -> None:
        """Create the user record; the record is never deleted afterwards."""

        await self._store.set(paths.user(user_id), online_record(email))

    async def start(self, user_id: str, email: str) -> None:
        """Mark the user online for this connection and arm the offline write.

        Must be called again on every fresh connection; a registration does
        not survive the connection it was made on.
        """

        path = paths.user(user_id)
        try:
            await self._store.update(path, online_record(email))
            await self._store.on_disconnect(path, "update", OFFLINE_UPDATE)
        except StoreError:
            logger.warning("failed to start presence for %s", user_id, exc_info=True)
            raise
        self.user_id = user_id

    async def update_username(self, user_id: str, username: str) -> None:
        if not username.strip():
            raise ValidationError("username must not be blank")
        await self._store.update(paths.user(user_id), {"username": username.strip()})

    async def watch_users(self, exclude_handle: str | None = None) -> LiveView[List[User]]:
        view = LiveView.of(self._store, paths.USERS, lambda value: users_from_snapshot(value, exclude_handle))
        await view.start()
        self._views.append(view)
        return view

    async def logout(self) -> None:
        """Tear down this tracker's views.

        ``online`` is left as is; only the disconnect trigger flips it.
        """

        views, self._views = self._views, []
        for view in views:
            await view.close()
        self.user_id = None
