from __future__ import annotations

import logging
from typing import Any, Iterable, List

from . import paths
from .errors import StoreError, ValidationError
from .live import LiveView
from .models import INVITE, MESSAGE, Invitation, Notification
from .ordering import records, sort_by_timestamp
from .store import SERVER_TIMESTAMP, Store

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = (MESSAGE, INVITE)


def notifications_from_snapshot(value: Any) -> List[Notification]:
    return sort_by_timestamp(records(value, Notification.from_record), newest_first=True)


def unread_count(notifications: Iterable[Notification]) -> int:
    return sum(1 for notification in notifications if not notification.read)


class Fanout:
    """Writes invitations and per-recipient notifications."""

    def __init__(self, store: Store) -> None:
        self._store = store

    async def invite(self, from_handle: str, to_handle: str) -> str:
        """Invite ``to_handle`` to direct messaging; returns the invitation id.

        Repeated invites accumulate, whether or not the reverse invitation
        already exists.
        """

        if not from_handle or not to_handle:
            raise ValidationError("both handles are required")
        try:
            await self.notify(to_handle, INVITE, from_handle)
            invite_id = await self._store.push(
                paths.invites(to_handle),
                {"from": from_handle, "timestamp": SERVER_TIMESTAMP},
            )
        except StoreError:
            logger.warning("failed to invite %s from %s", to_handle, from_handle, exc_info=True)
            raise
        return invite_id

    async def notify(
        self,
        recipient_handle: str,
        notification_type: str,
        sender: str,
        *,
        room_id: str | None = None,
        room_name: str | None = None,
    ) -> str:
        if notification_type not in NOTIFICATION_TYPES:
            raise ValidationError(f"unknown notification type {notification_type!r}")
        payload = {
            "type": notification_type,
            "sender": sender,
            "roomId": room_id,
            "roomName": room_name,
            "timestamp": SERVER_TIMESTAMP,
            "read": False,
        }
        return await self._store.push(paths.notifications(recipient_handle), payload)

    async def clear_one(self, recipient_handle: str, notification_id: str) -> None:
        await self._store.remove(paths.notification(recipient_handle, notification_id))

    async def clear_all(self, recipient_handle: str) -> None:
        await self._store.remove(paths.notifications(recipient_handle))

    async def watch_notifications(self, recipient_handle: str) -> LiveView[List[Notification]]:
        view = LiveView.of(self._store, paths.notifications(recipient_handle), notifications_from_snapshot)
        return await view.start()

    async def invitations_for(self, handle: str) -> List[Invitation]:
        key = paths.recipient_key(handle)
        value = await self._store.get(paths.invites(handle))
        return records(value, lambda invite_id, record: Invitation.from_record(invite_id, record, key))
