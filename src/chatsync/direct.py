"""Direct messages between two handles, unlocked by an invitation.

Both participants derive the same channel id independently, and either
client may observe writes in a different store order, so direct messages are
re-sorted by timestamp on every update.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping, Set, Tuple

from . import paths
from .errors import SendFailed, StoreError, ValidationError
from .live import LiveView
from .models import Message, User
from .ordering import children, records, sort_by_timestamp
from .presence import users_from_snapshot
from .store import SERVER_TIMESTAMP, Store

logger = logging.getLogger(__name__)

channel_id = paths.channel_id


def messages_from_snapshot(value: Any) -> List[Message]:
    return sort_by_timestamp(records(value, Message.from_record))


def invitation_pairs(invites: Any) -> Set[Tuple[str, str]]:
    """``(sender, recipient_key)`` pairs from the whole invitation tree."""

    pairs = set()
    for key, bucket in children(invites):
        for _, record in children(bucket):
            if isinstance(record, dict) and isinstance(record.get("from"), str):
                pairs.add((record["from"], key))
    return pairs


def eligible_contacts(self_handle: str, users: Iterable[User], invites: Any) -> List[User]:
    """Users with at least one invitation to or from ``self_handle``.

    One invitation in either direction is enough; acceptance is not modelled.
    """

    pairs = invitation_pairs(invites)
    self_key = paths.recipient_key(self_handle)
    result = []
    for user in users:
        if not user.email or user.email == self_handle:
            continue
        received = (user.email, self_key) in pairs
        sent = (self_handle, paths.recipient_key(user.email)) in pairs
        if received or sent:
            result.append(user)
    return result


def _contacts(self_handle: str):
    def derive(latest: Mapping[str, Any]) -> List[User]:
        return eligible_contacts(self_handle, users_from_snapshot(latest["users"]), latest["invites"])

    return derive


class DirectMessages:
    def __init__(self, store: Store) -> None:
        self._store = store

    async def list_eligible_contacts(self, self_handle: str) -> List[User]:
        users = users_from_snapshot(await self._store.get(paths.USERS))
        invites = await self._store.get(paths.DIRECT_MESSAGE_INVITES)
        return eligible_contacts(self_handle, users, invites)

    async def watch_contacts(self, self_handle: str) -> LiveView[List[User]]:
        view = LiveView(
            self._store,
            {"users": paths.USERS, "invites": paths.DIRECT_MESSAGE_INVITES},
            _contacts(self_handle),
        )
        return await view.start()

    async def subscribe_messages(self, self_handle: str, other_handle: str) -> LiveView[List[Message]]:
        chan = channel_id(self_handle, other_handle)
        view = LiveView.of(self._store, paths.direct_messages(chan), messages_from_snapshot)
        return await view.start()

    async def send(self, self_handle: str, other_handle: str, text: str) -> str:
        if not text.strip():
            raise ValidationError("message text must not be empty")
        chan = channel_id(self_handle, other_handle)
        try:
            return await self._store.push(
                paths.direct_messages(chan),
                {"text": text, "sender": self_handle, "timestamp": SERVER_TIMESTAMP},
            )
        except StoreError as exc:
            logger.warning("failed to send direct message on %s: %s", chan, exc)
            raise SendFailed(str(exc), code=exc.code) from exc
