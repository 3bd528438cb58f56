"""Rooms: the directory, per-room message logs and live membership."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Mapping

from . import paths
from .config import DEFAULT_NOTIFY_FRESHNESS_MS, Settings
from .errors import IncorrectPassword, PermissionDenied, RoomNotFound, SendFailed, StoreError, ValidationError
from .invites import Fanout
from .keys import _now_ms
from .live import LiveView
from .models import MESSAGE, Membership, Message, Room
from .ordering import SeenIds, records, timestamp_ms
from .store import SERVER_TIMESTAMP, Store

logger = logging.getLogger(__name__)


def messages_from_snapshot(value: Any) -> List[Message]:
    # Store key order is creation order for pushed ids; no timestamp sort.
    return records(value, Message.from_record)


def members_from_snapshot(value: Any) -> List[Membership]:
    return records(value, Membership.from_record)


def rooms_from_snapshot(value: Any) -> List[Room]:
    return records(value, Room.from_record)


def can_delete(message: Message, viewer_handle: str) -> bool:
    """Only the sender is offered deletion; the store does not enforce it."""

    return message.sender == viewer_handle


async def subscribe_messages(store: Store, room_id: str) -> LiveView[List[Message]]:
    view = LiveView.of(store, paths.room_messages(room_id), messages_from_snapshot)
    return await view.start()


async def subscribe_members(store: Store, room_id: str) -> LiveView[List[Membership]]:
    view = LiveView.of(store, paths.room_members(room_id), members_from_snapshot)
    return await view.start()


async def send_message(store: Store, room_id: str, text: str, sender: str) -> str:
    if not text.strip():
        raise ValidationError("message text must not be empty")
    try:
        return await store.push(
            paths.room_messages(room_id),
            {"text": text, "sender": sender, "timestamp": SERVER_TIMESTAMP},
        )
    except StoreError as exc:
        logger.warning("failed to send message to room %s: %s", room_id, exc)
        raise SendFailed(str(exc), code=exc.code) from exc


async def delete_message(store: Store, room_id: str, message_id: str) -> None:
    await store.remove(paths.room_message(room_id, message_id))


class RoomDirectory:
    def __init__(self, store: Store) -> None:
        self._store = store

    async def create_room(self, name: str, creator: str, password: str | None = None) -> Room:
        """Create a room and return it once the store acknowledged the write."""

        if not name.strip():
            raise ValidationError("room name must not be empty")
        record = {
            "name": name,
            "createdBy": creator,
            "hasPassword": bool(password),
            "password": password or None,
            "createdAt": SERVER_TIMESTAMP,
        }
        room_id = await self._store.push(paths.ROOMS, record)
        stored = await self._store.get(paths.room(room_id))
        return Room.from_record(room_id, stored or {})

    async def watch_rooms(self) -> LiveView[List[Room]]:
        view = LiveView.of(self._store, paths.ROOMS, rooms_from_snapshot)
        return await view.start()

    async def get_room(self, room_id: str) -> Room:
        record = await self._store.get(paths.room(room_id))
        if not isinstance(record, dict):
            raise RoomNotFound(room_id)
        return Room.from_record(room_id, record)

    async def join_room(self, room_id: str, password: str | None = None) -> Room:
        room = await self.get_room(room_id)
        if not room.accepts(password):
            raise IncorrectPassword(room_id)
        return room

    async def delete_room(self, room_id: str, caller_handle: str) -> None:
        """Delete the room with all its messages and members in one removal."""

        room = await self.get_room(room_id)
        if room.created_by != caller_handle:
            raise PermissionDenied(f"{caller_handle} did not create room {room_id}")
        await self._store.remove(paths.room(room_id))


def _room_info(latest: Mapping[str, Any]) -> dict:
    return {"name": latest["name"], "created_by": latest["created_by"]}


class RoomChannel:
    """One viewer's live session inside a room.

    Opening writes the viewer's membership (removed again on close, or by the
    store if the connection drops) and starts views over the room's messages
    and members. ``gone`` is set when the room record disappears so the caller
    can navigate away.
    """

    def __init__(
        self,
        store: Store,
        room_id: str,
        *,
        viewer_id: str,
        viewer_handle: str,
        display_name: str | None = None,
        fanout: Fanout | None = None,
        freshness_ms: int = DEFAULT_NOTIFY_FRESHNESS_MS,
        now_func: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self.room_id = room_id
        self.viewer_id = viewer_id
        self.viewer_handle = viewer_handle
        self.display_name = display_name or viewer_handle
        self._fanout = fanout if fanout is not None else Fanout(store)
        self._freshness_ms = freshness_ms
        self._now = now_func
        self._seen = SeenIds()
        self._views: List[LiveView] = []
        self._tasks: List[asyncio.Task] = []
        self._entered = False
        self._info: LiveView[dict] | None = None
        self.gone = asyncio.Event()
        self.messages: LiveView[List[Message]] | None = None
        self.members: LiveView[List[Membership]] | None = None

    @classmethod
    def from_settings(cls, store: Store, room_id: str, settings: Settings, **kwargs: Any) -> "RoomChannel":
        """Build a channel whose notification window comes from ``settings``."""

        return cls(store, room_id, freshness_ms=settings.notify_freshness_ms, **kwargs)

    async def open(self) -> "RoomChannel":
        try:
            info = self._info = LiveView(
                self._store,
                {
                    "name": f"{paths.room(self.room_id)}/name",
                    "created_by": f"{paths.room(self.room_id)}/createdBy",
                },
                _room_info,
            )
            self._views.append(info)
            self._tasks.append(asyncio.create_task(self._watch_room(info.listen())))
            await info.start()

            if self.exists:
                await self.enter()
            else:
                self.gone.set()

            self.messages = LiveView.of(self._store, paths.room_messages(self.room_id), messages_from_snapshot)
            self._views.append(self.messages)
            self._tasks.append(asyncio.create_task(self._notify_fresh(self.messages.listen())))
            await self.messages.start()

            self.members = await subscribe_members(self._store, self.room_id)
            self._views.append(self.members)
        except Exception:
            await self.close()
            raise
        return self

    @property
    def room_name(self) -> str | None:
        if self._info is None or self._info.value is None:
            return None
        return self._info.value["name"]

    @property
    def exists(self) -> bool:
        return self._info is not None and self._info.value is not None and self._info.value["created_by"] is not None

    async def enter(self) -> None:
        path = paths.room_member(self.room_id, self.viewer_id)
        membership = Membership(
            user_id=self.viewer_id,
            email=self.viewer_handle,
            display_name=self.display_name,
            online=True,
        )
        await self._store.set(path, membership.to_record())
        await self._store.on_disconnect(path, "remove")
        self._entered = True

    async def leave(self) -> None:
        if not self._entered:
            return
        self._entered = False
        path = paths.room_member(self.room_id, self.viewer_id)
        try:
            await self._store.cancel_on_disconnect(path)
            await self._store.remove(path)
        except StoreError as exc:
            # a dropped connection already removed the membership
            logger.warning("failed to leave room %s: %s", self.room_id, exc)

    async def send(self, text: str) -> str:
        return await send_message(self._store, self.room_id, text, self.viewer_handle)

    async def delete(self, message_id: str) -> None:
        try:
            await delete_message(self._store, self.room_id, message_id)
        except StoreError:
            logger.warning("failed to delete message %s in room %s", message_id, self.room_id, exc_info=True)
            raise

    def can_delete(self, message: Message) -> bool:
        return can_delete(message, self.viewer_handle)

    async def _watch_room(self, queue: asyncio.Queue) -> None:
        while True:
            info = await queue.get()
            if not isinstance(info, dict):
                return
            if info["created_by"] is None:
                logger.info("room %s disappeared while viewed by %s", self.room_id, self.viewer_handle)
                self.gone.set()

    async def _notify_fresh(self, queue: asyncio.Queue) -> None:
        while True:
            messages = await queue.get()
            if not isinstance(messages, list):
                return
            for message in self._seen.fresh(messages, lambda item: item.id):
                if message.sender == self.viewer_handle:
                    continue
                if abs(self._now() - timestamp_ms(message.timestamp)) > self._freshness_ms:
                    continue
                # The recipient is the current viewer, not the other party.
                recipient = self.viewer_handle
                try:
                    await self._fanout.notify(
                        recipient,
                        MESSAGE,
                        message.sender,
                        room_id=self.room_id,
                        room_name=self.room_name,
                    )
                except StoreError as exc:
                    logger.warning("failed to notify %s about %s: %s", recipient, message.id, exc)

    async def close(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        views, self._views = self._views, []
        for view in views:
            await view.close()
        await self.leave()

    async def __aenter__(self) -> "RoomChannel":
        return await self.open()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
