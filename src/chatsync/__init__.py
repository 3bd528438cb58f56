"""Presence-aware chat synchronization over a shared subscription store."""

from .client import RemoteStore
from .direct import DirectMessages, channel_id, eligible_contacts
from .errors import (
    ChatSyncError,
    IncorrectPassword,
    PermissionDenied,
    RoomNotFound,
    SendFailed,
    StoreError,
    ValidationError,
    ViewClosed,
)
from .invites import Fanout
from .live import LiveView
from .memory import InMemoryStore, MemoryConnection
from .presence import PresenceTracker
from .rooms import RoomChannel, RoomDirectory
from .search import SearchResults, search
from .server import main, simulate
from .store import SERVER_TIMESTAMP, Snapshot, Store

__all__ = [
    "RemoteStore",
    "DirectMessages",
    "channel_id",
    "eligible_contacts",
    "ChatSyncError",
    "IncorrectPassword",
    "PermissionDenied",
    "RoomNotFound",
    "SendFailed",
    "StoreError",
    "ValidationError",
    "ViewClosed",
    "Fanout",
    "LiveView",
    "InMemoryStore",
    "MemoryConnection",
    "PresenceTracker",
    "RoomChannel",
    "RoomDirectory",
    "SearchResults",
    "search",
    "main",
    "simulate",
    "SERVER_TIMESTAMP",
    "Snapshot",
    "Store",
]
