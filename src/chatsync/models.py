from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

MESSAGE = "message"
INVITE = "invite"


def _str(record: dict, key: str, default: str = "") -> str:
    value = record.get(key)
    return value if isinstance(value, str) else default


@dataclass(frozen=True)
class User:
    user_id: str
    email: str
    online: bool
    last_seen: str
    username: str | None = None

    @property
    def display_name(self) -> str:
        return self.username or self.email

    @classmethod
    def from_record(cls, user_id: str, record: dict) -> "User":
        username = record.get("username")
        return cls(
            user_id=user_id,
            email=_str(record, "email"),
            online=record.get("online") is True,
            last_seen=_str(record, "lastSeen"),
            username=username if isinstance(username, str) and username else None,
        )


@dataclass(frozen=True)
class Room:
    id: str
    name: str
    created_by: str
    has_password: bool
    created_at: str
    password: str | None = None

    @classmethod
    def from_record(cls, room_id: str, record: dict) -> "Room":
        password = record.get("password")
        return cls(
            id=room_id,
            name=_str(record, "name"),
            created_by=_str(record, "createdBy"),
            has_password=bool(record.get("hasPassword")),
            created_at=_str(record, "createdAt"),
            password=password if isinstance(password, str) else None,
        )

    def accepts(self, password: str | None) -> bool:
        """Plaintext comparison made before entering; not access control."""

        if not self.has_password:
            return True
        return password == self.password


@dataclass(frozen=True)
class Membership:
    user_id: str
    email: str
    display_name: str
    online: bool

    @classmethod
    def from_record(cls, user_id: str, record: dict) -> "Membership":
        email = _str(record, "email")
        return cls(
            user_id=user_id,
            email=email,
            display_name=_str(record, "displayName", email),
            online=record.get("online") is True,
        )

    def to_record(self) -> Dict[str, Any]:
        return {"email": self.email, "displayName": self.display_name, "online": self.online}


@dataclass(frozen=True)
class Message:
    id: str
    text: str
    sender: str
    timestamp: str

    @classmethod
    def from_record(cls, message_id: str, record: dict) -> "Message":
        return cls(
            id=message_id,
            text=_str(record, "text"),
            sender=_str(record, "sender"),
            timestamp=_str(record, "timestamp"),
        )


@dataclass(frozen=True)
class Invitation:
    id: str
    sender: str
    timestamp: str
    recipient_key: str = ""

    @classmethod
    def from_record(cls, invite_id: str, record: dict, recipient_key: str = "") -> "Invitation":
        return cls(
            id=invite_id,
            sender=_str(record, "from"),
            timestamp=_str(record, "timestamp"),
            recipient_key=recipient_key,
        )


@dataclass(frozen=True)
class Notification:
    id: str
    type: str
    sender: str
    timestamp: str
    read: bool
    room_id: str | None = None
    room_name: str | None = None

    @classmethod
    def from_record(cls, notification_id: str, record: dict) -> "Notification":
        room_id = record.get("roomId")
        room_name = record.get("roomName")
        return cls(
            id=notification_id,
            type=_str(record, "type"),
            sender=_str(record, "sender"),
            timestamp=_str(record, "timestamp"),
            read=record.get("read") is True,
            room_id=room_id if isinstance(room_id, str) else None,
            room_name=room_name if isinstance(room_name, str) else None,
        )

    @property
    def summary(self) -> str:
        if self.type == MESSAGE:
            return f"New message from {self.sender} in {self.room_name}"
        return f"{self.sender} invited you to chat"
