"""Store path conventions and the key sanitization rules used to build them."""

from __future__ import annotations

import re
from typing import List

USERS = "users"
ROOMS = "rooms"
DIRECT_MESSAGES = "direct_messages"
DIRECT_MESSAGE_INVITES = "direct_message_invites"
NOTIFICATIONS = "notifications"

# Characters the managed store refuses inside a key segment.
FORBIDDEN_KEY_CHARS = ".#$[]"
_FORBIDDEN_RE = re.compile(f"[{re.escape(FORBIDDEN_KEY_CHARS)}]")


class InvalidPath(ValueError):
    """A path segment breaks the store's key rule."""


def split(path: str) -> List[str]:
    """Split ``path`` into segments, ignoring leading/trailing/double slashes."""

    return [segment for segment in path.split("/") if segment]


def join(*segments: str) -> str:
    return "/".join(part for segment in segments for part in split(segment))


def validate(path: str) -> List[str]:
    segments = split(path)
    for segment in segments:
        if _FORBIDDEN_RE.search(segment):
            raise InvalidPath(f"invalid key {segment!r} in path {path!r}")
    return segments


def is_related(a: str, b: str) -> bool:
    """True when one path is an ancestor of (or equal to) the other."""

    sa, sb = split(a), split(b)
    shortest = min(len(sa), len(sb))
    return sa[:shortest] == sb[:shortest]


def recipient_key(handle: str) -> str:
    """Bucket key for per-recipient data.

    Only the first ``.`` is replaced; existing notification and invitation
    buckets were written this way, so a handle such as ``a@mail.co.uk`` maps to
    ``a@mail_co.uk`` and is rejected by the store's key rule.
    """

    return handle.replace(".", "_", 1)


def channel_id(handle_a: str, handle_b: str) -> str:
    """Order-independent direct channel id for a pair of handles.

    Handles that differ only by characters in ``FORBIDDEN_KEY_CHARS`` (or by
    ``_``) share a channel.
    """

    first, second = sorted([handle_a, handle_b])
    return _FORBIDDEN_RE.sub("_", f"{first}_{second}")


def user(user_id: str) -> str:
    return f"{USERS}/{user_id}"


def room(room_id: str) -> str:
    return f"{ROOMS}/{room_id}"


def room_messages(room_id: str) -> str:
    return f"{ROOMS}/{room_id}/messages"


def room_message(room_id: str, message_id: str) -> str:
    return f"{ROOMS}/{room_id}/messages/{message_id}"


def room_members(room_id: str) -> str:
    return f"{ROOMS}/{room_id}/members"


def room_member(room_id: str, user_id: str) -> str:
    return f"{ROOMS}/{room_id}/members/{user_id}"


def direct_messages(chan_id: str) -> str:
    return f"{DIRECT_MESSAGES}/{chan_id}/messages"


def invites(handle: str) -> str:
    return f"{DIRECT_MESSAGE_INVITES}/{recipient_key(handle)}"


def notifications(handle: str) -> str:
    return f"{NOTIFICATIONS}/{recipient_key(handle)}"


def notification(handle: str, notification_id: str) -> str:
    return f"{NOTIFICATIONS}/{recipient_key(handle)}/{notification_id}"
