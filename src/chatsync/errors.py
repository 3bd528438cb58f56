from __future__ import annotations


class ChatSyncError(Exception):
    """Base class for failures scoped to a single chat operation."""


class ValidationError(ChatSyncError):
    """Input rejected locally, before any store round trip."""


class StoreError(ChatSyncError):
    def __init__(self, message: str, *, code: str = "store_error") -> None:
        super().__init__(message)
        self.code = code


class SendFailed(StoreError):
    pass


class PermissionDenied(ChatSyncError):
    pass


class IncorrectPassword(ChatSyncError):
    pass


class RoomNotFound(ChatSyncError):
    pass


class ViewClosed(ChatSyncError):
    pass
