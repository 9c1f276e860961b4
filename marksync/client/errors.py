from __future__ import annotations


class MarkSyncError(Exception):
    """Base class for failures surfaced to the presentation layer."""

    prefix = "Something went wrong"

    @property
    def user_message(self) -> str:
        detail = str(self)
        if not detail:
            return self.prefix
        return f"{self.prefix}: {detail}"


class ValidationError(MarkSyncError):
    prefix = "Fill all fields"


class UnauthenticatedError(MarkSyncError):
    prefix = "Sign in required"


class StoreError(MarkSyncError):
    def __init__(self, message: str = "", status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class StoreReadError(StoreError):
    prefix = "Could not load bookmarks"


class StoreWriteError(StoreError):
    prefix = "Could not save changes"
