from marksync.client.errors import (
    MarkSyncError,
    StoreReadError,
    StoreWriteError,
    UnauthenticatedError,
    ValidationError,
)
from marksync.client.factory import Capabilities, build_capabilities, create_synchronizer
from marksync.client.records import BookmarkRecord, SessionIdentity
from marksync.client.synchronizer import SyncState, ViewStateSynchronizer

__all__ = [
    "BookmarkRecord",
    "Capabilities",
    "MarkSyncError",
    "SessionIdentity",
    "StoreReadError",
    "StoreWriteError",
    "SyncState",
    "UnauthenticatedError",
    "ValidationError",
    "ViewStateSynchronizer",
    "build_capabilities",
    "create_synchronizer",
]
