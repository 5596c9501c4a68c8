"""pylistsync - offline-first shopping lists synchronized with a REST backend."""

from .api import RemoteClient
from .database import Database
from .exceptions import (
    ListSyncConfigError,
    ListSyncError,
    LocalStorageError,
    RemoteAuthenticationError,
    RemoteError,
    RemoteInvalidResponseError,
    RemoteNetworkError,
    RemoteNotFoundError,
    RemotePermissionError,
    RemoteRateLimitError,
    RemoteServerError,
    RemoteValidationError,
    SyncIncompleteError,
)
from .models import EntityKind, ListItem, MutationRecord, OperationKind, ShoppingList
from .storage import LocalStore
from .sync import ConflictResolver, MutationQueue, SyncEngine, SyncScheduler

__all__ = [
    "RemoteClient",
    "Database",
    "LocalStore",
    "SyncEngine",
    "SyncScheduler",
    "MutationQueue",
    "ConflictResolver",
    "EntityKind",
    "OperationKind",
    "ShoppingList",
    "ListItem",
    "MutationRecord",
    "ListSyncError",
    "ListSyncConfigError",
    "LocalStorageError",
    "RemoteError",
    "RemoteAuthenticationError",
    "RemoteInvalidResponseError",
    "RemoteNetworkError",
    "RemoteNotFoundError",
    "RemotePermissionError",
    "RemoteRateLimitError",
    "RemoteServerError",
    "RemoteValidationError",
    "SyncIncompleteError",
]
