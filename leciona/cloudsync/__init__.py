"""Offline-first sync between the local cache and the per-account remote document."""

from .auth import AuthSession, AuthSignal, CloudAuthError
from .conflict import merge_collection, merge_documents
from .echo import EchoCanceller, LastSavedSnapshot, is_echo, normalize, to_wire
from .events import SERVER_TIMESTAMP, RemoteSnapshot, RemoteTimestamp, SnapshotStream
from .manager import CloudSyncConfig, CloudSyncError, HardResetError, SyncController, SyncState
from .remote import (
    DocumentStore,
    DocumentStoreError,
    HttpDocumentStore,
    MemoryDocumentClient,
    MemoryDocumentStore,
)
from .sanitizer import sanitize_snapshot
from .scheduler import DebouncedPersistence, SaveStatus

__all__ = [
    "AuthSession",
    "AuthSignal",
    "CloudAuthError",
    "merge_collection",
    "merge_documents",
    "EchoCanceller",
    "LastSavedSnapshot",
    "is_echo",
    "normalize",
    "to_wire",
    "SERVER_TIMESTAMP",
    "RemoteSnapshot",
    "RemoteTimestamp",
    "SnapshotStream",
    "CloudSyncConfig",
    "CloudSyncError",
    "HardResetError",
    "SyncController",
    "SyncState",
    "DocumentStore",
    "DocumentStoreError",
    "HttpDocumentStore",
    "MemoryDocumentClient",
    "MemoryDocumentStore",
    "sanitize_snapshot",
    "DebouncedPersistence",
    "SaveStatus",
]
