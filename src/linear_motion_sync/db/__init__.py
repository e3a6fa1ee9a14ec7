"""Persistent mapping and status stores."""

from linear_motion_sync.db.database import SyncDatabase
from linear_motion_sync.db.keyspace import Keyspace, Partition
from linear_motion_sync.db.mapping import MappingStatus, MappingStore, TaskMapping
from linear_motion_sync.db.status import (
    StatusStore,
    SyncSourceStatus,
    SyncStatus,
    SyncStatusEntry,
)

__all__ = [
    "SyncDatabase",
    "Keyspace",
    "Partition",
    "MappingStatus",
    "MappingStore",
    "TaskMapping",
    "StatusStore",
    "SyncSourceStatus",
    "SyncStatus",
    "SyncStatusEntry",
]
