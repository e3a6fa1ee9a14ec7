"""Sync attempt log and per-source statistics."""

import logging
import uuid
from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, Field, ValidationError

from linear_motion_sync.db.keyspace import Keyspace
from linear_motion_sync.db.mapping import utcnow
from linear_motion_sync.errors import StorageError

logger = logging.getLogger(__name__)

STATUS_PARTITION = "sync_statuses"
STATS_PARTITION = "source_stats"
MAX_RECENT_ERRORS = 10


class SyncStatus(str, Enum):
    """State of one sync attempt."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


class SyncStatusEntry(BaseModel):
    """One attempt to sync an issue."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    sync_source: str
    linear_issue_id: str
    motion_task_id: str | None = None
    status: SyncStatus = SyncStatus.IN_PROGRESS
    last_sync_attempt: datetime = Field(default_factory=utcnow)
    error_message: str | None = None
    retry_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SyncSourceStatus(BaseModel):
    """Cumulative counters for a sync source."""

    source_name: str
    last_sync: datetime = Field(default_factory=utcnow)
    total_issues_processed: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    errors: list[str] = Field(default_factory=list)


class StatusStore:
    """Keyed store of sync attempts and source statistics."""

    def __init__(self, keyspace: Keyspace) -> None:
        """Initialize status store.

        Args:
            keyspace: Keyspace holding the ``sync_statuses`` and
                ``source_stats`` partitions.
        """
        self.keyspace = keyspace
        self.entries = keyspace.partition(STATUS_PARTITION)
        self.stats = keyspace.partition(STATS_PARTITION)

    @staticmethod
    def _decode_entry(key: str, value: str) -> SyncStatusEntry:
        try:
            return SyncStatusEntry.model_validate_json(value)
        except ValidationError as e:
            raise StorageError(f"Corrupt status record: {e}", "decode", key) from e

    @staticmethod
    def _decode_stats(key: str, value: str) -> SyncSourceStatus:
        try:
            return SyncSourceStatus.model_validate_json(value)
        except ValidationError as e:
            raise StorageError(f"Corrupt source stats record: {e}", "decode", key) from e

    async def _put_entry(self, entry: SyncStatusEntry) -> None:
        await self.entries.insert(entry.id, entry.model_dump_json())

    async def create_entry(self, sync_source: str, linear_issue_id: str) -> SyncStatusEntry:
        """Record the start of an attempt.

        Returns:
            New in-progress entry.
        """
        entry = SyncStatusEntry(sync_source=sync_source, linear_issue_id=linear_issue_id)
        await self._put_entry(entry)
        return entry

    async def get_entry(self, entry_id: str) -> SyncStatusEntry | None:
        """Look up an attempt by ID."""
        value = await self.entries.get(entry_id)
        return self._decode_entry(entry_id, value) if value is not None else None

    async def update_status(
        self, entry_id: str, status: SyncStatus, error: str | None = None
    ) -> SyncStatusEntry | None:
        """Set the status of an attempt.

        The retry count goes up only when an error is supplied.

        Args:
            entry_id: Attempt ID.
            status: New status.
            error: Error message, if the attempt failed.

        Returns:
            Updated entry, or None if the ID is unknown.
        """
        entry = await self.get_entry(entry_id)
        if entry is None:
            logger.warning(f"Sync status entry {entry_id} not found")
            return None

        now = utcnow()
        entry.status = status
        entry.error_message = error
        entry.last_sync_attempt = now
        entry.updated_at = now
        if error is not None:
            entry.retry_count += 1
        await self._put_entry(entry)
        return entry

    async def mark_completed(self, entry_id: str, motion_task_id: str) -> SyncStatusEntry | None:
        """Mark an attempt completed for a Motion task."""
        entry = await self.get_entry(entry_id)
        if entry is None:
            logger.warning(f"Sync status entry {entry_id} not found")
            return None

        now = utcnow()
        entry.status = SyncStatus.COMPLETED
        entry.motion_task_id = motion_task_id
        entry.error_message = None
        entry.last_sync_attempt = now
        entry.updated_at = now
        await self._put_entry(entry)
        return entry

    async def mark_failed(self, entry_id: str, error: str) -> SyncStatusEntry | None:
        """Mark an attempt failed."""
        return await self.update_status(entry_id, SyncStatus.FAILED, error)

    async def list_entries(self) -> list[SyncStatusEntry]:
        """All attempts, oldest first."""
        return [self._decode_entry(key, value) for key, value in await self.entries.items()]

    async def list_by_source(self, sync_source: str) -> list[SyncStatusEntry]:
        """Attempts made for a sync source."""
        return [e for e in await self.list_entries() if e.sync_source == sync_source]

    async def list_failed(self) -> list[SyncStatusEntry]:
        """Failed attempts."""
        return [e for e in await self.list_entries() if e.status == SyncStatus.FAILED]

    async def get_source_status(self, source_name: str) -> SyncSourceStatus | None:
        """Statistics of a sync source, if it ever ran."""
        value = await self.stats.get(source_name)
        return self._decode_stats(source_name, value) if value is not None else None

    async def list_source_stats(self) -> list[SyncSourceStatus]:
        """Statistics of every sync source that ever ran."""
        return [self._decode_stats(key, value) for key, value in await self.stats.items()]

    async def update_source_stats(
        self, source_name: str, success: bool, error: str | None = None
    ) -> SyncSourceStatus:
        """Count one processed issue for a sync source.

        Args:
            source_name: Sync source name.
            success: Whether the issue synced.
            error: Error to remember; only the 10 most recent are kept.

        Returns:
            Updated statistics.
        """
        stats = await self.get_source_status(source_name) or SyncSourceStatus(
            source_name=source_name
        )

        stats.last_sync = utcnow()
        stats.total_issues_processed += 1
        if success:
            stats.successful_syncs += 1
        else:
            stats.failed_syncs += 1

        if error is not None:
            stats.errors.append(error)
            del stats.errors[:-MAX_RECENT_ERRORS]

        await self.stats.insert(source_name, stats.model_dump_json())
        return stats

    async def touch_source(self, source_name: str) -> SyncSourceStatus:
        """Record that a pass over a sync source finished, without counting anything."""
        stats = await self.get_source_status(source_name) or SyncSourceStatus(
            source_name=source_name
        )
        stats.last_sync = utcnow()
        await self.stats.insert(source_name, stats.model_dump_json())
        return stats

    async def cleanup_old_entries(self, older_than_days: int) -> int:
        """Delete completed attempts created before the retention window.

        Args:
            older_than_days: Retention window in days.

        Returns:
            Number of deleted entries.
        """
        cutoff = utcnow() - timedelta(days=older_than_days)
        deleted = 0
        for entry in await self.list_entries():
            if entry.status == SyncStatus.COMPLETED and entry.created_at < cutoff:
                await self.entries.remove(entry.id)
                deleted += 1

        logger.info(f"Cleaned up {deleted} sync status entries older than {older_than_days} days")
        return deleted

    async def flush(self) -> None:
        """Make every write durable."""
        await self.keyspace.flush()
