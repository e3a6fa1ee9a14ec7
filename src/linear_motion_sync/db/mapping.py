"""Durable mapping between Linear issues and Motion tasks."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from linear_motion_sync.db.keyspace import Keyspace
from linear_motion_sync.errors import StorageError
from linear_motion_sync.linear.models import LinearIssue

logger = logging.getLogger(__name__)

PARTITION = "task_mappings"


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class MappingStatus(str, Enum):
    """Lifecycle of an issue/task association."""

    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"
    # Reserved for drift detection; nothing produces it yet
    STALE = "stale"


class TaskMapping(BaseModel):
    """Association between one Linear issue and at most one Motion task."""

    linear_issue_id: str
    motion_task_id: str | None = None
    sync_source: str
    status: MappingStatus = MappingStatus.PENDING
    linear_issue_data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_sync_attempt: datetime | None = None
    sync_error: str | None = None

    @property
    def key(self) -> str:
        """Primary key of the mapping."""
        return mapping_key(self.sync_source, self.linear_issue_id)

    def issue_snapshot(self) -> LinearIssue | None:
        """Decode the stored issue snapshot, or None if it is unusable."""
        try:
            return LinearIssue.model_validate(self.linear_issue_data)
        except ValidationError:
            return None


def mapping_key(sync_source: str, linear_issue_id: str) -> str:
    """Key of the mapping for an issue of a sync source."""
    return f"{sync_source}:{linear_issue_id}"


class MappingStore:
    """Keyed store of ``TaskMapping`` records.

    At most one mapping exists per (sync source, issue ID) pair since that
    pair is the primary key.
    """

    def __init__(self, keyspace: Keyspace) -> None:
        """Initialize mapping store.

        Args:
            keyspace: Keyspace holding the ``task_mappings`` partition.
        """
        self.keyspace = keyspace
        self.partition = keyspace.partition(PARTITION)

    @staticmethod
    def _decode(key: str, value: str) -> TaskMapping:
        try:
            return TaskMapping.model_validate_json(value)
        except ValidationError as e:
            raise StorageError(f"Corrupt mapping record: {e}", "decode", key) from e

    async def put(self, mapping: TaskMapping) -> None:
        """Insert or replace a mapping."""
        await self.partition.insert(mapping.key, mapping.model_dump_json())

    async def get_by_item(self, sync_source: str, linear_issue_id: str) -> TaskMapping | None:
        """Look up the mapping of an issue."""
        key = mapping_key(sync_source, linear_issue_id)
        value = await self.partition.get(key)
        return self._decode(key, value) if value is not None else None

    async def get_by_sink_task(self, motion_task_id: str) -> TaskMapping | None:
        """Find the mapping owning a Motion task.

        Scans every mapping; the first match wins.
        """
        for mapping in await self.list_all():
            if mapping.motion_task_id == motion_task_id:
                return mapping
        return None

    async def remove(self, sync_source: str, linear_issue_id: str) -> TaskMapping | None:
        """Delete a mapping.

        Returns:
            The deleted mapping, or None if there was none.
        """
        key = mapping_key(sync_source, linear_issue_id)
        value = await self.partition.remove(key)
        if value is None:
            return None
        logger.debug(f"Removed mapping {key}")
        return self._decode(key, value)

    async def list_all(self) -> list[TaskMapping]:
        """All mappings."""
        return [self._decode(key, value) for key, value in await self.partition.items()]

    async def list_by_source(self, sync_source: str) -> list[TaskMapping]:
        """Mappings of one sync source."""
        return [m for m in await self.list_all() if m.sync_source == sync_source]

    async def list_by_status(self, status: MappingStatus) -> list[TaskMapping]:
        """Mappings in a given lifecycle state."""
        return [m for m in await self.list_all() if m.status == status]

    async def create_pending(self, sync_source: str, issue: LinearIssue) -> TaskMapping:
        """Persist a new pending mapping for a freshly observed issue.

        Args:
            sync_source: Name of the sync source.
            issue: Issue to snapshot.

        Returns:
            The stored mapping.
        """
        mapping = TaskMapping(
            linear_issue_id=issue.id,
            sync_source=sync_source,
            status=MappingStatus.PENDING,
            linear_issue_data=issue.snapshot(),
        )
        await self.put(mapping)
        logger.debug(f"Created pending mapping {mapping.key}")
        return mapping

    async def mark_synced(
        self, sync_source: str, linear_issue_id: str, motion_task_id: str
    ) -> TaskMapping | None:
        """Mark a mapping synced and attach its Motion task. No-op if absent."""
        mapping = await self.get_by_item(sync_source, linear_issue_id)
        if mapping is None:
            return None

        mapping.status = MappingStatus.SYNCED
        mapping.motion_task_id = motion_task_id
        mapping.sync_error = None
        mapping.updated_at = utcnow()
        await self.put(mapping)
        return mapping

    async def mark_failed(
        self, sync_source: str, linear_issue_id: str, error: str
    ) -> TaskMapping | None:
        """Mark a mapping failed, keeping any known Motion task ID. No-op if absent."""
        mapping = await self.get_by_item(sync_source, linear_issue_id)
        if mapping is None:
            return None

        now = utcnow()
        mapping.status = MappingStatus.FAILED
        mapping.sync_error = error
        mapping.last_sync_attempt = now
        mapping.updated_at = now
        await self.put(mapping)
        return mapping

    async def update_item_snapshot(
        self, sync_source: str, linear_issue_id: str, issue: LinearIssue
    ) -> TaskMapping | None:
        """Replace the stored issue snapshot. No-op if absent."""
        mapping = await self.get_by_item(sync_source, linear_issue_id)
        if mapping is None:
            return None

        mapping.linear_issue_data = issue.snapshot()
        mapping.updated_at = utcnow()
        await self.put(mapping)
        return mapping

    async def flush(self) -> None:
        """Make every write durable."""
        await self.keyspace.flush()
