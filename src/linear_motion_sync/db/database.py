"""Local database facade."""

import logging
from pathlib import Path

from linear_motion_sync.db.keyspace import Keyspace
from linear_motion_sync.db.mapping import MappingStore
from linear_motion_sync.db.status import StatusStore

logger = logging.getLogger(__name__)


class SyncDatabase:
    """Opens the keyspace and exposes the mapping and status stores."""

    def __init__(self, db_path: Path) -> None:
        """Open the database.

        Args:
            db_path: SQLite file path; parent directories are created.

        Raises:
            StorageError: If the database cannot be opened.
        """
        self.db_path = db_path
        self.keyspace = Keyspace(db_path)
        self.mappings = MappingStore(self.keyspace)
        self.status = StatusStore(self.keyspace)
        logger.info(f"Database opened at {db_path}")

    async def flush(self) -> None:
        """Make every write durable."""
        await self.keyspace.flush()
