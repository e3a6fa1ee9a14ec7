"""Synchronization between Linear and Motion."""

from linear_motion_sync.sync.engine import SyncEngine, SyncReport, SyncResult
from linear_motion_sync.sync.mapper import MARKER_LABEL, TaskMapper

__all__ = ["SyncEngine", "SyncReport", "SyncResult", "TaskMapper", "MARKER_LABEL"]
