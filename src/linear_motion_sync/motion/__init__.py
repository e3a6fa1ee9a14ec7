"""Motion API integration."""

from linear_motion_sync.motion.client import MotionClient
from linear_motion_sync.motion.models import (
    AutoScheduled,
    Label,
    MotionTask,
    MotionUser,
    MotionWorkspace,
    Status,
    duration_from_minutes,
)

__all__ = [
    "MotionClient",
    "MotionTask",
    "MotionUser",
    "MotionWorkspace",
    "Label",
    "Status",
    "AutoScheduled",
    "duration_from_minutes",
]
