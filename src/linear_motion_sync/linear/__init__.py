"""Linear API integration."""

from linear_motion_sync.linear.client import LinearClient
from linear_motion_sync.linear.models import (
    IssueLabel,
    LinearIssue,
    LinearUser,
    Project,
    Team,
    WorkflowState,
)

__all__ = [
    "LinearClient",
    "LinearIssue",
    "LinearUser",
    "IssueLabel",
    "Project",
    "Team",
    "WorkflowState",
]
