"""Conversion of Linear issues into Motion tasks."""

import logging
from datetime import datetime, time, timedelta, timezone

from linear_motion_sync.config import SyncRules
from linear_motion_sync.errors import MotionApiError
from linear_motion_sync.linear.models import LinearIssue
from linear_motion_sync.motion.models import (
    AutoScheduled,
    Label,
    MotionTask,
    MotionWorkspace,
    duration_from_minutes,
)

logger = logging.getLogger(__name__)

MARKER_LABEL = "linear-sync"
PREFERRED_WORKSPACE = "My Private Workspace"

PRIORITY_MAP = {1: "ASAP", 2: "HIGH", 3: "MEDIUM"}


def map_priority(priority: int | None) -> str:
    """Map a Linear priority level to a Motion priority.

    Args:
        priority: Linear priority (1 urgent, 2 high, 3 medium, 4 low), if set.

    Returns:
        Motion priority; anything outside 1-3 is LOW, a missing one is MEDIUM.
    """
    if priority is None:
        return "MEDIUM"
    return PRIORITY_MAP.get(priority, "LOW")


def parse_due_date(due_date: str | None) -> datetime | None:
    """Turn a Linear due date (YYYY-MM-DD) into the last second of that day in UTC."""
    if not due_date:
        return None
    try:
        day = datetime.strptime(due_date, "%Y-%m-%d").date()
    except ValueError:
        logger.warning(f"Ignoring unparsable due date: {due_date}")
        return None
    return datetime.combine(day, time(23, 59, 59), tzinfo=timezone.utc)


def select_workspace(workspaces: list[MotionWorkspace]) -> MotionWorkspace:
    """Pick the workspace new tasks go to.

    Raises:
        MotionApiError: If there is no workspace at all.
    """
    if not workspaces:
        raise MotionApiError("No Motion workspaces available")
    for workspace in workspaces:
        if workspace.name == PREFERRED_WORKSPACE:
            return workspace
    return workspaces[0]


def issue_needs_update(previous: LinearIssue | None, current: LinearIssue) -> bool:
    """Check whether an issue changed since its stored snapshot.

    A snapshot that cannot be decoded counts as changed.
    """
    if previous is None:
        return True
    return (
        previous.title != current.title
        or previous.description != current.description
        or previous.estimate != current.estimate
        or previous.priority != current.priority
        or previous.due_date != current.due_date
        or previous.updated_at != current.updated_at
    )


class TaskMapper:
    """Builds Motion tasks from the issues of one sync source."""

    def __init__(self, rules: SyncRules, source_name: str) -> None:
        """Initialize task mapper.

        Args:
            rules: Effective sync rules of the source.
            source_name: Sync source name, used in the link back to Linear.
        """
        self.rules = rules
        self.source_name = source_name

    def title(self, issue: LinearIssue) -> str:
        return f"[{issue.identifier}] {issue.title}"

    def issue_url(self, issue: LinearIssue) -> str:
        return f"https://linear.app/{self.source_name}/issue/{issue.identifier}"

    def description(self, issue: LinearIssue) -> str:
        """Issue description followed by a link back to the issue."""
        link = f"Linear: {self.issue_url(issue)}"
        if issue.description:
            return f"{issue.description}\n\n{link}"
        return link

    def duration_minutes(self, issue: LinearIssue) -> int:
        return self.rules.duration_for(issue.estimate)

    def build_create(
        self,
        issue: LinearIssue,
        workspace: MotionWorkspace,
        now: datetime | None = None,
    ) -> MotionTask:
        """Build the task to create for a new issue.

        Args:
            issue: Linear issue.
            workspace: Target Motion workspace.
            now: Current time; issues without a due date are due a day later.

        Returns:
            Auto-scheduled task carrying the sync marker label.
        """
        now = now or datetime.now(timezone.utc)
        due_date = parse_due_date(issue.due_date) or now + timedelta(days=1)

        return MotionTask(
            name=self.title(issue),
            description=self.description(issue),
            priority=map_priority(issue.priority),
            due_date=due_date,
            duration=duration_from_minutes(self.duration_minutes(issue)),
            labels=[Label(name=MARKER_LABEL)],
            workspace=workspace,
            auto_scheduled=AutoScheduled(start_date=now),
        )

    def build_update(self, issue: LinearIssue) -> MotionTask:
        """Build the task fields to send for an issue that already has a task."""
        return MotionTask(
            name=self.title(issue),
            description=self.description(issue),
            priority=map_priority(issue.priority),
            due_date=parse_due_date(issue.due_date),
            duration=duration_from_minutes(self.duration_minutes(issue)),
            labels=[Label(name=MARKER_LABEL)],
        )
