"""Interfaces the engine expects from the Linear and Motion clients."""

from typing import Protocol

from linear_motion_sync.linear.models import LinearIssue, LinearUser
from linear_motion_sync.motion.models import MotionTask, MotionUser, MotionWorkspace


class SourceAdapter(Protocol):
    """Issue tracker the engine reads issues from and tags when done."""

    async def get_viewer(self) -> LinearUser: ...

    async def get_assigned_issues(self, project_ids: list[str] | None = None) -> list[LinearIssue]: ...

    async def check_issue_has_label(self, issue_id: str, label_name: str) -> bool: ...

    async def add_label_to_issue(self, issue_id: str, label_name: str) -> None: ...

    async def aclose(self) -> None: ...


class SinkAdapter(Protocol):
    """Task scheduler the engine mirrors issues into."""

    async def get_current_user(self) -> MotionUser: ...

    async def list_workspaces(self) -> list[MotionWorkspace]: ...

    async def create_task(self, task: MotionTask) -> MotionTask: ...

    async def update_task(self, task_id: str, task: MotionTask) -> MotionTask: ...

    async def list_completed_tasks(self, workspace_id: str) -> list[MotionTask]: ...
