"""Pydantic models for Motion API requests and responses."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# Motion accepts a number of minutes or one of these keywords
TaskDuration = int | Literal["NONE", "REMINDER"]


def duration_from_minutes(minutes: int) -> TaskDuration:
    """Duration value for a number of minutes; zero means no duration."""
    return "NONE" if minutes == 0 else minutes


def _iso(value: datetime | None) -> str | None:
    return value.isoformat().replace("+00:00", "Z") if value else None


class MotionUser(BaseModel):
    """Motion user model."""

    id: str
    name: str | None = None
    email: str | None = None


class MotionWorkspace(BaseModel):
    """Motion workspace model."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    team_id: str | None = Field(default=None, alias="teamId")
    workspace_type: str | None = Field(default=None, alias="type")


class Label(BaseModel):
    """Motion task label."""

    name: str


class Status(BaseModel):
    """Motion task status."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    is_default_status: bool = Field(default=False, alias="isDefaultStatus")
    is_resolved_status: bool = Field(default=False, alias="isResolvedStatus")


class AutoScheduled(BaseModel):
    """Motion auto-scheduling settings."""

    model_config = ConfigDict(populate_by_name=True)

    start_date: datetime | None = Field(default=None, alias="startDate")
    deadline_type: str = Field(default="SOFT", alias="deadlineType")
    schedule: str = "Work Hours"


class MotionTask(BaseModel):
    """Motion task model."""

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    name: str
    description: str | None = None
    priority: str | None = None
    due_date: datetime | None = Field(default=None, alias="dueDate")
    duration: TaskDuration | None = None
    status: Status | None = None
    completed: bool | None = None
    completed_time: datetime | None = Field(default=None, alias="completedTime")
    labels: list[Label] = Field(default_factory=list)
    workspace: MotionWorkspace | None = None
    auto_scheduled: AutoScheduled | None = Field(default=None, alias="autoScheduled")
    created_time: datetime | None = Field(default=None, alias="createdTime")
    updated_time: datetime | None = Field(default=None, alias="updatedTime")

    def has_label(self, name: str) -> bool:
        """Check whether the task carries a label."""
        return any(label.name == name for label in self.labels)

    def label_names(self) -> list[str]:
        """Label names in the form the API expects."""
        return [label.name for label in self.labels]

    def to_create_payload(self) -> dict[str, Any]:
        """Convert to a create-task request body.

        Returns:
            Dictionary for API submission.

        Raises:
            ValueError: If the task has no workspace.
        """
        if self.workspace is None:
            raise ValueError("Motion task needs a workspace to be created")

        payload: dict[str, Any] = {"name": self.name, "workspaceId": self.workspace.id}
        if self.description is not None:
            payload["description"] = self.description
        if self.priority is not None:
            payload["priority"] = self.priority
        if self.due_date is not None:
            payload["dueDate"] = _iso(self.due_date)
        if self.duration is not None:
            payload["duration"] = self.duration
        if self.labels:
            payload["labels"] = self.label_names()
        if self.auto_scheduled is not None:
            payload["autoScheduled"] = {
                "startDate": _iso(self.auto_scheduled.start_date),
                "deadlineType": self.auto_scheduled.deadline_type,
                "schedule": self.auto_scheduled.schedule,
            }
        return payload

    def to_update_payload(self) -> dict[str, Any]:
        """Convert to a PATCH request body, leaving out unset fields."""
        payload: dict[str, Any] = {"name": self.name}
        if self.description is not None:
            payload["description"] = self.description
        if self.priority is not None:
            payload["priority"] = self.priority
        if self.due_date is not None:
            payload["dueDate"] = _iso(self.due_date)
        if self.duration is not None:
            payload["duration"] = self.duration
        if self.status is not None:
            payload["status"] = self.status.name
        if self.labels:
            payload["labels"] = self.label_names()
        return payload
