"""Pydantic models for Linear API responses."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LinearUser(BaseModel):
    """Linear user model."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    email: str | None = None


class WorkflowState(BaseModel):
    """Linear workflow state model."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    state_type: str = Field(alias="type")


class Team(BaseModel):
    """Linear team model."""

    id: str
    name: str
    key: str


class Project(BaseModel):
    """Linear project model."""

    id: str
    name: str
    description: str | None = None
    state: str | None = None


class IssueLabel(BaseModel):
    """Linear issue label model."""

    id: str | None = None
    name: str
    color: str | None = None


def _unwrap_nodes(value: Any) -> Any:
    """Accept both GraphQL connections ({"nodes": [...]}) and plain lists."""
    if isinstance(value, dict) and "nodes" in value:
        return value["nodes"]
    return value


class LinearIssue(BaseModel):
    """Linear issue model.

    The same model is used to snapshot an issue into the mapping store, so it
    must round-trip through ``model_dump(mode="json", by_alias=True)``.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    identifier: str
    title: str
    description: str | None = None
    state: WorkflowState | None = None
    assignee: LinearUser | None = None
    team: Team | None = None
    project: Project | None = None
    priority: int | None = None
    estimate: float | None = None
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    due_date: str | None = Field(default=None, alias="dueDate")
    completed_at: datetime | None = Field(default=None, alias="completedAt")
    labels: list[IssueLabel] = Field(default_factory=list)

    @field_validator("labels", mode="before")
    @classmethod
    def _labels_from_connection(cls, value: Any) -> Any:
        return _unwrap_nodes(value) or []

    def snapshot(self) -> dict[str, Any]:
        """Serialize the issue for storage alongside its mapping."""
        return self.model_dump(mode="json", by_alias=True)
