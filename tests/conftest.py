"""Pytest configuration and fixtures."""

import tempfile
from pathlib import Path
from typing import Any

import pytest

from linear_motion_sync.config import AppConfig, SyncRules, SyncSource, TimeEstimateStrategy
from linear_motion_sync.db import SyncDatabase
from linear_motion_sync.errors import LinearApiError
from linear_motion_sync.linear import LinearIssue, LinearUser
from linear_motion_sync.motion import MotionTask, MotionUser, MotionWorkspace
from linear_motion_sync.sync import SyncEngine
from linear_motion_sync.utils import StorageManager


def make_issue(
    issue_id: str = "issue-1",
    identifier: str = "ENG-1",
    title: str = "Fix login redirect",
    **overrides: Any,
) -> LinearIssue:
    """Build an issue shaped like a Linear API response."""
    data: dict[str, Any] = {
        "id": issue_id,
        "identifier": identifier,
        "title": title,
        "description": "Users land on a blank page after login.",
        "state": {"id": "state-1", "name": "In Progress", "type": "started"},
        "priority": 2,
        "estimate": 3.0,
        "createdAt": "2024-03-01T09:00:00.000Z",
        "updatedAt": "2024-03-02T10:30:00.000Z",
        "dueDate": "2024-03-15",
        "labels": {"nodes": []},
    }
    data.update(overrides)
    return LinearIssue.model_validate(data)


class FakeLinearClient:
    """In-memory stand-in for ``LinearClient``."""

    def __init__(self, issues: list[LinearIssue] | None = None) -> None:
        self.issues = list(issues or [])
        self.labels: dict[str, set[str]] = {}
        self.calls: list[tuple[Any, ...]] = []
        self.viewer_error: Exception | None = None
        self.label_check_errors: set[str] = set()
        self.add_label_error: Exception | None = None
        self.closed = False

    async def get_viewer(self) -> LinearUser:
        self.calls.append(("get_viewer",))
        if self.viewer_error is not None:
            raise self.viewer_error
        return LinearUser(id="user-1", name="Test User", email="test@example.com")

    async def get_assigned_issues(self, project_ids: list[str] | None = None) -> list[LinearIssue]:
        self.calls.append(("get_assigned_issues", project_ids))
        return list(self.issues)

    async def check_issue_has_label(self, issue_id: str, label_name: str) -> bool:
        self.calls.append(("check_issue_has_label", issue_id, label_name))
        if issue_id in self.label_check_errors:
            raise LinearApiError("label lookup failed")
        return label_name in self.labels.get(issue_id, set())

    async def add_label_to_issue(self, issue_id: str, label_name: str) -> None:
        self.calls.append(("add_label_to_issue", issue_id, label_name))
        if self.add_label_error is not None:
            raise self.add_label_error
        self.labels.setdefault(issue_id, set()).add(label_name)

    async def aclose(self) -> None:
        self.closed = True

    def calls_named(self, name: str) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == name]


class FakeMotionClient:
    """In-memory stand-in for ``MotionClient``."""

    def __init__(self, workspaces: list[MotionWorkspace] | None = None) -> None:
        if workspaces is None:
            workspaces = [
                MotionWorkspace(id="ws-team", name="Team Workspace"),
                MotionWorkspace(id="ws-private", name="My Private Workspace"),
            ]
        self.workspaces = workspaces
        self.created: list[MotionTask] = []
        self.updated: list[tuple[str, MotionTask]] = []
        self.completed: dict[str, list[MotionTask]] = {}
        self.create_errors: dict[str, Exception] = {}
        self.update_error: Exception | None = None
        self.user_error: Exception | None = None
        self.completed_calls: list[str] = []

    async def get_current_user(self) -> MotionUser:
        if self.user_error is not None:
            raise self.user_error
        return MotionUser(id="motion-user", name="Test User")

    async def list_workspaces(self) -> list[MotionWorkspace]:
        return list(self.workspaces)

    async def create_task(self, task: MotionTask) -> MotionTask:
        if task.name in self.create_errors:
            raise self.create_errors[task.name]
        created = task.model_copy(update={"id": f"task-{len(self.created) + 1}"})
        self.created.append(created)
        return created

    async def update_task(self, task_id: str, task: MotionTask) -> MotionTask:
        if self.update_error is not None:
            raise self.update_error
        self.updated.append((task_id, task))
        return task.model_copy(update={"id": task_id})

    async def list_completed_tasks(self, workspace_id: str) -> list[MotionTask]:
        self.completed_calls.append(workspace_id)
        return list(self.completed.get(workspace_id, []))


@pytest.fixture
def temp_config_dir() -> Path:
    """Create a temporary configuration directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def storage_manager(temp_config_dir: Path) -> StorageManager:
    """Create a storage manager with temporary directory."""
    return StorageManager(temp_config_dir)


@pytest.fixture
def database(temp_config_dir: Path) -> SyncDatabase:
    """Create a database in the temporary directory."""
    return SyncDatabase(temp_config_dir / "sync.db")


@pytest.fixture
def sync_rules() -> SyncRules:
    """Global sync rules with a fibonacci table."""
    return SyncRules(
        default_task_duration_mins=60,
        completed_linear_tag="motioned",
        time_estimate_strategy=TimeEstimateStrategy(
            fibonacci={"1": 30, "2": 60, "3": 120, "5": 240, "8": 480},
            tshirt={"XS": 30, "S": 60, "M": 120},
        ),
    )


@pytest.fixture
def app_config(sync_rules: SyncRules) -> AppConfig:
    """Configuration with a single sync source."""
    return AppConfig(
        motion_api_key="motion-key",
        sync_sources=[SyncSource(name="acme", linear_api_key="linear-key")],
        global_sync_rules=sync_rules,
    )


@pytest.fixture
def sample_issue() -> LinearIssue:
    """Create a sample Linear issue."""
    return make_issue()


@pytest.fixture
def linear_client(sample_issue: LinearIssue) -> FakeLinearClient:
    """Fake Linear client returning the sample issue."""
    return FakeLinearClient([sample_issue])


@pytest.fixture
def motion_client() -> FakeMotionClient:
    """Fake Motion client."""
    return FakeMotionClient()


@pytest.fixture
def engine(
    app_config: AppConfig,
    database: SyncDatabase,
    motion_client: FakeMotionClient,
    linear_client: FakeLinearClient,
) -> SyncEngine:
    """Sync engine wired to the fakes."""
    return SyncEngine(
        config=app_config,
        database=database,
        motion_client=motion_client,
        source_factory=lambda source: linear_client,
    )
