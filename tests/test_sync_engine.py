"""Tests for sync engine."""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from conftest import FakeLinearClient, FakeMotionClient, make_issue
from linear_motion_sync.config import AppConfig, SyncRules, SyncSource
from linear_motion_sync.db import MappingStatus, SyncDatabase, SyncStatus
from linear_motion_sync.errors import (
    AuthenticationError,
    ConnectivityError,
    MotionApiError,
    StorageError,
)
from linear_motion_sync.motion import MotionClient
from linear_motion_sync.sync import SyncEngine, SyncReport, SyncResult
from linear_motion_sync.utils import RateLimiter, RetryPolicy


def two_source_config(sync_rules: SyncRules) -> AppConfig:
    return AppConfig(
        motion_api_key="motion-key",
        sync_sources=[
            SyncSource(name="acme", linear_api_key="key-a"),
            SyncSource(name="globex", linear_api_key="key-b", projects=[]),
        ],
        global_sync_rules=sync_rules,
    )


class TestSyncResult:
    """Test SyncResult functionality."""

    def test_initialization(self) -> None:
        """Test SyncResult initialization."""
        result = SyncResult("acme")

        assert result.tasks_created == 0
        assert result.tasks_updated == 0
        assert result.issues_skipped == 0
        assert result.issues_failed == 0
        assert result.errors == []
        assert result.succeeded is True

    def test_add_failure(self) -> None:
        """Test recording failed issues."""
        result = SyncResult("acme")
        result.add_failure("Test error")

        assert result.issues_failed == 1
        assert "Test error" in result.errors
        assert result.succeeded is True

    def test_source_error(self) -> None:
        """Test recording an aborted pass."""
        result = SyncResult("acme")
        result.set_source_error("unreachable")

        assert result.succeeded is False
        assert "Source error: unreachable" in str(result)

    def test_str_representation(self) -> None:
        """Test string representation."""
        result = SyncResult("acme")
        result.add_created()
        result.add_updated()
        result.add_skip()
        result.add_failure("error")

        result_str = str(result)
        assert "Created: 1" in result_str
        assert "Updated: 1" in result_str
        assert "Skipped: 1" in result_str
        assert "Failed: 1" in result_str

    def test_report(self) -> None:
        """Test the report aggregates source results."""
        report = SyncReport()
        ok = SyncResult("acme")
        ok.add_created()
        broken = SyncResult("globex")
        broken.set_source_error("boom")
        report.add(ok)
        report.add(broken)

        assert report.get("acme") is ok
        assert report.get("missing") is None
        assert report.failed_sources == [broken]
        assert report.succeeded is False
        assert "Created: 1" in str(report)


class TestSyncDecisions:
    """Test the create, update and skip decisions."""

    @pytest.mark.asyncio
    async def test_creates_task_for_new_issue(
        self,
        engine: SyncEngine,
        database: SyncDatabase,
        motion_client: FakeMotionClient,
    ) -> None:
        """Test a new issue gets a task and a synced mapping."""
        report = await engine.run_full_sync()

        result = report.get("acme")
        assert result.tasks_created == 1
        assert len(motion_client.created) == 1
        task = motion_client.created[0]
        assert task.name == "[ENG-1] Fix login redirect"
        assert task.workspace.id == "ws-private"
        assert task.duration == 120

        mapping = await database.mappings.get_by_item("acme", "issue-1")
        assert mapping.status == MappingStatus.SYNCED
        assert mapping.motion_task_id == "task-1"
        assert mapping.sync_error is None

        entries = await database.status.list_by_source("acme")
        assert len(entries) == 1
        assert entries[0].status == SyncStatus.COMPLETED
        assert entries[0].motion_task_id == "task-1"

    @pytest.mark.asyncio
    async def test_skips_done_issue(
        self,
        engine: SyncEngine,
        database: SyncDatabase,
        linear_client: FakeLinearClient,
        motion_client: FakeMotionClient,
    ) -> None:
        """Test issues with the done label are left alone."""
        linear_client.labels["issue-1"] = {"motioned"}

        report = await engine.run_full_sync()

        assert report.get("acme").issues_skipped == 1
        assert motion_client.created == []
        assert await database.mappings.list_all() == []
        assert await database.status.list_entries() == []

    @pytest.mark.asyncio
    async def test_second_pass_is_idempotent(
        self,
        engine: SyncEngine,
        database: SyncDatabase,
        motion_client: FakeMotionClient,
    ) -> None:
        """Test an unchanged issue causes no remote calls on the next pass."""
        await engine.run_full_sync()
        report = await engine.run_full_sync()

        assert report.get("acme").issues_skipped == 1
        assert len(motion_client.created) == 1
        assert motion_client.updated == []
        assert len(await database.mappings.list_all()) == 1
        assert len(await database.status.list_entries()) == 1

    @pytest.mark.asyncio
    async def test_changed_issue_is_updated(
        self,
        engine: SyncEngine,
        database: SyncDatabase,
        linear_client: FakeLinearClient,
        motion_client: FakeMotionClient,
    ) -> None:
        """Test a changed issue updates its task and snapshot."""
        await engine.run_full_sync()
        changed = make_issue(title="Fix login redirect loop", updatedAt="2024-03-05T00:00:00.000Z")
        linear_client.issues = [changed]

        report = await engine.run_full_sync()

        assert report.get("acme").tasks_updated == 1
        assert len(motion_client.created) == 1
        task_id, task = motion_client.updated[0]
        assert task_id == "task-1"
        assert task.name == "[ENG-1] Fix login redirect loop"

        mapping = await database.mappings.get_by_item("acme", "issue-1")
        assert mapping.issue_snapshot() == changed
        assert mapping.status == MappingStatus.SYNCED

        report = await engine.run_full_sync()
        assert report.get("acme").issues_skipped == 1
        assert len(motion_client.updated) == 1

    @pytest.mark.asyncio
    async def test_force_update(
        self,
        engine: SyncEngine,
        motion_client: FakeMotionClient,
    ) -> None:
        """Test forcing updates of unchanged issues."""
        await engine.run_full_sync()

        report = await engine.run_full_sync(force_update=True)

        assert report.get("acme").tasks_updated == 1
        assert [task_id for task_id, _ in motion_client.updated] == ["task-1"]

    @pytest.mark.asyncio
    async def test_failed_mapping_is_retried(
        self,
        engine: SyncEngine,
        database: SyncDatabase,
        motion_client: FakeMotionClient,
    ) -> None:
        """Test a failed creation is retried on the next pass."""
        motion_client.create_errors["[ENG-1] Fix login redirect"] = MotionApiError("HTTP 500", 500)

        first = await engine.run_full_sync()

        assert first.get("acme").issues_failed == 1
        mapping = await database.mappings.get_by_item("acme", "issue-1")
        assert mapping.status == MappingStatus.FAILED
        assert "HTTP 500" in mapping.sync_error
        assert mapping.motion_task_id is None

        motion_client.create_errors.clear()
        second = await engine.run_full_sync()

        assert second.get("acme").tasks_created == 1
        mapping = await database.mappings.get_by_item("acme", "issue-1")
        assert mapping.status == MappingStatus.SYNCED
        assert mapping.sync_error is None

        statuses = [entry.status for entry in await database.status.list_entries()]
        assert statuses == [SyncStatus.FAILED, SyncStatus.COMPLETED]

    @pytest.mark.asyncio
    async def test_pending_mapping_is_retried(
        self,
        engine: SyncEngine,
        database: SyncDatabase,
        motion_client: FakeMotionClient,
        sample_issue,
    ) -> None:
        """Test a mapping left pending by an interrupted run gets its task."""
        await database.mappings.create_pending("acme", sample_issue)

        report = await engine.run_full_sync()

        assert report.get("acme").tasks_created == 1
        assert len(await database.mappings.list_all()) == 1

    @pytest.mark.asyncio
    async def test_update_failure_keeps_mapping(
        self,
        engine: SyncEngine,
        database: SyncDatabase,
        motion_client: FakeMotionClient,
    ) -> None:
        """Test a failed update only marks the attempt failed."""
        await engine.run_full_sync()
        motion_client.update_error = MotionApiError("HTTP 502", 502)

        report = await engine.run_full_sync(force_update=True)

        assert report.get("acme").issues_failed == 1
        mapping = await database.mappings.get_by_item("acme", "issue-1")
        assert mapping.status == MappingStatus.SYNCED
        assert mapping.motion_task_id == "task-1"
        assert mapping.sync_error is None

        failed = await database.status.list_failed()
        assert len(failed) == 1
        assert failed[0].retry_count == 1

    @pytest.mark.asyncio
    async def test_no_workspace_fails_creation(
        self,
        engine: SyncEngine,
        database: SyncDatabase,
        motion_client: FakeMotionClient,
    ) -> None:
        """Test creation fails when Motion has no workspace."""
        motion_client.workspaces = []

        report = await engine.run_full_sync()

        assert report.get("acme").issues_failed == 1
        mapping = await database.mappings.get_by_item("acme", "issue-1")
        assert mapping.status == MappingStatus.FAILED


class TestFailureIsolation:
    """Test how failures spread, or do not."""

    @pytest.mark.asyncio
    async def test_item_failure_does_not_stop_source(
        self,
        engine: SyncEngine,
        database: SyncDatabase,
        linear_client: FakeLinearClient,
        motion_client: FakeMotionClient,
    ) -> None:
        """Test one failing issue leaves the others unaffected."""
        linear_client.issues = [
            make_issue("issue-1", "ENG-1", "First"),
            make_issue("issue-2", "ENG-2", "Second"),
            make_issue("issue-3", "ENG-3", "Third"),
        ]
        motion_client.create_errors["[ENG-2] Second"] = MotionApiError("HTTP 400", 400)

        report = await engine.run_full_sync()

        result = report.get("acme")
        assert result.tasks_created == 2
        assert result.issues_failed == 1
        assert result.succeeded is True
        assert report.succeeded is True

        stats = await database.status.get_source_status("acme")
        assert stats.total_issues_processed == 3
        assert stats.successful_syncs == 2
        assert stats.failed_syncs == 1
        assert len(stats.errors) == 1

    @pytest.mark.asyncio
    async def test_unexpected_create_error_is_recorded(
        self,
        engine: SyncEngine,
        database: SyncDatabase,
        motion_client: FakeMotionClient,
    ) -> None:
        """Test an unexpected create error still closes the attempt."""
        motion_client.create_errors["[ENG-1] Fix login redirect"] = RuntimeError("decoder exploded")

        report = await engine.run_full_sync()

        assert report.get("acme").issues_failed == 1
        mapping = await database.mappings.get_by_item("acme", "issue-1")
        assert mapping.status == MappingStatus.FAILED
        assert mapping.sync_error == "decoder exploded"

        entries = await database.status.list_by_source("acme")
        assert [entry.status for entry in entries] == [SyncStatus.FAILED]
        assert entries[0].error_message == "decoder exploded"

    @pytest.mark.asyncio
    async def test_undecodable_motion_response_is_recorded(
        self,
        app_config: AppConfig,
        database: SyncDatabase,
        linear_client: FakeLinearClient,
    ) -> None:
        """Test a Motion body that cannot be decoded fails the attempt."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v1/users/me":
                return httpx.Response(200, json={"id": "motion-user", "name": "Test User"})
            if request.url.path == "/v1/workspaces":
                workspaces = [{"id": "ws-private", "name": "My Private Workspace"}]
                return httpx.Response(200, json={"workspaces": workspaces})
            if request.method == "POST":
                return httpx.Response(
                    200, headers={"Content-Encoding": "gzip"}, content=b"not gzip"
                )
            return httpx.Response(200, json={"tasks": [], "meta": {}})

        motion = MotionClient(
            "motion-key",
            rate_limiter=RateLimiter(max_calls=1000, period=1.0),
            retry_policy=RetryPolicy(sleep=AsyncMock()),
            client=httpx.AsyncClient(
                transport=httpx.MockTransport(handler), base_url=MotionClient.BASE_URL
            ),
        )
        engine = SyncEngine(
            config=app_config,
            database=database,
            motion_client=motion,
            source_factory=lambda source: linear_client,
        )

        report = await engine.run_full_sync()
        await motion.aclose()

        assert report.get("acme").issues_failed == 1
        entries = await database.status.list_by_source("acme")
        assert [entry.status for entry in entries] == [SyncStatus.FAILED]
        mapping = await database.mappings.get_by_item("acme", "issue-1")
        assert mapping.status == MappingStatus.FAILED
        assert "Malformed" in mapping.sync_error

    @pytest.mark.asyncio
    async def test_unexpected_update_error_is_recorded(
        self,
        engine: SyncEngine,
        database: SyncDatabase,
        motion_client: FakeMotionClient,
    ) -> None:
        """Test an unexpected update error fails the attempt and keeps the mapping."""
        await engine.run_full_sync()
        motion_client.update_error = RuntimeError("decoder exploded")

        await engine.run_full_sync(force_update=True)

        mapping = await database.mappings.get_by_item("acme", "issue-1")
        assert mapping.status == MappingStatus.SYNCED
        failed = await database.status.list_failed()
        assert [entry.error_message for entry in failed] == ["decoder exploded"]
        statuses = {entry.status for entry in await database.status.list_by_source("acme")}
        assert SyncStatus.IN_PROGRESS not in statuses

    @pytest.mark.asyncio
    async def test_label_check_failure_skips_issue(
        self,
        engine: SyncEngine,
        database: SyncDatabase,
        linear_client: FakeLinearClient,
        motion_client: FakeMotionClient,
    ) -> None:
        """Test an issue whose labels cannot be read is counted as failed."""
        linear_client.issues = [make_issue("issue-1", "ENG-1"), make_issue("issue-2", "ENG-2")]
        linear_client.label_check_errors.add("issue-1")

        report = await engine.run_full_sync()

        result = report.get("acme")
        assert result.issues_failed == 1
        assert result.tasks_created == 1
        assert await database.mappings.get_by_item("acme", "issue-1") is None
        stats = await database.status.get_source_status("acme")
        assert stats.failed_syncs == 1

    @pytest.mark.asyncio
    async def test_source_failure_is_isolated(
        self,
        sync_rules: SyncRules,
        database: SyncDatabase,
        motion_client: FakeMotionClient,
    ) -> None:
        """Test a source that cannot connect does not stop its sibling."""
        broken = FakeLinearClient([make_issue("issue-1", "ACME-1")])
        broken.viewer_error = AuthenticationError("Linear", "HTTP 401", 401)
        healthy = FakeLinearClient([make_issue("issue-9", "GLX-9")])
        clients = {"acme": broken, "globex": healthy}
        engine = SyncEngine(
            config=two_source_config(sync_rules),
            database=database,
            motion_client=motion_client,
            source_factory=lambda source: clients[source.name],
        )

        report = await engine.run_full_sync()

        assert report.get("acme").succeeded is False
        assert "HTTP 401" in report.get("acme").source_error
        assert report.get("globex").tasks_created == 1
        assert report.succeeded is False
        assert broken.calls_named("get_assigned_issues") == []

        stats = await database.status.get_source_status("acme")
        assert stats.failed_syncs == 1
        assert len(stats.errors) == 1
        assert broken.closed is True
        assert healthy.closed is True

    @pytest.mark.asyncio
    async def test_storage_error_fails_run(
        self,
        sync_rules: SyncRules,
        database: SyncDatabase,
        motion_client: FakeMotionClient,
    ) -> None:
        """Test a storage failure lets siblings finish, then fails the run."""
        clients = {
            "acme": FakeLinearClient([make_issue("issue-1", "ACME-1")]),
            "globex": FakeLinearClient([make_issue("issue-9", "GLX-9")]),
        }
        engine = SyncEngine(
            config=two_source_config(sync_rules),
            database=database,
            motion_client=motion_client,
            source_factory=lambda source: clients[source.name],
        )
        create_pending = database.mappings.create_pending

        async def failing_create_pending(sync_source, issue):
            if sync_source == "acme":
                raise StorageError("disk I/O error", "insert", f"{sync_source}:{issue.id}")
            return await create_pending(sync_source, issue)

        database.mappings.create_pending = failing_create_pending

        with pytest.raises(StorageError, match="disk I/O error"):
            await engine.run_full_sync()

        assert [task.name for task in motion_client.created] == ["[GLX-9] Fix login redirect"]
        assert motion_client.completed_calls == []

        stats = await database.status.get_source_status("acme")
        assert stats.failed_syncs == 1
        assert "disk I/O error" in stats.errors[0]

    @pytest.mark.asyncio
    async def test_motion_unreachable(
        self,
        engine: SyncEngine,
        linear_client: FakeLinearClient,
        motion_client: FakeMotionClient,
    ) -> None:
        """Test the run stops before any source if Motion rejects the key."""
        motion_client.user_error = MotionApiError("HTTP 401", 401)

        with pytest.raises(ConnectivityError, match="Motion"):
            await engine.run_full_sync()

        assert linear_client.calls == []
        assert linear_client.closed is False

    @pytest.mark.asyncio
    async def test_sources_run_concurrently(
        self,
        sync_rules: SyncRules,
        database: SyncDatabase,
        motion_client: FakeMotionClient,
    ) -> None:
        """Test source passes overlap instead of running one after another."""
        state = {"active": 0, "max_active": 0}

        class SlowLinearClient(FakeLinearClient):
            async def get_assigned_issues(self, project_ids=None):
                state["active"] += 1
                state["max_active"] = max(state["max_active"], state["active"])
                await asyncio.sleep(0.01)
                state["active"] -= 1
                return await super().get_assigned_issues(project_ids)

        clients = {
            "acme": SlowLinearClient([make_issue("issue-1", "ACME-1")]),
            "globex": SlowLinearClient([make_issue("issue-1", "GLX-1")]),
        }
        engine = SyncEngine(
            config=two_source_config(sync_rules),
            database=database,
            motion_client=motion_client,
            source_factory=lambda source: clients[source.name],
        )

        report = await engine.run_full_sync()

        assert state["max_active"] == 2
        assert report.get("acme").tasks_created == 1
        assert report.get("globex").tasks_created == 1
        # Same issue ID in two sources gives two mappings
        assert len(await database.mappings.list_all()) == 2


class TestSourceOptions:
    """Test per-source options."""

    @pytest.mark.asyncio
    async def test_project_filter_is_passed(
        self,
        sync_rules: SyncRules,
        database: SyncDatabase,
        motion_client: FakeMotionClient,
    ) -> None:
        """Test unset, empty and explicit project lists reach the client unchanged."""
        config = AppConfig(
            motion_api_key="motion-key",
            sync_sources=[
                SyncSource(name="unset", linear_api_key="k"),
                SyncSource(name="empty", linear_api_key="k", projects=[]),
                SyncSource(name="some", linear_api_key="k", projects=["p1", "p2"]),
            ],
            global_sync_rules=sync_rules,
        )
        clients = {name: FakeLinearClient() for name in ("unset", "empty", "some")}
        engine = SyncEngine(
            config=config,
            database=database,
            motion_client=motion_client,
            source_factory=lambda source: clients[source.name],
        )

        await engine.run_full_sync()

        assert clients["unset"].calls_named("get_assigned_issues") == [("get_assigned_issues", None)]
        assert clients["empty"].calls_named("get_assigned_issues") == [("get_assigned_issues", [])]
        assert clients["some"].calls_named("get_assigned_issues") == [
            ("get_assigned_issues", ["p1", "p2"])
        ]

    @pytest.mark.asyncio
    async def test_source_rules_override(
        self,
        sync_rules: SyncRules,
        database: SyncDatabase,
        linear_client: FakeLinearClient,
        motion_client: FakeMotionClient,
    ) -> None:
        """Test a source's own rules decide the done label and the duration."""
        own_rules = SyncRules(default_task_duration_mins=15, completed_linear_tag="done-in-motion")
        config = AppConfig(
            motion_api_key="motion-key",
            sync_sources=[SyncSource(name="acme", linear_api_key="k", sync_rules=own_rules)],
            global_sync_rules=sync_rules,
        )
        engine = SyncEngine(
            config=config,
            database=database,
            motion_client=motion_client,
            source_factory=lambda source: linear_client,
        )
        linear_client.labels["issue-1"] = {"motioned"}

        await engine.run_full_sync()

        assert motion_client.created[0].duration == 15
        assert linear_client.calls_named("check_issue_has_label") == [
            ("check_issue_has_label", "issue-1", "done-in-motion")
        ]

    @pytest.mark.asyncio
    async def test_touches_source_stats(
        self,
        engine: SyncEngine,
        database: SyncDatabase,
        linear_client: FakeLinearClient,
    ) -> None:
        """Test a pass with nothing to do still records its time."""
        linear_client.issues = []

        await engine.run_full_sync()

        stats = await database.status.get_source_status("acme")
        assert stats is not None
        assert stats.total_issues_processed == 0

    @pytest.mark.asyncio
    async def test_default_source_factory(self, app_config: AppConfig, database: SyncDatabase) -> None:
        """Test Linear clients are built and cached per source."""
        engine = SyncEngine(config=app_config, database=database, motion_client=AsyncMock())
        source = app_config.sync_sources[0]

        client = engine.source_client(source)

        assert client is engine.source_client(source)
        assert client.api_key == "linear-key"
        await engine.close()
