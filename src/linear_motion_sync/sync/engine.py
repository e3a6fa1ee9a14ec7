"""Sync engine mirroring Linear issues into Motion tasks."""

import asyncio
import logging
from collections.abc import Callable

from linear_motion_sync.config import AppConfig, SyncRules, SyncSource
from linear_motion_sync.db import MappingStatus, SyncDatabase, TaskMapping
from linear_motion_sync.db.status import SyncStatusEntry
from linear_motion_sync.errors import (
    ConnectivityError,
    MotionApiError,
    RemoteApiError,
    StorageError,
)
from linear_motion_sync.linear import LinearClient, LinearIssue
from linear_motion_sync.motion.models import MotionTask
from linear_motion_sync.sync.adapters import SinkAdapter, SourceAdapter
from linear_motion_sync.sync.mapper import (
    MARKER_LABEL,
    TaskMapper,
    issue_needs_update,
    select_workspace,
)

logger = logging.getLogger(__name__)

SourceFactory = Callable[[SyncSource], SourceAdapter]


def linear_client_factory(source: SyncSource) -> SourceAdapter:
    """Build the Linear client of a sync source."""
    return LinearClient(api_key=source.linear_api_key)


class SyncResult:
    """Results from syncing one source."""

    def __init__(self, source_name: str) -> None:
        """Initialize sync result."""
        self.source_name = source_name
        self.tasks_created = 0
        self.tasks_updated = 0
        self.issues_skipped = 0
        self.issues_failed = 0
        self.errors: list[str] = []
        self.source_error: str | None = None

    def add_created(self) -> None:
        """Record a created task."""
        self.tasks_created += 1

    def add_updated(self) -> None:
        """Record an updated task."""
        self.tasks_updated += 1

    def add_skip(self) -> None:
        """Record a skipped issue."""
        self.issues_skipped += 1

    def add_failure(self, error: str) -> None:
        """Record a failed issue."""
        self.issues_failed += 1
        self.errors.append(error)

    def set_source_error(self, error: str) -> None:
        """Record that the whole source pass was aborted."""
        self.source_error = error

    @property
    def succeeded(self) -> bool:
        """Whether the source pass ran to the end (item failures aside)."""
        return self.source_error is None

    def __str__(self) -> str:
        """String representation of results."""
        text = (
            f"Created: {self.tasks_created}, "
            f"Updated: {self.tasks_updated}, "
            f"Skipped: {self.issues_skipped}, "
            f"Failed: {self.issues_failed}"
        )
        if self.source_error:
            text += f", Source error: {self.source_error}"
        return text


class SyncReport:
    """Results of a full sync pass."""

    def __init__(self) -> None:
        self.results: list[SyncResult] = []
        self.issues_closed = 0

    def add(self, result: SyncResult) -> None:
        self.results.append(result)

    def get(self, source_name: str) -> SyncResult | None:
        for result in self.results:
            if result.source_name == source_name:
                return result
        return None

    @property
    def failed_sources(self) -> list[SyncResult]:
        return [result for result in self.results if not result.succeeded]

    @property
    def succeeded(self) -> bool:
        return not self.failed_sources

    def __str__(self) -> str:
        created = sum(r.tasks_created for r in self.results)
        updated = sum(r.tasks_updated for r in self.results)
        skipped = sum(r.issues_skipped for r in self.results)
        failed = sum(r.issues_failed for r in self.results)
        return (
            f"Sources: {len(self.results)} ({len(self.failed_sources)} failed), "
            f"Created: {created}, Updated: {updated}, Skipped: {skipped}, "
            f"Failed: {failed}, Closed: {self.issues_closed}"
        )


class SyncEngine:
    """Main synchronization engine.

    Sources are synced concurrently, each one processing its issues in order.
    The completion sweep runs once every source pass has finished.
    """

    def __init__(
        self,
        config: AppConfig,
        database: SyncDatabase,
        motion_client: SinkAdapter,
        source_factory: SourceFactory | None = None,
    ) -> None:
        """Initialize sync engine.

        Args:
            config: Validated application configuration.
            database: Open database holding the mapping and status stores.
            motion_client: Motion client shared by every source pass.
            source_factory: Builds the Linear client of a source. Defaults to
                ``LinearClient``.
        """
        self.config = config
        self.database = database
        self.mappings = database.mappings
        self.status = database.status
        self.motion = motion_client
        self.source_factory = source_factory or linear_client_factory
        self._source_clients: dict[str, SourceAdapter] = {}

    def source_client(self, source: SyncSource) -> SourceAdapter:
        """Get the (cached) Linear client of a source."""
        client = self._source_clients.get(source.name)
        if client is None:
            client = self.source_factory(source)
            self._source_clients[source.name] = client
        return client

    async def close(self) -> None:
        """Close every Linear client opened during the run."""
        clients = list(self._source_clients.values())
        self._source_clients.clear()
        for client in clients:
            try:
                await client.aclose()
            except Exception as e:
                logger.warning(f"Failed to close Linear client: {e}")

    async def check_motion_connectivity(self) -> None:
        """Verify Motion accepts the configured API key.

        Raises:
            ConnectivityError: If Motion cannot be reached or rejects the key.
        """
        try:
            user = await self.motion.get_current_user()
        except ConnectivityError:
            raise
        except RemoteApiError as e:
            raise ConnectivityError("Motion", f"Connectivity check failed: {e}", e.status_code) from e
        logger.info(f"Connected to Motion as: {user.name or user.id}")

    async def run_full_sync(self, force_update: bool = False) -> SyncReport:
        """Run one full pass: every source, then the completion sweep.

        Args:
            force_update: Update every synced task even if its issue did not change.

        Returns:
            Per-source results and the number of issues closed by the sweep.

        Raises:
            ConnectivityError: If Motion is unreachable.
            StorageError: If a store failed during a source pass. Sibling
                passes still run to the end; the sweep is skipped.
        """
        logger.info(f"Starting full sync of {len(self.config.sync_sources)} sources")
        report = SyncReport()

        try:
            await self.check_motion_connectivity()

            sources = self.config.sync_sources
            outcomes = await asyncio.gather(
                *(self.sync_source(source, force_update) for source in sources),
                return_exceptions=True,
            )

            fatal: BaseException | None = None
            for source, outcome in zip(sources, outcomes):
                if isinstance(outcome, SyncResult):
                    report.add(outcome)
                    continue
                logger.error(f"Sync source '{source.name}' aborted: {outcome}")
                result = SyncResult(source.name)
                result.set_source_error(str(outcome))
                report.add(result)
                fatal = fatal or outcome
                try:
                    await self.status.update_source_stats(
                        source.name, False, f"Sync source '{source.name}' aborted: {outcome}"
                    )
                except StorageError as e:
                    logger.error(f"Failed to record abort of sync source '{source.name}': {e}")

            if fatal is not None:
                raise fatal

            report.issues_closed = await self.sync_completed_tasks()
            await self.database.flush()
        finally:
            await self.close()

        logger.info(f"Full sync complete: {report}")
        return report

    async def sync_source(self, source: SyncSource, force_update: bool = False) -> SyncResult:
        """Sync the assigned issues of one source.

        Remote failures on an issue are recorded and the pass goes on. Failing
        to reach Linear aborts this source only.

        Args:
            source: Sync source configuration.
            force_update: Update tasks even if their issue did not change.

        Returns:
            Source results.

        Raises:
            StorageError: If a store operation failed.
        """
        result = SyncResult(source.name)
        rules = source.effective_sync_rules(self.config.global_sync_rules)
        mapper = TaskMapper(rules, source.name)
        client = self.source_client(source)

        try:
            viewer = await client.get_viewer()
            logger.info(f"Sync source '{source.name}' connected as {viewer.name}")

            if source.projects is None:
                logger.info(f"Sync source '{source.name}': no project filter, fetching all assigned issues")
            elif not source.projects:
                logger.info(f"Sync source '{source.name}': empty project list, fetching all assigned issues")
            else:
                logger.info(f"Sync source '{source.name}': restricted to {len(source.projects)} projects")

            issues = await client.get_assigned_issues(source.projects)
        except StorageError:
            raise
        except Exception as e:
            error = f"Sync source '{source.name}' failed: {e}"
            logger.error(error)
            result.set_source_error(str(e))
            await self.status.update_source_stats(source.name, False, error)
            return result

        logger.info(f"Sync source '{source.name}': {len(issues)} assigned issues")

        for issue in issues:
            try:
                await self._sync_issue(source.name, client, mapper, rules, issue, force_update, result)
            except StorageError:
                raise
            except Exception as e:
                error = f"Failed to sync issue {issue.identifier}: {e}"
                logger.error(error)
                result.add_failure(error)
                await self.status.update_source_stats(source.name, False, error)

        await self.status.touch_source(source.name)
        logger.info(f"Sync source '{source.name}' complete: {result}")
        return result

    async def _sync_issue(
        self,
        source_name: str,
        client: SourceAdapter,
        mapper: TaskMapper,
        rules: SyncRules,
        issue: LinearIssue,
        force_update: bool,
        result: SyncResult,
    ) -> None:
        """Decide between create, update and skip for one issue and carry it out."""
        try:
            is_done = await client.check_issue_has_label(issue.id, rules.completed_linear_tag)
        except RemoteApiError as e:
            error = f"Label check failed for {issue.identifier}: {e}"
            logger.error(error)
            result.add_failure(error)
            await self.status.update_source_stats(source_name, False, error)
            return

        if is_done:
            logger.debug(f"Skipping {issue.identifier}: labeled '{rules.completed_linear_tag}'")
            result.add_skip()
            return

        mapping = await self.mappings.get_by_item(source_name, issue.id)
        if mapping is None:
            mapping = await self.mappings.create_pending(source_name, issue)
        elif mapping.status == MappingStatus.SYNCED:
            if not force_update and not issue_needs_update(mapping.issue_snapshot(), issue):
                logger.debug(f"Skipping {issue.identifier}: unchanged")
                result.add_skip()
                return

        entry = await self.status.create_entry(source_name, issue.id)

        task_id = mapping.motion_task_id
        if task_id:
            await self._update_task(source_name, mapper, issue, mapping, task_id, entry, result)
        else:
            await self._create_task(source_name, mapper, issue, mapping, entry, result)

    async def _create_task(
        self,
        source_name: str,
        mapper: TaskMapper,
        issue: LinearIssue,
        mapping: TaskMapping,
        entry: SyncStatusEntry,
        result: SyncResult,
    ) -> None:
        try:
            workspace = select_workspace(await self.motion.list_workspaces())
            task = await self.motion.create_task(mapper.build_create(issue, workspace))
            if not task.id:
                raise MotionApiError("Created task has no ID")
        except Exception as e:
            error = f"Failed to create Motion task for {issue.identifier}: {e}"
            logger.error(error)
            await self.mappings.mark_failed(source_name, issue.id, str(e))
            await self.status.mark_failed(entry.id, str(e))
            await self.status.update_source_stats(source_name, False, error)
            result.add_failure(error)
            return

        if mapping.linear_issue_data != issue.snapshot():
            await self.mappings.update_item_snapshot(source_name, issue.id, issue)
        await self.mappings.mark_synced(source_name, issue.id, task.id)
        await self.status.mark_completed(entry.id, task.id)
        await self.status.update_source_stats(source_name, True)
        result.add_created()
        logger.info(f"Created Motion task {task.id} for {issue.identifier}")

    async def _update_task(
        self,
        source_name: str,
        mapper: TaskMapper,
        issue: LinearIssue,
        mapping: TaskMapping,
        task_id: str,
        entry: SyncStatusEntry,
        result: SyncResult,
    ) -> None:
        try:
            await self.motion.update_task(task_id, mapper.build_update(issue))
        except Exception as e:
            # The mapping keeps its last known-good state
            error = f"Failed to update Motion task {task_id} for {issue.identifier}: {e}"
            logger.error(error)
            await self.status.mark_failed(entry.id, str(e))
            await self.status.update_source_stats(source_name, False, error)
            result.add_failure(error)
            return

        await self.mappings.update_item_snapshot(source_name, issue.id, issue)
        if mapping.status != MappingStatus.SYNCED:
            await self.mappings.mark_synced(source_name, issue.id, task_id)
        await self.status.mark_completed(entry.id, task_id)
        await self.status.update_source_stats(source_name, True)
        result.add_updated()
        logger.info(f"Updated Motion task {task_id} for {issue.identifier}")

    async def sync_completed_tasks(self) -> int:
        """Tag the Linear issues of completed Motion tasks and drop their mappings.

        Every failure is logged; none of them fails the pass.

        Returns:
            Number of issues tagged as done.
        """
        logger.info("Checking Motion for completed tasks")
        closed = 0

        try:
            workspaces = await self.motion.list_workspaces()
        except Exception as e:
            logger.error(f"Completion sweep failed to list workspaces: {e}")
            return closed

        for workspace in workspaces:
            try:
                tasks = await self.motion.list_completed_tasks(workspace.id)
            except Exception as e:
                logger.error(f"Failed to list completed tasks in workspace {workspace.name}: {e}")
                continue

            for task in tasks:
                try:
                    if await self._close_issue(task):
                        closed += 1
                except Exception as e:
                    logger.error(f"Failed to reconcile completed task {task.id}: {e}")

        logger.info(f"Completion sweep tagged {closed} issues")
        return closed

    async def _close_issue(self, task: MotionTask) -> bool:
        if not task.id or not task.has_label(MARKER_LABEL):
            return False

        mapping = await self.mappings.get_by_sink_task(task.id)
        if mapping is None:
            logger.debug(f"No mapping for completed task {task.id}")
            return False

        source = self.config.find_source(mapping.sync_source)
        if source is None:
            logger.warning(
                f"Sync source '{mapping.sync_source}' of task {task.id} is no longer configured"
            )
            return False

        label = source.effective_sync_rules(self.config.global_sync_rules).completed_linear_tag
        client = self.source_client(source)

        if await client.check_issue_has_label(mapping.linear_issue_id, label):
            logger.debug(f"Issue {mapping.linear_issue_id} already labeled '{label}'")
            return False

        await client.add_label_to_issue(mapping.linear_issue_id, label)
        await self.mappings.remove(mapping.sync_source, mapping.linear_issue_id)
        logger.info(
            f"Tagged issue {mapping.linear_issue_id} with '{label}' "
            f"after task {task.id} was completed"
        )
        return True
