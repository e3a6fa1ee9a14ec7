"""Command-line interface for the Linear/Motion synchronizer."""

import asyncio
import logging
import sys
from collections import Counter
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from linear_motion_sync import __version__
from linear_motion_sync.config import AppConfig, load_config, read_database_path, write_template
from linear_motion_sync.db import SyncDatabase
from linear_motion_sync.errors import ConfigError, SyncError
from linear_motion_sync.motion import MotionClient
from linear_motion_sync.sync import SyncEngine, SyncReport
from linear_motion_sync.utils import StorageManager, get_logger, setup_logging

app = typer.Typer(help="Mirror Linear issues into Motion tasks")
console = Console()
logger = get_logger(__name__)


def _open_database(storage: StorageManager, config: AppConfig | None = None) -> SyncDatabase:
    """Open the database named by the configuration, or the default one."""
    if config is not None:
        database_path = config.database_path
    else:
        database_path = read_database_path(storage)
    return SyncDatabase(storage.resolve_database_path(database_path))


async def _run_sync(config: AppConfig, database: SyncDatabase, force_update: bool) -> SyncReport:
    async with MotionClient(api_key=config.motion_api_key) as motion_client:
        engine = SyncEngine(config=config, database=database, motion_client=motion_client)
        return await engine.run_full_sync(force_update=force_update)


def _print_report(report: SyncReport) -> None:
    table = Table(title="Sync Results")
    table.add_column("Source", style="cyan")
    table.add_column("Created", style="magenta")
    table.add_column("Updated", style="magenta")
    table.add_column("Skipped", style="magenta")
    table.add_column("Failed", style="magenta")
    table.add_column("Status")

    for result in report.results:
        status = "[green]OK[/green]" if result.succeeded else "[red]FAILED[/red]"
        table.add_row(
            result.source_name,
            str(result.tasks_created),
            str(result.tasks_updated),
            str(result.issues_skipped),
            str(result.issues_failed),
            status,
        )

    console.print(table)
    console.print(f"Issues closed from completed Motion tasks: {report.issues_closed}")

    for result in report.results:
        if result.source_error:
            console.print(f"\n[red]{result.source_name}: {result.source_error}[/red]")
        if result.errors:
            console.print(f"\n[red]Errors in {result.source_name}:[/red]")
            for error in result.errors:
                console.print(f"  - {error}")


@app.command()
def init(
    config_dir: Optional[Path] = typer.Option(
        None,
        "--config-dir",
        help="Configuration directory. Defaults to ~/.linear-motion-sync/",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Overwrite an existing configuration file.",
    ),
) -> None:
    """Write a template configuration file."""
    storage = StorageManager(config_dir)

    try:
        path = write_template(storage, force=force)
    except ConfigError as e:
        console.print(f"[yellow]{e}[/yellow]")
        raise typer.Exit(code=1)

    console.print(f"[green]Configuration template written to {path}[/green]")
    console.print("Edit it to add your Motion and Linear API keys, then run:")
    console.print("  linear-motion-sync sync")


@app.command()
def sync(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        help="Configuration file. Defaults to <config-dir>/config.yaml",
    ),
    config_dir: Optional[Path] = typer.Option(
        None,
        "--config-dir",
        help="Configuration directory. Defaults to ~/.linear-motion-sync/",
    ),
    force_update: bool = typer.Option(
        False,
        "--force-update",
        help="Update every synced task even if its issue did not change.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging.",
    ),
) -> None:
    """Run one sync pass over every configured source."""
    storage = StorageManager(config_dir, config_file)
    setup_logging(
        log_level=logging.DEBUG if verbose else logging.INFO,
        config_dir=storage.config_dir,
    )

    logger.info(f"Linear Motion Sync v{__version__}")

    try:
        config = load_config(storage)
        database = _open_database(storage, config)
        console.print(f"Syncing {len(config.sync_sources)} sources...")
        report = asyncio.run(_run_sync(config, database, force_update))
    except ConfigError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(code=1)
    except SyncError as e:
        logger.error(f"Sync failed: {e}", exc_info=True)
        console.print(f"[red]Sync failed: {e}[/red]")
        raise typer.Exit(code=1)

    _print_report(report)
    raise typer.Exit(code=0 if report.succeeded else 1)


@app.command(name="list")
def list_mappings(
    source: Optional[str] = typer.Option(
        None,
        "--source",
        help="Only show mappings of this sync source.",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        help="Configuration file. Defaults to <config-dir>/config.yaml",
    ),
    config_dir: Optional[Path] = typer.Option(
        None,
        "--config-dir",
        help="Configuration directory. Defaults to ~/.linear-motion-sync/",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show error details.",
    ),
) -> None:
    """Show issue/task mappings and sync statistics."""
    storage = StorageManager(config_dir, config_file)
    setup_logging(
        log_level=logging.DEBUG if verbose else logging.WARNING,
        config_dir=storage.config_dir,
    )

    try:
        database = _open_database(storage)
        mappings, entries, stats = asyncio.run(_load_listing(database, source))
    except SyncError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)

    if not mappings:
        console.print("[yellow]No mappings recorded yet.[/yellow]")
    else:
        table = Table(title="Issue/Task Mappings")
        table.add_column("Source", style="cyan")
        table.add_column("Linear Issue", style="cyan")
        table.add_column("Motion Task", style="magenta")
        table.add_column("Status", style="yellow")
        table.add_column("Updated")
        if verbose:
            table.add_column("Error", style="red")

        for mapping in mappings:
            snapshot = mapping.issue_snapshot()
            row = [
                mapping.sync_source,
                snapshot.identifier if snapshot else mapping.linear_issue_id,
                mapping.motion_task_id or "-",
                mapping.status.value,
                mapping.updated_at.strftime("%Y-%m-%d %H:%M"),
            ]
            if verbose:
                row.append(mapping.sync_error or "")
            table.add_row(*row)

        console.print(table)

    counts = Counter(entry.status.value for entry in entries)
    if counts:
        summary = ", ".join(f"{status}: {count}" for status, count in sorted(counts.items()))
        console.print(f"\nSync attempts: {summary}")

    if stats:
        stats_table = Table(title="Source Statistics")
        stats_table.add_column("Source", style="cyan")
        stats_table.add_column("Last Sync")
        stats_table.add_column("Processed", style="magenta")
        stats_table.add_column("Succeeded", style="green")
        stats_table.add_column("Failed", style="red")
        for stat in stats:
            stats_table.add_row(
                stat.source_name,
                stat.last_sync.strftime("%Y-%m-%d %H:%M"),
                str(stat.total_issues_processed),
                str(stat.successful_syncs),
                str(stat.failed_syncs),
            )
        console.print(stats_table)

        if verbose:
            for stat in stats:
                if stat.errors:
                    console.print(f"\n[red]Recent errors in {stat.source_name}:[/red]")
                    for error in stat.errors:
                        console.print(f"  - {error}")


async def _load_listing(database: SyncDatabase, source: str | None) -> tuple:
    if source:
        mappings = await database.mappings.list_by_source(source)
        entries = await database.status.list_by_source(source)
        stat = await database.status.get_source_status(source)
        stats = [stat] if stat else []
    else:
        mappings = await database.mappings.list_all()
        entries = await database.status.list_entries()
        stats = await database.status.list_source_stats()
    return mappings, entries, stats


@app.command()
def cleanup(
    days: int = typer.Option(
        30,
        "--days",
        min=0,
        help="Delete completed sync attempts older than this many days.",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        help="Configuration file. Defaults to <config-dir>/config.yaml",
    ),
    config_dir: Optional[Path] = typer.Option(
        None,
        "--config-dir",
        help="Configuration directory. Defaults to ~/.linear-motion-sync/",
    ),
) -> None:
    """Delete old completed sync attempts."""
    storage = StorageManager(config_dir, config_file)
    setup_logging(config_dir=storage.config_dir)

    async def run() -> int:
        database = _open_database(storage)
        deleted = await database.status.cleanup_old_entries(days)
        await database.flush()
        return deleted

    try:
        deleted = asyncio.run(run())
    except SyncError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[green]Deleted {deleted} sync attempts older than {days} days[/green]")


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"Linear Motion Sync v{__version__}")


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        console.print(f"[red]Unexpected error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
