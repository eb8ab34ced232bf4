"""Command-line interface for brewsync."""

import asyncio
import logging
from typing import Annotated, Literal, Optional

import cyclopts
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.text import Text

from brewsync.config import Settings
from brewsync.data import KeyValueDataProvider
from brewsync.storage import JsonFileKeyValueStore, S3ObjectStore
from brewsync.sync import (
    ConflictStrategy,
    RetryPolicy,
    SyncDirection,
    SyncOptions,
    SyncOrchestrator,
    SyncPlan,
    SyncPlanner,
    SyncProgress,
    SyncResult,
)

StrategyName = Literal["newer", "larger", "local", "remote", "both", "manual"]

app = cyclopts.App(
    name="brewsync", help="Sync local data with an S3-compatible object store"
)


def _get_console() -> Console:
    """Get a Rich console for output."""
    return Console()


def _build_orchestrator(settings: Settings) -> SyncOrchestrator:
    kv = JsonFileKeyValueStore(settings.store_path)
    return SyncOrchestrator(
        object_store=S3ObjectStore(settings),
        kv=kv,
        data_provider=KeyValueDataProvider(kv),
        retry_policy=RetryPolicy.from_settings(settings),
        planner=SyncPlanner(strict_first_sync=settings.strict_first_sync),
    )


def _plan_table(plan: SyncPlan) -> Table:
    table = Table(title="Sync Plan")
    table.add_column("Action", style="cyan", no_wrap=True)
    table.add_column("File", style="white")
    table.add_column("Size", justify="right")

    rows = [
        ("upload", plan.upload),
        ("download", plan.download),
        ("delete local", plan.delete_local),
        ("delete remote", plan.delete_remote),
    ]
    for action, files in rows:
        for meta in files:
            table.add_row(action, meta.key, str(meta.size))

    for conflict in plan.conflicts:
        hint = (
            f" (suggest {conflict.suggested_direction.value})"
            if conflict.suggested_direction
            else ""
        )
        table.add_row("[yellow]conflict[/yellow]", f"{conflict.key}{hint}", "")

    return table


def _print_result(console: Console, result: SyncResult) -> None:
    if result.success:
        border = "green"
        header = ("✓ ", "green bold")
    elif result.conflict:
        border = "yellow"
        header = ("! ", "yellow bold")
    else:
        border = "red"
        header = ("✗ ", "red bold")

    console.print(
        Panel(
            Text.assemble(
                header,
                (f"{result.message}\n\n", border),
                ("Uploaded: ", "cyan"),
                (str(result.uploaded_files), "white"),
                ("\n"),
                ("Downloaded: ", "cyan"),
                (str(result.downloaded_files), "white"),
                ("\n"),
                ("Deleted: ", "cyan"),
                (str(result.deleted_files), "white"),
                ("\n"),
                ("Duration: ", "cyan"),
                (f"{result.duration:.2f}s", "white"),
            ),
            title="Sync Results",
            border_style=border,
        )
    )

    if result.plan is not None and result.plan.conflicts:
        console.print(_plan_table(result.plan))

    for warning in result.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")

    if result.errors:
        console.print("\n[red]Errors:[/red]")
        for error in result.errors[:5]:
            console.print(f"  • {error}")
        if len(result.errors) > 5:
            console.print(f"  ... and {len(result.errors) - 5} more")


async def _initialize(
    orchestrator: SyncOrchestrator, console: Console, test_connection: bool = True
) -> bool:
    if await orchestrator.initialize(skip_connection_test=not test_connection):
        return True
    console.print(
        "[red]Error: cannot reach the object store. Check your S3 settings.[/red]"
    )
    return False


@app.command(name="test-connection")
def test_connection():
    """Test the connection to the configured bucket.

    Example:
        brewsync test-connection
    """
    console = _get_console()
    settings = Settings()
    orchestrator = _build_orchestrator(settings)

    with console.status("[cyan]Testing connection...[/cyan]"):
        connected = asyncio.run(orchestrator.object_store.test_connection())

    location = f"s3://{settings.s3_bucket}/{settings.s3_prefix}"
    if connected:
        console.print(
            Panel(
                Text.assemble(
                    ("✓ ", "green bold"),
                    ("Connection successful\n\n", "green"),
                    ("Bucket: ", "cyan"),
                    (location, "white"),
                ),
                title="Connection Test",
                border_style="green",
            )
        )
    else:
        console.print(
            Panel(
                Text.assemble(
                    ("✗ ", "red bold"),
                    ("Connection failed\n\n", "red"),
                    ("Bucket: ", "cyan"),
                    (location, "white"),
                ),
                title="Connection Test",
                border_style="red",
            )
        )


@app.command
def status():
    """Show the last sync time and whether a sync is needed.

    Example:
        brewsync status
    """
    console = _get_console()
    orchestrator = _build_orchestrator(Settings())

    async def run():
        if not await _initialize(orchestrator, console):
            return None
        return await orchestrator.get_status()

    sync_status = asyncio.run(run())
    if sync_status is None:
        return

    table = Table(title="Sync Status", show_header=False, box=None)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")

    table.add_row("Device", orchestrator.device_id or "")
    if sync_status.last_sync_time:
        table.add_row(
            "Last Sync", sync_status.last_sync_time.strftime("%Y-%m-%d %H:%M:%S UTC")
        )
    else:
        table.add_row("Last Sync", "Never")
    table.add_row("In Progress", "Yes" if sync_status.in_progress else "No")
    table.add_row(
        "Needs Sync",
        "[yellow]Yes[/yellow]" if sync_status.needs_sync else "[green]No[/green]",
    )
    console.print(table)


@app.command
def plan(
    *,
    strategy: Annotated[
        Optional[StrategyName],
        cyclopts.Parameter(help="Conflict resolution strategy"),
    ] = None,
):
    """Show what a sync would do without changing anything.

    Example:
        brewsync plan
        brewsync plan --strategy newer
    """
    console = _get_console()
    settings = Settings()
    orchestrator = _build_orchestrator(settings)
    options = SyncOptions(
        conflict_strategy=(
            ConflictStrategy(strategy) if strategy else settings.conflict_strategy
        ),
        dry_run=True,
        max_delete_percent=settings.max_delete_percent,
        max_delete_count=settings.max_delete_count,
    )

    async def run():
        if not await _initialize(orchestrator, console):
            return None
        return await orchestrator.sync(options)

    result = asyncio.run(run())
    if result is None:
        return

    if result.plan is None:
        console.print(f"[red]{result.message}[/red]")
        return

    console.print(
        f"[cyan]{orchestrator.planner.generate_plan_summary(result.plan)}[/cyan]\n"
    )
    if not result.plan.is_empty:
        console.print(_plan_table(result.plan))
    for warning in result.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")


@app.command
def sync(
    *,
    direction: Annotated[
        Optional[Literal["upload", "download"]],
        cyclopts.Parameter(help="Force a full push or pull, skipping the merge"),
    ] = None,
    strategy: Annotated[
        Optional[StrategyName],
        cyclopts.Parameter(help="Conflict resolution strategy"),
    ] = None,
    dry_run: Annotated[
        bool, cyclopts.Parameter(help="Show plan without executing")
    ] = False,
):
    """Synchronize local data with the object store.

    Example:
        brewsync sync
        brewsync sync --strategy newer
        brewsync sync --direction upload
    """
    console = _get_console()
    settings = Settings()
    orchestrator = _build_orchestrator(settings)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        TextColumn("({task.completed}/{task.total})"),
        console=console,
        transient=True,
    ) as progress_bar:
        task_id = progress_bar.add_task("[cyan]Syncing files...", total=None)

        def on_progress(update: SyncProgress) -> None:
            progress_bar.update(
                task_id,
                description=f"[cyan]{update.message}",
                completed=update.completed,
                total=update.total or None,
            )

        options = SyncOptions(
            direction=SyncDirection(direction) if direction else None,
            conflict_strategy=(
                ConflictStrategy(strategy) if strategy else settings.conflict_strategy
            ),
            dry_run=dry_run,
            max_delete_percent=settings.max_delete_percent,
            max_delete_count=settings.max_delete_count,
            max_concurrency=settings.max_concurrency,
            on_progress=on_progress,
        )

        async def run():
            if not await _initialize(orchestrator, console):
                return None
            return await orchestrator.sync(options)

        result = asyncio.run(run())

    if result is None:
        return
    _print_result(console, result)


@app.command
def backups(
    file_key: Annotated[
        Optional[str], cyclopts.Parameter(help="Only list backups of this file")
    ] = None,
):
    """List remote backups, oldest first.

    Example:
        brewsync backups
    """
    console = _get_console()
    orchestrator = _build_orchestrator(Settings())

    async def run():
        if not await _initialize(orchestrator, console):
            return None
        return await orchestrator.list_backups(file_key)

    records = asyncio.run(run())
    if records is None:
        return
    if not records:
        console.print("[yellow]No backups found[/yellow]")
        return

    table = Table(title="Backups")
    table.add_column("Backup", style="cyan")
    table.add_column("File", style="white")
    table.add_column("Size", justify="right")
    for record in records:
        table.add_row(record.key, record.file_key, str(record.size))
    console.print(table)


@app.command
def restore(
    backup_key: Annotated[str, cyclopts.Parameter(help="Backup object key")],
):
    """Restore one local file from a remote backup.

    Example:
        brewsync restore backups/backup-2025-01-31T09-30-00-000Z-notes.json
    """
    console = _get_console()
    orchestrator = _build_orchestrator(Settings())

    async def run():
        if not await _initialize(orchestrator, console):
            return False
        return await orchestrator.restore_backup(backup_key)

    if asyncio.run(run()):
        console.print(f"[green]✓ Restored from {backup_key}[/green]")
    else:
        console.print(f"[red]Failed to restore {backup_key}[/red]")


def main():
    load_dotenv()
    settings = Settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    app()


if __name__ == "__main__":
    main()
