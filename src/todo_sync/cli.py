"""Command-line interface for the offline-first task client."""

import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import load_config
from .errors import SyncError, TaskNotFoundError
from .session import SyncContext
from .state import FILTERS, SORT_FIELDS, SORT_ORDERS, ActionType
from .sync_models import SyncResult, SyncStatus
from .task import Task
from .utils.validation import (
    CATEGORY_VALUES,
    FREQUENCY_VALUES,
    PRIORITY_VALUES,
    TaskValidationError,
)


console = Console()


def setup_logging(level: str):
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def format_task_for_display(task: Task) -> str:
    """Format a task as a single rich markup line."""
    priority_colors = {"high": "red", "medium": "white", "low": "dim"}
    color = priority_colors[task.priority.value]
    status_icon = "✅" if task.completed else "⏳"

    parts = [f"{status_icon} [{color}]{task.title}[/{color}]"]
    if task.tags:
        parts.append(f"[cyan]{' '.join('#' + tag for tag in task.tags)}[/cyan]")
    if task.due_date:
        due_color = "red" if task.is_overdue() else "blue"
        parts.append(f"[{due_color}]!{task.due_date.strftime('%Y-%m-%d')}[/{due_color}]")
    if task.is_unconfirmed:
        parts.append("[yellow](not synced)[/yellow]")
    return " ".join(parts)


def parse_due(value):
    if value is None:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise click.BadParameter("Invalid due date format. Use YYYY-MM-DD", param_hint="--due")


def run_session(ctx: click.Context, action):
    """Open a session, run ``action(session)`` and close the session again.

    Connectivity is probed once up front unless ``--offline`` was given.
    Returns whatever the action returns.
    """
    obj = ctx.obj

    async def runner():
        session = SyncContext.open(
            obj["config"],
            gateway=obj.get("gateway"),
            backend=obj.get("backend"),
            initially_online=not obj["offline"],
            push_on_write=False,
        )
        async with session:
            if not obj["offline"]:
                await session.monitor.check()
            return await action(session)

    try:
        return asyncio.run(runner())
    except TaskNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    except TaskValidationError as e:
        console.print(f"[red]Invalid task: {e}[/red]")
        sys.exit(1)
    except SyncError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


async def push_changes(session: SyncContext):
    """Try to send queued changes right away; stay quiet when offline."""
    if not session.synchronizer.is_online:
        console.print("[yellow]Offline: change saved locally and queued for sync[/yellow]")
        return None
    result = await session.synchronizer.sync(force=True)
    if result.status == SyncStatus.PARTIAL:
        console.print("[yellow]Some changes could not be synced yet, they stay queued[/yellow]")
    return result


def print_sync_result(result: SyncResult):
    colors = {
        SyncStatus.SUCCESS: "green",
        SyncStatus.NO_CHANGES: "green",
        SyncStatus.PARTIAL: "yellow",
        SyncStatus.SKIPPED: "yellow",
        SyncStatus.OFFLINE: "yellow",
        SyncStatus.ERROR: "red",
    }
    color = colors[result.status]
    console.print(f"[{color}]Sync {result.status.value}[/{color}] in {result.duration_seconds:.2f}s")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Created", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Deleted", justify="right")
    table.add_column("Cancelled", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Abandoned", justify="right")
    table.add_column("Pulled", justify="right")
    table.add_row(
        str(result.created), str(result.updated), str(result.deleted),
        str(result.cancelled), str(result.failed), str(result.abandoned),
        str(result.inserted + result.overwritten),
    )
    console.print(table)

    for error in result.errors:
        console.print(f"[red]  {error}[/red]")


@click.group()
@click.option("--config", type=click.Path(), help="Path to config file")
@click.option("--offline", is_flag=True, help="Work from the local store without contacting the server")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def main(ctx, config, offline, verbose):
    """todo-sync - offline-first task list client."""
    ctx.ensure_object(dict)

    try:
        app_config = load_config(Path(config) if config else None)
    except ValidationError as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        sys.exit(1)

    setup_logging("DEBUG" if verbose else app_config.log_level)
    ctx.obj["config"] = app_config
    ctx.obj["offline"] = offline
    ctx.obj["verbose"] = verbose


@main.command()
@click.argument("title")
@click.option("--description", "-d", help="Task description")
@click.option("--priority", "-p", type=click.Choice(PRIORITY_VALUES), default="medium", help="Task priority")
@click.option("--category", "-c", type=click.Choice(CATEGORY_VALUES), default="short-term", help="Task category")
@click.option("--frequency", "-f", type=click.Choice(FREQUENCY_VALUES), default="once", help="Repeat frequency")
@click.option("--due", help="Due date (YYYY-MM-DD)")
@click.option("--tag", "-t", "tags", multiple=True, help="Tags (can be used multiple times)")
@click.pass_context
def add(ctx, title, description, priority, category, frequency, due, tags):
    """Add a new task."""
    data = {
        "title": title,
        "priority": priority,
        "category": category,
        "frequency": frequency,
        "tags": list(tags),
    }
    if description:
        data["description"] = description
    due_date = parse_due(due)
    if due_date:
        data["dueDate"] = due_date

    async def action(session: SyncContext):
        confirmed = {}

        def track(state, action):
            if action.type == ActionType.REPLACE_TASK_ID:
                old_id, replacement = action.payload
                confirmed[old_id] = replacement

        session.state.subscribe(track)
        task = await session.synchronizer.create_task(data)
        await push_changes(session)
        return confirmed.get(task.id, task)

    task = run_session(ctx, action)
    console.print(f"[green]Added task[/green] [dim]{task.id}[/dim]: {format_task_for_display(task)}")


@main.command(name="list")
@click.option("--filter", "filter_", type=click.Choice(FILTERS), default="all", help="Status or frequency filter")
@click.option("--sort", "sort_by", type=click.Choice(SORT_FIELDS), default="createdAt", help="Sort field")
@click.option("--order", type=click.Choice(SORT_ORDERS), default="desc", help="Sort order")
@click.option("--search", "-s", default="", help="Search title and description")
@click.option("--category", "-c", type=click.Choice(("all",) + CATEGORY_VALUES), default="all",
              help="Category filter")
@click.pass_context
def list_tasks(ctx, filter_, sort_by, order, search, category):
    """List tasks."""

    async def action(session: SyncContext):
        await session.synchronizer.load_tasks()
        session.state.set_filter(filter_)
        session.state.set_sort(sort_by, order)
        session.state.set_search(search)
        session.state.set_category(category)
        return session.state.visible

    tasks = run_session(ctx, action)
    if not tasks:
        console.print("[dim]No tasks found[/dim]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("Task")
    table.add_column("Category")
    table.add_column("Frequency")
    for task in tasks:
        table.add_row(task.id, format_task_for_display(task), task.category.value, task.frequency.value)
    console.print(table)


@main.command()
@click.argument("task_id")
@click.pass_context
def done(ctx, task_id):
    """Toggle the completion of a task."""

    async def action(session: SyncContext):
        task = await session.synchronizer.toggle_complete(task_id)
        await push_changes(session)
        return task

    task = run_session(ctx, action)
    state = "completed" if task.completed else "reopened"
    console.print(f"[green]Task {state}:[/green] {format_task_for_display(task)}")


@main.command()
@click.argument("task_id")
@click.option("--title", help="New title")
@click.option("--description", "-d", help="New description")
@click.option("--priority", "-p", type=click.Choice(PRIORITY_VALUES), help="New priority")
@click.option("--category", "-c", type=click.Choice(CATEGORY_VALUES), help="New category")
@click.option("--frequency", "-f", type=click.Choice(FREQUENCY_VALUES), help="New frequency")
@click.option("--due", help="New due date (YYYY-MM-DD)")
@click.option("--tag", "-t", "tags", multiple=True, help="Replace tags (can be used multiple times)")
@click.pass_context
def edit(ctx, task_id, title, description, priority, category, frequency, due, tags):
    """Edit a task."""
    updates = {
        key: value for key, value in {
            "title": title,
            "description": description,
            "priority": priority,
            "category": category,
            "frequency": frequency,
            "dueDate": parse_due(due),
        }.items() if value is not None
    }
    if tags:
        updates["tags"] = list(tags)

    if not updates:
        console.print("[yellow]Nothing to change[/yellow]")
        return

    async def action(session: SyncContext):
        task = await session.synchronizer.update_task(task_id, updates)
        await push_changes(session)
        return task

    task = run_session(ctx, action)
    console.print(f"[green]Updated:[/green] {format_task_for_display(task)}")


@main.command()
@click.argument("task_id")
@click.pass_context
def rm(ctx, task_id):
    """Delete a task."""

    async def action(session: SyncContext):
        await session.synchronizer.delete_task(task_id)
        await push_changes(session)

    run_session(ctx, action)
    console.print(f"[green]Deleted task[/green] [dim]{task_id}[/dim]")


@main.command()
@click.pass_context
def sync(ctx):
    """Push queued changes and pull the server's tasks now."""

    async def action(session: SyncContext):
        return await session.synchronizer.sync(force=True)

    result = run_session(ctx, action)
    print_sync_result(result)
    if result.status == SyncStatus.ERROR:
        sys.exit(1)


@main.command()
@click.pass_context
def status(ctx):
    """Show connectivity, pending changes and the last sync."""

    async def action(session: SyncContext):
        return await session.synchronizer.get_status()

    report = run_session(ctx, action)

    table = Table(title="Sync Status", show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("Connection", "[green]online[/green]" if report.is_online else "[yellow]offline[/yellow]")
    table.add_row("State", report.state.value)
    table.add_row("Pending changes", str(report.pending_operations))
    table.add_row("Last sync", report.last_sync.strftime("%Y-%m-%d %H:%M:%S UTC") if report.last_sync else "never")
    table.add_row("Storage", "durable" if report.storage_durable else "[red]memory only[/red]")
    if report.consecutive_failures:
        table.add_row("Failed passes", str(report.consecutive_failures))
    console.print(table)

    if report.storage_warning:
        console.print(f"[yellow]Storage warning: {report.storage_warning}[/yellow]")


@main.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def clear(ctx, yes):
    """Forget all local tasks and queued changes."""
    if not yes:
        click.confirm("Discard local tasks and every change not yet synced?", abort=True)

    async def action(session: SyncContext):
        pending = await session.queue.pending_count()
        await session.synchronizer.clear_offline_data()
        return pending

    pending = run_session(ctx, action)
    console.print(f"[green]Cleared offline data[/green] ({pending} queued changes discarded)")


@main.command()
@click.option("--duration", type=float, default=None, help="Stop after this many seconds")
@click.pass_context
def watch(ctx, duration):
    """Keep syncing in the background until interrupted."""

    async def action(session: SyncContext):
        session.start()

        def show(state, action):
            console.print(f"[dim]{action.type.value}[/dim] {len(state.tasks)} tasks")

        unsubscribe = session.state.subscribe(show)
        try:
            await session.synchronizer.load_tasks()
            if duration is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration)
        finally:
            unsubscribe()
        return await session.synchronizer.get_status()

    console.print("[cyan]Watching for changes, press Ctrl+C to stop[/cyan]")
    try:
        report = run_session(ctx, action)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")
        return
    console.print(f"Stopped with {report.pending_operations} pending changes")


if __name__ == "__main__":
    main()
