"""Command-line interface for Goalpost."""
from __future__ import annotations

import os
import subprocess
import sys
import time
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence
from urllib import error as urllib_error, parse as urllib_parse, request as urllib_request

import typer
from rich import print as rprint
from rich.table import Table
from rich.tree import Tree

from . import migration, models, reorder, repository as repo_ops, state
from .config import DEFAULT_SERVER_PORT, Settings, load_settings
from .errors import GoalpostError, NotFoundError
from .log import setup_logging
from .models import Milestone, Task
from .repository import MilestoneRepository
from .summary import SummaryService
from .sync import SYNCED, RemoteClient, SyncService

app = typer.Typer(help="Track time-boxed milestones, their tasks and journal notes")
milestone_app = typer.Typer(help="Create, update, and list milestones")
task_app = typer.Typer(help="Manage tasks inside a milestone")
subtask_app = typer.Typer(help="Manage subtasks of a task")
note_app = typer.Typer(help="Journal notes on tasks or milestones")
view_app = typer.Typer(help="Remembered UI location")
sync_app = typer.Typer(help="Remote synchronization")
service_app = typer.Typer(help="Background sync server utilities")

SERVER_MODULE_PATH = "goalpost.server"
SHORT_ID = 8
STATUS_ICONS = {
    models.COMPLETE: "[green]✔[/green]",
    models.IN_PROGRESS: "[yellow]◐[/yellow]",
    models.NOT_STARTED: "[dim]○[/dim]",
}
MILESTONE_COLORS = {models.UPCOMING: "cyan", models.ACTIVE: "yellow", models.COMPLETE: "green"}

_options = {"offline": False}


@app.callback()
def main(
    offline: bool = typer.Option(False, "--offline", envvar="GOALPOST_OFFLINE", help="Skip pushing changes to the remote store"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log sync and migration activity"),
) -> None:
    _options["offline"] = offline
    setup_logging("DEBUG" if verbose else "WARNING")


# ---------------------------------------------------------------------------
# Session helpers
# ---------------------------------------------------------------------------

def _remote(settings: Settings) -> RemoteClient:
    return RemoteClient(settings.remote_url, settings.namespace, timeout=settings.timeout_seconds)


def _open_repository(settings: Settings) -> MilestoneRepository:
    cache = state.LocalCache(settings.cache_path)
    return MilestoneRepository(cache, settings.namespace).initialize()


@contextmanager
def _session() -> Iterator[MilestoneRepository]:
    """Open the repository after a pull; push once on exit if anything changed."""
    settings = load_settings()
    repo = _open_repository(settings)
    sync: Optional[SyncService] = None
    if not _options["offline"]:
        sync = SyncService(repo, _remote(settings), debounce_seconds=settings.debounce_seconds)
        sync.pull(with_sample=False)
        sync.attach()
    try:
        yield repo
    except GoalpostError as exc:
        raise typer.BadParameter(str(exc)) from exc
    finally:
        if sync is not None and sync.push_pending:
            sync.flush()
        if sync is not None and repo.unsynced and sync.status != SYNCED:
            typer.echo(f"Remote sync {sync.status}; changes are saved locally. ({sync.last_error})", err=True)


def _short(item_id: str) -> str:
    return item_id[:SHORT_ID]


def _match(items: Sequence, ref: str, label: str):
    exact = [item for item in items if item.id == ref]
    if exact:
        return exact[0]
    matches = [item for item in items if item.id.startswith(ref)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise NotFoundError(f"{label} '{ref}' not found")
    raise typer.BadParameter(f"{label} id '{ref}' is ambiguous ({len(matches)} matches)")


def _milestone(repo: MilestoneRepository, ref: str) -> Milestone:
    return _match(repo.milestones, ref, "Milestone")


def _task(milestone: Milestone, ref: str) -> Task:
    return _match(milestone.tasks, ref, "Task")


def _progress_label(tasks: Sequence[Task]) -> str:
    stats = models.progress(tasks)
    return f"{stats.completed_items}/{stats.total_items} ({stats.percent}%)"


def _render_milestone(milestone: Milestone, summary: Optional[str] = None, tasks: Optional[Sequence[Task]] = None) -> Tree:
    status = models.milestone_status(milestone)
    color = MILESTONE_COLORS[status]
    countdown = models.countdown(milestone)
    tree = Tree(
        f"[bold]{milestone.title}[/bold] ({_short(milestone.id)}) "
        f"[{color}]{status}[/{color}] {milestone.start_date} → {milestone.end_date} "
        f"| {max(countdown.days_left, 0)}d left | progress {_progress_label(milestone.tasks)}"
    )
    shown = milestone.tasks if tasks is None else tasks
    for index, task in enumerate(shown, start=1):
        parts = [f"{index}. {STATUS_ICONS[task.status]} {task.title} ({_short(task.id)})"]
        if task.tags:
            parts.append(f"[magenta]{', '.join(task.tags)}[/magenta]")
        if task.due_date:
            parts.append(f"due {task.due_date}")
        branch = tree.add(" ".join(parts))
        for subtask in task.subtasks:
            branch.add(f"{STATUS_ICONS[subtask.status]} {subtask.title} ({subtask.id.rsplit('-', 1)[-1][:SHORT_ID]})")
        for note in task.notes:
            branch.add(f"[italic]{note.date}: {note.content}[/italic] ({_short(note.id)})")
    if milestone.standalone_notes:
        journal = tree.add("[bold]Journal[/bold]")
        for note in milestone.standalone_notes:
            journal.add(f"[italic]{note.date}: {note.content}[/italic] ({_short(note.id)})")
    if summary:
        tree.add(f"[bold]Summary[/bold]\n{summary}")
    return tree


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------

@milestone_app.command("add")
def milestone_add(
    title: str = typer.Argument(..., help="Milestone title"),
    start: str = typer.Option(..., "--start", "-s", help="ISO start date"),
    end: str = typer.Option(..., "--end", "-e", help="ISO end date"),
) -> None:
    """Create a milestone."""
    with _session() as repo:
        milestone = repo.create(models.new_milestone(title, start, end))
    typer.echo(f"Created milestone '{milestone.title}' ({_short(milestone.id)}).")


@milestone_app.command("list")
def milestone_list() -> None:
    """List milestones with their derived status and progress."""
    with _session() as repo:
        milestones = repo.milestones
    if not milestones:
        typer.echo("No milestones yet.")
        return
    table = Table(title="Milestones")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Dates")
    table.add_column("Status")
    table.add_column("Progress")
    for milestone in milestones:
        status = models.milestone_status(milestone)
        color = MILESTONE_COLORS[status]
        table.add_row(
            _short(milestone.id),
            milestone.title,
            f"{milestone.start_date} → {milestone.end_date}",
            f"[{color}]{status}[/{color}]",
            _progress_label(milestone.tasks),
        )
    rprint(table)


@milestone_app.command("show")
def milestone_show(
    ref: str = typer.Argument(..., help="Milestone id or id prefix"),
    tag: Optional[List[str]] = typer.Option(None, "--tag", "-t", help="Only show tasks with these tags"),
    today: bool = typer.Option(False, "--today", help="Only show tasks due today"),
) -> None:
    """Show a milestone's tasks, subtasks and notes."""
    with _session() as repo:
        milestone = _milestone(repo, ref)
        repo.set_last_view(models.ViewState(models.VIEW_MILESTONE, milestone.id))
        summary = repo.summary(milestone.id)
    visible = models.filter_tasks(milestone.tasks, tag, due_today=today)
    rprint(_render_milestone(milestone, summary, visible))


@milestone_app.command("update")
def milestone_update(
    ref: str = typer.Argument(..., help="Milestone id or id prefix"),
    title: Optional[str] = typer.Option(None, "--title", help="New title"),
    start: Optional[str] = typer.Option(None, "--start", "-s", help="New start date"),
    end: Optional[str] = typer.Option(None, "--end", "-e", help="New end date"),
) -> None:
    """Edit a milestone's title or dates."""
    if title is None and start is None and end is None:
        raise typer.BadParameter("No updates specified.")
    with _session() as repo:
        milestone = _milestone(repo, ref)
        repo.update(repo_ops.edit_milestone_settings(milestone, title=title, start_date=start, end_date=end))
    typer.echo(f"Updated milestone '{_short(milestone.id)}'.")


@milestone_app.command("delete")
def milestone_delete(
    ref: str = typer.Argument(..., help="Milestone id or id prefix"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a milestone with all its tasks, notes and cached summary."""
    with _session() as repo:
        try:
            milestone = _milestone(repo, ref)
        except NotFoundError:
            typer.echo(f"No milestone matching '{ref}'; nothing to delete.")
            return
        if not yes:
            typer.confirm(f"Delete '{milestone.title}' and everything in it?", abort=True)
        repo.delete(milestone.id)
    typer.echo(f"Deleted milestone '{milestone.title}'.")


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

@task_app.command("add")
def task_add(
    milestone_ref: str = typer.Argument(..., help="Milestone id or id prefix"),
    title: str = typer.Argument(..., help="Task title"),
    tag: Optional[List[str]] = typer.Option(None, "--tag", "-t", help="Tag (repeatable)"),
    due: Optional[str] = typer.Option(None, "--due", help="ISO due date"),
) -> None:
    """Add a task to the end of a milestone's list."""
    with _session() as repo:
        milestone = _milestone(repo, milestone_ref)
        task = models.new_task(title, tag or [], due)
        repo.update(repo_ops.add_task(milestone, task))
    typer.echo(f"Added task '{task.title}' ({_short(task.id)}).")


@task_app.command("list")
def task_list(
    milestone_ref: str = typer.Argument(..., help="Milestone id or id prefix"),
    tag: Optional[List[str]] = typer.Option(None, "--tag", "-t", help="Only tasks with these tags"),
    today: bool = typer.Option(False, "--today", help="Only tasks due today"),
) -> None:
    """List tasks in display order."""
    with _session() as repo:
        milestone = _milestone(repo, milestone_ref)
    visible = models.filter_tasks(milestone.tasks, tag, due_today=today)
    table = Table(title=f"Tasks ({milestone.title})")
    table.add_column("#", justify="right")
    table.add_column("ID", style="cyan")
    table.add_column("Task")
    table.add_column("Tags", style="magenta")
    table.add_column("Due")
    table.add_column("Progress")
    for index, task in enumerate(visible, start=1):
        table.add_row(
            str(index),
            _short(task.id),
            f"{STATUS_ICONS[task.status]} {task.title}",
            ", ".join(task.tags),
            str(task.due_date or ""),
            _progress_label([task]),
        )
    rprint(table)


@task_app.command("edit")
def task_edit(
    milestone_ref: str = typer.Argument(..., help="Milestone id or id prefix"),
    task_ref: str = typer.Argument(..., help="Task id or id prefix"),
    title: Optional[str] = typer.Option(None, "--title", help="New title"),
    tag: Optional[List[str]] = typer.Option(None, "--tag", "-t", help="Replace tags (repeatable)"),
    due: Optional[str] = typer.Option(None, "--due", help="New due date"),
    clear_due: bool = typer.Option(False, "--clear-due", help="Remove the due date"),
) -> None:
    """Edit a task's title, tags or due date."""
    with _session() as repo:
        milestone = _milestone(repo, milestone_ref)
        task = _task(milestone, task_ref)
        repo.modify_task(
            milestone.id,
            task.id,
            lambda current: repo_ops.edit_task(current, title=title, tags=tag, due_date=due, clear_due_date=clear_due),
        )
    typer.echo(f"Updated task '{_short(task.id)}'.")


@task_app.command("status")
def task_status(
    milestone_ref: str = typer.Argument(..., help="Milestone id or id prefix"),
    task_ref: str = typer.Argument(..., help="Task id or id prefix"),
    status: str = typer.Argument(..., help="not_started, in_progress or complete"),
) -> None:
    """Set a task's status."""
    with _session() as repo:
        milestone = _milestone(repo, milestone_ref)
        task = _task(milestone, task_ref)
        updated = repo.modify_task(milestone.id, task.id, lambda current: repo_ops.set_task_status(current, status))
    typer.echo(f"'{updated.title}' is now {updated.status}.")


@task_app.command("tap")
def task_tap(
    milestone_ref: str = typer.Argument(..., help="Milestone id or id prefix"),
    task_ref: str = typer.Argument(..., help="Task id or id prefix"),
) -> None:
    """Toggle a task between complete and not started."""
    with _session() as repo:
        milestone = _milestone(repo, milestone_ref)
        task = _task(milestone, task_ref)
        updated = repo.modify_task(
            milestone.id, task.id, lambda current: repo_ops.set_task_status(current, models.tap_status(current.status))
        )
    typer.echo(f"'{updated.title}' is now {updated.status}.")


@task_app.command("hold")
def task_hold(
    milestone_ref: str = typer.Argument(..., help="Milestone id or id prefix"),
    task_ref: str = typer.Argument(..., help="Task id or id prefix"),
) -> None:
    """Toggle a task between in progress and not started."""
    with _session() as repo:
        milestone = _milestone(repo, milestone_ref)
        task = _task(milestone, task_ref)
        updated = repo.modify_task(
            milestone.id, task.id, lambda current: repo_ops.set_task_status(current, models.hold_status(current.status))
        )
    typer.echo(f"'{updated.title}' is now {updated.status}.")


@task_app.command("delete")
def task_delete(
    milestone_ref: str = typer.Argument(..., help="Milestone id or id prefix"),
    task_ref: str = typer.Argument(..., help="Task id or id prefix"),
) -> None:
    """Delete a task with its subtasks and notes."""
    with _session() as repo:
        milestone = _milestone(repo, milestone_ref)
        task = _task(milestone, task_ref)
        repo.update(repo_ops.remove_task(milestone, task.id))
    typer.echo(f"Deleted task '{task.title}'.")


@task_app.command("move")
def task_move(
    milestone_ref: str = typer.Argument(..., help="Milestone id or id prefix"),
    task_ref: str = typer.Argument(..., help="Task id or id prefix"),
    position: int = typer.Argument(..., help="1-based target position within the listed view"),
    tag: Optional[List[str]] = typer.Option(None, "--tag", "-t", help="Position refers to this tag-filtered view"),
    today: bool = typer.Option(False, "--today", help="Position refers to the due-today view"),
) -> None:
    """Move a task to another position, as a drag in the (filtered) list would."""
    with _session() as repo:
        milestone = _milestone(repo, milestone_ref)
        task = _task(milestone, task_ref)
        visible_ids = [item.id for item in models.filter_tasks(milestone.tasks, tag, due_today=today)]
        if task.id not in visible_ids:
            raise typer.BadParameter("Task is not part of the filtered view.")
        if not 1 <= position <= len(visible_ids):
            raise typer.BadParameter(f"Position must be between 1 and {len(visible_ids)}.")
        ordered = reorder.commit_in_view(milestone.tasks, visible_ids, visible_ids.index(task.id), position - 1)
        repo.update(repo_ops.reorder_tasks(milestone, [item.id for item in ordered]))
    typer.echo(f"Moved '{task.title}' to position {position}.")


# ---------------------------------------------------------------------------
# Subtasks
# ---------------------------------------------------------------------------

def _subtask_ref(task: Task, ref: str) -> str:
    for subtask in task.subtasks:
        if subtask.id == ref or subtask.id.rsplit("-", 1)[-1].startswith(ref):
            return subtask.id
    raise NotFoundError(f"Subtask '{ref}' not found")


@subtask_app.command("add")
def subtask_add(
    milestone_ref: str = typer.Argument(..., help="Milestone id or id prefix"),
    task_ref: str = typer.Argument(..., help="Task id or id prefix"),
    title: str = typer.Argument(..., help="Subtask title"),
) -> None:
    """Add a checklist item under a task."""
    with _session() as repo:
        milestone = _milestone(repo, milestone_ref)
        task = _task(milestone, task_ref)
        subtask = models.new_subtask(task.id, title)
        repo.modify_task(milestone.id, task.id, lambda current: repo_ops.add_subtask(current, subtask))
    typer.echo(f"Added subtask '{subtask.title}'.")


@subtask_app.command("status")
def subtask_status(
    milestone_ref: str = typer.Argument(..., help="Milestone id or id prefix"),
    task_ref: str = typer.Argument(..., help="Task id or id prefix"),
    subtask_ref: str = typer.Argument(..., help="Subtask id or suffix"),
    status: str = typer.Argument(..., help="not_started, in_progress or complete"),
) -> None:
    """Set a subtask's status."""
    with _session() as repo:
        milestone = _milestone(repo, milestone_ref)
        task = _task(milestone, task_ref)
        subtask_id = _subtask_ref(task, subtask_ref)
        repo.modify_task(milestone.id, task.id, lambda current: repo_ops.set_subtask_status(current, subtask_id, status))
    typer.echo(f"Subtask is now {models.canonical_status(status)}.")


def _cycle_subtask(milestone_ref: str, task_ref: str, subtask_ref: str, cycle) -> str:
    with _session() as repo:
        milestone = _milestone(repo, milestone_ref)
        task = _task(milestone, task_ref)
        subtask_id = _subtask_ref(task, subtask_ref)

        def change(current: Task) -> Task:
            subtask = repo_ops.get_subtask(current, subtask_id)
            return repo_ops.set_subtask_status(current, subtask_id, cycle(subtask.status))

        updated = repo.modify_task(milestone.id, task.id, change)
    return repo_ops.get_subtask(updated, subtask_id).status


@subtask_app.command("tap")
def subtask_tap(
    milestone_ref: str = typer.Argument(..., help="Milestone id or id prefix"),
    task_ref: str = typer.Argument(..., help="Task id or id prefix"),
    subtask_ref: str = typer.Argument(..., help="Subtask id or suffix"),
) -> None:
    """Toggle a subtask between complete and not started."""
    typer.echo(f"Subtask is now {_cycle_subtask(milestone_ref, task_ref, subtask_ref, models.tap_status)}.")


@subtask_app.command("hold")
def subtask_hold(
    milestone_ref: str = typer.Argument(..., help="Milestone id or id prefix"),
    task_ref: str = typer.Argument(..., help="Task id or id prefix"),
    subtask_ref: str = typer.Argument(..., help="Subtask id or suffix"),
) -> None:
    """Toggle a subtask between in progress and not started."""
    typer.echo(f"Subtask is now {_cycle_subtask(milestone_ref, task_ref, subtask_ref, models.hold_status)}.")


@subtask_app.command("delete")
def subtask_delete(
    milestone_ref: str = typer.Argument(..., help="Milestone id or id prefix"),
    task_ref: str = typer.Argument(..., help="Task id or id prefix"),
    subtask_ref: str = typer.Argument(..., help="Subtask id or suffix"),
) -> None:
    """Delete a subtask."""
    with _session() as repo:
        milestone = _milestone(repo, milestone_ref)
        task = _task(milestone, task_ref)
        subtask_id = _subtask_ref(task, subtask_ref)
        repo.modify_task(milestone.id, task.id, lambda current: repo_ops.remove_subtask(current, subtask_id))
    typer.echo("Deleted subtask.")


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------

@note_app.command("add")
def note_add(
    milestone_ref: str = typer.Argument(..., help="Milestone id or id prefix"),
    content: str = typer.Argument(..., help="Note text"),
    task_ref: Optional[str] = typer.Option(None, "--task", help="Attach to this task instead of the milestone journal"),
    on: Optional[str] = typer.Option(None, "--date", help="Date the note is about (defaults to today)"),
) -> None:
    """Add a journal note."""
    with _session() as repo:
        milestone = _milestone(repo, milestone_ref)
        note = models.new_note(content, on)
        if task_ref:
            task = _task(milestone, task_ref)
            repo.modify_task(milestone.id, task.id, lambda current: repo_ops.add_task_note(current, note))
        else:
            repo.update(repo_ops.add_standalone_note(milestone, note))
    typer.echo(f"Added note ({_short(note.id)}) for {note.date}.")


@note_app.command("edit")
def note_edit(
    milestone_ref: str = typer.Argument(..., help="Milestone id or id prefix"),
    note_ref: str = typer.Argument(..., help="Note id or id prefix"),
    task_ref: Optional[str] = typer.Option(None, "--task", help="The note belongs to this task"),
    content: Optional[str] = typer.Option(None, "--content", help="New text"),
    on: Optional[str] = typer.Option(None, "--date", help="New date"),
) -> None:
    """Edit a note's text or date."""
    if content is None and on is None:
        raise typer.BadParameter("No updates specified.")
    with _session() as repo:
        milestone = _milestone(repo, milestone_ref)
        if task_ref:
            task = _task(milestone, task_ref)
            note = _match(task.notes, note_ref, "Note")
            edited = repo_ops.edit_note(note, content=content, on=on)
            repo.modify_task(milestone.id, task.id, lambda current: repo_ops.replace_task_note(current, edited))
        else:
            note = _match(milestone.standalone_notes, note_ref, "Note")
            edited = repo_ops.edit_note(note, content=content, on=on)
            repo.modify(milestone.id, lambda current: repo_ops.replace_standalone_note(current, edited))
    typer.echo(f"Updated note ({_short(note.id)}).")


@note_app.command("delete")
def note_delete(
    milestone_ref: str = typer.Argument(..., help="Milestone id or id prefix"),
    note_ref: str = typer.Argument(..., help="Note id or id prefix"),
    task_ref: Optional[str] = typer.Option(None, "--task", help="The note belongs to this task"),
) -> None:
    """Delete a note."""
    with _session() as repo:
        milestone = _milestone(repo, milestone_ref)
        if task_ref:
            task = _task(milestone, task_ref)
            note = _match(task.notes, note_ref, "Note")
            repo.modify_task(milestone.id, task.id, lambda current: repo_ops.remove_task_note(current, note.id))
        else:
            note = _match(milestone.standalone_notes, note_ref, "Note")
            repo.update(repo_ops.remove_standalone_note(milestone, note.id))
    typer.echo("Deleted note.")


# ---------------------------------------------------------------------------
# Last view
# ---------------------------------------------------------------------------

@view_app.command("show")
def view_show() -> None:
    """Print where the UI would reopen."""
    with _session() as repo:
        view = repo.resolve_view()
        if view.kind == models.VIEW_MILESTONE:
            milestone = repo.get(view.milestone_id)
            typer.echo(f"milestone {_short(milestone.id)} ({milestone.title})")
        else:
            typer.echo("dashboard")


@view_app.command("set")
def view_set(
    ref: Optional[str] = typer.Argument(None, help="Milestone id; omit for the dashboard"),
) -> None:
    """Remember a milestone (or the dashboard) as the place to reopen."""
    with _session() as repo:
        if ref:
            milestone = _milestone(repo, ref)
            repo.set_last_view(models.ViewState(models.VIEW_MILESTONE, milestone.id))
        else:
            repo.set_last_view(models.DASHBOARD)
    typer.echo("Saved view.")


# ---------------------------------------------------------------------------
# Sync, migration, summaries
# ---------------------------------------------------------------------------

@sync_app.command("pull")
def sync_pull() -> None:
    """Load from the remote store (remote wins when it has data)."""
    settings = load_settings()
    repo = _open_repository(settings)
    sync = SyncService(repo, _remote(settings), debounce_seconds=settings.debounce_seconds)
    source = sync.pull()
    typer.echo(f"Working set: {source} ({len(repo.milestones)} milestones). Sync status: {sync.status}.")


@sync_app.command("push")
def sync_push() -> None:
    """Write the whole local collection to the remote store now."""
    settings = load_settings()
    repo = _open_repository(settings)
    sync = SyncService(repo, _remote(settings), debounce_seconds=settings.debounce_seconds)
    if sync.push_now():
        typer.echo(f"Pushed {len(repo.milestones)} milestones.")
    else:
        raise typer.BadParameter(f"Push failed ({sync.status}): {sync.last_error}. Local data is unchanged.")


@sync_app.command("refresh")
def sync_refresh() -> None:
    """Replace local data with the remote copy, if the remote has one."""
    settings = load_settings()
    repo = _open_repository(settings)
    sync = SyncService(repo, _remote(settings), debounce_seconds=settings.debounce_seconds)
    if not sync.refresh():
        raise typer.BadParameter(f"Refresh failed ({sync.status}): {sync.last_error}")
    typer.echo(f"Refreshed; {len(repo.milestones)} milestones.")


@sync_app.command("status")
def sync_status() -> None:
    """Report whether the remote server answers."""
    settings = load_settings()
    reachable = _ping_server(settings.remote_url)
    typer.echo(f"Remote {settings.remote_url} is {'reachable' if reachable else 'offline'} (namespace '{settings.namespace}').")


@app.command("migrate")
def migrate_command(
    purge_legacy: bool = typer.Option(False, "--purge-legacy", help="Delete legacy keys after migrating"),
) -> None:
    """Migrate legacy local data into the current layout."""
    settings = load_settings()
    cache = state.LocalCache(settings.cache_path)
    result = migration.migrate(cache, settings.namespace)
    typer.echo(f"Source: {result.source}; {len(result.milestones)} milestones in namespace '{settings.namespace}'.")
    if purge_legacy:
        keys = migration.legacy_keys(cache)
        if not keys:
            typer.echo("No legacy keys to remove.")
            return
        typer.confirm(f"Permanently delete {len(keys)} legacy keys?", abort=True)
        removed = migration.purge_legacy(cache, settings.namespace)
        typer.echo(f"Removed {len(removed)} legacy keys.")


@app.command("summary")
def summary_command(
    ref: str = typer.Argument(..., help="Milestone id or id prefix"),
    refresh: bool = typer.Option(False, "--refresh", help="Generate a new summary even if one is cached"),
) -> None:
    """Show (or generate) the reflection summary for a milestone."""
    settings = load_settings()
    repo = _open_repository(settings)
    try:
        milestone = _milestone(repo, ref)
        cached = repo.summary(milestone.id)
        if cached and not refresh:
            rprint(cached)
            return
        service = SummaryService(repo, _remote(settings).summarize)
        text = service.generate(milestone.id)
    except GoalpostError as exc:
        raise typer.BadParameter(str(exc)) from exc
    rprint(text or "")


# ---------------------------------------------------------------------------
# Background service
# ---------------------------------------------------------------------------

def _server_port(settings: Settings) -> int:
    return urllib_parse.urlparse(settings.remote_url).port or DEFAULT_SERVER_PORT


def _ping_server(base_url: str, timeout: float = 0.5) -> bool:
    try:
        with urllib_request.urlopen(f"{base_url}/__health", timeout=timeout) as response:
            return response.status == 200
    except (urllib_error.URLError, ConnectionError, TimeoutError):
        return False


def _start_server_process(settings: Settings) -> subprocess.Popen:
    server_log = state.server_log_path(settings.home)
    cmd = [
        sys.executable,
        "-m",
        SERVER_MODULE_PATH,
        "--port",
        str(_server_port(settings)),
        "--store",
        str(settings.store_path),
        "--log-file",
        str(state.server_events_path(settings.home)),
    ]
    # The subprocess owns the handle; it is closed when the server exits.
    log_handle = open(server_log, "a", encoding="utf-8", buffering=1)
    return subprocess.Popen(
        cmd,
        stdout=log_handle,
        stderr=log_handle,
        stdin=subprocess.DEVNULL,
        close_fds=os.name != "nt",
        start_new_session=os.name != "nt",
    )


def _get_or_start_server(settings: Settings) -> None:
    if _ping_server(settings.remote_url):
        return
    process = _start_server_process(settings)
    start = time.time()
    while time.time() - start < 5:
        if process.poll() is not None:
            break
        if _ping_server(settings.remote_url):
            state.write_server_info(settings.home, {"pid": process.pid, "port": _server_port(settings)})
            return
        time.sleep(0.2)
    process.terminate()
    raise typer.BadParameter(
        f"Failed to start the sync server. Check log file for details:\n{state.server_log_path(settings.home)}"
    )


def _shutdown_service(settings: Settings) -> bool:
    if not _ping_server(settings.remote_url):
        return False
    request_obj = urllib_request.Request(
        f"{settings.remote_url}/__stop",
        data=b"{}",
        headers={"Content-Type": "application/json"},
    )
    try:
        with urllib_request.urlopen(request_obj, timeout=1) as resp:
            if resp.status == 200:
                for _ in range(25):
                    if not _ping_server(settings.remote_url):
                        state.clear_server_info(settings.home)
                        return True
                    time.sleep(0.2)
    except (urllib_error.URLError, ConnectionError, TimeoutError):
        pass
    return False


@service_app.command("start")
def service_start() -> None:
    """Start the background sync server."""
    settings = load_settings()
    if _ping_server(settings.remote_url):
        typer.echo(f"Sync server is already running at {settings.remote_url}.")
        return
    _get_or_start_server(settings)
    typer.echo(f"Sync server started at {settings.remote_url}.")
    typer.echo(f"Server logs: {state.server_log_path(settings.home)}")


@service_app.command("stop")
def service_stop() -> None:
    """Stop the background sync server."""
    settings = load_settings()
    if not _ping_server(settings.remote_url):
        typer.echo("Sync server is not running.")
        return
    typer.echo(f"Stopping sync server at {settings.remote_url}...")
    graceful = _shutdown_service(settings)
    typer.echo("Service stopped cleanly." if graceful else "Service stopped.")


@service_app.command("restart")
def service_restart() -> None:
    """Restart the background sync server."""
    settings = load_settings()
    typer.echo("Restarting sync server...")
    _shutdown_service(settings)
    _get_or_start_server(settings)
    typer.echo(f"Sync server restarted at {settings.remote_url}.")


@service_app.command("status")
def service_status() -> None:
    """Check whether the sync server is running."""
    settings = load_settings()
    if _ping_server(settings.remote_url):
        info = state.read_server_info(settings.home) or {}
        pid = f" (pid {info['pid']})" if info.get("pid") else ""
        typer.echo(f"Sync server is running at {settings.remote_url}{pid}.")
    else:
        typer.echo("Sync server is not running.")
    typer.echo(f"Server logs: {state.server_log_path(settings.home)}")


@service_app.command("logs")
def service_logs() -> None:
    """Show the location of the server log file."""
    settings = load_settings()
    log_path = state.server_log_path(settings.home)
    typer.echo(f"Server log file: {log_path}")
    typer.echo(f"Structured log: {state.server_events_path(settings.home)}")
    if log_path.exists():
        size_kb = log_path.stat().st_size / 1024
        typer.echo(f"Log file size: {size_kb:.2f} KB")
    else:
        typer.echo("Log file does not exist yet (server has not been started).")


app.add_typer(milestone_app, name="milestone")
app.add_typer(task_app, name="task")
app.add_typer(subtask_app, name="subtask")
app.add_typer(note_app, name="note")
app.add_typer(view_app, name="view")
app.add_typer(sync_app, name="sync")
app.add_typer(service_app, name="service")


if __name__ == "__main__":  # pragma: no cover
    app()
