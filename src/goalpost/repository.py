"""In-memory milestone collection with write-through to the local cache.

The module-level functions are pure: each takes a snapshot (a tuple of
milestones, or a single record) and returns a new one. ``MilestoneRepository``
holds the current snapshot, persists it synchronously after every mutation
and then notifies listeners (the sync service schedules its push there).
"""
from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from . import models
from .errors import DuplicateIdError, NotFoundError, ValidationError
from .log import get_logger
from .migration import StorageKeys, migrate
from .models import Milestone, Note, Subtask, Task, ViewState

logger = get_logger(__name__)

Milestones = Tuple[Milestone, ...]
Listener = Callable[["MilestoneRepository"], None]

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Generic id-keyed helpers
# ---------------------------------------------------------------------------

def _find(items: Sequence[T], item_id: str, label: str) -> T:
    for item in items:
        if item.id == item_id:
            return item
    raise NotFoundError(f"{label} '{item_id}' not found")


def _append(items: Sequence[T], item: T, label: str) -> Tuple[T, ...]:
    if any(existing.id == item.id for existing in items):
        raise DuplicateIdError(f"{label} id '{item.id}' already exists")
    return (*items, item)


def _replace(items: Sequence[T], item: T, label: str) -> Tuple[T, ...]:
    _find(items, item.id, label)
    return tuple(item if existing.id == item.id else existing for existing in items)


def _remove(items: Sequence[T], item_id: str) -> Tuple[T, ...]:
    return tuple(item for item in items if item.id != item_id)


# ---------------------------------------------------------------------------
# Milestone collection
# ---------------------------------------------------------------------------

def create_milestone(milestones: Sequence[Milestone], milestone: Milestone) -> Milestones:
    return _append(milestones, milestone, "Milestone")


def update_milestone(milestones: Sequence[Milestone], milestone: Milestone) -> Milestones:
    """Swap in ``milestone`` by id; everything else keeps its place."""
    if milestone.end_date < milestone.start_date:
        raise ValidationError(f"End date {milestone.end_date} is before start date {milestone.start_date}")
    return _replace(milestones, milestone, "Milestone")


def delete_milestone(milestones: Sequence[Milestone], milestone_id: str) -> Milestones:
    return _remove(milestones, milestone_id)


def edit_milestone_settings(
    milestone: Milestone,
    *,
    title: Optional[str] = None,
    start_date: Any = None,
    end_date: Any = None,
) -> Milestone:
    """Title/date edits; tasks and notes are left untouched."""
    new_start = models.parse_date(start_date) or milestone.start_date
    new_end = models.parse_date(end_date) or milestone.end_date
    models.validate_range(new_start, new_end)
    new_title = milestone.title
    if title is not None:
        new_title = title.strip()
        if not new_title:
            raise ValidationError("Title is required")
    return replace(milestone, title=new_title, start_date=new_start, end_date=new_end)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

def add_task(milestone: Milestone, task: Task) -> Milestone:
    return replace(milestone, tasks=_append(milestone.tasks, task, "Task"))


def replace_task(milestone: Milestone, task: Task) -> Milestone:
    return replace(milestone, tasks=_replace(milestone.tasks, task, "Task"))


def remove_task(milestone: Milestone, task_id: str) -> Milestone:
    return replace(milestone, tasks=_remove(milestone.tasks, task_id))


def get_task(milestone: Milestone, task_id: str) -> Task:
    return _find(milestone.tasks, task_id, "Task")


def edit_task(
    task: Task,
    *,
    title: Optional[str] = None,
    tags: Optional[Iterable[str]] = None,
    due_date: Any = None,
    clear_due_date: bool = False,
) -> Task:
    changes = {}
    if title is not None:
        title = title.strip()
        if not title:
            raise ValidationError("Title is required")
        changes["title"] = title
    if tags is not None:
        changes["tags"] = tuple(tag.strip() for tag in tags if tag and tag.strip())
    if clear_due_date:
        changes["due_date"] = None
    elif due_date is not None:
        changes["due_date"] = models.parse_date(due_date)
    return replace(task, **changes)


def set_task_status(task: Task, status: str) -> Task:
    return replace(task, status=models.canonical_status(status))


def reorder_tasks(milestone: Milestone, ordered_ids: Sequence[str]) -> Milestone:
    """Apply a permutation given as the full list of task ids."""
    by_id = {task.id: task for task in milestone.tasks}
    if len(ordered_ids) != len(by_id) or set(ordered_ids) != set(by_id):
        raise ValidationError("Reorder must name every task exactly once")
    return replace(milestone, tasks=tuple(by_id[task_id] for task_id in ordered_ids))


# ---------------------------------------------------------------------------
# Subtasks
# ---------------------------------------------------------------------------

def add_subtask(task: Task, subtask: Subtask) -> Task:
    return replace(task, subtasks=_append(task.subtasks, subtask, "Subtask"))


def set_subtask_status(task: Task, subtask_id: str, status: str) -> Task:
    subtask = _find(task.subtasks, subtask_id, "Subtask")
    updated = replace(subtask, status=models.canonical_status(status))
    return replace(task, subtasks=_replace(task.subtasks, updated, "Subtask"))


def remove_subtask(task: Task, subtask_id: str) -> Task:
    return replace(task, subtasks=_remove(task.subtasks, subtask_id))


def get_subtask(task: Task, subtask_id: str) -> Subtask:
    return _find(task.subtasks, subtask_id, "Subtask")


# ---------------------------------------------------------------------------
# Notes (task diary entries and standalone journal entries)
# ---------------------------------------------------------------------------

def add_task_note(task: Task, note: Note) -> Task:
    return replace(task, notes=_append(task.notes, note, "Note"))


def remove_task_note(task: Task, note_id: str) -> Task:
    return replace(task, notes=_remove(task.notes, note_id))


def add_standalone_note(milestone: Milestone, note: Note) -> Milestone:
    return replace(milestone, standalone_notes=_append(milestone.standalone_notes, note, "Note"))


def remove_standalone_note(milestone: Milestone, note_id: str) -> Milestone:
    return replace(milestone, standalone_notes=_remove(milestone.standalone_notes, note_id))


def edit_note(note: Note, *, content: Optional[str] = None, on: Any = None) -> Note:
    """Content and "about" date are editable; ``created_at`` never changes."""
    changes = {}
    if content is not None:
        content = content.strip()
        if not content:
            raise ValidationError("Note content is required")
        changes["content"] = content
    if on is not None:
        changes["date"] = models.parse_date(on)
    return replace(note, **changes)


def replace_note(notes: Sequence[Note], note: Note) -> Tuple[Note, ...]:
    return _replace(notes, note, "Note")


def replace_task_note(task: Task, note: Note) -> Task:
    return replace(task, notes=replace_note(task.notes, note))


def replace_standalone_note(milestone: Milestone, note: Note) -> Milestone:
    return replace(milestone, standalone_notes=replace_note(milestone.standalone_notes, note))


# ---------------------------------------------------------------------------
# Load boundary
# ---------------------------------------------------------------------------

def _unique_ids(items: Sequence[T], label: str, make_id: Callable[[], str] = models.new_id) -> Tuple[T, ...]:
    """Keep the first holder of each id; later holders get a fresh one."""
    seen = set()
    result = []
    for item in items:
        if item.id in seen:
            fresh = make_id()
            logger.warning("Duplicate %s id %s; re-identified as %s", label, item.id, fresh)
            item = replace(item, id=fresh)
        seen.add(item.id)
        result.append(item)
    return tuple(result)


def _dedupe_task(task: Task) -> Task:
    return replace(
        task,
        subtasks=_unique_ids(task.subtasks, "subtask", lambda: f"{task.id}-{models.new_id()}"),
        notes=_unique_ids(task.notes, "note"),
    )


def _dedupe_milestone(milestone: Milestone) -> Milestone:
    tasks = tuple(_dedupe_task(task) for task in _unique_ids(milestone.tasks, "task"))
    return replace(milestone, tasks=tasks, standalone_notes=_unique_ids(milestone.standalone_notes, "note"))


def read_milestones(raw: Any) -> Tuple[List[Milestone], List[Any]]:
    """Turn stored JSON into records.

    Returns ``(milestones, unreadable)``. Loose values are repaired and
    colliding ids are re-issued; entries that still cannot be read are handed
    back untouched so the caller can keep them.
    """
    if raw is None:
        return [], []
    if not isinstance(raw, list):
        logger.warning("Stored milestones are not a list; keeping them aside")
        return [], [raw]
    parsed: List[Milestone] = []
    unreadable: List[Any] = []
    for item in raw:
        if not isinstance(item, dict):
            logger.warning("Unreadable milestone entry: %r", item)
            unreadable.append(item)
            continue
        try:
            parsed.append(_dedupe_milestone(Milestone.from_dict(item)))
        except ValidationError as exc:
            logger.warning("Unreadable milestone %r: %s", item.get("id"), exc)
            unreadable.append(item)
    return list(_unique_ids(parsed, "milestone")), unreadable


def normalize_milestones(raw: Any) -> List[Milestone]:
    return read_milestones(raw)[0]


class MilestoneRepository:
    """Single source of truth for milestones within one storage namespace."""

    def __init__(self, cache: Any, namespace: str) -> None:
        self.cache = cache
        self.namespace = namespace
        self.keys = StorageKeys(namespace)
        self._milestones: Milestones = ()
        self._last_view: ViewState = models.DASHBOARD
        self._listeners: List[Listener] = []

    # -- lifecycle ---------------------------------------------------------

    def initialize(self) -> "MilestoneRepository":
        """Run the one-time migration for this namespace, then load."""
        migrate(self.cache, self.namespace)
        self.load()
        return self

    def load(self) -> Milestones:
        raw = self.cache.get(self.keys.milestones)
        milestones, unreadable = read_milestones(raw)
        if unreadable:
            self._quarantine(unreadable)
        stored = models.milestones_to_list(milestones)
        if raw is not None and stored != raw:
            # Persist repairs so re-issued ids stay stable across loads.
            self.cache.set(self.keys.milestones, stored)
        self._milestones = tuple(milestones)
        self._last_view = ViewState.from_dict(self.cache.get(self.keys.last_view))
        return self._milestones

    def _quarantine(self, entries: Sequence[Any]) -> None:
        kept = self.cache.get(self.keys.unreadable)
        kept = kept if isinstance(kept, list) else []
        added = [entry for entry in entries if entry not in kept]
        if added:
            self.cache.set(self.keys.unreadable, kept + added)
            logger.warning("Kept %d unreadable milestone entries under %s", len(added), self.keys.unreadable)

    def read(self, raw: Any) -> List[Milestone]:
        """Parse a milestone list from elsewhere, keeping unreadable entries aside."""
        milestones, unreadable = read_milestones(raw)
        if unreadable:
            self._quarantine(unreadable)
        return milestones

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    # -- reads -------------------------------------------------------------

    @property
    def milestones(self) -> Milestones:
        return self._milestones

    @property
    def last_view(self) -> ViewState:
        return self._last_view

    def has_data(self) -> bool:
        return bool(self._milestones)

    def get(self, milestone_id: str) -> Milestone:
        return _find(self._milestones, milestone_id, "Milestone")

    def resolve_view(self) -> ViewState:
        """The last view, or the dashboard if its milestone is gone."""
        view = self._last_view
        if view.kind == models.VIEW_MILESTONE and not any(m.id == view.milestone_id for m in self._milestones):
            return models.DASHBOARD
        return view

    def summary(self, milestone_id: str) -> Optional[str]:
        return self.cache.get(self.keys.summary(milestone_id))

    @property
    def unreadable(self) -> List[Any]:
        kept = self.cache.get(self.keys.unreadable)
        return kept if isinstance(kept, list) else []

    @property
    def unsynced(self) -> bool:
        """True while local edits have not reached the remote store."""
        return bool(self.cache.get(self.keys.unsynced))

    def mark_synced(self) -> None:
        self.cache.delete(self.keys.unsynced)

    def to_document(self) -> dict:
        return {
            "milestones": models.milestones_to_list(self._milestones),
            "lastView": self._last_view.to_dict(),
        }

    # -- writes ------------------------------------------------------------

    def _commit(self, milestones: Optional[Milestones] = None, view: Optional[ViewState] = None, notify: bool = True) -> None:
        if milestones is not None:
            self.cache.set(self.keys.milestones, models.milestones_to_list(milestones))
            self._milestones = milestones
        if view is not None:
            self.cache.set(self.keys.last_view, view.to_dict())
            self._last_view = view
        if notify:
            self.cache.set(self.keys.unsynced, True)
            for listener in list(self._listeners):
                listener(self)

    def create(self, milestone: Milestone) -> Milestone:
        self._commit(create_milestone(self._milestones, milestone))
        return milestone

    def update(self, milestone: Milestone) -> Milestone:
        self._commit(update_milestone(self._milestones, milestone))
        return milestone

    def modify(self, milestone_id: str, change: Callable[[Milestone], Milestone]) -> Milestone:
        """Apply ``change`` to one milestone and store the result."""
        updated = change(self.get(milestone_id))
        if updated.id != milestone_id:
            raise ValidationError("A milestone's id cannot change")
        return self.update(updated)

    def modify_task(self, milestone_id: str, task_id: str, change: Callable[[Task], Task]) -> Task:
        milestone = self.get(milestone_id)
        updated = change(get_task(milestone, task_id))
        self.update(replace_task(milestone, updated))
        return updated

    def delete(self, milestone_id: str) -> None:
        """Remove a milestone, everything under it and its cached summary."""
        if not any(m.id == milestone_id for m in self._milestones):
            return
        self.cache.delete(self.keys.summary(milestone_id))
        self._commit(delete_milestone(self._milestones, milestone_id))

    def set_last_view(self, view: ViewState) -> None:
        self._commit(view=view)

    def save_summary(self, milestone_id: str, text: str) -> None:
        self.get(milestone_id)
        self.cache.set(self.keys.summary(milestone_id), text)

    def replace_all(self, milestones: Sequence[Milestone], view: Optional[ViewState] = None, notify: bool = False) -> None:
        """Adopt a snapshot from elsewhere (remote pull, sample data)."""
        self._commit(tuple(milestones), view or self._last_view, notify=notify)
        self._prune_summaries()

    def _prune_summaries(self) -> None:
        prefix = self.keys.summary("")
        live = {milestone.id for milestone in self._milestones}
        for key in list(self.cache.keys()):
            if key.startswith(prefix) and key[len(prefix):] not in live:
                self.cache.delete(key)
