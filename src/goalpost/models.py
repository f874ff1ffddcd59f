"""Milestone, task, subtask and note records plus derived views over them.

Every record is an immutable dataclass. Collections are tuples so a
milestone list can be handed around as a snapshot; edits go through
``dataclasses.replace`` (see :mod:`goalpost.repository`).

Wire/storage form is camelCase JSON, matching the remote handlers:
``from_dict`` is the single normalization point where absent lists become
empty tuples and loose values are coerced.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import ValidationError

NOT_STARTED = "not_started"
IN_PROGRESS = "in_progress"
COMPLETE = "complete"
STATUSES = (NOT_STARTED, IN_PROGRESS, COMPLETE)

UPCOMING = "upcoming"
ACTIVE = "active"

VIEW_DASHBOARD = "dashboard"
VIEW_MILESTONE = "milestone"


def new_id() -> str:
    return str(uuid.uuid4())


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_date(value: Any) -> Optional[date]:
    """Coerce ``value`` to a calendar date, dropping any time component."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError as exc:
        raise ValidationError(f"Invalid date: {value!r}") from exc


def _format_date(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _lenient_date(value: Any) -> Optional[date]:
    try:
        return parse_date(value)
    except ValidationError:
        return None


def _created_at(value: Any) -> str:
    """A stored creation timestamp, or now when it is missing or unreadable."""
    if isinstance(value, str) and _lenient_date(value):
        return value
    return now_iso()


def _loose_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _records(items: Any, label: str) -> List[Dict[str, Any]]:
    if not items:
        return []
    if not isinstance(items, list):
        raise ValidationError(f"{label} must be a list")
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError(f"{label} entry is not an object: {item!r}")
    return items


def canonical_status(value: Optional[str]) -> str:
    if not value:
        return NOT_STARTED
    value = value.strip().lower().replace("-", "_").replace(" ", "_")
    if value not in STATUSES:
        raise ValidationError(f"Unknown status '{value}'. Expected one of: {', '.join(STATUSES)}")
    return value


def tap_status(status: str) -> str:
    """Quick tap toggles completion."""
    return NOT_STARTED if status == COMPLETE else COMPLETE


def hold_status(status: str) -> str:
    """Long press toggles in-progress."""
    return NOT_STARTED if status == IN_PROGRESS else IN_PROGRESS


@dataclass(frozen=True)
class Note:
    id: str
    content: str
    date: date
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "date": self.date.isoformat(),
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Note":
        created_at = _created_at(data.get("createdAt"))
        return cls(
            id=str(data.get("id") or new_id()),
            content=str(data.get("content") or ""),
            date=_lenient_date(data.get("date")) or parse_date(created_at),
            created_at=created_at,
        )


@dataclass(frozen=True)
class Subtask:
    id: str
    title: str
    status: str = NOT_STARTED

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "status": self.status}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Subtask":
        return cls(
            id=str(data.get("id") or new_id()),
            title=str(data.get("title") or ""),
            status=_lenient_status(data.get("status")),
        )


@dataclass(frozen=True)
class Task:
    id: str
    title: str
    status: str = NOT_STARTED
    tags: Tuple[str, ...] = ()
    due_date: Optional[date] = None
    subtasks: Tuple[Subtask, ...] = ()
    notes: Tuple[Note, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "tags": list(self.tags),
            "dueDate": _format_date(self.due_date),
            "subtasks": [subtask.to_dict() for subtask in self.subtasks],
            "notes": [note.to_dict() for note in self.notes],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        return cls(
            id=str(data.get("id") or new_id()),
            title=str(data.get("title") or ""),
            status=_lenient_status(data.get("status")),
            tags=tuple(str(tag) for tag in _loose_list(data.get("tags"))),
            due_date=_lenient_date(data.get("dueDate")),
            subtasks=tuple(Subtask.from_dict(item) for item in _records(data.get("subtasks"), "Subtask")),
            notes=tuple(Note.from_dict(item) for item in _records(data.get("notes"), "Note")),
        )


@dataclass(frozen=True)
class Milestone:
    id: str
    title: str
    start_date: date
    end_date: date
    created_at: str
    tasks: Tuple[Task, ...] = ()
    standalone_notes: Tuple[Note, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "createdAt": self.created_at,
            "tasks": [task.to_dict() for task in self.tasks],
            "standaloneNotes": [note.to_dict() for note in self.standalone_notes],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Milestone":
        """Repair loose stored data; raises only when a nested entry is not an object.

        Unreadable dates fall back to the other end of the range, then to the
        creation date. Inverted ranges are clamped to a single day.
        """
        created_at = _created_at(data.get("createdAt"))
        start = _lenient_date(data.get("startDate"))
        end = _lenient_date(data.get("endDate"))
        start = start or end or parse_date(created_at)
        end = end or start
        if end < start:
            end = start
        return cls(
            id=str(data.get("id") or new_id()),
            title=str(data.get("title") or ""),
            start_date=start,
            end_date=end,
            created_at=created_at,
            tasks=tuple(Task.from_dict(item) for item in _records(data.get("tasks"), "Task")),
            standalone_notes=tuple(Note.from_dict(item) for item in _records(data.get("standaloneNotes"), "Note")),
        )


@dataclass(frozen=True)
class ViewState:
    kind: str = VIEW_DASHBOARD
    milestone_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.kind == VIEW_MILESTONE:
            return {"kind": VIEW_MILESTONE, "milestoneId": self.milestone_id}
        return {"kind": VIEW_DASHBOARD}

    @classmethod
    def from_dict(cls, data: Any) -> "ViewState":
        if not isinstance(data, dict):
            return cls()
        if data.get("kind") == VIEW_MILESTONE and data.get("milestoneId"):
            return cls(kind=VIEW_MILESTONE, milestone_id=str(data["milestoneId"]))
        return cls()


DASHBOARD = ViewState()


def _lenient_status(value: Any) -> str:
    try:
        return canonical_status(value if isinstance(value, str) else None)
    except ValidationError:
        return NOT_STARTED


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

def _require_title(title: str) -> str:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Title is required")
    return title


def validate_range(start: Any, end: Any) -> Tuple[date, date]:
    start_date = parse_date(start)
    end_date = parse_date(end)
    if start_date is None or end_date is None:
        raise ValidationError("Both start and end dates are required")
    if end_date < start_date:
        raise ValidationError(f"End date {end_date} is before start date {start_date}")
    return start_date, end_date


def new_milestone(title: str, start: Any, end: Any, *, created_at: Optional[str] = None) -> Milestone:
    start_date, end_date = validate_range(start, end)
    return Milestone(
        id=new_id(),
        title=_require_title(title),
        start_date=start_date,
        end_date=end_date,
        created_at=created_at or now_iso(),
    )


def new_task(title: str, tags: Iterable[str] = (), due_date: Any = None) -> Task:
    return Task(
        id=new_id(),
        title=_require_title(title),
        tags=tuple(tag.strip() for tag in tags if tag and tag.strip()),
        due_date=parse_date(due_date),
    )


def new_subtask(task_id: str, title: str) -> Subtask:
    return Subtask(id=f"{task_id}-{uuid.uuid4().hex[:12]}", title=_require_title(title))


def new_note(content: str, on: Any = None, *, created_at: Optional[str] = None) -> Note:
    content = (content or "").strip()
    if not content:
        raise ValidationError("Note content is required")
    return Note(
        id=new_id(),
        content=content,
        date=parse_date(on) or date.today(),
        created_at=created_at or now_iso(),
    )


def milestones_to_list(milestones: Sequence[Milestone]) -> List[Dict[str, Any]]:
    return [milestone.to_dict() for milestone in milestones]


# ---------------------------------------------------------------------------
# Derived values
# ---------------------------------------------------------------------------

def milestone_status(milestone: Milestone, today: Optional[date] = None) -> str:
    today = today or date.today()
    if today < milestone.start_date:
        return UPCOMING
    if today > milestone.end_date:
        return COMPLETE
    return ACTIVE


@dataclass(frozen=True)
class Progress:
    completed_items: int
    total_items: int

    @property
    def percent(self) -> int:
        if not self.total_items:
            return 0
        return int(self.completed_items * 100 / self.total_items + 0.5)


def progress(tasks: Sequence[Task]) -> Progress:
    """Each task counts as one item alongside each of its subtasks."""
    completed = 0
    total = 0
    for task in tasks:
        for item in (task, *task.subtasks):
            total += 1
            if item.status == COMPLETE:
                completed += 1
    return Progress(completed_items=completed, total_items=total)


@dataclass(frozen=True)
class Countdown:
    days_left: int
    total_days: int

    @property
    def elapsed(self) -> float:
        if self.total_days <= 0:
            return 1.0
        return max(0.0, min(1.0, 1 - self.days_left / self.total_days))


def countdown(milestone: Milestone, today: Optional[date] = None) -> Countdown:
    today = today or date.today()
    return Countdown(
        days_left=(milestone.end_date - today).days,
        total_days=(milestone.end_date - milestone.start_date).days,
    )


def collect_tags(tasks: Sequence[Task]) -> List[str]:
    seen: Dict[str, None] = {}
    for task in tasks:
        for tag in task.tags:
            seen.setdefault(tag, None)
    return list(seen)


def filter_tasks(
    tasks: Sequence[Task],
    selected_tags: Optional[Sequence[str]] = None,
    *,
    due_today: bool = False,
    today: Optional[date] = None,
) -> List[Task]:
    """Apply the display filters.

    The tag filter only narrows the list when some, but not all, of the
    milestone's tags are selected; untagged tasks always stay visible.
    """
    visible = list(tasks)
    if due_today:
        today = today or date.today()
        visible = [task for task in visible if task.due_date == today]
    all_tags = collect_tags(tasks)
    if selected_tags and len(set(selected_tags) & set(all_tags)) < len(all_tags):
        wanted = set(selected_tags)
        visible = [task for task in visible if not task.tags or wanted.intersection(task.tags)]
    return visible


@dataclass(frozen=True)
class Goal:
    """The ``{title, startDate, endDate}`` header carried by summary requests."""

    title: str
    start_date: date
    end_date: date

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
        }

    @classmethod
    def of(cls, milestone: Milestone) -> "Goal":
        return cls(milestone.title, milestone.start_date, milestone.end_date)

