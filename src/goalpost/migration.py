"""Schema migration across the three storage generations.

Generation 1 kept one flat task list, one goal and one notes list under
global keys. Generation 2 kept a list of milestone objects plus the last
view under global keys. The current generation keys both per namespace
(a local profile or a server-side user id).

``migrate`` is safe to call on every startup: once the current key exists
it returns without writing anything. Legacy keys are never removed by it;
``purge_legacy`` does that explicitly, and only after the current copy is
in place.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from . import models
from .log import get_logger

logger = get_logger(__name__)

PREFIX = "goalpost"

# Generation 1
LEGACY_TASKS_KEY = f"{PREFIX}:tasks"
LEGACY_GOAL_KEY = f"{PREFIX}:goal"
LEGACY_NOTES_KEY = f"{PREFIX}:notes"
LEGACY_SUMMARY_KEY = f"{PREFIX}:summary"

# Generation 2
LEGACY_MILESTONES_KEY = f"{PREFIX}:milestones"
LEGACY_LAST_VIEW_KEY = f"{PREFIX}:last-view"
LEGACY_SUMMARY_PREFIX = f"{PREFIX}:summary:"

SOURCE_CURRENT = "current"
SOURCE_MULTI = "multi-milestone"
SOURCE_SINGLE = "single-milestone"
SOURCE_EMPTY = "empty"

LEGACY_GOAL_TITLE = "My Goals"


@dataclass(frozen=True)
class StorageKeys:
    namespace: str

    @property
    def milestones(self) -> str:
        return f"{PREFIX}:{self.namespace}:milestones"

    @property
    def last_view(self) -> str:
        return f"{PREFIX}:{self.namespace}:last-view"

    @property
    def unreadable(self) -> str:
        return f"{PREFIX}:{self.namespace}:unreadable"

    @property
    def unsynced(self) -> str:
        return f"{PREFIX}:{self.namespace}:unsynced"

    def summary(self, milestone_id: str) -> str:
        return f"{PREFIX}:{self.namespace}:summary:{milestone_id}"


@dataclass(frozen=True)
class MigrationResult:
    source: str
    milestones: List[Dict[str, Any]] = field(default_factory=list)
    last_view: Dict[str, Any] = field(default_factory=lambda: models.DASHBOARD.to_dict())

    @property
    def migrated(self) -> bool:
        return self.source in (SOURCE_MULTI, SOURCE_SINGLE)


def wrap_single_milestone(
    tasks: Optional[List[Any]],
    goal: Optional[Dict[str, Any]],
    notes: Optional[List[Any]],
    *,
    milestone_id: Optional[str] = None,
    created_at: Optional[str] = None,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Fold generation-1 data into one milestone record."""
    goal = goal if isinstance(goal, dict) else {}
    today_iso = (today or date.today()).isoformat()
    start = goal.get("startDate") or goal.get("endDate") or today_iso
    return {
        "id": milestone_id or models.new_id(),
        "title": goal.get("title") or LEGACY_GOAL_TITLE,
        "startDate": start,
        "endDate": goal.get("endDate") or start,
        "createdAt": created_at or models.now_iso(),
        "tasks": list(tasks or []),
        "standaloneNotes": list(notes or []),
    }


def migrate(
    store: Any,
    namespace: str,
    *,
    now: Optional[str] = None,
    id_factory: Callable[[], str] = models.new_id,
) -> MigrationResult:
    """Bring ``namespace`` up to the current generation inside ``store``.

    ``store`` needs ``get(key)`` and ``set(key, value)``.
    """
    keys = StorageKeys(namespace)

    current = store.get(keys.milestones)
    if current is not None:
        last_view = store.get(keys.last_view)
        return MigrationResult(
            source=SOURCE_CURRENT,
            milestones=current if isinstance(current, list) else [],
            last_view=models.ViewState.from_dict(last_view).to_dict(),
        )

    summaries: Dict[str, Any] = {}
    multi = store.get(LEGACY_MILESTONES_KEY)
    if isinstance(multi, list):
        milestones = multi
        last_view = models.ViewState.from_dict(store.get(LEGACY_LAST_VIEW_KEY)).to_dict()
        for item in milestones:
            milestone_id = item.get("id") if isinstance(item, dict) else None
            if not milestone_id:
                continue
            summary = store.get(f"{LEGACY_SUMMARY_PREFIX}{milestone_id}")
            if summary is not None:
                summaries[milestone_id] = summary
        source = SOURCE_MULTI
    else:
        tasks = store.get(LEGACY_TASKS_KEY)
        goal = store.get(LEGACY_GOAL_KEY)
        notes = store.get(LEGACY_NOTES_KEY)
        if tasks is None and goal is None and notes is None:
            milestones = []
            source = SOURCE_EMPTY
        else:
            wrapped = wrap_single_milestone(tasks, goal, notes, milestone_id=id_factory(), created_at=now)
            milestones = [wrapped]
            summary = store.get(LEGACY_SUMMARY_KEY)
            if summary is not None:
                summaries[wrapped["id"]] = summary
            source = SOURCE_SINGLE
        last_view = models.DASHBOARD.to_dict()

    # Milestones go last: their presence marks the namespace as migrated.
    for milestone_id, summary in summaries.items():
        store.set(keys.summary(milestone_id), summary)
    store.set(keys.last_view, last_view)
    store.set(keys.milestones, milestones)

    if source != SOURCE_EMPTY:
        logger.info("Migrated %s data into namespace '%s' (%d milestones)", source, namespace, len(milestones))
    return MigrationResult(source=source, milestones=milestones, last_view=last_view)


def legacy_keys(store: Any) -> List[str]:
    candidates = [
        LEGACY_TASKS_KEY,
        LEGACY_GOAL_KEY,
        LEGACY_NOTES_KEY,
        LEGACY_SUMMARY_KEY,
        LEGACY_MILESTONES_KEY,
        LEGACY_LAST_VIEW_KEY,
    ]
    found = [key for key in candidates if store.get(key) is not None]
    multi = store.get(LEGACY_MILESTONES_KEY)
    if isinstance(multi, list):
        for item in multi:
            if isinstance(item, dict) and item.get("id"):
                key = f"{LEGACY_SUMMARY_PREFIX}{item['id']}"
                if store.get(key) is not None:
                    found.append(key)
    return found


def purge_legacy(store: Any, namespace: str) -> List[str]:
    """Delete legacy keys once ``namespace`` holds a current-generation copy."""
    if store.get(StorageKeys(namespace).milestones) is None:
        raise RuntimeError(f"Namespace '{namespace}' has not been migrated; refusing to delete legacy data")
    removed = legacy_keys(store)
    for key in removed:
        store.delete(key)
    if removed:
        logger.info("Removed %d legacy keys", len(removed))
    return removed
