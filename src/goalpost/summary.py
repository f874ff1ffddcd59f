"""End-of-milestone reflection: prompt assembly and the LLM round trip."""
from __future__ import annotations

import itertools
import json
import socket
import threading
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from urllib import error as urllib_error, request as urllib_request

from . import models
from .errors import GoalpostError, NotFoundError, SummaryError, ValidationError
from .log import get_logger
from .models import Goal, Milestone, Note, Task

logger = get_logger(__name__)

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
MAX_TOKENS = 1000
MAX_LISTED_NOTES = 15

INSTRUCTIONS = """Please write a warm, reflective summary (3-4 paragraphs) that:
1. Celebrates what was accomplished
2. Notes any patterns or themes from the notes and tasks
3. Gently acknowledges what didn't get done without being critical
4. Offers an encouraging perspective on the journey

Keep the tone personal and supportive, like a thoughtful friend helping them reflect. Don't use bullet points. Don't open with generic praise. Be specific to their actual accomplishments."""


def request_payload(milestone: Milestone) -> Dict[str, Any]:
    return {
        "tasks": [task.to_dict() for task in milestone.tasks],
        "standaloneNotes": [note.to_dict() for note in milestone.standalone_notes],
        "goal": Goal.of(milestone).to_dict(),
    }


def parse_request(payload: Any) -> Tuple[List[Task], List[Note], Goal]:
    """Validate a ``{tasks, standaloneNotes, goal}`` body."""
    if not isinstance(payload, dict):
        raise ValidationError("Missing required data")
    tasks = payload.get("tasks")
    goal = payload.get("goal")
    if not isinstance(tasks, list) or not isinstance(goal, dict):
        raise ValidationError("Missing required data")
    start = models.parse_date(goal.get("startDate"))
    end = models.parse_date(goal.get("endDate"))
    if not goal.get("title") or start is None or end is None:
        raise ValidationError("Goal needs title, startDate and endDate")
    notes = payload.get("standaloneNotes") or []
    return (
        [Task.from_dict(item) for item in tasks if isinstance(item, dict)],
        [Note.from_dict(item) for item in notes if isinstance(item, dict)],
        Goal(str(goal["title"]), start, end),
    )


def _month_day(value: date) -> str:
    return f"{value:%B} {value.day}"


def _journal(tasks: Sequence[Task], standalone_notes: Sequence[Note]) -> List[Tuple[date, Optional[str], str]]:
    entries = [(note.date, task.title, note.content) for task in tasks for note in task.notes]
    entries.extend((note.date, None, note.content) for note in standalone_notes)
    entries.sort(key=lambda entry: entry[0])
    return entries


def _titles(tasks: Sequence[Task]) -> str:
    return "\n".join(f"- {task.title}" for task in tasks) or "(none)"


def build_prompt(tasks: Sequence[Task], standalone_notes: Sequence[Note], goal: Goal) -> str:
    completed = [task for task in tasks if task.status == models.COMPLETE]
    in_progress = [task for task in tasks if task.status == models.IN_PROGRESS]
    not_started = [task for task in tasks if task.status == models.NOT_STARTED]
    stats = models.progress(tasks)

    completed_lines = []
    for task in completed:
        line = f"- {task.title}"
        if task.subtasks:
            done = sum(1 for subtask in task.subtasks if subtask.status == models.COMPLETE)
            line += f" ({done}/{len(task.subtasks)} subtasks)"
        completed_lines.append(line)

    journal = _journal(tasks, standalone_notes)
    note_lines = [
        f"- [{on.isoformat()}]{f' ({title})' if title else ''}: \"{content}\""
        for on, title, content in journal[:MAX_LISTED_NOTES]
    ]

    lines = [
        "You are helping someone reflect on their goal-tracking milestone. Here's their data:",
        "",
        f"**Goal:** {goal.title}",
        f"**Period:** {_month_day(goal.start_date)} to {_month_day(goal.end_date)}, {goal.end_date.year}",
        f"**Overall Completion:** {stats.percent}% ({stats.completed_items}/{stats.total_items} items)",
        "",
        f"**Completed Tasks ({len(completed)}):**",
        "\n".join(completed_lines) or "(none)",
        "",
        f"**In Progress ({len(in_progress)}):**",
        _titles(in_progress),
        "",
        f"**Not Started ({len(not_started)}):**",
        _titles(not_started),
        "",
        f"**Journal Notes ({len(journal)} entries):**",
        "\n".join(note_lines) or "(no notes)",
    ]
    if len(journal) > MAX_LISTED_NOTES:
        lines.append(f"\n... and {len(journal) - MAX_LISTED_NOTES} more notes")
    lines.extend(["", INSTRUCTIONS])
    return "\n".join(lines)


class AnthropicSummarizer:
    """Minimal Messages API client."""

    def __init__(self, api_key: Optional[str], model: str, timeout: float = 30.0, url: str = ANTHROPIC_URL) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.url = url

    def __call__(self, prompt: str) -> str:
        if not self.api_key:
            raise SummaryError("ANTHROPIC_API_KEY is not configured")
        body = json.dumps(
            {
                "model": self.model,
                "max_tokens": MAX_TOKENS,
                "messages": [{"role": "user", "content": prompt}],
            }
        ).encode("utf-8")
        request_obj = urllib_request.Request(
            self.url,
            data=body,
            method="POST",
            headers={
                "Content-Type": "application/json",
                "x-api-key": self.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
            },
        )
        try:
            with urllib_request.urlopen(request_obj, timeout=self.timeout) as response:
                data = json.loads(response.read().decode("utf-8"))
        except urllib_error.HTTPError as exc:
            logger.error("Anthropic API error %s: %s", exc.code, exc.read().decode("utf-8", errors="replace"))
            raise SummaryError("Failed to generate summary") from exc
        except (urllib_error.URLError, socket.timeout, TimeoutError, ConnectionError, json.JSONDecodeError) as exc:
            logger.error("Summary generation error: %s", exc)
            raise SummaryError("Failed to generate summary") from exc
        return extract_text(data)


def extract_text(data: Any) -> str:
    content = data.get("content") if isinstance(data, dict) else None
    if isinstance(content, list) and content and isinstance(content[0], dict):
        text = content[0].get("text")
        if isinstance(text, str) and text:
            return text
    raise SummaryError("Unexpected response format")


class SummaryService:
    """Client-side summary requests with stale-response protection.

    Each request gets a tag; a response is applied only if its tag is still
    the newest one issued, so an older request finishing late cannot
    overwrite a newer summary.
    """

    def __init__(self, repository: Any, request_fn: Callable[[Dict[str, Any]], str]) -> None:
        self.repository = repository
        self.request_fn = request_fn
        self._tags = itertools.count(1)
        self._latest = 0
        self._lock = threading.Lock()

    def begin(self) -> int:
        with self._lock:
            self._latest = next(self._tags)
            return self._latest

    def is_current(self, tag: int) -> bool:
        with self._lock:
            return tag == self._latest

    def generate(self, milestone_id: str) -> Optional[str]:
        """Request a fresh summary; returns None if superseded meanwhile."""
        milestone = self.repository.get(milestone_id)
        tag = self.begin()
        try:
            text = self.request_fn(request_payload(milestone))
        except GoalpostError as exc:
            raise SummaryError(f"Unable to generate summary: {exc}") from exc
        return self.apply(tag, milestone_id, text)

    def apply(self, tag: int, milestone_id: str, text: str) -> Optional[str]:
        if not self.is_current(tag):
            logger.info("Discarding stale summary response (request %d)", tag)
            return None
        try:
            self.repository.save_summary(milestone_id, text)
        except NotFoundError:
            logger.info("Milestone %s was deleted before its summary arrived", milestone_id)
            return None
        return text
