"""Built-in sample data used when neither the remote nor the cache has any."""
from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from . import models


def _note(note_id: str, content: str, on: date) -> Dict[str, Any]:
    return {"id": note_id, "content": content, "date": on.isoformat(), "createdAt": f"{on.isoformat()}T09:00:00+00:00"}


def sample_milestones(today: Optional[date] = None) -> List[Dict[str, Any]]:
    """Two milestones: one running now, one starting next month."""
    today = today or date.today()
    start = today - timedelta(days=10)
    created = f"{start.isoformat()}T08:00:00+00:00"
    later = today + timedelta(days=30)
    return [
        {
            "id": "sample-trip",
            "title": "Japan Trip",
            "startDate": start.isoformat(),
            "endDate": (today + timedelta(days=35)).isoformat(),
            "createdAt": created,
            "standaloneNotes": [
                _note("sample-trip-n1", "Check visa rules for a long stay", start + timedelta(days=2)),
            ],
            "tasks": [
                {
                    "id": "sample-trip-t1",
                    "title": "Book flights to Tokyo",
                    "status": models.COMPLETE,
                    "tags": ["Travel", "Planning"],
                    "dueDate": (start + timedelta(days=5)).isoformat(),
                    "subtasks": [],
                    "notes": [_note("sample-trip-t1-n1", "Found a good fare on a direct flight", start + timedelta(days=4))],
                },
                {
                    "id": "sample-trip-t2",
                    "title": "Research neighborhoods in Kyoto",
                    "status": models.IN_PROGRESS,
                    "tags": ["Travel", "Learning"],
                    "dueDate": today.isoformat(),
                    "subtasks": [
                        {"id": "sample-trip-t2-1", "title": "Gion", "status": models.COMPLETE},
                        {"id": "sample-trip-t2-2", "title": "Arashiyama", "status": models.IN_PROGRESS},
                        {"id": "sample-trip-t2-3", "title": "Higashiyama", "status": models.NOT_STARTED},
                    ],
                    "notes": [],
                },
                {
                    "id": "sample-trip-t3",
                    "title": "Learn basic Japanese phrases",
                    "status": models.NOT_STARTED,
                    "tags": ["Learning"],
                    "dueDate": None,
                    "subtasks": [],
                    "notes": [],
                },
            ],
        },
        {
            "id": "sample-fitness",
            "title": "Spring Fitness",
            "startDate": later.isoformat(),
            "endDate": (later + timedelta(days=60)).isoformat(),
            "createdAt": created,
            "standaloneNotes": [],
            "tasks": [
                {
                    "id": "sample-fitness-t1",
                    "title": "Run 100 miles",
                    "status": models.NOT_STARTED,
                    "tags": ["Health"],
                    "dueDate": None,
                    "subtasks": [],
                    "notes": [],
                },
            ],
        },
    ]
