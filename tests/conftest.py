"""Shared fixtures for the goalpost test suite."""

from datetime import date

import pytest

from goalpost import models
from goalpost.repository import MilestoneRepository
from goalpost.state import LocalCache


@pytest.fixture
def cache(tmp_path):
    """A local cache backed by a file in a temporary directory."""
    return LocalCache(tmp_path / "cache.json")


@pytest.fixture
def repo(cache):
    """An initialized, empty repository in the default namespace."""
    return MilestoneRepository(cache, "default").initialize()


@pytest.fixture
def q1_milestone():
    """The Q1 2026 milestone with one task carrying three subtasks."""
    task = models.Task(
        id="run",
        title="Run 100 miles",
        subtasks=(
            models.Subtask(id="run-1", title="Week 1", status=models.COMPLETE),
            models.Subtask(id="run-2", title="Week 2"),
            models.Subtask(id="run-3", title="Week 3"),
        ),
    )
    return models.Milestone(
        id="q1",
        title="Q1",
        start_date=date(2026, 1, 1),
        end_date=date(2026, 3, 31),
        created_at="2026-01-01T00:00:00+00:00",
        tasks=(task,),
    )
