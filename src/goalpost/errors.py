"""Exception hierarchy shared across goalpost modules."""
from __future__ import annotations


class GoalpostError(Exception):
    """Base class for all goalpost errors."""


class ValidationError(GoalpostError, ValueError):
    """Input rejected: bad dates, unknown status, empty title."""


class DuplicateIdError(GoalpostError, ValueError):
    """An id already exists in the target collection."""


class NotFoundError(GoalpostError, KeyError):
    """A referenced milestone, task, subtask or note does not exist."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "not found"


class RemoteUnavailable(GoalpostError):
    """The remote store could not be reached (network failure or timeout)."""


class RemoteError(GoalpostError):
    """The remote store answered with a non-success status."""


class SummaryError(GoalpostError):
    """Summary generation failed."""
