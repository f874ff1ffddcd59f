"""Goalpost: time-boxed milestones, tasks and journal notes."""

__version__ = "0.1.0"
