"""SQLite persistence for submitted generation jobs."""

from .jobs import JobStore

__all__ = ["JobStore"]
