"""Local persistence for normalized messages."""

from .sqlite import SqliteMessageRepository

__all__ = ["SqliteMessageRepository"]
