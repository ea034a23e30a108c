"""Message storage."""

from .sqlite import SqliteMessageRepository  # noqa: F401
