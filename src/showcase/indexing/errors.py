from __future__ import annotations


class IndexingError(Exception):
    """Base exception for indexing failures."""


class ConfigurationError(IndexingError):
    """Invalid channel/guild id, missing token, or unreadable settings."""


class DiscordApiError(IndexingError):
    """Remote history request failed for a reason other than rate limiting."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(DiscordApiError):
    """HTTP 429 from the Discord API."""

    def __init__(self, message: str, *, retry_after: float | None = None) -> None:
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class AttachmentDownloadError(IndexingError):
    """One attachment could not be fetched or written to the cache."""

    def __init__(self, message: str, *, message_id: str, attachment_id: str) -> None:
        super().__init__(message)
        self.message_id = message_id
        self.attachment_id = attachment_id


class PersistenceError(IndexingError):
    """A batch transaction failed and was rolled back."""


class StorageLockError(PersistenceError):
    """The storage guard could not be acquired."""


__all__ = [
    "AttachmentDownloadError",
    "ConfigurationError",
    "DiscordApiError",
    "IndexingError",
    "PersistenceError",
    "RateLimitedError",
    "StorageLockError",
]
