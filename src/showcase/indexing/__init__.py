"""Incremental ingestion of Discord image attachments."""

from .errors import (  # noqa: F401
    AttachmentDownloadError,
    ConfigurationError,
    DiscordApiError,
    IndexingError,
    PersistenceError,
    RateLimitedError,
    StorageLockError,
)
