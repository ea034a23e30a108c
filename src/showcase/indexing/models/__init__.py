"""Pydantic models shared by the client, pipeline and repository."""

from .contracts import (
    AppConfig,
    AttachmentMetadata,
    Author,
    CleanupStats,
    IndexedMessage,
    Message,
    SerializableChannel,
    SerializableGuild,
)

__all__ = [
    "AppConfig",
    "AttachmentMetadata",
    "Author",
    "CleanupStats",
    "IndexedMessage",
    "Message",
    "SerializableChannel",
    "SerializableGuild",
]
