from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from shared.logging import get_logger

logger = get_logger("indexing.contracts")

CDN_BASE = "https://cdn.discordapp.com"

# Discord serialises snowflakes as strings but older payloads and tests use ints
Snowflake = Annotated[str, BeforeValidator(lambda value: str(value))]


def _to_unix_seconds(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    if isinstance(value, str) and not value.lstrip("-").isdigit():
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return _to_unix_seconds(parsed)
    return value


def decode_attachment_paths(value: Any) -> Any:
    """Decode the JSON list stored in messages.attachments; empty or null is []."""
    if value is None:
        return []
    if isinstance(value, str):
        if not value or value == "null":
            return []
        return json.loads(value)
    return value


class Author(BaseModel):
    """Author snapshot captured with a message."""

    model_config = ConfigDict(frozen=True)

    id: Snowflake
    name: str
    avatar: str | None = None

    @property
    def avatar_url(self) -> str | None:
        if not self.avatar:
            return None
        ext = "gif" if self.avatar.startswith("a_") else "webp"
        return f"{CDN_BASE}/avatars/{self.id}/{self.avatar}.{ext}?size=1024"


class AttachmentMetadata(BaseModel):
    """Attachment descriptor as returned by the channel history endpoint."""

    model_config = ConfigDict(frozen=True)

    id: Snowflake
    filename: str
    url: str
    content_type: str | None = None
    width: int | None = None
    height: int | None = None


class Message(BaseModel):
    """Read-only snapshot of one remote message."""

    model_config = ConfigDict(frozen=True)

    id: Snowflake
    channel_id: Snowflake
    author: Author
    content: str = ""
    attachments: List[AttachmentMetadata] = Field(default_factory=list)
    timestamp: int

    @field_validator("timestamp", mode="before")
    @classmethod
    def coerce_timestamp(cls, value: Any) -> Any:
        return _to_unix_seconds(value)

    @property
    def snowflake(self) -> int:
        return int(self.id)

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "Message":
        author = payload.get("author") or {}
        return cls(
            id=payload["id"],
            channel_id=payload["channel_id"],
            author=Author(
                id=author.get("id", "0"),
                name=author.get("username") or author.get("global_name") or "",
                avatar=author.get("avatar"),
            ),
            content=payload.get("content") or "",
            attachments=[AttachmentMetadata(**item) for item in payload.get("attachments") or []],
            timestamp=payload["timestamp"],
        )


class IndexedMessage(BaseModel):
    """A row of the messages table, attachments decoded."""

    message_id: str
    channel_id: str
    author_id: str
    author_name: str
    author_avatar: str | None = None
    message_content: str
    attachments: List[str] = Field(default_factory=list)
    timestamp: int
    is_used: bool = False

    @field_validator("attachments", mode="before")
    @classmethod
    def decode_attachments(cls, value: Any) -> Any:
        return decode_attachment_paths(value)


class SerializableGuild(BaseModel):
    id: Snowflake
    name: str
    icon: str | None = None


class SerializableChannel(BaseModel):
    id: Snowflake
    name: str
    topic: str | None = None
    position: int = 0
    parent_id: Optional[Snowflake] = None
    parent_name: str | None = None


class AppConfig(BaseModel):
    """User selections persisted in the config table."""

    selected_server_id: str | None = None
    selected_channel_ids: List[str] = Field(default_factory=list)
    is_setup_complete: bool = False

    @classmethod
    def from_rows(cls, rows: Mapping[str, str]) -> "AppConfig":
        channel_ids: List[str] = []
        raw_channels = rows.get("selected_channel_ids")
        if raw_channels:
            try:
                decoded = json.loads(raw_channels)
            except json.JSONDecodeError:
                logger.error("config_channel_ids_invalid", value=raw_channels)
                decoded = []
            if isinstance(decoded, list):
                channel_ids = [str(item) for item in decoded]
            else:
                logger.error("config_channel_ids_invalid", value=raw_channels)
        return cls(
            selected_server_id=rows.get("selected_server_id"),
            selected_channel_ids=channel_ids,
            is_setup_complete=rows.get("is_setup_complete") == "true",
        )

    def to_rows(self) -> Dict[str, str]:
        rows = {
            "selected_channel_ids": json.dumps(self.selected_channel_ids),
            "is_setup_complete": "true" if self.is_setup_complete else "false",
        }
        if self.selected_server_id is not None:
            rows["selected_server_id"] = self.selected_server_id
        return rows


class CleanupStats(BaseModel):
    messages_deleted: int = 0
    files_deleted: int = 0
    skipped_used_messages: int = 0


__all__ = [
    "AppConfig",
    "AttachmentMetadata",
    "Author",
    "CleanupStats",
    "IndexedMessage",
    "Message",
    "SerializableChannel",
    "SerializableGuild",
    "decode_attachment_paths",
]
