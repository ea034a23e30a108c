from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from ..models.contracts import Message


@dataclass(slots=True)
class BatchItem:
    """A message that passed attachment resolution, with its cached paths."""

    message: Message
    saved_paths: List[str]


@dataclass(slots=True)
class ChannelProgress:
    channel_id: str
    cursor: str | None = None
    pages_fetched: int = 0
    messages_fetched: int = 0
    messages_persisted: int = 0
    attachments_saved: int = 0
    reached_cutoff: bool = False
    stop_reason: str | None = None


@dataclass(slots=True)
class RunSummary:
    channels: List[ChannelProgress] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def messages_fetched(self) -> int:
        return sum(channel.messages_fetched for channel in self.channels)

    @property
    def messages_persisted(self) -> int:
        return sum(channel.messages_persisted for channel in self.channels)

    @property
    def attachments_saved(self) -> int:
        return sum(channel.attachments_saved for channel in self.channels)


__all__ = ["BatchItem", "ChannelProgress", "RunSummary"]
