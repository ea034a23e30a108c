"""Observer contract for indexing runs.

The ingestion core reports user-facing progress only through an injected
observer. Delivery is fire-and-forget: :func:`safe_emit` swallows and logs
whatever the observer raises so a broken sink can never stall a run.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Protocol

from shared.logging import get_logger

logger = get_logger("indexing.events")

INDEXING_STATUS = "indexing-status"
INDEXING_PROGRESS = "indexing-progress"
INDEXING_ERROR = "indexing-error"
INDEXING_COMPLETE = "indexing-complete"

EVENT_NAMES = frozenset({INDEXING_STATUS, INDEXING_PROGRESS, INDEXING_ERROR, INDEXING_COMPLETE})


@dataclass(frozen=True, slots=True)
class IndexingEvent:
    name: str
    payload: str


class Observer(Protocol):
    def emit(self, event_name: str, payload: str) -> None:
        ...


class QueueObserver:
    """Pushes events onto an asyncio queue consumed by the UI side."""

    def __init__(self, queue: asyncio.Queue[IndexingEvent] | None = None) -> None:
        self.queue: asyncio.Queue[IndexingEvent] = queue if queue is not None else asyncio.Queue()

    def emit(self, event_name: str, payload: str) -> None:
        # put_nowait so a slow consumer never blocks the producer
        self.queue.put_nowait(IndexingEvent(event_name, payload))


class LoggingObserver:
    """Writes every event to the structured log; used by the CLI."""

    def __init__(self) -> None:
        self._logger = get_logger("indexing.observer")

    def emit(self, event_name: str, payload: str) -> None:
        if event_name == INDEXING_ERROR:
            self._logger.warning(event_name, detail=payload)
        else:
            self._logger.info(event_name, detail=payload)


def safe_emit(observer: Observer, event_name: str, payload: str) -> None:
    try:
        observer.emit(event_name, payload)
    except Exception as exc:
        logger.debug("observer_emit_failed", event_name=event_name, error=str(exc))


__all__ = [
    "EVENT_NAMES",
    "INDEXING_COMPLETE",
    "INDEXING_ERROR",
    "INDEXING_PROGRESS",
    "INDEXING_STATUS",
    "IndexingEvent",
    "LoggingObserver",
    "Observer",
    "QueueObserver",
    "safe_emit",
]
