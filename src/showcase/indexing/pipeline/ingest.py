from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence

from shared.logging import get_logger

from ..errors import (
    AttachmentDownloadError,
    ConfigurationError,
    DiscordApiError,
    PersistenceError,
    RateLimitedError,
)
from ..events import (
    INDEXING_COMPLETE,
    INDEXING_ERROR,
    INDEXING_PROGRESS,
    INDEXING_STATUS,
    Observer,
    safe_emit,
)
from ..models.contracts import AttachmentMetadata, Message
from ..sdk.client import parse_snowflake, sort_oldest_first
from .cutoff import CutoffPolicy
from .filters import is_qualifying_image
from .types import BatchItem, ChannelProgress, RunSummary

logger = get_logger("indexing.pipeline")

RATE_LIMIT_DELAY_SECONDS = 5.0


class PageFetcher(Protocol):
    async def fetch_page(self, channel_id: str, before: str | None = None) -> List[Message]:
        ...


class Downloader(Protocol):
    async def is_cached(self, message_id: str, attachment: AttachmentMetadata) -> bool:
        ...

    async def ensure_local(self, message_id: str, attachment: AttachmentMetadata) -> str:
        ...


class BatchPersister(Protocol):
    async def commit(self, batch: Sequence[BatchItem]) -> int:
        ...


class IngestionOrchestrator:
    """Walks each channel's history newest page first and stores image messages.

    Per page: fetch, sort oldest-first, drop messages before the cutoff,
    resolve attachments, commit the survivors in one transaction. A channel
    stops on an empty page, a page that crossed the cutoff, or a fetch error
    other than rate limiting. Channels run one after another.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        downloader: Downloader,
        persister: BatchPersister,
        observer: Observer,
        *,
        cutoff: CutoffPolicy | None = None,
        rate_limit_delay: float = RATE_LIMIT_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._fetcher = fetcher
        self._downloader = downloader
        self._persister = persister
        self._observer = observer
        self.cutoff = cutoff or CutoffPolicy.for_now()
        self._rate_limit_delay = rate_limit_delay
        self._sleep = sleep

    def _emit(self, event_name: str, payload: str) -> None:
        safe_emit(self._observer, event_name, payload)

    async def run(self, channel_ids: Sequence[str]) -> RunSummary:
        summary = RunSummary()
        if not channel_ids:
            logger.warning("indexing_no_channels")
            self._emit(INDEXING_STATUS, "No channels selected")
            return summary

        logger.info(
            "indexing_started",
            cutoff=self.cutoff.cutoff.isoformat(),
            cutoff_ts=self.cutoff.cutoff_ts,
            channels=list(channel_ids),
        )
        for channel_id in channel_ids:
            try:
                parse_snowflake(channel_id)
            except ConfigurationError:
                logger.error("indexing_invalid_channel", channel_id=channel_id)
                error = f"Invalid channel ID: {channel_id}"
                summary.errors.append(error)
                self._emit(INDEXING_ERROR, error)
                continue
            await self.index_channel(channel_id.strip(), summary)

        logger.info(
            "indexing_finished",
            messages_fetched=summary.messages_fetched,
            messages_persisted=summary.messages_persisted,
            attachments_saved=summary.attachments_saved,
            errors=len(summary.errors),
        )
        self._emit(
            INDEXING_COMPLETE,
            f"Indexing finished. {summary.messages_persisted} messages with images processed.",
        )
        return summary

    async def index_channel(self, channel_id: str, summary: RunSummary) -> ChannelProgress:
        progress = ChannelProgress(channel_id=channel_id)
        summary.channels.append(progress)
        log = logger.bind(channel_id=channel_id)
        log.info("channel_started")
        self._emit(INDEXING_STATUS, f"Starting to fetch channel with id: {channel_id}")

        while True:
            page = await self._fetch_with_retry(progress, summary)
            if page is None:
                break
            if not page:
                log.info("channel_history_exhausted", pages=progress.pages_fetched)
                progress.stop_reason = "exhausted"
                break

            page = sort_oldest_first(page)
            next_cursor = page[0].id
            if progress.cursor is not None and int(next_cursor) >= int(progress.cursor):
                # a page that does not move backwards would loop forever
                log.error("channel_cursor_stalled", cursor=progress.cursor, next_cursor=next_cursor)
                error = f"Fetch Error {channel_id}: cursor did not advance past {progress.cursor}"
                summary.errors.append(error)
                self._emit(INDEXING_ERROR, error)
                progress.stop_reason = "cursor_stalled"
                break
            progress.cursor = next_cursor
            progress.pages_fetched += 1
            progress.messages_fetched += len(page)
            self._emit(
                INDEXING_PROGRESS,
                f"Fetched {summary.messages_fetched} message metadata total",
            )

            batch, reached_cutoff = await self._process_page(page, progress, summary)
            if batch:
                await self._persist(channel_id, batch, progress, summary)

            if reached_cutoff:
                log.info("channel_reached_cutoff", cursor=progress.cursor)
                progress.reached_cutoff = True
                progress.stop_reason = "cutoff"
                break

        log.info(
            "channel_finished",
            stop_reason=progress.stop_reason,
            pages=progress.pages_fetched,
            messages_fetched=progress.messages_fetched,
            messages_persisted=progress.messages_persisted,
            attachments_saved=progress.attachments_saved,
        )
        return progress

    async def _fetch_with_retry(
        self, progress: ChannelProgress, summary: RunSummary
    ) -> Optional[List[Message]]:
        """Fetch the page before the current cursor; None means stop the channel."""
        while True:
            try:
                return await self._fetcher.fetch_page(progress.channel_id, before=progress.cursor)
            except RateLimitedError as exc:
                logger.warning(
                    "channel_rate_limited",
                    channel_id=progress.channel_id,
                    cursor=progress.cursor,
                    retry_after=exc.retry_after,
                    delay=self._rate_limit_delay,
                )
                self._emit(INDEXING_STATUS, "Rate limited, waiting...")
                await self._sleep(self._rate_limit_delay)
            except DiscordApiError as exc:
                logger.error(
                    "channel_fetch_failed",
                    channel_id=progress.channel_id,
                    cursor=progress.cursor,
                    status_code=exc.status_code,
                    error=str(exc),
                )
                error = f"Fetch Error {progress.channel_id}: {exc}"
                summary.errors.append(error)
                self._emit(INDEXING_ERROR, error)
                progress.stop_reason = "fetch_error"
                return None
            except Exception as exc:
                logger.exception(
                    "channel_fetch_crashed",
                    channel_id=progress.channel_id,
                    cursor=progress.cursor,
                    error=str(exc),
                )
                error = f"Fetch Error {progress.channel_id}: {exc}"
                summary.errors.append(error)
                self._emit(INDEXING_ERROR, error)
                progress.stop_reason = "fetch_error"
                return None

    async def _process_page(
        self, page: Sequence[Message], progress: ChannelProgress, summary: RunSummary
    ) -> tuple[List[BatchItem], bool]:
        batch: List[BatchItem] = []
        reached_cutoff = False
        # Every message is checked; sorting can leave in-window messages after old ones
        for message in page:
            if not self.cutoff.in_window(message):
                reached_cutoff = True
                continue
            item = await self._resolve_attachments(message, progress, summary)
            if item is not None:
                batch.append(item)
        return batch, reached_cutoff

    async def _resolve_attachments(
        self, message: Message, progress: ChannelProgress, summary: RunSummary
    ) -> Optional[BatchItem]:
        saved: List[str] = []
        for attachment in message.attachments:
            if not is_qualifying_image(attachment.filename, attachment.content_type):
                continue
            if not await self._downloader.is_cached(message.id, attachment):
                self._emit(
                    INDEXING_STATUS,
                    f"Downloading: {attachment.filename}... ({summary.attachments_saved} indexed)",
                )
            try:
                saved.append(await self._downloader.ensure_local(message.id, attachment))
            except AttachmentDownloadError as exc:
                logger.error(
                    "message_attachments_failed",
                    channel_id=progress.channel_id,
                    message_id=message.id,
                    attachment_id=exc.attachment_id,
                    error=str(exc),
                )
                error = f"Failed to process attachments for message {message.id}: {exc}"
                summary.errors.append(error)
                self._emit(INDEXING_ERROR, error)
                return None

        if not saved:
            return None
        progress.attachments_saved += len(saved)
        return BatchItem(message=message, saved_paths=saved)

    async def _persist(
        self,
        channel_id: str,
        batch: List[BatchItem],
        progress: ChannelProgress,
        summary: RunSummary,
    ) -> None:
        try:
            inserted = await self._persister.commit(batch)
        except PersistenceError as exc:
            logger.error("batch_commit_failed", channel_id=channel_id, count=len(batch), error=str(exc))
            summary.errors.append(str(exc))
            self._emit(INDEXING_ERROR, str(exc))
            return
        progress.messages_persisted += len(batch)
        logger.info("batch_committed", channel_id=channel_id, count=len(batch), inserted=inserted)


__all__ = ["IngestionOrchestrator", "RATE_LIMIT_DELAY_SECONDS"]
