"""Entry points that wire settings, storage and the Discord client together."""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import List, Optional, Sequence, Set

import httpx

from shared.db import DatabaseLockError, DbConnection, read_config, write_config
from shared.logging import get_logger

from .config import IndexingSettings, get_settings
from .errors import StorageLockError
from .events import INDEXING_COMPLETE, INDEXING_ERROR, INDEXING_STATUS, Observer, safe_emit
from .models.contracts import AppConfig
from .pipeline.cutoff import CutoffPolicy
from .pipeline.downloader import AttachmentDownloader
from .pipeline.ingest import IngestionOrchestrator, PageFetcher
from .pipeline.types import RunSummary
from .repository.sqlite import SqliteMessageRepository
from .sdk.client import DiscordClient

logger = get_logger("indexing.runner")

# Strong references so the event loop does not drop running tasks
_background_tasks: Set[asyncio.Task] = set()


def load_app_config(db: DbConnection) -> AppConfig:
    try:
        rows = read_config(db)
    except DatabaseLockError as exc:
        raise StorageLockError(f"DB Lock error: {exc}") from exc
    return AppConfig.from_rows(rows)


def save_app_config(db: DbConnection, config: AppConfig) -> None:
    try:
        write_config(db, config.to_rows())
    except DatabaseLockError as exc:
        raise StorageLockError(f"DB Lock error: {exc}") from exc
    logger.info(
        "config_saved",
        selected_server_id=config.selected_server_id,
        channels=len(config.selected_channel_ids),
    )


async def _run_to_completion(
    orchestrator: IngestionOrchestrator,
    channel_ids: List[str],
    observer: Observer,
    closers: Sequence,
) -> RunSummary:
    try:
        return await orchestrator.run(channel_ids)
    except Exception as exc:
        logger.exception("indexing_task_failed", error=str(exc))
        safe_emit(observer, INDEXING_ERROR, f"Task Error: {exc}")
        safe_emit(observer, INDEXING_COMPLETE, "Indexing finished. 0 messages with images processed.")
        return RunSummary(errors=[f"Task Error: {exc}"])
    finally:
        for close in closers:
            try:
                await close()
            except httpx.HTTPError as exc:
                logger.warning("indexing_client_close_failed", error=str(exc))


async def start_initial_indexing(
    db: DbConnection,
    observer: Observer,
    *,
    settings: IndexingSettings | None = None,
    channel_ids: Optional[Sequence[str]] = None,
    fetcher: PageFetcher | None = None,
    downloader: AttachmentDownloader | None = None,
    now: datetime | None = None,
    sleep=asyncio.sleep,
) -> Optional["asyncio.Task[RunSummary]"]:
    """Start a background indexing run and return without waiting for it.

    Channels come from ``channel_ids`` or, when omitted, from the saved
    selection. With nothing to index a status event is emitted and None is
    returned. A missing token raises :class:`ConfigurationError` before any
    task is created; everything after that is reported through ``observer``.
    """
    settings = settings or get_settings()
    if channel_ids is None:
        channel_ids = (await asyncio.to_thread(load_app_config, db)).selected_channel_ids
    channels = list(channel_ids)
    if not channels:
        logger.warning("indexing_no_channels")
        safe_emit(observer, INDEXING_STATUS, "No channels selected")
        return None

    closers = []
    if fetcher is None:
        client = DiscordClient(settings)
        closers.append(client.aclose)
        fetcher = client
    if downloader is None:
        downloader = AttachmentDownloader(
            settings.image_cache_dir,
            timeout=settings.download_timeout_seconds,
        )
        closers.append(downloader.aclose)

    orchestrator = IngestionOrchestrator(
        fetcher,
        downloader,
        SqliteMessageRepository(db),
        observer,
        cutoff=CutoffPolicy.for_now(now),
        rate_limit_delay=settings.rate_limit_delay_seconds,
        sleep=sleep,
    )
    task = asyncio.create_task(
        _run_to_completion(orchestrator, channels, observer, closers),
        name="initial-indexing",
    )
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    logger.info("indexing_task_started", channels=channels)
    return task


__all__ = ["load_app_config", "save_app_config", "start_initial_indexing"]
