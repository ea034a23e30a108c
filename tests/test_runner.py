from __future__ import annotations

import asyncio
import json
import threading
from pathlib import Path

import pytest

from conftest import NOW
from shared.db import write_config
from showcase.indexing.config import IndexingSettings
from showcase.indexing.errors import ConfigurationError, StorageLockError
from showcase.indexing.events import INDEXING_COMPLETE, INDEXING_ERROR, INDEXING_STATUS, QueueObserver
from showcase.indexing.models.contracts import AppConfig
from showcase.indexing.runner import load_app_config, save_app_config, start_initial_indexing


class OnePageFetcher:
    def __init__(self, pages) -> None:
        self.pages = list(pages)

    async def fetch_page(self, channel_id: str, before: str | None = None):
        return self.pages.pop(0) if self.pages else []


class ExplodingFetcher:
    """Crashes on channel 200 and serves one message elsewhere."""

    def __init__(self, make_message) -> None:
        self.make_message = make_message

    async def fetch_page(self, channel_id: str, before: str | None = None):
        if channel_id == "200":
            raise RuntimeError("socket exploded")
        return [] if before else [self.make_message(80, channel_id=channel_id)]


class CrashingDownloader:
    async def is_cached(self, message_id, attachment) -> bool:
        raise RuntimeError("cache volume gone")

    async def ensure_local(self, message_id, attachment) -> str:
        raise AssertionError("not reached")


class StaticDownloader:
    async def is_cached(self, message_id, attachment) -> bool:
        return True

    async def ensure_local(self, message_id, attachment) -> str:
        return f"cached/{message_id}_{attachment.id}.png"


def _settings(tmp_path: Path, token: str = "secret") -> IndexingSettings:
    return IndexingSettings(discord_token=token, data_root=tmp_path)


def test_app_config_round_trips_through_config_table(db) -> None:
    save_app_config(db, AppConfig(selected_server_id="77", selected_channel_ids=["1", "2"], is_setup_complete=True))

    config = load_app_config(db)

    assert config.selected_server_id == "77"
    assert config.selected_channel_ids == ["1", "2"]
    assert config.is_setup_complete


def test_corrupt_channel_selection_reads_as_empty(db) -> None:
    write_config(db, {"selected_channel_ids": "{not json"})
    assert load_app_config(db).selected_channel_ids == []


@pytest.mark.asyncio
async def test_start_indexing_uses_saved_selection_and_returns_task(db, make_message, tmp_path: Path) -> None:
    write_config(db, {"selected_channel_ids": json.dumps(["100"])})
    observer = QueueObserver()

    task = await start_initial_indexing(
        db,
        observer,
        settings=_settings(tmp_path),
        fetcher=OnePageFetcher([[make_message(5)]]),
        downloader=StaticDownloader(),
        now=NOW,
    )
    assert task is not None
    summary = await task

    events = []
    while not observer.queue.empty():
        events.append(observer.queue.get_nowait())
    assert events[0].name == INDEXING_STATUS
    assert events[-1].name == INDEXING_COMPLETE
    assert events[-1].payload == "Indexing finished. 1 messages with images processed."
    assert summary.messages_persisted == 1


@pytest.mark.asyncio
async def test_start_indexing_without_channels_reports_status(db, observer, tmp_path: Path) -> None:
    task = await start_initial_indexing(db, observer, settings=_settings(tmp_path))

    assert task is None
    assert observer.events == [(INDEXING_STATUS, "No channels selected")]


@pytest.mark.asyncio
async def test_start_indexing_requires_token(db, observer, tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        await start_initial_indexing(db, observer, settings=_settings(tmp_path, token=""), channel_ids=["100"])


@pytest.mark.asyncio
async def test_fetch_crash_stops_only_that_channel(db, observer, make_message, tmp_path: Path) -> None:
    task = await start_initial_indexing(
        db,
        observer,
        settings=_settings(tmp_path),
        channel_ids=["200", "300"],
        fetcher=ExplodingFetcher(make_message),
        downloader=StaticDownloader(),
        now=NOW,
    )

    summary = await task

    assert observer.named(INDEXING_ERROR) == ["Fetch Error 200: socket exploded"]
    assert [c.stop_reason for c in summary.channels] == ["fetch_error", "exhausted"]
    assert summary.messages_persisted == 1
    assert observer.events[-1] == (INDEXING_COMPLETE, "Indexing finished. 1 messages with images processed.")


@pytest.mark.asyncio
async def test_unexpected_failure_is_reported_and_completes(db, observer, make_message, tmp_path: Path) -> None:
    task = await start_initial_indexing(
        db,
        observer,
        settings=_settings(tmp_path),
        channel_ids=["100"],
        fetcher=OnePageFetcher([[make_message(5)]]),
        downloader=CrashingDownloader(),
        now=NOW,
    )

    summary = await task

    assert observer.named(INDEXING_ERROR) == ["Task Error: cache volume gone"]
    assert observer.events[-1][0] == INDEXING_COMPLETE
    assert summary.errors == ["Task Error: cache volume gone"]


@pytest.mark.asyncio
async def test_saved_selection_is_read_without_blocking_the_loop(db, observer, tmp_path: Path) -> None:
    held = threading.Event()
    release = threading.Event()

    def hold_guard() -> None:
        with db.guard():
            held.set()
            release.wait(timeout=5)

    holder = threading.Thread(target=hold_guard)
    holder.start()
    assert held.wait(timeout=5)

    ticks = 0

    async def ticker() -> None:
        nonlocal ticks
        while True:
            await asyncio.sleep(0.01)
            ticks += 1

    tick_task = asyncio.create_task(ticker())
    try:
        with pytest.raises(StorageLockError):
            await start_initial_indexing(db, observer, settings=_settings(tmp_path))
    finally:
        tick_task.cancel()
        release.set()
        holder.join()

    # the guard times out after 0.5s; a blocked loop would not tick at all
    assert ticks >= 10
