from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, List, Optional

from shared.db import DbConnection, ensure_schema
from shared.logging import get_logger, setup_logging

from showcase.indexing.config import IndexingSettings, get_settings
from showcase.indexing.errors import IndexingError
from showcase.indexing.events import INDEXING_COMPLETE, LoggingObserver, QueueObserver
from showcase.indexing.repository.sqlite import SqliteMessageRepository
from showcase.indexing.runner import load_app_config, save_app_config, start_initial_indexing
from showcase.indexing.sdk.client import DiscordClient, parse_snowflake

logger = get_logger("indexer.cli")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Showcase Discord image indexer")
    parser.add_argument("--data-root", help="Directory holding the database and image cache")
    parser.add_argument("--db", help="Path to the SQLite database (default: <data-root>/showcase.db)")
    parser.add_argument("--log-level", default="INFO", help="Log level (default: %(default)s)")

    commands = parser.add_subparsers(dest="command", required=True)

    index = commands.add_parser("index", help="Index image messages since the start of last month")
    index.add_argument(
        "--channel",
        action="append",
        default=[],
        help="Channel id to index instead of the saved selection (can repeat)",
    )

    commands.add_parser("guilds", help="List guilds visible to the bot")

    channels = commands.add_parser("channels", help="List text channels of a guild")
    channels.add_argument("guild_id")

    select = commands.add_parser("select", help="Save the channels to index")
    select.add_argument("channel_ids", nargs="+")
    select.add_argument("--server", help="Guild id the channels belong to")

    commands.add_parser("messages", help="Print indexed messages, newest first")

    cleanup = commands.add_parser("cleanup", help="Delete old unused messages and cached files")
    cleanup.add_argument("--age-days", type=int, help="Override the retention age in days")

    return parser.parse_args(argv)


def _settings_for(args: argparse.Namespace) -> IndexingSettings:
    settings = get_settings()
    overrides: dict[str, Any] = {}
    if args.data_root:
        overrides["data_root"] = Path(args.data_root).expanduser().resolve()
    if args.db:
        overrides["database_path"] = Path(args.db).expanduser().resolve()
    return settings.model_copy(update=overrides) if overrides else settings


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2))


async def _index(args: argparse.Namespace, settings: IndexingSettings, db: DbConnection) -> int:
    observer = QueueObserver()
    sink = LoggingObserver()
    task = await start_initial_indexing(
        db,
        observer,
        settings=settings,
        channel_ids=args.channel or None,
    )
    if task is None:
        while not observer.queue.empty():
            event = observer.queue.get_nowait()
            sink.emit(event.name, event.payload)
        return 0

    while True:
        event = await observer.queue.get()
        sink.emit(event.name, event.payload)
        if event.name == INDEXING_COMPLETE:
            break

    summary = await task
    logger.info(
        "indexer_run_summary",
        channels=len(summary.channels),
        messages_fetched=summary.messages_fetched,
        messages_persisted=summary.messages_persisted,
        attachments_saved=summary.attachments_saved,
        errors=len(summary.errors),
    )
    return 0


async def _guilds(settings: IndexingSettings) -> int:
    async with DiscordClient(settings) as client:
        guilds = await client.list_guilds()
    _print_json([guild.model_dump() for guild in guilds])
    return 0


async def _channels(args: argparse.Namespace, settings: IndexingSettings) -> int:
    async with DiscordClient(settings) as client:
        channels = await client.list_channels(args.guild_id)
    _print_json([channel.model_dump() for channel in channels])
    return 0


def _select(args: argparse.Namespace, db: DbConnection) -> int:
    for channel_id in args.channel_ids:
        parse_snowflake(channel_id)
    if args.server:
        parse_snowflake(args.server, kind="Guild")
    config = load_app_config(db)
    updated = config.model_copy(
        update={
            "selected_server_id": args.server or config.selected_server_id,
            "selected_channel_ids": [channel_id.strip() for channel_id in args.channel_ids],
            "is_setup_complete": True,
        }
    )
    save_app_config(db, updated)
    return 0


async def _dispatch(args: argparse.Namespace, settings: IndexingSettings, db: DbConnection) -> int:
    if args.command == "index":
        return await _index(args, settings, db)
    if args.command == "guilds":
        return await _guilds(settings)
    if args.command == "channels":
        return await _channels(args, settings)
    if args.command == "select":
        return _select(args, db)
    if args.command == "messages":
        repository = SqliteMessageRepository(db)
        messages = await asyncio.to_thread(repository.list_messages)
        _print_json([message.model_dump() for message in messages])
        return 0
    if args.command == "cleanup":
        repository = SqliteMessageRepository(db)
        stats = await asyncio.to_thread(
            repository.clean_old_data,
            settings.image_cache_dir,
            age_days=args.age_days or settings.cleanup_age_days,
        )
        _print_json(stats.model_dump())
        return 0
    raise ValueError(f"unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)
    settings = _settings_for(args)

    db = DbConnection.open(settings.resolved_database_path, lock_timeout=settings.lock_timeout_seconds)
    try:
        ensure_schema(db)
        return asyncio.run(_dispatch(args, settings, db))
    except IndexingError as exc:
        logger.error("indexer_command_failed", command=args.command, error=str(exc))
        return 1
    except KeyboardInterrupt:
        logger.info("indexer_interrupted", command=args.command)
        return 130
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
