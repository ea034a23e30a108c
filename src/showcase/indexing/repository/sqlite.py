from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, List, Sequence

from shared.db import DatabaseLockError, DbConnection
from shared.logging import get_logger

from ..errors import PersistenceError, StorageLockError
from ..models.contracts import CleanupStats, IndexedMessage, decode_attachment_paths
from ..pipeline.types import BatchItem

logger = get_logger("indexing.repository")

INSERT_MESSAGE_SQL = """
INSERT OR IGNORE INTO messages (
    message_id, channel_id, author_id, author_name, author_avatar,
    message_content, attachments, timestamp
) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
"""

SELECT_MESSAGES_SQL = """
SELECT message_id, channel_id, author_id, author_name, author_avatar,
       message_content, attachments, timestamp, is_used
FROM messages
ORDER BY timestamp DESC
"""


def _row_for(item: BatchItem) -> tuple[Any, ...]:
    msg = item.message
    return (
        msg.id,
        msg.channel_id,
        msg.author.id,
        msg.author.name,
        msg.author.avatar_url,
        msg.content,
        json.dumps(list(item.saved_paths)),
        msg.timestamp,
    )


class SqliteMessageRepository:
    """Message storage on the shared SQLite connection.

    Every write holds the connection guard for exactly one transaction.
    The async wrappers push the blocking work onto a worker thread.
    """

    def __init__(self, db: DbConnection) -> None:
        self._db = db

    def commit_batch(self, batch: Sequence[BatchItem]) -> int:
        """Insert-or-ignore every message of a page in one transaction.

        Returns the number of rows actually inserted; messages already
        stored are skipped silently. On failure nothing of the batch is kept.
        """
        if not batch:
            return 0
        rows = [_row_for(item) for item in batch]
        try:
            with self._db.transaction() as conn:
                cursor = conn.executemany(INSERT_MESSAGE_SQL, rows)
                inserted = cursor.rowcount
        except DatabaseLockError as exc:
            raise StorageLockError(f"DB Lock error: {exc}") from exc
        except sqlite3.Error as exc:
            raise PersistenceError(f"DB Error: {exc}") from exc
        logger.debug("batch_committed", count=len(rows), inserted=inserted)
        return inserted

    async def commit(self, batch: Sequence[BatchItem]) -> int:
        return await asyncio.to_thread(self.commit_batch, list(batch))

    def list_messages(self) -> List[IndexedMessage]:
        try:
            with self._db.guard() as conn:
                rows = conn.execute(SELECT_MESSAGES_SQL).fetchall()
        except DatabaseLockError as exc:
            raise StorageLockError(f"DB Lock error: {exc}") from exc
        messages = [IndexedMessage(**dict(row)) for row in rows]
        logger.info("indexed_messages_listed", count=len(messages))
        return messages

    def mark_used(self, message_ids: Iterable[str], used: bool = True) -> int:
        ids = list(message_ids)
        if not ids:
            return 0
        try:
            with self._db.transaction() as conn:
                cursor = conn.executemany(
                    "UPDATE messages SET is_used = ? WHERE message_id = ?",
                    [(int(used), message_id) for message_id in ids],
                )
                return cursor.rowcount
        except DatabaseLockError as exc:
            raise StorageLockError(f"DB Lock error: {exc}") from exc
        except sqlite3.Error as exc:
            raise PersistenceError(f"DB Error: {exc}") from exc

    def clean_old_data(
        self,
        cache_dir: Path,
        *,
        age_days: int = 30,
        now: datetime | None = None,
    ) -> CleanupStats:
        """Drop unused messages older than ``age_days`` and their cached files."""
        threshold = int(((now or datetime.now(timezone.utc)) - timedelta(days=age_days)).timestamp())
        logger.info("cleanup_started", threshold=threshold)

        try:
            with self._db.transaction() as conn:
                skipped = conn.execute(
                    "SELECT COUNT(*) FROM messages WHERE timestamp < ? AND is_used = 1",
                    (threshold,),
                ).fetchone()[0]
                rows = conn.execute(
                    "SELECT message_id, attachments FROM messages WHERE timestamp < ? AND is_used = 0",
                    (threshold,),
                ).fetchall()
                conn.executemany(
                    "DELETE FROM messages WHERE message_id = ?",
                    [(row["message_id"],) for row in rows],
                )
        except DatabaseLockError as exc:
            raise StorageLockError(f"DB Lock error: {exc}") from exc
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to clean old messages: {exc}") from exc

        attachments: List[str] = []
        for row in rows:
            try:
                attachments.extend(decode_attachment_paths(row["attachments"]))
            except ValueError:
                logger.warning("cleanup_attachments_unreadable", message_id=row["message_id"])

        files_deleted = 0
        # Stored paths are relative to the images root: "cached/<file>"
        images_root = cache_dir.parent
        for relative in attachments:
            path = images_root / relative
            if not path.exists():
                continue
            try:
                path.unlink()
                files_deleted += 1
            except OSError as exc:
                logger.warning("cleanup_file_delete_failed", path=str(path), error=str(exc))

        stats = CleanupStats(
            messages_deleted=len(rows),
            files_deleted=files_deleted,
            skipped_used_messages=int(skipped),
        )
        logger.info("cleanup_completed", **stats.model_dump())
        return stats


__all__ = ["SqliteMessageRepository", "INSERT_MESSAGE_SQL"]
