import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

SRC = ROOT / "src"
if SRC.exists() and str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from shared.db import DbConnection, ensure_schema  # noqa: E402
from showcase.indexing.models.contracts import AttachmentMetadata, Author, Message  # noqa: E402

# 2024-03-15 12:00 UTC; the retention window starts 2024-02-01
NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)
IN_WINDOW_TS = int(datetime(2024, 3, 10, tzinfo=timezone.utc).timestamp())
OLD_TS = int(datetime(2024, 1, 20, tzinfo=timezone.utc).timestamp())


class RecordingObserver:
    def __init__(self) -> None:
        self.events: list[tuple[str, str]] = []

    def emit(self, event_name: str, payload: str) -> None:
        self.events.append((event_name, payload))

    def named(self, event_name: str) -> list[str]:
        return [payload for name, payload in self.events if name == event_name]


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def db(tmp_path: Path):
    connection = DbConnection.open(tmp_path / "showcase.db", lock_timeout=0.5)
    ensure_schema(connection)
    yield connection
    connection.close()


@pytest.fixture
def make_message():
    def factory(
        message_id: int | str,
        *,
        timestamp: int = IN_WINDOW_TS,
        channel_id: str = "100",
        attachments: list[tuple[str, str | None]] | None = None,
    ) -> Message:
        if attachments is None:
            attachments = [("photo.png", "image/png")]
        return Message(
            id=str(message_id),
            channel_id=channel_id,
            author=Author(id="42", name="ada", avatar="abc123"),
            content=f"message {message_id}",
            attachments=[
                AttachmentMetadata(
                    id=f"{message_id}{index}",
                    filename=filename,
                    url=f"https://cdn.test/{message_id}/{filename}",
                    content_type=content_type,
                )
                for index, (filename, content_type) in enumerate(attachments)
            ],
            timestamp=timestamp,
        )

    return factory
