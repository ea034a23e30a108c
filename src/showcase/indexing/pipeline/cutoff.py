from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from ..models.contracts import Message


def previous_month_start(now: datetime) -> datetime:
    """UTC midnight of the 1st of the calendar month before ``now``."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    if now.month == 1:
        return datetime(now.year - 1, 12, 1, tzinfo=timezone.utc)
    return datetime(now.year, now.month - 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True, slots=True)
class CutoffPolicy:
    """Retention window for one run: everything since the start of last month.

    Build it once per run with :meth:`for_now`; the cutoff never moves while
    the run is in progress.
    """

    cutoff: datetime

    @classmethod
    def for_now(cls, now: datetime | None = None) -> "CutoffPolicy":
        return cls(cutoff=previous_month_start(now or datetime.now(timezone.utc)))

    @property
    def cutoff_ts(self) -> int:
        return int(self.cutoff.timestamp())

    def in_window(self, message: Message) -> bool:
        return message.timestamp >= self.cutoff_ts


__all__ = ["CutoffPolicy", "previous_month_start"]
