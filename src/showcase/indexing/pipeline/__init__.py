"""Page-by-page ingestion pipeline."""

from .cutoff import CutoffPolicy, previous_month_start  # noqa: F401
from .filters import is_qualifying_image  # noqa: F401
from .types import BatchItem, ChannelProgress, RunSummary  # noqa: F401
