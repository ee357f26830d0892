"""
Partition a historical lookback window into fixed-size date batches.

Batch ``b`` (1-based, newest first) covers
``[now - min(b * size, total) days, now - (b - 1) * size days)``.
Every window is computed from one anchor ``now`` so consecutive batches
share their boundary exactly: no gap and no overlap.
"""
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from amzsync.exceptions import ValidationError

NEWEST_FIRST = "newest_first"
OLDEST_FIRST = "oldest_first"


@dataclass(frozen=True)
class DateWindow:
    """One batch's half-open ``[start, end)`` report window."""
    batch_number: int
    start: datetime
    end: datetime
    start_days_ago: int
    end_days_ago: int

    @property
    def label(self) -> str:
        return f"{self.start.date().isoformat()} to {self.end.date().isoformat()}"

    @property
    def days(self) -> int:
        return self.start_days_ago - self.end_days_ago


def count_batches(batch_size_days: int, total_days: int) -> int:
    """``ceil(total_days / batch_size_days)``."""
    validate_window(batch_size_days, total_days)
    return math.ceil(total_days / batch_size_days)


def validate_window(batch_size_days: int, total_days: int) -> None:
    if isinstance(batch_size_days, bool) or not isinstance(batch_size_days, int) or batch_size_days < 1:
        raise ValidationError("size", "must be a positive number of days", batch_size_days)
    if isinstance(total_days, bool) or not isinstance(total_days, int) or total_days < 1:
        raise ValidationError("total", "must be a positive number of days", total_days)


def plan_batches(
    batch_size_days: int,
    total_days: int,
    now: Optional[datetime] = None,
    order: str = NEWEST_FIRST,
) -> List[DateWindow]:
    """
    Build the ordered list of batch windows.

    Args:
        batch_size_days: Days per batch
        total_days: Total lookback in days
        now: Anchor for every window (defaults to current UTC time)
        order: ``newest_first`` (batch 1 ends at now) or ``oldest_first``
            (same windows, processed from the far end, renumbered 1..N)

    Returns:
        Windows in processing order
    """
    if order not in (NEWEST_FIRST, OLDEST_FIRST):
        raise ValidationError("order", f"must be {NEWEST_FIRST!r} or {OLDEST_FIRST!r}", order)

    total_batches = count_batches(batch_size_days, total_days)
    anchor = now or datetime.now(timezone.utc)

    spans = []
    for b in range(1, total_batches + 1):
        end_days_ago = (b - 1) * batch_size_days
        start_days_ago = min(b * batch_size_days, total_days)
        spans.append((start_days_ago, end_days_ago))

    if order == OLDEST_FIRST:
        spans.reverse()

    return [
        DateWindow(
            batch_number=i,
            start=anchor - timedelta(days=start_days_ago),
            end=anchor - timedelta(days=end_days_ago),
            start_days_ago=start_days_ago,
            end_days_ago=end_days_ago,
        )
        for i, (start_days_ago, end_days_ago) in enumerate(spans, start=1)
    ]
