"""Recency window applied to every pulled record."""

from collections.abc import Iterable
from datetime import datetime, timedelta

from .models import VectorRecord

RETENTION_WINDOW = timedelta(days=7)


def is_retained(updated_at: datetime | None, now: datetime) -> bool:
    """True iff the record was updated strictly less than seven days before now.

    A record with no timestamp is never retained.
    """
    if updated_at is None:
        return False
    return now - updated_at < RETENTION_WINDOW


def filter_retained(
    records: Iterable[VectorRecord], now: datetime
) -> list[VectorRecord]:
    """Keep the records inside the retention window, preserving order."""
    return [r for r in records if is_retained(r.updated_at, now)]
