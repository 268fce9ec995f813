"""Cadence bucketing — period keys and their UTC bounds.

Key formats:
    WEEKLY    "YYYY-Www"  ISO week (Monday start)
    BIWEEKLY  "YYYY-Www"  pair of ISO weeks anchored on the odd week; the
                          key is the first (odd) week. In 53-week years the
                          final pair is week 53 alone, so buckets never
                          cross an ISO year boundary.
    MONTHLY   "YYYY-MM"   calendar month

Bounds are half-open [start, end) at UTC midnight. The submission window
for a period closes a fixed number of hours after its end.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from typing import Union

from snaptrust.errors import InvalidPeriodKey
from snaptrust.models.assignment import Cadence

_WEEK_KEY = re.compile(r"^(\d{4})-W(\d{2})$")
_MONTH_KEY = re.compile(r"^(\d{4})-(\d{2})$")

DateLike = Union[date, datetime]


def _as_date(when: DateLike) -> date:
    if isinstance(when, datetime):
        if when.tzinfo is not None:
            when = when.astimezone(timezone.utc)
        return when.date()
    return when


def _weeks_in_year(year: int) -> int:
    # Dec 28th always falls in the last ISO week of its year.
    return date(year, 12, 28).isocalendar()[1]


def _midnight(d: date) -> datetime:
    return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)


def period_key_for(cadence: Cadence, when: DateLike) -> str:
    """Return the key of the bucket containing ``when``."""
    d = _as_date(when)
    if cadence == Cadence.MONTHLY:
        return f"{d.year:04d}-{d.month:02d}"
    iso_year, week, _ = d.isocalendar()
    if cadence == Cadence.BIWEEKLY and week % 2 == 0:
        week -= 1
    return f"{iso_year:04d}-W{week:02d}"


def period_bounds(cadence: Cadence, key: str) -> tuple[datetime, datetime]:
    """Return the half-open UTC bounds of the bucket named by ``key``.

    Raises InvalidPeriodKey if the key does not fit the cadence format.
    """
    if cadence == Cadence.MONTHLY:
        m = _MONTH_KEY.match(key or "")
        if not m:
            raise InvalidPeriodKey(f"Monthly period key must be YYYY-MM, got {key!r}")
        year, month = int(m.group(1)), int(m.group(2))
        if not 1 <= month <= 12:
            raise InvalidPeriodKey(f"Month out of range in period key {key!r}")
        start = date(year, month, 1)
        end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
        return _midnight(start), _midnight(end)

    m = _WEEK_KEY.match(key or "")
    if not m:
        raise InvalidPeriodKey(
            f"{cadence.value.capitalize()} period key must be YYYY-Www, got {key!r}"
        )
    year, week = int(m.group(1)), int(m.group(2))
    if not 1 <= week <= _weeks_in_year(year):
        raise InvalidPeriodKey(f"ISO week out of range in period key {key!r}")

    start = date.fromisocalendar(year, week, 1)
    if cadence == Cadence.WEEKLY:
        return _midnight(start), _midnight(start + timedelta(days=7))

    if week % 2 == 0:
        raise InvalidPeriodKey(
            f"Biweekly period key must name the odd (first) week, got {key!r}"
        )
    next_year_start = date.fromisocalendar(year + 1, 1, 1)
    end = min(start + timedelta(days=14), next_year_start)
    return _midnight(start), _midnight(end)


def window_closes_at(cadence: Cadence, key: str, window_hours: int) -> datetime:
    """End of the bucket plus the submission window."""
    _, end = period_bounds(cadence, key)
    return end + timedelta(hours=window_hours)
