"""Assignments, cadence buckets, and per-period fulfilment tracking."""

from snaptrust.work.periods import period_bounds, period_key_for, window_closes_at
from snaptrust.work.tracker import AssignmentTracker

__all__ = [
    "AssignmentTracker",
    "period_bounds",
    "period_key_for",
    "window_closes_at",
]
