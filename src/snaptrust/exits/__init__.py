"""Exit notices and data-driven bad-exit escalation."""

from snaptrust.exits.escalator import (
    BadExitSummary,
    ExitNoticeManager,
    ExitStatus,
    NoticeSummary,
)
from snaptrust.exits.tiers import BadExitTierTable, consequence_dates

__all__ = [
    "BadExitSummary",
    "BadExitTierTable",
    "ExitNoticeManager",
    "ExitStatus",
    "NoticeSummary",
    "consequence_dates",
]
