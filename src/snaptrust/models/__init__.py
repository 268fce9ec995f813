"""Core data models for snaptrust."""

from snaptrust.models.common import PartyType
from snaptrust.models.link import Link, LinkStatus
from snaptrust.models.assignment import (
    ArbitrationOutcome,
    Assignment,
    AssignmentStatus,
    AssignmentType,
    Cadence,
    PeriodStatus,
    UnitType,
    WorkPeriod,
)
from snaptrust.models.notice import (
    BadExitTier,
    ExitNotice,
    NoticeOutcome,
    NoticeStatus,
    ResolvedBy,
)
from snaptrust.models.reputation import (
    BadgeProgress,
    CheckIn,
    CheckInStatus,
    FactSource,
    OutcomeFact,
    ReputationScore,
    Signal,
)

__all__ = [
    "PartyType",
    "Link",
    "LinkStatus",
    "ArbitrationOutcome",
    "Assignment",
    "AssignmentStatus",
    "AssignmentType",
    "Cadence",
    "PeriodStatus",
    "UnitType",
    "WorkPeriod",
    "BadExitTier",
    "ExitNotice",
    "NoticeOutcome",
    "NoticeStatus",
    "ResolvedBy",
    "BadgeProgress",
    "CheckIn",
    "CheckInStatus",
    "FactSource",
    "OutcomeFact",
    "ReputationScore",
    "Signal",
]
