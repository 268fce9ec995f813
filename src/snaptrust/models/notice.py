"""Exit notice models — a worker's recorded intent to leave a DEDICATED route.

Notice lifecycle:
    ACTIVE → CONFIRMED_GOOD   (retainer confirms a clean exit)
    ACTIVE → CONFIRMED_BAD    (retainer confirms a bad exit; tier penalty applies)
    ACTIVE → DISPUTED         (retainer disputes; awaits external arbitration)
    ACTIVE → CANCELLED        (seeker withdraws the notice)
    DISPUTED → CONFIRMED_GOOD / CONFIRMED_BAD   (arbitration only)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from snaptrust.models.common import iso_or_none, parse_utc


class NoticeStatus(str, enum.Enum):
    ACTIVE = "active"
    CONFIRMED_GOOD = "confirmed_good"
    CONFIRMED_BAD = "confirmed_bad"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"


class NoticeOutcome(str, enum.Enum):
    """Retainer's resolution of an ACTIVE notice."""
    GOOD = "good"
    BAD = "bad"
    DISPUTE = "dispute"


class ResolvedBy(str, enum.Enum):
    RETAINER = "retainer"
    ARBITRATION = "arbitration"
    SEEKER = "seeker"


@dataclass(frozen=True)
class BadExitTier:
    """One row of the escalation table.

    suspension_days: 0 = no suspension.
    blacklist_after_suspension: the account is blacklisted once the
        suspension ends, pending an appeal window of appeal_window_days.
    """
    tier: int
    penalty_percent: int
    duration_days: int
    suspension_days: int = 0
    blacklist_after_suspension: bool = False
    appeal_window_days: int = 0


@dataclass(frozen=True)
class ExitNotice:
    notice_id: str
    seeker_id: str
    route_id: str
    retainer_id: str
    assignment_id: str
    notice_given_utc: datetime
    effective_end_utc: datetime
    status: NoticeStatus = NoticeStatus.ACTIVE
    dispute_note: Optional[str] = None
    resolved_utc: Optional[datetime] = None
    resolved_by: Optional[ResolvedBy] = None
    bad_exit_tier: Optional[int] = None
    penalty_percent: Optional[int] = None
    penalty_ends_utc: Optional[datetime] = None
    suspension_until_utc: Optional[datetime] = None
    blacklist_at_utc: Optional[datetime] = None
    appeal_deadline_utc: Optional[datetime] = None
    updated_utc: Optional[datetime] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.seeker_id, self.route_id)

    @property
    def is_resolved(self) -> bool:
        return self.status in (
            NoticeStatus.CONFIRMED_GOOD,
            NoticeStatus.CONFIRMED_BAD,
            NoticeStatus.CANCELLED,
        )

    def penalty_active(self, now: datetime) -> bool:
        return (
            self.status == NoticeStatus.CONFIRMED_BAD
            and self.penalty_ends_utc is not None
            and self.penalty_ends_utc > now
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "notice_id": self.notice_id,
            "seeker_id": self.seeker_id,
            "route_id": self.route_id,
            "retainer_id": self.retainer_id,
            "assignment_id": self.assignment_id,
            "notice_given_utc": iso_or_none(self.notice_given_utc),
            "effective_end_utc": iso_or_none(self.effective_end_utc),
            "status": self.status.value,
            "dispute_note": self.dispute_note,
            "resolved_utc": iso_or_none(self.resolved_utc),
            "resolved_by": self.resolved_by.value if self.resolved_by else None,
            "bad_exit_tier": self.bad_exit_tier,
            "penalty_percent": self.penalty_percent,
            "penalty_ends_utc": iso_or_none(self.penalty_ends_utc),
            "suspension_until_utc": iso_or_none(self.suspension_until_utc),
            "blacklist_at_utc": iso_or_none(self.blacklist_at_utc),
            "appeal_deadline_utc": iso_or_none(self.appeal_deadline_utc),
            "updated_utc": iso_or_none(self.updated_utc),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExitNotice:
        resolved_by = data.get("resolved_by")
        return cls(
            notice_id=data["notice_id"],
            seeker_id=data["seeker_id"],
            route_id=data["route_id"],
            retainer_id=data["retainer_id"],
            assignment_id=data["assignment_id"],
            notice_given_utc=parse_utc(data["notice_given_utc"]),
            effective_end_utc=parse_utc(data["effective_end_utc"]),
            status=NoticeStatus(data.get("status", NoticeStatus.ACTIVE.value)),
            dispute_note=data.get("dispute_note"),
            resolved_utc=parse_utc(data.get("resolved_utc")),
            resolved_by=ResolvedBy(resolved_by) if resolved_by else None,
            bad_exit_tier=data.get("bad_exit_tier"),
            penalty_percent=data.get("penalty_percent"),
            penalty_ends_utc=parse_utc(data.get("penalty_ends_utc")),
            suspension_until_utc=parse_utc(data.get("suspension_until_utc")),
            blacklist_at_utc=parse_utc(data.get("blacklist_at_utc")),
            appeal_deadline_utc=parse_utc(data.get("appeal_deadline_utc")),
            updated_utc=parse_utc(data.get("updated_utc")),
        )
