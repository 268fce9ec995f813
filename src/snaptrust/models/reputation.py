"""Reputation models — check-ins, outcome facts, and read-time aggregates.

Check-ins are the raw signal unit: one YES/NO/NEUTRAL verdict on a badge
capability for a target party, submitted by the linked counter-party.
Outcome facts are the normalised form the aggregator consumes; they are
derived from check-ins, work periods, and exit notices on every read and
are never persisted. ReputationScore and BadgeProgress are pure results.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from snaptrust.models.common import PartyType, iso_or_none, parse_utc


class Signal(str, enum.Enum):
    """A check-in value, and the classification of every outcome fact."""
    YES = "yes"
    NO = "no"
    NEUTRAL = "neutral"


class CheckInStatus(str, enum.Enum):
    ACTIVE = "active"
    DISPUTED = "disputed"


class FactSource(str, enum.Enum):
    CHECKIN = "checkin"
    WORK_PERIOD = "work_period"
    EXIT_NOTICE = "exit_notice"


@dataclass(frozen=True)
class CheckIn:
    checkin_id: str
    badge_id: str
    target_type: PartyType
    target_id: str
    verifier_type: PartyType
    verifier_id: str
    seeker_id: str
    retainer_id: str
    period_key: str
    value: Signal
    override_value: Optional[Signal] = None
    override_note: Optional[str] = None
    status: CheckInStatus = CheckInStatus.ACTIVE
    created_utc: Optional[datetime] = None
    updated_utc: Optional[datetime] = None

    @property
    def key(self) -> tuple[str, str, str, str, str]:
        return (
            self.badge_id,
            self.target_id,
            self.verifier_id,
            self.period_key,
            self.target_type.value,
        )

    @property
    def effective_value(self) -> Signal:
        """DISPUTED forces neutral; an override supersedes the raw value."""
        if self.status == CheckInStatus.DISPUTED:
            return Signal.NEUTRAL
        if self.override_value is not None:
            return self.override_value
        return self.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "checkin_id": self.checkin_id,
            "badge_id": self.badge_id,
            "target_type": self.target_type.value,
            "target_id": self.target_id,
            "verifier_type": self.verifier_type.value,
            "verifier_id": self.verifier_id,
            "seeker_id": self.seeker_id,
            "retainer_id": self.retainer_id,
            "period_key": self.period_key,
            "value": self.value.value,
            "override_value": self.override_value.value if self.override_value else None,
            "override_note": self.override_note,
            "status": self.status.value,
            "created_utc": iso_or_none(self.created_utc),
            "updated_utc": iso_or_none(self.updated_utc),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CheckIn:
        override = data.get("override_value")
        return cls(
            checkin_id=data["checkin_id"],
            badge_id=data["badge_id"],
            target_type=PartyType(data["target_type"]),
            target_id=data["target_id"],
            verifier_type=PartyType(data["verifier_type"]),
            verifier_id=data["verifier_id"],
            seeker_id=data["seeker_id"],
            retainer_id=data["retainer_id"],
            period_key=data["period_key"],
            value=Signal(data["value"]),
            override_value=Signal(override) if override else None,
            override_note=data.get("override_note"),
            status=CheckInStatus(data.get("status", CheckInStatus.ACTIVE.value)),
            created_utc=parse_utc(data.get("created_utc")),
            updated_utc=parse_utc(data.get("updated_utc")),
        )


@dataclass(frozen=True)
class OutcomeFact:
    """A single reputation-bearing fact about one party."""
    party_type: PartyType
    party_id: str
    signal: Signal
    weight: float
    source: FactSource
    source_id: str
    badge_id: Optional[str] = None
    reason: str = ""


@dataclass(frozen=True)
class ReputationScore:
    """Read-time reputation of one party. score is None when there is no data."""
    party_type: PartyType
    party_id: str
    score: Optional[int]
    percent: Optional[int]
    yes_weight: float
    no_weight: float
    neutral_count: int
    penalty_percent: int = 0

    @property
    def has_data(self) -> bool:
        return self.score is not None


@dataclass(frozen=True)
class BadgeProgress:
    party_type: PartyType
    party_id: str
    badge_id: str
    yes_count: int
    no_count: int
    score: Optional[int]
    level: int
    next_level_at: Optional[int] = None

    @property
    def total(self) -> int:
        return self.yes_count + self.no_count
