"""Assignment and work-period models.

An assignment locks one Seeker to one route for a Retainer. Each
pay-cycle bucket of the assignment has at most one WorkPeriod, in which
completed units are reported against a ceiling and then locked.

Assignment lifecycle: ACTIVE → ENDED
WorkPeriod lifecycle: PENDING → SUBMITTED → DISPUTED → SUBMITTED (arbitrated)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional

from snaptrust.models.common import iso_or_none, parse_utc


class AssignmentType(str, enum.Enum):
    """DEDICATED commits a fixed output per period; ON_DEMAND is capped by accepted jobs."""
    DEDICATED = "dedicated"
    ON_DEMAND = "on_demand"


class UnitType(str, enum.Enum):
    DAY = "day"
    SHIFT = "shift"
    JOB = "job"


class Cadence(str, enum.Enum):
    """Pay-cycle frequency — decides how period keys are bucketed."""
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class AssignmentStatus(str, enum.Enum):
    ACTIVE = "active"
    ENDED = "ended"


class PeriodStatus(str, enum.Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    DISPUTED = "disputed"


class ArbitrationOutcome(str, enum.Enum):
    """Final external decision on a disputed period or notice."""
    GOOD = "good"
    BAD = "bad"


@dataclass(frozen=True)
class Assignment:
    """A lock-in of one Seeker to one route."""
    assignment_id: str
    route_id: str
    retainer_id: str
    seeker_id: str
    assignment_type: AssignmentType
    unit_type: UnitType
    cadence: Cadence
    expected_units_per_period: Optional[int] = None
    start_date: Optional[date] = None
    status: AssignmentStatus = AssignmentStatus.ACTIVE
    created_utc: Optional[datetime] = None
    updated_utc: Optional[datetime] = None
    ended_utc: Optional[datetime] = None
    end_reason: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return (self.route_id, self.seeker_id)

    @property
    def is_active(self) -> bool:
        return self.status == AssignmentStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "assignment_id": self.assignment_id,
            "route_id": self.route_id,
            "retainer_id": self.retainer_id,
            "seeker_id": self.seeker_id,
            "assignment_type": self.assignment_type.value,
            "unit_type": self.unit_type.value,
            "cadence": self.cadence.value,
            "expected_units_per_period": self.expected_units_per_period,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "status": self.status.value,
            "created_utc": iso_or_none(self.created_utc),
            "updated_utc": iso_or_none(self.updated_utc),
            "ended_utc": iso_or_none(self.ended_utc),
            "end_reason": self.end_reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Assignment:
        return cls(
            assignment_id=data["assignment_id"],
            route_id=data["route_id"],
            retainer_id=data["retainer_id"],
            seeker_id=data["seeker_id"],
            assignment_type=AssignmentType(data["assignment_type"]),
            unit_type=UnitType(data["unit_type"]),
            cadence=Cadence(data["cadence"]),
            expected_units_per_period=data.get("expected_units_per_period"),
            start_date=(
                date.fromisoformat(data["start_date"])
                if data.get("start_date") else None
            ),
            status=AssignmentStatus(data.get("status", AssignmentStatus.ACTIVE.value)),
            created_utc=parse_utc(data.get("created_utc")),
            updated_utc=parse_utc(data.get("updated_utc")),
            ended_utc=parse_utc(data.get("ended_utc")),
            end_reason=data.get("end_reason", ""),
        )


@dataclass(frozen=True)
class WorkPeriod:
    """One cadence-aligned evaluation window of an assignment.

    expected_units is snapshotted from the assignment when the period is
    created; later edits to the assignment never reach back into it.
    """
    period_id: str
    assignment_id: str
    period_key: str
    cadence: Cadence
    assignment_type: AssignmentType
    expected_units: Optional[int] = None
    accepted_units: Optional[int] = None
    completed_units: Optional[int] = None
    missed_units: Optional[int] = None
    window_closes_utc: Optional[datetime] = None
    status: PeriodStatus = PeriodStatus.PENDING
    submitted_utc: Optional[datetime] = None
    late: bool = False
    dispute_note: Optional[str] = None
    disputed_utc: Optional[datetime] = None
    arbitration_outcome: Optional[ArbitrationOutcome] = None
    arbitrated_utc: Optional[datetime] = None
    created_utc: Optional[datetime] = None
    updated_utc: Optional[datetime] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.assignment_id, self.period_key)

    @property
    def ceiling(self) -> Optional[int]:
        """The count completed_units may not exceed."""
        if self.assignment_type == AssignmentType.DEDICATED:
            return self.expected_units
        return self.accepted_units

    def to_dict(self) -> dict[str, Any]:
        return {
            "period_id": self.period_id,
            "assignment_id": self.assignment_id,
            "period_key": self.period_key,
            "cadence": self.cadence.value,
            "assignment_type": self.assignment_type.value,
            "expected_units": self.expected_units,
            "accepted_units": self.accepted_units,
            "completed_units": self.completed_units,
            "missed_units": self.missed_units,
            "window_closes_utc": iso_or_none(self.window_closes_utc),
            "status": self.status.value,
            "submitted_utc": iso_or_none(self.submitted_utc),
            "late": self.late,
            "dispute_note": self.dispute_note,
            "disputed_utc": iso_or_none(self.disputed_utc),
            "arbitration_outcome": (
                self.arbitration_outcome.value if self.arbitration_outcome else None
            ),
            "arbitrated_utc": iso_or_none(self.arbitrated_utc),
            "created_utc": iso_or_none(self.created_utc),
            "updated_utc": iso_or_none(self.updated_utc),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkPeriod:
        outcome = data.get("arbitration_outcome")
        return cls(
            period_id=data["period_id"],
            assignment_id=data["assignment_id"],
            period_key=data["period_key"],
            cadence=Cadence(data["cadence"]),
            assignment_type=AssignmentType(data["assignment_type"]),
            expected_units=data.get("expected_units"),
            accepted_units=data.get("accepted_units"),
            completed_units=data.get("completed_units"),
            missed_units=data.get("missed_units"),
            window_closes_utc=parse_utc(data.get("window_closes_utc")),
            status=PeriodStatus(data.get("status", PeriodStatus.PENDING.value)),
            submitted_utc=parse_utc(data.get("submitted_utc")),
            late=bool(data.get("late", False)),
            dispute_note=data.get("dispute_note"),
            disputed_utc=parse_utc(data.get("disputed_utc")),
            arbitration_outcome=ArbitrationOutcome(outcome) if outcome else None,
            arbitrated_utc=parse_utc(data.get("arbitrated_utc")),
            created_utc=parse_utc(data.get("created_utc")),
            updated_utc=parse_utc(data.get("updated_utc")),
        )
