"""Assignment & work-period tracker.

An assignment binds one Seeker to one route for a Retainer and may only
be created over a link that is ACTIVE and marked working-together. Each
cadence bucket of an assignment gets at most one WorkPeriod, which is
submitted exactly once:

    PENDING → SUBMITTED            submit_counts (late submissions flagged)
    SUBMITTED → DISPUTED           dispute_period (limited per month)
    DISPUTED → SUBMITTED           arbitrate_period (outcome recorded)

Ceilings:
    DEDICATED  completed ≤ expected_units (snapshotted at period creation)
    ON_DEMAND  completed ≤ accepted_units

missed_units = ceiling − completed, floored at zero.

All checks run before the replacement record is stored, so a rejected
call leaves the assignment and its periods unchanged.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import date, datetime
from typing import Any, Optional

from snaptrust.concurrency import KeyedLocks
from snaptrust.errors import (
    AssignmentNotActive,
    AssignmentNotFound,
    CountExceedsCeiling,
    DisputeLimitReached,
    DuplicateAssignment,
    InvalidCount,
    InvalidOutcome,
    LinkNotEligible,
    MissingAcceptedUnits,
    MissingExpectedUnits,
    PeriodNotDisputable,
    PeriodNotDisputed,
    PeriodNotFound,
    PeriodNotPending,
    ValidationViolation,
)
from snaptrust.linking import LinkManager
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
from snaptrust.models.common import utc_now
from snaptrust.models.reputation import OutcomeFact
from snaptrust.policy import PolicyResolver
from snaptrust.reputation.facts import fact_for_period
from snaptrust.work.periods import window_closes_at

logger = logging.getLogger(__name__)


def _check_count(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidCount(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise InvalidCount(f"{name} must be non-negative, got {value}")
    return value


class AssignmentTracker:
    """Owns assignments and their work periods.

    Usage:
        tracker = AssignmentTracker(links, resolver)
        a = tracker.create_assignment("route-1", "r1", "s1",
                                      AssignmentType.DEDICATED, UnitType.DAY,
                                      Cadence.WEEKLY, expected_units_per_period=5)
        p = tracker.get_or_create_period(a.assignment_id, "2025-W10")
        period, fact = tracker.submit_counts(p.period_id, completed_units=3)
    """

    def __init__(
        self,
        links: LinkManager,
        resolver: PolicyResolver,
        locks: Optional[KeyedLocks] = None,
    ) -> None:
        self._links = links
        self._resolver = resolver
        self._locks = locks or KeyedLocks()
        self._assignments: dict[str, Assignment] = {}
        self._periods: dict[str, WorkPeriod] = {}
        # (assignment_id, period_key) -> period_id
        self._period_index: dict[tuple[str, str], str] = {}

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    def create_assignment(
        self,
        route_id: str,
        retainer_id: str,
        seeker_id: str,
        assignment_type: AssignmentType,
        unit_type: UnitType,
        cadence: Cadence,
        expected_units_per_period: Optional[int] = None,
        start_date: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> Assignment:
        """Lock a seeker onto a route.

        Raises:
            LinkNotEligible: the link is not ACTIVE and working-together.
            DuplicateAssignment: an ACTIVE assignment already exists for
                (route_id, seeker_id).
            MissingExpectedUnits: DEDICATED without a positive expected count.
        """
        if not route_id or not retainer_id or not seeker_id:
            raise ValidationViolation("route_id, retainer_id and seeker_id are required")
        if assignment_type == AssignmentType.DEDICATED:
            if (
                expected_units_per_period is None
                or isinstance(expected_units_per_period, bool)
                or not isinstance(expected_units_per_period, int)
                or expected_units_per_period <= 0
            ):
                raise MissingExpectedUnits(
                    "DEDICATED assignments require a positive expected_units_per_period"
                )
        elif expected_units_per_period is not None:
            _check_count("expected_units_per_period", expected_units_per_period)

        now = now or utc_now()
        with self._locks.hold("assignment", route_id, seeker_id):
            with self._locks.hold("link", seeker_id, retainer_id):
                link = self._links.get_link(seeker_id, retainer_id)
                if not LinkManager.is_working_together(link):
                    state = link.status.value if link else "missing"
                    raise LinkNotEligible(
                        f"Link {seeker_id}/{retainer_id} must be active and working "
                        f"together to assign (link: {state})"
                    )
            if self.active_assignment_for(route_id, seeker_id) is not None:
                raise DuplicateAssignment(
                    f"Seeker {seeker_id} already has an active assignment on route {route_id}"
                )
            assignment = Assignment(
                assignment_id=f"asg_{uuid.uuid4().hex[:12]}",
                route_id=route_id,
                retainer_id=retainer_id,
                seeker_id=seeker_id,
                assignment_type=assignment_type,
                unit_type=unit_type,
                cadence=cadence,
                expected_units_per_period=expected_units_per_period,
                start_date=start_date or now.date(),
                status=AssignmentStatus.ACTIVE,
                created_utc=now,
                updated_utc=now,
            )
            self._assignments[assignment.assignment_id] = assignment
        logger.info(
            "Assignment %s created: route=%s seeker=%s type=%s cadence=%s",
            assignment.assignment_id, route_id, seeker_id,
            assignment_type.value, cadence.value,
        )
        return assignment

    def end_assignment(
        self,
        assignment_id: str,
        reason: str = "",
        now: Optional[datetime] = None,
    ) -> Assignment:
        now = now or utc_now()
        current = self._get_assignment(assignment_id)
        with self._locks.hold("assignment", current.route_id, current.seeker_id):
            current = self._get_assignment(assignment_id)
            if not current.is_active:
                raise AssignmentNotActive(f"Assignment {assignment_id} already ended")
            ended = replace(
                current,
                status=AssignmentStatus.ENDED,
                ended_utc=now,
                end_reason=reason,
                updated_utc=now,
            )
            self._assignments[assignment_id] = ended
        logger.info("Assignment %s ended (%s)", assignment_id, reason or "no reason")
        return ended

    def update_expected_units(
        self,
        assignment_id: str,
        expected_units_per_period: int,
        now: Optional[datetime] = None,
    ) -> Assignment:
        """Change the per-period commitment. Existing periods keep their snapshot."""
        now = now or utc_now()
        current = self._get_assignment(assignment_id)
        with self._locks.hold("assignment", current.route_id, current.seeker_id):
            current = self._get_assignment(assignment_id)
            if not current.is_active:
                raise AssignmentNotActive(f"Assignment {assignment_id} is not active")
            if current.assignment_type == AssignmentType.DEDICATED:
                if (
                    isinstance(expected_units_per_period, bool)
                    or not isinstance(expected_units_per_period, int)
                    or expected_units_per_period <= 0
                ):
                    raise MissingExpectedUnits(
                        "DEDICATED assignments require a positive expected_units_per_period"
                    )
            else:
                _check_count("expected_units_per_period", expected_units_per_period)
            updated = replace(
                current,
                expected_units_per_period=expected_units_per_period,
                updated_utc=now,
            )
            self._assignments[assignment_id] = updated
        return updated

    def get_assignment(self, assignment_id: str) -> Optional[Assignment]:
        return self._assignments.get(assignment_id)

    def active_assignment_for(self, route_id: str, seeker_id: str) -> Optional[Assignment]:
        for a in self._assignments.values():
            if a.route_id == route_id and a.seeker_id == seeker_id and a.is_active:
                return a
        return None

    def assignments_for_seeker(self, seeker_id: str) -> list[Assignment]:
        return [a for a in self._assignments.values() if a.seeker_id == seeker_id]

    def assignments_for_retainer(self, retainer_id: str) -> list[Assignment]:
        return [a for a in self._assignments.values() if a.retainer_id == retainer_id]

    def all_assignments(self) -> list[Assignment]:
        return list(self._assignments.values())

    # ------------------------------------------------------------------
    # Work periods
    # ------------------------------------------------------------------

    def get_or_create_period(
        self,
        assignment_id: str,
        period_key: str,
        now: Optional[datetime] = None,
    ) -> WorkPeriod:
        """Return the period for (assignment, key), creating it PENDING if absent.

        A new period snapshots the assignment's current expected units.
        """
        now = now or utc_now()
        assignment = self._get_assignment(assignment_id)
        closes = window_closes_at(
            assignment.cadence, period_key, self._resolver.submission_window_hours(),
        )
        with self._locks.hold("period", assignment_id, period_key):
            existing_id = self._period_index.get((assignment_id, period_key))
            if existing_id is not None:
                return self._periods[existing_id]
            assignment = self._get_assignment(assignment_id)
            if not assignment.is_active:
                raise AssignmentNotActive(
                    f"Assignment {assignment_id} has ended; no new periods"
                )
            period = WorkPeriod(
                period_id=f"wp_{uuid.uuid4().hex[:12]}",
                assignment_id=assignment_id,
                period_key=period_key,
                cadence=assignment.cadence,
                assignment_type=assignment.assignment_type,
                expected_units=(
                    assignment.expected_units_per_period
                    if assignment.assignment_type == AssignmentType.DEDICATED
                    else None
                ),
                window_closes_utc=closes,
                status=PeriodStatus.PENDING,
                created_utc=now,
                updated_utc=now,
            )
            self._periods[period.period_id] = period
            self._period_index[period.key] = period.period_id
        return period

    def submit_counts(
        self,
        period_id: str,
        completed_units: int,
        accepted_units: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> tuple[WorkPeriod, OutcomeFact]:
        """Submit and lock the counts for a period.

        Returns the SUBMITTED period and the outcome fact it yields
        (good standing, shortfall, or neutral for a late full completion).

        Raises:
            PeriodNotPending: the period was already submitted.
            MissingAcceptedUnits: ON_DEMAND without an accepted count.
            CountExceedsCeiling: completed above expected/accepted.
            InvalidCount: a count is negative or not an integer.
        """
        now = now or utc_now()
        current = self._get_period(period_id)
        with self._locks.hold("period", current.assignment_id, current.period_key):
            current = self._get_period(period_id)
            if current.status != PeriodStatus.PENDING:
                raise PeriodNotPending(
                    f"Period {current.period_key} already {current.status.value}; "
                    f"counts are locked"
                )
            completed = _check_count("completed_units", completed_units)
            accepted = current.accepted_units
            if accepted_units is not None:
                accepted = _check_count("accepted_units", accepted_units)
            if current.assignment_type == AssignmentType.ON_DEMAND and accepted is None:
                raise MissingAcceptedUnits(
                    "ON_DEMAND periods require accepted_units"
                )

            candidate = replace(current, accepted_units=accepted)
            ceiling = candidate.ceiling
            if ceiling is None:
                raise MissingExpectedUnits(
                    f"Period {current.period_key} has no expected units"
                )
            if completed > ceiling:
                raise CountExceedsCeiling(
                    f"completed_units {completed} exceeds ceiling {ceiling}"
                )

            late = current.window_closes_utc is not None and now > current.window_closes_utc
            submitted = replace(
                candidate,
                completed_units=completed,
                missed_units=max(ceiling - completed, 0),
                status=PeriodStatus.SUBMITTED,
                submitted_utc=now,
                late=late,
                updated_utc=now,
            )
            fact = fact_for_period(submitted, self._get_assignment(submitted.assignment_id), self._resolver)
            self._periods[period_id] = submitted

        if late:
            logger.warning(
                "Period %s of %s submitted after window closed at %s",
                submitted.period_key, submitted.assignment_id,
                submitted.window_closes_utc.isoformat(),
            )
        logger.info(
            "Period %s submitted: completed=%d missed=%d",
            submitted.period_key, completed, submitted.missed_units,
        )
        return submitted, fact

    def dispute_period(
        self,
        period_id: str,
        note: str,
        now: Optional[datetime] = None,
    ) -> WorkPeriod:
        """Seeker contests a submitted period.

        At most dispute_limit_per_month disputes per calendar month per
        seeker/retainer pair. The pair lock makes the count and the
        write one step across periods.
        """
        now = now or utc_now()
        current = self._get_period(period_id)
        assignment = self._get_assignment(current.assignment_id)
        with self._locks.hold("period", current.assignment_id, current.period_key):
            current = self._get_period(period_id)
            if current.status != PeriodStatus.SUBMITTED or current.arbitration_outcome is not None:
                raise PeriodNotDisputable(
                    f"Period {current.period_key} is {current.status.value}; "
                    f"only unarbitrated submitted periods can be disputed"
                )
            with self._locks.hold("disputes", assignment.seeker_id, assignment.retainer_id):
                used = self._disputes_in_month(assignment.seeker_id, assignment.retainer_id, now)
                limit = self._resolver.dispute_limit_per_month()
                if used >= limit:
                    raise DisputeLimitReached(
                        f"Dispute limit of {limit} per month reached for "
                        f"{assignment.seeker_id}/{assignment.retainer_id}"
                    )
                disputed = replace(
                    current,
                    status=PeriodStatus.DISPUTED,
                    dispute_note=note,
                    disputed_utc=now,
                    updated_utc=now,
                )
                self._periods[period_id] = disputed
        logger.info("Period %s of %s disputed", disputed.period_key, disputed.assignment_id)
        return disputed

    def arbitrate_period(
        self,
        period_id: str,
        outcome: ArbitrationOutcome,
        completed_units: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> WorkPeriod:
        """Record the external decision on a disputed period."""
        if not isinstance(outcome, ArbitrationOutcome):
            raise InvalidOutcome(f"Unknown arbitration outcome: {outcome!r}")
        now = now or utc_now()
        current = self._get_period(period_id)
        with self._locks.hold("period", current.assignment_id, current.period_key):
            current = self._get_period(period_id)
            if current.status != PeriodStatus.DISPUTED:
                raise PeriodNotDisputed(
                    f"Period {current.period_key} is {current.status.value}, not disputed"
                )
            completed = current.completed_units
            missed = current.missed_units
            if completed_units is not None:
                completed = _check_count("completed_units", completed_units)
                ceiling = current.ceiling or 0
                if completed > ceiling:
                    raise CountExceedsCeiling(
                        f"completed_units {completed} exceeds ceiling {ceiling}"
                    )
                missed = max(ceiling - completed, 0)
            resolved = replace(
                current,
                status=PeriodStatus.SUBMITTED,
                completed_units=completed,
                missed_units=missed,
                arbitration_outcome=outcome,
                arbitrated_utc=now,
                updated_utc=now,
            )
            self._periods[period_id] = resolved
        logger.info("Period %s arbitrated: %s", resolved.period_key, outcome.value)
        return resolved

    def get_period(self, period_id: str) -> Optional[WorkPeriod]:
        return self._periods.get(period_id)

    def find_period(self, assignment_id: str, period_key: str) -> Optional[WorkPeriod]:
        period_id = self._period_index.get((assignment_id, period_key))
        return self._periods.get(period_id) if period_id else None

    def periods_for(self, assignment_id: str) -> list[WorkPeriod]:
        return sorted(
            (p for p in self._periods.values() if p.assignment_id == assignment_id),
            key=lambda p: p.period_key,
        )

    def all_periods(self) -> list[WorkPeriod]:
        return list(self._periods.values())

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_records(self) -> dict[str, list[dict[str, Any]]]:
        return {
            "assignments": [a.to_dict() for a in self._assignments.values()],
            "periods": [p.to_dict() for p in self._periods.values()],
        }

    @classmethod
    def from_records(
        cls,
        records: dict[str, list[dict[str, Any]]],
        links: LinkManager,
        resolver: PolicyResolver,
        locks: Optional[KeyedLocks] = None,
    ) -> AssignmentTracker:
        tracker = cls(links, resolver, locks=locks)
        for r in records.get("assignments", []):
            a = Assignment.from_dict(r)
            tracker._assignments[a.assignment_id] = a
        for r in records.get("periods", []):
            p = WorkPeriod.from_dict(r)
            tracker._periods[p.period_id] = p
            tracker._period_index[p.key] = p.period_id
        return tracker

    def snapshot(self) -> tuple[dict, dict, dict]:
        return dict(self._assignments), dict(self._periods), dict(self._period_index)

    def rollback(self, snapshot: tuple[dict, dict, dict]) -> None:
        assignments, periods, index = snapshot
        self._assignments = dict(assignments)
        self._periods = dict(periods)
        self._period_index = dict(index)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _disputes_in_month(self, seeker_id: str, retainer_id: str, now: datetime) -> int:
        pair_assignments = {
            a.assignment_id for a in self._assignments.values()
            if a.seeker_id == seeker_id and a.retainer_id == retainer_id
        }
        count = 0
        for p in self._periods.values():
            if p.assignment_id not in pair_assignments or p.disputed_utc is None:
                continue
            if (p.disputed_utc.year, p.disputed_utc.month) == (now.year, now.month):
                count += 1
        return count

    def _get_assignment(self, assignment_id: str) -> Assignment:
        a = self._assignments.get(assignment_id)
        if a is None:
            raise AssignmentNotFound(f"Unknown assignment: {assignment_id}")
        return a

    def _get_period(self, period_id: str) -> WorkPeriod:
        p = self._periods.get(period_id)
        if p is None:
            raise PeriodNotFound(f"Unknown work period: {period_id}")
        return p
