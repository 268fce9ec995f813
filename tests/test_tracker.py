"""Tests for the assignment tracker — proves eligibility, ceilings and one-shot submission."""

import threading

import pytest
from datetime import date, datetime, timedelta, timezone

from snaptrust.errors import (
    AssignmentNotActive,
    AssignmentNotFound,
    CountExceedsCeiling,
    DisputeLimitReached,
    DuplicateAssignment,
    InvalidCount,
    InvalidPeriodKey,
    LinkNotEligible,
    MissingAcceptedUnits,
    MissingExpectedUnits,
    PeriodNotDisputable,
    PeriodNotDisputed,
    PeriodNotPending,
    StateViolation,
)
from snaptrust.linking import LinkManager
from snaptrust.models import (
    ArbitrationOutcome,
    Assignment,
    AssignmentStatus,
    AssignmentType,
    Cadence,
    LinkStatus,
    PartyType,
    PeriodStatus,
    Signal,
    UnitType,
)
from snaptrust.policy import PolicyResolver
from snaptrust.work import AssignmentTracker


SEEKER = PartyType.SEEKER
RETAINER = PartyType.RETAINER


def _now() -> datetime:
    # Wednesday of 2026-W10; the W10 window closes 2026-03-11 00:00 UTC.
    return datetime(2026, 3, 4, 12, 0, 0, tzinfo=timezone.utc)


def _make_links(working: bool = True) -> LinkManager:
    links = LinkManager()
    links.request_link("s1", "r1", SEEKER)
    links.set_video_confirmed("s1", "r1", SEEKER, True)
    links.set_video_confirmed("s1", "r1", RETAINER, True)
    links.set_approved("s1", "r1", RETAINER, True)
    links.set_approved("s1", "r1", SEEKER, True)
    if working:
        links.set_working_together("s1", "r1", RETAINER, True)
    return links


def _make_tracker(links: LinkManager = None, **policy) -> AssignmentTracker:
    return AssignmentTracker(links or _make_links(), PolicyResolver.from_dict(policy))


def _dedicated(tracker: AssignmentTracker, expected: int = 5, route: str = "route-1") -> Assignment:
    return tracker.create_assignment(
        route, "r1", "s1", AssignmentType.DEDICATED, UnitType.DAY,
        Cadence.WEEKLY, expected_units_per_period=expected, now=_now(),
    )


def _on_demand(tracker: AssignmentTracker, route: str = "route-2") -> Assignment:
    return tracker.create_assignment(
        route, "r1", "s1", AssignmentType.ON_DEMAND, UnitType.JOB,
        Cadence.MONTHLY, now=_now(),
    )


class TestCreateAssignment:
    def test_creates_active_dedicated(self) -> None:
        tracker = _make_tracker()
        a = _dedicated(tracker)
        assert a.status == AssignmentStatus.ACTIVE
        assert a.expected_units_per_period == 5
        assert a.start_date == date(2026, 3, 4)
        assert tracker.active_assignment_for("route-1", "s1") == a

    @pytest.mark.parametrize("setup", ["pending", "rejected", "disabled", "not_working"])
    def test_requires_working_together_link(self, setup: str) -> None:
        if setup == "pending":
            links = LinkManager()
            links.request_link("s1", "r1", SEEKER)
        elif setup == "not_working":
            links = _make_links(working=False)
        else:
            links = _make_links()
            status = LinkStatus.REJECTED if setup == "rejected" else LinkStatus.DISABLED
            links.set_link_status("s1", "r1", status)
        tracker = _make_tracker(links)
        with pytest.raises(LinkNotEligible):
            _dedicated(tracker)
        assert tracker.all_assignments() == []

    def test_missing_link_not_eligible(self) -> None:
        tracker = _make_tracker(LinkManager())
        with pytest.raises(LinkNotEligible):
            _dedicated(tracker)

    def test_duplicate_active_rejected(self) -> None:
        tracker = _make_tracker()
        _dedicated(tracker)
        with pytest.raises(DuplicateAssignment):
            _dedicated(tracker)

    def test_new_assignment_after_end(self) -> None:
        tracker = _make_tracker()
        first = _dedicated(tracker)
        tracker.end_assignment(first.assignment_id, reason="season over")
        second = _dedicated(tracker)
        assert second.assignment_id != first.assignment_id

    @pytest.mark.parametrize("expected", [None, 0, -3])
    def test_dedicated_requires_expected_units(self, expected) -> None:
        tracker = _make_tracker()
        with pytest.raises(MissingExpectedUnits):
            _dedicated(tracker, expected=expected)

    def test_on_demand_without_expected_units(self) -> None:
        tracker = _make_tracker()
        a = _on_demand(tracker)
        assert a.expected_units_per_period is None


class TestEndAndUpdate:
    def test_end_twice_rejected(self) -> None:
        tracker = _make_tracker()
        a = _dedicated(tracker)
        ended = tracker.end_assignment(a.assignment_id, reason="done")
        assert ended.status == AssignmentStatus.ENDED
        assert ended.end_reason == "done"
        with pytest.raises(AssignmentNotActive):
            tracker.end_assignment(a.assignment_id)

    def test_unknown_assignment(self) -> None:
        tracker = _make_tracker()
        with pytest.raises(AssignmentNotFound):
            tracker.end_assignment("asg_missing")

    def test_update_does_not_touch_existing_periods(self) -> None:
        tracker = _make_tracker()
        a = _dedicated(tracker, expected=5)
        p10 = tracker.get_or_create_period(a.assignment_id, "2026-W10")
        tracker.update_expected_units(a.assignment_id, 8)
        p11 = tracker.get_or_create_period(a.assignment_id, "2026-W11")
        assert tracker.get_period(p10.period_id).expected_units == 5
        assert p11.expected_units == 8

    def test_update_rejects_zero_for_dedicated(self) -> None:
        tracker = _make_tracker()
        a = _dedicated(tracker)
        with pytest.raises(MissingExpectedUnits):
            tracker.update_expected_units(a.assignment_id, 0)
        assert tracker.get_assignment(a.assignment_id).expected_units_per_period == 5


class TestPeriods:
    def test_get_or_create_is_idempotent(self) -> None:
        tracker = _make_tracker()
        a = _dedicated(tracker)
        p1 = tracker.get_or_create_period(a.assignment_id, "2026-W10")
        p2 = tracker.get_or_create_period(a.assignment_id, "2026-W10")
        assert p1.period_id == p2.period_id
        assert p1.status == PeriodStatus.PENDING
        assert p1.window_closes_utc == datetime(2026, 3, 11, tzinfo=timezone.utc)

    def test_key_must_match_cadence(self) -> None:
        tracker = _make_tracker()
        a = _dedicated(tracker)
        with pytest.raises(InvalidPeriodKey):
            tracker.get_or_create_period(a.assignment_id, "2026-03")

    def test_no_new_periods_after_end(self) -> None:
        tracker = _make_tracker()
        a = _dedicated(tracker)
        tracker.end_assignment(a.assignment_id)
        with pytest.raises(AssignmentNotActive):
            tracker.get_or_create_period(a.assignment_id, "2026-W10")

    def test_window_follows_policy(self) -> None:
        tracker = _make_tracker(submission_window_hours=12)
        a = _dedicated(tracker)
        p = tracker.get_or_create_period(a.assignment_id, "2026-W10")
        assert p.window_closes_utc == datetime(2026, 3, 9, 12, tzinfo=timezone.utc)


class TestSubmitCounts:
    def test_scenario_shortfall(self) -> None:
        tracker = _make_tracker()
        a = _dedicated(tracker, expected=5)
        p = tracker.get_or_create_period(a.assignment_id, "2026-W10")
        period, fact = tracker.submit_counts(p.period_id, completed_units=3, now=_now())
        assert period.status == PeriodStatus.SUBMITTED
        assert period.missed_units == 2
        assert period.late is False
        assert fact.signal == Signal.NO
        assert fact.party_id == "s1"
        with pytest.raises(StateViolation):
            tracker.submit_counts(p.period_id, completed_units=5, now=_now())

    def test_second_submit_is_period_not_pending(self) -> None:
        tracker = _make_tracker()
        a = _dedicated(tracker)
        p = tracker.get_or_create_period(a.assignment_id, "2026-W10")
        tracker.submit_counts(p.period_id, 5, now=_now())
        with pytest.raises(PeriodNotPending):
            tracker.submit_counts(p.period_id, 5, now=_now())

    def test_full_completion_is_good_standing(self) -> None:
        tracker = _make_tracker()
        a = _dedicated(tracker)
        p = tracker.get_or_create_period(a.assignment_id, "2026-W10")
        period, fact = tracker.submit_counts(p.period_id, 5, now=_now())
        assert period.missed_units == 0
        assert fact.signal == Signal.YES

    def test_above_ceiling_rejected_and_unchanged(self) -> None:
        tracker = _make_tracker()
        a = _dedicated(tracker, expected=5)
        p = tracker.get_or_create_period(a.assignment_id, "2026-W10")
        with pytest.raises(CountExceedsCeiling):
            tracker.submit_counts(p.period_id, 6, now=_now())
        assert tracker.get_period(p.period_id).status == PeriodStatus.PENDING
        assert tracker.get_period(p.period_id).completed_units is None

    def test_negative_count_rejected(self) -> None:
        tracker = _make_tracker()
        a = _dedicated(tracker)
        p = tracker.get_or_create_period(a.assignment_id, "2026-W10")
        with pytest.raises(InvalidCount):
            tracker.submit_counts(p.period_id, -1, now=_now())

    def test_on_demand_ceiling_is_accepted(self) -> None:
        tracker = _make_tracker()
        a = _on_demand(tracker)
        p = tracker.get_or_create_period(a.assignment_id, "2026-03")
        with pytest.raises(MissingAcceptedUnits):
            tracker.submit_counts(p.period_id, 2, now=_now())
        with pytest.raises(CountExceedsCeiling):
            tracker.submit_counts(p.period_id, 5, accepted_units=4, now=_now())
        period, fact = tracker.submit_counts(p.period_id, 3, accepted_units=4, now=_now())
        assert period.accepted_units == 4
        assert period.missed_units == 1
        assert period.expected_units is None

    def test_late_submission_accepted_and_flagged(self) -> None:
        tracker = _make_tracker()
        a = _dedicated(tracker)
        p = tracker.get_or_create_period(a.assignment_id, "2026-W10")
        late = datetime(2026, 3, 11, 0, 0, 1, tzinfo=timezone.utc)
        period, fact = tracker.submit_counts(p.period_id, 5, now=late)
        assert period.status == PeriodStatus.SUBMITTED
        assert period.late is True
        assert fact.signal == Signal.NEUTRAL

    def test_late_shortfall_still_counts_against(self) -> None:
        tracker = _make_tracker()
        a = _dedicated(tracker)
        p = tracker.get_or_create_period(a.assignment_id, "2026-W10")
        late = _now() + timedelta(days=30)
        _, fact = tracker.submit_counts(p.period_id, 1, now=late)
        assert fact.signal == Signal.NO

    def test_racing_submissions_accept_exactly_one(self) -> None:
        tracker = _make_tracker()
        a = _dedicated(tracker)
        p = tracker.get_or_create_period(a.assignment_id, "2026-W10")
        barrier = threading.Barrier(8)
        accepted: list[int] = []
        refused: list[int] = []
        guard = threading.Lock()

        def submit(count: int) -> None:
            barrier.wait()
            try:
                tracker.submit_counts(p.period_id, count, now=_now())
            except PeriodNotPending:
                with guard:
                    refused.append(count)
                return
            with guard:
                accepted.append(count)

        threads = [threading.Thread(target=submit, args=(n % 6,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        assert len(accepted) == 1
        assert len(refused) == 7
        stored = tracker.get_period(p.period_id)
        assert stored.completed_units == accepted[0]
        assert stored.missed_units == 5 - accepted[0]


class TestDisputeAndArbitration:
    def _submitted(self, tracker: AssignmentTracker, key: str = "2026-W10"):
        a = tracker.active_assignment_for("route-1", "s1") or _dedicated(tracker)
        p = tracker.get_or_create_period(a.assignment_id, key)
        period, _ = tracker.submit_counts(p.period_id, 3, now=_now())
        return period

    def test_dispute_then_arbitrate(self) -> None:
        tracker = _make_tracker()
        period = self._submitted(tracker)
        disputed = tracker.dispute_period(period.period_id, "rain days", now=_now())
        assert disputed.status == PeriodStatus.DISPUTED
        resolved = tracker.arbitrate_period(
            period.period_id, ArbitrationOutcome.GOOD, completed_units=5, now=_now(),
        )
        assert resolved.status == PeriodStatus.SUBMITTED
        assert resolved.arbitration_outcome == ArbitrationOutcome.GOOD
        assert resolved.missed_units == 0

    def test_pending_period_not_disputable(self) -> None:
        tracker = _make_tracker()
        a = _dedicated(tracker)
        p = tracker.get_or_create_period(a.assignment_id, "2026-W10")
        with pytest.raises(PeriodNotDisputable):
            tracker.dispute_period(p.period_id, "why", now=_now())

    def test_arbitrated_period_not_disputable_again(self) -> None:
        tracker = _make_tracker()
        period = self._submitted(tracker)
        tracker.dispute_period(period.period_id, "n", now=_now())
        tracker.arbitrate_period(period.period_id, ArbitrationOutcome.BAD, now=_now())
        with pytest.raises(PeriodNotDisputable):
            tracker.dispute_period(period.period_id, "again", now=_now() + timedelta(days=40))

    def test_one_dispute_per_month(self) -> None:
        tracker = _make_tracker()
        first = self._submitted(tracker, "2026-W10")
        second = self._submitted(tracker, "2026-W11")
        tracker.dispute_period(first.period_id, "a", now=_now())
        with pytest.raises(DisputeLimitReached):
            tracker.dispute_period(second.period_id, "b", now=_now() + timedelta(days=1))
        next_month = datetime(2026, 4, 1, tzinfo=timezone.utc)
        assert tracker.dispute_period(second.period_id, "b", now=next_month).status == PeriodStatus.DISPUTED

    def test_arbitrate_requires_dispute(self) -> None:
        tracker = _make_tracker()
        period = self._submitted(tracker)
        with pytest.raises(PeriodNotDisputed):
            tracker.arbitrate_period(period.period_id, ArbitrationOutcome.GOOD, now=_now())

    def test_parallel_disputes_respect_monthly_limit(self) -> None:
        tracker = _make_tracker(dispute_limit_per_month=1)
        periods = [self._submitted(tracker, f"2026-W{week:02d}") for week in range(10, 16)]
        barrier = threading.Barrier(len(periods))
        outcomes: list[object] = []
        guard = threading.Lock()

        def dispute(period_id: str) -> None:
            barrier.wait()
            try:
                result: object = tracker.dispute_period(period_id, "contested", now=_now())
            except DisputeLimitReached as exc:
                result = exc
            with guard:
                outcomes.append(result)

        threads = [threading.Thread(target=dispute, args=(p.period_id,)) for p in periods]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        disputed = [o for o in outcomes if not isinstance(o, DisputeLimitReached)]
        assert len(outcomes) == len(periods)
        assert len(disputed) == 1
        statuses = [tracker.get_period(p.period_id).status for p in periods]
        assert statuses.count(PeriodStatus.DISPUTED) == 1


class TestTrackerPersistence:
    def test_round_trip(self) -> None:
        links = _make_links()
        tracker = _make_tracker(links)
        a = _dedicated(tracker)
        p = tracker.get_or_create_period(a.assignment_id, "2026-W10")
        tracker.submit_counts(p.period_id, 4, now=_now())
        restored = AssignmentTracker.from_records(
            tracker.to_records(), links, PolicyResolver.default(),
        )
        assert restored.get_assignment(a.assignment_id) == tracker.get_assignment(a.assignment_id)
        assert restored.find_period(a.assignment_id, "2026-W10") == tracker.get_period(p.period_id)
