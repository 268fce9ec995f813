"""Tests for the record-level invariant checks."""

from datetime import datetime, timezone

from snaptrust.invariants import (
    check_all,
    check_assignments,
    check_links,
    check_notices,
    check_periods,
)
from snaptrust.models import (
    Assignment,
    AssignmentType,
    Cadence,
    ExitNotice,
    Link,
    LinkStatus,
    NoticeStatus,
    PeriodStatus,
    UnitType,
    WorkPeriod,
)
from snaptrust.policy import PolicyResolver


def _link(**overrides) -> Link:
    fields = dict(link_id="link_1", seeker_id="s1", retainer_id="r1")
    fields.update(overrides)
    return Link(**fields)


def _assignment(assignment_id: str = "asg_1", **overrides) -> Assignment:
    fields = dict(
        assignment_id=assignment_id,
        route_id="route-1",
        retainer_id="r1",
        seeker_id="s1",
        assignment_type=AssignmentType.DEDICATED,
        unit_type=UnitType.DAY,
        cadence=Cadence.WEEKLY,
        expected_units_per_period=5,
    )
    fields.update(overrides)
    return Assignment(**fields)


def _period(**overrides) -> WorkPeriod:
    fields = dict(
        period_id="wp_1",
        assignment_id="asg_1",
        period_key="2026-W10",
        cadence=Cadence.WEEKLY,
        assignment_type=AssignmentType.DEDICATED,
        expected_units=5,
        completed_units=4,
        missed_units=1,
        status=PeriodStatus.SUBMITTED,
    )
    fields.update(overrides)
    return WorkPeriod(**fields)


class TestCheckLinks:
    def test_consistent_links_pass(self) -> None:
        errors: list[str] = []
        confirmed = dict(
            video_confirmed_by_seeker=True, video_confirmed_by_retainer=True,
            approved_by_seeker=True, approved_by_retainer=True,
        )
        check_links([
            _link(),
            _link(link_id="link_2", retainer_id="r2", status=LinkStatus.ACTIVE, **confirmed),
            _link(link_id="link_3", retainer_id="r3", status=LinkStatus.DISABLED, **confirmed),
        ], errors)
        assert errors == []

    def test_active_without_confirmations_flagged(self) -> None:
        errors: list[str] = []
        check_links([_link(status=LinkStatus.ACTIVE)], errors)
        assert errors


class TestCheckAssignments:
    def test_duplicate_active_flagged(self) -> None:
        errors: list[str] = []
        check_assignments([_assignment("asg_1"), _assignment("asg_2")], errors)
        assert any("2 active assignments" in e for e in errors)

    def test_dedicated_without_units_flagged(self) -> None:
        errors: list[str] = []
        check_assignments([_assignment(expected_units_per_period=None)], errors)
        assert any("no expected units" in e for e in errors)


class TestCheckPeriods:
    def test_consistent_period_passes(self) -> None:
        errors: list[str] = []
        check_periods([_period(), _period(period_id="wp_2", period_key="2026-W11",
                                          status=PeriodStatus.PENDING,
                                          completed_units=None, missed_units=None)], errors)
        assert errors == []

    def test_over_ceiling_flagged(self) -> None:
        errors: list[str] = []
        check_periods([_period(completed_units=6, missed_units=0)], errors)
        assert any("exceeds ceiling" in e for e in errors)

    def test_missed_mismatch_flagged(self) -> None:
        errors: list[str] = []
        check_periods([_period(missed_units=3)], errors)
        assert any("missed_units" in e for e in errors)


class TestCheckNotices:
    def test_two_open_notices_flagged(self) -> None:
        when = datetime(2026, 3, 4, tzinfo=timezone.utc)

        def notice(notice_id: str, status: NoticeStatus) -> ExitNotice:
            return ExitNotice(
                notice_id=notice_id, seeker_id="s1", route_id="route-1",
                retainer_id="r1", assignment_id="asg_1",
                notice_given_utc=when, effective_end_utc=when, status=status,
            )

        errors: list[str] = []
        check_notices([notice("n1", NoticeStatus.ACTIVE), notice("n2", NoticeStatus.DISPUTED)], errors)
        assert any("2 open notices" in e for e in errors)

        errors = []
        check_notices([notice("n3", NoticeStatus.CONFIRMED_BAD)], errors)
        assert any("no tier" in e for e in errors)


class TestCheckAll:
    def test_empty_state_is_clean(self) -> None:
        assert check_all([], [], [], [], PolicyResolver.default()) == []
