"""Tests for SnapTrustService — proves the facade orchestrates correctly."""

import threading

import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from snaptrust.models import (
    AssignmentType,
    Cadence,
    LinkStatus,
    NoticeOutcome,
    PartyType,
    Signal,
    UnitType,
)
from snaptrust.persistence import EventKind, EventLog, StateStore
from snaptrust.persistence.event_log import EVENTS_FILENAME
from snaptrust.policy.resolver import PolicyResolver
from snaptrust.service import SnapTrustService


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"
SEEKER = PartyType.SEEKER
RETAINER = PartyType.RETAINER


def _now() -> datetime:
    return datetime(2026, 3, 4, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


@pytest.fixture
def service(resolver: PolicyResolver) -> SnapTrustService:
    return SnapTrustService(resolver, event_log=EventLog())


def _link_up(service: SnapTrustService, seeker: str = "s1", retainer: str = "r1") -> None:
    steps = [
        service.request_link(seeker, retainer, SEEKER, now=_now()),
        service.set_video_confirmed(seeker, retainer, SEEKER, True, now=_now()),
        service.set_video_confirmed(seeker, retainer, RETAINER, True, now=_now()),
        service.set_approved(seeker, retainer, RETAINER, True, now=_now()),
        service.set_approved(seeker, retainer, SEEKER, True, now=_now()),
        service.set_working_together(seeker, retainer, RETAINER, True, now=_now()),
    ]
    assert all(r.success for r in steps), [r.errors for r in steps]


def _assign(service: SnapTrustService) -> str:
    result = service.create_assignment(
        "route-1", "r1", "s1", AssignmentType.DEDICATED, UnitType.DAY, Cadence.WEEKLY,
        expected_units_per_period=5, now=_now(),
    )
    assert result.success, result.errors
    return result.data["assignment_id"]


def _run_scenario(service: SnapTrustService) -> None:
    """Link, assign, submit a short week, record a check-in, take a bad exit."""
    _link_up(service)
    assignment_id = _assign(service)
    period = service.open_period(assignment_id, "2026-W10", now=_now())
    assert period.success
    submitted = service.submit_counts(
        period.data["period_id"], 4, now=datetime(2026, 3, 9, 12, tzinfo=timezone.utc),
    )
    assert submitted.success
    assert submitted.data["fact"]["signal"] == "no"
    checkin = service.record_checkin(
        "reliability", SEEKER, "s1", "r1", "2026-W10", Signal.YES, now=_now(),
    )
    assert checkin.success
    notice = service.file_notice("s1", "route-1", now=_now())
    assert notice.success
    resolved = service.resolve_notice(notice.data["notice_id"], NoticeOutcome.BAD, now=_now())
    assert resolved.success


class TestLinks:
    def test_link_becomes_active(self, service: SnapTrustService) -> None:
        _link_up(service)
        link = service.links.get_link("s1", "r1")
        assert link.status == LinkStatus.ACTIVE
        assert link.working_together

    def test_duplicate_request_reports_violation(self, service: SnapTrustService) -> None:
        assert service.request_link("s1", "r1", SEEKER).success
        result = service.request_link("s1", "r1", SEEKER)
        assert not result.success
        assert result.violation == "already_linked"
        assert result.errors

    def test_entitlement_refused(self, resolver: PolicyResolver) -> None:
        service = SnapTrustService(resolver, entitlement=lambda seeker_id: seeker_id != "s9")
        result = service.request_link("s9", "r1", SEEKER)
        assert result.violation == "not_eligible"
        assert service.links.get_link("s9", "r1") is None

    def test_disable_links_for_party(self, service: SnapTrustService) -> None:
        _link_up(service, "s1", "r1")
        _link_up(service, "s1", "r2")
        result = service.disable_links_for_party(SEEKER, "s1")
        assert result.success
        assert len(result.data["disabled"]) == 2
        assert service.links.get_link("s1", "r2").status == LinkStatus.DISABLED


class TestAssignmentsAndPeriods:
    def test_assignment_requires_working_link(self, service: SnapTrustService) -> None:
        result = service.create_assignment(
            "route-1", "r1", "s1", AssignmentType.DEDICATED, UnitType.DAY, Cadence.WEEKLY,
            expected_units_per_period=5,
        )
        assert not result.success
        assert result.violation == "link_not_eligible"

    def test_over_ceiling_rejected(self, service: SnapTrustService) -> None:
        _link_up(service)
        assignment_id = _assign(service)
        period = service.open_period(assignment_id, "2026-W10", now=_now())
        result = service.submit_counts(period.data["period_id"], 6, now=_now())
        assert result.violation == "count_exceeds_ceiling"

    def test_bad_period_key_rejected(self, service: SnapTrustService) -> None:
        _link_up(service)
        assignment_id = _assign(service)
        result = service.open_period(assignment_id, "2026-13")
        assert result.violation == "invalid_period_key"


class TestReputation:
    def test_scenario_scores(self, service: SnapTrustService) -> None:
        _run_scenario(service)
        later = _now() + timedelta(days=1)
        # check-in YES (1) vs shortfall NO (1) + bad exit NO (3): 20, minus tier 1's 15.
        score = service.reputation(SEEKER, "s1", now=later)
        assert score.yes_weight == 1.0
        assert score.no_weight == 4.0
        assert score.penalty_percent == 15
        assert score.score == 5
        assert service.percentile(SEEKER, "s1", now=later) == 100

        # Once the penalty lapses only the facts remain.
        assert service.reputation(SEEKER, "s1", now=_now() + timedelta(days=31)).score == 20

    def test_badge_progress(self, service: SnapTrustService) -> None:
        _link_up(service)
        for week in range(1, 5):
            service.record_checkin(
                "reliability", SEEKER, "s1", "r1", f"2026-W{week:02d}", Signal.YES,
            )
        progress = service.badge(SEEKER, "s1", "reliability")
        assert progress.level == 1
        assert progress.next_level_at == 12

    def test_unknown_party_has_no_score(self, service: SnapTrustService) -> None:
        score = service.reputation(SEEKER, "nobody")
        assert score.score is None
        assert service.percentile(SEEKER, "nobody") is None

    def test_exit_status(self, service: SnapTrustService) -> None:
        _run_scenario(service)
        status = service.exit_status("s1", _now() + timedelta(days=1))
        assert status.penalty_percent == 15
        assert not status.suspended
        assert not status.blacklisted


class TestAuditAndStatus:
    def test_each_mutation_appends_one_event(self, service: SnapTrustService) -> None:
        _run_scenario(service)
        assert service.status()["events"] == 12
        kinds = [e.event_kind for e in service._event_log.events()]
        assert kinds.count(EventKind.LINK_CONFIRMATION_CHANGED) == 4
        assert kinds[-1] == EventKind.NOTICE_RESOLVED

    def test_rejection_appends_nothing(self, service: SnapTrustService) -> None:
        service.request_link("s1", "r1", SEEKER)
        service.request_link("s1", "r1", SEEKER)
        assert service.status()["events"] == 1

    def test_status_counts(self, service: SnapTrustService) -> None:
        _run_scenario(service)
        status = service.status()
        assert status["links"]["working_together"] == 1
        assert status["assignments"] == {"total": 1, "active": 0}
        assert status["notices"]["by_status"] == {"confirmed_bad": 1}
        assert status["checkins"] == 1
        assert not status["persistence_degraded"]

    def test_invariants_hold_after_scenario(self, service: SnapTrustService) -> None:
        _run_scenario(service)
        assert service.check_invariants() == []


class TestPersistence:
    def _persistent(self, resolver: PolicyResolver, data_dir: Path) -> SnapTrustService:
        return SnapTrustService(
            resolver,
            event_log=EventLog(data_dir / EVENTS_FILENAME),
            state_store=StateStore.in_dir(data_dir),
        )

    def test_state_survives_restart(self, resolver: PolicyResolver, tmp_path) -> None:
        first = self._persistent(resolver, tmp_path)
        _run_scenario(first)
        later = _now() + timedelta(days=1)
        before = first.reputation(SEEKER, "s1", now=later)

        second = self._persistent(resolver, tmp_path)
        assert second.reputation(SEEKER, "s1", now=later) == before
        assert second.exits.prior_bad_count("s1") == 1
        # Event numbering continues from the persisted log.
        assert second.request_link("s2", "r1", SEEKER).success
        assert second.status()["events"] == 13

    def test_store_failure_rolls_back(
        self, resolver: PolicyResolver, tmp_path, monkeypatch,
    ) -> None:
        service = self._persistent(resolver, tmp_path)

        def fail(state) -> None:
            raise OSError("disk full")

        monkeypatch.setattr(service._state_store, "save", fail)
        result = service.request_link("s1", "r1", SEEKER)
        assert not result.success
        assert "Persistence failure" in result.errors[0]
        assert service.links.get_link("s1", "r1") is None
        assert service.status()["events"] == 0

    def test_audit_failure_rolls_back_and_rewrites(
        self, resolver: PolicyResolver, tmp_path, monkeypatch,
    ) -> None:
        service = self._persistent(resolver, tmp_path)
        assert service.request_link("s1", "r1", SEEKER).success

        def fail(event) -> None:
            raise OSError("log unavailable")

        monkeypatch.setattr(service._event_log, "append", fail)
        result = service.request_link("s2", "r1", SEEKER)
        assert not result.success
        assert service.links.get_link("s2", "r1") is None
        assert len(StateStore.in_dir(tmp_path).load()["links"]) == 1
        assert not service.persistence_degraded

    def test_degraded_when_rewrite_fails(
        self, resolver: PolicyResolver, tmp_path, monkeypatch,
    ) -> None:
        service = self._persistent(resolver, tmp_path)
        monkeypatch.setattr(
            service, "_record_event", lambda kind, actor_id, payload: "Event log failure: x",
        )
        calls = {"n": 0}
        real_save = service._state_store.save

        def save_once(state) -> None:
            calls["n"] += 1
            if calls["n"] > 1:
                raise OSError("write failed")
            real_save(state)

        monkeypatch.setattr(service._state_store, "save", save_once)
        result = service.request_link("s1", "r1", SEEKER)
        assert not result.success
        assert service.persistence_degraded
        assert any("Persistence degraded" in e for e in result.errors)

    def test_failed_write_does_not_undo_concurrent_write(
        self, resolver: PolicyResolver, tmp_path, monkeypatch,
    ) -> None:
        service = self._persistent(resolver, tmp_path)
        real_save = service._state_store.save
        entered = threading.Event()
        release = threading.Event()
        guard = threading.Lock()
        calls = {"n": 0}

        def stalled_then_failing_save(state) -> None:
            with guard:
                calls["n"] += 1
                first = calls["n"] == 1
            if first:
                entered.set()
                release.wait(5)
                raise OSError("disk full")
            real_save(state)

        monkeypatch.setattr(service._state_store, "save", stalled_then_failing_save)
        results: dict[str, object] = {}
        b_done = threading.Event()

        def first_writer() -> None:
            results["a"] = service.request_link("s1", "r1", SEEKER)

        def second_writer() -> None:
            results["b"] = service.request_link("s2", "r2", SEEKER)
            b_done.set()

        a = threading.Thread(target=first_writer)
        a.start()
        assert entered.wait(5)
        b = threading.Thread(target=second_writer)
        b.start()
        # The second write waits for the first to finish, rollback included.
        assert not b_done.wait(0.2)
        release.set()
        a.join(5)
        b.join(5)

        assert not results["a"].success
        assert results["b"].success
        assert service.links.get_link("s1", "r1") is None
        assert service.links.get_link("s2", "r2") is not None
        stored = StateStore.in_dir(tmp_path).load()["links"]
        assert [(r["seeker_id"], r["retainer_id"]) for r in stored] == [("s2", "r2")]
        assert service.status()["events"] == 1


class TestConcurrentLinkFlips:
    FLIPS = [
        ("set_video_confirmed", SEEKER),
        ("set_video_confirmed", RETAINER),
        ("set_approved", SEEKER),
        ("set_approved", RETAINER),
    ]

    def test_parallel_flags_all_survive(self, service: SnapTrustService) -> None:
        assert service.request_link("s1", "r1", SEEKER).success
        for _ in range(5):
            barrier = threading.Barrier(len(self.FLIPS))
            results = []

            def flip(method: str, side: PartyType) -> None:
                barrier.wait()
                results.append(getattr(service, method)("s1", "r1", side, True))

            threads = [threading.Thread(target=flip, args=f) for f in self.FLIPS]
            for t in threads:
                t.start()
            for t in threads:
                t.join(5)

            assert all(r.success for r in results), [r.errors for r in results]
            link = service.links.get_link("s1", "r1")
            assert link.video_confirmed_by_seeker and link.video_confirmed_by_retainer
            assert link.approved_by_seeker and link.approved_by_retainer
            assert link.status == LinkStatus.ACTIVE
            assert service.check_invariants() == []

            assert service.reset_link("s1", "r1").success
            assert service.links.get_link("s1", "r1").status == LinkStatus.PENDING

    def test_parallel_clear_leaves_link_pending(self, service: SnapTrustService) -> None:
        _link_up(service)
        barrier = threading.Barrier(len(self.FLIPS))

        def flip(method: str, side: PartyType) -> None:
            barrier.wait()
            getattr(service, method)("s1", "r1", side, False)

        threads = [threading.Thread(target=flip, args=f) for f in self.FLIPS]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        link = service.links.get_link("s1", "r1")
        assert link.status == LinkStatus.PENDING
        assert not link.working_together
        assert service.check_invariants() == []
