"""SnapTrust service — the facade that wires the engines together.

The engines raise typed violations; the service turns every mutation
into a ServiceResult, appends an audit event, and persists state.

Mutation ordering:
1. Snapshot the in-memory records (frozen records, so a shallow copy).
2. Run the engine operation. A violation returns a failed result and
   nothing has changed.
3. Persist the state store. On failure the snapshot is restored and a
   failed result is returned.
4. Append the audit event. On failure the snapshot is restored and the
   store is rewritten from it, so no state change survives without its
   audit record. If that rewrite also fails, persistence_degraded is set.

The whole sequence runs under one service-wide re-entrant lock, so a
rollback only ever undoes the change of the call that made it. Per-key
locks inside the engines still guard direct engine use.

Reads (scores, badges, exit status) derive everything from the stored
records at call time.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Optional

from snaptrust import invariants
from snaptrust.concurrency import KeyedLocks
from snaptrust.errors import SnapTrustError
from snaptrust.exits import ExitNoticeManager, ExitStatus
from snaptrust.linking import LinkManager
from snaptrust.linking.manager import EntitlementCheck
from snaptrust.models.assignment import (
    ArbitrationOutcome,
    AssignmentType,
    Cadence,
    UnitType,
)
from snaptrust.models.common import PartyType, utc_now
from snaptrust.models.link import LinkStatus
from snaptrust.models.notice import NoticeOutcome
from snaptrust.models.reputation import (
    BadgeProgress,
    OutcomeFact,
    ReputationScore,
    Signal,
)
from snaptrust.persistence import EventKind, EventLog, EventRecord, StateStore
from snaptrust.policy import PolicyResolver
from snaptrust.reputation import (
    CheckInBook,
    ReputationAggregator,
    facts_from_checkins,
    facts_from_notices,
    facts_from_periods,
)
from snaptrust.work import AssignmentTracker

logger = logging.getLogger(__name__)


@dataclass
class ServiceResult:
    """Result of a service operation.

    violation carries the error code of the engine violation when the
    operation was rejected, e.g. "already_linked".
    """
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    violation: Optional[str] = None


class SnapTrustService:
    """Unified facade over links, assignments, exits and reputation.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = SnapTrustService(resolver)

        service.request_link("s1", "r1", PartyType.SEEKER)
        service.set_video_confirmed("s1", "r1", PartyType.SEEKER, True)
        ...
        result = service.create_assignment("route-1", "r1", "s1", ...)
        service.reputation(PartyType.SEEKER, "s1")

    Persistence (optional):
        service = SnapTrustService(resolver, event_log=log, state_store=store)
        # State is loaded on construction and saved after each mutation.
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        entitlement: Optional[EntitlementCheck] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
    ) -> None:
        self._resolver = resolver
        self._event_log = event_log
        self._state_store = state_store
        self._locks = KeyedLocks()
        # Serialises snapshot, operation, persist and audit across callers.
        self._write_lock = threading.RLock()
        self._aggregator = ReputationAggregator(resolver)

        if state_store is not None:
            state = state_store.load()
            self._links = LinkManager.from_records(
                state["links"], entitlement=entitlement, locks=self._locks,
            )
            self._tracker = AssignmentTracker.from_records(
                {"assignments": state["assignments"], "periods": state["periods"]},
                self._links, resolver, locks=self._locks,
            )
            self._exits = ExitNoticeManager.from_records(
                state["notices"], self._tracker, resolver, locks=self._locks,
            )
            self._checkins = CheckInBook.from_records(
                state["checkins"], self._links, locks=self._locks,
            )
        else:
            self._links = LinkManager(entitlement=entitlement, locks=self._locks)
            self._tracker = AssignmentTracker(self._links, resolver, locks=self._locks)
            self._exits = ExitNoticeManager(self._tracker, resolver, locks=self._locks)
            self._checkins = CheckInBook(self._links, locks=self._locks)

        # Initialize counter from persisted log to avoid ID collision on restart
        self._event_counter = event_log.count if event_log is not None else 0
        self._persistence_degraded: bool = False

    # ------------------------------------------------------------------
    # Engine access (read-only use)
    # ------------------------------------------------------------------

    @property
    def links(self) -> LinkManager:
        return self._links

    @property
    def tracker(self) -> AssignmentTracker:
        return self._tracker

    @property
    def exits(self) -> ExitNoticeManager:
        return self._exits

    @property
    def checkins(self) -> CheckInBook:
        return self._checkins

    @property
    def persistence_degraded(self) -> bool:
        return self._persistence_degraded

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    def request_link(
        self, seeker_id: str, retainer_id: str, by: PartyType,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._mutate(
            EventKind.LINK_REQUESTED, _actor(by, seeker_id, retainer_id),
            lambda: self._links.request_link(seeker_id, retainer_id, by, now=now).to_dict(),
        )

    def set_video_confirmed(
        self, seeker_id: str, retainer_id: str, by: PartyType, value: bool,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._mutate(
            EventKind.LINK_CONFIRMATION_CHANGED, _actor(by, seeker_id, retainer_id),
            lambda: self._links.set_video_confirmed(
                seeker_id, retainer_id, by, value, now=now,
            ).to_dict(),
            {"field": "video_confirmed", "value": bool(value)},
        )

    def set_approved(
        self, seeker_id: str, retainer_id: str, by: PartyType, value: bool,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._mutate(
            EventKind.LINK_CONFIRMATION_CHANGED, _actor(by, seeker_id, retainer_id),
            lambda: self._links.set_approved(
                seeker_id, retainer_id, by, value, now=now,
            ).to_dict(),
            {"field": "approved", "value": bool(value)},
        )

    def set_working_together(
        self, seeker_id: str, retainer_id: str, by: PartyType, value: bool,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._mutate(
            EventKind.LINK_WORKING_TOGETHER_SET, _actor(by, seeker_id, retainer_id),
            lambda: self._links.set_working_together(
                seeker_id, retainer_id, by, value, now=now,
            ).to_dict(),
        )

    def set_link_status(
        self, seeker_id: str, retainer_id: str, status: LinkStatus,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._mutate(
            EventKind.LINK_STATUS_SET, "system",
            lambda: self._links.set_link_status(
                seeker_id, retainer_id, status, now=now,
            ).to_dict(),
        )

    def reset_link(
        self, seeker_id: str, retainer_id: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._mutate(
            EventKind.LINK_RESET, "system",
            lambda: self._links.reset_link(seeker_id, retainer_id, now=now).to_dict(),
        )

    def disable_links_for_party(
        self, party_type: PartyType, party_id: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        def _run() -> dict[str, Any]:
            changed = self._links.disable_links_for_party(party_type, party_id, now=now)
            return {"disabled": [l.link_id for l in changed]}

        return self._mutate(EventKind.LINKS_DISABLED, party_id, _run)

    # ------------------------------------------------------------------
    # Assignments and work periods
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
    ) -> ServiceResult:
        return self._mutate(
            EventKind.ASSIGNMENT_CREATED, retainer_id,
            lambda: self._tracker.create_assignment(
                route_id, retainer_id, seeker_id, assignment_type, unit_type,
                cadence, expected_units_per_period, start_date, now=now,
            ).to_dict(),
        )

    def end_assignment(
        self, assignment_id: str, reason: str = "", now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._mutate(
            EventKind.ASSIGNMENT_ENDED, "system",
            lambda: self._tracker.end_assignment(assignment_id, reason, now=now).to_dict(),
        )

    def update_expected_units(
        self, assignment_id: str, expected_units_per_period: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._mutate(
            EventKind.ASSIGNMENT_UNITS_UPDATED, "system",
            lambda: self._tracker.update_expected_units(
                assignment_id, expected_units_per_period, now=now,
            ).to_dict(),
        )

    def open_period(
        self, assignment_id: str, period_key: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._mutate(
            EventKind.PERIOD_OPENED, "system",
            lambda: self._tracker.get_or_create_period(
                assignment_id, period_key, now=now,
            ).to_dict(),
        )

    def submit_counts(
        self,
        period_id: str,
        completed_units: int,
        accepted_units: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        def _run() -> dict[str, Any]:
            period, fact = self._tracker.submit_counts(
                period_id, completed_units, accepted_units, now=now,
            )
            data = period.to_dict()
            data["fact"] = {"signal": fact.signal.value, "weight": fact.weight, "reason": fact.reason}
            return data

        return self._mutate(EventKind.PERIOD_SUBMITTED, "system", _run)

    def dispute_period(
        self, period_id: str, note: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._mutate(
            EventKind.PERIOD_DISPUTED, "system",
            lambda: self._tracker.dispute_period(period_id, note, now=now).to_dict(),
        )

    def arbitrate_period(
        self,
        period_id: str,
        outcome: ArbitrationOutcome,
        completed_units: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._mutate(
            EventKind.PERIOD_ARBITRATED, "arbitration",
            lambda: self._tracker.arbitrate_period(
                period_id, outcome, completed_units, now=now,
            ).to_dict(),
        )

    # ------------------------------------------------------------------
    # Exit notices
    # ------------------------------------------------------------------

    def file_notice(
        self,
        seeker_id: str,
        route_id: str,
        required_notice_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._mutate(
            EventKind.NOTICE_FILED, seeker_id,
            lambda: self._exits.file_notice(
                seeker_id, route_id, required_notice_days, now=now,
            ).to_dict(),
        )

    def resolve_notice(
        self,
        notice_id: str,
        outcome: NoticeOutcome,
        dispute_note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._mutate(
            EventKind.NOTICE_RESOLVED, "retainer",
            lambda: self._exits.resolve_notice(
                notice_id, outcome, dispute_note, now=now,
            ).to_dict(),
        )

    def arbitrate_notice(
        self, notice_id: str, outcome: ArbitrationOutcome, now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._mutate(
            EventKind.NOTICE_ARBITRATED, "arbitration",
            lambda: self._exits.arbitrate_notice(notice_id, outcome, now=now).to_dict(),
        )

    def cancel_notice(self, notice_id: str, now: Optional[datetime] = None) -> ServiceResult:
        return self._mutate(
            EventKind.NOTICE_CANCELLED, "seeker",
            lambda: self._exits.cancel_notice(notice_id, now=now).to_dict(),
        )

    # ------------------------------------------------------------------
    # Check-ins
    # ------------------------------------------------------------------

    def record_checkin(
        self,
        badge_id: str,
        target_type: PartyType,
        target_id: str,
        verifier_id: str,
        period_key: str,
        value: Signal,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._mutate(
            EventKind.CHECKIN_RECORDED, verifier_id,
            lambda: self._checkins.record_checkin(
                badge_id, target_type, target_id, verifier_id, period_key, value, now=now,
            ).to_dict(),
        )

    def dispute_checkin(self, checkin_id: str, now: Optional[datetime] = None) -> ServiceResult:
        return self._mutate(
            EventKind.CHECKIN_DISPUTED, "system",
            lambda: self._checkins.dispute_checkin(checkin_id, now=now).to_dict(),
        )

    def override_checkin(
        self, checkin_id: str, value: Signal, note: str = "",
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._mutate(
            EventKind.CHECKIN_OVERRIDDEN, "admin",
            lambda: self._checkins.override_checkin(checkin_id, value, note, now=now).to_dict(),
        )

    # ------------------------------------------------------------------
    # Reputation (read-time)
    # ------------------------------------------------------------------

    def facts(self) -> list[OutcomeFact]:
        """Every outcome fact derivable from the current records."""
        assignments = {a.assignment_id: a for a in self._tracker.all_assignments()}
        return (
            facts_from_checkins(self._checkins.all_checkins(), self._resolver)
            + facts_from_periods(self._tracker.all_periods(), assignments, self._resolver)
            + facts_from_notices(self._exits.all_notices(), self._resolver)
        )

    def reputation(
        self, party_type: PartyType, party_id: str, now: Optional[datetime] = None,
    ) -> ReputationScore:
        now = now or utc_now()
        penalty = (
            self._exits.penalty_percent(party_id, now)
            if party_type == PartyType.SEEKER else 0
        )
        return self._aggregator.score(party_type, party_id, self.facts(), penalty)

    def percentile(
        self, party_type: PartyType, party_id: str, now: Optional[datetime] = None,
    ) -> Optional[int]:
        now = now or utc_now()
        facts = self.facts()
        penalties: dict[str, int] = {}
        if party_type == PartyType.SEEKER:
            for pid in {f.party_id for f in facts if f.party_type == PartyType.SEEKER}:
                penalties[pid] = self._exits.penalty_percent(pid, now)
        return self._aggregator.percentile(party_type, party_id, facts, penalties)

    def badge(self, party_type: PartyType, party_id: str, badge_id: str) -> BadgeProgress:
        return self._aggregator.badge_progress(
            party_type, party_id, badge_id,
            self._checkins.checkins_for(party_type, party_id, badge_id),
        )

    def exit_status(self, seeker_id: str, now: Optional[datetime] = None) -> ExitStatus:
        return self._exits.exit_status(seeker_id, now)

    # ------------------------------------------------------------------
    # Status and invariants
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        """Return system-wide status summary."""
        links = self._links.all_links()
        assignments = self._tracker.all_assignments()
        notices = self._exits.all_notices()
        return {
            "links": {
                "total": len(links),
                "by_status": _count_by(l.status.value for l in links),
                "working_together": sum(1 for l in links if LinkManager.is_working_together(l)),
            },
            "assignments": {
                "total": len(assignments),
                "active": sum(1 for a in assignments if a.is_active),
            },
            "periods": {
                "total": len(self._tracker.all_periods()),
                "by_status": _count_by(p.status.value for p in self._tracker.all_periods()),
            },
            "notices": {
                "total": len(notices),
                "by_status": _count_by(n.status.value for n in notices),
            },
            "checkins": len(self._checkins.all_checkins()),
            "events": self._event_log.count if self._event_log is not None else 0,
            "persistence_degraded": self._persistence_degraded,
        }

    def check_invariants(self) -> list[str]:
        return invariants.check_all(
            self._links.all_links(),
            self._tracker.all_assignments(),
            self._tracker.all_periods(),
            self._exits.all_notices(),
            self._resolver,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _mutate(
        self,
        kind: EventKind,
        actor_id: str,
        operation: Callable[[], dict[str, Any]],
        extra_payload: Optional[dict[str, Any]] = None,
    ) -> ServiceResult:
        with self._write_lock:
            snapshot = self._snapshot()
            try:
                data = operation()
            except SnapTrustError as e:
                logger.debug("%s rejected: %s (%s)", kind.value, e.message, e.code)
                return ServiceResult(success=False, errors=[e.message], violation=e.code)

            err = self._safe_persist(on_rollback=lambda: self._rollback(snapshot))
            if err:
                return ServiceResult(success=False, errors=[err])

            payload = {"record": data}
            if extra_payload:
                payload.update(extra_payload)
            err = self._record_event(kind, actor_id, payload)
            if err:
                self._rollback(snapshot)
                errors = [err]
                warning = self._safe_persist_after_rollback()
                if warning:
                    errors.append(warning)
                return ServiceResult(success=False, errors=errors)

            return ServiceResult(success=True, data=data)

    def _snapshot(self) -> tuple[Any, ...]:
        return (
            self._links.snapshot(),
            self._tracker.snapshot(),
            self._exits.snapshot(),
            self._checkins.snapshot(),
        )

    def _rollback(self, snapshot: tuple[Any, ...]) -> None:
        links, tracker, exits, checkins = snapshot
        self._links.rollback(links)
        self._tracker.rollback(tracker)
        self._exits.rollback(exits)
        self._checkins.rollback(checkins)

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        with self._write_lock:
            self._event_counter += 1
            return f"EVT-{self._event_counter:08d}"

    def _record_event(
        self, kind: EventKind, actor_id: str, payload: dict[str, Any],
    ) -> Optional[str]:
        """Append an audit event. Returns error string or None."""
        if self._event_log is None:
            return None
        try:
            event = EventRecord.create(
                event_id=self._next_event_id(),
                event_kind=kind,
                actor_id=actor_id,
                payload=payload,
            )
            self._event_log.append(event)
        except (ValueError, OSError) as e:
            logger.error("Event log failure for %s: %s", kind.value, e)
            return f"Event log failure: {e}"
        return None

    def _persist_state(self) -> None:
        """Write every record to the state store (if wired). Can raise OSError."""
        if self._state_store is None:
            return
        tracker_records = self._tracker.to_records()
        self._state_store.save({
            "links": self._links.to_records(),
            "assignments": tracker_records["assignments"],
            "periods": tracker_records["periods"],
            "notices": self._exits.to_records(),
            "checkins": self._checkins.to_records(),
        })

    def _safe_persist(
        self,
        on_rollback: Optional[Callable[[], None]] = None,
    ) -> Optional[str]:
        """Persist state with fail-closed error handling.

        On failure the rollback callback undoes the in-memory mutation and
        an error string is returned for the ServiceResult.
        """
        try:
            self._persist_state()
            return None
        except OSError as e:
            logger.error("State store write failed: %s", e)
            if on_rollback is not None:
                on_rollback()
            return f"Persistence failure: {e}"

    def _safe_persist_after_rollback(self) -> Optional[str]:
        """Rewrite the store from restored memory after an audit failure."""
        try:
            self._persist_state()
            return None
        except OSError as e:
            self._persistence_degraded = True
            logger.error("State store rewrite after rollback failed: %s", e)
            return f"Persistence degraded: {e}; StateStore holds an unaudited change"


def _actor(by: PartyType, seeker_id: str, retainer_id: str) -> str:
    return seeker_id if by is PartyType.SEEKER else retainer_id


def _count_by(values: Any) -> dict[str, int]:
    counts: dict[str, int] = {}
    for v in values:
        counts[v] = counts.get(v, 0) + 1
    return counts
