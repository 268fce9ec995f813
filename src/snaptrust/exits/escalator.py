"""Exit notices and bad-exit penalty escalation.

A seeker on a DEDICATED assignment files a notice before leaving; the
notice becomes effective after the required notice period. The retainer
then resolves it:

    GOOD     → CONFIRMED_GOOD, assignment ended
    BAD      → CONFIRMED_BAD, assignment ended, tier consequences applied
    DISPUTE  → DISPUTED, excluded from scoring until arbitrated

Only arbitrate_notice moves a notice out of DISPUTED. The seeker may
cancel a notice while it is still ACTIVE.

Tier selection for a bad exit reads the seeker's prior CONFIRMED_BAD
count under the ("exits", seeker_id) lock, so two concurrent bad exits
for one seeker are counted one after the other.

Lock order: notice → exits → assignment.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Optional

from snaptrust.concurrency import KeyedLocks
from snaptrust.errors import (
    AssignmentNotActive,
    InvalidOutcome,
    NoActiveAssignment,
    NoticeAlreadyActive,
    NoticeAlreadyResolved,
    NoticeNotDisputed,
    NoticeNotFound,
    ValidationViolation,
)
from snaptrust.exits.tiers import BadExitTierTable, consequence_dates
from snaptrust.models.assignment import ArbitrationOutcome, AssignmentType
from snaptrust.models.common import utc_now
from snaptrust.models.notice import (
    BadExitTier,
    ExitNotice,
    NoticeOutcome,
    NoticeStatus,
    ResolvedBy,
)
from snaptrust.policy import PolicyResolver
from snaptrust.work import AssignmentTracker

logger = logging.getLogger(__name__)

_OPEN_STATUSES = (NoticeStatus.ACTIVE, NoticeStatus.DISPUTED)


def _days_left(until: Optional[datetime], now: datetime) -> int:
    if until is None or until <= now:
        return 0
    return math.ceil((until - now).total_seconds() / 86400)


@dataclass(frozen=True)
class NoticeSummary:
    active_count: int
    days_left: int


@dataclass(frozen=True)
class BadExitSummary:
    active_count: int
    penalty_percent: int
    days_left: int


@dataclass(frozen=True)
class ExitStatus:
    """Account consequences of a seeker's bad exits at a point in time."""
    seeker_id: str
    suspended: bool
    suspended_until: Optional[datetime]
    blacklisted: bool
    appeal_open: bool
    appeal_deadline: Optional[datetime]
    penalty_percent: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "seeker_id": self.seeker_id,
            "suspended": self.suspended,
            "suspended_until": self.suspended_until.isoformat() if self.suspended_until else None,
            "blacklisted": self.blacklisted,
            "appeal_open": self.appeal_open,
            "appeal_deadline": self.appeal_deadline.isoformat() if self.appeal_deadline else None,
            "penalty_percent": self.penalty_percent,
        }


class ExitNoticeManager:
    """Files, resolves and escalates exit notices.

    Usage:
        exits = ExitNoticeManager(tracker, resolver)
        notice = exits.file_notice("s1", "route-1")
        notice = exits.resolve_notice(notice.notice_id, NoticeOutcome.BAD)
        notice.bad_exit_tier  # 1 on the first bad exit
    """

    def __init__(
        self,
        tracker: AssignmentTracker,
        resolver: PolicyResolver,
        locks: Optional[KeyedLocks] = None,
    ) -> None:
        self._tracker = tracker
        self._resolver = resolver
        self._locks = locks or KeyedLocks()
        self._tiers = BadExitTierTable.from_resolver(resolver)
        self._notices: dict[str, ExitNotice] = {}

    @property
    def tier_table(self) -> BadExitTierTable:
        return self._tiers

    @property
    def tracker(self) -> AssignmentTracker:
        return self._tracker

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def file_notice(
        self,
        seeker_id: str,
        route_id: str,
        required_notice_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ExitNotice:
        """Record a seeker's intent to leave a DEDICATED route.

        Raises:
            NoActiveAssignment: no ACTIVE DEDICATED assignment for the pair.
            NoticeAlreadyActive: an unresolved notice already exists.
        """
        if required_notice_days is None:
            required_notice_days = self._resolver.default_notice_days()
        if (
            isinstance(required_notice_days, bool)
            or not isinstance(required_notice_days, int)
            or required_notice_days < 0
        ):
            raise ValidationViolation(
                f"required_notice_days must be a non-negative integer, got {required_notice_days!r}"
            )
        now = now or utc_now()

        with self._locks.hold("notice", seeker_id, route_id):
            with self._locks.hold("assignment", route_id, seeker_id):
                assignment = self._tracker.active_assignment_for(route_id, seeker_id)
                if assignment is None or assignment.assignment_type != AssignmentType.DEDICATED:
                    raise NoActiveAssignment(
                        f"Seeker {seeker_id} has no active dedicated assignment on route {route_id}"
                    )
                for n in self._notices.values():
                    if n.key == (seeker_id, route_id) and n.status in _OPEN_STATUSES:
                        raise NoticeAlreadyActive(
                            f"Notice {n.notice_id} is already {n.status.value} for "
                            f"{seeker_id} on {route_id}"
                        )
                notice = ExitNotice(
                    notice_id=f"notice_{uuid.uuid4().hex[:12]}",
                    seeker_id=seeker_id,
                    route_id=route_id,
                    retainer_id=assignment.retainer_id,
                    assignment_id=assignment.assignment_id,
                    notice_given_utc=now,
                    effective_end_utc=now + timedelta(days=required_notice_days),
                    status=NoticeStatus.ACTIVE,
                    updated_utc=now,
                )
                self._notices[notice.notice_id] = notice
        logger.info(
            "Exit notice %s filed: seeker=%s route=%s effective=%s",
            notice.notice_id, seeker_id, route_id, notice.effective_end_utc.isoformat(),
        )
        return notice

    def resolve_notice(
        self,
        notice_id: str,
        outcome: NoticeOutcome,
        dispute_note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ExitNotice:
        """Retainer's resolution of an ACTIVE notice."""
        if not isinstance(outcome, NoticeOutcome):
            raise InvalidOutcome(f"Unknown notice outcome: {outcome!r}")
        now = now or utc_now()
        current = self._get(notice_id)
        with self._locks.hold("notice", current.seeker_id, current.route_id):
            current = self._get(notice_id)
            if current.status != NoticeStatus.ACTIVE:
                raise NoticeAlreadyResolved(
                    f"Notice {notice_id} is {current.status.value}; only active notices resolve"
                )
            if outcome == NoticeOutcome.DISPUTE:
                resolved = replace(
                    current,
                    status=NoticeStatus.DISPUTED,
                    dispute_note=dispute_note,
                    updated_utc=now,
                )
                self._notices[notice_id] = resolved
                logger.info("Exit notice %s disputed", notice_id)
                return resolved
            good = outcome == NoticeOutcome.GOOD
            return self._finalise(current, good, ResolvedBy.RETAINER, now)

    def arbitrate_notice(
        self,
        notice_id: str,
        outcome: ArbitrationOutcome,
        now: Optional[datetime] = None,
    ) -> ExitNotice:
        """Settle a DISPUTED notice. The only way out of DISPUTED."""
        if not isinstance(outcome, ArbitrationOutcome):
            raise InvalidOutcome(f"Unknown arbitration outcome: {outcome!r}")
        now = now or utc_now()
        current = self._get(notice_id)
        with self._locks.hold("notice", current.seeker_id, current.route_id):
            current = self._get(notice_id)
            if current.status != NoticeStatus.DISPUTED:
                raise NoticeNotDisputed(
                    f"Notice {notice_id} is {current.status.value}, not disputed"
                )
            good = outcome == ArbitrationOutcome.GOOD
            return self._finalise(current, good, ResolvedBy.ARBITRATION, now)

    def cancel_notice(self, notice_id: str, now: Optional[datetime] = None) -> ExitNotice:
        """Seeker withdraws an ACTIVE notice; the assignment continues."""
        now = now or utc_now()
        current = self._get(notice_id)
        with self._locks.hold("notice", current.seeker_id, current.route_id):
            current = self._get(notice_id)
            if current.status != NoticeStatus.ACTIVE:
                raise NoticeAlreadyResolved(
                    f"Notice {notice_id} is {current.status.value}; only active notices can be cancelled"
                )
            cancelled = replace(
                current,
                status=NoticeStatus.CANCELLED,
                resolved_utc=now,
                resolved_by=ResolvedBy.SEEKER,
                updated_utc=now,
            )
            self._notices[notice_id] = cancelled
        logger.info("Exit notice %s cancelled by seeker", notice_id)
        return cancelled

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_notice(self, notice_id: str) -> Optional[ExitNotice]:
        return self._notices.get(notice_id)

    def notices_for_seeker(self, seeker_id: str) -> list[ExitNotice]:
        return sorted(
            (n for n in self._notices.values() if n.seeker_id == seeker_id),
            key=lambda n: n.notice_given_utc,
        )

    def all_notices(self) -> list[ExitNotice]:
        return list(self._notices.values())

    def prior_bad_count(self, seeker_id: str) -> int:
        return sum(
            1 for n in self._notices.values()
            if n.seeker_id == seeker_id and n.status == NoticeStatus.CONFIRMED_BAD
        )

    def next_tier_for(self, seeker_id: str) -> BadExitTier:
        """Tier the seeker's next bad exit would receive."""
        return self._tiers.tier_for(self.prior_bad_count(seeker_id))

    def active_notice_summary(
        self,
        seeker_id: str,
        now: Optional[datetime] = None,
    ) -> NoticeSummary:
        now = now or utc_now()
        active = [
            n for n in self._notices.values()
            if n.seeker_id == seeker_id and n.status == NoticeStatus.ACTIVE
        ]
        days = max((_days_left(n.effective_end_utc, now) for n in active), default=0)
        return NoticeSummary(active_count=len(active), days_left=days)

    def bad_exit_summary(
        self,
        seeker_id: str,
        now: Optional[datetime] = None,
    ) -> BadExitSummary:
        """Active bad-exit penalties; the summed percent is capped at 100."""
        now = now or utc_now()
        active = [
            n for n in self._notices.values()
            if n.seeker_id == seeker_id and n.penalty_active(now)
        ]
        penalty = min(sum(n.penalty_percent or 0 for n in active), 100)
        days = max((_days_left(n.penalty_ends_utc, now) for n in active), default=0)
        return BadExitSummary(active_count=len(active), penalty_percent=penalty, days_left=days)

    def penalty_percent(self, seeker_id: str, now: Optional[datetime] = None) -> int:
        return self.bad_exit_summary(seeker_id, now).penalty_percent

    def exit_status(self, seeker_id: str, now: Optional[datetime] = None) -> ExitStatus:
        now = now or utc_now()
        suspended_until: Optional[datetime] = None
        blacklisted = False
        appeal_deadline: Optional[datetime] = None
        for n in self._notices.values():
            if n.seeker_id != seeker_id or n.status != NoticeStatus.CONFIRMED_BAD:
                continue
            if n.suspension_until_utc is not None and n.suspension_until_utc > now:
                if suspended_until is None or n.suspension_until_utc > suspended_until:
                    suspended_until = n.suspension_until_utc
            if n.blacklist_at_utc is not None and n.blacklist_at_utc <= now:
                blacklisted = True
                if appeal_deadline is None or (
                    n.appeal_deadline_utc is not None and n.appeal_deadline_utc > appeal_deadline
                ):
                    appeal_deadline = n.appeal_deadline_utc
        return ExitStatus(
            seeker_id=seeker_id,
            suspended=suspended_until is not None,
            suspended_until=suspended_until,
            blacklisted=blacklisted,
            appeal_open=blacklisted and appeal_deadline is not None and now < appeal_deadline,
            appeal_deadline=appeal_deadline,
            penalty_percent=self.penalty_percent(seeker_id, now),
        )

    @staticmethod
    def notice_elapsed(notice: ExitNotice, now: Optional[datetime] = None) -> bool:
        """True once the required notice period has run out."""
        now = now or utc_now()
        return now >= notice.effective_end_utc

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_records(self) -> list[dict[str, Any]]:
        return [n.to_dict() for n in self._notices.values()]

    @classmethod
    def from_records(
        cls,
        records: list[dict[str, Any]],
        tracker: AssignmentTracker,
        resolver: PolicyResolver,
        locks: Optional[KeyedLocks] = None,
    ) -> ExitNoticeManager:
        manager = cls(tracker, resolver, locks=locks)
        for r in records:
            n = ExitNotice.from_dict(r)
            manager._notices[n.notice_id] = n
        return manager

    def snapshot(self) -> dict[str, ExitNotice]:
        return dict(self._notices)

    def rollback(self, snapshot: dict[str, ExitNotice]) -> None:
        self._notices = dict(snapshot)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _finalise(
        self,
        current: ExitNotice,
        good: bool,
        resolved_by: ResolvedBy,
        now: datetime,
    ) -> ExitNotice:
        """Confirm GOOD or BAD and end the assignment. Caller holds the notice lock."""
        if good:
            resolved = replace(
                current,
                status=NoticeStatus.CONFIRMED_GOOD,
                resolved_utc=now,
                resolved_by=resolved_by,
                updated_utc=now,
            )
            self._end_assignment(current, "exit confirmed good", now)
            self._notices[current.notice_id] = resolved
            logger.info("Exit notice %s confirmed good", current.notice_id)
            return resolved

        with self._locks.hold("exits", current.seeker_id):
            tier = self._tiers.tier_for(self.prior_bad_count(current.seeker_id))
            dates = consequence_dates(tier, now)
            resolved = replace(
                current,
                status=NoticeStatus.CONFIRMED_BAD,
                resolved_utc=now,
                resolved_by=resolved_by,
                bad_exit_tier=tier.tier,
                penalty_percent=tier.penalty_percent,
                updated_utc=now,
                **dates,
            )
            self._end_assignment(current, "exit confirmed bad", now)
            self._notices[current.notice_id] = resolved

        logger.info(
            "Exit notice %s confirmed bad: tier=%d penalty=%d%% for %d days",
            current.notice_id, tier.tier, tier.penalty_percent, tier.duration_days,
        )
        if tier.blacklist_after_suspension:
            logger.warning(
                "Seeker %s reached bad-exit tier %d: suspended until %s, then blacklisted",
                current.seeker_id, tier.tier,
                resolved.suspension_until_utc.isoformat() if resolved.suspension_until_utc else "now",
            )
        return resolved

    def _end_assignment(self, notice: ExitNotice, reason: str, now: datetime) -> None:
        assignment = self._tracker.get_assignment(notice.assignment_id)
        if assignment is None or not assignment.is_active:
            return
        try:
            self._tracker.end_assignment(notice.assignment_id, reason=reason, now=now)
        except AssignmentNotActive:
            # Ended concurrently through another path.
            logger.debug("Assignment %s already ended", notice.assignment_id)

    def _get(self, notice_id: str) -> ExitNotice:
        n = self._notices.get(notice_id)
        if n is None:
            raise NoticeNotFound(f"Unknown exit notice: {notice_id}")
        return n
