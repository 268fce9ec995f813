"""Outcome-fact derivation.

Facts are recomputed from the stored records on every read; nothing here
is persisted. Each derivation is a pure function of its inputs and the
policy weights.

Classification:
    check-in           effective value (DISPUTED → neutral)
    work period        arbitrated outcome if any; otherwise shortfall → NO,
                       on-time full completion → YES, late full → neutral;
                       PENDING and DISPUTED periods yield no fact
    exit notice        CONFIRMED_GOOD → YES, CONFIRMED_BAD → NO; every
                       other status yields no fact
"""

from __future__ import annotations

from typing import Iterable, Optional

from snaptrust.models.assignment import (
    ArbitrationOutcome,
    Assignment,
    PeriodStatus,
    WorkPeriod,
)
from snaptrust.models.notice import ExitNotice, NoticeStatus
from snaptrust.models.common import PartyType
from snaptrust.models.reputation import CheckIn, FactSource, OutcomeFact, Signal
from snaptrust.policy import PolicyResolver


def fact_for_checkin(checkin: CheckIn, resolver: PolicyResolver) -> OutcomeFact:
    return OutcomeFact(
        party_type=checkin.target_type,
        party_id=checkin.target_id,
        signal=checkin.effective_value,
        weight=resolver.fact_weight("checkin"),
        source=FactSource.CHECKIN,
        source_id=checkin.checkin_id,
        badge_id=checkin.badge_id,
        reason=f"check-in {checkin.period_key}",
    )


def facts_from_checkins(
    checkins: Iterable[CheckIn],
    resolver: PolicyResolver,
) -> list[OutcomeFact]:
    return [fact_for_checkin(c, resolver) for c in checkins]


def fact_for_period(
    period: WorkPeriod,
    assignment: Assignment,
    resolver: PolicyResolver,
) -> Optional[OutcomeFact]:
    """Classify one submitted period. None for PENDING or DISPUTED."""
    if period.status != PeriodStatus.SUBMITTED:
        return None

    if period.arbitration_outcome == ArbitrationOutcome.GOOD:
        signal, weight_key, reason = Signal.YES, "period_good_standing", "arbitrated good"
    elif period.arbitration_outcome == ArbitrationOutcome.BAD:
        signal, weight_key, reason = Signal.NO, "period_shortfall", "arbitrated bad"
    elif (period.missed_units or 0) > 0:
        signal, weight_key, reason = (
            Signal.NO, "period_shortfall", f"missed {period.missed_units} units",
        )
    elif period.late:
        signal, weight_key, reason = Signal.NEUTRAL, "period_good_standing", "late submission"
    else:
        signal, weight_key, reason = Signal.YES, "period_good_standing", "good standing"

    return OutcomeFact(
        party_type=PartyType.SEEKER,
        party_id=assignment.seeker_id,
        signal=signal,
        weight=resolver.fact_weight(weight_key),
        source=FactSource.WORK_PERIOD,
        source_id=period.period_id,
        reason=f"{period.period_key}: {reason}",
    )


def facts_from_periods(
    periods: Iterable[WorkPeriod],
    assignments: dict[str, Assignment],
    resolver: PolicyResolver,
) -> list[OutcomeFact]:
    facts: list[OutcomeFact] = []
    for period in periods:
        assignment = assignments.get(period.assignment_id)
        if assignment is None:
            continue
        fact = fact_for_period(period, assignment, resolver)
        if fact is not None:
            facts.append(fact)
    return facts


def fact_for_notice(
    notice: ExitNotice,
    resolver: PolicyResolver,
) -> Optional[OutcomeFact]:
    if notice.status == NoticeStatus.CONFIRMED_GOOD:
        signal, weight_key = Signal.YES, "exit_good"
    elif notice.status == NoticeStatus.CONFIRMED_BAD:
        signal, weight_key = Signal.NO, "exit_bad"
    else:
        return None
    reason = "clean exit" if signal == Signal.YES else f"bad exit tier {notice.bad_exit_tier}"
    return OutcomeFact(
        party_type=PartyType.SEEKER,
        party_id=notice.seeker_id,
        signal=signal,
        weight=resolver.fact_weight(weight_key),
        source=FactSource.EXIT_NOTICE,
        source_id=notice.notice_id,
        reason=reason,
    )


def facts_from_notices(
    notices: Iterable[ExitNotice],
    resolver: PolicyResolver,
) -> list[OutcomeFact]:
    facts: list[OutcomeFact] = []
    for notice in notices:
        fact = fact_for_notice(notice, resolver)
        if fact is not None:
            facts.append(fact)
    return facts
