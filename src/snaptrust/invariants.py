"""Invariant checks over a full set of engine records.

Each check appends human-readable messages to an errors list; an empty
list means the records are consistent. Used by the CLI
``check-invariants`` command and by tests after randomised sequences.
"""

from __future__ import annotations

from collections import Counter

from snaptrust.exits.tiers import BadExitTierTable
from snaptrust.linking import derive_status
from snaptrust.models.assignment import (
    Assignment,
    AssignmentStatus,
    AssignmentType,
    PeriodStatus,
    WorkPeriod,
)
from snaptrust.models.link import Link, LinkStatus
from snaptrust.models.notice import ExitNotice, NoticeStatus
from snaptrust.policy import PolicyResolver


def check_links(links: list[Link], errors: list[str]) -> None:
    for link in links:
        if link.status != derive_status(link):
            errors.append(
                f"Link {link.seeker_id}/{link.retainer_id} status {link.status.value} "
                f"disagrees with its confirmations"
            )
        if (link.status == LinkStatus.ACTIVE) != (
            link.all_confirmed and link.status not in (LinkStatus.REJECTED, LinkStatus.DISABLED)
        ):
            errors.append(
                f"Link {link.seeker_id}/{link.retainer_id} is {link.status.value} "
                f"but all_confirmed={link.all_confirmed}"
            )


def check_assignments(assignments: list[Assignment], errors: list[str]) -> None:
    active = Counter(a.key for a in assignments if a.status == AssignmentStatus.ACTIVE)
    for (route_id, seeker_id), count in active.items():
        if count > 1:
            errors.append(
                f"{count} active assignments for seeker {seeker_id} on route {route_id}"
            )
    for a in assignments:
        if a.assignment_type == AssignmentType.DEDICATED and not (
            a.expected_units_per_period and a.expected_units_per_period > 0
        ):
            errors.append(f"Dedicated assignment {a.assignment_id} has no expected units")


def check_periods(periods: list[WorkPeriod], errors: list[str]) -> None:
    keys = Counter(p.key for p in periods)
    for (assignment_id, period_key), count in keys.items():
        if count > 1:
            errors.append(f"{count} periods for {assignment_id} at {period_key}")
    for p in periods:
        if p.status == PeriodStatus.PENDING:
            continue
        ceiling = p.ceiling
        completed = p.completed_units
        if completed is None or ceiling is None:
            errors.append(f"Submitted period {p.period_id} is missing counts")
            continue
        if completed > ceiling:
            errors.append(
                f"Period {p.period_id} completed {completed} exceeds ceiling {ceiling}"
            )
        if p.missed_units != max(ceiling - completed, 0):
            errors.append(f"Period {p.period_id} missed_units is inconsistent")


def check_notices(notices: list[ExitNotice], errors: list[str]) -> None:
    open_notices = Counter(
        n.key for n in notices
        if n.status in (NoticeStatus.ACTIVE, NoticeStatus.DISPUTED)
    )
    for (seeker_id, route_id), count in open_notices.items():
        if count > 1:
            errors.append(f"{count} open notices for seeker {seeker_id} on route {route_id}")
    for n in notices:
        if n.status == NoticeStatus.CONFIRMED_BAD and n.bad_exit_tier is None:
            errors.append(f"Bad exit {n.notice_id} has no tier")


def check_tiers(resolver: PolicyResolver, errors: list[str]) -> None:
    try:
        table = BadExitTierTable.from_resolver(resolver)
    except ValueError as e:
        errors.append(str(e))
        return
    previous = None
    for prior in range(len(table.tiers) + 2):
        tier = table.tier_for(prior)
        if previous is not None and tier.penalty_percent < previous.penalty_percent:
            errors.append(f"Tier for {prior} prior bad exits is milder than for {prior - 1}")
        previous = tier


def check_all(
    links: list[Link],
    assignments: list[Assignment],
    periods: list[WorkPeriod],
    notices: list[ExitNotice],
    resolver: PolicyResolver,
) -> list[str]:
    errors: list[str] = []
    check_links(links, errors)
    check_assignments(assignments, errors)
    check_periods(periods, errors)
    check_notices(notices, errors)
    check_tiers(resolver, errors)
    return errors
