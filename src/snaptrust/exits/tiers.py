"""Bad-exit tier table.

The escalation table is data, loaded from policy. A seeker's tier for a
new bad exit is chosen by how many CONFIRMED_BAD exits they already have:
no prior bad exits → tier 1, one → tier 2, and so on, saturating at the
last row. The table is validated on construction so that escalation can
never lessen a consequence as the prior count grows.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from snaptrust.models.notice import BadExitTier
from snaptrust.policy import PolicyResolver


class BadExitTierTable:
    """Ordered, monotonic bad-exit tiers."""

    def __init__(self, tiers: list[BadExitTier]) -> None:
        if not tiers:
            raise ValueError("Bad-exit tier table must not be empty")
        ordered = sorted(tiers, key=lambda t: t.tier)
        for prev, cur in zip(ordered, ordered[1:]):
            if (
                cur.penalty_percent < prev.penalty_percent
                or cur.duration_days < prev.duration_days
                or cur.suspension_days < prev.suspension_days
                or (prev.blacklist_after_suspension and not cur.blacklist_after_suspension)
            ):
                raise ValueError(
                    f"Bad-exit tier {cur.tier} is milder than tier {prev.tier}"
                )
        self._tiers = ordered

    @classmethod
    def from_resolver(cls, resolver: PolicyResolver) -> BadExitTierTable:
        return cls(resolver.bad_exit_tiers())

    @property
    def tiers(self) -> list[BadExitTier]:
        return list(self._tiers)

    @property
    def max_tier(self) -> BadExitTier:
        return self._tiers[-1]

    def tier_for(self, prior_bad_count: int) -> BadExitTier:
        """Tier applied to the next bad exit after prior_bad_count earlier ones."""
        if prior_bad_count < 0:
            raise ValueError(f"prior_bad_count must be non-negative, got {prior_bad_count}")
        return self._tiers[min(prior_bad_count, len(self._tiers) - 1)]


def consequence_dates(
    tier: BadExitTier,
    resolved_at: datetime,
) -> dict[str, Optional[datetime]]:
    """Absolute penalty, suspension, blacklist and appeal dates for a tier."""
    suspension_until = None
    blacklist_at = None
    appeal_deadline = None
    if tier.suspension_days > 0:
        suspension_until = resolved_at + timedelta(days=tier.suspension_days)
    if tier.blacklist_after_suspension:
        blacklist_at = suspension_until or resolved_at
        appeal_deadline = blacklist_at + timedelta(days=tier.appeal_window_days)
    return {
        "penalty_ends_utc": resolved_at + timedelta(days=tier.duration_days),
        "suspension_until_utc": suspension_until,
        "blacklist_at_utc": blacklist_at,
        "appeal_deadline_utc": appeal_deadline,
    }
