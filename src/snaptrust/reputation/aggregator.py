"""Reputation aggregator — read-time scores from outcome facts.

Scoring rules:
    yes = Σ weight of YES facts, no = Σ weight of NO facts
    score = round(100 × yes / (yes + no)), or None when yes + no == 0
    seekers: score −= active bad-exit penalty percent
    percent = score clamped to [0, 100]

Badge levels count how many of the badge's thresholds the total number
of YES and NO check-ins has reached, capped at MAX_BADGE_LEVEL.

Nothing is cached or stored; the same facts always give the same score.
"""

from __future__ import annotations

import math
from typing import Iterable, Optional

from snaptrust.models.common import PartyType
from snaptrust.models.reputation import (
    BadgeProgress,
    CheckIn,
    OutcomeFact,
    ReputationScore,
    Signal,
)
from snaptrust.policy import PolicyResolver
from snaptrust.policy.resolver import MAX_BADGE_LEVEL


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value: int, low: int = 0, high: int = 100) -> int:
    return max(low, min(high, value))


class ReputationAggregator:
    """Pure scoring over facts and check-ins."""

    def __init__(self, resolver: PolicyResolver) -> None:
        self._resolver = resolver

    def score(
        self,
        party_type: PartyType,
        party_id: str,
        facts: Iterable[OutcomeFact],
        penalty_percent: int = 0,
    ) -> ReputationScore:
        yes = 0.0
        no = 0.0
        neutral = 0
        for f in facts:
            if f.party_type != party_type or f.party_id != party_id:
                continue
            if f.signal == Signal.YES:
                yes += f.weight
            elif f.signal == Signal.NO:
                no += f.weight
            else:
                neutral += 1

        if party_type != PartyType.SEEKER:
            penalty_percent = 0

        if yes + no <= 0:
            return ReputationScore(
                party_type=party_type,
                party_id=party_id,
                score=None,
                percent=None,
                yes_weight=yes,
                no_weight=no,
                neutral_count=neutral,
                penalty_percent=penalty_percent,
            )

        raw = _round_half_up(100 * yes / (yes + no)) - penalty_percent
        return ReputationScore(
            party_type=party_type,
            party_id=party_id,
            score=raw,
            percent=_clamp(raw),
            yes_weight=yes,
            no_weight=no,
            neutral_count=neutral,
            penalty_percent=penalty_percent,
        )

    def badge_progress(
        self,
        party_type: PartyType,
        party_id: str,
        badge_id: str,
        checkins: Iterable[CheckIn],
    ) -> BadgeProgress:
        yes_count = 0
        no_count = 0
        for c in checkins:
            if c.target_type != party_type or c.target_id != party_id or c.badge_id != badge_id:
                continue
            value = c.effective_value
            if value == Signal.YES:
                yes_count += 1
            elif value == Signal.NO:
                no_count += 1

        total = yes_count + no_count
        thresholds = self._resolver.badge_level_thresholds(badge_id)
        level = min(sum(1 for t in thresholds if total >= t), MAX_BADGE_LEVEL)
        next_level_at = thresholds[level] if level < len(thresholds) else None
        return BadgeProgress(
            party_type=party_type,
            party_id=party_id,
            badge_id=badge_id,
            yes_count=yes_count,
            no_count=no_count,
            score=_round_half_up(100 * yes_count / total) if total else None,
            level=level,
            next_level_at=next_level_at,
        )

    def percentile(
        self,
        party_type: PartyType,
        party_id: str,
        facts: Iterable[OutcomeFact],
        penalties: Optional[dict[str, int]] = None,
    ) -> Optional[int]:
        """Share of scored parties of the same type at or below this party.

        None when the party itself has no score.
        """
        penalties = penalties or {}
        facts = [f for f in facts if f.party_type == party_type]
        party_ids = sorted({f.party_id for f in facts})
        scores: dict[str, int] = {}
        for pid in party_ids:
            result = self.score(party_type, pid, facts, penalties.get(pid, 0))
            if result.has_data:
                scores[pid] = result.score
        mine = scores.get(party_id)
        if mine is None:
            return None
        at_or_below = sum(1 for s in scores.values() if s <= mine)
        return _round_half_up(100 * at_or_below / len(scores))
