"""Reputation — check-ins, outcome facts, and read-time scoring."""

from snaptrust.reputation.aggregator import ReputationAggregator
from snaptrust.reputation.checkins import CheckInBook
from snaptrust.reputation.facts import (
    fact_for_checkin,
    fact_for_notice,
    fact_for_period,
    facts_from_checkins,
    facts_from_notices,
    facts_from_periods,
)

__all__ = [
    "CheckInBook",
    "ReputationAggregator",
    "fact_for_checkin",
    "fact_for_notice",
    "fact_for_period",
    "facts_from_checkins",
    "facts_from_notices",
    "facts_from_periods",
]
