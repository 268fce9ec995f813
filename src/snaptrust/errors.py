"""Violation taxonomy — every rejected operation raises one of these.

Categories:
- StateViolation: the operation would produce an invalid state transition
  (double submission, duplicate ACTIVE assignment, resolved notice).
- EligibilityViolation: a precondition on the relationship is not met
  (link not active / not working together, entitlement denied).
- ValidationViolation: an input is missing or out of range (missing
  expected units, counts above the ceiling, malformed period key).
- RecordNotFound: the addressed record does not exist.

All errors subclass ValueError so callers that only know the engines
raise ValueError on rejection keep working. Rejection always happens
before any record is replaced, so a raised error means nothing changed.
"""

from __future__ import annotations


class SnapTrustError(ValueError):
    """Base class for all engine rejections."""

    category = "error"
    code = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class StateViolation(SnapTrustError):
    category = "state_violation"
    code = "state_violation"


class EligibilityViolation(SnapTrustError):
    category = "eligibility_violation"
    code = "eligibility_violation"


class ValidationViolation(SnapTrustError):
    category = "validation_violation"
    code = "validation_violation"


class RecordNotFound(SnapTrustError):
    category = "record_not_found"
    code = "record_not_found"


# ------------------------------------------------------------------
# Link Manager
# ------------------------------------------------------------------

class AlreadyLinked(StateViolation):
    code = "already_linked"


class LinkClosed(StateViolation):
    code = "link_closed"


class LinkNotActive(StateViolation):
    code = "link_not_active"


class NotEligible(EligibilityViolation):
    code = "not_eligible"


class InvalidStatusTarget(ValidationViolation):
    code = "invalid_status_target"


class LinkNotFound(RecordNotFound):
    code = "link_not_found"


# ------------------------------------------------------------------
# Assignment & Work-Period Tracker
# ------------------------------------------------------------------

class LinkNotEligible(EligibilityViolation):
    code = "link_not_eligible"


class DuplicateAssignment(StateViolation):
    code = "duplicate_assignment"


class AssignmentNotActive(StateViolation):
    code = "assignment_not_active"


class MissingExpectedUnits(ValidationViolation):
    code = "missing_expected_units"


class MissingAcceptedUnits(ValidationViolation):
    code = "missing_accepted_units"


class InvalidCount(ValidationViolation):
    code = "invalid_count"


class InvalidPeriodKey(ValidationViolation):
    code = "invalid_period_key"


class CountExceedsCeiling(ValidationViolation):
    code = "count_exceeds_ceiling"


class PeriodNotPending(StateViolation):
    code = "period_not_pending"


class PeriodNotDisputable(StateViolation):
    code = "period_not_disputable"


class PeriodNotDisputed(StateViolation):
    code = "period_not_disputed"


class DisputeLimitReached(StateViolation):
    code = "dispute_limit_reached"


class AssignmentNotFound(RecordNotFound):
    code = "assignment_not_found"


class PeriodNotFound(RecordNotFound):
    code = "period_not_found"


# ------------------------------------------------------------------
# Exit Notice & Penalty Escalator
# ------------------------------------------------------------------

class NoActiveAssignment(EligibilityViolation):
    code = "no_active_assignment"


class NoticeAlreadyActive(StateViolation):
    code = "notice_already_active"


class NoticeAlreadyResolved(StateViolation):
    code = "notice_already_resolved"


class NoticeNotDisputed(StateViolation):
    code = "notice_not_disputed"


class InvalidOutcome(ValidationViolation):
    code = "invalid_outcome"


class NoticeNotFound(RecordNotFound):
    code = "notice_not_found"


# ------------------------------------------------------------------
# Reputation
# ------------------------------------------------------------------

class CheckInLocked(StateViolation):
    code = "checkin_locked"


class CheckInNotFound(RecordNotFound):
    code = "checkin_not_found"
