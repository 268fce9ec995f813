"""Check-in book — per-badge YES/NO verdicts between linked parties.

A check-in is keyed by (badge, target, verifier, period_key, target type).
Recording the same key again while the check-in is ACTIVE overwrites its
value; once DISPUTED it is locked until an admin override settles it.
The verifier is always the counter-party of the target, and the two must
be working together over an ACTIVE link.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Optional

from snaptrust.concurrency import KeyedLocks
from snaptrust.errors import (
    CheckInLocked,
    CheckInNotFound,
    LinkNotEligible,
    ValidationViolation,
)
from snaptrust.linking import LinkManager
from snaptrust.models.common import PartyType, utc_now
from snaptrust.models.reputation import CheckIn, CheckInStatus, Signal

logger = logging.getLogger(__name__)


class CheckInBook:
    """Stores check-ins and guards who may record them."""

    def __init__(self, links: LinkManager, locks: Optional[KeyedLocks] = None) -> None:
        self._links = links
        self._locks = locks or KeyedLocks()
        self._checkins: dict[str, CheckIn] = {}
        self._index: dict[tuple[str, str, str, str, str], str] = {}

    def record_checkin(
        self,
        badge_id: str,
        target_type: PartyType,
        target_id: str,
        verifier_id: str,
        period_key: str,
        value: Signal,
        now: Optional[datetime] = None,
    ) -> CheckIn:
        """Create or overwrite the verifier's check-in for one badge and period."""
        if not badge_id or not target_id or not verifier_id or not period_key:
            raise ValidationViolation(
                "badge_id, target_id, verifier_id and period_key are required"
            )
        if not isinstance(value, Signal):
            raise ValidationViolation(f"Check-in value must be a Signal, got {value!r}")
        now = now or utc_now()

        if target_type is PartyType.SEEKER:
            seeker_id, retainer_id = target_id, verifier_id
        else:
            seeker_id, retainer_id = verifier_id, target_id
        key = (badge_id, target_id, verifier_id, period_key, target_type.value)

        with self._locks.hold("checkin", *key):
            link = self._links.get_link(seeker_id, retainer_id)
            if not LinkManager.is_working_together(link):
                raise LinkNotEligible(
                    f"{seeker_id} and {retainer_id} are not working together"
                )
            existing_id = self._index.get(key)
            if existing_id is not None:
                existing = self._checkins[existing_id]
                if existing.status == CheckInStatus.DISPUTED:
                    raise CheckInLocked(f"Check-in {existing_id} is disputed and locked")
                updated = replace(existing, value=value, updated_utc=now)
                self._checkins[existing_id] = updated
                return updated

            checkin = CheckIn(
                checkin_id=f"chk_{uuid.uuid4().hex[:12]}",
                badge_id=badge_id,
                target_type=target_type,
                target_id=target_id,
                verifier_type=target_type.other,
                verifier_id=verifier_id,
                seeker_id=seeker_id,
                retainer_id=retainer_id,
                period_key=period_key,
                value=value,
                status=CheckInStatus.ACTIVE,
                created_utc=now,
                updated_utc=now,
            )
            self._checkins[checkin.checkin_id] = checkin
            self._index[key] = checkin.checkin_id
        logger.debug("Check-in %s recorded for %s on %s", checkin.checkin_id, target_id, badge_id)
        return checkin

    def dispute_checkin(self, checkin_id: str, now: Optional[datetime] = None) -> CheckIn:
        """Lock a check-in as disputed; it counts as neutral until overridden."""
        now = now or utc_now()
        current = self._get(checkin_id)
        with self._locks.hold("checkin", *current.key):
            current = self._get(checkin_id)
            if current.status == CheckInStatus.DISPUTED:
                raise CheckInLocked(f"Check-in {checkin_id} is already disputed")
            disputed = replace(current, status=CheckInStatus.DISPUTED, updated_utc=now)
            self._checkins[checkin_id] = disputed
        logger.info("Check-in %s disputed", checkin_id)
        return disputed

    def override_checkin(
        self,
        checkin_id: str,
        value: Signal,
        note: str = "",
        now: Optional[datetime] = None,
    ) -> CheckIn:
        """Admin override. Settles a dispute and supersedes the raw value."""
        if not isinstance(value, Signal):
            raise ValidationViolation(f"Override value must be a Signal, got {value!r}")
        now = now or utc_now()
        current = self._get(checkin_id)
        with self._locks.hold("checkin", *current.key):
            current = self._get(checkin_id)
            overridden = replace(
                current,
                override_value=value,
                override_note=note,
                status=CheckInStatus.ACTIVE,
                updated_utc=now,
            )
            self._checkins[checkin_id] = overridden
        logger.info("Check-in %s overridden to %s", checkin_id, value.value)
        return overridden

    def get_checkin(self, checkin_id: str) -> Optional[CheckIn]:
        return self._checkins.get(checkin_id)

    def checkins_for(
        self,
        target_type: PartyType,
        target_id: str,
        badge_id: Optional[str] = None,
    ) -> list[CheckIn]:
        return [
            c for c in self._checkins.values()
            if c.target_type == target_type
            and c.target_id == target_id
            and (badge_id is None or c.badge_id == badge_id)
        ]

    def all_checkins(self) -> list[CheckIn]:
        return list(self._checkins.values())

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_records(self) -> list[dict[str, Any]]:
        return [c.to_dict() for c in self._checkins.values()]

    @classmethod
    def from_records(
        cls,
        records: list[dict[str, Any]],
        links: LinkManager,
        locks: Optional[KeyedLocks] = None,
    ) -> CheckInBook:
        book = cls(links, locks=locks)
        for r in records:
            c = CheckIn.from_dict(r)
            book._checkins[c.checkin_id] = c
            book._index[c.key] = c.checkin_id
        return book

    def snapshot(self) -> tuple[dict, dict]:
        return dict(self._checkins), dict(self._index)

    def rollback(self, snapshot: tuple[dict, dict]) -> None:
        checkins, index = snapshot
        self._checkins = dict(checkins)
        self._index = dict(index)

    def _get(self, checkin_id: str) -> CheckIn:
        c = self._checkins.get(checkin_id)
        if c is None:
            raise CheckInNotFound(f"Unknown check-in: {checkin_id}")
        return c
