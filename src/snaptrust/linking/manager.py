"""Link manager — the mutual-confirmation protocol between Seeker and Retainer.

Link lifecycle:
    (none) → PENDING                 request_link
    PENDING → ACTIVE                 fourth confirmation boolean flipped true
    ACTIVE → PENDING                 any confirmation boolean flipped false
    PENDING/ACTIVE → REJECTED        set_link_status (explicit)
    PENDING/ACTIVE → DISABLED        set_link_status / disable_links_for_party
    any → PENDING                    reset_link (clears every flag)

Status is never written directly except for the two explicit terminal
statuses and the reset. Every mutation entry point funnels through
_commit(), which recomputes status from the booleans, so the invariant

    status == ACTIVE  ⇔  all four confirmation booleans are true

holds after every call regardless of which entry point was used.

All mutations run under the ("link", seeker_id, retainer_id) lock and
replace the frozen record only after validation has passed.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Optional

from snaptrust.concurrency import KeyedLocks
from snaptrust.errors import (
    AlreadyLinked,
    InvalidStatusTarget,
    LinkClosed,
    LinkNotActive,
    LinkNotFound,
    NotEligible,
    ValidationViolation,
)
from snaptrust.models.common import PartyType, utc_now
from snaptrust.models.link import EXPLICIT_STATUSES, Link, LinkStatus

logger = logging.getLogger(__name__)

# External entitlement collaborator: "may this seeker link at all?"
EntitlementCheck = Callable[[str], bool]


def _allow_all(seeker_id: str) -> bool:
    return True


def derive_status(link: Link) -> LinkStatus:
    """The only place a link's status is computed."""
    if link.status in EXPLICIT_STATUSES:
        return link.status
    return LinkStatus.ACTIVE if link.all_confirmed else LinkStatus.PENDING


def _normalise(link: Link) -> Link:
    """Apply the derived status; working-together never outlives PENDING."""
    status = derive_status(link)
    working_together = link.working_together and status != LinkStatus.PENDING
    return replace(link, status=status, working_together=working_together)


class LinkManager:
    """Owns every Link record and enforces the confirmation invariant.

    Usage:
        links = LinkManager(entitlement=plans.can_seeker_link)
        links.request_link("s1", "r1", PartyType.SEEKER)
        links.set_video_confirmed("s1", "r1", PartyType.SEEKER, True)
        ...
        if LinkManager.is_working_together(links.get_link("s1", "r1")):
            ...
    """

    def __init__(
        self,
        entitlement: Optional[EntitlementCheck] = None,
        locks: Optional[KeyedLocks] = None,
    ) -> None:
        self._links: dict[tuple[str, str], Link] = {}
        self._entitlement = entitlement or _allow_all
        self._locks = locks or KeyedLocks()

    # ------------------------------------------------------------------
    # Protocol
    # ------------------------------------------------------------------

    def request_link(
        self,
        seeker_id: str,
        retainer_id: str,
        by: PartyType,
        now: Optional[datetime] = None,
    ) -> Link:
        """Create the link if absent, or record the other side's request."""
        seeker_id, retainer_id = _require_ids(seeker_id, retainer_id)
        self._check_entitlement(seeker_id)
        now = now or utc_now()

        with self._locks.hold("link", seeker_id, retainer_id):
            existing = self._links.get((seeker_id, retainer_id))
            if existing is None:
                link = Link(
                    link_id=f"link_{uuid.uuid4().hex[:12]}",
                    seeker_id=seeker_id,
                    retainer_id=retainer_id,
                    status=LinkStatus.PENDING,
                    requested_by_seeker=by is PartyType.SEEKER,
                    requested_by_retainer=by is PartyType.RETAINER,
                    created_utc=now,
                    updated_utc=now,
                )
                logger.info("Link requested: seeker=%s retainer=%s by=%s", seeker_id, retainer_id, by.value)
                return self._commit(link)

            if existing.status in EXPLICIT_STATUSES:
                raise LinkClosed(
                    f"Link {seeker_id}/{retainer_id} is {existing.status.value}; "
                    f"reset it before requesting again"
                )
            if existing.requested_by(by):
                raise AlreadyLinked(
                    f"Link {seeker_id}/{retainer_id} already requested by {by.value} "
                    f"(status: {existing.status.value})"
                )
            if by is PartyType.SEEKER:
                updated = replace(existing, requested_by_seeker=True, updated_utc=now)
            else:
                updated = replace(existing, requested_by_retainer=True, updated_utc=now)
            return self._commit(updated)

    def set_video_confirmed(
        self,
        seeker_id: str,
        retainer_id: str,
        by: PartyType,
        value: bool,
        now: Optional[datetime] = None,
    ) -> Link:
        """Flip the caller's own video-confirmation flag."""
        field_name = (
            "video_confirmed_by_seeker" if by is PartyType.SEEKER
            else "video_confirmed_by_retainer"
        )
        return self._flip(seeker_id, retainer_id, by, field_name, value, now)

    def set_approved(
        self,
        seeker_id: str,
        retainer_id: str,
        by: PartyType,
        value: bool,
        now: Optional[datetime] = None,
    ) -> Link:
        """Flip the caller's own approval flag."""
        field_name = (
            "approved_by_seeker" if by is PartyType.SEEKER
            else "approved_by_retainer"
        )
        return self._flip(seeker_id, retainer_id, by, field_name, value, now)

    def set_working_together(
        self,
        seeker_id: str,
        retainer_id: str,
        by: PartyType,
        value: bool,
        now: Optional[datetime] = None,
    ) -> Link:
        """Mark an ACTIVE link as an active work relationship (retainer only)."""
        if by is not PartyType.RETAINER:
            raise NotEligible("Only the retainer side may set 'working together'")
        seeker_id, retainer_id = _require_ids(seeker_id, retainer_id)
        now = now or utc_now()
        with self._locks.hold("link", seeker_id, retainer_id):
            current = self._get(seeker_id, retainer_id)
            if value and current.status != LinkStatus.ACTIVE:
                raise LinkNotActive(
                    f"Link {seeker_id}/{retainer_id} is {current.status.value}; "
                    f"'working together' requires ACTIVE"
                )
            return self._commit(replace(current, working_together=bool(value), updated_utc=now))

    def set_link_status(
        self,
        seeker_id: str,
        retainer_id: str,
        status: LinkStatus,
        now: Optional[datetime] = None,
    ) -> Link:
        """Explicit administrative transition to REJECTED or DISABLED.

        Booleans are left as they are so the history stays auditable.
        """
        if status not in EXPLICIT_STATUSES:
            raise InvalidStatusTarget(
                f"set_link_status only accepts rejected/disabled, got {status.value}"
            )
        seeker_id, retainer_id = _require_ids(seeker_id, retainer_id)
        now = now or utc_now()
        with self._locks.hold("link", seeker_id, retainer_id):
            current = self._get(seeker_id, retainer_id)
            logger.info(
                "Link %s/%s: %s -> %s", seeker_id, retainer_id,
                current.status.value, status.value,
            )
            return self._commit(replace(current, status=status, updated_utc=now))

    def reset_link(
        self,
        seeker_id: str,
        retainer_id: str,
        now: Optional[datetime] = None,
    ) -> Link:
        """Clear every flag and return the link to PENDING."""
        seeker_id, retainer_id = _require_ids(seeker_id, retainer_id)
        now = now or utc_now()
        with self._locks.hold("link", seeker_id, retainer_id):
            current = self._get(seeker_id, retainer_id)
            cleared = replace(
                current,
                status=LinkStatus.PENDING,
                video_confirmed_by_seeker=False,
                video_confirmed_by_retainer=False,
                approved_by_seeker=False,
                approved_by_retainer=False,
                working_together=False,
                requested_by_seeker=False,
                requested_by_retainer=False,
                updated_utc=now,
            )
            logger.info("Link %s/%s reset", seeker_id, retainer_id)
            return self._commit(cleared)

    def disable_links_for_party(
        self,
        party_type: PartyType,
        party_id: str,
        now: Optional[datetime] = None,
    ) -> list[Link]:
        """Disable every link of a deactivated account. Returns the changed links."""
        now = now or utc_now()
        if party_type is PartyType.SEEKER:
            targets = self.links_for_seeker(party_id)
        else:
            targets = self.links_for_retainer(party_id)
        changed: list[Link] = []
        for link in targets:
            with self._locks.hold("link", link.seeker_id, link.retainer_id):
                current = self._links[link.key]
                if current.status == LinkStatus.DISABLED:
                    continue
                changed.append(
                    self._commit(replace(current, status=LinkStatus.DISABLED, updated_utc=now))
                )
        return changed

    @staticmethod
    def is_working_together(link: Optional[Link]) -> bool:
        if link is None:
            return False
        return link.status == LinkStatus.ACTIVE and link.working_together

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_link(self, seeker_id: str, retainer_id: str) -> Optional[Link]:
        return self._links.get((seeker_id, retainer_id))

    def links_for_seeker(self, seeker_id: str) -> list[Link]:
        return [l for l in self._links.values() if l.seeker_id == seeker_id]

    def links_for_retainer(self, retainer_id: str) -> list[Link]:
        return [l for l in self._links.values() if l.retainer_id == retainer_id]

    def all_links(self) -> list[Link]:
        return list(self._links.values())

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_records(self) -> list[dict[str, Any]]:
        return [link.to_dict() for link in self._links.values()]

    @classmethod
    def from_records(
        cls,
        records: list[dict[str, Any]],
        entitlement: Optional[EntitlementCheck] = None,
        locks: Optional[KeyedLocks] = None,
    ) -> LinkManager:
        """Restore links. Stored status is re-derived, never trusted."""
        manager = cls(entitlement=entitlement, locks=locks)
        for r in records:
            link = Link.from_dict(r)
            manager._links[link.key] = _normalise(link)
        return manager

    def snapshot(self) -> dict[tuple[str, str], Link]:
        """Shallow copy of the record map. Links are frozen, so this is a full copy."""
        return dict(self._links)

    def rollback(self, snapshot: dict[tuple[str, str], Link]) -> None:
        self._links = dict(snapshot)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _flip(
        self,
        seeker_id: str,
        retainer_id: str,
        by: PartyType,
        field_name: str,
        value: bool,
        now: Optional[datetime],
    ) -> Link:
        seeker_id, retainer_id = _require_ids(seeker_id, retainer_id)
        if by is PartyType.SEEKER:
            self._check_entitlement(seeker_id)
        now = now or utc_now()
        with self._locks.hold("link", seeker_id, retainer_id):
            current = self._get(seeker_id, retainer_id)
            return self._commit(replace(current, **{field_name: bool(value)}, updated_utc=now))

    def _commit(self, candidate: Link) -> Link:
        """Recompute status and store. Caller holds the link lock."""
        final = _normalise(candidate)

        previous = self._links.get(final.key)
        if previous is not None and previous.status != final.status:
            logger.info(
                "Link %s/%s status %s -> %s",
                final.seeker_id, final.retainer_id,
                previous.status.value, final.status.value,
            )
        self._links[final.key] = final
        return final

    def _check_entitlement(self, seeker_id: str) -> None:
        if not self._entitlement(seeker_id):
            raise NotEligible(f"Seeker {seeker_id} is not entitled to link")

    def _get(self, seeker_id: str, retainer_id: str) -> Link:
        link = self._links.get((seeker_id, retainer_id))
        if link is None:
            raise LinkNotFound(f"No link for seeker {seeker_id} and retainer {retainer_id}")
        return link


def _require_ids(seeker_id: str, retainer_id: str) -> tuple[str, str]:
    seeker_id = (seeker_id or "").strip()
    retainer_id = (retainer_id or "").strip()
    if not seeker_id or not retainer_id:
        raise ValidationViolation("seeker_id and retainer_id are required")
    return seeker_id, retainer_id
