"""Link record — the authorisation relationship between a Seeker and a Retainer.

A link is keyed by (seeker_id, retainer_id). Its status is a derived
view of four independent confirmation booleans:

    ACTIVE  ⇔ video_confirmed_by_seeker ∧ video_confirmed_by_retainer
              ∧ approved_by_seeker ∧ approved_by_retainer

unless an explicit terminal status (REJECTED, DISABLED) has been set.
The booleans are persisted independently of status so the status can
always be recomputed and audited.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from snaptrust.models.common import PartyType, iso_or_none, parse_utc


class LinkStatus(str, enum.Enum):
    """Lifecycle status of a link. NONE is the absence of a record."""
    PENDING = "pending"
    ACTIVE = "active"
    REJECTED = "rejected"
    DISABLED = "disabled"


# Statuses that only an explicit administrative call can set.
EXPLICIT_STATUSES = frozenset({LinkStatus.REJECTED, LinkStatus.DISABLED})


@dataclass(frozen=True)
class Link:
    """One Seeker↔Retainer relationship.

    Frozen: every mutation builds a replacement via dataclasses.replace,
    so a rejected operation cannot leave a half-applied record behind.
    """
    link_id: str
    seeker_id: str
    retainer_id: str
    status: LinkStatus = LinkStatus.PENDING
    video_confirmed_by_seeker: bool = False
    video_confirmed_by_retainer: bool = False
    approved_by_seeker: bool = False
    approved_by_retainer: bool = False
    # Set by the retainer once the link is ACTIVE and work has begun.
    working_together: bool = False
    requested_by_seeker: bool = False
    requested_by_retainer: bool = False
    created_utc: Optional[datetime] = None
    updated_utc: Optional[datetime] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.seeker_id, self.retainer_id)

    @property
    def all_confirmed(self) -> bool:
        return (
            self.video_confirmed_by_seeker
            and self.video_confirmed_by_retainer
            and self.approved_by_seeker
            and self.approved_by_retainer
        )

    def requested_by(self, party: PartyType) -> bool:
        if party is PartyType.SEEKER:
            return self.requested_by_seeker
        return self.requested_by_retainer

    def to_dict(self) -> dict[str, Any]:
        return {
            "link_id": self.link_id,
            "seeker_id": self.seeker_id,
            "retainer_id": self.retainer_id,
            "status": self.status.value,
            "video_confirmed_by_seeker": self.video_confirmed_by_seeker,
            "video_confirmed_by_retainer": self.video_confirmed_by_retainer,
            "approved_by_seeker": self.approved_by_seeker,
            "approved_by_retainer": self.approved_by_retainer,
            "working_together": self.working_together,
            "requested_by_seeker": self.requested_by_seeker,
            "requested_by_retainer": self.requested_by_retainer,
            "created_utc": iso_or_none(self.created_utc),
            "updated_utc": iso_or_none(self.updated_utc),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Link:
        return cls(
            link_id=data["link_id"],
            seeker_id=data["seeker_id"],
            retainer_id=data["retainer_id"],
            status=LinkStatus(data.get("status", LinkStatus.PENDING.value)),
            video_confirmed_by_seeker=bool(data.get("video_confirmed_by_seeker", False)),
            video_confirmed_by_retainer=bool(data.get("video_confirmed_by_retainer", False)),
            approved_by_seeker=bool(data.get("approved_by_seeker", False)),
            approved_by_retainer=bool(data.get("approved_by_retainer", False)),
            working_together=bool(data.get("working_together", False)),
            requested_by_seeker=bool(data.get("requested_by_seeker", False)),
            requested_by_retainer=bool(data.get("requested_by_retainer", False)),
            created_utc=parse_utc(data.get("created_utc")),
            updated_utc=parse_utc(data.get("updated_utc")),
        )
