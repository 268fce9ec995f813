"""Shared enums and timestamp helpers for persisted records."""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Optional


class PartyType(str, enum.Enum):
    """Which side of the marketplace a party is on."""
    SEEKER = "seeker"
    RETAINER = "retainer"

    @property
    def other(self) -> PartyType:
        return PartyType.RETAINER if self is PartyType.SEEKER else PartyType.SEEKER


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_or_none(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def parse_utc(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware datetime (naive → UTC)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
