"""Append-only event log — the audit trail of every engine mutation.

Every successful state change made through the service appends one
event record. Events are immutable once written and carry a SHA-256 hash
of their canonical JSON, so a tampered JSONL file is rejected on load.
The log is an audit trail only: scores and facts are never read back
from it.
"""

from __future__ import annotations

import enum
import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

EVENTS_FILENAME = "events.jsonl"


class EventKind(str, enum.Enum):
    """Classification of engine events."""
    # Links
    LINK_REQUESTED = "link_requested"
    LINK_CONFIRMATION_CHANGED = "link_confirmation_changed"
    LINK_STATUS_SET = "link_status_set"
    LINK_RESET = "link_reset"
    LINK_WORKING_TOGETHER_SET = "link_working_together_set"
    LINKS_DISABLED = "links_disabled"
    # Assignments and work periods
    ASSIGNMENT_CREATED = "assignment_created"
    ASSIGNMENT_ENDED = "assignment_ended"
    ASSIGNMENT_UNITS_UPDATED = "assignment_units_updated"
    PERIOD_OPENED = "period_opened"
    PERIOD_SUBMITTED = "period_submitted"
    PERIOD_DISPUTED = "period_disputed"
    PERIOD_ARBITRATED = "period_arbitrated"
    # Exit notices
    NOTICE_FILED = "notice_filed"
    NOTICE_RESOLVED = "notice_resolved"
    NOTICE_ARBITRATED = "notice_arbitrated"
    NOTICE_CANCELLED = "notice_cancelled"
    # Check-ins
    CHECKIN_RECORDED = "checkin_recorded"
    CHECKIN_DISPUTED = "checkin_disputed"
    CHECKIN_OVERRIDDEN = "checkin_overridden"


def _canonical_hash(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    actor_id: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "actor_id": actor_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable event. event_hash is fixed at creation."""
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            payload=payload,
            event_hash=_canonical_hash(event_id, event_kind.value, ts_str, actor_id, payload),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only event log with optional JSONL persistence.

    Loading fails closed: a hash mismatch or a duplicate event ID raises
    ValueError rather than silently dropping the line.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event. Raises ValueError on a duplicate event_id."""
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")

        if self._storage_path:
            self._append_to_file(event)
        self._events.append(event)
        self._event_ids.add(event.event_id)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def events_for(self, actor_id: str) -> list[EventRecord]:
        return [e for e in self._events if e.actor_id == actor_id]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _append_to_file(self, event: EventRecord) -> None:
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def _load_from_file(self, path: Path) -> None:
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                event_id = data["event_id"]

                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                expected_hash = _canonical_hash(
                    event_id,
                    data["event_kind"],
                    data["timestamp_utc"],
                    data["actor_id"],
                    data["payload"],
                )
                if data["event_hash"] != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected_hash}"
                    )

                event = EventRecord(
                    event_id=event_id,
                    event_kind=EventKind(data["event_kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    actor_id=data["actor_id"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                )
                self._events.append(event)
                self._event_ids.add(event_id)
        logger.debug("Loaded %d events from %s", len(self._events), path)
