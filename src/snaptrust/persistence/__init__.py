"""Persistence — JSON state store and the append-only audit log."""

from snaptrust.persistence.event_log import (
    EVENTS_FILENAME,
    EventKind,
    EventLog,
    EventRecord,
)
from snaptrust.persistence.state_store import STATE_FILENAME, StateStore

__all__ = [
    "EVENTS_FILENAME",
    "EventKind",
    "EventLog",
    "EventRecord",
    "STATE_FILENAME",
    "StateStore",
]
