"""Per-natural-key critical sections.

Every read-modify-write on a record runs while holding the lock for that
record's natural key, so two writers on the same key serialise while
writers on different keys proceed in parallel.

Keys are (namespace, *parts), e.g. ("link", seeker_id, retainer_id).
Lock entries are reference counted and dropped once no holder or waiter
remains, so the registry does not grow with every key ever touched.

Nested acquisition order (callers must follow it to avoid deadlock):
    notice → exits → assignment → period → disputes → link
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


LockKey = tuple[str, ...]


class _Entry:
    __slots__ = ("lock", "refs")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.refs = 0


class KeyedLocks:
    """Registry of exclusive locks addressed by natural key.

    Usage:
        locks = KeyedLocks()
        with locks.hold("period", assignment_id, period_key):
            ...  # read, validate, replace
    """

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._entries: dict[LockKey, _Entry] = {}

    @contextmanager
    def hold(self, namespace: str, *parts: str) -> Iterator[None]:
        key: LockKey = (namespace, *parts)
        with self._registry_lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.refs += 1
        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._registry_lock:
                entry.refs -= 1
                if entry.refs == 0:
                    self._entries.pop(key, None)

    def is_held(self, namespace: str, *parts: str) -> bool:
        """True if some caller currently holds or waits on the key."""
        with self._registry_lock:
            entry = self._entries.get((namespace, *parts))
            return entry is not None and entry.lock.locked()

    @property
    def active_keys(self) -> int:
        with self._registry_lock:
            return len(self._entries)
