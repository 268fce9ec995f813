"""Per-key exclusive sections for state-changing operations."""

from snaptrust.concurrency.keyed_lock import KeyedLocks

__all__ = ["KeyedLocks"]
