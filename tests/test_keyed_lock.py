"""Tests for KeyedLocks — same-key writers serialise, the registry drains."""

import threading

from snaptrust.concurrency import KeyedLocks


class TestKeyedLocks:
    def test_held_only_inside_block(self) -> None:
        locks = KeyedLocks()
        assert not locks.is_held("link", "s1", "r1")
        with locks.hold("link", "s1", "r1"):
            assert locks.is_held("link", "s1", "r1")
            assert not locks.is_held("link", "s1", "r2")
        assert not locks.is_held("link", "s1", "r1")

    def test_registry_drains(self) -> None:
        locks = KeyedLocks()
        with locks.hold("period", "asg_1", "2026-W10"):
            with locks.hold("link", "s1", "r1"):
                assert locks.active_keys == 2
        assert locks.active_keys == 0

    def test_released_on_exception(self) -> None:
        locks = KeyedLocks()
        try:
            with locks.hold("notice", "s1", "route-1"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert locks.active_keys == 0
        with locks.hold("notice", "s1", "route-1"):
            pass

    def test_same_key_writers_serialise(self) -> None:
        locks = KeyedLocks()
        counter = {"value": 0}

        def bump() -> None:
            for _ in range(200):
                with locks.hold("assignment", "route-1", "s1"):
                    current = counter["value"]
                    counter["value"] = current + 1

        threads = [threading.Thread(target=bump) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert counter["value"] == 1600
        assert locks.active_keys == 0

    def test_different_keys_do_not_block(self) -> None:
        locks = KeyedLocks()
        entered = threading.Event()

        def other() -> None:
            with locks.hold("link", "s2", "r2"):
                entered.set()

        with locks.hold("link", "s1", "r1"):
            t = threading.Thread(target=other)
            t.start()
            assert entered.wait(timeout=5)
            t.join()
