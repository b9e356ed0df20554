"""Tests for ranked reader/writer locks."""

from __future__ import annotations

import threading
import time

import pytest

from accesscore import LockOrderError
from accesscore.locking import LockRank, RWLock, held_ranks, ordered


@pytest.fixture
def catalog_lock() -> RWLock:
    return RWLock("catalog", LockRank.CATALOG)


@pytest.fixture
def overlay_lock() -> RWLock:
    return RWLock("overlay", LockRank.OVERLAY)


class TestOrdering:
    """Global acquisition order."""

    def test_in_order_allowed(self, catalog_lock: RWLock, overlay_lock: RWLock) -> None:
        with catalog_lock.read(), overlay_lock.write():
            assert held_ranks() == (LockRank.CATALOG, LockRank.OVERLAY)
        assert held_ranks() == ()

    def test_out_of_order_rejected(self, catalog_lock: RWLock, overlay_lock: RWLock) -> None:
        with overlay_lock.read():
            with pytest.raises(LockOrderError, match="while holding 'overlay'"):
                with catalog_lock.read():
                    pass
        assert held_ranks() == ()

    def test_reentry_skips_order_check(self, catalog_lock: RWLock, overlay_lock: RWLock) -> None:
        with catalog_lock.write(), overlay_lock.write():
            with catalog_lock.read():
                pass

    def test_ordered_sorts_by_rank(self, catalog_lock: RWLock, overlay_lock: RWLock) -> None:
        with ordered(overlay_lock, catalog_lock, overlay_lock, mode="read"):
            assert held_ranks() == (LockRank.CATALOG, LockRank.OVERLAY)

    def test_ordered_rejects_unknown_mode(self, catalog_lock: RWLock) -> None:
        with pytest.raises(ValueError):
            with ordered(catalog_lock, mode="exclusive"):
                pass


class TestReentrancy:
    """Same-thread re-acquisition."""

    def test_write_inside_write(self, catalog_lock: RWLock) -> None:
        with catalog_lock.write():
            with catalog_lock.write():
                pass
            with catalog_lock.read():
                pass
        assert held_ranks() == ()

    def test_upgrade_rejected(self, catalog_lock: RWLock) -> None:
        with catalog_lock.read():
            with pytest.raises(LockOrderError, match="upgrade"):
                catalog_lock.acquire_write()

    def test_release_unheld(self, catalog_lock: RWLock) -> None:
        with pytest.raises(RuntimeError):
            catalog_lock.release()


class TestExclusion:
    """Cross-thread behaviour."""

    def test_readers_share(self, catalog_lock: RWLock) -> None:
        entered = threading.Event()

        def reader() -> None:
            with catalog_lock.read():
                entered.set()

        with catalog_lock.read():
            t = threading.Thread(target=reader)
            t.start()
            assert entered.wait(timeout=5)
        t.join(timeout=5)

    def test_writer_excludes_readers(self, catalog_lock: RWLock) -> None:
        order: list[str] = []

        def reader() -> None:
            with catalog_lock.read():
                order.append("reader")

        with catalog_lock.write():
            t = threading.Thread(target=reader)
            t.start()
            time.sleep(0.05)
            order.append("writer")
        t.join(timeout=5)
        assert order == ["writer", "reader"]

    def test_held_ranks_are_per_thread(self, catalog_lock: RWLock) -> None:
        seen: list[tuple[int, ...]] = []

        def probe() -> None:
            seen.append(held_ranks())

        with catalog_lock.read():
            t = threading.Thread(target=probe)
            t.start()
            t.join(timeout=5)
        assert seen == [()]
