"""Tests for skillopt.optimization.locks (lease-based LockManager).

Uses an injected clock for TTL behaviour and real threads against a file
database for the mutual-exclusion race.
"""

from __future__ import annotations

import os
import threading
from datetime import timedelta

import pytest

from skillopt.core.config import LockConfig
from skillopt.core.exceptions import LockBusyError
from skillopt.optimization.locks import LockManager, generate_holder_id, skill_lock_name
from skillopt.store import OptimizationStore
from tests.helpers import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def worker_a(store: OptimizationStore, clock: FakeClock) -> LockManager:
    return LockManager(store, clock=clock, holder_id="worker-a")


@pytest.fixture
def worker_b(store: OptimizationStore, clock: FakeClock) -> LockManager:
    return LockManager(store, clock=clock, holder_id="worker-b")


class TestAcquire:
    """Tests for acquire() and try_acquire()."""

    def test_acquire_free_lock(self, worker_a: LockManager, clock: FakeClock) -> None:
        lease = worker_a.acquire("skill:s1", metadata={"purpose": "reflection"})

        assert lease.locked_by == "worker-a"
        assert lease.locked_at == clock.now
        assert lease.expires_at == clock.now + timedelta(seconds=300)
        assert lease.metadata == {"purpose": "reflection"}

    def test_held_lock_is_busy(self, worker_a: LockManager, worker_b: LockManager) -> None:
        worker_a.acquire("skill:s1")

        with pytest.raises(LockBusyError) as exc_info:
            worker_b.acquire("skill:s1")
        assert exc_info.value.locked_by == "worker-a"
        assert exc_info.value.lock_name == "skill:s1"
        assert worker_b.try_acquire("skill:s1") is None

    def test_not_reentrant(self, worker_a: LockManager) -> None:
        """Even the current holder cannot take a live lease twice."""
        worker_a.acquire("skill:s1")
        assert worker_a.try_acquire("skill:s1") is None

    def test_different_names_independent(self, worker_a: LockManager, worker_b: LockManager) -> None:
        worker_a.acquire("skill:s1")
        assert worker_b.try_acquire("skill:s2") is not None

    def test_expired_lease_taken_over(
        self, worker_a: LockManager, worker_b: LockManager, clock: FakeClock
    ) -> None:
        worker_a.acquire("skill:s1", ttl_seconds=60)
        clock.advance(60)

        lease = worker_b.acquire("skill:s1")
        assert lease.locked_by == "worker-b"

    def test_explicit_holder(self, worker_a: LockManager) -> None:
        lease = worker_a.acquire("skill:s1", holder="request-42")
        assert lease.locked_by == "request-42"


class TestTtl:
    """Tests for TTL defaults, validation and clamping."""

    @pytest.mark.parametrize("ttl", [0, -5])
    def test_non_positive_ttl_rejected(self, worker_a: LockManager, ttl: float) -> None:
        with pytest.raises(ValueError, match="positive"):
            worker_a.acquire("skill:s1", ttl_seconds=ttl)

    def test_ttl_clamped_to_max(self, worker_a: LockManager, clock: FakeClock) -> None:
        lease = worker_a.acquire("skill:s1", ttl_seconds=10_000)
        assert lease.expires_at == clock.now + timedelta(seconds=3600)

    def test_configured_default(self, store: OptimizationStore, clock: FakeClock) -> None:
        config = LockConfig(default_ttl_seconds=30, max_ttl_seconds=120)
        manager = LockManager(store, config, clock=clock, holder_id="w")
        lease = manager.acquire("skill:s1")
        assert lease.expires_at == clock.now + timedelta(seconds=30)


class TestRelease:
    """Tests for release()."""

    def test_owner_releases(self, worker_a: LockManager, worker_b: LockManager) -> None:
        worker_a.acquire("skill:s1")
        assert worker_a.release("skill:s1") is True
        assert worker_b.try_acquire("skill:s1") is not None

    def test_non_owner_cannot_release(self, worker_a: LockManager, worker_b: LockManager) -> None:
        worker_a.acquire("skill:s1")
        assert worker_b.release("skill:s1") is False
        assert worker_a.check("skill:s1").locked_by == "worker-a"

    def test_stale_holder_does_not_clobber_new_holder(
        self, worker_a: LockManager, worker_b: LockManager, clock: FakeClock
    ) -> None:
        """A holder whose lease expired and was taken over releases nothing."""
        worker_a.acquire("skill:s1", ttl_seconds=10)
        clock.advance(11)
        worker_b.acquire("skill:s1")

        assert worker_a.release("skill:s1") is False
        status = worker_b.check("skill:s1")
        assert status.is_locked
        assert status.locked_by == "worker-b"

    def test_release_missing_lock(self, worker_a: LockManager) -> None:
        assert worker_a.release("never-taken") is False


class TestCheckAndCleanup:
    """Tests for check() and cleanup_expired()."""

    def test_check_live_lease(self, worker_a: LockManager, clock: FakeClock) -> None:
        worker_a.acquire("skill:s1", ttl_seconds=100, metadata={"purpose": "warmup"})
        clock.advance(40)

        status = worker_a.check("skill:s1")
        assert status.is_locked
        assert status.locked_by == "worker-a"
        assert status.time_remaining_seconds == pytest.approx(60)
        assert status.metadata == {"purpose": "warmup"}

    def test_check_unknown_lock(self, worker_a: LockManager) -> None:
        status = worker_a.check("skill:none")
        assert status.is_locked is False
        assert status.locked_by is None

    def test_expired_lease_reports_unlocked(self, worker_a: LockManager, clock: FakeClock) -> None:
        worker_a.acquire("skill:s1", ttl_seconds=10)
        clock.advance(10)
        assert worker_a.check("skill:s1").is_locked is False

    def test_cleanup_removes_only_expired(
        self, store: OptimizationStore, worker_a: LockManager, clock: FakeClock
    ) -> None:
        worker_a.acquire("short", ttl_seconds=10)
        worker_a.acquire("long", ttl_seconds=1000)
        clock.advance(20)

        assert worker_a.cleanup_expired() == 1
        assert [lease.lock_name for lease in store.list_locks()] == ["long"]
        assert worker_a.cleanup_expired() == 0


class TestHold:
    """Tests for the hold() context manager."""

    def test_released_after_block(self, worker_a: LockManager, worker_b: LockManager) -> None:
        with worker_a.hold("skill:s1") as lease:
            assert lease.locked_by == "worker-a"
            assert worker_b.try_acquire("skill:s1") is None
        assert worker_b.try_acquire("skill:s1") is not None

    def test_released_on_exception(self, worker_a: LockManager, worker_b: LockManager) -> None:
        with pytest.raises(RuntimeError):
            with worker_a.hold("skill:s1"):
                raise RuntimeError("step failed")
        assert worker_b.try_acquire("skill:s1") is not None

    def test_busy_skips_block(self, worker_a: LockManager, worker_b: LockManager) -> None:
        worker_a.acquire("skill:s1")
        ran = False
        with pytest.raises(LockBusyError):
            with worker_b.hold("skill:s1"):
                ran = True
        assert ran is False


class TestAcquireWithRetry:
    """Tests for acquire_with_retry()."""

    def test_gives_up_after_attempts(self, store: OptimizationStore, clock: FakeClock) -> None:
        sleeps: list[float] = []
        holder = LockManager(store, clock=clock, holder_id="holder")
        waiter = LockManager(store, clock=clock, holder_id="waiter", sleep=sleeps.append)
        holder.acquire("skill:s1")

        with pytest.raises(LockBusyError):
            waiter.acquire_with_retry("skill:s1", attempts=3, delay_seconds=0.5)
        assert sleeps == [0.5, 0.5]

    def test_succeeds_once_lease_expires(self, store: OptimizationStore, clock: FakeClock) -> None:
        holder = LockManager(store, clock=clock, holder_id="holder")
        waiter = LockManager(
            store, clock=clock, holder_id="waiter", sleep=lambda _: clock.advance(400)
        )
        holder.acquire("skill:s1")

        lease = waiter.acquire_with_retry("skill:s1")
        assert lease.locked_by == "waiter"

    def test_attempts_must_be_positive(self, worker_a: LockManager) -> None:
        with pytest.raises(ValueError):
            worker_a.acquire_with_retry("skill:s1", attempts=0)


class TestConcurrency:
    """Mutual exclusion across independent managers sharing one database."""

    def test_exactly_one_winner(self, db_path) -> None:
        OptimizationStore(db_path)
        contenders = 8
        barrier = threading.Barrier(contenders)
        winners: list[str] = []
        errors: list[BaseException] = []
        lock = threading.Lock()

        def contend(index: int) -> None:
            manager = LockManager(OptimizationStore(db_path), holder_id=f"worker-{index}")
            barrier.wait()
            try:
                lease = manager.try_acquire("skill:race")
            except BaseException as e:  # noqa: BLE001
                with lock:
                    errors.append(e)
                return
            if lease is not None:
                with lock:
                    winners.append(lease.locked_by)

        threads = [threading.Thread(target=contend, args=(i,)) for i in range(contenders)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(winners) == 1


class TestNaming:
    """Tests for holder ids and lock names."""

    def test_holder_id_unique_and_process_scoped(self) -> None:
        first = generate_holder_id()
        second = generate_holder_id()
        assert first != second
        assert f"_{os.getpid()}_" in first

    def test_skill_lock_name(self) -> None:
        assert skill_lock_name("abc") == "skill:abc"
