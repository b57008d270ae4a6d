"""Lease-based lock manager for cross-worker mutual exclusion.

Gateway workers are stateless and share nothing but the store, so long
optimization steps (warm-up, recompute, reflection) are serialized with
named leases kept in the store itself. A lease is held until its TTL runs
out; after that anyone may take it over, which guarantees progress after
a worker crashes mid-step.

Example:
    locks = LockManager(store)
    try:
        with locks.hold(f"skill:{skill_id}", metadata={"purpose": "reflection"}):
            regenerate_arm_pool()
    except LockBusyError:
        pass  # another worker is on it
"""

from __future__ import annotations

import os
import secrets
import socket
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Protocol

from skillopt.core.config import LockConfig
from skillopt.core.exceptions import LockBusyError
from skillopt.core.logging import get_logger
from skillopt.store.models import LockLease, LockStatus
from skillopt.utils.time import utc_now

_logger = get_logger("locks")


class LockRepository(Protocol):
    def try_insert_lock(
        self,
        lock_name: str,
        locked_by: str,
        locked_at: datetime,
        expires_at: datetime,
        metadata: dict[str, Any] | None = None,
    ) -> bool: ...

    def get_lock(self, lock_name: str) -> LockLease | None: ...

    def delete_lock(self, lock_name: str, locked_by: str) -> bool: ...

    def delete_expired_locks(self, now: datetime) -> int: ...


def generate_holder_id() -> str:
    """Identifier unique to this process: ``{host}_{pid}_{millis}_{random}``."""
    return (
        f"{socket.gethostname()}_{os.getpid()}_"
        f"{int(time.time() * 1000)}_{secrets.token_hex(4)}"
    )


def skill_lock_name(skill_id: str) -> str:
    """Name of the lease that serializes long optimization steps for a skill."""
    return f"skill:{skill_id}"


class LockManager:
    """Acquires, releases, and inspects named leases.

    Attributes:
        holder_id: Default holder identity for this manager's acquisitions.
    """

    def __init__(
        self,
        repository: LockRepository,
        config: LockConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
        holder_id: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._repository = repository
        self._config = config or LockConfig()
        self._clock = clock
        self._sleep = sleep
        self.holder_id = holder_id or generate_holder_id()

    def _resolve_ttl(self, ttl_seconds: float | None) -> float:
        ttl = self._config.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError(f"Lock TTL must be positive, got {ttl}")
        if ttl > self._config.max_ttl_seconds:
            _logger.debug(
                "lock_ttl_clamped",
                requested=ttl,
                max_ttl_seconds=self._config.max_ttl_seconds,
            )
            ttl = self._config.max_ttl_seconds
        return ttl

    def try_acquire(
        self,
        name: str,
        holder: str | None = None,
        ttl_seconds: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LockLease | None:
        """Take the lease if no unexpired lease exists.

        Returns:
            The new lease, or None if someone else holds it.
        """
        holder = holder or self.holder_id
        ttl = self._resolve_ttl(ttl_seconds)
        now = self._clock()
        expires_at = now + timedelta(seconds=ttl)

        if not self._repository.try_insert_lock(name, holder, now, expires_at, metadata):
            _logger.debug("lock_busy", lock_name=name, holder=holder)
            return None

        _logger.debug("lock_acquired", lock_name=name, holder=holder, ttl_seconds=ttl)
        return LockLease(
            lock_name=name,
            locked_by=holder,
            locked_at=now,
            expires_at=expires_at,
            metadata=dict(metadata or {}),
        )

    def acquire(
        self,
        name: str,
        holder: str | None = None,
        ttl_seconds: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LockLease:
        """Take the lease or raise.

        Raises:
            LockBusyError: If an unexpired lease is held (by anyone, including
                ``holder`` itself).
            ValueError: If ``ttl_seconds`` is not positive.
        """
        lease = self.try_acquire(name, holder, ttl_seconds, metadata)
        if lease is None:
            current = self._repository.get_lock(name)
            raise LockBusyError(
                name,
                locked_by=current.locked_by if current else None,
                expires_at=current.expires_at if current else None,
            )
        return lease

    def acquire_with_retry(
        self,
        name: str,
        holder: str | None = None,
        ttl_seconds: float | None = None,
        metadata: dict[str, Any] | None = None,
        attempts: int | None = None,
        delay_seconds: float | None = None,
    ) -> LockLease:
        """Like ``acquire`` but retries a fixed number of times with a pause.

        Raises:
            LockBusyError: If every attempt found the lease held.
        """
        attempts = attempts if attempts is not None else self._config.retry_attempts
        delay = delay_seconds if delay_seconds is not None else self._config.retry_delay_seconds
        if attempts < 1:
            raise ValueError("attempts must be at least 1")

        for attempt in range(1, attempts + 1):
            try:
                return self.acquire(name, holder, ttl_seconds, metadata)
            except LockBusyError:
                if attempt == attempts:
                    raise
                _logger.debug("lock_retry", lock_name=name, attempt=attempt)
                self._sleep(delay)
        raise AssertionError("unreachable")

    def release(self, name: str, holder: str | None = None) -> bool:
        """Drop the lease if ``holder`` still owns it.

        A holder whose lease expired and was taken over gets False and the
        new holder's lease is left intact.
        """
        holder = holder or self.holder_id
        released = self._repository.delete_lock(name, holder)
        if released:
            _logger.debug("lock_released", lock_name=name, holder=holder)
        else:
            _logger.warning("lock_release_not_owner", lock_name=name, holder=holder)
        return released

    def check(self, name: str) -> LockStatus:
        """Current status of ``name``; expired leases report as unlocked."""
        lease = self._repository.get_lock(name)
        now = self._clock()
        if lease is None or not lease.is_active(now):
            return LockStatus(lock_name=name, is_locked=False)
        return LockStatus(
            lock_name=name,
            is_locked=True,
            locked_by=lease.locked_by,
            locked_at=lease.locked_at,
            expires_at=lease.expires_at,
            time_remaining_seconds=(lease.expires_at - now).total_seconds(),
            metadata=lease.metadata,
        )

    def cleanup_expired(self) -> int:
        """Delete dead lease rows. Returns the number removed."""
        removed = self._repository.delete_expired_locks(self._clock())
        if removed:
            _logger.info("expired_locks_cleaned", count=removed)
        return removed

    @contextmanager
    def hold(
        self,
        name: str,
        holder: str | None = None,
        ttl_seconds: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Iterator[LockLease]:
        """Hold the lease for the duration of a block.

        Raises:
            LockBusyError: If the lease could not be taken; the block does
                not run.
        """
        lease = self.acquire(name, holder, ttl_seconds, metadata)
        try:
            yield lease
        finally:
            self.release(name, lease.locked_by)
