"""Lock lease mixin for the optimization store.

Leases live in the ``optimizer_locks`` table, one row per lock name. A row
whose ``expires_at`` has passed is dead: the next acquirer overwrites it in
the same statement that checks it, so acquisition needs no separate cleanup
step and no read-then-write race exists.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any

from skillopt.core.logging import SkilloptLogger
from skillopt.utils.time import format_timestamp

from .base import dump_json, load_json
from .models import LockLease


def _row_to_lease(row: sqlite3.Row) -> LockLease:
    return LockLease.from_dict({
        "lock_name": row["lock_name"],
        "locked_by": row["locked_by"],
        "locked_at": row["locked_at"],
        "expires_at": row["expires_at"],
        "metadata": load_json(row["metadata"], {}),
    })


class LockMixin:
    """Mixin providing the storage primitives behind LockManager.

    Requires the following from the composed class:
        - _get_connection() -> context manager yielding sqlite3.Connection
    """

    _logger: SkilloptLogger
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]

    def try_insert_lock(
        self,
        lock_name: str,
        locked_by: str,
        locked_at: datetime,
        expires_at: datetime,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Claim ``lock_name`` unless an unexpired lease exists.

        A single UPSERT: inserts when no row exists, overwrites when the
        existing lease expired at or before ``locked_at``, and does nothing
        otherwise.

        Returns:
            True if this call now holds the lease.
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO optimizer_locks (lock_name, locked_by, locked_at, expires_at, metadata)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(lock_name) DO UPDATE SET
                    locked_by = excluded.locked_by,
                    locked_at = excluded.locked_at,
                    expires_at = excluded.expires_at,
                    metadata = excluded.metadata
                WHERE optimizer_locks.expires_at <= excluded.locked_at
                """,
                (
                    lock_name,
                    locked_by,
                    format_timestamp(locked_at),
                    format_timestamp(expires_at),
                    dump_json(metadata or {}),
                ),
            )
            return cursor.rowcount == 1

    def get_lock(self, lock_name: str) -> LockLease | None:
        """Current lease row for ``lock_name``, expired or not."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM optimizer_locks WHERE lock_name = ?", (lock_name,)
            ).fetchone()
        return _row_to_lease(row) if row else None

    def list_locks(self) -> list[LockLease]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM optimizer_locks ORDER BY lock_name"
            ).fetchall()
        return [_row_to_lease(r) for r in rows]

    def delete_lock(self, lock_name: str, locked_by: str) -> bool:
        """Remove the lease only if ``locked_by`` is its current holder."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM optimizer_locks WHERE lock_name = ? AND locked_by = ?",
                (lock_name, locked_by),
            )
            return cursor.rowcount > 0

    def delete_expired_locks(self, now: datetime) -> int:
        """Remove every lease that expired at or before ``now``."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM optimizer_locks WHERE expires_at <= ?",
                (format_timestamp(now),),
            )
            return cursor.rowcount
