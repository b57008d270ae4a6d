"""Arm mixin for the optimization store.

Arm statistics are the one piece of state written on nearly every request.
Writes go through ``compare_and_set_arm_stats``: the update only applies if
the arm's version is still the one the caller read, so two workers
rewarding the same arm serialize without either update being lost.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Sequence
from contextlib import AbstractContextManager

from skillopt.core.logging import SkilloptLogger
from skillopt.utils.time import format_timestamp

from .base import WhereBuilder, dump_json, load_json
from .models import Arm, ArmStats


def _row_to_arm(row: sqlite3.Row) -> Arm:
    return Arm.from_dict({
        "id": row["id"],
        "skill_id": row["skill_id"],
        "partition_id": row["partition_id"],
        "name": row["name"],
        "params": load_json(row["params"]),
        "stats": {
            "n": row["n"],
            "mean": row["mean"],
            "n2": row["n2"],
            "total_reward": row["total_reward"],
        },
        "version": row["version"],
        "created_at": row["created_at"],
    })


class ArmMixin:
    """Mixin providing arm storage and atomic statistics updates.

    Requires the following from the composed class:
        - _get_connection() -> context manager yielding sqlite3.Connection
    """

    _logger: SkilloptLogger
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]

    def create_arms(self, arms: Sequence[Arm]) -> list[Arm]:
        """Insert arms as given (ids, params, and stats included)."""
        with self._get_connection() as conn:
            conn.executemany(
                """
                INSERT INTO arms (
                    id, skill_id, partition_id, name, params,
                    n, mean, n2, total_reward, version, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        arm.id,
                        arm.skill_id,
                        arm.partition_id,
                        arm.name,
                        dump_json(arm.params.to_dict()),
                        arm.stats.n,
                        arm.stats.mean,
                        arm.stats.n2,
                        arm.stats.total_reward,
                        arm.version,
                        format_timestamp(arm.created_at),
                    )
                    for arm in arms
                ],
            )
        return list(arms)

    def get_arm(self, arm_id: str) -> Arm | None:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM arms WHERE id = ?", (arm_id,)).fetchone()
        return _row_to_arm(row) if row else None

    def get_arms(
        self,
        skill_id: str | None = None,
        partition_id: str | None = None,
    ) -> list[Arm]:
        """Arms filtered by skill and/or partition, in creation order."""
        wb = WhereBuilder()
        if skill_id is not None:
            wb.add("skill_id = ?", skill_id)
        if partition_id is not None:
            wb.add("partition_id = ?", partition_id)
        where_sql, params = wb.build()

        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM arms WHERE {where_sql} ORDER BY created_at, rowid",
                params,
            ).fetchall()
        return [_row_to_arm(r) for r in rows]

    def compare_and_set_arm_stats(
        self,
        arm_id: str,
        expected_version: int,
        stats: ArmStats,
    ) -> bool:
        """Write new statistics iff the arm is still at ``expected_version``.

        Returns:
            True if the write applied; False if another writer got there
            first or the arm no longer exists.
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE arms
                SET n = ?, mean = ?, n2 = ?, total_reward = ?, version = version + 1
                WHERE id = ? AND version = ?
                """,
                (
                    stats.n,
                    stats.mean,
                    stats.n2,
                    stats.total_reward,
                    arm_id,
                    expected_version,
                ),
            )
            return cursor.rowcount == 1

    def reset_arm_stats(self, skill_id: str, partition_id: str | None = None) -> int:
        """Zero the statistics of a skill's arms (optionally one partition's)."""
        wb = WhereBuilder()
        wb.add("skill_id = ?", skill_id)
        if partition_id is not None:
            wb.add("partition_id = ?", partition_id)
        where_sql, params = wb.build()

        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE arms SET n = 0, mean = 0.0, n2 = 0.0, total_reward = 0.0, "
                f"version = version + 1 WHERE {where_sql}",
                params,
            )
            return cursor.rowcount

    def delete_arms(
        self,
        skill_id: str,
        partition_id: str | None = None,
        arm_ids: Sequence[str] | None = None,
    ) -> int:
        """Delete arms by id, by partition, or every arm of the skill."""
        with self._get_connection() as conn:
            if arm_ids is not None:
                cursor = conn.executemany(
                    "DELETE FROM arms WHERE id = ? AND skill_id = ?",
                    [(aid, skill_id) for aid in arm_ids],
                )
            elif partition_id is not None:
                cursor = conn.execute(
                    "DELETE FROM arms WHERE skill_id = ? AND partition_id = ?",
                    (skill_id, partition_id),
                )
            else:
                cursor = conn.execute("DELETE FROM arms WHERE skill_id = ?", (skill_id,))
            return cursor.rowcount
