"""Partition mixin for the optimization store.

Partitions are written in bulk by clustering runs (usually inside a
``batch_connection()`` together with the watermark advance) and have a
single hot-path write: the atomic step counter bump after each reward.
"""

from __future__ import annotations

import sqlite3
import uuid
from collections.abc import Callable, Sequence
from contextlib import AbstractContextManager

from skillopt.core.exceptions import PartitionInputError
from skillopt.core.logging import SkilloptLogger
from skillopt.utils.time import format_timestamp, utc_now

from .base import dump_json, load_json
from .models import Partition


def _row_to_partition(row: sqlite3.Row) -> Partition:
    data = dict(row)
    data["centroid"] = load_json(row["centroid"], [])
    return Partition.from_dict(data)


class PartitionMixin:
    """Mixin providing partition storage.

    Requires the following from the composed class:
        - _get_connection() -> context manager yielding sqlite3.Connection
    """

    _logger: SkilloptLogger
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]

    def create_partitions(
        self,
        skill_id: str,
        centroids: Sequence[Sequence[float]],
        names: Sequence[str] | None = None,
    ) -> list[Partition]:
        """Insert one partition per centroid.

        All centroids, and any partitions the skill already has, must share
        one dimensionality.

        Args:
            skill_id: Owning skill.
            centroids: Centroid vectors.
            names: Optional display names; defaults to "Partition 1", "Partition 2"...

        Raises:
            PartitionInputError: On mixed dimensionality.
        """
        if names is not None and len(names) != len(centroids):
            raise ValueError("names must match centroids in length")

        now = format_timestamp(utc_now())
        partitions: list[Partition] = []
        with self._get_connection() as conn:
            dims = {len(c) for c in centroids}
            row = conn.execute(
                "SELECT DISTINCT dimensions FROM partitions WHERE skill_id = ?", (skill_id,)
            ).fetchall()
            dims.update(r["dimensions"] for r in row)
            if len(dims) > 1:
                raise PartitionInputError(
                    f"Partition centroids for skill {skill_id} have mixed "
                    f"dimensionality: {sorted(dims)}"
                )

            existing = conn.execute(
                "SELECT COUNT(*) AS c FROM partitions WHERE skill_id = ?", (skill_id,)
            ).fetchone()["c"]
            for i, centroid in enumerate(centroids):
                name = names[i] if names is not None else f"Partition {existing + i + 1}"
                partition_id = str(uuid.uuid4())
                conn.execute(
                    """
                    INSERT INTO partitions (
                        id, skill_id, name, centroid, dimensions,
                        total_steps, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, 0, ?, ?)
                    """,
                    (
                        partition_id,
                        skill_id,
                        name,
                        dump_json([float(x) for x in centroid]),
                        len(centroid),
                        now,
                        now,
                    ),
                )
                row = conn.execute(
                    "SELECT * FROM partitions WHERE id = ?", (partition_id,)
                ).fetchone()
                partitions.append(_row_to_partition(row))

        return partitions

    def get_partitions(self, skill_id: str) -> list[Partition]:
        """All partitions of a skill, in creation order."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM partitions WHERE skill_id = ? ORDER BY created_at, rowid",
                (skill_id,),
            ).fetchall()
        return [_row_to_partition(r) for r in rows]

    def get_partition(self, partition_id: str) -> Partition | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM partitions WHERE id = ?", (partition_id,)
            ).fetchone()
        return _row_to_partition(row) if row else None

    def update_partition_centroid(self, partition_id: str, centroid: Sequence[float]) -> None:
        """Move a partition's centroid. Only clustering runs call this."""
        with self._get_connection() as conn:
            conn.execute(
                """
                UPDATE partitions SET centroid = ?, dimensions = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    dump_json([float(x) for x in centroid]),
                    len(centroid),
                    format_timestamp(utc_now()),
                    partition_id,
                ),
            )

    def increment_partition_steps(self, partition_id: str) -> int:
        """Atomically add one to a partition's step counter.

        Returns:
            The new counter value, or 0 if the partition no longer exists
            (it may have been replaced by a concurrent clustering run).
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE partitions SET total_steps = total_steps + 1 WHERE id = ?",
                (partition_id,),
            )
            if cursor.rowcount == 0:
                return 0
            row = conn.execute(
                "SELECT total_steps FROM partitions WHERE id = ?", (partition_id,)
            ).fetchone()
        return int(row["total_steps"])

    def reset_partition_steps(self, skill_id: str, partition_id: str | None = None) -> int:
        """Zero the step counter of one partition, or of every partition of a skill."""
        with self._get_connection() as conn:
            if partition_id is None:
                cursor = conn.execute(
                    "UPDATE partitions SET total_steps = 0 WHERE skill_id = ?", (skill_id,)
                )
            else:
                cursor = conn.execute(
                    "UPDATE partitions SET total_steps = 0 WHERE id = ? AND skill_id = ?",
                    (partition_id, skill_id),
                )
            return cursor.rowcount

    def delete_partitions(self, skill_id: str, partition_ids: Sequence[str] | None = None) -> int:
        """Delete partitions (and, by cascade, their arms).

        Args:
            skill_id: Owning skill.
            partition_ids: Specific partitions; all of the skill's when None.

        Returns:
            Number of partitions deleted.
        """
        with self._get_connection() as conn:
            if partition_ids is None:
                cursor = conn.execute("DELETE FROM partitions WHERE skill_id = ?", (skill_id,))
            else:
                cursor = conn.executemany(
                    "DELETE FROM partitions WHERE id = ? AND skill_id = ?",
                    [(pid, skill_id) for pid in partition_ids],
                )
            return cursor.rowcount
