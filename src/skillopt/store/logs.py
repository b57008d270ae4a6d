"""Request log mixin for the optimization store.

The partitioner's read path. Logs are written once per serviced request;
afterwards only the partition tag (set by clustering runs) and the reward
(set once evaluation finishes) change.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Mapping
from contextlib import AbstractContextManager
from datetime import datetime

from skillopt.core.logging import SkilloptLogger
from skillopt.utils.time import format_timestamp

from .base import WhereBuilder, dump_json, load_json
from .models import RequestLog


def _row_to_log(row: sqlite3.Row) -> RequestLog:
    return RequestLog.from_dict({
        "id": row["id"],
        "skill_id": row["skill_id"],
        "start_time": row["start_time"],
        "embedding": load_json(row["embedding"]),
        "request_payload": load_json(row["request_payload"], {}),
        "response_payload": load_json(row["response_payload"], {}),
        "arm_id": row["arm_id"],
        "partition_id": row["partition_id"],
        "reward": row["reward"],
    })


def _log_filter(
    skill_id: str,
    since: datetime | None,
    embedding_not_null: bool,
    partition_id: str | None,
) -> WhereBuilder:
    wb = WhereBuilder()
    wb.add("skill_id = ?", skill_id)
    if since is not None:
        wb.add("start_time > ?", format_timestamp(since))
    if embedding_not_null:
        wb.add("embedding IS NOT NULL")
    if partition_id is not None:
        wb.add("partition_id = ?", partition_id)
    return wb


class RequestLogMixin:
    """Mixin providing request log storage and queries.

    Requires the following from the composed class:
        - _get_connection() -> context manager yielding sqlite3.Connection
    """

    _logger: SkilloptLogger
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]

    def record_log(self, log: RequestLog) -> RequestLog:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO request_logs (
                    id, skill_id, start_time, embedding, request_payload,
                    response_payload, arm_id, partition_id, reward
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    log.id,
                    log.skill_id,
                    format_timestamp(log.start_time),
                    dump_json(log.embedding),
                    dump_json(log.request_payload),
                    dump_json(log.response_payload),
                    log.arm_id,
                    log.partition_id,
                    log.reward,
                ),
            )
        return log

    def get_logs(
        self,
        skill_id: str,
        since: datetime | None = None,
        embedding_not_null: bool = True,
        partition_id: str | None = None,
        limit: int | None = None,
        newest_first: bool = False,
    ) -> list[RequestLog]:
        """Logs of a skill strictly after ``since``, oldest first by default.

        Args:
            skill_id: Skill whose logs to read.
            since: Exclusive lower bound on ``start_time`` (the watermark).
            embedding_not_null: Only logs that carry an embedding.
            partition_id: Only logs tagged with this partition.
            limit: Maximum rows returned.
            newest_first: Reverse the ordering.
        """
        where_sql, params = _log_filter(
            skill_id, since, embedding_not_null, partition_id
        ).build()
        order = "DESC" if newest_first else "ASC"
        limit_sql = f" LIMIT {int(limit)}" if limit is not None else ""

        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM request_logs WHERE {where_sql} "
                f"ORDER BY start_time {order}, rowid {order}{limit_sql}",
                params,
            ).fetchall()
        return [_row_to_log(r) for r in rows]

    def count_logs(
        self,
        skill_id: str,
        since: datetime | None = None,
        embedding_not_null: bool = True,
    ) -> int:
        where_sql, params = _log_filter(skill_id, since, embedding_not_null, None).build()
        with self._get_connection() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS c FROM request_logs WHERE {where_sql}", params
            ).fetchone()
        return int(row["c"])

    def tag_logs(self, assignments: Mapping[str, str]) -> int:
        """Set ``partition_id`` on each log id in ``assignments``."""
        with self._get_connection() as conn:
            cursor = conn.executemany(
                "UPDATE request_logs SET partition_id = ? WHERE id = ?",
                [(partition_id, log_id) for log_id, partition_id in assignments.items()],
            )
            return cursor.rowcount

    def set_log_reward(self, log_id: str, reward: float) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE request_logs SET reward = ? WHERE id = ?", (reward, log_id)
            )
