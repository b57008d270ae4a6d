"""Event mixin for the optimization store.

Append-only audit trail. Rows are never updated; they disappear only when
their skill is deleted.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable
from contextlib import AbstractContextManager

from skillopt.core.logging import SkilloptLogger
from skillopt.utils.time import format_timestamp

from .base import WhereBuilder, dump_json, load_json
from .models import SkillEvent, SkillEventType


class EventMixin:
    """Mixin providing event persistence.

    Requires the following from the composed class:
        - _get_connection() -> context manager yielding sqlite3.Connection
    """

    _logger: SkilloptLogger
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]

    def insert_event(self, event: SkillEvent) -> SkillEvent:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO skill_events (
                    id, skill_id, partition_id, event_type, metadata, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    event.id,
                    event.skill_id,
                    event.partition_id,
                    event.event_type.value,
                    dump_json(event.metadata),
                    format_timestamp(event.created_at),
                ),
            )
        return event

    def get_events(
        self,
        skill_id: str,
        event_type: SkillEventType | None = None,
        partition_id: str | None = None,
        limit: int | None = 100,
    ) -> list[SkillEvent]:
        """Events for a skill, newest first."""
        wb = WhereBuilder()
        wb.add("skill_id = ?", skill_id)
        if event_type is not None:
            wb.add("event_type = ?", event_type.value)
        if partition_id is not None:
            wb.add("partition_id = ?", partition_id)
        where_sql, params = wb.build()
        limit_sql = f" LIMIT {int(limit)}" if limit is not None else ""

        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM skill_events WHERE {where_sql} "
                f"ORDER BY created_at DESC, rowid DESC{limit_sql}",
                params,
            ).fetchall()

        return [
            SkillEvent.from_dict({
                "id": r["id"],
                "skill_id": r["skill_id"],
                "partition_id": r["partition_id"],
                "event_type": r["event_type"],
                "metadata": load_json(r["metadata"], {}),
                "created_at": r["created_at"],
            })
            for r in rows
        ]
