"""Evaluation mixin for the optimization store.

Each skill carries a small weighted set of evaluation methods; their
combined score is the bandit reward.
"""

from __future__ import annotations

import sqlite3
import uuid
from collections.abc import Callable, Sequence
from contextlib import AbstractContextManager
from typing import Any

from skillopt.core.logging import SkilloptLogger
from skillopt.utils.time import format_timestamp, utc_now

from .base import dump_json, load_json
from .models import EvaluationMethodName, SkillEvaluation


def _row_to_evaluation(row: sqlite3.Row) -> SkillEvaluation:
    return SkillEvaluation.from_dict({
        "id": row["id"],
        "skill_id": row["skill_id"],
        "method": row["method"],
        "weight": row["weight"],
        "params": load_json(row["params"], {}),
        "created_at": row["created_at"],
    })


class EvaluationMixin:
    """Mixin providing skill evaluation storage.

    Requires the following from the composed class:
        - _get_connection() -> context manager yielding sqlite3.Connection
    """

    _logger: SkilloptLogger
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]
    batch_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]

    def add_evaluation(
        self,
        skill_id: str,
        method: EvaluationMethodName,
        weight: float = 1.0,
        params: dict[str, Any] | None = None,
    ) -> SkillEvaluation:
        evaluation = SkillEvaluation(
            id=str(uuid.uuid4()),
            skill_id=skill_id,
            method=method,
            weight=weight,
            params=params or {},
            created_at=utc_now(),
        )
        self._insert_evaluations([evaluation])
        return evaluation

    def _insert_evaluations(self, evaluations: Sequence[SkillEvaluation]) -> None:
        with self._get_connection() as conn:
            conn.executemany(
                """
                INSERT INTO skill_evaluations (id, skill_id, method, weight, params, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        e.id,
                        e.skill_id,
                        e.method.value,
                        e.weight,
                        dump_json(e.params),
                        format_timestamp(e.created_at),
                    )
                    for e in evaluations
                ],
            )

    def get_evaluations(self, skill_id: str) -> list[SkillEvaluation]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM skill_evaluations WHERE skill_id = ? ORDER BY created_at, rowid",
                (skill_id,),
            ).fetchall()
        return [_row_to_evaluation(r) for r in rows]

    def remove_evaluation(self, skill_id: str, evaluation_id: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM skill_evaluations WHERE id = ? AND skill_id = ?",
                (evaluation_id, skill_id),
            )
            return cursor.rowcount > 0

    def replace_evaluations(
        self,
        skill_id: str,
        evaluations: Sequence[tuple[EvaluationMethodName, float, dict[str, Any]]],
    ) -> list[SkillEvaluation]:
        """Swap a skill's whole evaluation set for ``(method, weight, params)`` triples."""
        now = utc_now()
        created = [
            SkillEvaluation(
                id=str(uuid.uuid4()),
                skill_id=skill_id,
                method=method,
                weight=weight,
                params=dict(params),
                created_at=now,
            )
            for method, weight, params in evaluations
        ]
        with self.batch_connection() as conn:
            conn.execute("DELETE FROM skill_evaluations WHERE skill_id = ?", (skill_id,))
            self._insert_evaluations(created)
        return created
