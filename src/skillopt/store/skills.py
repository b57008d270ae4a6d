"""Skill mixin for the optimization store.

Skill rows hold both user settings and the optimizer-owned counters
(lifetime request count, clustering watermark, warm-up marker). Counters
are only ever changed through single conditional statements, never by
writing back a value read earlier, so concurrent workers cannot lose
updates.
"""

from __future__ import annotations

import sqlite3
import uuid
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any

from skillopt.core.config import SkillSettings
from skillopt.core.exceptions import SkillNotFoundError
from skillopt.core.logging import SkilloptLogger
from skillopt.utils.time import format_timestamp, utc_now

from .base import dump_json, load_json
from .models import Skill

# Fields update_skill_metadata may patch; everything else goes through
# update_skill_settings so the pydantic bounds are enforced.
_METADATA_FIELDS = frozenset({
    "last_clustering_at",
    "last_clustering_log_start_time",
    "context_generated_at",
    "optimization_enabled",
})


def _row_to_skill(row: sqlite3.Row) -> Skill:
    data: dict[str, Any] = dict(row)
    data["allowed_models"] = load_json(row["allowed_models"], [])
    data["optimization_enabled"] = bool(row["optimization_enabled"])
    return Skill.from_dict(data)


class SkillMixin:
    """Mixin providing skill persistence and counter updates.

    Requires the following from the composed class:
        - _get_connection() -> context manager yielding sqlite3.Connection
    """

    _logger: SkilloptLogger
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]

    def create_skill(self, settings: SkillSettings, skill_id: str | None = None) -> Skill:
        """Persist a new skill from validated settings.

        Args:
            settings: User-controlled settings (bounds already enforced).
            skill_id: Optional explicit id; a UUID is generated otherwise.

        Returns:
            The stored Skill.
        """
        now = utc_now()
        skill = Skill(
            id=skill_id or str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            **settings.model_dump(),
        )
        data = skill.to_dict()
        data["allowed_models"] = dump_json(skill.allowed_models)
        data["optimization_enabled"] = int(skill.optimization_enabled)
        columns = ", ".join(data)
        placeholders = ", ".join("?" for _ in data)

        with self._get_connection() as conn:
            conn.execute(
                f"INSERT INTO skills ({columns}) VALUES ({placeholders})",
                tuple(data.values()),
            )

        self._logger.info("skill_created", skill_id=skill.id, name=skill.name)
        return skill

    def get_skill(self, skill_id: str) -> Skill | None:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM skills WHERE id = ?", (skill_id,)).fetchone()
        return _row_to_skill(row) if row else None

    def require_skill(self, skill_id: str) -> Skill:
        """Like ``get_skill`` but raises SkillNotFoundError when missing."""
        skill = self.get_skill(skill_id)
        if skill is None:
            raise SkillNotFoundError(skill_id)
        return skill

    def list_skills(self) -> list[Skill]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM skills ORDER BY created_at, rowid").fetchall()
        return [_row_to_skill(r) for r in rows]

    def update_skill_settings(self, skill_id: str, settings: SkillSettings) -> Skill:
        """Replace a skill's user settings, keeping its counters.

        Raises:
            SkillNotFoundError: If the skill does not exist.
        """
        data = settings.model_dump()
        data["allowed_models"] = dump_json(data["allowed_models"])
        data["optimization_enabled"] = int(data["optimization_enabled"])
        assignments = ", ".join(f"{k} = ?" for k in data)

        with self._get_connection() as conn:
            cursor = conn.execute(
                f"UPDATE skills SET {assignments}, version = version + 1, updated_at = ? "
                "WHERE id = ?",
                (*data.values(), format_timestamp(utc_now()), skill_id),
            )
            if cursor.rowcount == 0:
                raise SkillNotFoundError(skill_id)

        return self.require_skill(skill_id)

    def update_skill_metadata(self, skill_id: str, **patch: Any) -> None:
        """Patch optimizer-owned skill fields.

        Accepted keys: ``last_clustering_at``, ``last_clustering_log_start_time``,
        ``context_generated_at``, ``optimization_enabled``. Datetimes are
        serialized; None clears a timestamp.

        Raises:
            ValueError: For unknown keys.
            SkillNotFoundError: If the skill does not exist.
        """
        unknown = set(patch) - _METADATA_FIELDS
        if unknown:
            raise ValueError(f"Unsupported skill metadata fields: {sorted(unknown)}")
        if not patch:
            return

        values: list[Any] = []
        for value in patch.values():
            if isinstance(value, datetime):
                values.append(format_timestamp(value))
            elif isinstance(value, bool):
                values.append(int(value))
            else:
                values.append(value)
        assignments = ", ".join(f"{k} = ?" for k in patch)

        with self._get_connection() as conn:
            cursor = conn.execute(
                f"UPDATE skills SET {assignments}, version = version + 1, updated_at = ? "
                "WHERE id = ?",
                (*values, format_timestamp(utc_now()), skill_id),
            )
            if cursor.rowcount == 0:
                raise SkillNotFoundError(skill_id)

    def increment_total_requests(self, skill_id: str) -> int:
        """Atomically add one to the skill's lifetime request counter.

        The increment and the read-back share a transaction, so the returned
        value is exactly this caller's post-increment count.

        Returns:
            The new total.
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE skills SET total_requests = total_requests + 1 WHERE id = ?",
                (skill_id,),
            )
            if cursor.rowcount == 0:
                raise SkillNotFoundError(skill_id)
            row = conn.execute(
                "SELECT total_requests FROM skills WHERE id = ?", (skill_id,)
            ).fetchone()
        return int(row["total_requests"])

    def delete_skill(self, skill_id: str) -> bool:
        """Delete a skill and, by cascade, all of its optimization state."""
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM skills WHERE id = ?", (skill_id,))
            deleted = cursor.rowcount > 0
        if deleted:
            self._logger.info("skill_deleted", skill_id=skill_id)
        return deleted
