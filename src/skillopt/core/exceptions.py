"""Exception hierarchy for skillopt.

All package exceptions inherit from SkilloptError, so callers can catch
broadly (SkilloptError) or narrowly (e.g., LockBusyError). The scheduler
treats LockBusyError as a deferral rather than a failure, and never lets any
of these escape into the request path.
"""

from __future__ import annotations

from datetime import datetime


class SkilloptError(Exception):
    """Base exception for all skillopt errors."""


class PartitionInputError(SkilloptError, ValueError):
    """Raised when the partitioner receives unusable input.

    Examples: empty embedding set, non-positive k, vectors of differing
    dimensionality, NaN or infinite components. Nothing is committed when
    this is raised; the existing partitions stay authoritative.
    """


class NoArmsError(SkilloptError):
    """Raised when selecting from a partition that has no arms.

    Signals that the partition's arm pool has not been generated yet.
    """

    def __init__(self, partition_id: str | None = None) -> None:
        self.partition_id = partition_id
        where = f" in partition {partition_id}" if partition_id else ""
        super().__init__(f"No arms available{where}; arm pool not generated yet")


class LockBusyError(SkilloptError):
    """Raised when a lease is held by someone else and has not expired.

    Losing the race for a lock is a normal outcome; the scheduler reports the
    step as deferred and retries on a later qualifying request.
    """

    def __init__(
        self,
        lock_name: str,
        locked_by: str | None = None,
        expires_at: datetime | None = None,
    ) -> None:
        self.lock_name = lock_name
        self.locked_by = locked_by
        self.expires_at = expires_at
        holder = f" (held by {locked_by})" if locked_by else ""
        super().__init__(f"Lock '{lock_name}' is busy{holder}")


class StatsUpdateConflictError(SkilloptError):
    """Raised when an arm's statistics could not be updated after retries.

    Each attempt is a compare-and-swap on the arm's version column; this
    fires only under sustained contention on the same arm.
    """


class SkillNotFoundError(SkilloptError, KeyError):
    """Raised when an operation references a skill id that does not exist."""

    def __init__(self, skill_id: str) -> None:
        self.skill_id = skill_id
        super().__init__(skill_id)

    def __str__(self) -> str:
        return f"Skill not found: {self.skill_id}"


class CollaboratorError(SkilloptError):
    """Raised when an external collaborator returns an unusable result.

    Embedding, evaluation, and generation failures are normally degraded to
    "no signal"; this is raised only where a step cannot proceed without the
    collaborator (e.g., reflection receiving zero prompts).
    """


__all__ = [
    "CollaboratorError",
    "LockBusyError",
    "NoArmsError",
    "PartitionInputError",
    "SkillNotFoundError",
    "SkilloptError",
    "StatsUpdateConflictError",
]
