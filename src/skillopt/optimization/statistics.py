"""Arm statistics tracking with Welford's online algorithm.

Each arm keeps only four numbers (count, mean, sum of squared deviations,
total reward), updated in O(1) per observed reward with no stored history.
Persisted updates are a compare-and-swap on the arm's version so concurrent
rewards for the same arm serialize without being lost.
"""

from __future__ import annotations

import math
from typing import Protocol

from skillopt.core.exceptions import StatsUpdateConflictError
from skillopt.core.logging import get_logger
from skillopt.store.models import Arm, ArmStats

_logger = get_logger("statistics")


def welford_update(stats: ArmStats, reward: float) -> ArmStats:
    """Fold one reward into an arm's running statistics.

    Args:
        stats: Current accumulators.
        reward: Observed reward in [0, 1].

    Returns:
        New accumulators; ``stats`` is not modified.

    Raises:
        ValueError: If reward is outside [0, 1] or not finite.
    """
    if not math.isfinite(reward) or not 0.0 <= reward <= 1.0:
        raise ValueError(f"Reward must be within [0, 1], got {reward}")

    n = stats.n + 1
    delta = reward - stats.mean
    mean = stats.mean + delta / n
    delta2 = reward - mean
    return ArmStats(
        n=n,
        mean=mean,
        n2=stats.n2 + delta * delta2,
        total_reward=stats.total_reward + reward,
    )


def population_variance(stats: ArmStats) -> float:
    """``n2 / n``; 0.0 before any observation."""
    if stats.n == 0:
        return 0.0
    return max(stats.n2, 0.0) / stats.n


def sample_variance(stats: ArmStats) -> float:
    """``n2 / (n - 1)``; 0.0 with fewer than two observations."""
    if stats.n < 2:
        return 0.0
    return max(stats.n2, 0.0) / (stats.n - 1)


class ArmStatsRepository(Protocol):
    """Storage operations the tracker needs."""

    def get_arm(self, arm_id: str) -> Arm | None: ...

    def compare_and_set_arm_stats(
        self, arm_id: str, expected_version: int, stats: ArmStats
    ) -> bool: ...


class ArmStatisticsTracker:
    """Applies rewards to persisted arm statistics.

    Example:
        tracker = ArmStatisticsTracker(store)
        stats = tracker.record_reward(arm.id, 0.8)
    """

    def __init__(self, repository: ArmStatsRepository, max_retries: int = 8) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self._repository = repository
        self._max_retries = max_retries

    def record_reward(self, arm_id: str, reward: float) -> ArmStats | None:
        """Atomically fold ``reward`` into the arm's persisted statistics.

        Re-reads and retries when another worker updated the arm between
        the read and the conditional write.

        Returns:
            The statistics as written, or None if the arm no longer exists
            (its partition was replaced while the request was in flight).

        Raises:
            ValueError: If reward is outside [0, 1].
            StatsUpdateConflictError: If every attempt lost the race.
        """
        for attempt in range(1, self._max_retries + 1):
            arm = self._repository.get_arm(arm_id)
            if arm is None:
                _logger.info("reward_for_missing_arm", arm_id=arm_id)
                return None

            updated = welford_update(arm.stats, reward)
            if self._repository.compare_and_set_arm_stats(arm_id, arm.version, updated):
                _logger.debug(
                    "arm_stats_updated",
                    arm_id=arm_id,
                    n=updated.n,
                    mean=round(updated.mean, 4),
                    attempt=attempt,
                )
                return updated

        raise StatsUpdateConflictError(
            f"Could not update statistics for arm {arm_id} "
            f"after {self._max_retries} attempts"
        )
