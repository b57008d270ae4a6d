"""Bandit arm selection via temperature-scaled Gaussian Thompson sampling.

For every arm a plausible mean reward is drawn from its posterior and the
arm with the highest draw wins. The posterior of an arm with ``n``
observations is Normal(mean, tau * max(n2/n, floor) / n): the variance
floor keeps a lucky streak of identical rewards from collapsing the
distribution, and the temperature ``tau`` widens (>1) or narrows (<1) every
posterior at once.

Selection only reads arm statistics, so it needs no locking.

This deliberately departs from the Beta(total_reward + 1,
n - total_reward + 1) sampler the originating gateway used; the variance
floor and the untried-arm priority assume the Gaussian form.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np

from skillopt.core.exceptions import NoArmsError
from skillopt.store.models import Arm, ArmStats

DEFAULT_VARIANCE_FLOOR = 0.01


def posterior_std(stats: ArmStats, temperature: float, variance_floor: float) -> float:
    """Standard deviation of an observed arm's temperature-scaled posterior."""
    variance = max(stats.n2 / stats.n, variance_floor)
    return math.sqrt(temperature * variance / stats.n)


class ArmSelector:
    """Thompson sampling over one partition's arms.

    Arms never observed take a maximally uncertain prior: their draw is
    ``+inf``, so each arm is pulled at least once before any observed arm
    can win. Ties, including among several unobserved arms, are broken by a
    uniform random choice.
    """

    def __init__(
        self,
        variance_floor: float = DEFAULT_VARIANCE_FLOOR,
        rng: np.random.Generator | None = None,
        seed: int | None = None,
    ) -> None:
        if variance_floor <= 0:
            raise ValueError(f"variance_floor must be positive, got {variance_floor}")
        self.variance_floor = variance_floor
        self._rng = rng if rng is not None else np.random.default_rng(seed)

    def sample(self, arm: Arm, temperature: float) -> float:
        """One posterior draw for ``arm``."""
        if arm.stats.n == 0:
            return math.inf
        std = posterior_std(arm.stats, temperature, self.variance_floor)
        return float(self._rng.normal(arm.stats.mean, std))

    def select(self, arms: Sequence[Arm], temperature: float) -> Arm:
        """Pick the arm to serve the next request.

        Args:
            arms: The partition's arms.
            temperature: Exploration temperature, strictly positive.

        Raises:
            NoArmsError: If ``arms`` is empty.
            ValueError: If temperature is not a positive finite number.
        """
        if not arms:
            raise NoArmsError()
        if not math.isfinite(temperature) or temperature <= 0:
            raise ValueError(f"temperature must be positive, got {temperature}")
        if len(arms) == 1:
            return arms[0]

        draws = [self.sample(arm, temperature) for arm in arms]
        best = max(draws)
        winners = [i for i, d in enumerate(draws) if d == best]
        if len(winners) == 1:
            return arms[winners[0]]
        return arms[int(self._rng.choice(winners))]
