"""Optimization engine facade.

Wires the store, lock manager, selector, scheduler and collaborators
together and exposes the two gateway hooks plus the admin operations:

- ``route()`` before a request is dispatched: pick the partition, the arm
  and a concrete configuration.
- ``on_request_completed()`` after it was served: log, reward, and run
  whatever optimization steps are due.

Example:
    engine = OptimizationEngine.from_config(config, embedder=my_embedder)
    decision = engine.route(skill_id, payload)
    response = dispatch(payload, decision.selection)
    engine.complete_request(decision, payload, response)
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import numpy as np

from skillopt.core.config import EngineConfig, SkillSettings
from skillopt.core.exceptions import NoArmsError
from skillopt.core.logging import get_logger
from skillopt.optimization.collaborators import (
    CompletedRequest,
    ContextGenerator,
    Embedder,
    EvaluationMethod,
    PromptReflector,
    RewardEvaluator,
    safe_embed,
)
from skillopt.optimization.configuration import SelectedConfiguration, sample_configuration
from skillopt.optimization.events import EventRecorder
from skillopt.optimization.locks import LockManager, skill_lock_name
from skillopt.optimization.partitioner import nearest_partition
from skillopt.optimization.reflection import ArmPoolManager
from skillopt.optimization.scheduler import OptimizationScheduler, SchedulerReport
from skillopt.optimization.selector import ArmSelector
from skillopt.optimization.statistics import ArmStatisticsTracker
from skillopt.store import OptimizationStore
from skillopt.store.models import (
    Arm,
    EvaluationMethodName,
    Skill,
    SkillEvaluation,
    SkillEventType,
)
from skillopt.utils.time import utc_now

_logger = get_logger("engine")


@dataclass
class RoutingDecision:
    """Result of routing one request.

    Attributes:
        skill_id: Skill the request belongs to.
        embedding: Request embedding, or None if embedding failed.
        partition_id: Nearest partition, if any exist.
        selection: Configuration to dispatch with. None means the gateway
            should use the skill's default configuration.
    """

    skill_id: str
    embedding: list[float] | None = None
    partition_id: str | None = None
    selection: SelectedConfiguration | None = None

    @property
    def optimized(self) -> bool:
        return self.selection is not None


class OptimizationEngine:
    """Per-process entry point into skill optimization."""

    def __init__(
        self,
        store: OptimizationStore,
        config: EngineConfig | None = None,
        *,
        embedder: Embedder | None = None,
        evaluation_methods: Mapping[EvaluationMethodName, EvaluationMethod] | None = None,
        context_generator: ContextGenerator | None = None,
        reflector: PromptReflector | None = None,
        clock: Callable[[], datetime] = utc_now,
        holder_id: str | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.store = store
        self._embedder = embedder
        self._clock = clock
        self._rng = np.random.default_rng(self.config.selector.seed)

        self.events = EventRecorder(store, clock=clock)
        self.locks = LockManager(store, self.config.locks, clock=clock, holder_id=holder_id)
        self.selector = ArmSelector(
            variance_floor=self.config.selector.variance_floor,
            seed=self.config.selector.seed,
        )
        self.pools = ArmPoolManager(
            store,
            self.events,
            reflector=reflector,
            example_count=self.config.scheduler.reflection_example_count,
        )
        self.scheduler = OptimizationScheduler(
            store,
            self.locks,
            self.events,
            ArmStatisticsTracker(store, max_retries=self.config.scheduler.stats_update_retries),
            self.pools,
            evaluator=RewardEvaluator(evaluation_methods) if evaluation_methods else None,
            context_generator=context_generator,
            config=self.config.scheduler,
            partitioner_config=self.config.partitioner,
            clock=clock,
        )

    @classmethod
    def from_config(cls, config: EngineConfig, **collaborators: Any) -> OptimizationEngine:
        """Build an engine with its own store at ``config.store.path``."""
        store = OptimizationStore(
            config.store.path, timeout=config.store.connect_timeout_seconds
        )
        return cls(store, config, **collaborators)

    # ------------------------------------------------------------------
    # Gateway hooks
    # ------------------------------------------------------------------

    def route(
        self,
        skill_id: str,
        payload: Mapping[str, Any],
        variables: Mapping[str, Any] | None = None,
    ) -> RoutingDecision:
        """Choose the configuration for a request about to be dispatched.

        Raises:
            SkillNotFoundError: If the skill does not exist.
        """
        skill = self.store.require_skill(skill_id)
        decision = RoutingDecision(skill_id=skill_id, embedding=safe_embed(self._embedder, payload))
        if not skill.optimization_enabled or decision.embedding is None:
            return decision

        partition = nearest_partition(decision.embedding, self.store.get_partitions(skill_id))
        if partition is None:
            return decision
        decision.partition_id = partition.id

        try:
            arm = self.selector.select(
                self.store.get_arms(partition_id=partition.id),
                skill.exploration_temperature,
            )
        except NoArmsError:
            _logger.debug("partition_has_no_arms", skill_id=skill_id, partition_id=partition.id)
            return decision

        decision.selection = sample_configuration(arm, variables, rng=self._rng)
        return decision

    def on_request_completed(self, request: CompletedRequest) -> SchedulerReport:
        return self.scheduler.on_request_completed(request)

    def complete_request(
        self,
        decision: RoutingDecision,
        request_payload: dict[str, Any],
        response_payload: dict[str, Any],
        start_time: datetime | None = None,
    ) -> SchedulerReport:
        """Shorthand for ``on_request_completed`` using a routing decision."""
        return self.on_request_completed(
            CompletedRequest(
                skill_id=decision.skill_id,
                request_payload=request_payload,
                response_payload=response_payload,
                start_time=start_time or self._clock(),
                embedding=decision.embedding,
                selection=decision.selection,
            )
        )

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    def create_skill(self, settings: SkillSettings, skill_id: str | None = None) -> Skill:
        return self.store.create_skill(settings, skill_id=skill_id)

    def set_optimization_enabled(self, skill_id: str, enabled: bool) -> Skill:
        """Turn optimization on or off; emits an event only on change."""
        skill = self.store.require_skill(skill_id)
        if skill.optimization_enabled == enabled:
            return skill

        event_type = (
            SkillEventType.OPTIMIZATION_ENABLED if enabled else SkillEventType.OPTIMIZATION_DISABLED
        )
        with self.store.batch_connection():
            self.store.update_skill_metadata(skill_id, optimization_enabled=enabled)
            self.events.record(skill_id, event_type)
        return self.store.require_skill(skill_id)

    def add_evaluation(
        self,
        skill_id: str,
        method: EvaluationMethodName,
        weight: float = 1.0,
        params: dict[str, Any] | None = None,
    ) -> SkillEvaluation:
        self.store.require_skill(skill_id)
        with self.store.batch_connection():
            evaluation = self.store.add_evaluation(skill_id, method, weight=weight, params=params)
            self.events.record(
                skill_id,
                SkillEventType.EVALUATION_ADDED,
                metadata={
                    "evaluation_id": evaluation.id,
                    "method": evaluation.method.value,
                    "weight": evaluation.weight,
                },
            )
        return evaluation

    def remove_evaluation(self, skill_id: str, evaluation_id: str) -> bool:
        with self.store.batch_connection():
            removed = self.store.remove_evaluation(skill_id, evaluation_id)
            if removed:
                self.events.record(
                    skill_id,
                    SkillEventType.EVALUATION_REMOVED,
                    metadata={"evaluation_id": evaluation_id},
                )
        return removed

    def regenerate_arms(
        self,
        skill_id: str,
        system_prompt: str | None = None,
    ) -> dict[str, list[Arm]]:
        """Replace every partition's arm pool with a fresh one.

        Raises:
            LockBusyError: If an optimization step is running for the skill.
        """
        skill = self.store.require_skill(skill_id)
        with self.locks.hold(skill_lock_name(skill_id), metadata={"purpose": "regenerate"}):
            pools = self.pools.regenerate(skill, system_prompt)
        _logger.info("arms_regenerated", skill_id=skill_id, partition_count=len(pools))
        return pools
