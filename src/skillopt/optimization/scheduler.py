"""Optimization scheduler: the per-skill state machine run after each request.

Every serviced request passes through ``on_request_completed``:

1. The request is logged and the skill's lifetime counter bumped.
2. **Reward**: the request is scored and the score folded into the arm
   that served it.
3. **Warm-up** (once, when the counter first reaches the threshold):
   generate context, build the first partitions, seed their arm pools.
4. **Recompute** (every ``clustering_interval`` new embedded logs):
   re-partition the logs past the watermark, seed pools for new
   partitions, and advance the watermark.
5. **Reflection** (when every arm of a partition has enough samples):
   regenerate that partition's arm pool.

Steps 3-5 run under the skill's lease; losing the race defers the step to
a later request. No step ever raises into the caller: the request that
triggered the pass has already been served.
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from skillopt.core.config import PartitionerConfig, SchedulerConfig
from skillopt.core.exceptions import LockBusyError, PartitionInputError
from skillopt.core.logging import OptimizationContext, get_logger, with_context
from skillopt.optimization.collaborators import (
    CompletedRequest,
    ContextGenerator,
    GeneratedContext,
    RewardEvaluator,
)
from skillopt.optimization.events import EventRecorder
from skillopt.optimization.locks import LockManager, skill_lock_name
from skillopt.optimization.partitioner import (
    PartitionResult,
    match_partitions,
    partition_embeddings,
)
from skillopt.optimization.reflection import ArmPoolManager, ReflectionStatus, is_ready_for_reflection
from skillopt.optimization.statistics import ArmStatisticsTracker
from skillopt.store import OptimizationStore
from skillopt.store.models import LockLease, Partition, RequestLog, Skill, SkillEventType
from skillopt.utils.time import utc_now

_logger = get_logger("scheduler")


class StepStatus(str, Enum):
    """Outcome of one scheduler step for one request."""

    COMPLETED = "completed"
    NOT_DUE = "not_due"
    """Thresholds not met; nothing to do."""

    SKIPPED = "skipped"
    """Step not applicable (optimization off, no arm pulled, no reward signal)."""

    DEFERRED = "deferred"
    """Another worker holds the skill lease; retried on a later request."""

    FAILED = "failed"
    """The step raised; nothing was committed and the error was logged."""


STEP_NAMES = ("reward", "warmup", "recompute", "reflection")


@dataclass
class SchedulerReport:
    """What one ``on_request_completed`` pass did."""

    log_id: str
    total_requests: int = 0
    reward: float | None = None
    steps: dict[str, StepStatus] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "log_id": self.log_id,
            "total_requests": self.total_requests,
            "reward": self.reward,
            "steps": {k: v.value for k, v in self.steps.items()},
            "errors": dict(self.errors),
        }


class OptimizationScheduler:
    """Decides and runs the optimization steps due after each request."""

    def __init__(
        self,
        store: OptimizationStore,
        locks: LockManager,
        events: EventRecorder,
        tracker: ArmStatisticsTracker,
        pools: ArmPoolManager,
        evaluator: RewardEvaluator | None = None,
        context_generator: ContextGenerator | None = None,
        config: SchedulerConfig | None = None,
        partitioner_config: PartitionerConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._locks = locks
        self._events = events
        self._tracker = tracker
        self._pools = pools
        self._evaluator = evaluator
        self._context_generator = context_generator
        self._config = config or SchedulerConfig()
        self._partitioner_config = partitioner_config or PartitionerConfig()
        self._clock = clock

    def on_request_completed(self, request: CompletedRequest) -> SchedulerReport:
        """Log ``request`` and run whichever optimization steps are due.

        Never raises; failures are logged and reflected in the report.
        """
        report = SchedulerReport(log_id=request.log_id)
        ctx = OptimizationContext(skill_id=request.skill_id, worker_id=self._locks.holder_id)

        with with_context(ctx):
            try:
                skill = self._store.require_skill(request.skill_id)
                self._store.record_log(request.to_log())
                report.total_requests = self._store.increment_total_requests(skill.id)
            except Exception as e:
                _logger.exception("request_log_failed", log_id=request.log_id)
                report.errors["log"] = f"{type(e).__name__}: {e}"
                return report

            if not skill.optimization_enabled:
                report.steps = {name: StepStatus.SKIPPED for name in STEP_NAMES}
                return report

            self._run_step(ctx, report, "reward", lambda: self._apply_reward(skill, request, report))
            self._run_step(ctx, report, "warmup", lambda: self._maybe_warm_up(skill.id))
            self._run_step(ctx, report, "recompute", lambda: self._maybe_recompute(skill.id))
            self._run_step(
                ctx,
                report,
                "reflection",
                lambda: self._maybe_reflect(skill.id, ctx.with_operation("reflection")),
            )

        return report

    def _run_step(
        self,
        ctx: OptimizationContext,
        report: SchedulerReport,
        name: str,
        step: Callable[[], StepStatus],
    ) -> None:
        with with_context(ctx.with_operation(name)):
            try:
                report.steps[name] = step()
            except LockBusyError as e:
                _logger.debug("step_deferred", step=name, locked_by=e.locked_by)
                report.steps[name] = StepStatus.DEFERRED
            except PartitionInputError as e:
                _logger.warning("step_input_rejected", step=name, error=str(e))
                report.steps[name] = StepStatus.FAILED
                report.errors[name] = f"{type(e).__name__}: {e}"
            except Exception as e:
                _logger.exception("step_failed", step=name)
                report.steps[name] = StepStatus.FAILED
                report.errors[name] = f"{type(e).__name__}: {e}"

    def _lease(self, skill_id: str, purpose: str) -> AbstractContextManager[LockLease]:
        return self._locks.hold(skill_lock_name(skill_id), metadata={"purpose": purpose})

    # ------------------------------------------------------------------
    # Reward
    # ------------------------------------------------------------------

    def _apply_reward(
        self,
        skill: Skill,
        request: CompletedRequest,
        report: SchedulerReport,
    ) -> StepStatus:
        if request.selection is None or self._evaluator is None:
            return StepStatus.SKIPPED

        evaluations = self._store.get_evaluations(skill.id)
        if not evaluations:
            return StepStatus.SKIPPED

        reward = self._evaluator.score(evaluations, request)
        if reward is None:
            _logger.info("reward_unavailable", log_id=request.log_id)
            return StepStatus.SKIPPED

        report.reward = reward
        self._store.set_log_reward(request.log_id, reward)
        stats = self._tracker.record_reward(request.selection.arm_id, reward)
        if stats is not None:
            self._store.increment_partition_steps(request.selection.partition_id)
        return StepStatus.COMPLETED

    # ------------------------------------------------------------------
    # Warm-up
    # ------------------------------------------------------------------

    def _warm_up_due(self, skill: Skill) -> bool:
        return (
            skill.context_generated_at is None
            and skill.total_requests >= self._config.warmup_request_threshold
        )

    def _maybe_warm_up(self, skill_id: str) -> StepStatus:
        skill = self._store.require_skill(skill_id)
        if not self._warm_up_due(skill):
            return StepStatus.NOT_DUE
        if self._store.count_logs(skill_id) < self._config.warmup_example_count:
            return StepStatus.NOT_DUE

        with self._lease(skill_id, "warmup"):
            # Another worker may have finished warm-up while we waited
            skill = self._store.require_skill(skill_id)
            if not self._warm_up_due(skill):
                return StepStatus.NOT_DUE

            logs = self._store.get_logs(skill_id)
            if len(logs) < self._config.warmup_example_count:
                return StepStatus.NOT_DUE

            examples = logs[: self._config.warmup_example_count]
            context = (
                self._context_generator.generate(skill, examples)
                if self._context_generator is not None
                else GeneratedContext(system_prompt=skill.seed_system_prompt)
            )
            result = self._partition(logs, skill.configuration_count)

            with self._store.batch_connection():
                if context.evaluations:
                    created = self._store.replace_evaluations(
                        skill.id,
                        [(e.method, e.weight, e.params) for e in context.evaluations],
                    )
                    self._events.record(
                        skill.id,
                        SkillEventType.EVALUATION_REGENERATED,
                        metadata={"methods": [e.method.value for e in created]},
                    )

                self._store.delete_partitions(skill.id)
                partitions = self._store.create_partitions(skill.id, result.centroids)
                for partition in partitions:
                    self._pools.seed(skill, partition, context.system_prompt)

                self._store.tag_logs({
                    log.id: partitions[idx].id for log, idx in zip(logs, result.assignments)
                })
                now = self._clock()
                self._store.update_skill_metadata(
                    skill.id,
                    context_generated_at=now,
                    last_clustering_at=now,
                    last_clustering_log_start_time=logs[-1].start_time,
                )
                self._events.record(
                    skill.id,
                    SkillEventType.CONTEXT_GENERATED,
                    metadata={"log_count": len(logs), "partition_count": len(partitions)},
                )

        _logger.info(
            "warmup_completed",
            log_count=len(logs),
            partition_count=len(result.centroids),
        )
        return StepStatus.COMPLETED

    # ------------------------------------------------------------------
    # Recompute
    # ------------------------------------------------------------------

    def _partition(self, logs: list[RequestLog], k: int) -> PartitionResult:
        return partition_embeddings(
            [log.embedding for log in logs if log.embedding is not None],
            k,
            max_iterations=self._partitioner_config.max_iterations,
            seed=self._partitioner_config.seed,
        )

    def _recompute_due(self, skill: Skill) -> bool:
        if skill.context_generated_at is None:
            return False
        pending = self._store.count_logs(skill.id, since=skill.last_clustering_log_start_time)
        return pending >= skill.clustering_interval

    def _maybe_recompute(self, skill_id: str) -> StepStatus:
        skill = self._store.require_skill(skill_id)
        if not self._recompute_due(skill):
            return StepStatus.NOT_DUE

        with self._lease(skill_id, "recompute"):
            skill = self._store.require_skill(skill_id)
            if not self._recompute_due(skill):
                return StepStatus.NOT_DUE

            logs = self._store.get_logs(skill_id, since=skill.last_clustering_log_start_time)
            result = self._partition(logs, skill.configuration_count)
            old = self._store.get_partitions(skill_id)
            dims = len(result.centroids[0])

            with self._store.batch_connection():
                if any(len(p.centroid) != dims for p in old):
                    # Embedding dimensionality changed; nothing carries over
                    self._store.delete_partitions(skill_id)
                    old = []

                mapping = match_partitions([p.centroid for p in old], result.centroids)
                by_new_index: dict[int, Partition] = {}
                for old_idx, new_idx in mapping.items():
                    self._store.update_partition_centroid(old[old_idx].id, result.centroids[new_idx])
                    by_new_index[new_idx] = old[old_idx]

                unmatched = [j for j in range(len(result.centroids)) if j not in by_new_index]
                created = self._store.create_partitions(
                    skill_id, [result.centroids[j] for j in unmatched]
                )
                by_new_index.update(zip(unmatched, created))
                for partition in created:
                    self._pools.seed(skill, partition)

                self._store.tag_logs({
                    log.id: by_new_index[idx].id for log, idx in zip(logs, result.assignments)
                })
                self._store.update_skill_metadata(
                    skill_id,
                    last_clustering_at=self._clock(),
                    last_clustering_log_start_time=logs[-1].start_time,
                )
                self._events.record(
                    skill_id,
                    SkillEventType.PARTITIONS_RECOMPUTED,
                    metadata={
                        "partition_count": len(result.centroids),
                        "new_partition_count": len(created),
                        "log_count": len(logs),
                        "iterations": result.iterations,
                    },
                )

        _logger.info(
            "partitions_recomputed",
            log_count=len(logs),
            partition_count=len(result.centroids),
            new_partition_count=len(created),
        )
        return StepStatus.COMPLETED

    # ------------------------------------------------------------------
    # Reflection
    # ------------------------------------------------------------------

    def _partitions_due_for_reflection(self, skill: Skill) -> list[Partition]:
        due = []
        for partition in self._store.get_partitions(skill.id):
            arms = self._store.get_arms(partition_id=partition.id)
            if len(arms) == 1:
                continue
            if is_ready_for_reflection(arms, skill.reflection_min_requests_per_arm):
                due.append(partition)
        return due

    def _maybe_reflect(self, skill_id: str, ctx: OptimizationContext) -> StepStatus:
        """Reflect on every due partition.

        A partition whose reflection fails is logged and skipped so it
        cannot block the partitions after it. The step fails only when
        nothing was reflected and at least one partition failed.
        """
        skill = self._store.require_skill(skill_id)
        if not self._partitions_due_for_reflection(skill):
            return StepStatus.NOT_DUE

        reflected = 0
        first_error: Exception | None = None
        with self._lease(skill_id, "reflection"):
            skill = self._store.require_skill(skill_id)
            for partition in self._partitions_due_for_reflection(skill):
                with with_context(ctx.with_partition(partition.id)):
                    try:
                        outcome = self._pools.reflect(skill, partition)
                    except Exception as e:
                        _logger.exception("partition_reflection_failed")
                        first_error = first_error or e
                        continue
                if outcome.status in (ReflectionStatus.REFLECTED, ReflectionStatus.SEEDED):
                    reflected += 1

        if reflected:
            return StepStatus.COMPLETED
        if first_error is not None:
            raise first_error
        return StepStatus.NOT_DUE
