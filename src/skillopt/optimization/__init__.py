"""Skill optimization: partitioning, bandit selection, and the scheduler.

The modules here are layered leaves-first:

- partitioner: k-means++ over request embeddings, partition matching, routing
- statistics: Welford updates and the compare-and-swap reward tracker
- selector: temperature-scaled Thompson sampling
- configuration: concrete request parameters drawn from an arm
- reflection: arm pool seeding and reflection
- locks / events: cross-worker leases and the audit trail
- scheduler: the per-request state machine
- engine: the facade the gateway talks to
"""

from skillopt.optimization.collaborators import (
    CompletedRequest,
    ContextGenerator,
    Embedder,
    EvaluationMethod,
    EvaluationSpec,
    GeneratedContext,
    PromptReflector,
    RewardEvaluator,
    safe_embed,
)
from skillopt.optimization.configuration import SelectedConfiguration, sample_configuration
from skillopt.optimization.engine import OptimizationEngine, RoutingDecision
from skillopt.optimization.events import EventRecorder
from skillopt.optimization.locks import LockManager, generate_holder_id, skill_lock_name
from skillopt.optimization.partitioner import (
    PartitionResult,
    match_partitions,
    nearest_partition,
    partition_embeddings,
)
from skillopt.optimization.reflection import (
    BASE_ARM_ENVELOPES,
    ArmPoolManager,
    ReflectionOutcome,
    ReflectionStatus,
)
from skillopt.optimization.scheduler import OptimizationScheduler, SchedulerReport, StepStatus
from skillopt.optimization.selector import ArmSelector
from skillopt.optimization.statistics import ArmStatisticsTracker, welford_update

__all__ = [
    "BASE_ARM_ENVELOPES",
    "ArmPoolManager",
    "ArmSelector",
    "ArmStatisticsTracker",
    "CompletedRequest",
    "ContextGenerator",
    "Embedder",
    "EvaluationMethod",
    "EvaluationSpec",
    "EventRecorder",
    "GeneratedContext",
    "LockManager",
    "OptimizationEngine",
    "OptimizationScheduler",
    "PartitionResult",
    "PromptReflector",
    "ReflectionOutcome",
    "ReflectionStatus",
    "RewardEvaluator",
    "RoutingDecision",
    "SchedulerReport",
    "SelectedConfiguration",
    "StepStatus",
    "generate_holder_id",
    "match_partitions",
    "nearest_partition",
    "partition_embeddings",
    "safe_embed",
    "sample_configuration",
    "skill_lock_name",
    "welford_update",
]
