"""Data models for the optimization store.

Dataclasses and enums for every record the optimizer persists: skills,
partitions, arms, locks, events, request logs, and evaluations. Each record
converts to and from a plain dict (``to_dict``/``from_dict``) with
timestamps as fixed-width ISO-8601 strings, so a record survives a
persistence round-trip unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from skillopt.core.config import SkillSettings
from skillopt.utils.time import format_timestamp, parse_timestamp, utc_now


def _ts(value: datetime | None) -> str | None:
    return format_timestamp(value) if value is not None else None


class SkillEventType(str, Enum):
    """Closed set of state transitions recorded for audit.

    Events are write-only from the optimizer's point of view: nothing in the
    optimization loop reads them back.
    """

    PARTITIONS_RECOMPUTED = "partitions_recomputed"
    """A clustering run replaced the skill's partitions."""

    ARM_ADDED = "arm_added"
    """Arms were created in a partition."""

    ARM_REMOVED = "arm_removed"
    """Arms were deleted from a partition."""

    REFLECTION = "reflection"
    """A partition's arm pool was regenerated from its performance."""

    EVALUATION_ADDED = "evaluation_added"
    """An evaluation method was attached to the skill."""

    EVALUATION_REMOVED = "evaluation_removed"
    """An evaluation method was detached from the skill."""

    EVALUATION_REGENERATED = "evaluation_regenerated"
    """The skill's evaluation set was replaced by generated context."""

    OPTIMIZATION_ENABLED = "optimization_enabled"
    """Routing and optimization were switched on."""

    OPTIMIZATION_DISABLED = "optimization_disabled"
    """Routing and optimization were switched off."""

    CONTEXT_GENERATED = "context_generated"
    """Warm-up finished: first evaluations, partitions, and arms exist."""


class EvaluationMethodName(str, Enum):
    """Closed set of evaluation methods a skill can be scored with."""

    ANSWER_RELEVANCY = "answer_relevancy"
    ARGUMENT_CORRECTNESS = "argument_correctness"
    CONTEXTUAL_PRECISION = "contextual_precision"
    CONVERSATION_COMPLETENESS = "conversation_completeness"
    KNOWLEDGE_RETENTION = "knowledge_retention"
    ROLE_ADHERENCE = "role_adherence"
    TOOL_CORRECTNESS = "tool_correctness"
    TURN_RELEVANCY = "turn_relevancy"


RANGE_FIELDS: tuple[str, ...] = (
    "temperature",
    "top_p",
    "top_k",
    "frequency_penalty",
    "presence_penalty",
    "thinking",
)
"""Sampling parameters an arm constrains, each as a normalized [min, max]."""


@dataclass(frozen=True)
class ParamRange:
    """Normalized inclusive range within [0, 1]."""

    min: float
    max: float

    def __post_init__(self) -> None:
        if not (0.0 <= self.min <= self.max <= 1.0):
            raise ValueError(
                f"Parameter range must satisfy 0 <= min <= max <= 1, "
                f"got [{self.min}, {self.max}]"
            )


@dataclass(frozen=True)
class ArmParams:
    """The configuration envelope an arm represents."""

    model_id: str
    system_prompt: str
    temperature: ParamRange = ParamRange(0.0, 1.0)
    top_p: ParamRange = ParamRange(0.0, 1.0)
    top_k: ParamRange = ParamRange(0.0, 1.0)
    frequency_penalty: ParamRange = ParamRange(0.5, 0.5)
    presence_penalty: ParamRange = ParamRange(0.5, 0.5)
    thinking: ParamRange = ParamRange(0.0, 0.0)

    def with_prompt(self, system_prompt: str) -> ArmParams:
        """Copy of these params with a different system prompt."""
        data = self.to_dict()
        data["system_prompt"] = system_prompt
        return ArmParams.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        """Flatten to ``{model_id, system_prompt, <name>_min, <name>_max, ...}``."""
        data: dict[str, Any] = {
            "model_id": self.model_id,
            "system_prompt": self.system_prompt,
        }
        for name in RANGE_FIELDS:
            rng: ParamRange = getattr(self, name)
            data[f"{name}_min"] = rng.min
            data[f"{name}_max"] = rng.max
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ArmParams:
        ranges = {
            name: ParamRange(float(data[f"{name}_min"]), float(data[f"{name}_max"]))
            for name in RANGE_FIELDS
            if f"{name}_min" in data
        }
        return cls(
            model_id=data["model_id"],
            system_prompt=data["system_prompt"],
            **ranges,
        )


@dataclass(frozen=True)
class ArmStats:
    """Online reward statistics for one arm (Welford accumulators)."""

    n: int = 0
    mean: float = 0.0
    n2: float = 0.0
    """Running sum of squared deviations from the mean."""

    total_reward: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "n": self.n,
            "mean": self.mean,
            "n2": self.n2,
            "total_reward": self.total_reward,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ArmStats:
        return cls(
            n=int(data.get("n", 0)),
            mean=float(data.get("mean", 0.0)),
            n2=float(data.get("n2", 0.0)),
            total_reward=float(data.get("total_reward", 0.0)),
        )


@dataclass
class Skill:
    """A named task optimized independently of every other skill.

    Settings mirror ``SkillSettings``; the remaining fields are counters and
    watermarks owned by the optimizer.
    """

    id: str
    name: str
    allowed_models: list[str]
    description: str = ""
    optimization_enabled: bool = True
    clustering_interval: int = 15
    configuration_count: int = 3
    reflection_min_requests_per_arm: int = 5
    exploration_temperature: float = 3.0
    system_prompt_count: int = 1
    max_arms_per_partition: int = 12
    seed_system_prompt: str = "You are a helpful assistant."

    total_requests: int = 0
    last_clustering_at: datetime | None = None
    """Wall-clock time of the last committed clustering run."""

    last_clustering_log_start_time: datetime | None = None
    """Watermark: start time of the newest log a clustering run consumed."""

    context_generated_at: datetime | None = None
    """Set once warm-up commits; warm-up never runs again afterwards."""

    version: int = 0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def settings(self) -> SkillSettings:
        """Current user-controlled settings as a validated model."""
        return SkillSettings.model_validate({
            name: getattr(self, name) for name in SkillSettings.model_fields
        })

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {name: getattr(self, name) for name in SkillSettings.model_fields}
        data["allowed_models"] = list(self.allowed_models)
        data.update({
            "id": self.id,
            "total_requests": self.total_requests,
            "last_clustering_at": _ts(self.last_clustering_at),
            "last_clustering_log_start_time": _ts(self.last_clustering_log_start_time),
            "context_generated_at": _ts(self.context_generated_at),
            "version": self.version,
            "created_at": _ts(self.created_at),
            "updated_at": _ts(self.updated_at),
        })
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Skill:
        settings = SkillSettings.model_validate({
            name: data[name] for name in SkillSettings.model_fields if name in data
        })
        return cls(
            id=data["id"],
            **settings.model_dump(),
            total_requests=int(data.get("total_requests", 0)),
            last_clustering_at=parse_timestamp(data.get("last_clustering_at")),
            last_clustering_log_start_time=parse_timestamp(
                data.get("last_clustering_log_start_time")
            ),
            context_generated_at=parse_timestamp(data.get("context_generated_at")),
            version=int(data.get("version", 0)),
            created_at=parse_timestamp(data.get("created_at")) or utc_now(),
            updated_at=parse_timestamp(data.get("updated_at")) or utc_now(),
        )


@dataclass
class Partition:
    """A group of semantically similar requests, represented by a centroid."""

    id: str
    skill_id: str
    name: str
    centroid: list[float]
    total_steps: int = 0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "skill_id": self.skill_id,
            "name": self.name,
            "centroid": list(self.centroid),
            "total_steps": self.total_steps,
            "created_at": _ts(self.created_at),
            "updated_at": _ts(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Partition:
        return cls(
            id=data["id"],
            skill_id=data["skill_id"],
            name=data["name"],
            centroid=[float(x) for x in data["centroid"]],
            total_steps=int(data.get("total_steps", 0)),
            created_at=parse_timestamp(data.get("created_at")) or utc_now(),
            updated_at=parse_timestamp(data.get("updated_at")) or utc_now(),
        )


@dataclass
class Arm:
    """One candidate configuration competing within a partition."""

    id: str
    skill_id: str
    partition_id: str
    name: str
    params: ArmParams
    stats: ArmStats = field(default_factory=ArmStats)
    version: int = 0
    """Incremented on every statistics write; used for compare-and-swap."""

    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "skill_id": self.skill_id,
            "partition_id": self.partition_id,
            "name": self.name,
            "params": self.params.to_dict(),
            "stats": self.stats.to_dict(),
            "version": self.version,
            "created_at": _ts(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Arm:
        return cls(
            id=data["id"],
            skill_id=data["skill_id"],
            partition_id=data["partition_id"],
            name=data["name"],
            params=ArmParams.from_dict(data["params"]),
            stats=ArmStats.from_dict(data.get("stats", {})),
            version=int(data.get("version", 0)),
            created_at=parse_timestamp(data.get("created_at")) or utc_now(),
        )


@dataclass
class LockLease:
    """A time-bounded exclusive claim on a named lock."""

    lock_name: str
    locked_by: str
    locked_at: datetime
    expires_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)

    def is_active(self, now: datetime | None = None) -> bool:
        """True iff the lease has not yet expired."""
        return self.expires_at > (now or utc_now())

    def to_dict(self) -> dict[str, Any]:
        return {
            "lock_name": self.lock_name,
            "locked_by": self.locked_by,
            "locked_at": _ts(self.locked_at),
            "expires_at": _ts(self.expires_at),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LockLease:
        locked_at = parse_timestamp(data["locked_at"])
        expires_at = parse_timestamp(data["expires_at"])
        assert locked_at is not None and expires_at is not None
        return cls(
            lock_name=data["lock_name"],
            locked_by=data["locked_by"],
            locked_at=locked_at,
            expires_at=expires_at,
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class LockStatus:
    """Point-in-time view of a lock, as reported by ``LockManager.check``."""

    lock_name: str
    is_locked: bool
    locked_by: str | None = None
    locked_at: datetime | None = None
    expires_at: datetime | None = None
    time_remaining_seconds: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class SkillEvent:
    """Immutable audit record of a state transition."""

    id: str
    skill_id: str
    event_type: SkillEventType
    partition_id: str | None = None
    """None for skill-wide events."""

    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "skill_id": self.skill_id,
            "event_type": self.event_type.value,
            "partition_id": self.partition_id,
            "metadata": dict(self.metadata),
            "created_at": _ts(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SkillEvent:
        return cls(
            id=data["id"],
            skill_id=data["skill_id"],
            event_type=SkillEventType(data["event_type"]),
            partition_id=data.get("partition_id"),
            metadata=dict(data.get("metadata") or {}),
            created_at=parse_timestamp(data.get("created_at")) or utc_now(),
        )


@dataclass
class RequestLog:
    """A serviced request as seen by the optimizer."""

    id: str
    skill_id: str
    start_time: datetime
    embedding: list[float] | None = None
    request_payload: dict[str, Any] = field(default_factory=dict)
    response_payload: dict[str, Any] = field(default_factory=dict)
    arm_id: str | None = None
    partition_id: str | None = None
    reward: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "skill_id": self.skill_id,
            "start_time": _ts(self.start_time),
            "embedding": list(self.embedding) if self.embedding is not None else None,
            "request_payload": self.request_payload,
            "response_payload": self.response_payload,
            "arm_id": self.arm_id,
            "partition_id": self.partition_id,
            "reward": self.reward,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RequestLog:
        start_time = parse_timestamp(data["start_time"])
        assert start_time is not None
        embedding = data.get("embedding")
        return cls(
            id=data["id"],
            skill_id=data["skill_id"],
            start_time=start_time,
            embedding=[float(x) for x in embedding] if embedding is not None else None,
            request_payload=dict(data.get("request_payload") or {}),
            response_payload=dict(data.get("response_payload") or {}),
            arm_id=data.get("arm_id"),
            partition_id=data.get("partition_id"),
            reward=data.get("reward"),
        )


@dataclass
class SkillEvaluation:
    """One weighted evaluation method attached to a skill."""

    id: str
    skill_id: str
    method: EvaluationMethodName
    weight: float = 1.0
    params: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if self.weight <= 0:
            raise ValueError(f"Evaluation weight must be positive, got {self.weight}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "skill_id": self.skill_id,
            "method": self.method.value,
            "weight": self.weight,
            "params": dict(self.params),
            "created_at": _ts(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SkillEvaluation:
        return cls(
            id=data["id"],
            skill_id=data["skill_id"],
            method=EvaluationMethodName(data["method"]),
            weight=float(data.get("weight", 1.0)),
            params=dict(data.get("params") or {}),
            created_at=parse_timestamp(data.get("created_at")) or utc_now(),
        )


__all__ = [
    "Arm",
    "ArmParams",
    "ArmStats",
    "EvaluationMethodName",
    "LockLease",
    "LockStatus",
    "ParamRange",
    "Partition",
    "RANGE_FIELDS",
    "RequestLog",
    "Skill",
    "SkillEvaluation",
    "SkillEvent",
    "SkillEventType",
]
