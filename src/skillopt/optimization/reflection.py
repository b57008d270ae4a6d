"""Arm pool generation and reflection.

A partition's arm pool is the cross product of the skill's allowed models
and a small set of sampling-parameter envelopes, all sharing one system
prompt. Reflection improves a pool once every arm has enough samples: the
worst arm is dropped, the best arm's prompt is used to generate new
prompts, and the survivors restart with fresh statistics under those
prompts.

Every pool change replaces the partition's arm set in one transaction,
together with its events, so selection never sees a half-built pool.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

from skillopt.core.exceptions import CollaboratorError
from skillopt.core.logging import get_logger
from skillopt.optimization.collaborators import PromptReflector
from skillopt.optimization.events import EventRecorder
from skillopt.store import OptimizationStore
from skillopt.store.models import (
    Arm,
    ArmParams,
    ArmStats,
    ParamRange,
    Partition,
    Skill,
    SkillEventType,
)

_logger = get_logger("reflection")

DEFAULT_REFLECTION_EXAMPLES = 15


@dataclass(frozen=True)
class ArmEnvelope:
    """Named set of normalized parameter ranges an arm starts from."""

    name: str
    temperature: ParamRange
    top_p: ParamRange
    top_k: ParamRange
    frequency_penalty: ParamRange
    presence_penalty: ParamRange
    thinking: ParamRange

    def to_params(self, model_id: str, system_prompt: str) -> ArmParams:
        return ArmParams(
            model_id=model_id,
            system_prompt=system_prompt,
            temperature=self.temperature,
            top_p=self.top_p,
            top_k=self.top_k,
            frequency_penalty=self.frequency_penalty,
            presence_penalty=self.presence_penalty,
            thinking=self.thinking,
        )


BASE_ARM_ENVELOPES: tuple[ArmEnvelope, ...] = (
    ArmEnvelope(
        name="precise",
        temperature=ParamRange(0.0, 0.2),
        top_p=ParamRange(0.8, 1.0),
        top_k=ParamRange(0.2, 0.5),
        frequency_penalty=ParamRange(0.5, 0.5),
        presence_penalty=ParamRange(0.5, 0.5),
        thinking=ParamRange(0.6, 1.0),
    ),
    ArmEnvelope(
        name="balanced",
        temperature=ParamRange(0.25, 0.45),
        top_p=ParamRange(0.85, 1.0),
        top_k=ParamRange(0.3, 0.7),
        frequency_penalty=ParamRange(0.45, 0.55),
        presence_penalty=ParamRange(0.45, 0.55),
        thinking=ParamRange(0.3, 0.7),
    ),
    ArmEnvelope(
        name="creative",
        temperature=ParamRange(0.45, 0.75),
        top_p=ParamRange(0.9, 1.0),
        top_k=ParamRange(0.5, 1.0),
        frequency_penalty=ParamRange(0.5, 0.65),
        presence_penalty=ParamRange(0.5, 0.65),
        thinking=ParamRange(0.0, 0.4),
    ),
)


class ReflectionStatus(str, Enum):
    """What a reflection attempt did to the partition."""

    SEEDED = "seeded"
    """The partition had no arms; a fresh pool was generated."""

    REFLECTED = "reflected"
    """Worst arm dropped and survivors re-prompted."""

    SINGLE_ARM = "single_arm"
    """Nothing left to compare; pool unchanged."""

    NOT_READY = "not_ready"
    """Some arm is still below the sample threshold; pool unchanged."""


@dataclass
class ReflectionOutcome:
    status: ReflectionStatus
    arms: list[Arm] = field(default_factory=list)
    removed_arm_id: str | None = None


def is_ready_for_reflection(arms: Sequence[Arm], min_requests_per_arm: int) -> bool:
    """True when every arm has at least ``min_requests_per_arm`` samples.

    An empty pool is ready: reflecting on it seeds it.
    """
    return all(arm.stats.n >= min_requests_per_arm for arm in arms)


def build_arm_pool(
    skill: Skill,
    partition_id: str,
    system_prompt: str,
    envelopes: Sequence[ArmEnvelope] = BASE_ARM_ENVELOPES,
) -> list[Arm]:
    """One fresh arm per (model, envelope), capped at the skill's pool size."""
    arms = [
        Arm(
            id=str(uuid.uuid4()),
            skill_id=skill.id,
            partition_id=partition_id,
            name=f"{model_id}/{envelope.name}",
            params=envelope.to_params(model_id, system_prompt),
        )
        for model_id in skill.allowed_models
        for envelope in envelopes
    ]
    return arms[: skill.max_arms_per_partition]


class ArmPoolManager:
    """Creates, regenerates, and reflects on partition arm pools."""

    def __init__(
        self,
        store: OptimizationStore,
        events: EventRecorder,
        reflector: PromptReflector | None = None,
        example_count: int = DEFAULT_REFLECTION_EXAMPLES,
    ) -> None:
        self._store = store
        self._events = events
        self._reflector = reflector
        self._example_count = example_count

    def _replace_pool(
        self,
        skill: Skill,
        partition: Partition,
        new_arms: Sequence[Arm],
        removed: Sequence[Arm],
    ) -> None:
        """Swap the partition's arms for ``new_arms``; caller owns the transaction."""
        self._store.delete_arms(skill.id, partition_id=partition.id)
        self._store.create_arms(new_arms)
        self._store.reset_partition_steps(skill.id, partition.id)
        if removed:
            self._events.record(
                skill.id,
                SkillEventType.ARM_REMOVED,
                partition_id=partition.id,
                metadata={"arm_ids": [a.id for a in removed], "count": len(removed)},
            )
        if new_arms:
            self._events.record(
                skill.id,
                SkillEventType.ARM_ADDED,
                partition_id=partition.id,
                metadata={"arm_ids": [a.id for a in new_arms], "count": len(new_arms)},
            )

    def seed(
        self,
        skill: Skill,
        partition: Partition,
        system_prompt: str | None = None,
    ) -> list[Arm]:
        """Replace the partition's pool with a fresh one under one prompt."""
        prompt = system_prompt if system_prompt is not None else skill.seed_system_prompt
        arms = build_arm_pool(skill, partition.id, prompt)
        with self._store.batch_connection():
            previous = self._store.get_arms(partition_id=partition.id)
            self._replace_pool(skill, partition, arms, previous)

        _logger.info(
            "arm_pool_seeded",
            skill_id=skill.id,
            partition_id=partition.id,
            arm_count=len(arms),
        )
        return arms

    def regenerate(self, skill: Skill, system_prompt: str | None = None) -> dict[str, list[Arm]]:
        """Seed every partition of the skill from scratch."""
        pools: dict[str, list[Arm]] = {}
        with self._store.batch_connection():
            for partition in self._store.get_partitions(skill.id):
                pools[partition.id] = self.seed(skill, partition, system_prompt)
        return pools

    def reflect(self, skill: Skill, partition: Partition) -> ReflectionOutcome:
        """Regenerate the partition's pool from its arms' performance.

        Without a prompt reflector the survivors all take the best arm's
        prompt, so the pool still shrinks and restarts its statistics.

        Raises:
            CollaboratorError: If the reflector returns no prompts; the pool
                is left unchanged.
        """
        arms = self._store.get_arms(partition_id=partition.id)
        if not arms:
            return ReflectionOutcome(ReflectionStatus.SEEDED, self.seed(skill, partition))
        if len(arms) == 1:
            return ReflectionOutcome(ReflectionStatus.SINGLE_ARM, arms)
        if not is_ready_for_reflection(arms, skill.reflection_min_requests_per_arm):
            return ReflectionOutcome(ReflectionStatus.NOT_READY, arms)

        best = max(arms, key=lambda a: a.stats.mean)
        worst = min((a for a in arms if a.id != best.id), key=lambda a: a.stats.mean)

        if self._reflector is None:
            _logger.debug("reflecting_without_reflector", partition_id=partition.id)
            prompts = [best.params.system_prompt]
        else:
            examples = self._store.get_logs(
                skill.id,
                partition_id=partition.id,
                embedding_not_null=False,
                limit=self._example_count,
                newest_first=True,
            )
            # Generation happens outside the write transaction; it can be slow
            prompts = [
                p for p in self._reflector.reflect(
                    skill, best.params.system_prompt, examples, skill.system_prompt_count
                )
                if p and p.strip()
            ]
        if not prompts:
            raise CollaboratorError(
                f"Prompt reflector returned no prompts for partition {partition.id}"
            )

        survivors = [a for a in arms if a.id != worst.id]
        unique_prompts = list(dict.fromkeys(a.params.system_prompt for a in survivors))
        prompt_map = {old: prompts[i % len(prompts)] for i, old in enumerate(unique_prompts)}
        new_arms = [
            Arm(
                id=str(uuid.uuid4()),
                skill_id=skill.id,
                partition_id=partition.id,
                name=arm.name,
                params=arm.params.with_prompt(prompt_map[arm.params.system_prompt]),
                stats=ArmStats(),
            )
            for arm in survivors
        ]

        with self._store.batch_connection():
            self._replace_pool(skill, partition, new_arms, arms)
            self._events.record(
                skill.id,
                SkillEventType.REFLECTION,
                partition_id=partition.id,
                metadata={
                    "removed_arm_id": worst.id,
                    "removed_arm_mean": worst.stats.mean,
                    "best_arm_id": best.id,
                    "best_arm_mean": best.stats.mean,
                    "arm_count": len(new_arms),
                    "prompt_count": len(prompts),
                },
            )

        _logger.info(
            "partition_reflected",
            skill_id=skill.id,
            partition_id=partition.id,
            removed_arm_id=worst.id,
            arm_count=len(new_arms),
        )
        return ReflectionOutcome(ReflectionStatus.REFLECTED, new_arms, removed_arm_id=worst.id)
