"""Optimization configuration models.

Per-skill settings (validated whenever a skill is created or updated) and
the tunables of the partitioner, selector, scheduler, and lock manager.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator, model_validator


class SkillSettings(BaseModel):
    """User-controlled optimization settings for one skill.

    Bounds here are the single source of truth for the skill invariants:
    the exploration temperature and the arm pool size can never be
    persisted outside their ranges.
    """

    name: str = Field(min_length=1, description="Human-readable skill name")
    description: str = Field(default="", description="What the skill does")
    optimization_enabled: bool = Field(
        default=True,
        description="When disabled, requests are logged but never routed or optimized",
    )
    clustering_interval: int = Field(
        default=15,
        ge=1,
        le=100_000,
        description="Recompute partitions after this many new embedded logs",
    )
    configuration_count: int = Field(
        default=3,
        ge=1,
        le=64,
        description="Maximum partition count (k for the partitioner)",
    )
    reflection_min_requests_per_arm: int = Field(
        default=5,
        ge=1,
        le=100_000,
        description="Samples every arm in a partition needs before reflection runs",
    )
    exploration_temperature: float = Field(
        default=3.0,
        ge=0.1,
        le=10.0,
        description="Bandit temperature. >1 favours exploration, <1 exploitation.",
    )
    system_prompt_count: int = Field(
        default=1,
        ge=1,
        le=16,
        description="Number of new system prompts generated per reflection",
    )
    max_arms_per_partition: int = Field(
        default=12,
        ge=1,
        le=64,
        description="Upper bound on the arm pool of a single partition",
    )
    allowed_models: list[str] = Field(
        min_length=1,
        description="Model references arms may be built from",
    )
    seed_system_prompt: str = Field(
        default="You are a helpful assistant.",
        description="System prompt used before any context has been generated",
    )

    @field_validator("allowed_models")
    @classmethod
    def _check_models(cls, value: list[str]) -> list[str]:
        cleaned = [m.strip() for m in value]
        if any(not m for m in cleaned):
            raise ValueError("allowed_models must not contain empty model ids")
        if len(set(cleaned)) != len(cleaned):
            raise ValueError("allowed_models must not contain duplicates")
        return cleaned


class PartitionerConfig(BaseModel):
    """Tunables for k-means partitioning."""

    max_iterations: int = Field(default=100, ge=1, le=10_000)
    seed: int | None = Field(
        default=None,
        description="Fixed RNG seed for reproducible partitioning (tests, replays)",
    )


class SelectorConfig(BaseModel):
    """Tunables for Thompson sampling."""

    variance_floor: float = Field(
        default=0.01,
        gt=0.0,
        le=1.0,
        description="Lower bound on per-arm reward variance before temperature scaling",
    )
    seed: int | None = Field(default=None)


class SchedulerConfig(BaseModel):
    """Thresholds driving the per-skill optimization state machine."""

    warmup_request_threshold: int = Field(
        default=5,
        ge=1,
        description="Lifetime requests after which initial context generation runs",
    )
    warmup_example_count: int = Field(
        default=5,
        ge=1,
        description="Logged requests handed to the context generator as examples",
    )
    reflection_example_count: int = Field(
        default=15,
        ge=1,
        description="Partition logs handed to the prompt reflector",
    )
    stats_update_retries: int = Field(
        default=8,
        ge=1,
        le=100,
        description="Compare-and-swap attempts for a single arm statistics update",
    )

    @model_validator(mode="after")
    def _check_examples(self) -> SchedulerConfig:
        if self.warmup_example_count > self.warmup_request_threshold:
            raise ValueError(
                f"warmup_example_count ({self.warmup_example_count}) cannot exceed "
                f"warmup_request_threshold ({self.warmup_request_threshold})"
            )
        return self


class LockConfig(BaseModel):
    """Lease settings for cross-worker mutual exclusion."""

    default_ttl_seconds: float = Field(default=300.0, gt=0.0)
    max_ttl_seconds: float = Field(
        default=3600.0,
        gt=0.0,
        description="Requested TTLs are clamped to this to bound recovery after a crash",
    )
    retry_attempts: int = Field(default=3, ge=1, le=50)
    retry_delay_seconds: float = Field(default=1.0, ge=0.0)

    @model_validator(mode="after")
    def _check_ttl_bounds(self) -> LockConfig:
        if self.default_ttl_seconds > self.max_ttl_seconds:
            raise ValueError(
                f"default_ttl_seconds ({self.default_ttl_seconds}) must not exceed "
                f"max_ttl_seconds ({self.max_ttl_seconds})"
            )
        return self
