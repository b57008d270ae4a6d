"""Turning a selected arm into a concrete request configuration.

An arm stores normalized [min, max] envelopes in [0, 1]. Each request gets
fresh values drawn uniformly inside those envelopes, scaled to the
provider-facing units below, plus the arm's system prompt rendered with the
caller's template variables.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any, Literal

import jinja2
import numpy as np

from skillopt.core.logging import get_logger
from skillopt.store.models import Arm, ParamRange

_logger = get_logger("configuration")

ReasoningEffort = Literal["minimal", "low", "medium", "high"]

# Provider-facing bounds each normalized envelope is scaled into
TEMPERATURE_SCALE = (0.0, 2.0)
TOP_P_SCALE = (0.0, 1.0)
TOP_K_SCALE = (1, 100)
PENALTY_SCALE = (-2.0, 2.0)

# Index is floor(u * 9.9) for a thinking draw u in [0, 1]
REASONING_EFFORT_MAP: tuple[ReasoningEffort | None, ...] = (
    None,
    None,
    "minimal",
    "minimal",
    "low",
    "low",
    "medium",
    "medium",
    "high",
    "high",
)

_jinja_env = jinja2.Environment(
    undefined=jinja2.Undefined,
    autoescape=False,
    keep_trailing_newline=True,
)


@dataclass(frozen=True)
class SelectedConfiguration:
    """Everything the dispatch layer needs to call the provider."""

    arm_id: str
    partition_id: str
    model_id: str
    system_prompt: str
    temperature: float
    top_p: float
    top_k: int
    frequency_penalty: float
    presence_penalty: float
    reasoning_effort: ReasoningEffort | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def sample_in_range(rng: np.random.Generator, envelope: ParamRange) -> float:
    """Uniform draw within a normalized envelope (degenerate ranges are exact)."""
    if envelope.min == envelope.max:
        return envelope.min
    return float(rng.uniform(envelope.min, envelope.max))


def _scale(u: float, bounds: tuple[float, float]) -> float:
    low, high = bounds
    return low + u * (high - low)


def reasoning_effort_for(u: float) -> ReasoningEffort | None:
    """Map a normalized thinking draw onto a reasoning-effort level."""
    if not 0.0 <= u <= 1.0:
        raise ValueError(f"thinking draw must be within [0, 1], got {u}")
    return REASONING_EFFORT_MAP[math.floor(u * 9.9)]


def render_system_prompt(template: str, variables: Mapping[str, Any] | None) -> str:
    """Render ``{{ variable }}`` placeholders in an arm's system prompt.

    Unknown variables render empty. A prompt that is not a valid template
    is returned verbatim.
    """
    if not variables:
        return template
    try:
        return _jinja_env.from_string(template).render(**variables)
    except jinja2.TemplateError as e:
        _logger.warning("system_prompt_render_failed", error=str(e))
        return template


def sample_configuration(
    arm: Arm,
    variables: Mapping[str, Any] | None = None,
    rng: np.random.Generator | None = None,
) -> SelectedConfiguration:
    """Draw one concrete configuration from ``arm``'s envelope."""
    rng = rng if rng is not None else np.random.default_rng()
    params = arm.params
    top_k_low, top_k_high = TOP_K_SCALE

    return SelectedConfiguration(
        arm_id=arm.id,
        partition_id=arm.partition_id,
        model_id=params.model_id,
        system_prompt=render_system_prompt(params.system_prompt, variables),
        temperature=_scale(sample_in_range(rng, params.temperature), TEMPERATURE_SCALE),
        top_p=_scale(sample_in_range(rng, params.top_p), TOP_P_SCALE),
        top_k=int(round(top_k_low + sample_in_range(rng, params.top_k) * (top_k_high - top_k_low))),
        frequency_penalty=_scale(sample_in_range(rng, params.frequency_penalty), PENALTY_SCALE),
        presence_penalty=_scale(sample_in_range(rng, params.presence_penalty), PENALTY_SCALE),
        reasoning_effort=reasoning_effort_for(sample_in_range(rng, params.thinking)),
    )
