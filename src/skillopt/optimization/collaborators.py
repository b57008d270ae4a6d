"""Contracts for the external collaborators the optimizer calls.

Embedding, scoring, and prompt generation live outside this package (model
providers, LLM judges). They are plugged in through the protocols below.
Failures in the best-effort calls degrade to "no signal" for the current
request instead of failing it.
"""

from __future__ import annotations

import math
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

from skillopt.core.logging import get_logger
from skillopt.store.models import (
    EvaluationMethodName,
    RequestLog,
    Skill,
    SkillEvaluation,
)
from skillopt.utils.time import utc_now

if TYPE_CHECKING:
    from skillopt.optimization.configuration import SelectedConfiguration

_logger = get_logger("collaborators")


@dataclass
class CompletedRequest:
    """A request the gateway has finished serving.

    Attributes:
        skill_id: Skill the request was routed under.
        request_payload: What the client sent.
        response_payload: What the provider returned.
        start_time: When the request started; orders logs for the watermark.
        embedding: Vector from routing, if one was produced.
        selection: Configuration the request was served with; None when
            the request bypassed optimization.
        log_id: Identifier for the stored log.
    """

    skill_id: str
    request_payload: dict[str, Any]
    response_payload: dict[str, Any] = field(default_factory=dict)
    start_time: datetime = field(default_factory=utc_now)
    embedding: list[float] | None = None
    selection: SelectedConfiguration | None = None
    log_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_log(self) -> RequestLog:
        return RequestLog(
            id=self.log_id,
            skill_id=self.skill_id,
            start_time=self.start_time,
            embedding=self.embedding,
            request_payload=self.request_payload,
            response_payload=self.response_payload,
            arm_id=self.selection.arm_id if self.selection else None,
            partition_id=self.selection.partition_id if self.selection else None,
        )


@dataclass(frozen=True)
class EvaluationSpec:
    """One evaluation a context generator proposes for a skill."""

    method: EvaluationMethodName
    weight: float = 1.0
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class GeneratedContext:
    """Output of warm-up context generation."""

    system_prompt: str
    evaluations: list[EvaluationSpec] = field(default_factory=list)


class Embedder(Protocol):
    """Turns a request payload into a fixed-length vector."""

    def embed(self, payload: Mapping[str, Any]) -> Sequence[float] | None: ...


class EvaluationMethod(Protocol):
    """Scores a completed request in [0, 1] for one evaluation."""

    def evaluate(self, evaluation: SkillEvaluation, request: CompletedRequest) -> float: ...


class ContextGenerator(Protocol):
    """Derives a skill's first system prompt and evaluations from examples."""

    def generate(self, skill: Skill, examples: Sequence[RequestLog]) -> GeneratedContext: ...


class PromptReflector(Protocol):
    """Proposes improved system prompts from the best-performing one."""

    def reflect(
        self,
        skill: Skill,
        best_prompt: str,
        examples: Sequence[RequestLog],
        count: int,
    ) -> list[str]: ...


def safe_embed(embedder: Embedder | None, payload: Mapping[str, Any]) -> list[float] | None:
    """Call the embedder, degrading every kind of failure to None.

    Empty vectors and vectors with non-finite components count as failures.
    """
    if embedder is None:
        return None
    try:
        vector = embedder.embed(payload)
        if vector is None:
            return None
        values = [float(x) for x in vector]
    except Exception as e:
        _logger.warning("embedding_failed", error_type=type(e).__name__, error=str(e))
        return None

    if not values or not all(math.isfinite(x) for x in values):
        _logger.warning("embedding_invalid", dimensions=len(values))
        return None
    return values


class RewardEvaluator:
    """Combines a skill's evaluations into one reward.

    The reward is the weight-averaged score of every evaluation whose
    method is registered and returns a valid score. Methods that raise or
    return a value outside [0, 1] are left out of the average.
    """

    def __init__(self, methods: Mapping[EvaluationMethodName, EvaluationMethod]) -> None:
        self._methods = dict(methods)

    @property
    def registered_methods(self) -> frozenset[EvaluationMethodName]:
        return frozenset(self._methods)

    def score(
        self,
        evaluations: Sequence[SkillEvaluation],
        request: CompletedRequest,
    ) -> float | None:
        """Reward for ``request``, or None when no evaluation produced a score."""
        weighted_sum = 0.0
        total_weight = 0.0

        for evaluation in evaluations:
            method = self._methods.get(evaluation.method)
            if method is None:
                _logger.debug("evaluation_method_unregistered", method=evaluation.method.value)
                continue
            try:
                value = float(method.evaluate(evaluation, request))
            except Exception as e:
                _logger.warning(
                    "evaluation_failed",
                    method=evaluation.method.value,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                continue
            if not math.isfinite(value) or not 0.0 <= value <= 1.0:
                _logger.warning(
                    "evaluation_score_out_of_range",
                    method=evaluation.method.value,
                    score=value,
                )
                continue
            weighted_sum += evaluation.weight * value
            total_weight += evaluation.weight

        if total_weight == 0.0:
            return None
        return weighted_sum / total_weight
