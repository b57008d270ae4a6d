"""Shared test helpers for skillopt tests: fake collaborators and builders."""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from skillopt.optimization.collaborators import (
    CompletedRequest,
    EvaluationSpec,
    GeneratedContext,
)
from skillopt.optimization.configuration import SelectedConfiguration
from skillopt.store.models import (
    Arm,
    ArmParams,
    ArmStats,
    EvaluationMethodName,
    RequestLog,
    Skill,
    SkillEvaluation,
)

BASE_TIME = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock for TTL and timestamp tests."""

    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class MappingEmbedder:
    """Embeds a payload by looking up its ``text`` field."""

    def __init__(self, vectors: Mapping[str, Sequence[float]]) -> None:
        self.vectors = dict(vectors)
        self.calls = 0

    def embed(self, payload: Mapping[str, Any]) -> Sequence[float] | None:
        self.calls += 1
        return self.vectors.get(payload.get("text", ""))


class FailingEmbedder:
    def embed(self, payload: Mapping[str, Any]) -> Sequence[float] | None:
        raise RuntimeError("embedding service unavailable")


class ArmScoreMethod:
    """Scores a request by the arm that served it."""

    def __init__(self, scores: Mapping[str, float] | None = None, default: float = 0.5) -> None:
        self.scores = dict(scores or {})
        self.default = default
        self.calls: list[CompletedRequest] = []

    def evaluate(self, evaluation: SkillEvaluation, request: CompletedRequest) -> float:
        self.calls.append(request)
        if request.selection is None:
            return self.default
        return self.scores.get(request.selection.arm_id, self.default)


class ConstantMethod:
    def __init__(self, score: float) -> None:
        self.score = score

    def evaluate(self, evaluation: SkillEvaluation, request: CompletedRequest) -> float:
        return self.score


class RaisingMethod:
    def evaluate(self, evaluation: SkillEvaluation, request: CompletedRequest) -> float:
        raise RuntimeError("judge model timed out")


class RecordingContextGenerator:
    """Returns a fixed context and remembers the examples it was given."""

    def __init__(
        self,
        system_prompt: str = "You are a generated support agent.",
        evaluations: list[EvaluationSpec] | None = None,
        fail: bool = False,
    ) -> None:
        self.system_prompt = system_prompt
        self.evaluations = (
            evaluations
            if evaluations is not None
            else [EvaluationSpec(EvaluationMethodName.ANSWER_RELEVANCY)]
        )
        self.fail = fail
        self.calls: list[list[RequestLog]] = []

    def generate(self, skill: Skill, examples: Sequence[RequestLog]) -> GeneratedContext:
        self.calls.append(list(examples))
        if self.fail:
            raise RuntimeError("context generation failed")
        return GeneratedContext(system_prompt=self.system_prompt, evaluations=self.evaluations)


class RecordingReflector:
    """Produces numbered prompts derived from the best prompt."""

    def __init__(self, prompts: list[str] | None = None) -> None:
        self.prompts = prompts
        self.calls: list[dict[str, Any]] = []

    def reflect(
        self,
        skill: Skill,
        best_prompt: str,
        examples: Sequence[RequestLog],
        count: int,
    ) -> list[str]:
        self.calls.append({"best_prompt": best_prompt, "examples": list(examples), "count": count})
        if self.prompts is not None:
            return list(self.prompts)
        return [f"Improved #{i + 1}: {best_prompt}" for i in range(count)]


def make_arm(
    partition_id: str = "p1",
    *,
    skill_id: str = "s1",
    model_id: str = "model-a",
    system_prompt: str = "You are helpful.",
    n: int = 0,
    mean: float = 0.0,
    n2: float = 0.0,
    arm_id: str | None = None,
) -> Arm:
    """In-memory arm with the given statistics."""
    return Arm(
        id=arm_id or str(uuid.uuid4()),
        skill_id=skill_id,
        partition_id=partition_id,
        name=f"{model_id}/test",
        params=ArmParams(model_id=model_id, system_prompt=system_prompt),
        stats=ArmStats(n=n, mean=mean, n2=n2, total_reward=mean * n),
    )


def make_selection(arm: Arm) -> SelectedConfiguration:
    return SelectedConfiguration(
        arm_id=arm.id,
        partition_id=arm.partition_id,
        model_id=arm.params.model_id,
        system_prompt=arm.params.system_prompt,
        temperature=0.7,
        top_p=1.0,
        top_k=40,
        frequency_penalty=0.0,
        presence_penalty=0.0,
        reasoning_effort=None,
    )


def make_request(
    skill_id: str,
    embedding: list[float] | None,
    *,
    offset_seconds: float = 0.0,
    selection: SelectedConfiguration | None = None,
    text: str = "hello",
) -> CompletedRequest:
    """A completed request starting ``offset_seconds`` after BASE_TIME."""
    return CompletedRequest(
        skill_id=skill_id,
        request_payload={"text": text},
        response_payload={"text": f"reply to {text}"},
        start_time=BASE_TIME + timedelta(seconds=offset_seconds),
        embedding=embedding,
        selection=selection,
    )


def make_log(
    skill_id: str,
    embedding: list[float] | None,
    *,
    offset_seconds: float = 0.0,
) -> RequestLog:
    return make_request(skill_id, embedding, offset_seconds=offset_seconds).to_log()


def two_clusters(count: int, *, spread: float = 0.01) -> list[list[float]]:
    """Alternating points around (1, 0) and (0, 1)."""
    points = []
    for i in range(count):
        jitter = spread * (i // 2)
        if i % 2 == 0:
            points.append([1.0 + jitter, 0.0])
        else:
            points.append([0.0, 1.0 + jitter])
    return points
