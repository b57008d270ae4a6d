"""Tests for skillopt.optimization.collaborators."""

from __future__ import annotations

import math

import pytest

from skillopt.optimization.collaborators import CompletedRequest, RewardEvaluator, safe_embed
from skillopt.store.models import EvaluationMethodName, SkillEvaluation
from tests.helpers import (
    BASE_TIME,
    ConstantMethod,
    FailingEmbedder,
    MappingEmbedder,
    RaisingMethod,
    make_arm,
    make_request,
    make_selection,
)


def _evaluation(method: EvaluationMethodName, weight: float = 1.0) -> SkillEvaluation:
    return SkillEvaluation(id=f"e-{method.value}", skill_id="s1", method=method, weight=weight)


# =============================================================================
# safe_embed
# =============================================================================


class TestSafeEmbed:
    """Tests for safe_embed()."""

    def test_returns_floats(self) -> None:
        embedder = MappingEmbedder({"hi": [1, 2]})
        assert safe_embed(embedder, {"text": "hi"}) == [1.0, 2.0]

    def test_no_embedder(self) -> None:
        assert safe_embed(None, {"text": "hi"}) is None

    def test_exception_degrades_to_none(self) -> None:
        assert safe_embed(FailingEmbedder(), {"text": "hi"}) is None

    def test_missing_vector(self) -> None:
        assert safe_embed(MappingEmbedder({}), {"text": "hi"}) is None

    def test_empty_vector(self) -> None:
        assert safe_embed(MappingEmbedder({"hi": []}), {"text": "hi"}) is None

    @pytest.mark.parametrize("bad", [math.nan, math.inf, -math.inf])
    def test_non_finite_vector(self, bad: float) -> None:
        assert safe_embed(MappingEmbedder({"hi": [0.5, bad]}), {"text": "hi"}) is None

    @pytest.mark.parametrize("bad", [["0.5", "high"], [0.5, None], 7])
    def test_non_numeric_vector(self, bad: object) -> None:
        """Components that cannot become floats degrade to None instead of raising."""
        assert safe_embed(MappingEmbedder({"hi": bad}), {"text": "hi"}) is None  # type: ignore[dict-item]


# =============================================================================
# CompletedRequest
# =============================================================================


class TestCompletedRequest:
    """Tests for CompletedRequest.to_log()."""

    def test_log_carries_selection(self) -> None:
        arm = make_arm("p9")
        request = make_request("s1", [1.0, 0.0], selection=make_selection(arm))
        log = request.to_log()

        assert log.id == request.log_id
        assert log.start_time == BASE_TIME
        assert log.arm_id == arm.id
        assert log.partition_id == "p9"
        assert log.reward is None

    def test_unoptimized_request(self) -> None:
        log = make_request("s1", None).to_log()
        assert log.arm_id is None
        assert log.partition_id is None
        assert log.embedding is None

    def test_log_ids_unique(self) -> None:
        first = CompletedRequest(skill_id="s1", request_payload={})
        second = CompletedRequest(skill_id="s1", request_payload={})
        assert first.log_id != second.log_id


# =============================================================================
# RewardEvaluator
# =============================================================================


class TestRewardEvaluator:
    """Tests for RewardEvaluator.score()."""

    def test_weighted_mean(self) -> None:
        evaluator = RewardEvaluator({
            EvaluationMethodName.ANSWER_RELEVANCY: ConstantMethod(1.0),
            EvaluationMethodName.ROLE_ADHERENCE: ConstantMethod(0.4),
        })
        evaluations = [
            _evaluation(EvaluationMethodName.ANSWER_RELEVANCY, weight=1.0),
            _evaluation(EvaluationMethodName.ROLE_ADHERENCE, weight=3.0),
        ]
        score = evaluator.score(evaluations, make_request("s1", None))
        assert score == pytest.approx((1.0 + 3 * 0.4) / 4)

    def test_failing_method_left_out(self) -> None:
        evaluator = RewardEvaluator({
            EvaluationMethodName.ANSWER_RELEVANCY: ConstantMethod(0.8),
            EvaluationMethodName.TOOL_CORRECTNESS: RaisingMethod(),
        })
        evaluations = [
            _evaluation(EvaluationMethodName.ANSWER_RELEVANCY),
            _evaluation(EvaluationMethodName.TOOL_CORRECTNESS, weight=5.0),
        ]
        assert evaluator.score(evaluations, make_request("s1", None)) == pytest.approx(0.8)

    @pytest.mark.parametrize("bad", [-0.1, 1.5, math.nan])
    def test_out_of_range_score_left_out(self, bad: float) -> None:
        evaluator = RewardEvaluator({
            EvaluationMethodName.ANSWER_RELEVANCY: ConstantMethod(0.2),
            EvaluationMethodName.TURN_RELEVANCY: ConstantMethod(bad),
        })
        evaluations = [
            _evaluation(EvaluationMethodName.ANSWER_RELEVANCY),
            _evaluation(EvaluationMethodName.TURN_RELEVANCY),
        ]
        assert evaluator.score(evaluations, make_request("s1", None)) == pytest.approx(0.2)

    def test_unregistered_method_skipped(self) -> None:
        evaluator = RewardEvaluator({EvaluationMethodName.ANSWER_RELEVANCY: ConstantMethod(0.6)})
        evaluations = [
            _evaluation(EvaluationMethodName.ANSWER_RELEVANCY),
            _evaluation(EvaluationMethodName.KNOWLEDGE_RETENTION),
        ]
        assert evaluator.score(evaluations, make_request("s1", None)) == pytest.approx(0.6)

    def test_no_score_is_none(self) -> None:
        evaluator = RewardEvaluator({EvaluationMethodName.ANSWER_RELEVANCY: RaisingMethod()})
        evaluations = [_evaluation(EvaluationMethodName.ANSWER_RELEVANCY)]
        assert evaluator.score(evaluations, make_request("s1", None)) is None
        assert evaluator.score([], make_request("s1", None)) is None

    def test_registered_methods(self) -> None:
        evaluator = RewardEvaluator({EvaluationMethodName.ANSWER_RELEVANCY: ConstantMethod(0.6)})
        assert evaluator.registered_methods == frozenset({EvaluationMethodName.ANSWER_RELEVANCY})
