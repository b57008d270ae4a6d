"""Tests for skillopt.optimization.engine (gateway hooks and admin operations)."""

from __future__ import annotations

from pathlib import Path

import pytest

from skillopt.core.config import EngineConfig, SelectorConfig, SkillSettings, StoreConfig
from skillopt.core.exceptions import LockBusyError, SkillNotFoundError
from skillopt.optimization.engine import OptimizationEngine
from skillopt.optimization.locks import LockManager, skill_lock_name
from skillopt.store import OptimizationStore
from skillopt.store.models import EvaluationMethodName, Skill, SkillEventType
from tests.helpers import (
    BASE_TIME,
    ArmScoreMethod,
    FailingEmbedder,
    FakeClock,
    MappingEmbedder,
    RecordingContextGenerator,
    make_arm,
)

VECTORS = {
    "billing": [1.0, 0.0],
    "billing-2": [0.98, 0.05],
    "shipping": [0.0, 1.0],
    "shipping-2": [0.04, 0.97],
}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(store: OptimizationStore, clock: FakeClock) -> OptimizationEngine:
    return OptimizationEngine(
        store,
        EngineConfig(selector=SelectorConfig(seed=0)),
        embedder=MappingEmbedder(VECTORS),
        evaluation_methods={EvaluationMethodName.ANSWER_RELEVANCY: ArmScoreMethod(default=0.7)},
        context_generator=RecordingContextGenerator(),
        clock=clock,
        holder_id="worker-a",
    )


# =============================================================================
# route()
# =============================================================================


class TestRoute:
    """Tests for OptimizationEngine.route()."""

    def test_no_partitions_yet(self, engine: OptimizationEngine, skill: Skill) -> None:
        decision = engine.route(skill.id, {"text": "billing"})

        assert decision.embedding == [1.0, 0.0]
        assert decision.partition_id is None
        assert decision.selection is None
        assert decision.optimized is False

    def test_routes_to_nearest_partition(
        self, engine: OptimizationEngine, store: OptimizationStore, skill: Skill
    ) -> None:
        billing, shipping = store.create_partitions(skill.id, [[1.0, 0.0], [0.0, 1.0]])
        arm = make_arm(shipping.id, skill_id=skill.id, system_prompt="Ship {{ region }} orders.")
        store.create_arms([make_arm(billing.id, skill_id=skill.id), arm])

        decision = engine.route(skill.id, {"text": "shipping-2"}, {"region": "EU"})

        assert decision.partition_id == shipping.id
        assert decision.selection is not None
        assert decision.selection.arm_id == arm.id
        assert decision.selection.system_prompt == "Ship EU orders."
        assert decision.optimized is True

    def test_partition_without_arms(
        self, engine: OptimizationEngine, store: OptimizationStore, skill: Skill
    ) -> None:
        partition = store.create_partitions(skill.id, [[1.0, 0.0]])[0]

        decision = engine.route(skill.id, {"text": "billing"})
        assert decision.partition_id == partition.id
        assert decision.selection is None

    def test_disabled_skill_not_routed(
        self, engine: OptimizationEngine, store: OptimizationStore, skill: Skill
    ) -> None:
        partition = store.create_partitions(skill.id, [[1.0, 0.0]])[0]
        store.create_arms([make_arm(partition.id, skill_id=skill.id)])
        engine.set_optimization_enabled(skill.id, False)

        decision = engine.route(skill.id, {"text": "billing"})
        assert decision.selection is None
        assert decision.partition_id is None

    def test_embedding_failure_falls_back(
        self, store: OptimizationStore, skill: Skill, clock: FakeClock
    ) -> None:
        engine = OptimizationEngine(store, embedder=FailingEmbedder(), clock=clock)
        partition = store.create_partitions(skill.id, [[1.0, 0.0]])[0]
        store.create_arms([make_arm(partition.id, skill_id=skill.id)])

        decision = engine.route(skill.id, {"text": "billing"})
        assert decision.embedding is None
        assert decision.selection is None

    def test_malformed_embedding_falls_back(
        self, store: OptimizationStore, skill: Skill, clock: FakeClock
    ) -> None:
        engine = OptimizationEngine(
            store, embedder=MappingEmbedder({"billing": ["one", "zero"]}), clock=clock
        )
        partition = store.create_partitions(skill.id, [[1.0, 0.0]])[0]
        store.create_arms([make_arm(partition.id, skill_id=skill.id)])

        decision = engine.route(skill.id, {"text": "billing"})
        assert decision.embedding is None
        assert decision.selection is None

    def test_unknown_skill(self, engine: OptimizationEngine) -> None:
        with pytest.raises(SkillNotFoundError):
            engine.route("ghost", {"text": "billing"})


# =============================================================================
# Full loop
# =============================================================================


class TestRequestLoop:
    """route() followed by complete_request()."""

    def test_warm_up_then_optimized_routing(
        self, engine: OptimizationEngine, store: OptimizationStore, skill: Skill
    ) -> None:
        texts = ["billing", "shipping", "billing-2", "shipping-2", "billing"]
        for i, text in enumerate(texts):
            decision = engine.route(skill.id, {"text": text})
            assert decision.selection is None
            report = engine.complete_request(
                decision, {"text": text}, {"text": "ok"}, start_time=BASE_TIME.replace(second=i)
            )
        assert report.steps["warmup"].value == "completed"

        decision = engine.route(skill.id, {"text": "shipping"})
        assert decision.selection is not None
        assert decision.selection.system_prompt == "You are a generated support agent."

        report = engine.complete_request(
            decision, {"text": "shipping"}, {"text": "ok"}, start_time=BASE_TIME.replace(second=10)
        )
        assert report.reward == pytest.approx(0.7)
        arm = store.get_arm(decision.selection.arm_id)
        assert arm is not None
        assert arm.stats.n == 1

    def test_from_config_opens_store(self, tmp_path: Path, settings: SkillSettings) -> None:
        config = EngineConfig(store=StoreConfig(path=tmp_path / "nested" / "opt.db"))
        engine = OptimizationEngine.from_config(config)

        skill = engine.create_skill(settings)
        assert (tmp_path / "nested" / "opt.db").exists()
        assert engine.store.require_skill(skill.id).name == "support-bot"


# =============================================================================
# Admin operations
# =============================================================================


class TestAdminOperations:
    """Tests for the skill administration methods."""

    def test_toggle_records_event_only_on_change(
        self, engine: OptimizationEngine, skill: Skill
    ) -> None:
        engine.set_optimization_enabled(skill.id, True)
        assert engine.events.list_events(skill.id) == []

        disabled = engine.set_optimization_enabled(skill.id, False)
        assert disabled.optimization_enabled is False
        engine.set_optimization_enabled(skill.id, False)
        enabled = engine.set_optimization_enabled(skill.id, True)
        assert enabled.optimization_enabled is True

        types = [e.event_type for e in engine.events.list_events(skill.id)]
        assert types == [SkillEventType.OPTIMIZATION_ENABLED, SkillEventType.OPTIMIZATION_DISABLED]

    def test_add_and_remove_evaluation(
        self, engine: OptimizationEngine, store: OptimizationStore, skill: Skill
    ) -> None:
        evaluation = engine.add_evaluation(
            skill.id, EvaluationMethodName.TOOL_CORRECTNESS, weight=2.0
        )
        added = engine.events.list_events(skill.id, event_type=SkillEventType.EVALUATION_ADDED)
        assert added[0].metadata == {
            "evaluation_id": evaluation.id,
            "method": "tool_correctness",
            "weight": 2.0,
        }

        assert engine.remove_evaluation(skill.id, evaluation.id) is True
        assert engine.remove_evaluation(skill.id, evaluation.id) is False
        removed = engine.events.list_events(
            skill.id, event_type=SkillEventType.EVALUATION_REMOVED
        )
        assert len(removed) == 1
        assert store.get_evaluations(skill.id) == []

    def test_add_evaluation_unknown_skill(self, engine: OptimizationEngine) -> None:
        with pytest.raises(SkillNotFoundError):
            engine.add_evaluation("ghost", EvaluationMethodName.ANSWER_RELEVANCY)

    def test_regenerate_arms(
        self, engine: OptimizationEngine, store: OptimizationStore, skill: Skill
    ) -> None:
        partitions = store.create_partitions(skill.id, [[1.0, 0.0], [0.0, 1.0]])
        pools = engine.regenerate_arms(skill.id, "Fresh prompt.")

        assert set(pools) == {p.id for p in partitions}
        arms = store.get_arms(skill_id=skill.id)
        assert len(arms) == 12
        assert {a.params.system_prompt for a in arms} == {"Fresh prompt."}
        assert engine.locks.check(skill_lock_name(skill.id)).is_locked is False

    def test_regenerate_arms_respects_lease(
        self,
        engine: OptimizationEngine,
        store: OptimizationStore,
        skill: Skill,
        clock: FakeClock,
    ) -> None:
        store.create_partitions(skill.id, [[1.0, 0.0]])
        LockManager(store, clock=clock, holder_id="worker-b").acquire(skill_lock_name(skill.id))

        with pytest.raises(LockBusyError):
            engine.regenerate_arms(skill.id)
        assert store.get_arms(skill_id=skill.id) == []
