"""Tests for skillopt.optimization.configuration."""

from __future__ import annotations

import numpy as np
import pytest

from skillopt.optimization.configuration import (
    reasoning_effort_for,
    render_system_prompt,
    sample_configuration,
    sample_in_range,
)
from skillopt.store.models import Arm, ArmParams, ParamRange


def _arm(**ranges: ParamRange) -> Arm:
    return Arm(
        id="arm-1",
        skill_id="s1",
        partition_id="p1",
        name="model-a/test",
        params=ArmParams(model_id="model-a", system_prompt="You help {{ team }}.", **ranges),
    )


class TestReasoningEffort:
    """Tests for reasoning_effort_for()."""

    @pytest.mark.parametrize(
        ("u", "expected"),
        [
            (0.0, None),
            (0.2, None),
            (0.25, "minimal"),
            (0.4, "low"),
            (0.5, "low"),
            (0.65, "medium"),
            (0.85, "high"),
            (1.0, "high"),
        ],
    )
    def test_mapping(self, u: float, expected: str | None) -> None:
        assert reasoning_effort_for(u) == expected

    @pytest.mark.parametrize("u", [-0.1, 1.1])
    def test_out_of_range(self, u: float) -> None:
        with pytest.raises(ValueError):
            reasoning_effort_for(u)


class TestSampleInRange:
    """Tests for sample_in_range()."""

    def test_degenerate_range_is_exact(self) -> None:
        assert sample_in_range(np.random.default_rng(0), ParamRange(0.3, 0.3)) == 0.3

    def test_draws_stay_inside(self) -> None:
        rng = np.random.default_rng(1)
        draws = [sample_in_range(rng, ParamRange(0.2, 0.4)) for _ in range(500)]
        assert all(0.2 <= d <= 0.4 for d in draws)
        assert max(draws) - min(draws) > 0.1


class TestSampleConfiguration:
    """Tests for sample_configuration()."""

    def test_scales_fixed_envelopes(self) -> None:
        arm = _arm(
            temperature=ParamRange(0.5, 0.5),
            top_p=ParamRange(1.0, 1.0),
            top_k=ParamRange(0.0, 0.0),
            frequency_penalty=ParamRange(0.5, 0.5),
            presence_penalty=ParamRange(1.0, 1.0),
            thinking=ParamRange(1.0, 1.0),
        )
        config = sample_configuration(arm, rng=np.random.default_rng(0))

        assert config.arm_id == "arm-1"
        assert config.partition_id == "p1"
        assert config.model_id == "model-a"
        assert config.temperature == pytest.approx(1.0)
        assert config.top_p == pytest.approx(1.0)
        assert config.top_k == 1
        assert config.frequency_penalty == pytest.approx(0.0)
        assert config.presence_penalty == pytest.approx(2.0)
        assert config.reasoning_effort == "high"

    def test_values_within_provider_bounds(self) -> None:
        arm = _arm()
        rng = np.random.default_rng(7)
        for _ in range(200):
            config = sample_configuration(arm, rng=rng)
            assert 0.0 <= config.temperature <= 2.0
            assert 0.0 <= config.top_p <= 1.0
            assert 1 <= config.top_k <= 100
            assert isinstance(config.top_k, int)
            assert config.reasoning_effort is None

    def test_renders_prompt_variables(self) -> None:
        config = sample_configuration(_arm(), {"team": "billing"}, rng=np.random.default_rng(0))
        assert config.system_prompt == "You help billing."

    def test_to_dict(self) -> None:
        data = sample_configuration(_arm(), rng=np.random.default_rng(0)).to_dict()
        assert set(data) == {
            "arm_id",
            "partition_id",
            "model_id",
            "system_prompt",
            "temperature",
            "top_p",
            "top_k",
            "frequency_penalty",
            "presence_penalty",
            "reasoning_effort",
        }


class TestRenderSystemPrompt:
    """Tests for render_system_prompt()."""

    def test_no_variables_returns_template(self) -> None:
        assert render_system_prompt("Hi {{ name }}", None) == "Hi {{ name }}"

    def test_unknown_variable_renders_empty(self) -> None:
        assert render_system_prompt("Hi {{ name }}!", {"other": 1}) == "Hi !"

    def test_invalid_template_returned_verbatim(self) -> None:
        template = "Broken {{ name"
        assert render_system_prompt(template, {"name": "x"}) == template

    def test_no_html_escaping(self) -> None:
        assert render_system_prompt("{{ v }}", {"v": "<b>&</b>"}) == "<b>&</b>"
