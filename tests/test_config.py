"""Tests for skillopt.core.config models."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from skillopt.core.config import (
    DEFAULT_STORE_PATH,
    EngineConfig,
    LockConfig,
    SchedulerConfig,
    SkillSettings,
)


class TestSkillSettings:
    """Tests for per-skill settings bounds."""

    def test_defaults(self):
        settings = SkillSettings(name="triage", allowed_models=["m1"])
        assert settings.optimization_enabled is True
        assert settings.clustering_interval == 15
        assert settings.configuration_count == 3
        assert settings.reflection_min_requests_per_arm == 5
        assert settings.exploration_temperature == 3.0
        assert settings.max_arms_per_partition == 12

    @pytest.mark.parametrize("temperature", [0.0, 0.09, 10.01])
    def test_temperature_bounds(self, temperature: float):
        with pytest.raises(ValidationError):
            SkillSettings(name="t", allowed_models=["m1"], exploration_temperature=temperature)

    @pytest.mark.parametrize("temperature", [0.1, 10.0])
    def test_temperature_bounds_inclusive(self, temperature: float):
        settings = SkillSettings(name="t", allowed_models=["m1"], exploration_temperature=temperature)
        assert settings.exploration_temperature == temperature

    @pytest.mark.parametrize(
        "field",
        ["clustering_interval", "configuration_count", "reflection_min_requests_per_arm"],
    )
    def test_counts_must_be_positive(self, field: str):
        with pytest.raises(ValidationError):
            SkillSettings(name="t", allowed_models=["m1"], **{field: 0})

    def test_models_required(self):
        with pytest.raises(ValidationError):
            SkillSettings(name="t", allowed_models=[])

    def test_models_stripped_and_unique(self):
        settings = SkillSettings(name="t", allowed_models=[" m1 ", "m2"])
        assert settings.allowed_models == ["m1", "m2"]

        with pytest.raises(ValidationError, match="duplicates"):
            SkillSettings(name="t", allowed_models=["m1", "m1 "])
        with pytest.raises(ValidationError, match="empty"):
            SkillSettings(name="t", allowed_models=["m1", "  "])

    def test_name_required(self):
        with pytest.raises(ValidationError):
            SkillSettings(name="", allowed_models=["m1"])


class TestSchedulerConfig:
    """Tests for scheduler thresholds."""

    def test_examples_cannot_exceed_threshold(self):
        with pytest.raises(ValidationError, match="warmup_example_count"):
            SchedulerConfig(warmup_request_threshold=3, warmup_example_count=4)

    def test_defaults(self):
        config = SchedulerConfig()
        assert config.warmup_request_threshold == 5
        assert config.warmup_example_count == 5
        assert config.reflection_example_count == 15


class TestLockConfig:
    """Tests for lease settings."""

    def test_defaults(self):
        config = LockConfig()
        assert config.default_ttl_seconds == 300.0
        assert config.max_ttl_seconds == 3600.0

    def test_default_ttl_cannot_exceed_max(self):
        with pytest.raises(ValidationError, match="max_ttl_seconds"):
            LockConfig(default_ttl_seconds=600, max_ttl_seconds=60)

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValidationError):
            LockConfig(default_ttl_seconds=0)


class TestEngineConfig:
    """Tests for loading the engine configuration."""

    def test_defaults(self):
        config = EngineConfig()
        assert config.store.path == DEFAULT_STORE_PATH
        assert config.logging.level == "INFO"
        assert config.selector.variance_floor == 0.01
        assert config.partitioner.seed is None

    def test_from_yaml(self, tmp_path: Path):
        config_file = tmp_path / "skillopt.yaml"
        config_file.write_text(
            "store:\n"
            "  path: /tmp/opt.db\n"
            "selector:\n"
            "  variance_floor: 0.05\n"
            "  seed: 7\n"
            "scheduler:\n"
            "  warmup_request_threshold: 10\n"
            "locks:\n"
            "  default_ttl_seconds: 120\n"
        )
        config = EngineConfig.from_yaml(config_file)

        assert config.store.path == Path("/tmp/opt.db")
        assert config.selector.variance_floor == 0.05
        assert config.selector.seed == 7
        assert config.scheduler.warmup_request_threshold == 10
        assert config.locks.default_ttl_seconds == 120

    def test_empty_yaml_gives_defaults(self, tmp_path: Path):
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")
        assert EngineConfig.from_yaml(config_file) == EngineConfig()

    def test_invalid_yaml_values_rejected(self):
        with pytest.raises(ValidationError):
            EngineConfig.from_yaml_string("selector:\n  variance_floor: 0\n")

    def test_unknown_log_format_rejected(self):
        with pytest.raises(ValidationError):
            EngineConfig.from_yaml_string("logging:\n  format: xml\n")
