"""Pytest fixtures for skillopt tests."""

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
import structlog

from skillopt.core.config import SkillSettings
from skillopt.store import OptimizationStore, reset_store
from skillopt.store.models import Skill


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset logging and CLI global state before and after each test.

    This ensures test isolation for logging configuration.
    """
    from skillopt.cli import helpers as cli_helpers

    cli_helpers.reset_logging_state()
    cli_helpers.set_db_path(None)

    # Reset structlog to default state
    structlog.reset_defaults()

    # Clear all handlers from root logger
    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    cli_helpers.reset_logging_state()
    cli_helpers.set_db_path(None)
    reset_store()

    # Restore original handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Path for a fresh SQLite store."""
    return tmp_path / "optimizer.db"


@pytest.fixture
def store(db_path: Path) -> OptimizationStore:
    """An OptimizationStore backed by a temporary database file."""
    return OptimizationStore(db_path)


@pytest.fixture
def settings() -> SkillSettings:
    """Small skill settings that reach every stage quickly."""
    return SkillSettings(
        name="support-bot",
        description="Answers customer support questions",
        clustering_interval=10,
        configuration_count=2,
        reflection_min_requests_per_arm=3,
        exploration_temperature=1.0,
        allowed_models=["model-a", "model-b"],
        seed_system_prompt="You are a support agent.",
    )


@pytest.fixture
def skill(store: OptimizationStore, settings: SkillSettings) -> Skill:
    """A persisted skill with no optimization state yet."""
    return store.create_skill(settings)
