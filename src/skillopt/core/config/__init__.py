"""Configuration models for skillopt.

Pydantic models for per-skill settings and engine tunables. Everything is
re-exported here so callers can import from ``skillopt.core.config``.
"""

from skillopt.core.config.engine import (
    DEFAULT_STORE_PATH,
    EngineConfig,
    LogConfig,
    StoreConfig,
)
from skillopt.core.config.optimizer import (
    LockConfig,
    PartitionerConfig,
    SchedulerConfig,
    SelectorConfig,
    SkillSettings,
)

__all__ = [
    "DEFAULT_STORE_PATH",
    "EngineConfig",
    "LockConfig",
    "LogConfig",
    "PartitionerConfig",
    "SchedulerConfig",
    "SelectorConfig",
    "SkillSettings",
    "StoreConfig",
]
