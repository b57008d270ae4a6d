"""Core infrastructure: configuration, logging and the exception hierarchy."""

from skillopt.core.config import (
    EngineConfig,
    LockConfig,
    LogConfig,
    PartitionerConfig,
    SchedulerConfig,
    SelectorConfig,
    SkillSettings,
    StoreConfig,
)
from skillopt.core.exceptions import (
    CollaboratorError,
    LockBusyError,
    NoArmsError,
    PartitionInputError,
    SkillNotFoundError,
    SkilloptError,
    StatsUpdateConflictError,
)

__all__ = [
    "CollaboratorError",
    "EngineConfig",
    "LockBusyError",
    "LockConfig",
    "LogConfig",
    "NoArmsError",
    "PartitionInputError",
    "PartitionerConfig",
    "SchedulerConfig",
    "SelectorConfig",
    "SkillNotFoundError",
    "SkillSettings",
    "SkilloptError",
    "StatsUpdateConflictError",
    "StoreConfig",
]
