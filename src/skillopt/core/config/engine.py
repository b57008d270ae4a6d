"""Top-level engine configuration, loadable from YAML."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field

from skillopt.core.config.optimizer import (
    LockConfig,
    PartitionerConfig,
    SchedulerConfig,
    SelectorConfig,
)

DEFAULT_STORE_PATH = Path.home() / ".skillopt" / "optimizer.db"


class StoreConfig(BaseModel):
    """Where optimization state is persisted."""

    path: Path = Field(
        default=DEFAULT_STORE_PATH,
        description="SQLite database shared by all gateway workers on this host",
    )
    connect_timeout_seconds: float = Field(default=30.0, gt=0.0)


class LogConfig(BaseModel):
    """Structured logging settings."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    format: Literal["json", "console"] = Field(
        default="console",
        description="json for structured output, console for human-readable",
    )
    file_path: Path | None = Field(
        default=None,
        description="Rotating log file for json output; stdout when unset",
    )
    max_file_size_mb: int = Field(default=50, gt=0, le=1000)
    backup_count: int = Field(default=5, ge=0, le=100)
    include_timestamps: bool = Field(default=True)
    include_context: bool = Field(default=True)


class EngineConfig(BaseModel):
    """Complete configuration for an optimization engine instance."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    logging: LogConfig = Field(default_factory=LogConfig)
    partitioner: PartitionerConfig = Field(default_factory=PartitionerConfig)
    selector: SelectorConfig = Field(default_factory=SelectorConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    locks: LockConfig = Field(default_factory=LockConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> EngineConfig:
        """Load engine configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})

    @classmethod
    def from_yaml_string(cls, yaml_str: str) -> EngineConfig:
        """Load engine configuration from a YAML string."""
        return cls.model_validate(yaml.safe_load(yaml_str) or {})
