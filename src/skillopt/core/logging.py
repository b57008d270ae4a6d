"""Structured logging infrastructure for skillopt.

Structured logging via structlog, with optimization context (skill_id,
worker_id, operation) attached automatically. Console and JSON renderers
are supported, optionally writing JSON to a rotating file.

Example usage:
    from skillopt.core.logging import get_logger, configure_logging

    configure_logging(level="DEBUG", format="console")

    logger = get_logger("scheduler")
    logger.info("recompute_started", skill_id="sk-1")

    ctx = OptimizationContext(skill_id="sk-1", operation="reflection")
    with with_context(ctx):
        logger.info("arm_pool_regenerated")  # includes skill_id, operation
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Keys containing any of these fragments are redacted before rendering.
# Provider credentials travel through arm configurations and request payloads.
SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "apikey",
    "token",
    "secret",
    "password",
    "credential",
    "authorization",
})

_current_log_path: Path | None = None


def get_current_log_path() -> Path | None:
    """Return the log file configured by ``configure_logging``, if any."""
    return _current_log_path


@dataclass(frozen=True)
class OptimizationContext:
    """Immutable correlation context for an optimization pass.

    Attributes:
        skill_id: Skill being optimized.
        worker_id: Identifier of this gateway worker (matches lock holder ids).
        operation: Current step ("reward", "warmup", "recompute", "reflection").
        pass_id: Unique id for one ``on_request_completed`` invocation.
        partition_id: Partition in scope, when the step is partition-local.
    """

    skill_id: str
    worker_id: str | None = None
    operation: str = "idle"
    pass_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    partition_id: str | None = None

    def with_operation(self, operation: str) -> OptimizationContext:
        """Return a copy of this context scoped to ``operation``."""
        return replace(self, operation=operation)

    def with_partition(self, partition_id: str | None) -> OptimizationContext:
        """Return a copy of this context scoped to one partition."""
        return replace(self, partition_id=partition_id)

    def to_dict(self) -> dict[str, Any]:
        """Context fields for logging, excluding unset values."""
        result: dict[str, Any] = {
            "skill_id": self.skill_id,
            "operation": self.operation,
            "pass_id": self.pass_id,
        }
        if self.worker_id is not None:
            result["worker_id"] = self.worker_id
        if self.partition_id is not None:
            result["partition_id"] = self.partition_id
        return result


_current_context: ContextVar[OptimizationContext | None] = ContextVar(
    "skillopt_context", default=None
)


def get_current_context() -> OptimizationContext | None:
    """Get the active OptimizationContext, if any."""
    return _current_context.get()


@contextmanager
def with_context(ctx: OptimizationContext) -> Iterator[OptimizationContext]:
    """Make ``ctx`` the active context for the duration of a block.

    Log calls inside the block automatically include the context fields.
    Nested blocks restore the outer context on exit.
    """
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


def _sanitize_value(key: str, value: Any) -> Any:
    key_lower = key.lower()
    if any(pattern in key_lower for pattern in SENSITIVE_PATTERNS):
        return "[REDACTED]"
    return value


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that redacts sensitive fields, one level deep."""
    sanitized: EventDict = {}
    for key, value in event_dict.items():
        if isinstance(value, dict):
            sanitized[key] = {k: _sanitize_value(k, v) for k, v in value.items()}
        else:
            sanitized[key] = _sanitize_value(key, value)
    return sanitized


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def _add_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that merges the active OptimizationContext.

    Explicitly bound or passed keys win over context values.
    """
    ctx = get_current_context()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            event_dict.setdefault(key, value)
    return event_dict


class SkilloptLogger:
    """Component-scoped wrapper around a structlog logger.

    The structlog logger is resolved on every call, so loggers created at
    import time still honour a later ``configure_logging()``.
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        logger: structlog.stdlib.BoundLogger = structlog.get_logger().bind(**self._context)
        return logger

    def bind(self, **context: Any) -> SkilloptLogger:
        """Return a new logger with additional bound context."""
        return SkilloptLogger(
            self._component,
            **{k: v for k, v in self._context.items() if k != "component"},
            **context,
        )

    def unbind(self, *keys: str) -> SkilloptLogger:
        """Return a new logger with ``keys`` removed from the bound context."""
        remaining = {
            k: v for k, v in self._context.items() if k not in keys and k != "component"
        }
        return SkilloptLogger(self._component, **remaining)

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        """Log at error level with the active exception's traceback."""
        self._get_logger().exception(event, **kw)


def _build_processors(
    renderer: Processor,
    include_timestamps: bool,
    include_context: bool,
) -> list[Processor]:
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _sanitize_event_dict,
    ]
    if include_context:
        processors.append(_add_context)
    if include_timestamps:
        processors.append(_add_timestamp)
    processors.extend([
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ])
    return processors


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    format: Literal["json", "console"] = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 50,
    backup_count: int = 5,
    include_timestamps: bool = True,
    include_context: bool = True,
) -> None:
    """Configure skillopt structured logging.

    Call once at process start, before the engine handles requests.

    Args:
        level: Minimum log level to capture.
        format: "console" for human-readable stderr output, "json" for
            structured lines (to ``file_path`` if given, else stdout).
        file_path: Optional rotating log file. Only used with format="json".
        max_file_size_mb: Size at which the log file rotates.
        backup_count: Rotated files to keep.
        include_timestamps: Add ISO-8601 UTC timestamps.
        include_context: Merge the active OptimizationContext into each line.
    """
    global _current_log_path

    log_level = getattr(logging, level)
    handlers: list[logging.Handler] = []

    if format == "console":
        handlers.append(logging.StreamHandler(sys.stderr))
        renderer: Processor = structlog.dev.ConsoleRenderer(colors=True)
    else:
        renderer = structlog.processors.JSONRenderer()
        if file_path is not None:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            _current_log_path = file_path
            handlers.append(
                RotatingFileHandler(
                    file_path,
                    maxBytes=max_file_size_mb * 1024 * 1024,
                    backupCount=backup_count,
                    encoding="utf-8",
                )
            )
        else:
            handlers.append(logging.StreamHandler(sys.stdout))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        handler.setLevel(log_level)
        root_logger.addHandler(handler)

    # cache_logger_on_first_use=False keeps import-time loggers reconfigurable
    structlog.configure(
        processors=_build_processors(renderer, include_timestamps, include_context),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> SkilloptLogger:
    """Get a logger bound to ``component`` (e.g. "store", "scheduler")."""
    return SkilloptLogger(component, **initial_context)


__all__ = [
    "OptimizationContext",
    "SENSITIVE_PATTERNS",
    "SkilloptLogger",
    "configure_logging",
    "get_current_context",
    "get_current_log_path",
    "get_logger",
    "with_context",
]
