"""Shared state and utilities for the skillopt CLI.

Global options (database path, logging) are processed by callbacks in
``skillopt.cli`` and stored here; commands read them back when they open
the store.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import typer
from rich.console import Console

from skillopt.core.config import DEFAULT_STORE_PATH
from skillopt.core.logging import configure_logging, get_logger
from skillopt.store import OptimizationStore
from skillopt.store.models import Skill

# =============================================================================
# Module-level logger
# =============================================================================

_logger = get_logger("cli")


# =============================================================================
# Error message constants
# =============================================================================


class ErrorMessages:
    """Constants for CLI error messages."""

    SKILL_NOT_FOUND = "Skill not found"
    STORE_NOT_FOUND = "Optimization store not found"


# =============================================================================
# Logging configuration
# =============================================================================


@dataclass
class CliLoggingConfig:
    """CLI logging configuration state set by the global options."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
    file: Path | None = None
    format: Literal["json", "console"] = "console"
    configured: bool = False


_log_config = CliLoggingConfig()


def get_log_level() -> str:
    return _log_config.level


def set_log_level(level: str) -> None:
    """Set the log level (DEBUG, INFO, WARNING, ERROR)."""
    _log_config.level = level.upper()  # type: ignore[assignment]


def get_log_file() -> Path | None:
    return _log_config.file


def set_log_file(path: Path | None) -> None:
    """Set the log file path.

    File output is always JSON lines; setting a file switches the format.
    """
    _log_config.file = path
    if path:
        _log_config.format = "json"


def get_log_format() -> str:
    return _log_config.format


def set_log_format(fmt: str) -> None:
    """Set the log format (json or console)."""
    _log_config.format = fmt  # type: ignore[assignment]


def configure_global_logging(console: Console) -> None:
    """Configure logging from the global CLI options, once per session.

    Raises:
        typer.Exit: If the options describe an invalid configuration.
    """
    if _log_config.configured:
        return

    if _log_config.level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
        console.print(f"[red]Logging configuration error:[/red] unknown level {_log_config.level}")
        raise typer.Exit(1)
    if _log_config.format not in ("json", "console"):
        console.print(f"[red]Logging configuration error:[/red] unknown format {_log_config.format}")
        raise typer.Exit(1)

    configure_logging(
        level=_log_config.level,
        format=_log_config.format,
        file_path=_log_config.file,
    )
    _log_config.configured = True


def reset_logging_state() -> None:
    """Reset the CLI logging state (tests)."""
    global _log_config
    _log_config = CliLoggingConfig()


# =============================================================================
# Store access
# =============================================================================

_db_path: Path | None = None


def set_db_path(path: Path | None) -> None:
    global _db_path
    _db_path = path


def get_db_path() -> Path:
    return _db_path or DEFAULT_STORE_PATH


def open_store(console: Console) -> OptimizationStore:
    """Open the store selected by ``--db``.

    Raises:
        typer.Exit: If the database file does not exist; the CLI never
            creates an empty store as a side effect of inspecting one.
    """
    path = get_db_path()
    if not path.exists():
        console.print(f"[red]{ErrorMessages.STORE_NOT_FOUND}:[/red] {path}")
        raise typer.Exit(1)
    return OptimizationStore(path)


def resolve_skill(store: OptimizationStore, ref: str) -> Skill | None:
    """Find a skill by id, falling back to an exact name match."""
    skill = store.get_skill(ref)
    if skill is not None:
        return skill
    matches = [s for s in store.list_skills() if s.name == ref]
    if len(matches) > 1:
        _logger.warning("ambiguous_skill_name", name=ref, count=len(matches))
    return matches[0] if matches else None


__all__ = [
    "CliLoggingConfig",
    "ErrorMessages",
    "configure_global_logging",
    "get_db_path",
    "get_log_file",
    "get_log_format",
    "get_log_level",
    "open_store",
    "reset_logging_state",
    "resolve_skill",
    "set_db_path",
    "set_log_file",
    "set_log_format",
    "set_log_level",
]
