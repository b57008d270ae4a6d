"""skillopt CLI: inspect and maintain the optimization store.

Package structure:
    cli/
    ├── __init__.py           # This file - app assembly
    ├── helpers.py            # Global option state, store access
    ├── output.py             # Rich formatting
    └── commands/
        ├── skills.py         # skills, status commands
        ├── partitions.py     # partitions, arms commands
        ├── events.py         # events command
        └── locks.py          # locks, locks-cleanup commands
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from skillopt import __version__

from . import helpers as helpers
from .commands import (
    arms,
    events,
    locks,
    locks_cleanup,
    partitions,
    skills,
    status,
)
from .helpers import (
    configure_global_logging,
    set_db_path,
    set_log_file,
    set_log_format,
    set_log_level,
)
from .output import console

# =============================================================================
# Typer app definition
# =============================================================================

app = typer.Typer(
    name="skillopt",
    help="Inspect per-skill optimization state of an AI gateway",
    add_completion=False,
)


# =============================================================================
# Global option callbacks
# =============================================================================


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"skillopt v{__version__}")
        raise typer.Exit()


def db_callback(value: Path | None) -> Path | None:
    if value:
        set_db_path(value)
    return value


def log_level_callback(value: str | None) -> str | None:
    if value:
        set_log_level(value)
    return value


def log_file_callback(value: Path | None) -> Path | None:
    if value:
        set_log_file(value)
    return value


def log_format_callback(value: str | None) -> str | None:
    if value:
        set_log_format(value)
    return value


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    db: Annotated[
        Path | None,
        typer.Option(
            "--db",
            callback=db_callback,
            help="Path to the optimization database",
            envvar="SKILLOPT_DB",
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            callback=log_level_callback,
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="SKILLOPT_LOG_LEVEL",
        ),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option(
            "--log-file",
            callback=log_file_callback,
            help="Path for JSON log file output",
            envvar="SKILLOPT_LOG_FILE",
        ),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            callback=log_format_callback,
            help="Log format: json or console",
            envvar="SKILLOPT_LOG_FORMAT",
        ),
    ] = None,
) -> None:
    """skillopt - continual self-optimization state for gateway skills."""
    configure_global_logging(console)


# =============================================================================
# Command registration
# =============================================================================

# Overview
app.command()(skills)
app.command()(status)

# Partitions and arm pools
app.command()(partitions)
app.command()(arms)

# Audit trail
app.command()(events)

# Lease maintenance
app.command()(locks)
app.command(name="locks-cleanup")(locks_cleanup)


__all__ = [
    "app",
    "main",
    "console",
]
