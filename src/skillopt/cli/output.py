"""Rich output formatting for the skillopt CLI.

Centralizes the shared console, status colors, table builders and
formatters so every command renders records the same way.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Literal

from rich.console import Console
from rich.table import Table

from skillopt.store.models import SkillEventType

# =============================================================================
# Shared console instance
# =============================================================================

console = Console()


# =============================================================================
# Color schemes
# =============================================================================


class StatusColors:
    """Color mappings for event types and lock state."""

    EVENT_TYPE: dict[SkillEventType, str] = {
        SkillEventType.PARTITIONS_RECOMPUTED: "blue",
        SkillEventType.ARM_ADDED: "green",
        SkillEventType.ARM_REMOVED: "red",
        SkillEventType.REFLECTION: "magenta",
        SkillEventType.EVALUATION_ADDED: "green",
        SkillEventType.EVALUATION_REMOVED: "red",
        SkillEventType.EVALUATION_REGENERATED: "cyan",
        SkillEventType.OPTIMIZATION_ENABLED: "green",
        SkillEventType.OPTIMIZATION_DISABLED: "yellow",
        SkillEventType.CONTEXT_GENERATED: "cyan",
    }

    LOCKED = "yellow"
    UNLOCKED = "dim"


# =============================================================================
# Formatters
# =============================================================================


def format_timestamp(dt: datetime | None, include_tz: bool = True) -> str:
    """Format a datetime for display, or "-" if None."""
    if dt is None:
        return "-"
    fmt = "%Y-%m-%d %H:%M:%S"
    if include_tz:
        fmt += " UTC"
    return dt.strftime(fmt)


def format_duration(seconds: float | None) -> str:
    """Human-readable duration (e.g. "5.2s", "3m 12s", "1h 30m")."""
    if seconds is None:
        return "N/A"
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        return f"{int(seconds // 60)}m {int(seconds % 60)}s"
    else:
        return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60)}m"


def format_event_type(event_type: SkillEventType) -> str:
    color = StatusColors.EVENT_TYPE.get(event_type, "white")
    return f"[{color}]{event_type.value}[/{color}]"


def truncate(text: str, width: int = 48) -> str:
    """Single-line preview of ``text`` at most ``width`` characters long."""
    flat = " ".join(text.split())
    return flat if len(flat) <= width else flat[: width - 3] + "..."


# =============================================================================
# Table builders
# =============================================================================


def create_skills_table() -> Table:
    table = Table(title="Skills", show_header=True, header_style="bold")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Optimizing", justify="center")
    table.add_column("Requests", justify="right")
    table.add_column("Warm", justify="center")
    return table


def create_partitions_table(title: str = "Partitions") -> Table:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Dims", justify="right")
    table.add_column("Steps", justify="right")
    table.add_column("Arms", justify="right")
    table.add_column("Updated")
    return table


def create_arms_table(title: str = "Arms") -> Table:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Model")
    table.add_column("n", justify="right")
    table.add_column("Mean", justify="right")
    table.add_column("Prompt")
    return table


def create_events_table(title: str = "Events") -> Table:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Time")
    table.add_column("Type")
    table.add_column("Partition", style="cyan")
    table.add_column("Details")
    return table


def create_locks_table() -> Table:
    table = Table(title="Locks", show_header=True, header_style="bold")
    table.add_column("Lock", style="cyan", no_wrap=True)
    table.add_column("State")
    table.add_column("Holder")
    table.add_column("Remaining", justify="right")
    table.add_column("Purpose")
    return table


def create_simple_table(show_header: bool = False) -> Table:
    """Borderless table for key-value displays."""
    return Table(show_header=show_header, box=None)


# =============================================================================
# Output helpers
# =============================================================================


def print_json(data: Any, console_instance: Console | None = None) -> None:
    """Print ``data`` as JSON without Rich wrapping or markup."""
    out = console_instance or console
    out.print(
        json.dumps(data, indent=2, default=str),
        soft_wrap=True,
        highlight=False,
        markup=False,
    )


def output_error(
    message: str,
    *,
    hints: list[str] | None = None,
    severity: Literal["error", "warning"] = "error",
    json_output: bool = False,
    console_instance: Console | None = None,
) -> None:
    """Print an error or warning, as Rich markup or as a JSON object."""
    out = console_instance or console

    if json_output:
        result: dict[str, Any] = {"success": False, "message": message}
        if hints:
            result["hints"] = hints
        print_json(result, out)
        return

    color = "red" if severity == "error" else "yellow"
    label = "Error" if severity == "error" else "Warning"
    out.print(f"[{color}]{label}:[/{color}] {message}")
    if hints:
        out.print()
        out.print("[dim]Hints:[/dim]")
        for hint in hints:
            out.print(f"  - {hint}")
