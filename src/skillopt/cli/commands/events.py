"""Audit trail command.

Commands:
- events: Show a skill's recorded optimization events, newest first
"""

from __future__ import annotations

import json as json_lib

import typer
from rich.markup import escape

from skillopt.store.models import SkillEventType

from ..helpers import ErrorMessages, open_store, resolve_skill
from ..output import (
    console,
    create_events_table,
    format_event_type,
    format_timestamp,
    output_error,
    print_json,
    truncate,
)


def events(
    skill_ref: str = typer.Argument(..., help="Skill ID or name"),
    event_type: SkillEventType | None = typer.Option(
        None,
        "--type",
        "-t",
        help="Only events of this type",
    ),
    partition_id: str | None = typer.Option(
        None,
        "--partition",
        "-p",
        help="Only events of this partition",
    ),
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Max events to show"),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """Show recent optimization events for a skill.

    Examples:
        skillopt events support-bot
        skillopt events support-bot --type reflection --limit 5
    """
    from skillopt.optimization.events import EventRecorder

    store = open_store(console)
    skill = resolve_skill(store, skill_ref)
    if skill is None:
        output_error(f"{ErrorMessages.SKILL_NOT_FOUND}: {skill_ref}", json_output=json_output)
        raise typer.Exit(1)

    rows = EventRecorder(store).list_events(
        skill.id, event_type=event_type, partition_id=partition_id, limit=limit
    )

    if json_output:
        print_json([e.to_dict() for e in rows])
        return

    if not rows:
        console.print("[dim]No events recorded.[/dim]")
        return

    table = create_events_table(f"Events of {skill.name}")
    for event in rows:
        table.add_row(
            format_timestamp(event.created_at),
            format_event_type(event.event_type),
            event.partition_id[:8] if event.partition_id else "[dim]skill[/dim]",
            escape(truncate(json_lib.dumps(event.metadata, sort_keys=True), 40)),
        )
    console.print(table)
