"""Partition and arm inspection commands.

Commands:
- partitions: List a skill's partitions with step counts and pool sizes
- arms: List a skill's arms and their running statistics
"""

from __future__ import annotations

from collections import Counter

import typer
from rich.markup import escape

from ..helpers import ErrorMessages, open_store, resolve_skill
from ..output import (
    console,
    create_arms_table,
    create_partitions_table,
    format_timestamp,
    output_error,
    print_json,
    truncate,
)


def partitions(
    skill_ref: str = typer.Argument(..., help="Skill ID or name"),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """List the request partitions of a skill.

    Examples:
        skillopt partitions support-bot
        skillopt partitions support-bot --json
    """
    store = open_store(console)
    skill = resolve_skill(store, skill_ref)
    if skill is None:
        output_error(f"{ErrorMessages.SKILL_NOT_FOUND}: {skill_ref}", json_output=json_output)
        raise typer.Exit(1)

    rows = store.get_partitions(skill.id)
    arm_counts = Counter(arm.partition_id for arm in store.get_arms(skill_id=skill.id))

    if json_output:
        print_json([
            {**p.to_dict(), "arm_count": arm_counts.get(p.id, 0)} for p in rows
        ])
        return

    if not rows:
        console.print("[dim]No partitions yet; the skill is still warming up.[/dim]")
        return

    table = create_partitions_table(f"Partitions of {skill.name}")
    for p in rows:
        table.add_row(
            p.id,
            p.name,
            str(len(p.centroid)),
            str(p.total_steps),
            str(arm_counts.get(p.id, 0)),
            format_timestamp(p.updated_at),
        )
    console.print(table)


def arms(
    skill_ref: str = typer.Argument(..., help="Skill ID or name"),
    partition_id: str | None = typer.Option(
        None,
        "--partition",
        "-p",
        help="Only arms of this partition",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """List a skill's arms, best mean reward first.

    Examples:
        skillopt arms support-bot
        skillopt arms support-bot --partition 8c1e...
    """
    store = open_store(console)
    skill = resolve_skill(store, skill_ref)
    if skill is None:
        output_error(f"{ErrorMessages.SKILL_NOT_FOUND}: {skill_ref}", json_output=json_output)
        raise typer.Exit(1)

    rows = sorted(
        store.get_arms(skill_id=skill.id, partition_id=partition_id),
        key=lambda a: (a.stats.n > 0, a.stats.mean),
        reverse=True,
    )

    if json_output:
        print_json([a.to_dict() for a in rows])
        return

    if not rows:
        console.print("[dim]No arms found.[/dim]")
        return

    table = create_arms_table(f"Arms of {skill.name}")
    for arm in rows:
        table.add_row(
            arm.id,
            arm.name,
            arm.params.model_id,
            str(arm.stats.n),
            f"{arm.stats.mean:.3f}" if arm.stats.n else "[dim]-[/dim]",
            escape(truncate(arm.params.system_prompt, 32)),
        )
    console.print(table)
