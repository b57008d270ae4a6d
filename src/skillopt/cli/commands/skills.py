"""Skill overview commands.

Commands:
- skills: List every skill in the store
- status: Show one skill's optimization state
"""

from __future__ import annotations

from typing import Any

import typer

from ..helpers import ErrorMessages, open_store, resolve_skill
from ..output import (
    console,
    create_simple_table,
    create_skills_table,
    format_duration,
    format_timestamp,
    output_error,
    print_json,
)


def skills(
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """List skills and their optimization progress.

    Examples:
        skillopt skills
        skillopt --db ./gateway.db skills --json
    """
    store = open_store(console)
    all_skills = store.list_skills()

    if json_output:
        print_json([s.to_dict() for s in all_skills])
        return

    if not all_skills:
        console.print("[dim]No skills found.[/dim]")
        return

    table = create_skills_table()
    for skill in all_skills:
        table.add_row(
            skill.id,
            skill.name,
            "[green]yes[/green]" if skill.optimization_enabled else "[yellow]no[/yellow]",
            str(skill.total_requests),
            "yes" if skill.context_generated_at else "[dim]no[/dim]",
        )
    console.print(table)


def status(
    skill_ref: str = typer.Argument(..., help="Skill ID or name"),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """Show a skill's settings, counters, partitions and lease.

    Examples:
        skillopt status support-bot
        skillopt status 3f2a... --json
    """
    from skillopt.optimization.locks import LockManager, skill_lock_name

    store = open_store(console)
    skill = resolve_skill(store, skill_ref)
    if skill is None:
        output_error(f"{ErrorMessages.SKILL_NOT_FOUND}: {skill_ref}", json_output=json_output)
        raise typer.Exit(1)

    partitions = store.get_partitions(skill.id)
    arms = store.get_arms(skill_id=skill.id)
    evaluations = store.get_evaluations(skill.id)
    pending = store.count_logs(skill.id, since=skill.last_clustering_log_start_time)
    lock = LockManager(store).check(skill_lock_name(skill.id))

    if json_output:
        output: dict[str, Any] = {
            "skill": skill.to_dict(),
            "partition_count": len(partitions),
            "arm_count": len(arms),
            "pending_logs": pending,
            "evaluations": [e.to_dict() for e in evaluations],
            "lock": {
                "is_locked": lock.is_locked,
                "locked_by": lock.locked_by,
                "time_remaining_seconds": lock.time_remaining_seconds,
                "metadata": lock.metadata,
            },
        }
        print_json(output)
        return

    console.print(f"[bold]{skill.name}[/bold] [dim]({skill.id})[/dim]")
    if skill.description:
        console.print(f"[dim]{skill.description}[/dim]")
    console.print()

    table = create_simple_table()
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row(
        "Optimization",
        "[green]enabled[/green]" if skill.optimization_enabled else "[yellow]disabled[/yellow]",
    )
    table.add_row("Total requests", str(skill.total_requests))
    table.add_row("Context generated", format_timestamp(skill.context_generated_at))
    table.add_row("Last clustering", format_timestamp(skill.last_clustering_at))
    table.add_row(
        "Pending logs",
        f"{pending} / {skill.clustering_interval}",
    )
    table.add_row("Partitions", f"{len(partitions)} (max {skill.configuration_count})")
    table.add_row("Arms", str(len(arms)))
    table.add_row("Temperature", f"{skill.exploration_temperature:g}")
    table.add_row("Models", ", ".join(skill.allowed_models))
    console.print(table)

    console.print("\n[bold cyan]Evaluations[/bold cyan]")
    if not evaluations:
        console.print("  [dim]none[/dim]")
    for evaluation in evaluations:
        console.print(f"  {evaluation.method.value} [dim](weight {evaluation.weight:g})[/dim]")

    console.print("\n[bold cyan]Lease[/bold cyan]")
    if lock.is_locked:
        purpose = (lock.metadata or {}).get("purpose", "-")
        console.print(
            f"  [yellow]held[/yellow] by {lock.locked_by} for {purpose}, "
            f"{format_duration(lock.time_remaining_seconds)} remaining"
        )
    else:
        console.print("  [dim]free[/dim]")
