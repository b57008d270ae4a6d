"""Lease inspection and maintenance commands.

Commands:
- locks: Show every lease row and whether it is still held
- locks-cleanup: Delete expired lease rows
"""

from __future__ import annotations

import typer

from ..helpers import open_store
from ..output import (
    StatusColors,
    console,
    create_locks_table,
    format_duration,
    print_json,
)


def locks(
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """Show optimization leases across all skills.

    Expired rows are reported as free; any worker may take them over.

    Examples:
        skillopt locks
        skillopt locks --json
    """
    from skillopt.optimization.locks import LockManager

    store = open_store(console)
    manager = LockManager(store)
    statuses = [manager.check(lease.lock_name) for lease in store.list_locks()]

    if json_output:
        print_json([
            {
                "lock_name": s.lock_name,
                "is_locked": s.is_locked,
                "locked_by": s.locked_by,
                "time_remaining_seconds": s.time_remaining_seconds,
                "metadata": s.metadata,
            }
            for s in statuses
        ])
        return

    if not statuses:
        console.print("[dim]No leases recorded.[/dim]")
        return

    table = create_locks_table()
    for s in statuses:
        if s.is_locked:
            state = f"[{StatusColors.LOCKED}]held[/{StatusColors.LOCKED}]"
        else:
            state = f"[{StatusColors.UNLOCKED}]expired[/{StatusColors.UNLOCKED}]"
        table.add_row(
            s.lock_name,
            state,
            s.locked_by or "-",
            format_duration(s.time_remaining_seconds) if s.is_locked else "-",
            str((s.metadata or {}).get("purpose", "-")),
        )
    console.print(table)


def locks_cleanup(
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """Delete expired lease rows.

    Live leases are never touched.

    Examples:
        skillopt locks-cleanup
    """
    from skillopt.optimization.locks import LockManager

    store = open_store(console)
    removed = LockManager(store).cleanup_expired()

    if json_output:
        print_json({"removed": removed})
        return

    if removed:
        console.print(f"[green]Removed {removed} expired lease(s).[/green]")
    else:
        console.print("[dim]No expired leases.[/dim]")
