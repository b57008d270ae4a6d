# skillopt/cli/commands: Command modules for the skillopt CLI.
#
# Each module in this package provides one or more CLI commands.

from .events import events
from .locks import locks, locks_cleanup
from .partitions import arms, partitions
from .skills import skills, status

__all__ = [
    # events.py
    "events",
    # locks.py
    "locks",
    "locks_cleanup",
    # partitions.py
    "partitions",
    "arms",
    # skills.py
    "skills",
    "status",
]
