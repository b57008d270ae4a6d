"""Shared utilities for skillopt.

Contains cross-cutting utilities used by multiple modules.
"""

from skillopt.utils.time import format_timestamp, parse_timestamp, utc_now

__all__ = ["format_timestamp", "parse_timestamp", "utc_now"]
