"""Time utilities for skillopt.

All persisted timestamps go through ``format_timestamp`` so that string
ordering in SQLite matches chronological ordering.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


def format_timestamp(value: datetime) -> str:
    """Serialize a datetime as a fixed-width UTC ISO-8601 string.

    Naive datetimes are assumed to already be UTC. Microseconds are always
    emitted so two stamps compare correctly as plain strings.

    Args:
        value: The datetime to serialize.

    Returns:
        String like ``2026-01-02T03:04:05.000000+00:00``.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a timestamp written by ``format_timestamp``.

    Returns None for None/empty input.
    """
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
