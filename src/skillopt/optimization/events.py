"""Event recorder: immutable audit trail of optimization state changes."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any, Protocol

from skillopt.core.logging import get_logger
from skillopt.store.models import SkillEvent, SkillEventType
from skillopt.utils.time import utc_now

_logger = get_logger("events")


class EventRepository(Protocol):
    def insert_event(self, event: SkillEvent) -> SkillEvent: ...

    def get_events(
        self,
        skill_id: str,
        event_type: SkillEventType | None = None,
        partition_id: str | None = None,
        limit: int | None = 100,
    ) -> list[SkillEvent]: ...


class EventRecorder:
    """Appends timestamped events for audit and UI consumption."""

    def __init__(
        self,
        repository: EventRepository,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repository = repository
        self._clock = clock

    def record(
        self,
        skill_id: str,
        event_type: SkillEventType,
        *,
        partition_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SkillEvent:
        """Append one event.

        Args:
            skill_id: Skill the transition belongs to.
            event_type: One of the closed set of transition kinds.
            partition_id: Partition in scope; None for skill-wide events.
            metadata: Free-form JSON-serializable details.
        """
        event = SkillEvent(
            id=str(uuid.uuid4()),
            skill_id=skill_id,
            event_type=SkillEventType(event_type),
            partition_id=partition_id,
            metadata=dict(metadata or {}),
            created_at=self._clock(),
        )
        self._repository.insert_event(event)
        _logger.info(
            "event_recorded",
            skill_id=skill_id,
            event_type=event.event_type.value,
            partition_id=partition_id,
        )
        return event

    def list_events(
        self,
        skill_id: str,
        event_type: SkillEventType | None = None,
        partition_id: str | None = None,
        limit: int | None = 100,
    ) -> list[SkillEvent]:
        """Recorded events for a skill, newest first."""
        return self._repository.get_events(
            skill_id, event_type=event_type, partition_id=partition_id, limit=limit
        )
