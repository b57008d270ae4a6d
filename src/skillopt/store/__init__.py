"""Optimization store with modular mixins.

This package provides the OptimizationStore class, composed from mixins that
each handle one kind of record:
- SkillMixin: skills, settings, lifetime counters, clustering watermark
- PartitionMixin: partition centroids and step counters
- ArmMixin: arm pools and compare-and-swap statistics updates
- LockMixin: lease rows behind the cross-worker LockManager
- EventMixin: append-only audit events
- RequestLogMixin: serviced request logs (the partitioner's read path)
- EvaluationMixin: weighted evaluation methods per skill

The base class (OptimizationStoreBase) provides SQLite connection management
in WAL mode, batched transactions, and schema creation.

Usage:
    from skillopt.store import OptimizationStore

    store = OptimizationStore()  # Uses default ~/.skillopt/optimizer.db
    store = OptimizationStore(db_path=Path("/custom/path.db"))

OptimizationStoreBase is listed LAST in the MRO so every mixin can rely on
``self._get_connection()`` and ``self._logger``.
"""

import threading
from pathlib import Path

from skillopt.store.arms import ArmMixin
from skillopt.store.base import OptimizationStoreBase, WhereBuilder
from skillopt.store.evaluations import EvaluationMixin
from skillopt.store.events import EventMixin
from skillopt.store.locks import LockMixin
from skillopt.store.logs import RequestLogMixin
from skillopt.store.models import (
    Arm,
    ArmParams,
    ArmStats,
    EvaluationMethodName,
    LockLease,
    LockStatus,
    ParamRange,
    Partition,
    RequestLog,
    Skill,
    SkillEvaluation,
    SkillEvent,
    SkillEventType,
)
from skillopt.store.partitions import PartitionMixin
from skillopt.store.skills import SkillMixin


class OptimizationStore(
    SkillMixin,
    PartitionMixin,
    ArmMixin,
    LockMixin,
    EventMixin,
    RequestLogMixin,
    EvaluationMixin,
    OptimizationStoreBase,
):
    """Persistent optimization state shared by all gateway workers.

    Mixin Capabilities:
        SkillMixin:
            - create_skill(), get_skill(), update_skill_settings()
            - update_skill_metadata() for watermark and warm-up marker
            - increment_total_requests() as an atomic counter
        PartitionMixin:
            - create_partitions(), get_partitions(), update_partition_centroid()
            - increment_partition_steps(), reset_partition_steps()
        ArmMixin:
            - create_arms(), get_arms(), delete_arms()
            - compare_and_set_arm_stats() for lost-update-free rewards
        LockMixin:
            - try_insert_lock() as a single guarded UPSERT
            - delete_lock() that never clobbers a newer holder
        EventMixin:
            - insert_event(), get_events()
        RequestLogMixin:
            - record_log(), get_logs(), count_logs(), tag_logs()
        EvaluationMixin:
            - add_evaluation(), remove_evaluation(), replace_evaluations()

    Example:
        >>> store = OptimizationStore(Path("/tmp/opt.db"))
        >>> skill = store.create_skill(SkillSettings(name="triage", allowed_models=["m1"]))
        >>> store.increment_total_requests(skill.id)
        1
    """


_store_instance: OptimizationStore | None = None
_store_lock = threading.Lock()


def get_store(db_path: Path | None = None) -> OptimizationStore:
    """Return the process-wide store, creating it on first use.

    Args:
        db_path: Database location; only honoured on the first call.
    """
    global _store_instance
    if _store_instance is None:
        with _store_lock:
            if _store_instance is None:
                _store_instance = OptimizationStore(db_path)
    return _store_instance


def reset_store() -> None:
    """Forget the process-wide store (tests)."""
    global _store_instance
    with _store_lock:
        _store_instance = None


__all__ = [
    "Arm",
    "ArmParams",
    "ArmStats",
    "EvaluationMethodName",
    "LockLease",
    "LockStatus",
    "OptimizationStore",
    "OptimizationStoreBase",
    "ParamRange",
    "Partition",
    "RequestLog",
    "Skill",
    "SkillEvaluation",
    "SkillEvent",
    "SkillEventType",
    "WhereBuilder",
    "get_store",
    "reset_store",
]
