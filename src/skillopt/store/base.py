"""Base class for OptimizationStore with connection and schema management.

This module provides the foundational `OptimizationStoreBase` class that handles:
- SQLite database connection management with WAL mode
- Schema creation
- JSON column helpers shared by the mixins

Mixins inherit from this base to add domain-specific functionality. Every
gateway worker opens its own connections against the same database file;
all cross-worker coordination relies on SQLite's write serialization plus
the conditional statements issued by the mixins.
"""

from __future__ import annotations

import contextvars
import json
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from skillopt.core.config import DEFAULT_STORE_PATH
from skillopt.core.logging import get_logger

_logger = get_logger("store")

# SQLite accepts str, int, float, bytes, and None as bind parameters.
SQLParam = str | int | float | bytes | None


def dump_json(value: Any) -> str | None:
    """Serialize a JSON column value; None stays NULL."""
    if value is None:
        return None
    return json.dumps(value, separators=(",", ":"))


def load_json(value: str | None, default: Any = None) -> Any:
    """Deserialize a JSON column value, returning ``default`` for NULL."""
    if value is None:
        return default
    return json.loads(value)


class WhereBuilder:
    """Accumulates SQL WHERE clauses and their bound parameters.

    Clauses are joined with AND::

        wb = WhereBuilder()
        wb.add("skill_id = ?", skill_id)
        wb.add("start_time > ?", since)
        where_sql, params = wb.build()
        conn.execute(f"SELECT * FROM request_logs WHERE {where_sql}", params)
    """

    __slots__ = ("_clauses", "_params")

    def __init__(self) -> None:
        self._clauses: list[str] = []
        self._params: list[SQLParam] = []

    def add(self, clause: str, *params: SQLParam) -> None:
        """Append a WHERE clause with its bound parameters."""
        self._clauses.append(clause)
        self._params.extend(params)

    def build(self) -> tuple[str, tuple[SQLParam, ...]]:
        """Return the combined WHERE fragment and parameter tuple.

        Returns ``("1=1", ())`` when no clauses have been added.
        """
        if not self._clauses:
            return "1=1", ()
        return " AND ".join(self._clauses), tuple(self._params)


class OptimizationStoreBase:
    """SQLite-backed persistence base for optimization state.

    Handles the connection lifecycle and schema. Subclasses (via mixins) add
    methods for skills, partitions, arms, locks, events, request logs, and
    evaluations.

    Attributes:
        db_path: Path to the SQLite database file.
        timeout: Seconds a connection waits on a locked database.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | None = None, timeout: float = 30.0) -> None:
        """Open (creating if needed) the store at ``db_path``.

        Args:
            db_path: Path to the SQLite database file.
                Defaults to ~/.skillopt/optimizer.db
            timeout: Busy timeout in seconds for each connection.
        """
        self.db_path = db_path or DEFAULT_STORE_PATH
        self.timeout = timeout
        self._logger = _logger
        # Scoped per thread/task so one caller's batch never leaks into another's
        self._batch_conn: contextvars.ContextVar[sqlite3.Connection | None] = (
            contextvars.ContextVar("_batch_conn", default=None)
        )
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._migrate_if_needed()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute(f"PRAGMA busy_timeout={int(self.timeout * 1000)}")
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with proper configuration.

        Inside a ``batch_connection()`` block the batch's connection is
        reused and commit/rollback is left to the batch. Otherwise a fresh
        connection is opened, committed on success, and rolled back on error.

        Yields:
            A configured sqlite3.Connection instance.
        """
        batch = self._batch_conn.get()
        if batch is not None:
            yield batch
            return

        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            _logger.warning(
                "store_operation_failed",
                db_path=str(self.db_path),
                error_type=type(e).__name__,
                error=str(e),
            )
            raise
        finally:
            conn.close()

    @contextmanager
    def batch_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Run several store operations as one transaction.

        All ``_get_connection()`` calls inside the block share one connection.
        The write lock is taken up front (``BEGIN IMMEDIATE``), so concurrent
        readers keep seeing the previous state until the block commits, and a
        failure anywhere rolls back every write in the block.

        Example::

            with store.batch_connection():
                store.delete_partitions(skill_id)
                store.create_partitions(skill_id, new_partitions)
                store.update_skill_metadata(skill_id, last_clustering_log_start_time=ts)

        Yields:
            The shared sqlite3.Connection instance.
        """
        outer = self._batch_conn.get()
        if outer is not None:
            # Nested batches join the outer transaction
            yield outer
            return

        conn = self._connect()
        conn.execute("BEGIN IMMEDIATE")
        token = self._batch_conn.set(conn)
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            _logger.warning(
                "store_batch_failed",
                db_path=str(self.db_path),
                error_type=type(e).__name__,
                error=str(e),
            )
            raise
        finally:
            self._batch_conn.reset(token)
            conn.close()

    def close(self) -> None:  # noqa: B027
        """No-op; connections are opened per operation."""

    def _migrate_if_needed(self) -> None:
        with self._get_connection() as conn:
            try:
                row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
                current_version = row["version"] if row else 0
            except sqlite3.OperationalError:
                current_version = 0

            if current_version < self.SCHEMA_VERSION:
                self._create_schema(conn)

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create all tables and indexes (idempotent)."""
        self._create_schema_version_table(conn)
        self._create_skills_table(conn)
        self._create_partitions_table(conn)
        self._create_arms_table(conn)
        self._create_locks_table(conn)
        self._create_events_table(conn)
        self._create_request_logs_table(conn)
        self._create_evaluations_table(conn)

        conn.execute("DELETE FROM schema_version")
        conn.execute(
            "INSERT INTO schema_version (version) VALUES (?)",
            (self.SCHEMA_VERSION,),
        )
        self._logger.info("schema_created", version=self.SCHEMA_VERSION)

    @staticmethod
    def _create_schema_version_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            )
        """)

    @staticmethod
    def _create_skills_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS skills (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                optimization_enabled INTEGER NOT NULL DEFAULT 1,
                clustering_interval INTEGER NOT NULL,
                configuration_count INTEGER NOT NULL,
                reflection_min_requests_per_arm INTEGER NOT NULL,
                exploration_temperature REAL NOT NULL,
                system_prompt_count INTEGER NOT NULL,
                max_arms_per_partition INTEGER NOT NULL,
                allowed_models TEXT NOT NULL,
                seed_system_prompt TEXT NOT NULL,
                total_requests INTEGER NOT NULL DEFAULT 0,
                last_clustering_at TEXT,
                last_clustering_log_start_time TEXT,
                context_generated_at TEXT,
                version INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

    @staticmethod
    def _create_partitions_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS partitions (
                id TEXT PRIMARY KEY,
                skill_id TEXT NOT NULL REFERENCES skills(id) ON DELETE CASCADE,
                name TEXT NOT NULL,
                centroid TEXT NOT NULL,
                dimensions INTEGER NOT NULL,
                total_steps INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_partitions_skill ON partitions(skill_id)"
        )

    @staticmethod
    def _create_arms_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS arms (
                id TEXT PRIMARY KEY,
                skill_id TEXT NOT NULL REFERENCES skills(id) ON DELETE CASCADE,
                partition_id TEXT NOT NULL REFERENCES partitions(id) ON DELETE CASCADE,
                name TEXT NOT NULL,
                params TEXT NOT NULL,
                n INTEGER NOT NULL DEFAULT 0,
                mean REAL NOT NULL DEFAULT 0.0,
                n2 REAL NOT NULL DEFAULT 0.0,
                total_reward REAL NOT NULL DEFAULT 0.0,
                version INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_arms_partition ON arms(partition_id)"
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_arms_skill ON arms(skill_id)")

    @staticmethod
    def _create_locks_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS optimizer_locks (
                lock_name TEXT PRIMARY KEY,
                locked_by TEXT NOT NULL,
                locked_at TEXT NOT NULL,
                expires_at TEXT NOT NULL,
                metadata TEXT
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_locks_expires ON optimizer_locks(expires_at)"
        )

    @staticmethod
    def _create_events_table(conn: sqlite3.Connection) -> None:
        # partition_id is not a foreign key; events outlive partitions
        conn.execute("""
            CREATE TABLE IF NOT EXISTS skill_events (
                id TEXT PRIMARY KEY,
                skill_id TEXT NOT NULL REFERENCES skills(id) ON DELETE CASCADE,
                partition_id TEXT,
                event_type TEXT NOT NULL,
                metadata TEXT,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_events_skill_time "
            "ON skill_events(skill_id, created_at)"
        )

    @staticmethod
    def _create_request_logs_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS request_logs (
                id TEXT PRIMARY KEY,
                skill_id TEXT NOT NULL REFERENCES skills(id) ON DELETE CASCADE,
                start_time TEXT NOT NULL,
                embedding TEXT,
                request_payload TEXT,
                response_payload TEXT,
                arm_id TEXT,
                partition_id TEXT,
                reward REAL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_logs_skill_time "
            "ON request_logs(skill_id, start_time)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_logs_partition ON request_logs(partition_id)"
        )

    @staticmethod
    def _create_evaluations_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS skill_evaluations (
                id TEXT PRIMARY KEY,
                skill_id TEXT NOT NULL REFERENCES skills(id) ON DELETE CASCADE,
                method TEXT NOT NULL,
                weight REAL NOT NULL DEFAULT 1.0,
                params TEXT,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_evaluations_skill "
            "ON skill_evaluations(skill_id)"
        )

    def clear_all(self) -> None:
        """Delete all data. Only intended for tests and local resets."""
        with self._get_connection() as conn:
            conn.execute("DELETE FROM skill_events")
            conn.execute("DELETE FROM request_logs")
            conn.execute("DELETE FROM skill_evaluations")
            conn.execute("DELETE FROM arms")
            conn.execute("DELETE FROM partitions")
            conn.execute("DELETE FROM optimizer_locks")
            conn.execute("DELETE FROM skills")

        _logger.warning("store_cleared", db_path=str(self.db_path))


__all__ = [
    "OptimizationStoreBase",
    "SQLParam",
    "WhereBuilder",
    "dump_json",
    "load_json",
]
