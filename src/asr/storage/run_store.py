"""
Run Store

SQLite-based persistence for run state and the decision audit log.
A checkpoint writes the full RunState and its new audit events in one
transaction, so a crash leaves either the old or the new checkpoint.
"""

import json
import logging
import sqlite3
from collections.abc import Iterable
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator

from pydantic import ValidationError as PydanticValidationError

from asr.config import get_settings
from asr.core.enums import RunStatus
from asr.core.exceptions import (
    ASRError,
    PersistenceError,
    RunNotFoundError,
    StateInvariantError,
)
from asr.core.schemas import DecisionEvent, RunState

logger = logging.getLogger(__name__)


class RunStore:
    """
    SQLite-based run state persistence.

    Tables:
        - runs: one row per run, holding the serialized RunState
        - decision_events: append-only audit log (votes, verdicts, stages)
    """

    def __init__(self, db_path: Path | None = None) -> None:
        """
        Initialize run store.

        Args:
            db_path: Path to SQLite database. Defaults to config.
        """
        self._db_path = Path(db_path or get_settings().storage.db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    @contextmanager
    def _connection(self, run_id: str | None = None) -> Generator[sqlite3.Connection, None, None]:
        """Connection that commits on success and rolls back on any error."""
        try:
            conn = sqlite3.connect(self._db_path, timeout=30.0)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open database {self._db_path}: {e}", run_id) from e

        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA busy_timeout = 30000")
            yield conn
            conn.commit()
        except ASRError:
            conn.rollback()
            raise
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Database error: {e}", run_id) from e
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS runs (
                    run_id TEXT PRIMARY KEY,
                    stage TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    state_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    completed_at TEXT,
                    error_message TEXT
                );

                CREATE TABLE IF NOT EXISTS decision_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    event_key TEXT,
                    record_id TEXT,
                    stage TEXT,
                    payload_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (run_id) REFERENCES runs(run_id),
                    UNIQUE (run_id, event_key)
                );

                CREATE INDEX IF NOT EXISTS idx_events_run_id ON decision_events(run_id);
                CREATE INDEX IF NOT EXISTS idx_events_record ON decision_events(run_id, record_id);
            """)

    # ==================== Run Management ====================

    def create_run(self, state: RunState) -> None:
        """
        Insert a new run.

        Raises:
            PersistenceError: A run with this id already exists.
        """
        with self._connection(state.run_id) as conn:
            exists = conn.execute(
                "SELECT 1 FROM runs WHERE run_id = ?", (state.run_id,)
            ).fetchone()
            if exists:
                raise PersistenceError(f"Run already exists: {state.run_id}", state.run_id)
            conn.execute(
                """
                INSERT INTO runs (run_id, stage, status, state_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    state.run_id,
                    state.stage.value,
                    state.status.value,
                    state.model_dump_json(),
                    state.created_at.isoformat(),
                    state.updated_at.isoformat(),
                ),
            )
        logger.info("Created run %s", state.run_id)

    def save_checkpoint(self, state: RunState, events: Iterable[DecisionEvent] = ()) -> None:
        """
        Persist the full RunState and append audit events atomically.

        Raises:
            RunNotFoundError: The run was never created.
            PersistenceError: Write failed or an event key was already logged.
        """
        now = datetime.now(timezone.utc).isoformat()
        completed_at = now if state.status == RunStatus.COMPLETED else None

        with self._connection(state.run_id) as conn:
            cursor = conn.execute(
                """
                UPDATE runs
                SET stage = ?, status = ?, state_json = ?, updated_at = ?,
                    completed_at = COALESCE(?, completed_at), error_message = ?
                WHERE run_id = ?
                """,
                (
                    state.stage.value,
                    state.status.value,
                    state.model_dump_json(),
                    state.updated_at.isoformat(),
                    completed_at,
                    state.error_message,
                    state.run_id,
                ),
            )
            if cursor.rowcount == 0:
                raise RunNotFoundError(state.run_id)

            conn.executemany(
                """
                INSERT INTO decision_events
                    (run_id, event_type, event_key, record_id, stage, payload_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        e.run_id,
                        e.event_type.value,
                        e.event_key,
                        e.record_id,
                        e.stage,
                        json.dumps(e.payload, default=str),
                        e.created_at.isoformat(),
                    )
                    for e in events
                ],
            )

    def load_state(self, run_id: str) -> RunState:
        """
        Load the last checkpointed RunState.

        Raises:
            RunNotFoundError: Unknown run id.
            PersistenceError: Stored state cannot be deserialized.
        """
        with self._connection(run_id) as conn:
            row = conn.execute(
                "SELECT state_json FROM runs WHERE run_id = ?", (run_id,)
            ).fetchone()
        if row is None:
            raise RunNotFoundError(run_id)
        try:
            return RunState.model_validate_json(row["state_json"])
        except PydanticValidationError as e:
            raise PersistenceError(f"Corrupt run state: {e.error_count()} error(s)", run_id) from e
        except StateInvariantError as e:
            raise PersistenceError(f"Corrupt run state: {e.message}", run_id) from e

    def get_run(self, run_id: str) -> dict[str, Any] | None:
        """Run metadata without the state document."""
        with self._connection(run_id) as conn:
            row = conn.execute(
                """
                SELECT run_id, stage, status, created_at, updated_at, completed_at, error_message
                FROM runs WHERE run_id = ?
                """,
                (run_id,),
            ).fetchone()
        return dict(row) if row else None

    def list_runs(self, status: RunStatus | None = None, limit: int = 100) -> list[dict[str, Any]]:
        """List run metadata, newest first."""
        query = """
            SELECT run_id, stage, status, created_at, updated_at, completed_at, error_message
            FROM runs
        """
        params: tuple[Any, ...] = ()
        if status is not None:
            query += " WHERE status = ?"
            params = (status.value,)
        query += " ORDER BY created_at DESC LIMIT ?"
        with self._connection() as conn:
            rows = conn.execute(query, (*params, limit)).fetchall()
        return [dict(row) for row in rows]

    # ==================== Audit Log ====================

    def get_events(self, run_id: str, record_id: str | None = None) -> list[DecisionEvent]:
        """Decision events in append order."""
        query = "SELECT * FROM decision_events WHERE run_id = ?"
        params: tuple[Any, ...] = (run_id,)
        if record_id is not None:
            query += " AND record_id = ?"
            params = (run_id, record_id)
        query += " ORDER BY id"

        with self._connection(run_id) as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            DecisionEvent(
                run_id=row["run_id"],
                event_type=row["event_type"],
                event_key=row["event_key"],
                record_id=row["record_id"],
                stage=row["stage"],
                payload=json.loads(row["payload_json"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def count_events(self, run_id: str) -> int:
        with self._connection(run_id) as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM decision_events WHERE run_id = ?", (run_id,)
            ).fetchone()
        return row["n"]
