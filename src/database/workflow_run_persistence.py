"""
Persistence layer for workflow runs using SQLite.

Stores run rows (JSON columns for inputs, steps and deliverable) and the
run-to-document association rows.

Run creation writes the run row and all of its associations in a single
transaction. Status updates are compare-and-swap on the current status so
that two concurrent execute calls for the same run cannot both win.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Dict, Any, List, Iterable

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(__file__).parent.parent.parent / "data" / "workflow_runs.db"

_JSON_COLUMNS = ("inputs", "steps", "deliverable")
_UPDATABLE_COLUMNS = frozenset({
    "status", "steps", "deliverable", "error", "last_updated", "completed_at",
})


class WorkflowRunPersistence:
    """
    Persistence layer for workflow runs.

    Tables:
    - workflow_runs: one row per run
    - workflow_documents: run ↔ vault document links (project id for
      documents that were selected as project members)
    """

    def __init__(self, db_path: Optional[Path] = None):
        """
        Initialize run persistence.

        Args:
            db_path: Path to SQLite database file.
        """
        self.db_path = Path(db_path or DEFAULT_DB_PATH)
        self._ensure_schema()

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _ensure_schema(self):
        """Ensure database and schema exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS workflow_runs (
                    id TEXT PRIMARY KEY,
                    workflow_id TEXT NOT NULL,
                    run_by TEXT NOT NULL,
                    tenant_id TEXT NOT NULL DEFAULT 'default',
                    status TEXT NOT NULL,
                    inputs TEXT NOT NULL DEFAULT '{}',
                    steps TEXT NOT NULL DEFAULT '[]',
                    deliverable TEXT,
                    error TEXT,
                    created_at TEXT NOT NULL,
                    last_updated TEXT NOT NULL,
                    completed_at TEXT,
                    version INTEGER NOT NULL DEFAULT 1
                );
                CREATE INDEX IF NOT EXISTS idx_workflow_runs_workflow
                    ON workflow_runs(workflow_id, created_at);
                CREATE INDEX IF NOT EXISTS idx_workflow_runs_status
                    ON workflow_runs(tenant_id, status);

                CREATE TABLE IF NOT EXISTS workflow_documents (
                    run_id TEXT NOT NULL REFERENCES workflow_runs(id),
                    document_id TEXT NOT NULL,
                    project_id TEXT,
                    position INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (run_id, document_id)
                );
            """)

    # =========================================================================
    # CREATE
    # =========================================================================

    def create_run(self, run: Dict[str, Any], associations: Iterable[Dict[str, Any]]) -> str:
        """
        Insert a run row and its document associations as one unit.

        Args:
            run: Run record (see WorkflowRun.to_dict)
            associations: Dicts with document_id and optional project_id

        Returns:
            The run id

        Raises:
            sqlite3.Error: If either write fails; nothing is committed
        """
        rows = [
            (run["id"], a["document_id"], a.get("project_id"), position)
            for position, a in enumerate(associations)
        ]
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO workflow_runs (
                    id, workflow_id, run_by, tenant_id, status, inputs, steps,
                    deliverable, error, created_at, last_updated, completed_at, version
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run["id"],
                    run["workflow_id"],
                    run["run_by"],
                    run.get("tenant_id", "default"),
                    run["status"],
                    json.dumps(run.get("inputs") or {}, default=str),
                    json.dumps(run.get("steps") or [], default=str),
                    json.dumps(run["deliverable"], default=str) if run.get("deliverable") else None,
                    run.get("error"),
                    run["created_at"],
                    run["last_updated"],
                    run.get("completed_at"),
                    run.get("version", 1),
                ),
            )
            if rows:
                conn.executemany(
                    "INSERT INTO workflow_documents (run_id, document_id, project_id, position) "
                    "VALUES (?, ?, ?, ?)",
                    rows,
                )
        logger.debug(f"Persisted run {run['id']} with {len(rows)} document associations")
        return run["id"]

    # =========================================================================
    # UPDATE
    # =========================================================================

    def update_run(
        self,
        run_id: str,
        expected_statuses: Optional[Iterable[str]] = None,
        **fields: Any,
    ) -> bool:
        """
        Update a run row, optionally only if its status is one of expected_statuses.

        Args:
            run_id: Run identifier
            expected_statuses: Compare-and-swap guard on the current status
            **fields: Columns to set (status, steps, deliverable, error,
                last_updated, completed_at)

        Returns:
            True if a row was updated
        """
        unknown = set(fields) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update run columns: {sorted(unknown)}")
        if not fields:
            return False

        assignments = []
        params: List[Any] = []
        for column, value in fields.items():
            assignments.append(f"{column} = ?")
            if column in _JSON_COLUMNS and value is not None:
                value = json.dumps(value, default=str)
            params.append(value)

        sql = f"UPDATE workflow_runs SET {', '.join(assignments)}, version = version + 1 WHERE id = ?"
        params.append(run_id)

        if expected_statuses is not None:
            expected = list(expected_statuses)
            sql += f" AND status IN ({','.join('?' * len(expected))})"
            params.extend(expected)

        with self._connect() as conn:
            cursor = conn.execute(sql, params)
            return cursor.rowcount == 1

    # =========================================================================
    # READ
    # =========================================================================

    def load_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        """
        Load a run by ID.

        Returns:
            Run record with JSON columns decoded, or None
        """
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM workflow_runs WHERE id = ?", (run_id,)
            ).fetchone()
        return self._row_to_dict(row) if row else None

    def list_runs(
        self,
        tenant_id: Optional[str] = "default",
        workflow_id: Optional[str] = None,
        statuses: Optional[Iterable[str]] = None,
        updated_before: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """List runs newest first, with optional filters (tenant_id=None spans tenants)."""
        sql = "SELECT * FROM workflow_runs WHERE 1 = 1"
        params: List[Any] = []
        if tenant_id is not None:
            sql += " AND tenant_id = ?"
            params.append(tenant_id)
        if workflow_id:
            sql += " AND workflow_id = ?"
            params.append(workflow_id)
        if statuses:
            statuses = list(statuses)
            sql += f" AND status IN ({','.join('?' * len(statuses))})"
            params.extend(statuses)
        if updated_before:
            sql += " AND last_updated < ?"
            params.append(updated_before)
        sql += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_dict(r) for r in rows]

    def load_associations(self, run_id: str) -> List[Dict[str, Any]]:
        """Load the document associations of a run, in submission order."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT run_id, document_id, project_id FROM workflow_documents "
                "WHERE run_id = ? ORDER BY position",
                (run_id,),
            ).fetchall()
        return [dict(r) for r in rows]

    def _row_to_dict(self, row: sqlite3.Row) -> Dict[str, Any]:
        record = dict(row)
        for column in _JSON_COLUMNS:
            if record.get(column):
                record[column] = json.loads(record[column])
        return record


_run_persistence: Optional[WorkflowRunPersistence] = None


def get_workflow_run_persistence(db_path: Optional[Path] = None) -> WorkflowRunPersistence:
    """Get the singleton run persistence instance."""
    global _run_persistence
    if _run_persistence is None:
        if db_path is None:
            from config.settings import get_workflow_settings
            db_path = get_workflow_settings().db_path
        _run_persistence = WorkflowRunPersistence(db_path)
    return _run_persistence


def reset_workflow_run_persistence() -> None:
    """Drop the singleton (used by tests)."""
    global _run_persistence
    _run_persistence = None
