"""
Persistence layer for the document vault using SQLite.

The vault holds firm documents and the projects (folders) grouping them.
Workflow runs only read from it, except for fresh uploads which are stored
as new vault documents when a run is submitted.

A document belongs to at most one project.
"""

import logging
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any, List, Iterable
from uuid import uuid4

from cpa_panel.workflow.exceptions import VaultLookupError

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(__file__).parent.parent.parent / "data" / "workflow_runs.db"
DEFAULT_UPLOAD_DIR = Path(__file__).parent.parent.parent / "data" / "uploads"


@dataclass
class VaultDocument:
    """A document stored in the vault."""
    id: str
    name: str
    file_type: str = ""
    file_size: int = 0
    url: Optional[str] = None
    owner_id: Optional[str] = None
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "file_type": self.file_type,
            "file_size": self.file_size,
            "url": self.url,
            "owner_id": self.owner_id,
            "created_at": self.created_at,
        }


@dataclass
class VaultProject:
    """A named grouping of vault documents."""
    id: str
    name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name}


@dataclass
class ResolvedDocument:
    """A vault document together with its parent project, if any."""
    document: VaultDocument
    project: Optional[VaultProject] = None


class VaultPersistence:
    """
    SQLite-backed vault store.

    Read-only queries used by document selection:
    - list_documents / list_projects
    - get_project_for_document / get_documents_for_project
    - resolve_documents (documents plus parent project in one query)

    Write surface used by run submission:
    - store_upload
    - delete_documents (undo of store_upload when a run cannot be created)
    """

    def __init__(self, db_path: Optional[Path] = None, upload_dir: Optional[Path] = None):
        self.db_path = Path(db_path or DEFAULT_DB_PATH)
        self.upload_dir = Path(upload_dir or DEFAULT_UPLOAD_DIR)
        self._ensure_schema()

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
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
                CREATE TABLE IF NOT EXISTS vault_documents (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    file_type TEXT,
                    file_size INTEGER DEFAULT 0,
                    url TEXT,
                    storage_path TEXT,
                    owner_id TEXT,
                    created_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS vault_projects (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS vault_project_documents (
                    project_id TEXT NOT NULL,
                    document_id TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (project_id, document_id)
                );
                CREATE INDEX IF NOT EXISTS idx_vault_project_documents_project
                    ON vault_project_documents(project_id);
            """)

    # =========================================================================
    # WRITES
    # =========================================================================

    def create_project(self, name: str, project_id: Optional[str] = None) -> VaultProject:
        """Create a vault project (folder)."""
        project = VaultProject(id=project_id or str(uuid4()), name=name)
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO vault_projects (id, name, created_at) VALUES (?, ?, ?)",
                (project.id, project.name, _now_iso()),
            )
        return project

    def add_document(
        self,
        name: str,
        file_type: str = "",
        file_size: int = 0,
        project_id: Optional[str] = None,
        owner_id: Optional[str] = None,
        document_id: Optional[str] = None,
        url: Optional[str] = None,
        storage_path: Optional[str] = None,
    ) -> VaultDocument:
        """Register a document record, optionally inside a project."""
        document = VaultDocument(
            id=document_id or str(uuid4()),
            name=name,
            file_type=file_type,
            file_size=file_size,
            url=url,
            owner_id=owner_id,
            created_at=_now_iso(),
        )
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO vault_documents
                    (id, name, file_type, file_size, url, storage_path, owner_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    document.id, document.name, document.file_type, document.file_size,
                    document.url, storage_path, document.owner_id, document.created_at,
                ),
            )
            if project_id:
                conn.execute(
                    "INSERT INTO vault_project_documents (project_id, document_id, created_at) "
                    "VALUES (?, ?, ?)",
                    (project_id, document.id, document.created_at),
                )
        return document

    def move_document(self, document_id: str, project_id: Optional[str]) -> None:
        """Move a document into another project (None = standalone)."""
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM vault_project_documents WHERE document_id = ?", (document_id,)
            )
            if project_id:
                conn.execute(
                    "INSERT INTO vault_project_documents (project_id, document_id, created_at) "
                    "VALUES (?, ?, ?)",
                    (project_id, document_id, _now_iso()),
                )

    def store_upload(
        self,
        name: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        owner_id: Optional[str] = None,
    ) -> VaultDocument:
        """
        Store uploaded bytes and register them as a standalone vault document.

        Args:
            name: Original filename
            data: File contents
            content_type: MIME type
            owner_id: Uploading user

        Returns:
            The new VaultDocument
        """
        document_id = str(uuid4())
        ext = os.path.splitext(name)[1]
        owner_dir = self.upload_dir / (owner_id or "shared")
        owner_dir.mkdir(parents=True, exist_ok=True)
        storage_path = owner_dir / f"{document_id}{ext}"
        storage_path.write_bytes(data)

        document = self.add_document(
            name=name,
            file_type=content_type,
            file_size=len(data),
            owner_id=owner_id,
            document_id=document_id,
            url=storage_path.as_uri(),
            storage_path=str(storage_path),
        )
        logger.info(f"Stored upload {name} as vault document {document_id} ({len(data)} bytes)")
        return document

    def delete_documents(self, document_ids: Iterable[str]) -> int:
        """
        Delete documents, their project membership and any stored file.

        Returns:
            Number of document rows deleted
        """
        ids = list(dict.fromkeys(document_ids))
        if not ids:
            return 0
        placeholders = ",".join("?" for _ in ids)
        with self._connect() as conn:
            paths = [
                row["storage_path"] for row in conn.execute(
                    f"SELECT storage_path FROM vault_documents WHERE id IN ({placeholders})", ids
                ) if row["storage_path"]
            ]
            conn.execute(f"DELETE FROM vault_project_documents WHERE document_id IN ({placeholders})", ids)
            deleted = conn.execute(f"DELETE FROM vault_documents WHERE id IN ({placeholders})", ids).rowcount

        for path in paths:
            try:
                Path(path).unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not remove stored file {path}: {e}")
        logger.info(f"Deleted {deleted} vault documents")
        return deleted

    # =========================================================================
    # READS
    # =========================================================================

    def list_documents(self, owner_id: Optional[str] = None) -> List[VaultDocument]:
        with self._connect() as conn:
            if owner_id:
                rows = conn.execute(
                    "SELECT * FROM vault_documents WHERE owner_id = ? ORDER BY created_at DESC",
                    (owner_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM vault_documents ORDER BY created_at DESC"
                ).fetchall()
        return [_row_to_document(r) for r in rows]

    def list_projects(self) -> List[VaultProject]:
        with self._connect() as conn:
            rows = conn.execute("SELECT id, name FROM vault_projects ORDER BY name").fetchall()
        return [VaultProject(id=r["id"], name=r["name"]) for r in rows]

    def get_documents(self, document_ids: Iterable[str]) -> List[VaultDocument]:
        """Get documents by id, in the order requested; unknown ids are skipped."""
        ids = list(dict.fromkeys(document_ids))
        if not ids:
            return []
        placeholders = ",".join("?" * len(ids))
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM vault_documents WHERE id IN ({placeholders})", ids
            ).fetchall()
        by_id = {r["id"]: _row_to_document(r) for r in rows}
        return [by_id[i] for i in ids if i in by_id]

    def get_project_for_document(self, document_id: str) -> Optional[VaultProject]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT p.id, p.name FROM vault_projects p
                JOIN vault_project_documents pd ON pd.project_id = p.id
                WHERE pd.document_id = ?
                """,
                (document_id,),
            ).fetchone()
        return VaultProject(id=row["id"], name=row["name"]) if row else None

    def get_documents_for_project(self, project_id: str) -> List[VaultDocument]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT d.* FROM vault_documents d
                JOIN vault_project_documents pd ON pd.document_id = d.id
                WHERE pd.project_id = ?
                ORDER BY pd.created_at, d.name
                """,
                (project_id,),
            ).fetchall()
        return [_row_to_document(r) for r in rows]

    def resolve_documents(self, document_ids: Iterable[str]) -> List[ResolvedDocument]:
        """
        Resolve documents and their parent project in one query.

        Results keep the requested order; ids that do not exist are skipped.

        Raises:
            VaultLookupError: If the vault cannot be queried
        """
        ids = list(dict.fromkeys(document_ids))
        if not ids:
            return []
        placeholders = ",".join("?" * len(ids))
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"""
                    SELECT d.*, p.id AS project_id, p.name AS project_name
                    FROM vault_documents d
                    LEFT JOIN vault_project_documents pd ON pd.document_id = d.id
                    LEFT JOIN vault_projects p ON p.id = pd.project_id
                    WHERE d.id IN ({placeholders})
                    """,
                    ids,
                ).fetchall()
        except sqlite3.Error as e:
            raise VaultLookupError(f"Vault lookup failed: {e}") from e

        resolved: Dict[str, ResolvedDocument] = {}
        for row in rows:
            project = None
            if row["project_id"]:
                project = VaultProject(id=row["project_id"], name=row["project_name"])
            resolved[row["id"]] = ResolvedDocument(document=_row_to_document(row), project=project)

        missing = [i for i in ids if i not in resolved]
        if missing:
            logger.warning(f"Vault lookup skipped unknown document ids: {missing}")
        return [resolved[i] for i in ids if i in resolved]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_document(row: sqlite3.Row) -> VaultDocument:
    return VaultDocument(
        id=row["id"],
        name=row["name"],
        file_type=row["file_type"] or "",
        file_size=row["file_size"] or 0,
        url=row["url"],
        owner_id=row["owner_id"],
        created_at=row["created_at"],
    )


_vault_persistence: Optional[VaultPersistence] = None


def get_vault_persistence(db_path: Optional[Path] = None) -> VaultPersistence:
    """Get the singleton vault persistence instance."""
    global _vault_persistence
    if _vault_persistence is None:
        if db_path is None:
            from config.settings import get_workflow_settings
            settings = get_workflow_settings()
            _vault_persistence = VaultPersistence(settings.db_path, settings.upload_dir)
        else:
            _vault_persistence = VaultPersistence(db_path)
    return _vault_persistence


def reset_vault_persistence() -> None:
    """Drop the singleton (used by tests)."""
    global _vault_persistence
    _vault_persistence = None


__all__ = [
    "VaultDocument",
    "VaultProject",
    "ResolvedDocument",
    "VaultPersistence",
    "get_vault_persistence",
    "reset_vault_persistence",
]
