"""
Tests for Workflow Run Persistence.

Tests the SQLite store for run rows and run-document associations.
"""

import sqlite3
import sys
import os
from datetime import datetime, timedelta, timezone

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))


def _run_record(run_id="run-1", workflow_id="sales-tax-vda", tenant_id="default",
                status="initializing", updated=None):
    updated = updated or datetime.now(timezone.utc).isoformat()
    return {
        "id": run_id,
        "workflow_id": workflow_id,
        "run_by": "cpa@firm.test",
        "tenant_id": tenant_id,
        "status": status,
        "inputs": {"client-name": "Acme"},
        "steps": [],
        "deliverable": None,
        "error": None,
        "created_at": updated,
        "last_updated": updated,
        "completed_at": None,
        "version": 1,
    }


class TestWorkflowRunPersistence:
    """Tests for WorkflowRunPersistence."""

    def test_import(self):
        from database.workflow_run_persistence import WorkflowRunPersistence
        assert WorkflowRunPersistence is not None

    def test_create_and_load(self, run_persistence):
        run_persistence.create_run(_run_record(), [
            {"document_id": "doc1", "project_id": "P"},
            {"document_id": "doc2", "project_id": None},
        ])

        record = run_persistence.load_run("run-1")
        assert record["status"] == "initializing"
        assert record["inputs"] == {"client-name": "Acme"}
        assert record["steps"] == []
        assert record["deliverable"] is None

        associations = run_persistence.load_associations("run-1")
        assert associations == [
            {"run_id": "run-1", "document_id": "doc1", "project_id": "P"},
            {"run_id": "run-1", "document_id": "doc2", "project_id": None},
        ]

    def test_load_unknown_returns_none(self, run_persistence):
        assert run_persistence.load_run("nope") is None
        assert run_persistence.load_associations("nope") == []

    def test_failed_association_rolls_back_run(self, run_persistence):
        """A run row is never committed without all of its associations."""
        with pytest.raises(sqlite3.IntegrityError):
            run_persistence.create_run(_run_record(), [
                {"document_id": "doc1"},
                {"document_id": "doc1"},
            ])

        assert run_persistence.load_run("run-1") is None
        assert run_persistence.load_associations("run-1") == []

    def test_compare_and_swap_update(self, run_persistence):
        run_persistence.create_run(_run_record(), [])

        assert run_persistence.update_run(
            "run-1", expected_statuses=["initializing"], status="running"
        ) is True
        assert run_persistence.update_run(
            "run-1", expected_statuses=["initializing"], status="running"
        ) is False

        record = run_persistence.load_run("run-1")
        assert record["status"] == "running"
        assert record["version"] == 2

    def test_update_encodes_json_columns(self, run_persistence):
        run_persistence.create_run(_run_record(), [])
        run_persistence.update_run(
            "run-1",
            status="completed",
            steps=[{"id": "1", "name": "Processing"}],
            deliverable={"title": "T - Results", "content": "c", "summary": "s"},
        )

        record = run_persistence.load_run("run-1")
        assert record["steps"] == [{"id": "1", "name": "Processing"}]
        assert record["deliverable"]["title"] == "T - Results"

    def test_update_rejects_unknown_columns(self, run_persistence):
        run_persistence.create_run(_run_record(), [])
        with pytest.raises(ValueError):
            run_persistence.update_run("run-1", workflow_id="other")

    def test_update_unknown_run_returns_false(self, run_persistence):
        assert run_persistence.update_run("nope", status="failed") is False


class TestListRuns:
    """Tests for list_runs filters."""

    @pytest.fixture
    def populated(self, run_persistence):
        old = (datetime.now(timezone.utc) - timedelta(hours=2)).isoformat()
        run_persistence.create_run(_run_record("a", status="running", updated=old), [])
        run_persistence.create_run(_run_record("b", workflow_id="1040", status="completed"), [])
        run_persistence.create_run(_run_record("c", tenant_id="other", status="initializing", updated=old), [])
        return run_persistence

    def test_filters_by_tenant(self, populated):
        assert {r["id"] for r in populated.list_runs()} == {"a", "b"}
        assert {r["id"] for r in populated.list_runs(tenant_id="other")} == {"c"}

    def test_all_tenants(self, populated):
        assert {r["id"] for r in populated.list_runs(tenant_id=None)} == {"a", "b", "c"}

    def test_filters_by_workflow_and_status(self, populated):
        assert [r["id"] for r in populated.list_runs(workflow_id="1040")] == ["b"]
        assert [r["id"] for r in populated.list_runs(statuses=["running"])] == ["a"]

    def test_updated_before(self, populated):
        cutoff = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
        stale = populated.list_runs(
            tenant_id=None,
            statuses=["initializing", "running"],
            updated_before=cutoff,
        )
        assert {r["id"] for r in stale} == {"a", "c"}


class TestVaultPersistence:
    """Tests for the vault store."""

    def test_resolve_keeps_requested_order(self, seeded_vault):
        resolved = seeded_vault.resolve_documents(["doc2", "doc1", "unknown"])

        assert [r.document.id for r in resolved] == ["doc2", "doc1"]
        assert resolved[0].project is None
        assert resolved[1].project.id == "P"
        assert resolved[1].project.name == "Smith 2024"

    def test_project_documents(self, seeded_vault):
        documents = seeded_vault.get_documents_for_project("P")
        assert {d.id for d in documents} == {"doc1", "doc3"}
        assert seeded_vault.get_project_for_document("doc2") is None

    def test_move_document(self, seeded_vault):
        seeded_vault.move_document("doc1", None)
        assert seeded_vault.get_project_for_document("doc1") is None

        seeded_vault.move_document("doc2", "P")
        assert seeded_vault.get_project_for_document("doc2").id == "P"

    def test_store_upload_writes_file(self, vault):
        document = vault.store_upload("W9.pdf", b"%PDF-1.4 data", "application/pdf", owner_id="cpa")

        assert document.file_size == len(b"%PDF-1.4 data")
        assert document.url.startswith("file://")
        assert vault.get_documents([document.id])[0].name == "W9.pdf"
        stored = list((vault.upload_dir / "cpa").iterdir())
        assert len(stored) == 1
        assert stored[0].read_bytes() == b"%PDF-1.4 data"

    def test_delete_documents_removes_rows_membership_and_files(self, seeded_vault):
        upload = seeded_vault.store_upload("W9.pdf", b"w9", owner_id="cpa")

        assert seeded_vault.delete_documents([upload.id, "doc1", "unknown"]) == 2

        assert seeded_vault.get_documents([upload.id, "doc1"]) == []
        assert {d.id for d in seeded_vault.get_documents_for_project("P")} == {"doc3"}
        assert list((seeded_vault.upload_dir / "cpa").iterdir()) == []
        assert seeded_vault.delete_documents([]) == 0

    def test_resolve_wraps_database_errors(self, vault):
        from cpa_panel.workflow.exceptions import VaultLookupError

        with sqlite3.connect(vault.db_path) as conn:
            conn.execute("DROP TABLE vault_projects")

        with pytest.raises(VaultLookupError):
            vault.resolve_documents(["doc1"])
