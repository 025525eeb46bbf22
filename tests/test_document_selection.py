"""
Tests for Document Selection.

Covers merging uploads with vault documents and vault projects, cascade
removal, the submission payload, and the in-flight import guard.
"""

import asyncio
import itertools
import threading
import sys
import os

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))


def _upload(name, data=b"%PDF-1.4 test"):
    from cpa_panel.workflow.selection import UploadedFile
    return UploadedFile(name=name, data=data, content_type="application/pdf")


def _snapshot(selection):
    """Comparable view of a selection (ids of uploads are random)."""
    from cpa_panel.workflow.selection import FileItem, ProjectItem

    view = []
    for item in selection.items:
        if isinstance(item, FileItem):
            view.append(("file", None if item.is_upload else item.id, item.name))
        elif isinstance(item, ProjectItem):
            view.append(("project", item.id, tuple(item.member_file_names)))
    return view


class BlockingVault:
    """Vault wrapper whose lookup blocks until released."""

    def __init__(self, inner):
        self.inner = inner
        self.entered = threading.Event()
        self.release = threading.Event()

    def resolve_documents(self, ids):
        self.entered.set()
        self.release.wait(5)
        return self.inner.resolve_documents(ids)


class FailingVault:
    def resolve_documents(self, ids):
        from cpa_panel.workflow.exceptions import VaultLookupError
        raise VaultLookupError("connection reset by peer")


class TestUploads:
    """Tests for add_uploaded_files."""

    def test_same_upload_twice_keeps_one_item(self):
        """Uploading W9.pdf twice leaves exactly one FileItem."""
        from cpa_panel.workflow.selection import DocumentSelection, FileItem

        selection = DocumentSelection()
        selection.add_uploaded_files([_upload("W9.pdf")])
        selection.add_uploaded_files([_upload("W9.pdf", b"second version")])

        items = selection.items
        assert len(items) == 1
        assert isinstance(items[0], FileItem)
        assert items[0].name == "W9.pdf"
        assert items[0].source_file.data == b"%PDF-1.4 test"

    def test_duplicates_within_one_batch_are_skipped(self):
        from cpa_panel.workflow.selection import DocumentSelection

        selection = DocumentSelection()
        added = selection.add_uploaded_files([_upload("a.pdf"), _upload("b.pdf"), _upload("a.pdf")])

        assert [i.name for i in added] == ["a.pdf", "b.pdf"]
        assert selection.total_document_count() == 2

    def test_upload_items_get_distinct_ids(self):
        from cpa_panel.workflow.selection import DocumentSelection

        selection = DocumentSelection()
        added = selection.add_uploaded_files([_upload("a.pdf"), _upload("b.pdf")])

        assert added[0].id != added[1].id
        assert all(item.is_upload for item in added)


class TestVaultImport:
    """Tests for import_vault_selection."""

    @pytest.mark.asyncio
    async def test_project_member_and_standalone(self, seeded_vault):
        """doc1 (in P) and doc2 (standalone) → [ProjectItem P, FileItem doc2]."""
        from cpa_panel.workflow.selection import DocumentSelection, FileItem, ProjectItem

        selection = DocumentSelection()
        result = await selection.import_vault_selection(["doc1", "doc2"], seeded_vault)

        assert result.ok
        items = selection.items
        assert len(items) == 2
        assert isinstance(items[0], ProjectItem)
        assert items[0].id == "P"
        assert items[0].name == "Smith 2024"
        assert items[0].member_file_names == ["W2.pdf"]
        assert isinstance(items[1], FileItem)
        assert items[1].id == "doc2"
        assert items[1].name == "Lease.pdf"
        assert not items[1].is_upload

    @pytest.mark.asyncio
    async def test_members_of_same_project_are_grouped(self, seeded_vault):
        from cpa_panel.workflow.selection import DocumentSelection

        selection = DocumentSelection()
        await selection.import_vault_selection(["doc1"], seeded_vault)
        await selection.import_vault_selection(["doc3"], seeded_vault)

        assert _snapshot(selection) == [("project", "P", ("W2.pdf", "1099-INT.pdf"))]

    @pytest.mark.asyncio
    async def test_reimport_is_idempotent(self, seeded_vault):
        """Importing {A, B} then {A} equals importing {A, B} once."""
        from cpa_panel.workflow.selection import DocumentSelection

        once = DocumentSelection()
        await once.import_vault_selection(["doc1", "doc2"], seeded_vault)

        twice = DocumentSelection()
        await twice.import_vault_selection(["doc1", "doc2"], seeded_vault)
        result = await twice.import_vault_selection(["doc1"], seeded_vault)

        assert _snapshot(twice) == _snapshot(once)
        assert result.added_count == 0
        assert result.skipped == 1

    @pytest.mark.asyncio
    async def test_no_duplicates_for_any_call_order(self, seeded_vault):
        """At most one FileItem per name and one ProjectItem per id, whatever the order."""
        from cpa_panel.workflow.selection import DocumentSelection, FileItem, ProjectItem

        operations = [
            ("upload", ["Lease.pdf"]),
            ("vault", ["doc1", "doc2"]),
            ("vault", ["doc3"]),
            ("upload", ["W9.pdf", "Lease.pdf"]),
            ("vault", ["doc2", "doc1"]),
        ]

        for ordering in itertools.permutations(operations):
            selection = DocumentSelection()
            for kind, values in ordering:
                if kind == "upload":
                    selection.add_uploaded_files([_upload(name) for name in values])
                else:
                    await selection.import_vault_selection(values, seeded_vault)

            file_names = [i.name for i in selection.items if isinstance(i, FileItem)]
            project_ids = [i.id for i in selection.items if isinstance(i, ProjectItem)]
            assert len(file_names) == len(set(file_names))
            assert len(project_ids) == len(set(project_ids))
            for project in (i for i in selection.items if isinstance(i, ProjectItem)):
                assert len(project.member_file_names) == len(set(project.member_file_names))

    @pytest.mark.asyncio
    async def test_standalone_document_named_like_upload_is_skipped(self, seeded_vault):
        from cpa_panel.workflow.selection import DocumentSelection

        selection = DocumentSelection()
        selection.add_uploaded_files([_upload("Lease.pdf")])
        result = await selection.import_vault_selection(["doc2"], seeded_vault)

        assert result.skipped == 1
        assert _snapshot(selection) == [("file", None, "Lease.pdf")]

    @pytest.mark.asyncio
    async def test_unknown_ids_are_reported(self, seeded_vault):
        from cpa_panel.notifications import NotificationChannel, NotificationLevel
        from cpa_panel.workflow.selection import DocumentSelection

        notifier = NotificationChannel()
        selection = DocumentSelection()
        result = await selection.import_vault_selection(["doc2", "missing"], seeded_vault, notifier)

        assert result.ok
        assert result.missing_ids == ["missing"]
        assert selection.total_document_count() == 1
        assert notifier.last(NotificationLevel.ERROR) is not None
        assert notifier.last(NotificationLevel.SUCCESS).message == "Added 1 document(s) from the vault"

    @pytest.mark.asyncio
    async def test_lookup_failure_leaves_selection_unchanged(self):
        from cpa_panel.notifications import NotificationChannel, NotificationLevel
        from cpa_panel.workflow.selection import DocumentSelection

        notifier = NotificationChannel()
        selection = DocumentSelection()
        selection.add_uploaded_files([_upload("W9.pdf")])
        before = _snapshot(selection)

        result = await selection.import_vault_selection(["doc1", "doc2"], FailingVault(), notifier)

        assert not result.ok
        assert "connection reset" in result.error
        assert _snapshot(selection) == before
        assert not selection.is_busy
        error = notifier.last(NotificationLevel.ERROR)
        assert error is not None
        assert "connection reset" in error.message

    def test_project_member_replaces_loose_file(self):
        """A document imported loose and later as a project member appears once."""
        from cpa_panel.workflow.selection import DocumentSelection
        from database.vault_persistence import ResolvedDocument, VaultDocument, VaultProject

        selection = DocumentSelection()
        document = VaultDocument(id="doc9", name="K1.pdf")
        selection.merge_vault_documents([ResolvedDocument(document=document)])
        selection.merge_vault_documents([
            ResolvedDocument(document=document, project=VaultProject(id="Q", name="Partnership"))
        ])

        assert _snapshot(selection) == [("project", "Q", ("K1.pdf",))]

    @pytest.mark.asyncio
    async def test_empty_import_is_a_no_op(self, seeded_vault):
        from cpa_panel.workflow.selection import DocumentSelection

        selection = DocumentSelection()
        result = await selection.import_vault_selection([], seeded_vault)

        assert result.ok
        assert len(selection) == 0


class TestRemoval:
    """Tests for remove_item and remove_project_member."""

    @pytest.mark.asyncio
    async def test_removing_last_member_removes_project(self, seeded_vault):
        """From [P{W2.pdf}, doc2], removing W2.pdf leaves only doc2."""
        from cpa_panel.workflow.selection import DocumentSelection

        selection = DocumentSelection()
        await selection.import_vault_selection(["doc1", "doc2"], seeded_vault)

        assert selection.remove_project_member("P", "W2.pdf") is True
        assert _snapshot(selection) == [("file", "doc2", "Lease.pdf")]

    @pytest.mark.asyncio
    async def test_removing_other_member_keeps_order(self, seeded_vault):
        from cpa_panel.workflow.selection import DocumentSelection

        seeded_vault.add_document("Brokerage.pdf", project_id="P", document_id="doc4")
        selection = DocumentSelection()
        await selection.import_vault_selection(["doc1", "doc3", "doc4"], seeded_vault)

        selection.remove_project_member("P", "1099-INT.pdf")

        assert _snapshot(selection) == [("project", "P", ("W2.pdf", "Brokerage.pdf"))]
        assert selection.get_item("P").member_document_ids == ["doc1", "doc4"]

    @pytest.mark.asyncio
    async def test_remove_whole_project(self, seeded_vault):
        from cpa_panel.workflow.selection import DocumentSelection

        selection = DocumentSelection()
        await selection.import_vault_selection(["doc1", "doc3", "doc2"], seeded_vault)

        assert selection.remove_item("P") is True
        assert _snapshot(selection) == [("file", "doc2", "Lease.pdf")]

    def test_remove_unknown_is_a_no_op(self):
        from cpa_panel.workflow.selection import DocumentSelection

        selection = DocumentSelection()
        selection.add_uploaded_files([_upload("W9.pdf")])

        assert selection.remove_item("nope") is False
        assert selection.remove_project_member("nope", "W9.pdf") is False
        assert len(selection) == 1

    def test_remove_member_from_file_item_is_a_no_op(self):
        from cpa_panel.workflow.selection import DocumentSelection

        selection = DocumentSelection()
        item = selection.add_uploaded_files([_upload("W9.pdf")])[0]

        assert selection.remove_project_member(item.id, "W9.pdf") is False
        assert len(selection) == 1


class TestPayload:
    """Tests for to_payload."""

    @pytest.mark.asyncio
    async def test_payload_separates_standalone_and_projects(self, seeded_vault):
        from cpa_panel.workflow.selection import DocumentSelection

        selection = DocumentSelection()
        selection.add_uploaded_files([_upload("W9.pdf")])
        await selection.import_vault_selection(["doc1", "doc2", "doc3"], seeded_vault)

        payload = selection.to_payload()

        assert [r.name for r in payload.standalone] == ["W9.pdf", "Lease.pdf"]
        assert payload.standalone[0].document_id is None
        assert payload.standalone[0].upload is not None
        assert payload.standalone[1].document_id == "doc2"
        assert len(payload.projects) == 1
        assert [d.document_id for d in payload.projects[0].documents] == ["doc1", "doc3"]
        assert all(d.project_id == "P" for d in payload.projects[0].documents)
        assert payload.document_count == 4
        assert selection.total_document_count() == 4

    @pytest.mark.asyncio
    async def test_association_rows_need_stored_uploads(self, seeded_vault):
        from cpa_panel.workflow.selection import DocumentSelection

        selection = DocumentSelection()
        selection.add_uploaded_files([_upload("W9.pdf")])
        await selection.import_vault_selection(["doc1"], seeded_vault)
        payload = selection.to_payload()

        with pytest.raises(ValueError):
            payload.association_rows()

        payload.uploads[0].document_id = "stored-1"
        assert payload.association_rows() == [
            {"document_id": "stored-1", "project_id": None},
            {"document_id": "doc1", "project_id": "P"},
        ]

    @pytest.mark.asyncio
    async def test_request_documents_shape(self, seeded_vault):
        from cpa_panel.workflow.selection import DocumentSelection

        selection = DocumentSelection()
        await selection.import_vault_selection(["doc1", "doc2"], seeded_vault)

        assert selection.to_payload().to_request_documents() == [
            {"id": "doc2", "name": "Lease.pdf", "type": "file"},
            {"id": "doc1", "name": "W2.pdf", "type": "file"},
        ]

    @pytest.mark.asyncio
    async def test_request_documents_count_every_project_member(self, seeded_vault):
        from cpa_panel.workflow.selection import DocumentSelection

        selection = DocumentSelection()
        await selection.import_vault_selection(["doc1", "doc3"], seeded_vault)
        payload = selection.to_payload()

        documents = payload.to_request_documents()
        assert [d["id"] for d in documents] == ["doc1", "doc3"]
        assert len(documents) == payload.document_count == selection.total_document_count()

    def test_unknown_item_type_is_rejected(self):
        from cpa_panel.workflow.selection import DocumentSelection

        selection = DocumentSelection(items=[object()])

        with pytest.raises(TypeError):
            selection.to_payload()
        with pytest.raises(TypeError):
            selection.total_document_count()


class TestImportGuard:
    """Mutations are rejected while a vault import is in flight."""

    @pytest.mark.asyncio
    async def test_mutation_during_import_raises(self, seeded_vault):
        from cpa_panel.workflow.exceptions import SelectionBusyError
        from cpa_panel.workflow.selection import DocumentSelection

        vault = BlockingVault(seeded_vault)
        selection = DocumentSelection()

        task = asyncio.create_task(selection.import_vault_selection(["doc1"], vault))
        entered = await asyncio.to_thread(vault.entered.wait, 5)
        assert entered
        assert selection.is_busy

        with pytest.raises(SelectionBusyError):
            selection.add_uploaded_files([_upload("W9.pdf")])
        with pytest.raises(SelectionBusyError):
            selection.remove_item("P")
        with pytest.raises(SelectionBusyError):
            await selection.import_vault_selection(["doc2"], vault)

        vault.release.set()
        result = await task

        assert result.ok
        assert not selection.is_busy
        assert _snapshot(selection) == [("project", "P", ("W2.pdf",))]


class TestRefresh:
    """Selections are snapshots until refreshed."""

    @pytest.mark.asyncio
    async def test_moved_document_regrouped_only_on_refresh(self, seeded_vault):
        from cpa_panel.workflow.selection import DocumentSelection

        selection = DocumentSelection()
        selection.add_uploaded_files([_upload("W9.pdf")])
        await selection.import_vault_selection(["doc2"], seeded_vault)

        seeded_vault.move_document("doc2", "P")
        assert _snapshot(selection) == [("file", None, "W9.pdf"), ("file", "doc2", "Lease.pdf")]

        result = await selection.refresh_from_vault(seeded_vault)

        assert result.ok
        assert _snapshot(selection) == [("file", None, "W9.pdf"), ("project", "P", ("Lease.pdf",))]

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_selection(self, seeded_vault):
        from cpa_panel.workflow.selection import DocumentSelection

        selection = DocumentSelection()
        await selection.import_vault_selection(["doc1", "doc2"], seeded_vault)
        before = _snapshot(selection)

        result = await selection.refresh_from_vault(FailingVault())

        assert not result.ok
        assert _snapshot(selection) == before
