"""
Document Selection

Owns the set of documents that will be submitted with a workflow run.

Documents come from three places:
- Fresh uploads (FileItem carrying the raw bytes)
- Vault documents imported on their own (FileItem keyed by vault id)
- Vault documents that live in a project folder (grouped under a ProjectItem)

Merge conflicts (same file name, same project, same member) are silent
no-ops. A vault import resolves every requested id before touching the
selection, so a failed lookup leaves the selection exactly as it was.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Iterable, Union
from uuid import uuid4

from .exceptions import SelectionBusyError, VaultLookupError

logger = logging.getLogger(__name__)


@dataclass
class UploadedFile:
    """Raw bytes of a file picked by the user."""
    name: str
    data: bytes
    content_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class FileItem:
    """A standalone document: a fresh upload or a loose vault document."""
    id: str
    name: str
    source_file: Optional[UploadedFile] = None
    kind: str = field(default="file", init=False)

    @property
    def is_upload(self) -> bool:
        return self.source_file is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind,
            "is_upload": self.is_upload,
            "size": self.source_file.size if self.source_file else None,
        }


@dataclass
class ProjectMember:
    document_id: str
    name: str


@dataclass
class ProjectItem:
    """
    A vault project folder with the members currently selected.

    Never empty: removing the last member removes the item.
    """
    id: str
    name: str
    members: List[ProjectMember] = field(default_factory=list)
    kind: str = field(default="project", init=False)

    @property
    def member_file_names(self) -> List[str]:
        return [m.name for m in self.members]

    @property
    def member_document_ids(self) -> List[str]:
        return [m.document_id for m in self.members]

    def has_member(self, document_id: str, name: str) -> bool:
        return any(m.document_id == document_id or m.name == name for m in self.members)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind,
            "member_file_names": self.member_file_names,
            "member_document_ids": self.member_document_ids,
        }


SelectedItem = Union[FileItem, ProjectItem]


def _unknown_item(item: Any) -> TypeError:
    return TypeError(f"Unknown selection item type: {type(item).__name__}")


# =============================================================================
# PAYLOAD
# =============================================================================

@dataclass
class DocumentReference:
    """
    One document in a submission.

    document_id is None for uploads that have not been stored in the vault yet.
    """
    name: str
    document_id: Optional[str] = None
    project_id: Optional[str] = None
    upload: Optional[UploadedFile] = None


@dataclass
class ProjectReference:
    project_id: str
    name: str
    documents: List[DocumentReference] = field(default_factory=list)


@dataclass
class SelectionPayload:
    """Normalized submission structure consumed by the run manager."""
    standalone: List[DocumentReference] = field(default_factory=list)
    projects: List[ProjectReference] = field(default_factory=list)

    @property
    def uploads(self) -> List[DocumentReference]:
        return [ref for ref in self.standalone if ref.upload is not None]

    def flatten(self) -> List[DocumentReference]:
        """All document references, standalone first, then project members."""
        refs = list(self.standalone)
        for project in self.projects:
            refs.extend(project.documents)
        return refs

    def association_rows(self) -> List[Dict[str, Any]]:
        """
        One row per document for bulk association.

        Raises:
            ValueError: If an upload has not been stored yet (no document id)
        """
        rows = []
        for ref in self.flatten():
            if ref.document_id is None:
                raise ValueError(f"Upload {ref.name} has no vault document id yet")
            rows.append({"document_id": ref.document_id, "project_id": ref.project_id})
        return rows

    def to_request_documents(self) -> List[Dict[str, Any]]:
        """
        Document list in the shape of the execute request body.

        One file entry per document, project members included, matching the
        list execute builds from a run's stored associations.
        """
        return [
            {"id": ref.document_id or ref.name, "name": ref.name, "type": "file"}
            for ref in self.flatten()
        ]

    @property
    def document_count(self) -> int:
        return len(self.standalone) + sum(len(p.documents) for p in self.projects)


@dataclass
class ImportResult:
    """Outcome of one vault import."""
    added_files: List[str] = field(default_factory=list)
    added_members: List[str] = field(default_factory=list)
    skipped: int = 0
    missing_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def added_count(self) -> int:
        return len(self.added_files) + len(self.added_members)


# =============================================================================
# SELECTION
# =============================================================================

class DocumentSelection:
    """
    The working set of selected documents for one pending run.

    All mutations go through the methods below. While a vault import is
    awaiting the vault, every mutation raises SelectionBusyError.
    """

    def __init__(self, items: Optional[Iterable[SelectedItem]] = None):
        self._items: List[SelectedItem] = list(items or [])
        self._busy = False

    @property
    def items(self) -> List[SelectedItem]:
        return list(self._items)

    @property
    def is_busy(self) -> bool:
        return self._busy

    def __len__(self) -> int:
        return len(self._items)

    def _ensure_idle(self) -> None:
        if self._busy:
            raise SelectionBusyError("A vault import is in progress for this selection")

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def _file_items(self) -> List[FileItem]:
        return [item for item in self._items if isinstance(item, FileItem)]

    def _project_items(self) -> List[ProjectItem]:
        return [item for item in self._items if isinstance(item, ProjectItem)]

    def get_item(self, item_id: str) -> Optional[SelectedItem]:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def has_file_named(self, name: str) -> bool:
        return any(item.name == name for item in self._file_items())

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def add_uploaded_files(self, files: Iterable[UploadedFile]) -> List[FileItem]:
        """
        Append a FileItem for each file whose name is not already selected.

        The first file with a given name wins; later ones are skipped.

        Returns:
            The items that were added
        """
        self._ensure_idle()
        added = []
        for upload in files:
            if self.has_file_named(upload.name):
                logger.debug(f"Skipping duplicate upload {upload.name}")
                continue
            item = FileItem(id=str(uuid4()), name=upload.name, source_file=upload)
            self._items.append(item)
            added.append(item)
        return added

    async def import_vault_selection(self, document_ids: Iterable[str], vault, notifier=None) -> ImportResult:
        """
        Import vault documents, grouping project members under their project.

        The vault lookup runs in a worker thread. Nothing is merged until the
        lookup has returned for every id; if it fails the error is reported
        through the notifier and the selection is left unchanged.

        Args:
            document_ids: Vault document ids
            vault: Object with resolve_documents(ids) -> List[ResolvedDocument]
            notifier: Optional NotificationChannel

        Returns:
            ImportResult
        """
        self._ensure_idle()
        ids = list(dict.fromkeys(document_ids))
        if not ids:
            return ImportResult()

        self._busy = True
        try:
            resolved = await asyncio.to_thread(vault.resolve_documents, ids)
        except VaultLookupError as e:
            logger.warning(f"Vault import of {len(ids)} documents failed: {e}")
            if notifier is not None:
                notifier.error(f"Could not import documents from the vault: {e}")
            return ImportResult(error=str(e))
        finally:
            self._busy = False

        result = self.merge_vault_documents(resolved)
        found = {r.document.id for r in resolved}
        result.missing_ids = [i for i in ids if i not in found]

        if notifier is not None:
            if result.missing_ids:
                notifier.error(f"{len(result.missing_ids)} document(s) were not found in the vault")
            if result.added_count:
                notifier.success(f"Added {result.added_count} document(s) from the vault")
        return result

    def merge_vault_documents(self, resolved: Iterable[Any]) -> ImportResult:
        """
        Merge resolved vault documents into the selection.

        Project members are appended to their ProjectItem (created on first
        use); a loose FileItem for the same document is dropped. Standalone
        documents become FileItems unless the id or name is already selected.
        """
        self._ensure_idle()
        items = [_copy_item(item) for item in self._items]
        result = ImportResult()

        for entry in resolved:
            document, project = entry.document, entry.project
            if project is not None:
                project_item = next(
                    (i for i in items if isinstance(i, ProjectItem) and i.id == project.id),
                    None,
                )
                if project_item is None:
                    project_item = ProjectItem(id=project.id, name=project.name)
                    items.append(project_item)
                if project_item.has_member(document.id, document.name):
                    result.skipped += 1
                    continue
                project_item.members.append(ProjectMember(document_id=document.id, name=document.name))
                items = [i for i in items if not (isinstance(i, FileItem) and i.id == document.id)]
                result.added_members.append(document.name)
            else:
                if any(_contains_document(i, document.id, document.name) for i in items):
                    result.skipped += 1
                    continue
                items.append(FileItem(id=document.id, name=document.name))
                result.added_files.append(document.name)

        self._items = items
        return result

    def remove_item(self, item_id: str) -> bool:
        """Remove a FileItem, or a ProjectItem with all its members."""
        self._ensure_idle()
        before = len(self._items)
        self._items = [item for item in self._items if item.id != item_id]
        return len(self._items) < before

    def remove_project_member(self, project_id: str, member_name: str) -> bool:
        """
        Remove one member from a project.

        The project itself is removed when its last member goes.
        """
        self._ensure_idle()
        project = self.get_item(project_id)
        if not isinstance(project, ProjectItem):
            return False

        remaining = [m for m in project.members if m.name != member_name]
        if len(remaining) == len(project.members):
            return False
        if remaining:
            project.members = remaining
        else:
            self._items = [item for item in self._items if item is not project]
        return True

    def clear(self) -> None:
        self._ensure_idle()
        self._items = []

    async def refresh_from_vault(self, vault, notifier=None) -> ImportResult:
        """
        Re-resolve every vault-backed document and regroup them.

        Uploads are kept as they are. Vault documents are re-merged in their
        current order, so documents moved between projects since import end
        up under their new project and deleted documents drop out.
        """
        self._ensure_idle()
        vault_ids = []
        for item in self._items:
            if isinstance(item, FileItem):
                if not item.is_upload:
                    vault_ids.append(item.id)
            elif isinstance(item, ProjectItem):
                vault_ids.extend(item.member_document_ids)
            else:
                raise _unknown_item(item)
        if not vault_ids:
            return ImportResult()

        self._busy = True
        try:
            resolved = await asyncio.to_thread(vault.resolve_documents, vault_ids)
        except VaultLookupError as e:
            logger.warning(f"Selection refresh failed: {e}")
            if notifier is not None:
                notifier.error(f"Could not refresh documents from the vault: {e}")
            return ImportResult(error=str(e))
        finally:
            self._busy = False

        snapshot = self._items
        self._items = [i for i in snapshot if isinstance(i, FileItem) and i.is_upload]
        result = self.merge_vault_documents(resolved)
        found = {r.document.id for r in resolved}
        result.missing_ids = [i for i in vault_ids if i not in found]
        logger.info(
            f"Refreshed selection: {len(found)} vault documents, "
            f"{len(result.missing_ids)} no longer in the vault"
        )
        return result

    # -------------------------------------------------------------------------
    # Output
    # -------------------------------------------------------------------------

    def total_document_count(self) -> int:
        count = 0
        for item in self._items:
            if isinstance(item, FileItem):
                count += 1
            elif isinstance(item, ProjectItem):
                count += len(item.members)
            else:
                raise _unknown_item(item)
        return count

    def to_payload(self) -> SelectionPayload:
        """Build the normalized submission structure."""
        payload = SelectionPayload()
        for item in self._items:
            if isinstance(item, FileItem):
                payload.standalone.append(DocumentReference(
                    name=item.name,
                    document_id=None if item.is_upload else item.id,
                    upload=item.source_file,
                ))
            elif isinstance(item, ProjectItem):
                payload.projects.append(ProjectReference(
                    project_id=item.id,
                    name=item.name,
                    documents=[
                        DocumentReference(name=m.name, document_id=m.document_id, project_id=item.id)
                        for m in item.members
                    ],
                ))
            else:
                raise _unknown_item(item)
        return payload

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self._items],
            "total_documents": self.total_document_count(),
        }


def _copy_item(item: SelectedItem) -> SelectedItem:
    if isinstance(item, FileItem):
        return FileItem(id=item.id, name=item.name, source_file=item.source_file)
    if isinstance(item, ProjectItem):
        return ProjectItem(id=item.id, name=item.name, members=list(item.members))
    raise _unknown_item(item)


def _contains_document(item: SelectedItem, document_id: str, name: str) -> bool:
    if isinstance(item, FileItem):
        return item.id == document_id or item.name == name
    if isinstance(item, ProjectItem):
        return any(m.document_id == document_id for m in item.members)
    raise _unknown_item(item)
