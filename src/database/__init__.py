"""
Database Layer for the workflow run service.

SQLite persistence for:
- Workflow runs and run ↔ document associations
- The document vault (documents, projects, project membership)
"""

from .workflow_run_persistence import (
    WorkflowRunPersistence,
    get_workflow_run_persistence,
    reset_workflow_run_persistence,
)
from .vault_persistence import (
    VaultDocument,
    VaultProject,
    ResolvedDocument,
    VaultPersistence,
    get_vault_persistence,
    reset_vault_persistence,
)

__all__ = [
    "WorkflowRunPersistence",
    "get_workflow_run_persistence",
    "reset_workflow_run_persistence",
    "VaultDocument",
    "VaultProject",
    "ResolvedDocument",
    "VaultPersistence",
    "get_vault_persistence",
    "reset_vault_persistence",
]
