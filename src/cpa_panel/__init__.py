"""
CPA Panel - Workflow Runs

Back-office module for running guided tax workflows against a set of client
documents.

Key Features:
- Document selection from uploads, vault documents and vault projects
- Run lifecycle (INITIALIZING → RUNNING → COMPLETED | FAILED) with
  atomic submission and idempotent execution
- Step narration and deliverable synthesis
- Deliverable export (PDF / JSON)

Usage:
    from cpa_panel import DocumentSelection, WorkflowRunManager
    from cpa_panel.api import cpa_router

    # Include router in FastAPI app
    app.include_router(cpa_router, prefix="/api")
"""

from .workflow import (
    DocumentSelection,
    WorkflowRunManager,
    ExecutionRequest,
    RunStatus,
    WorkflowRun,
)

__all__ = [
    "DocumentSelection",
    "WorkflowRunManager",
    "ExecutionRequest",
    "RunStatus",
    "WorkflowRun",
]
