"""
CPA Workflow Runs Module

Document selection and run lifecycle for guided tax workflows:
- Document selection (uploads, vault documents, vault projects)
- Run lifecycle (INITIALIZING → RUNNING → COMPLETED | FAILED)
- Workflow catalog and required-input validation
"""

from .exceptions import (
    WorkflowRunError,
    SelectionBusyError,
    VaultLookupError,
    WorkflowInputError,
    RunCreationError,
    RunNotFoundError,
    RunTransitionError,
    StepExecutionError,
)
from .run_models import (
    RunStatus,
    StepStatus,
    WorkflowRun,
    WorkflowStep,
    Deliverable,
    RunDocumentAssociation,
    VALID_TRANSITIONS,
)
from .selection import (
    DocumentSelection,
    UploadedFile,
    FileItem,
    ProjectItem,
    SelectedItem,
    SelectionPayload,
    ImportResult,
)
from .definitions import (
    WorkflowDefinition,
    WorkflowInput,
    WorkflowInputType,
    get_workflow,
    list_workflows,
    validate_inputs,
)
from .run_manager import (
    WorkflowRunManager,
    ExecutionRequest,
    ExecutionOutcome,
)

__all__ = [
    "WorkflowRunError",
    "SelectionBusyError",
    "VaultLookupError",
    "WorkflowInputError",
    "RunCreationError",
    "RunNotFoundError",
    "RunTransitionError",
    "StepExecutionError",
    "RunStatus",
    "StepStatus",
    "WorkflowRun",
    "WorkflowStep",
    "Deliverable",
    "RunDocumentAssociation",
    "VALID_TRANSITIONS",
    "DocumentSelection",
    "UploadedFile",
    "FileItem",
    "ProjectItem",
    "SelectedItem",
    "SelectionPayload",
    "ImportResult",
    "WorkflowDefinition",
    "WorkflowInput",
    "WorkflowInputType",
    "get_workflow",
    "list_workflows",
    "validate_inputs",
    "WorkflowRunManager",
    "ExecutionRequest",
    "ExecutionOutcome",
]
