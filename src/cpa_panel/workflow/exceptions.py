"""
Workflow run exceptions.

Merge conflicts in the document selection are not errors and never raise;
everything here is either an I/O failure or a lifecycle violation.
"""

from typing import Optional


class WorkflowRunError(Exception):
    """Base class for workflow run errors."""


class SelectionBusyError(WorkflowRunError):
    """Raised when the selection is mutated while a vault import is in flight."""


class VaultLookupError(WorkflowRunError):
    """Raised when the vault cannot resolve documents for an import."""


class WorkflowInputError(WorkflowRunError):
    """Raised when required workflow inputs are missing."""

    def __init__(self, message: str, missing: Optional[list] = None):
        self.missing = missing or []
        super().__init__(message)


class RunCreationError(WorkflowRunError):
    """Raised when a run (or its document associations) could not be persisted."""


class RunNotFoundError(WorkflowRunError):
    """Raised when a run id does not exist."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Workflow run not found: {run_id}")


class RunTransitionError(WorkflowRunError):
    """Raised when an invalid status transition is attempted."""

    def __init__(self, message: str, current_status: str, target_status: str):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(message)


class StepExecutionError(WorkflowRunError):
    """Raised when a workflow step fails or exceeds its deadline."""

    def __init__(self, message: str, step_id: str):
        self.step_id = step_id
        super().__init__(message)
