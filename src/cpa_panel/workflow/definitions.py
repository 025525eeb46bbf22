"""
Workflow Definitions

Catalog of the guided tax workflows a CPA can run. A definition lists the
inputs collected before a run and, optionally, the steps it executes.
Workflows without their own step list execute DEFAULT_STEPS.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any

from .exceptions import WorkflowInputError

logger = logging.getLogger(__name__)


class WorkflowInputType(str, Enum):
    DOCUMENT_UPLOAD = "document_upload"
    SELECT = "select"
    TEXT = "text"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    DATE = "date"
    CLIENT_SELECT = "client_select"


class WorkflowStatus(str, Enum):
    ACTIVE = "active"
    DRAFT = "draft"
    NOT_STARTED = "not_started"


@dataclass
class WorkflowInput:
    id: str
    type: WorkflowInputType
    label: str = ""
    description: str = ""
    required: bool = False
    options: List[Dict[str, str]] = field(default_factory=list)
    accepted_file_types: List[str] = field(default_factory=list)
    multiple: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "label": self.label,
            "description": self.description,
            "required": self.required,
            "options": self.options,
            "accepted_file_types": self.accepted_file_types,
            "multiple": self.multiple,
        }


@dataclass
class WorkflowStepDefinition:
    id: str
    name: str
    description: str = ""
    order_index: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "order_index": self.order_index,
        }


@dataclass
class WorkflowDefinition:
    """A named multi-step guided task."""
    id: str
    title: str
    description: str
    category: str
    status: WorkflowStatus = WorkflowStatus.ACTIVE
    inputs: List[WorkflowInput] = field(default_factory=list)
    steps: List[WorkflowStepDefinition] = field(default_factory=list)

    @property
    def slug(self) -> str:
        return self.id

    @property
    def is_runnable(self) -> bool:
        return self.status == WorkflowStatus.ACTIVE

    def execution_steps(self) -> List[WorkflowStepDefinition]:
        """Steps to execute, in order; DEFAULT_STEPS when none are defined."""
        if not self.steps:
            return list(DEFAULT_STEPS)
        return sorted(self.steps, key=lambda s: s.order_index)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "slug": self.slug,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "status": self.status.value,
            "inputs": [i.to_dict() for i in self.inputs],
            "steps": [s.to_dict() for s in self.execution_steps()],
        }


DEFAULT_STEPS = [
    WorkflowStepDefinition(id="1", name="Document Analysis",
                           description="Analyzing uploaded documents", order_index=1),
    WorkflowStepDefinition(id="2", name="Processing",
                           description="Processing workflow logic", order_index=2),
    WorkflowStepDefinition(id="3", name="Generate Output",
                           description="Creating deliverable", order_index=3),
]


def _documents_input(*accepted: str, multiple: bool = True) -> WorkflowInput:
    return WorkflowInput(
        id="documents",
        type=WorkflowInputType.DOCUMENT_UPLOAD,
        label="Upload Documents",
        required=True,
        accepted_file_types=list(accepted),
        multiple=multiple,
    )


def _client_input() -> WorkflowInput:
    return WorkflowInput(
        id="client",
        type=WorkflowInputType.CLIENT_SELECT,
        label="Which client is this for?",
        required=True,
    )


def _context_input() -> WorkflowInput:
    return WorkflowInput(id="context", type=WorkflowInputType.TEXT, label="Additional context")


def _steps(*names: str) -> List[WorkflowStepDefinition]:
    return [
        WorkflowStepDefinition(id=str(index), name=name, order_index=index)
        for index, name in enumerate(names, start=1)
    ]


WORKFLOW_CATALOG: List[WorkflowDefinition] = [
    WorkflowDefinition(
        id="1040",
        title="1040 tax return",
        description="Prepare and file individual federal income tax returns with "
                    "automated calculations and compliance checks.",
        category="Personal income tax",
        inputs=[
            _documents_input(".pdf", ".jpg", ".png"),
            _client_input(),
            WorkflowInput(
                id="tax-year",
                type=WorkflowInputType.SELECT,
                label="Tax Year",
                required=True,
                options=[{"label": y, "value": y} for y in ("2025", "2024", "2023")],
            ),
            _context_input(),
        ],
    ),
    WorkflowDefinition(
        id="sales-tax-vda",
        title="Sales tax VDA",
        description="Submit voluntary disclosure agreements to resolve past sales tax "
                    "liabilities with reduced penalties.",
        category="Sales tax",
        inputs=[
            _documents_input(".xlsx", ".csv", multiple=False),
            _client_input(),
            WorkflowInput(
                id="states",
                type=WorkflowInputType.SELECT,
                label="What state is this for?",
                required=True,
                options=[
                    {"label": "California", "value": "CA"},
                    {"label": "New York", "value": "NY"},
                    {"label": "Texas", "value": "TX"},
                ],
            ),
            _context_input(),
        ],
        steps=_steps(
            "Review sales tax returns",
            "Analyze exemption certificates",
            "Assess sales records",
            "Prepare supporting documentation",
            "Submit VDA",
            "Document compliance",
            "Assess penalties",
        ),
    ),
    WorkflowDefinition(
        id="sales-tax-study",
        title="Sales tax nexus study",
        description="Evaluate multi-state sales tax obligations based on economic and "
                    "physical presence thresholds.",
        category="Sales tax",
        inputs=[
            _documents_input(".pdf", ".xlsx", ".csv"),
            _client_input(),
            WorkflowInput(
                id="business-activities",
                type=WorkflowInputType.CHECKBOX,
                label="Business activities",
                required=True,
                multiple=True,
                options=[
                    {"label": "Remote sales", "value": "remote_sales"},
                    {"label": "Marketplace sales", "value": "marketplace"},
                    {"label": "Employees in other states", "value": "remote_employees"},
                    {"label": "Inventory in other states", "value": "inventory"},
                ],
            ),
            _context_input(),
        ],
        steps=_steps(
            "Review revenue data",
            "Analyze business activities",
            "Assess economic nexus",
            "Evaluate physical presence",
            "Document findings",
            "Assess compliance requirements",
        ),
    ),
    WorkflowDefinition(
        id="personal-income-tax-review",
        title="Personal income tax return review",
        description="Review individual tax returns for accuracy, missed deductions, and "
                    "potential audit triggers.",
        category="Personal income tax",
        inputs=[
            _documents_input(".pdf"),
            _client_input(),
            WorkflowInput(
                id="review-years",
                type=WorkflowInputType.RADIO,
                label="How many years should be reviewed?",
                required=True,
                options=[
                    {"label": "Current year only", "value": "1"},
                    {"label": "Last 3 years", "value": "3"},
                ],
            ),
            _context_input(),
        ],
        steps=_steps(
            "Initial document review",
            "Identify potential issues",
            "Review deductions",
            "Check calculations",
            "Assess audit risk",
            "Document findings",
            "Prepare recommendations",
        ),
    ),
    WorkflowDefinition(
        id="rd-credit",
        title="R&D credit analysis",
        description="Calculate federal and state R&D tax credits by analyzing qualified "
                    "research activities and expenses.",
        category="R&D tax credits",
        status=WorkflowStatus.DRAFT,
        inputs=[_documents_input(".pdf", ".xlsx", ".doc", ".docx"), _client_input(), _context_input()],
        steps=_steps(
            "Identifying qualifying research activities",
            "Gathering project documentation",
            "Analyzing qualified research expenses",
            "Calculating wage expenses",
            "Evaluating supply costs",
            "Computing contract research expenses",
            "Preparing credit calculations",
            "Documenting findings and support",
        ),
    ),
]

_CATALOG_BY_ID = {w.id: w for w in WORKFLOW_CATALOG}


def list_workflows(include_drafts: bool = False) -> List[WorkflowDefinition]:
    if include_drafts:
        return list(WORKFLOW_CATALOG)
    return [w for w in WORKFLOW_CATALOG if w.is_runnable]


def get_workflow(workflow_id: str) -> Optional[WorkflowDefinition]:
    return _CATALOG_BY_ID.get(workflow_id)


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def validate_inputs(definition: WorkflowDefinition, inputs: Dict[str, Any], document_count: int) -> None:
    """
    Check that every required input has an answer.

    Document upload inputs are answered by the document selection, not by
    the inputs mapping.

    Raises:
        WorkflowInputError: Listing the missing input ids
    """
    missing = []
    for field_def in definition.inputs:
        if not field_def.required:
            continue
        if field_def.type == WorkflowInputType.DOCUMENT_UPLOAD:
            if document_count == 0:
                missing.append(field_def.id)
        elif _is_blank(inputs.get(field_def.id)):
            missing.append(field_def.id)

    if missing:
        logger.info(f"Workflow {definition.id} submission missing inputs: {missing}")
        raise WorkflowInputError(f"Missing required inputs: {', '.join(missing)}", missing=missing)
