"""
Workflow Run Models

Data models for workflow runs:
- INITIALIZING: Run row and document associations persisted, not yet accepted
- RUNNING: Execute request accepted, steps executing
- COMPLETED: All steps executed, deliverable written (terminal)
- FAILED: A step or the completion write raised (terminal)
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any
from uuid import uuid4


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class RunStatus(str, Enum):
    """Lifecycle status of a workflow run."""
    INITIALIZING = "initializing"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def from_string(cls, value: str) -> "RunStatus":
        """Convert a stored string to RunStatus (case-insensitive)."""
        return cls(value.lower())

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class StepStatus(str, Enum):
    """Status of a single executed step."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED})

# Forward-only transitions; terminal statuses have none.
VALID_TRANSITIONS: Dict[RunStatus, List[RunStatus]] = {
    RunStatus.INITIALIZING: [RunStatus.RUNNING, RunStatus.FAILED],
    RunStatus.RUNNING: [RunStatus.COMPLETED, RunStatus.FAILED],
    RunStatus.COMPLETED: [],
    RunStatus.FAILED: [],
}


def can_transition(current: RunStatus, target: RunStatus) -> bool:
    """Check whether current → target is an allowed transition."""
    return target in VALID_TRANSITIONS.get(current, [])


@dataclass
class WorkflowStep:
    """One executed step of a workflow run."""
    id: str
    name: str
    description: str = ""
    status: StepStatus = StepStatus.PENDING
    reasoning: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "reasoning": self.reasoning,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowStep":
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            description=data.get("description", ""),
            status=StepStatus(data.get("status", StepStatus.PENDING.value)),
            reasoning=data.get("reasoning"),
            start_time=_parse_dt(data.get("start_time")),
            end_time=_parse_dt(data.get("end_time")),
        )


@dataclass
class Deliverable:
    """Synthesized output of a completed run."""
    title: str
    content: str
    summary: str
    recommendations: List[str] = field(default_factory=list)
    attachments: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "content": self.content,
            "summary": self.summary,
            "recommendations": list(self.recommendations),
            "attachments": list(self.attachments),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Deliverable":
        return cls(
            title=data.get("title", ""),
            content=data.get("content", ""),
            summary=data.get("summary", ""),
            recommendations=list(data.get("recommendations") or []),
            attachments=list(data.get("attachments") or []),
        )


@dataclass
class RunDocumentAssociation:
    """Link between a run and a vault document."""
    run_id: str
    document_id: str
    project_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "document_id": self.document_id,
            "project_id": self.project_id,
        }


@dataclass
class WorkflowRun:
    """
    One execution instance of a workflow.

    Mutated only by the run manager through the transitions in
    VALID_TRANSITIONS; never deleted by the service.
    """
    workflow_id: str
    run_by: str
    id: str = field(default_factory=lambda: str(uuid4()))
    tenant_id: str = "default"
    status: RunStatus = RunStatus.INITIALIZING
    inputs: Dict[str, Any] = field(default_factory=dict)
    steps: List[WorkflowStep] = field(default_factory=list)
    deliverable: Optional[Deliverable] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    last_updated: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    version: int = 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API response."""
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "run_by": self.run_by,
            "tenant_id": self.tenant_id,
            "status": self.status.value,
            "inputs": self.inputs,
            "steps": [s.to_dict() for s in self.steps],
            "deliverable": self.deliverable.to_dict() if self.deliverable else None,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "last_updated": self.last_updated.isoformat(),
            "completed_at": _iso(self.completed_at),
            "version": self.version,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "WorkflowRun":
        """Build a run from a persistence record (JSON columns already decoded)."""
        deliverable = record.get("deliverable")
        return cls(
            id=record["id"],
            workflow_id=record["workflow_id"],
            run_by=record["run_by"],
            tenant_id=record.get("tenant_id") or "default",
            status=RunStatus.from_string(record["status"]),
            inputs=record.get("inputs") or {},
            steps=[WorkflowStep.from_dict(s) for s in record.get("steps") or []],
            deliverable=Deliverable.from_dict(deliverable) if deliverable else None,
            error=record.get("error"),
            created_at=_parse_dt(record["created_at"]),
            last_updated=_parse_dt(record["last_updated"]),
            completed_at=_parse_dt(record.get("completed_at")),
            version=record.get("version") or 1,
        )
