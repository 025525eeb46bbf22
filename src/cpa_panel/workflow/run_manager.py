"""
Workflow Run Manager

Owns every write to a workflow run once it exists:
- create_run: uploads stored in the vault, then run row + document
  associations persisted as one unit (status INITIALIZING)
- execute: INITIALIZING → RUNNING (compare-and-swap), steps executed one at
  a time, then RUNNING → COMPLETED with steps and deliverable
- mark_failed: best-effort RUNNING/INITIALIZING → FAILED
- fail_stale_runs: watchdog for runs orphaned before reaching a terminal status

COMPLETED and FAILED are terminal. A redundant execute never re-runs steps.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List, Callable, Tuple

from services.logging_config import RunAuditLogger, run_id_var

from .definitions import get_workflow, DEFAULT_STEPS, WorkflowStepDefinition
from .exceptions import (
    WorkflowRunError,
    RunCreationError,
    RunNotFoundError,
    RunTransitionError,
    StepExecutionError,
)
from .run_models import (
    WorkflowRun,
    WorkflowStep,
    Deliverable,
    RunDocumentAssociation,
    RunStatus,
    StepStatus,
    can_transition,
    utc_now,
)
from .selection import SelectionPayload

logger = logging.getLogger(__name__)

DEFAULT_RECOMMENDATIONS = [
    "Review the generated output",
    "Validate the results against your requirements",
    "Consider next steps based on the workflow outcome",
]


@dataclass
class ExecutionRequest:
    """Body of an execute call."""
    run_id: str
    workflow_id: str
    workflow_title: str = ""
    workflow_description: str = ""
    inputs: Dict[str, Any] = field(default_factory=dict)
    documents: Optional[List[Dict[str, Any]]] = None


@dataclass
class ExecutionOutcome:
    """Result of an execute call."""
    run: WorkflowRun
    already_started: bool = False

    @property
    def succeeded(self) -> bool:
        return self.run.status == RunStatus.COMPLETED

    def to_response(self) -> Dict[str, Any]:
        """
        JSON body of the execute endpoint.

        success is true only for a COMPLETED run; a FAILED run carries its error.
        """
        response = {
            "success": self.succeeded,
            "runId": self.run.id,
            "status": self.run.status.value,
            "steps": [s.to_dict() for s in self.run.steps],
            "deliverable": self.run.deliverable.to_dict() if self.run.deliverable else None,
        }
        if self.run.status == RunStatus.FAILED:
            response["error"] = self.run.error or "Workflow run failed"
        if self.already_started:
            response["alreadyStarted"] = True
            response["message"] = f"Workflow run already {self.run.status.value}"
        else:
            response["message"] = "Workflow executed successfully"
        return response


class WorkflowRunManager:
    """
    Lifecycle manager for workflow runs.

    Args:
        persistence: WorkflowRunPersistence (default singleton)
        vault: VaultPersistence (default singleton)
        narrator: StepNarrator producing each step's reasoning
        step_timeout_seconds: Deadline per step (0 or None disables)
        stale_run_minutes: Default age for fail_stale_runs
        clock: Returns the current aware UTC datetime
    """

    def __init__(
        self,
        persistence=None,
        vault=None,
        narrator=None,
        step_timeout_seconds: Optional[float] = None,
        stale_run_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._persistence = persistence
        self._vault = vault
        self._narrator = narrator
        self._clock = clock

        if step_timeout_seconds is None or stale_run_minutes is None:
            from config.settings import get_workflow_settings
            settings = get_workflow_settings()
            if step_timeout_seconds is None:
                step_timeout_seconds = settings.step_timeout_seconds
            if stale_run_minutes is None:
                stale_run_minutes = settings.stale_run_minutes
        self.step_timeout_seconds = step_timeout_seconds
        self.stale_run_minutes = stale_run_minutes

    def _get_persistence(self):
        if self._persistence is None:
            from database.workflow_run_persistence import get_workflow_run_persistence
            self._persistence = get_workflow_run_persistence()
        return self._persistence

    def _get_vault(self):
        if self._vault is None:
            from database.vault_persistence import get_vault_persistence
            self._vault = get_vault_persistence()
        return self._vault

    def _get_narrator(self):
        if self._narrator is None:
            from config.settings import get_workflow_settings
            from services.ai.step_narration import get_step_narrator
            self._narrator = get_step_narrator(get_workflow_settings().use_ai_narration)
        return self._narrator

    # =========================================================================
    # CREATE (→ INITIALIZING)
    # =========================================================================

    def create_run(
        self,
        workflow_id: str,
        run_by: str,
        inputs: Dict[str, Any],
        payload: SelectionPayload,
        tenant_id: str = "default",
    ) -> Tuple[WorkflowRun, List[RunDocumentAssociation]]:
        """
        Persist a new run in INITIALIZING with one association per document.

        Uploads are stored in the vault first so every association points at
        a vault document. The run row and all associations are written in a
        single transaction. If that fails the stored uploads are deleted again
        and the payload's uploads are left without a document id.

        Returns:
            (run, associations)

        Raises:
            RunCreationError: If anything could not be persisted; no run exists
        """
        vault = self._get_vault()
        persistence = self._get_persistence()

        stored_refs = []
        try:
            for ref in payload.uploads:
                stored = vault.store_upload(
                    name=ref.upload.name,
                    data=ref.upload.data,
                    content_type=ref.upload.content_type,
                    owner_id=run_by,
                )
                ref.document_id = stored.id
                stored_refs.append(ref)

            now = self._clock()
            run = WorkflowRun(
                workflow_id=workflow_id,
                run_by=run_by,
                tenant_id=tenant_id,
                inputs=dict(inputs),
                created_at=now,
                last_updated=now,
            )
            rows = payload.association_rows()
            persistence.create_run(run.to_dict(), rows)
        except Exception as e:
            logger.error(f"Failed to start workflow {workflow_id} for {run_by}: {e}")
            self._discard_uploads(stored_refs)
            raise RunCreationError(f"Failed to start workflow run: {e}") from e

        associations = [
            RunDocumentAssociation(run_id=run.id, document_id=r["document_id"], project_id=r["project_id"])
            for r in rows
        ]
        RunAuditLogger(run.id, workflow_id).status_changed(
            "none", RunStatus.INITIALIZING.value, document_count=len(associations)
        )
        return run, associations

    def _discard_uploads(self, refs) -> None:
        """Delete uploads stored for a run that was never created."""
        if not refs:
            return
        ids = [ref.document_id for ref in refs]
        for ref in refs:
            ref.document_id = None
        try:
            self._get_vault().delete_documents(ids)
        except Exception as e:
            logger.error(f"Failed to remove {len(ids)} orphaned uploads {ids}: {e}")

    # =========================================================================
    # EXECUTE (INITIALIZING → RUNNING → COMPLETED | FAILED)
    # =========================================================================

    async def execute(self, request: ExecutionRequest) -> ExecutionOutcome:
        """
        Execute a run.

        A run that is already RUNNING, COMPLETED or FAILED is returned as is
        with already_started=True. Of two concurrent calls only one moves
        the run to RUNNING.

        Raises:
            RunNotFoundError: Unknown run id
            StepExecutionError: A step raised or exceeded its deadline
            WorkflowRunError: A status write failed
        """
        token = run_id_var.set(request.run_id)
        try:
            return await self._execute(request)
        finally:
            run_id_var.reset(token)

    async def _execute(self, request: ExecutionRequest) -> ExecutionOutcome:
        # Store calls can wait on sqlite locks; they run in worker threads.
        persistence = self._get_persistence()
        run = await asyncio.to_thread(self.get_run, request.run_id)

        if run.status != RunStatus.INITIALIZING:
            logger.info(f"Execute ignored for run {run.id}: already {run.status.value}")
            return ExecutionOutcome(run=run, already_started=True)

        if request.workflow_id and request.workflow_id != run.workflow_id:
            logger.warning(
                f"Execute request workflow {request.workflow_id} does not match "
                f"run {run.id} workflow {run.workflow_id}; using the run's workflow"
            )

        audit = RunAuditLogger(run.id, run.workflow_id)
        started_at = self._clock()
        try:
            accepted = await asyncio.to_thread(
                persistence.update_run,
                run.id,
                expected_statuses=[RunStatus.INITIALIZING.value],
                status=RunStatus.RUNNING.value,
                last_updated=started_at.isoformat(),
            )
        except Exception as e:
            logger.error(f"Error updating workflow run {run.id} status: {e}")
            await asyncio.to_thread(self.mark_failed, run.id, str(e), RunStatus.INITIALIZING)
            raise WorkflowRunError("Failed to update workflow run status") from e

        if not accepted:
            current = await asyncio.to_thread(self.get_run, run.id)
            logger.info(f"Execute lost race for run {run.id}: now {current.status.value}")
            return ExecutionOutcome(run=current, already_started=True)

        audit.status_changed(RunStatus.INITIALIZING.value, RunStatus.RUNNING.value)

        try:
            documents = request.documents
            if documents is None:
                stored = await asyncio.to_thread(self.get_run_documents, run.id)
                documents = [
                    {"id": d["document_id"], "name": d.get("name") or d["document_id"], "type": "file"}
                    for d in stored
                ]
            title = request.workflow_title or self._default_title(run.workflow_id)

            steps = await self._run_steps(run, request, title, documents, started_at, audit)
            deliverable = self._build_deliverable(title, request.workflow_description, documents, steps)
            completed_at = max(self._clock(), steps[-1].end_time) if steps else self._clock()

            try:
                completed = await asyncio.to_thread(
                    persistence.update_run,
                    run.id,
                    expected_statuses=[RunStatus.RUNNING.value],
                    status=RunStatus.COMPLETED.value,
                    steps=[s.to_dict() for s in steps],
                    deliverable=deliverable.to_dict(),
                    completed_at=completed_at.isoformat(),
                    last_updated=completed_at.isoformat(),
                )
            except Exception as e:
                logger.error(f"Error completing workflow run {run.id}: {e}")
                raise WorkflowRunError("Failed to complete workflow run") from e

            if not completed:
                current = await asyncio.to_thread(self.get_run, run.id)
                raise RunTransitionError(
                    f"Run {run.id} left running state during execution ({current.status.value})",
                    current.status.value,
                    RunStatus.COMPLETED.value,
                )
        except Exception as e:
            await asyncio.to_thread(self.mark_failed, run.id, str(e), RunStatus.RUNNING)
            audit.execution_finished(RunStatus.FAILED.value)
            raise

        audit.status_changed(RunStatus.RUNNING.value, RunStatus.COMPLETED.value)
        audit.execution_finished(RunStatus.COMPLETED.value)
        return ExecutionOutcome(run=await asyncio.to_thread(self.get_run, run.id))

    def _default_title(self, workflow_id: str) -> str:
        definition = get_workflow(workflow_id)
        return definition.title if definition else workflow_id

    def _step_plan(self, workflow_id: str) -> List[WorkflowStepDefinition]:
        definition = get_workflow(workflow_id)
        if definition is None:
            return list(DEFAULT_STEPS)
        return definition.execution_steps()

    async def _run_step(self, coro):
        if not self.step_timeout_seconds:
            return await coro
        return await asyncio.wait_for(coro, timeout=self.step_timeout_seconds)

    async def _run_steps(
        self,
        run: WorkflowRun,
        request: ExecutionRequest,
        title: str,
        documents: List[Dict[str, Any]],
        not_before: datetime,
        audit: RunAuditLogger,
    ) -> List[WorkflowStep]:
        """Execute the step plan strictly in order; no step starts before the previous ended."""
        from services.ai.step_narration import StepContext

        narrator = self._get_narrator()
        plan = self._step_plan(run.workflow_id)
        inputs = request.inputs or run.inputs
        audit.execution_started(len(plan), len(documents))

        steps: List[WorkflowStep] = []
        previous_end = not_before
        for definition in plan:
            step = WorkflowStep(
                id=definition.id,
                name=definition.name,
                description=definition.description,
                status=StepStatus.RUNNING,
                start_time=max(self._clock(), previous_end),
            )
            context = StepContext(
                workflow_title=title,
                workflow_description=request.workflow_description,
                step_id=step.id,
                step_name=step.name,
                step_description=step.description,
                inputs=inputs,
                documents=documents,
                previous_reasoning=[s.reasoning for s in steps if s.reasoning],
            )

            started = audit.step_started(step.id, step.name)
            try:
                reasoning = await self._run_step(narrator.narrate(context))
            except asyncio.TimeoutError:
                message = f"Step '{step.name}' timed out after {self.step_timeout_seconds}s"
                audit.step_failed(step.id, step.name, message)
                raise StepExecutionError(message, step.id) from None
            except Exception as e:
                audit.step_failed(step.id, step.name, str(e))
                raise StepExecutionError(f"Step '{step.name}' failed: {e}", step.id) from e

            step.reasoning = reasoning
            step.status = StepStatus.COMPLETED
            step.end_time = max(self._clock(), step.start_time)
            audit.step_completed(step.id, step.name, started)

            steps.append(step)
            previous_end = step.end_time
        return steps

    def _build_deliverable(
        self,
        title: str,
        description: str,
        documents: List[Dict[str, Any]],
        steps: List[WorkflowStep],
    ) -> Deliverable:
        step_lines = "\n".join(f"{i}. {s.name}: {s.reasoning}" for i, s in enumerate(steps, start=1))
        content = (
            f"This is the result of executing the {title} workflow.\n\n"
            f"Workflow Description: {description}\n\n"
            f"Documents processed: {len(documents)}\n\n"
            f"Steps performed:\n{step_lines}\n\n"
            "The workflow has been completed successfully with the provided inputs and documents."
        )
        return Deliverable(
            title=f"{title} - Results",
            content=content,
            summary=f"Successfully executed {title} workflow",
            recommendations=list(DEFAULT_RECOMMENDATIONS),
            attachments=[],
        )

    # =========================================================================
    # FAILURE
    # =========================================================================

    def mark_failed(
        self,
        run_id: str,
        error: str,
        previous: Optional[RunStatus] = None,
    ) -> bool:
        """
        Best-effort transition to FAILED.

        Never raises: a failed write is logged so the error that triggered it
        keeps propagating.

        Returns:
            True if the run was marked failed by this call
        """
        try:
            marked = self._get_persistence().update_run(
                run_id,
                expected_statuses=[RunStatus.INITIALIZING.value, RunStatus.RUNNING.value],
                status=RunStatus.FAILED.value,
                error=error,
                last_updated=self._clock().isoformat(),
            )
        except Exception as e:
            logger.error(f"Failed to mark workflow run {run_id} as failed: {e}")
            return False

        if marked:
            RunAuditLogger(run_id).status_changed(
                previous.value if previous else "unknown", RunStatus.FAILED.value, error=error
            )
        else:
            logger.warning(f"Run {run_id} not marked failed: already terminal or missing")
        return marked

    def fail_stale_runs(self, max_age_minutes: Optional[int] = None) -> List[str]:
        """
        Fail runs stuck in INITIALIZING or RUNNING longer than max_age_minutes.

        Returns:
            Ids of the runs that were failed
        """
        minutes = max_age_minutes if max_age_minutes is not None else self.stale_run_minutes
        cutoff = self._clock() - timedelta(minutes=minutes)
        records = self._get_persistence().list_runs(
            tenant_id=None,
            statuses=[RunStatus.INITIALIZING.value, RunStatus.RUNNING.value],
            updated_before=cutoff.isoformat(),
            limit=1000,
        )

        failed = []
        for record in records:
            previous = RunStatus.from_string(record["status"])
            if not can_transition(previous, RunStatus.FAILED):
                continue
            message = f"Run exceeded {minutes} minutes without completing"
            if self.mark_failed(record["id"], message, previous=previous):
                failed.append(record["id"])

        if failed:
            logger.warning(f"Failed {len(failed)} stale workflow runs: {failed}")
        return failed

    # =========================================================================
    # READ
    # =========================================================================

    def get_run(self, run_id: str) -> WorkflowRun:
        record = self._get_persistence().load_run(run_id)
        if not record:
            raise RunNotFoundError(run_id)
        return WorkflowRun.from_record(record)

    def list_runs(
        self,
        tenant_id: str = "default",
        workflow_id: Optional[str] = None,
        status: Optional[RunStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[WorkflowRun]:
        records = self._get_persistence().list_runs(
            tenant_id=tenant_id,
            workflow_id=workflow_id,
            statuses=[status.value] if status else None,
            limit=limit,
            offset=offset,
        )
        return [WorkflowRun.from_record(r) for r in records]

    def get_run_documents(self, run_id: str) -> List[Dict[str, Any]]:
        """Association rows of a run joined with their vault document records."""
        associations = self._get_persistence().load_associations(run_id)
        vault = self._get_vault()
        documents = {d.id: d for d in vault.get_documents(a["document_id"] for a in associations)}

        results = []
        for association in associations:
            document = documents.get(association["document_id"])
            entry = dict(association)
            entry.update(document.to_dict() if document else {"name": None})
            entry["document_id"] = association["document_id"]
            entry.pop("id", None)
            results.append(entry)
        return results

    async def plan_steps(self, workflow_title: str, workflow_description: str) -> List[Dict[str, Any]]:
        """Step names for a workflow from its title and description."""
        from services.ai.step_narration import StepPlanner
        from services.ai.unified_ai_service import get_ai_service

        planner = StepPlanner(get_ai_service())
        steps = await planner.plan(workflow_title, workflow_description)
        return [s.to_dict() for s in steps]
