"""
CPA Panel Workflow Run Routes

Endpoints for the workflow catalog, run submission and execution,
run status polling, deliverable export, and read-only vault browsing.
"""

import json
import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Request, HTTPException, Form, File, UploadFile
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .common import (
    format_error_response,
    format_success_response,
    get_tenant_id,
    get_vault,
    get_run_manager,
    get_notification_channel,
)

logger = logging.getLogger(__name__)

workflow_run_router = APIRouter(tags=["CPA Workflow Runs"])


# =============================================================================
# CATALOG
# =============================================================================

@workflow_run_router.get("/workflows")
async def list_workflow_definitions(include_drafts: bool = False):
    """List the workflows that can be run."""
    from cpa_panel.workflow.definitions import list_workflows

    workflows = list_workflows(include_drafts=include_drafts)
    return JSONResponse({
        "success": True,
        "workflows": [w.to_dict() for w in workflows],
        "count": len(workflows),
    })


@workflow_run_router.get("/workflows/{workflow_id}")
async def get_workflow_definition(workflow_id: str):
    from cpa_panel.workflow.definitions import get_workflow

    definition = get_workflow(workflow_id)
    if definition is None:
        raise HTTPException(status_code=404, detail=f"Workflow not found: {workflow_id}")
    return JSONResponse({"success": True, "workflow": definition.to_dict()})


# =============================================================================
# SUBMISSION
# =============================================================================

def _parse_json_field(value: str, name: str, expected: type):
    try:
        parsed = json.loads(value) if value else expected()
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail=f"{name} must be valid JSON")
    if not isinstance(parsed, expected):
        raise HTTPException(status_code=400, detail=f"{name} must be a JSON {expected.__name__}")
    return parsed


@workflow_run_router.post("/workflows/{workflow_id}/runs")
async def create_workflow_run(
    workflow_id: str,
    request: Request,
    run_by: str = Form(...),
    inputs: str = Form("{}"),
    vault_document_ids: str = Form("[]"),
    files: List[UploadFile] = File(default=[]),
):
    """
    Submit a workflow run (status INITIALIZING).

    Multipart form:
        - run_by: Submitting user (required)
        - inputs: JSON object of input id → answer
        - vault_document_ids: JSON list of vault document ids
        - files: Uploaded documents

    No run id is returned unless the run and all of its document
    associations were persisted.
    """
    from config.settings import get_workflow_settings
    from cpa_panel.workflow import (
        DocumentSelection,
        UploadedFile,
        RunCreationError,
        WorkflowInputError,
        get_workflow,
        validate_inputs,
    )

    definition = get_workflow(workflow_id)
    if definition is None:
        raise HTTPException(status_code=404, detail=f"Workflow not found: {workflow_id}")
    if not definition.is_runnable:
        raise HTTPException(status_code=400, detail=f"Workflow {workflow_id} is not active")

    answers = _parse_json_field(inputs, "inputs", dict)
    document_ids = _parse_json_field(vault_document_ids, "vault_document_ids", list)

    notifier = get_notification_channel()
    selection = DocumentSelection()

    max_bytes = get_workflow_settings().max_upload_bytes
    uploads = []
    for upload in files:
        data = await upload.read()
        if len(data) > max_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"{upload.filename} exceeds the {max_bytes} byte upload limit",
            )
        uploads.append(UploadedFile(
            name=upload.filename or "upload",
            data=data,
            content_type=upload.content_type or "application/octet-stream",
        ))
    selection.add_uploaded_files(uploads)

    imported = await selection.import_vault_selection(
        [str(i) for i in document_ids], get_vault(), notifier
    )
    if not imported.ok:
        return JSONResponse(
            {**format_error_response(imported.error, code="VAULT_LOOKUP_FAILED"),
             "notifications": [n.to_dict() for n in notifier.drain()]},
            status_code=500,
        )

    try:
        validate_inputs(definition, answers, selection.total_document_count())
    except WorkflowInputError as e:
        return JSONResponse(
            format_error_response(str(e), code="VALIDATION_ERROR", details={"missing": e.missing}),
            status_code=400,
        )

    payload = selection.to_payload()
    try:
        run, associations = get_run_manager().create_run(
            workflow_id=workflow_id,
            run_by=run_by,
            inputs=answers,
            payload=payload,
            tenant_id=get_tenant_id(request),
        )
    except RunCreationError as e:
        notifier.error("Failed to start workflow. Please try again.")
        return JSONResponse(
            {**format_error_response(str(e), code="RUN_CREATION_FAILED"),
             "notifications": [n.to_dict() for n in notifier.drain()]},
            status_code=500,
        )

    notifier.success(f"{definition.title} started")
    return JSONResponse(
        format_success_response({
            "run_id": run.id,
            "run": run.to_dict(),
            "selection": selection.to_dict(),
            "associations": [a.to_dict() for a in associations],
            "documents": payload.to_request_documents(),
            "notifications": [n.to_dict() for n in notifier.drain()],
        }),
        status_code=201,
    )


# =============================================================================
# EXECUTION
# =============================================================================

class ExecuteDocumentRef(BaseModel):
    """A document passed to execute."""
    id: str = Field(..., min_length=1, description="Vault document or project ID")
    name: str = Field("", description="Display name")
    type: Literal["file", "project"] = Field("file", description="file or project")


class ExecuteWorkflowRequest(BaseModel):
    """Request to execute a submitted run (camelCase JSON)."""
    model_config = ConfigDict(populate_by_name=True)

    run_id: str = Field(..., alias="runId", min_length=1, description="Run to execute")
    workflow_id: Optional[str] = Field(None, alias="workflowId")
    workflow_title: Optional[str] = Field(None, alias="workflowTitle")
    workflow_description: Optional[str] = Field(None, alias="workflowDescription")
    inputs: Optional[Dict[str, Any]] = Field(None, description="Input id → answer")
    documents: Optional[List[ExecuteDocumentRef]] = Field(
        None, description="Documents to process; the run's stored documents when omitted"
    )

    def to_execution_request(self):
        from cpa_panel.workflow import ExecutionRequest

        return ExecutionRequest(
            run_id=self.run_id,
            workflow_id=self.workflow_id or "",
            workflow_title=self.workflow_title or "",
            workflow_description=self.workflow_description or "",
            inputs=dict(self.inputs or {}),
            documents=[d.model_dump() for d in self.documents] if self.documents is not None else None,
        )


def _validation_details(error: ValidationError) -> List[Dict[str, str]]:
    return [
        {"field": ".".join(str(p) for p in e["loc"]) or "body", "message": e["msg"]}
        for e in error.errors()
    ]


@workflow_run_router.post("/workflow/execute")
async def execute_workflow(request: Request):
    """
    Execute a submitted run.

    Request body:
        - runId (required), workflowId, workflowTitle, workflowDescription
        - inputs: object of input id → answer
        - documents: optional [{id, name, type: "file" | "project"}]

    Responses:
        200 {success: true, steps, deliverable}
        200 {alreadyStarted: true, status, ...} for a run that was already
            executed; success is true only if that run completed, and a
            failed run carries its error
        400 {success: false, error, details} for a malformed body; the run is untouched
        500 {success: false, error}; the run is marked failed
    """
    from cpa_panel.workflow import RunNotFoundError

    try:
        body = await request.json()
    except Exception:
        body = {}
    if not isinstance(body, dict) or not body.get("runId"):
        raise HTTPException(status_code=400, detail="runId is required")

    try:
        execution = ExecuteWorkflowRequest.model_validate(body).to_execution_request()
    except ValidationError as e:
        return JSONResponse(
            format_error_response(
                "Invalid execute request", code="VALIDATION_ERROR",
                details={"errors": _validation_details(e)},
            ),
            status_code=400,
        )

    logger.info(
        f"Starting workflow execution: run={execution.run_id} workflow={execution.workflow_id} "
        f"documents={len(execution.documents) if execution.documents is not None else 'stored'}"
    )

    try:
        outcome = await get_run_manager().execute(execution)
    except RunNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Workflow execution error for run {execution.run_id}: {e}")
        return JSONResponse(format_error_response(str(e), code="EXECUTION_FAILED"), status_code=500)

    return JSONResponse(outcome.to_response())


@workflow_run_router.post("/workflow/plan")
async def plan_workflow_steps(request: Request):
    """Plan step names from {workflowTitle, workflowDescription}."""
    try:
        body = await request.json()
    except Exception:
        body = {}

    title = body.get("workflowTitle")
    if not title:
        raise HTTPException(status_code=400, detail="workflowTitle is required")

    try:
        steps = await get_run_manager().plan_steps(title, body.get("workflowDescription", ""))
    except Exception as e:
        logger.error(f"Error in workflow planning: {e}")
        return JSONResponse({"error": "Failed to plan workflow steps"}, status_code=500)
    return JSONResponse({"steps": steps})


@workflow_run_router.post("/workflow/runs/reap-stale")
async def reap_stale_runs(request: Request):
    """Fail runs stuck before a terminal status (watchdog trigger)."""
    try:
        body = await request.json()
    except Exception:
        body = {}

    max_age = body.get("max_age_minutes") if isinstance(body, dict) else None
    if max_age is not None and (not isinstance(max_age, int) or max_age < 0):
        raise HTTPException(status_code=400, detail="max_age_minutes must be a non-negative integer")

    failed = get_run_manager().fail_stale_runs(max_age)
    return JSONResponse({"success": True, "failed_run_ids": failed, "count": len(failed)})


# =============================================================================
# RUN STATUS
# =============================================================================

@workflow_run_router.get("/workflow/runs")
async def list_workflow_runs(
    request: Request,
    workflow_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
):
    from cpa_panel.workflow import RunStatus

    run_status = None
    if status:
        try:
            run_status = RunStatus.from_string(status)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid status: {status}")

    runs = get_run_manager().list_runs(
        tenant_id=get_tenant_id(request),
        workflow_id=workflow_id,
        status=run_status,
        limit=max(1, min(limit, 200)),
        offset=max(0, offset),
    )
    return JSONResponse({
        "success": True,
        "runs": [r.to_dict() for r in runs],
        "count": len(runs),
    })


@workflow_run_router.get("/workflow/runs/{run_id}")
async def get_workflow_run(run_id: str):
    """Current state of a run (polled by the run view)."""
    from cpa_panel.workflow import RunNotFoundError

    try:
        run = get_run_manager().get_run(run_id)
    except RunNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return JSONResponse({"success": True, "run": run.to_dict()})


@workflow_run_router.get("/workflow/runs/{run_id}/documents")
async def get_workflow_run_documents(run_id: str):
    from cpa_panel.workflow import RunNotFoundError

    manager = get_run_manager()
    try:
        manager.get_run(run_id)
    except RunNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    documents = manager.get_run_documents(run_id)
    return JSONResponse({"success": True, "run_id": run_id, "documents": documents})


@workflow_run_router.get("/workflow/deliverable")
async def get_workflow_deliverable(runId: Optional[str] = None, format: str = "pdf"):
    """Download a completed run's deliverable as PDF or JSON."""
    from cpa_panel.workflow import RunNotFoundError
    from cpa_panel.workflow.definitions import get_workflow
    from cpa_panel.workflow.deliverable_pdf import (
        deliverable_filename,
        deliverable_json,
        get_deliverable_pdf_generator,
    )

    if not runId:
        raise HTTPException(status_code=400, detail="Run ID required")
    if format not in ("pdf", "json"):
        raise HTTPException(status_code=400, detail="format must be 'pdf' or 'json'")

    try:
        run = get_run_manager().get_run(runId)
    except RunNotFoundError:
        raise HTTPException(status_code=404, detail="Workflow run not found")
    if run.deliverable is None:
        raise HTTPException(status_code=404, detail="No deliverable available")

    definition = get_workflow(run.workflow_id)
    workflow_title = definition.title if definition else None

    if format == "json":
        return JSONResponse(deliverable_json(run, workflow_title))

    try:
        pdf_bytes = get_deliverable_pdf_generator().generate_pdf(run, workflow_title)
    except Exception as e:
        logger.error(f"Error generating deliverable PDF for {runId}: {e}")
        return JSONResponse(format_error_response("Failed to generate deliverable"), status_code=500)

    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{deliverable_filename(run)}"'},
    )


# =============================================================================
# VAULT (READ-ONLY)
# =============================================================================

@workflow_run_router.get("/vault/documents")
async def list_vault_documents(owner_id: Optional[str] = None):
    documents = get_vault().list_documents(owner_id)
    return JSONResponse({"success": True, "documents": [d.to_dict() for d in documents]})


@workflow_run_router.get("/vault/projects")
async def list_vault_projects():
    projects = get_vault().list_projects()
    return JSONResponse({"success": True, "projects": [p.to_dict() for p in projects]})


@workflow_run_router.get("/vault/projects/{project_id}/documents")
async def list_vault_project_documents(project_id: str):
    documents = get_vault().get_documents_for_project(project_id)
    return JSONResponse({
        "success": True,
        "project_id": project_id,
        "documents": [d.to_dict() for d in documents],
    })
