"""
CPA Panel API Router

Aggregates the CPA panel routers into a single API.

Domain Routers:
- workflow_run_routes: Workflow catalog, run submission, execution,
  status polling, deliverables, vault browsing

All endpoints are prefixed with /api/cpa when included in the main app.
"""

from fastapi import APIRouter
import logging

from .workflow_run_routes import workflow_run_router

logger = logging.getLogger(__name__)

cpa_router = APIRouter(prefix="/cpa", tags=["CPA Panel"])
cpa_router.include_router(workflow_run_router)


@cpa_router.get("/health")
async def cpa_health_check():
    """CPA Panel health check endpoint."""
    return {
        "status": "healthy",
        "module": "cpa_panel",
        "routes": {
            "workflow_runs": "active",
        },
    }
