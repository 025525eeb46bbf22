"""
Common utilities for CPA Panel API routes.

Response envelopes, request/tenant helpers and the shared service instances
used by the workflow run routes.
"""

from typing import Dict, Any, Optional
from datetime import datetime, timezone
import logging
import uuid

logger = logging.getLogger(__name__)


# =============================================================================
# RESPONSE FORMATTING
# =============================================================================

def format_error_response(
    message: str,
    code: str = "WORKFLOW_ERROR",
    details: Optional[Dict] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """Standard failure envelope: {"success": false, "error": message, ...}."""
    response = {
        "success": False,
        "error": message,
        "code": code,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if details:
        response["details"] = details
    if request_id:
        response["request_id"] = request_id
    return response


def format_success_response(data: Dict[str, Any], request_id: Optional[str] = None) -> Dict[str, Any]:
    """Standard success envelope."""
    response = {"success": True, **data}
    if request_id:
        response["request_id"] = request_id
    return response


def generate_request_id() -> str:
    """Generate a unique request ID for tracing."""
    return f"req_{uuid.uuid4().hex[:12]}"


def get_tenant_id(request) -> str:
    """
    Extract tenant ID from request.

    Checks the X-Tenant-ID header, then the tenant_id query param.
    """
    tenant_id = request.headers.get("X-Tenant-ID")
    if tenant_id:
        return tenant_id

    tenant_id = request.query_params.get("tenant_id")
    if tenant_id:
        return tenant_id

    return "default"


# =============================================================================
# DEPENDENCY INJECTION HELPERS
# =============================================================================

_run_manager = None


def get_vault():
    """Get the vault store instance."""
    from database.vault_persistence import get_vault_persistence
    return get_vault_persistence()


def get_run_manager():
    """Get the workflow run manager (singleton)."""
    global _run_manager
    if _run_manager is None:
        from cpa_panel.workflow.run_manager import WorkflowRunManager
        from database.workflow_run_persistence import get_workflow_run_persistence

        _run_manager = WorkflowRunManager(
            persistence=get_workflow_run_persistence(),
            vault=get_vault(),
        )
    return _run_manager


def get_notification_channel():
    """A fresh notification channel; one per request."""
    from cpa_panel.notifications import NotificationChannel
    return NotificationChannel()


def reset_dependencies() -> None:
    """Drop every cached service instance (used by tests)."""
    global _run_manager
    _run_manager = None

    from database.vault_persistence import reset_vault_persistence
    from database.workflow_run_persistence import reset_workflow_run_persistence
    from services.ai.unified_ai_service import reset_ai_service

    reset_vault_persistence()
    reset_workflow_run_persistence()
    reset_ai_service()
