"""
CPA Panel API

Exports the main CPA router and the domain routers.
"""

from .router import cpa_router
from .workflow_run_routes import workflow_run_router

__all__ = [
    "cpa_router",
    "workflow_run_router",
]
