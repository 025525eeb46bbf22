"""
FastAPI application for the CPA workflow run service.

Routes:
- /api/cpa/...  : workflow catalog, runs, deliverables, vault (cpa_panel.api)
- GET /health   : liveness
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import get_settings
from cpa_panel.api import cpa_router
from middleware.correlation import RequestIdMiddleware
from services.logging_config import configure_logging

logger = logging.getLogger(__name__)


def create_app(configure_logs: bool = True) -> FastAPI:
    """Build the application from the current settings."""
    settings = get_settings()

    if configure_logs:
        configure_logging(
            level=settings.log_level,
            json_output=settings.log_json,
            log_file=settings.log_file,
        )

    application = FastAPI(
        title=settings.name,
        version=settings.version,
        debug=settings.debug,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(RequestIdMiddleware)

    application.include_router(cpa_router, prefix="/api")

    @application.get("/health")
    async def health():
        return {"status": "healthy", "environment": settings.environment, "version": settings.version}

    logger.info(f"{settings.name} {settings.version} started ({settings.environment})")
    return application


app = create_app()
