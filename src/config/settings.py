"""Application settings using Pydantic Settings.

Centralized configuration for the workflow run service.

Environment variables:
- APP_*: application-level settings (name, environment, logging)
- WORKFLOW_*: workflow run storage and execution settings
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).parent.parent.parent / "data"


class WorkflowSettings(BaseSettings):
    """Workflow run storage and execution configuration."""

    model_config = SettingsConfigDict(
        env_prefix="WORKFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    db_path: Path = Field(
        default=DEFAULT_DATA_DIR / "workflow_runs.db",
        description="SQLite database holding runs, associations and vault records",
    )
    upload_dir: Path = Field(
        default=DEFAULT_DATA_DIR / "uploads",
        description="Directory where uploaded document bytes are stored",
    )

    # Execution
    step_timeout_seconds: float = Field(
        default=120.0, description="Deadline for a single step (0 disables)"
    )
    stale_run_minutes: int = Field(
        default=30, description="Age after which a non-terminal run is considered orphaned"
    )
    use_ai_narration: bool = Field(
        default=True, description="Use the AI service for step reasoning when a provider is configured"
    )

    # Uploads
    max_upload_bytes: int = Field(default=25 * 1024 * 1024, description="Max bytes per uploaded file")

    @field_validator("step_timeout_seconds")
    @classmethod
    def _non_negative_timeout(cls, value: float) -> float:
        if value < 0:
            raise ValueError("step_timeout_seconds must be >= 0")
        return value


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application info
    name: str = Field(default="CPA Workflow Service", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Debug mode")
    environment: str = Field(default="development", description="Environment name")

    # API settings
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=False, description="Emit JSON formatted logs")
    log_file: Optional[Path] = Field(default=None, description="Optional JSON log file")

    # CORS
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8000"],
        description="Allowed CORS origins",
    )

    @property
    def workflow(self) -> WorkflowSettings:
        return get_workflow_settings()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment in ("production", "prod", "staging")


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


@lru_cache
def get_workflow_settings() -> WorkflowSettings:
    """Get cached workflow settings."""
    settings = WorkflowSettings()
    logger.debug(f"Workflow settings loaded: db_path={settings.db_path}")
    return settings
