"""Pytest configuration and fixtures for test suite."""

import os
import sys
from pathlib import Path

import pytest

# Set test environment BEFORE any other imports
os.environ.setdefault("APP_ENVIRONMENT", "test")

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))


@pytest.fixture(autouse=True)
def no_ai_providers(monkeypatch):
    """Run every test without provider API keys so narration is deterministic."""
    from config.ai_providers import load_provider_configs

    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    load_provider_configs.cache_clear()
    yield
    load_provider_configs.cache_clear()


@pytest.fixture
def db_path(tmp_path):
    """Temporary SQLite database shared by the vault and run stores."""
    return tmp_path / "workflow_runs.db"


@pytest.fixture
def vault(db_path, tmp_path):
    from database.vault_persistence import VaultPersistence
    return VaultPersistence(db_path, upload_dir=tmp_path / "uploads")


@pytest.fixture
def run_persistence(db_path):
    from database.workflow_run_persistence import WorkflowRunPersistence
    return WorkflowRunPersistence(db_path)


@pytest.fixture
def seeded_vault(vault):
    """
    Vault with one project and a few documents.

    - P "Smith 2024" holds doc1 (W2.pdf) and doc3 (1099-INT.pdf)
    - doc2 (Lease.pdf) is standalone
    """
    vault.create_project("Smith 2024", project_id="P")
    vault.add_document("W2.pdf", "application/pdf", 1200, project_id="P", document_id="doc1")
    vault.add_document("Lease.pdf", "application/pdf", 800, document_id="doc2")
    vault.add_document("1099-INT.pdf", "application/pdf", 300, project_id="P", document_id="doc3")
    return vault


@pytest.fixture
def run_manager(run_persistence, seeded_vault):
    """Run manager over the temp stores with template narration."""
    from cpa_panel.workflow.run_manager import WorkflowRunManager
    from services.ai.step_narration import TemplateStepNarrator

    return WorkflowRunManager(
        persistence=run_persistence,
        vault=seeded_vault,
        narrator=TemplateStepNarrator(),
        step_timeout_seconds=5,
        stale_run_minutes=30,
    )


@pytest.fixture
def api_client(monkeypatch, tmp_path):
    """
    TestClient over a fresh app whose stores live in tmp_path.

    Yields (client, vault) so tests can seed vault documents.
    """
    from fastapi.testclient import TestClient

    from config.settings import get_settings, get_workflow_settings
    from cpa_panel.api.common import reset_dependencies, get_vault

    monkeypatch.setenv("WORKFLOW_DB_PATH", str(tmp_path / "api.db"))
    monkeypatch.setenv("WORKFLOW_UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("WORKFLOW_USE_AI_NARRATION", "false")
    get_settings.cache_clear()
    get_workflow_settings.cache_clear()
    reset_dependencies()

    from web.app import create_app

    app = create_app(configure_logs=False)
    with TestClient(app) as client:
        yield client, get_vault()
