"""
Root pytest configuration.

This conftest is loaded before test collection to ensure
src is in the Python path for all imports.
"""

import sys
from pathlib import Path

# Add src to path IMMEDIATELY when this file is loaded
src_path = Path(__file__).parent / "src"
src_str = str(src_path.absolute())

if src_str in sys.path:
    sys.path.remove(src_str)
sys.path.insert(0, src_str)


import pytest


@pytest.fixture(autouse=True)
def _reset_cached_services():
    """Reset cached settings, provider configs and service singletons between tests."""
    yield
    from config.ai_providers import load_provider_configs
    from config.settings import get_settings, get_workflow_settings
    from cpa_panel.api.common import reset_dependencies

    load_provider_configs.cache_clear()
    get_settings.cache_clear()
    get_workflow_settings.cache_clear()
    reset_dependencies()


def pytest_configure(config):
    """Additional path setup during pytest configuration."""
    if src_str not in sys.path:
        sys.path.insert(0, src_str)
