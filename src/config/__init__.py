"""Configuration module for the workflow run service."""

from .settings import Settings, WorkflowSettings, get_settings, get_workflow_settings

__all__ = [
    "Settings",
    "WorkflowSettings",
    "get_settings",
    "get_workflow_settings",
]
