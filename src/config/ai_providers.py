"""
AI Provider Configuration Module.

Configuration for the providers used to narrate workflow steps and to plan
workflow step lists:
- OpenAI (GPT-4o, GPT-4o-mini)
- Anthropic (Claude Sonnet, Haiku)

Usage:
    from config.ai_providers import get_model_for_task, AITask

    provider, model = get_model_for_task(AITask.STEP_NARRATION)
"""

import os
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, Optional, List, Tuple
from functools import lru_cache

logger = logging.getLogger(__name__)


class AIProvider(str, Enum):
    """Supported AI providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class AITask(str, Enum):
    """Workflow tasks that call a model."""
    STEP_NARRATION = "step_narration"    # Reasoning text for one executed step
    STEP_PLANNING = "step_planning"      # JSON list of step names for a workflow
    DELIVERABLE = "deliverable"          # Deliverable summary prose


@dataclass
class ProviderConfig:
    """Configuration for an AI provider."""
    name: str
    api_key: Optional[str]
    models: Dict[AITask, str] = field(default_factory=dict)
    default_model: str = ""
    is_available: bool = False
    timeout_seconds: int = 60

    def __post_init__(self):
        self.is_available = bool(self.api_key)
        if not self.default_model and self.models:
            self.default_model = list(self.models.values())[0]


def _get_openai_config() -> ProviderConfig:
    return ProviderConfig(
        name="openai",
        api_key=os.environ.get("OPENAI_API_KEY"),
        models={
            AITask.STEP_NARRATION: "gpt-4o-mini",
            AITask.STEP_PLANNING: "gpt-4o-mini",
            AITask.DELIVERABLE: "gpt-4o",
        },
        default_model="gpt-4o-mini",
        timeout_seconds=60,
    )


def _get_anthropic_config() -> ProviderConfig:
    return ProviderConfig(
        name="anthropic",
        api_key=os.environ.get("ANTHROPIC_API_KEY"),
        models={
            AITask.STEP_NARRATION: "claude-3-5-haiku-20241022",
            AITask.STEP_PLANNING: "claude-sonnet-4-20250514",
            AITask.DELIVERABLE: "claude-sonnet-4-20250514",
        },
        default_model="claude-sonnet-4-20250514",
        timeout_seconds=120,
    )


@lru_cache(maxsize=1)
def load_provider_configs() -> Dict[AIProvider, ProviderConfig]:
    """Load all provider configurations (cached; clear with cache_clear())."""
    return {
        AIProvider.OPENAI: _get_openai_config(),
        AIProvider.ANTHROPIC: _get_anthropic_config(),
    }


def get_provider_config(provider: AIProvider) -> ProviderConfig:
    return load_provider_configs()[provider]


def get_available_providers() -> List[AIProvider]:
    """Providers that have an API key configured."""
    return [p for p, c in load_provider_configs().items() if c.is_available]


def get_model_for_task(
    task: AITask,
    preferred_provider: Optional[AIProvider] = None,
) -> Tuple[AIProvider, str]:
    """
    Get the best available model for a workflow task.

    Args:
        task: The task needing a model
        preferred_provider: Optional preferred provider

    Returns:
        Tuple of (provider, model_name)

    Raises:
        ValueError: If no provider is configured
    """
    configs = load_provider_configs()

    if preferred_provider:
        config = configs[preferred_provider]
        if config.is_available and task in config.models:
            return preferred_provider, config.models[task]

    for provider in (AIProvider.OPENAI, AIProvider.ANTHROPIC):
        config = configs[provider]
        if config.is_available and task in config.models:
            return provider, config.models[task]

    raise ValueError(f"No provider available for task: {task.value}")


__all__ = [
    "AIProvider",
    "AITask",
    "ProviderConfig",
    "load_provider_configs",
    "get_provider_config",
    "get_available_providers",
    "get_model_for_task",
]
