"""
AI Services Package.

- UnifiedAIService: single interface over OpenAI and Anthropic
- StepNarrator: reasoning text for executed workflow steps
- StepPlanner: step names for a workflow from its title and description

Usage:
    from services.ai import get_step_narrator

    narrator = get_step_narrator()
    reasoning = await narrator.narrate(context)
"""

from services.ai.unified_ai_service import (
    UnifiedAIService,
    AIMessage,
    AIResponse,
    CircuitBreaker,
    CircuitState,
    get_ai_service,
    reset_ai_service,
)

from services.ai.step_narration import (
    StepContext,
    StepNarrator,
    TemplateStepNarrator,
    AIStepNarrator,
    StepPlanner,
    PlannedStep,
    get_step_narrator,
)

__all__ = [
    "UnifiedAIService",
    "AIMessage",
    "AIResponse",
    "CircuitBreaker",
    "CircuitState",
    "get_ai_service",
    "reset_ai_service",
    "StepContext",
    "StepNarrator",
    "TemplateStepNarrator",
    "AIStepNarrator",
    "StepPlanner",
    "PlannedStep",
    "get_step_narrator",
]
