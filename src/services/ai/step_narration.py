"""
Step narration and step planning for workflow runs.

StepNarrator produces the human-readable reasoning recorded on each executed
step. StepPlanner turns a workflow title and description into a list of step
names. Both use the unified AI service when a provider is configured and
deterministic text otherwise.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config.ai_providers import AITask

logger = logging.getLogger(__name__)


@dataclass
class StepContext:
    """What a narrator knows about the step being executed."""
    workflow_title: str
    workflow_description: str
    step_id: str
    step_name: str
    step_description: str = ""
    inputs: Dict[str, Any] = field(default_factory=dict)
    documents: List[Dict[str, Any]] = field(default_factory=list)
    previous_reasoning: List[str] = field(default_factory=list)

    @property
    def document_count(self) -> int:
        return len(self.documents)


class StepNarrator(ABC):
    """Produces the reasoning text for one step."""

    @abstractmethod
    async def narrate(self, context: StepContext) -> str:
        ...


class TemplateStepNarrator(StepNarrator):
    """Deterministic narration built from the step and its inputs."""

    async def narrate(self, context: StepContext) -> str:
        name = context.step_name.lower()
        if "document" in name or "analy" in name:
            return f"Analyzed {context.document_count} documents for workflow execution"
        if "output" in name or "generat" in name or "deliverable" in name:
            return "Generated final deliverable based on workflow requirements"
        if context.inputs:
            return (
                f"Applied workflow rules and logic to {len(context.inputs)} "
                f"input{'s' if len(context.inputs) != 1 else ''}"
            )
        return "Applied workflow rules and logic to the input data"


NARRATION_SYSTEM_PROMPT = """You are the execution log of a tax practice workflow engine.
Write one or two plain sentences describing what was done in the current step.
Do not invent figures. Do not address the user. No markdown."""


class AIStepNarrator(StepNarrator):
    """
    Narration written by a model.

    Provider errors are logged and the template text is used instead, so a
    model outage never fails a run.
    """

    def __init__(self, ai_service, fallback: Optional[StepNarrator] = None):
        self.ai_service = ai_service
        self.fallback = fallback or TemplateStepNarrator()

    def _build_prompt(self, context: StepContext) -> str:
        documents = ", ".join(d.get("name", "") for d in context.documents) or "none"
        inputs = ", ".join(f"{k}={v}" for k, v in context.inputs.items()) or "none"
        lines = [
            f"Workflow: {context.workflow_title}",
            f"Description: {context.workflow_description}",
            f"Documents: {documents}",
            f"Inputs: {inputs}",
            f"Current step: {context.step_name} ({context.step_description})",
        ]
        if context.previous_reasoning:
            lines.append("Previous steps:")
            lines.extend(f"- {r}" for r in context.previous_reasoning)
        return "\n".join(lines)

    async def narrate(self, context: StepContext) -> str:
        try:
            response = await self.ai_service.complete(
                self._build_prompt(context),
                system_prompt=NARRATION_SYSTEM_PROMPT,
                task=AITask.STEP_NARRATION,
                temperature=0.3,
                max_tokens=200,
            )
            text = response.content.strip()
            if text:
                return text
            logger.warning(f"Empty narration for step {context.step_id}, using template")
        except Exception as e:
            logger.warning(f"AI narration failed for step {context.step_id}: {e}")
        return await self.fallback.narrate(context)


def get_step_narrator(use_ai: bool = True) -> StepNarrator:
    """AI narrator when a provider is configured (and allowed), template otherwise."""
    if use_ai:
        from services.ai.unified_ai_service import get_ai_service

        ai_service = get_ai_service()
        if ai_service.is_available:
            return AIStepNarrator(ai_service)
    return TemplateStepNarrator()


# =============================================================================
# STEP PLANNING
# =============================================================================

PLANNING_SYSTEM_PROMPT = """You are a workflow planning expert. Break down workflows into clear, logical steps that an AI agent would perform.

Rules for steps:
- Write steps as ongoing actions using -ing verbs (e.g., "Analyzing", "Calculating", "Generating")
- Each step describes an AI action, not a user action (no uploading or downloading)
- Steps are concise, descriptive and in chronological order
- Include 3-7 steps total

Return a JSON object with a 'steps' array of objects with a 'name' field, e.g.
{"steps": [{"name": "Analyzing financial statements"}, {"name": "Generating summary report"}]}"""

MIN_PLANNED_STEPS = 3
MAX_PLANNED_STEPS = 7

DEFAULT_PLAN = [
    "Analyzing uploaded documents",
    "Applying workflow rules",
    "Generating deliverable",
]


@dataclass
class PlannedStep:
    id: str
    name: str
    order_index: int
    status: str = "pending"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "order_index": self.order_index,
        }


class StepPlanner:
    """Plans step names for a workflow from its title and description."""

    def __init__(self, ai_service=None):
        self.ai_service = ai_service

    async def plan(self, workflow_title: str, workflow_description: str) -> List[PlannedStep]:
        names = None
        if self.ai_service is not None and self.ai_service.is_available:
            try:
                data = await self.ai_service.complete_json(
                    f"Create steps for this workflow:\nTitle: {workflow_title}\n"
                    f"Description: {workflow_description}",
                    system_prompt=PLANNING_SYSTEM_PROMPT,
                    task=AITask.STEP_PLANNING,
                )
                names = _clean_step_names(data.get("steps") if isinstance(data, dict) else None)
            except Exception as e:
                logger.warning(f"AI step planning failed for '{workflow_title}': {e}")

        if not names:
            names = list(DEFAULT_PLAN)

        return [
            PlannedStep(id=f"step-{index + 1}", name=name, order_index=index)
            for index, name in enumerate(names)
        ]


def _clean_step_names(steps: Any) -> Optional[List[str]]:
    if not isinstance(steps, list):
        return None
    names = []
    for step in steps:
        name = step.get("name") if isinstance(step, dict) else step
        if isinstance(name, str) and name.strip():
            names.append(name.strip())
    if len(names) < MIN_PLANNED_STEPS:
        return None
    return names[:MAX_PLANNED_STEPS]
