"""
Unified AI Service.

One interface over the configured model providers for the workflow tasks
that need generated text:
- Step narration (reasoning text recorded on each executed step)
- Step planning (JSON list of step names for a workflow)

Each provider adapter is wrapped in a circuit breaker so a provider that keeps
failing is skipped until it recovers.

Usage:
    from services.ai.unified_ai_service import get_ai_service

    ai = get_ai_service()
    response = await ai.complete("Summarize the uploaded W-2", task=AITask.STEP_NARRATION)
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from config.ai_providers import (
    AIProvider,
    AITask,
    ProviderConfig,
    get_provider_config,
    get_available_providers,
    get_model_for_task,
)

logger = logging.getLogger(__name__)


@dataclass
class AIMessage:
    """A message in a conversation."""
    role: str  # "system", "user", "assistant"
    content: str


@dataclass
class AIResponse:
    """Response from a model."""
    content: str
    model: str
    provider: AIProvider
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# CIRCUIT BREAKER
# =============================================================================

class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """
    Per-provider breaker.

    Opens after failure_threshold consecutive failures. Once recovery_timeout
    seconds have passed, calls are let through again (HALF_OPEN): the first
    success closes the breaker, a failure opens it again.
    """
    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    clock: Callable[[], float] = time.monotonic

    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    opened_at: Optional[float] = None

    def record_success(self) -> None:
        if self.state != CircuitState.CLOSED:
            logger.info("Provider recovered, closing circuit")
        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self.opened_at = None

    def record_failure(self) -> None:
        self.consecutive_failures += 1
        if self.state == CircuitState.HALF_OPEN or self.consecutive_failures >= self.failure_threshold:
            if self.state != CircuitState.OPEN:
                logger.warning(f"Opening circuit after {self.consecutive_failures} consecutive failures")
            self.state = CircuitState.OPEN
            self.opened_at = self.clock()

    def allow_request(self) -> bool:
        if self.state != CircuitState.OPEN:
            return True
        if self.clock() - (self.opened_at or 0) >= self.recovery_timeout:
            self.state = CircuitState.HALF_OPEN
            return True
        return False


# =============================================================================
# PROVIDER ADAPTERS
# =============================================================================

class BaseProviderAdapter(ABC):
    """Base class for provider adapters."""

    provider: AIProvider

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.circuit_breaker = CircuitBreaker()
        self._client = None

    @abstractmethod
    async def complete(
        self,
        messages: List[AIMessage],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> AIResponse:
        """Generate a completion."""


class OpenAIAdapter(BaseProviderAdapter):
    """Adapter for the OpenAI chat completions API."""

    provider = AIProvider.OPENAI

    @property
    def client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self.config.api_key, timeout=self.config.timeout_seconds)
        return self._client

    async def complete(
        self,
        messages: List[AIMessage],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> AIResponse:
        model = model or self.config.default_model
        start_time = time.time()
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=[{"role": m.role, "content": m.content} for m in messages],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except Exception:
            self.circuit_breaker.record_failure()
            raise

        self.circuit_breaker.record_success()
        usage = response.usage
        return AIResponse(
            content=response.choices[0].message.content or "",
            model=model,
            provider=self.provider,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            latency_ms=int((time.time() - start_time) * 1000),
        )


class AnthropicAdapter(BaseProviderAdapter):
    """Adapter for the Anthropic messages API."""

    provider = AIProvider.ANTHROPIC

    @property
    def client(self):
        if self._client is None:
            from anthropic import AsyncAnthropic
            self._client = AsyncAnthropic(api_key=self.config.api_key, timeout=self.config.timeout_seconds)
        return self._client

    async def complete(
        self,
        messages: List[AIMessage],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> AIResponse:
        model = model or self.config.default_model
        start_time = time.time()

        # Anthropic takes the system prompt separately
        system_content = "\n\n".join(m.content for m in messages if m.role == "system")
        conversation = [{"role": m.role, "content": m.content} for m in messages if m.role != "system"]

        request: Dict[str, Any] = {
            "model": model,
            "messages": conversation,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if system_content:
            request["system"] = system_content

        try:
            response = await self.client.messages.create(**request)
        except Exception:
            self.circuit_breaker.record_failure()
            raise

        self.circuit_breaker.record_success()
        text = "".join(block.text for block in response.content if getattr(block, "type", "text") == "text")
        return AIResponse(
            content=text,
            model=model,
            provider=self.provider,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            latency_ms=int((time.time() - start_time) * 1000),
        )


ADAPTER_CLASSES = {
    AIProvider.OPENAI: OpenAIAdapter,
    AIProvider.ANTHROPIC: AnthropicAdapter,
}


def parse_json_content(content: str) -> Any:
    """Parse model output as JSON, tolerating a fenced code block."""
    content = content.strip()
    if content.startswith("```"):
        content = content.split("```")[1]
        if content.startswith("json"):
            content = content[4:]
    return json.loads(content.strip())


# =============================================================================
# UNIFIED AI SERVICE
# =============================================================================

class UnifiedAIService:
    """
    Single entry point for model calls.

    Only providers with an API key get an adapter. is_available is False
    when none is configured, and callers are expected to fall back to
    deterministic output in that case.
    """

    def __init__(self, adapters: Optional[Dict[AIProvider, BaseProviderAdapter]] = None):
        if adapters is None:
            adapters = {}
            for provider in get_available_providers():
                adapters[provider] = ADAPTER_CLASSES[provider](get_provider_config(provider))
                logger.info(f"Initialized {provider.value} adapter")
        self._adapters = adapters

    @property
    def is_available(self) -> bool:
        return bool(self._adapters)

    def _get_adapter(self, provider: AIProvider) -> BaseProviderAdapter:
        if provider not in self._adapters:
            raise ValueError(f"Provider {provider.value} not available")
        adapter = self._adapters[provider]
        if not adapter.circuit_breaker.allow_request():
            raise RuntimeError(f"Provider {provider.value} circuit breaker open")
        return adapter

    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        task: AITask = AITask.STEP_NARRATION,
        preferred_provider: Optional[AIProvider] = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> AIResponse:
        """
        Generate a completion with the model configured for a task.

        Args:
            prompt: User prompt
            system_prompt: Optional system prompt
            task: Workflow task (selects the model)
            preferred_provider: Optional preferred provider
            temperature: Sampling temperature
            max_tokens: Maximum output tokens

        Returns:
            AIResponse with completion
        """
        provider, model = get_model_for_task(task, preferred_provider)

        messages = []
        if system_prompt:
            messages.append(AIMessage(role="system", content=system_prompt))
        messages.append(AIMessage(role="user", content=prompt))

        try:
            adapter = self._get_adapter(provider)
            return await adapter.complete(
                messages=messages,
                model=model,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except Exception as e:
            logger.error(f"Completion failed with {provider.value}: {e}")
            raise

    async def complete_json(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        task: AITask = AITask.STEP_PLANNING,
        **kwargs,
    ) -> Any:
        """Complete and parse the answer as JSON."""
        response = await self.complete(prompt, system_prompt=system_prompt, task=task, **kwargs)
        return parse_json_content(response.content)


_ai_service: Optional[UnifiedAIService] = None


def get_ai_service() -> UnifiedAIService:
    """Get the singleton AI service instance."""
    global _ai_service
    if _ai_service is None:
        _ai_service = UnifiedAIService()
    return _ai_service


def reset_ai_service() -> None:
    global _ai_service
    _ai_service = None


__all__ = [
    "UnifiedAIService",
    "AIMessage",
    "AIResponse",
    "CircuitBreaker",
    "CircuitState",
    "OpenAIAdapter",
    "AnthropicAdapter",
    "parse_json_content",
    "get_ai_service",
    "reset_ai_service",
]
