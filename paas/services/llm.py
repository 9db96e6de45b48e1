# =============================================================================
# Multi-Provider LLM Abstraction — Pluggable AI Backend
# =============================================================================
#
# Provides a common interface for LLM completions, with concrete
# implementations for Anthropic (Claude) and OpenAI-compatible APIs
# (OpenAI itself, or any service exposing the same chat API).
#
# DESIGN DECISION: Protocol (structural typing) over ABC.
# Any class with the right `complete()` method works, which keeps test
# doubles trivial.
#
# DESIGN DECISION: Native SDKs, async only. Callers are FastAPI route
# handlers (the TQ AI agent); workers never call the LLM.
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── AnthropicProvider        — Claude via native Anthropic SDK
#   │   └── complete()           — system prompt as top-level kwarg
#   ├── OpenAICompatibleProvider — Any OpenAI-compatible API
#   │   └── complete()           — system prompt as message role
#   └── get_llm_provider()       — Singleton factory, reads from config
#
# A missing API key raises ServiceConfigurationError (HTTP 503) at
# construction time, so an unconfigured deployment fails clearly on the
# first AI request instead of at startup.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from paas.config import settings
from paas.errors import ServiceConfigurationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """
    Standardised response from any LLM provider.

    Normalises the different response formats (Anthropic vs OpenAI)
    into a single structure that downstream code can consume.
    """

    content: str           # The generated text
    model: str             # Model identifier (e.g., "gpt-4o-mini")
    input_tokens: int      # Tokens consumed by the prompt
    output_tokens: int     # Tokens generated in the response


def _logged(response: LLMResponse) -> LLMResponse:
    logger.debug(
        "LLM call: model=%s, input_tokens=%d, output_tokens=%d",
        response.model, response.input_tokens, response.output_tokens,
    )
    return response


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """LLM provider interface implemented by both SDK wrappers."""

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a completion from the LLM.

        Args:
            messages: Conversation messages as dicts with "role" and "content".
                Roles: "user" and "assistant"; the system prompt goes in `system`.
            system: System prompt. Anthropic takes it as a top-level kwarg,
                OpenAI as a leading {"role": "system"} message.
            temperature: Override sampling temperature (default from config).
            max_tokens: Override max output tokens (default from config).
        """
        ...


# ---------------------------------------------------------------------------
# Implementation 1: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Anthropic Claude provider using the native SDK.

    KEY API DIFFERENCE: Anthropic takes system prompts as a top-level
    `system=` kwarg, NOT as a message with role "system".
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
    ) -> None:
        from anthropic import AsyncAnthropic

        resolved_key = api_key or settings.llm_api_key or settings.anthropic_api_key
        if not resolved_key:
            raise ServiceConfigurationError(
                "No Anthropic API key configured. Set LLM_API_KEY or "
                "ANTHROPIC_API_KEY.",
                code="LLM_NOT_CONFIGURED",
            )

        self._client = AsyncAnthropic(api_key=resolved_key)
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info("Initialized AnthropicProvider (model=%s)", self._model)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion using Claude."""
        kwargs: dict = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": self._temperature if temperature is None else temperature,
        }
        if system:
            kwargs["system"] = system

        response = await self._client.messages.create(**kwargs)

        # Concatenate every text block; tool_use and thinking blocks are ignored
        content = "".join(
            block.text for block in response.content if block.type == "text"
        )
        return _logged(LLMResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        ))


# ---------------------------------------------------------------------------
# Implementation 2: OpenAI-Compatible
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    Provider for OpenAI or any OpenAI-compatible chat completions API.

    Switching providers is a config change:
        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://api.example.com/v1
        LLM_API_KEY=your-key
        LLM_MODEL=model-name
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        resolved_key = api_key or settings.llm_api_key or settings.openai_api_key
        if not resolved_key:
            raise ServiceConfigurationError(
                "OpenAI API key is not configured. Set LLM_API_KEY or "
                "OPENAI_API_KEY.",
                code="LLM_NOT_CONFIGURED",
            )

        client_kwargs: dict = {"api_key": resolved_key}
        resolved_base_url = base_url or settings.llm_base_url
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        self._client = AsyncOpenAI(**client_kwargs)
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            self._model,
            resolved_base_url or "https://api.openai.com/v1",
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion using an OpenAI-compatible API."""
        all_messages: list[dict[str, str]] = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)

        response = await self._client.chat.completions.create(
            model=self._model,
            messages=all_messages,
            max_tokens=max_tokens or self._max_tokens,
            temperature=self._temperature if temperature is None else temperature,
        )

        content = response.choices[0].message.content if response.choices else None
        usage = response.usage
        return _logged(LLMResponse(
            content=content or "",
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        ))


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

PROVIDERS: dict[str, type[AnthropicProvider] | type[OpenAICompatibleProvider]] = {
    "anthropic": AnthropicProvider,
    "openai_compatible": OpenAICompatibleProvider,
}

# Lazy singleton, built on the first AI request
_provider: LLMProvider | None = None


def get_llm_provider() -> LLMProvider:
    """
    Return the configured LLM provider.

    The AI agent routes receive this function uncalled (get_llm_factory),
    so tests swap in a fake provider through dependency_overrides.

    Raises:
        ServiceConfigurationError: LLM_PROVIDER_UNKNOWN, LLM_NOT_CONFIGURED
    """
    global _provider
    if _provider is None:
        provider_cls = PROVIDERS.get(settings.llm_provider)
        if provider_cls is None:
            raise ServiceConfigurationError(
                f"Unknown LLM provider '{settings.llm_provider}'",
                code="LLM_PROVIDER_UNKNOWN",
                details={"supported": sorted(PROVIDERS)},
            )
        _provider = provider_cls()
    return _provider
