# mrpilot/backends/__init__.py
"""LLM backend abstraction for the review pipeline.

Every backend turns a (system, prompt) pair into the model's raw text answer.
The review pipeline parses that text; backends know nothing about reviews.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import TYPE_CHECKING, Protocol

from mrpilot.config import DEFAULT_LLM_MODEL
from mrpilot.errors import ConfigError

if TYPE_CHECKING:
    import aiohttp

CHAT_PROVIDERS = ("openrouter", "openai", "ollama", "azure")


class LLMBackend(Protocol):
    """Protocol for LLM backends."""

    name: str

    async def complete(self, system: str, prompt: str) -> str: ...


def resolve_provider(name: str | None = None, environ: Mapping[str, str] | None = None) -> str:
    """Pick the backend name from an explicit choice or the environment.

    LLM_PROVIDER wins; legacy OPENROUTER_API_KEY + OPENROUTER_MODEL settings
    select openrouter.

    Raises:
        ConfigError: If no provider can be determined.

    """
    env = os.environ if environ is None else environ
    provider = name or env.get("LLM_PROVIDER")
    if not provider and env.get("OPENROUTER_API_KEY") and env.get("OPENROUTER_MODEL"):
        provider = "openrouter"
    if not provider:
        raise ConfigError(
            "LLM_PROVIDER is not set. Supported: openrouter, openai, ollama, azure, claude"
        )
    return provider.lower()


def create_backend(
    name: str | None = None,
    model: str | None = None,
    session: aiohttp.ClientSession | None = None,
    environ: Mapping[str, str] | None = None,
) -> LLMBackend:
    """Create an LLM backend by name.

    Args:
        name: Backend name. Defaults to LLM_PROVIDER from the environment.
        model: Optional model override. Each backend has its own default.
        session: aiohttp session for the chat completions backends.
        environ: Environment to read credentials from. Defaults to os.environ.

    Returns:
        An LLMBackend instance.

    Raises:
        ConfigError: If the backend name is unknown or credentials are missing.

    """
    env = os.environ if environ is None else environ
    provider = resolve_provider(name, env)

    if provider == "claude":
        from mrpilot.backends.claude import ClaudeBackend
        return ClaudeBackend(model=model or env.get("LLM_MODEL") or "sonnet")

    if provider in CHAT_PROVIDERS:
        from mrpilot.backends.chat import ChatCompletionsBackend
        if session is None:
            raise ConfigError(f"{provider} backend requires an HTTP session")
        return ChatCompletionsBackend(
            provider=provider,
            session=session,
            model=model or env.get("LLM_MODEL") or env.get("OPENROUTER_MODEL") or DEFAULT_LLM_MODEL,
            api_key=env.get("LLM_API_KEY") or env.get("OPENROUTER_API_KEY"),
            api_url=env.get("LLM_API_URL"),
        )

    raise ConfigError(
        f"Unknown LLM_PROVIDER: {provider!r}. Supported: openrouter, openai, ollama, azure, claude"
    )


__all__ = [
    "CHAT_PROVIDERS",
    "LLMBackend",
    "create_backend",
    "resolve_provider",
]
