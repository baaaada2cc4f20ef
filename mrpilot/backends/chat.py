# mrpilot/backends/chat.py
"""OpenAI-compatible chat completions backend (OpenRouter, OpenAI, Ollama, Azure)."""

from __future__ import annotations

import asyncio
import logging

import aiohttp

from mrpilot.config import LLM_MAX_RETRIES, LLM_REQUEST_TIMEOUT
from mrpilot.errors import ConfigError, LLMError

logger = logging.getLogger(__name__)

ENDPOINTS: dict[str, str] = {
    "openrouter": "https://openrouter.ai/api/v1/chat/completions",
    "openai": "https://api.openai.com/v1/chat/completions",
    "ollama": "http://localhost:11434/v1/chat/completions",
}

# Seconds to wait before retrying a timeout or server error
RETRY_DELAY = 3.0


class ChatCompletionsBackend:
    """Send review prompts to an OpenAI-compatible chat completions endpoint.

    Args:
        provider: One of openrouter, openai, ollama, azure.
        session: Shared aiohttp session.
        model: Model identifier sent in the request body.
        api_key: Provider API key. Not required for ollama.
        api_url: Endpoint override. Required for azure.
        retry_delay: Seconds to wait before retrying timeouts and 5xx errors.
        backoff_base: Base of the exponential wait after a 429, in seconds.

    Raises:
        ConfigError: If the endpoint or credentials cannot be resolved.
    """

    def __init__(
        self,
        provider: str,
        session: aiohttp.ClientSession,
        model: str,
        api_key: str | None = None,
        api_url: str | None = None,
        retry_delay: float = RETRY_DELAY,
        backoff_base: float = 2.0,
    ):
        self.name = provider
        self.session = session
        self.model = model
        self.api_key = api_key
        self.retry_delay = retry_delay
        self.backoff_base = backoff_base
        self.requires_auth = provider != "ollama"

        if api_url:
            self.endpoint = api_url
        elif provider == "azure":
            raise ConfigError("LLM_API_URL is required for Azure OpenAI provider")
        elif provider in ENDPOINTS:
            self.endpoint = ENDPOINTS[provider]
        else:
            raise ConfigError(
                f"Unknown LLM_PROVIDER: {provider}. Supported: openrouter, openai, ollama, azure"
            )

        if self.requires_auth and not api_key:
            raise ConfigError("LLM_API_KEY environment variable is not set")

    @property
    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.name == "azure":
            headers["api-key"] = self.api_key or ""
        elif self.requires_auth and self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if self.name == "openrouter":
            headers["HTTP-Referer"] = "https://github.com/mr-pilot"
            headers["X-Title"] = "MR Pilot Review Bot"
        return headers

    async def complete(self, system: str, prompt: str) -> str:
        """Request a chat completion, retrying transient failures.

        Args:
            system: System message.
            prompt: User message.

        Returns:
            Content of the first choice.

        Raises:
            LLMError: On client errors, an empty answer, or exhausted retries.
        """
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
        }
        timeout = aiohttp.ClientTimeout(total=LLM_REQUEST_TIMEOUT)
        logger.info("Sending to LLM for analysis (%s)...", self.name)

        for attempt in range(1, LLM_MAX_RETRIES + 1):
            last_attempt = attempt == LLM_MAX_RETRIES
            if attempt > 1:
                logger.info("Retrying LLM request... (attempt %d/%d)", attempt, LLM_MAX_RETRIES)
            try:
                async with self.session.post(
                    self.endpoint, json=body, headers=self.headers, timeout=timeout
                ) as response:
                    status = response.status
                    if status < 400:
                        data = await response.json()
                        return self._extract_content(data)

                    detail = await response.text()
                    if status == 401:
                        raise LLMError(f"{self.name} authentication failed. Check your API key.")
                    if status == 402:
                        raise LLMError(f"{self.name}: Insufficient credits.")
                    if status == 400:
                        raise LLMError(f"{self.name}: Bad request - {detail}")
                    if status == 429:
                        if last_attempt:
                            raise LLMError(
                                f"{self.name}: Rate limit exceeded after {LLM_MAX_RETRIES} attempts."
                            )
                        wait = self.backoff_base ** attempt
                        logger.warning("Rate limit hit, waiting %.0fs before retry...", wait)
                        await asyncio.sleep(wait)
                        continue
                    if status >= 500:
                        if last_attempt:
                            raise LLMError(
                                f"{self.name} server error after {LLM_MAX_RETRIES} attempts: "
                                f"{status} - {detail}"
                            )
                        logger.warning("Server error (%d), retrying in %.0fs...", status, self.retry_delay)
                        await asyncio.sleep(self.retry_delay)
                        continue
                    raise LLMError(f"{self.name} API error: {status} - {detail}")
            except asyncio.TimeoutError as e:
                if last_attempt:
                    raise LLMError(
                        f"LLM request timed out after {LLM_MAX_RETRIES} attempts. "
                        "Try a smaller diff with --max-diff-chars"
                    ) from e
                logger.warning("Request timed out, retrying in %.0fs...", self.retry_delay)
                await asyncio.sleep(self.retry_delay)
            except aiohttp.ClientError as e:
                if last_attempt:
                    raise LLMError(f"{self.name} request failed: {e}") from e
                logger.warning("Error: %s, retrying in %.0fs...", e, self.retry_delay)
                await asyncio.sleep(self.retry_delay)

        raise LLMError(f"{self.name} request failed")

    @staticmethod
    def _extract_content(data: dict) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        if not content:
            raise LLMError("No response content from LLM")
        return content
