# mrpilot/backends/claude.py
"""Claude Agent SDK backend for mr-pilot."""

from __future__ import annotations

import logging

from claude_agent_sdk import ClaudeAgentOptions, ClaudeSDKClient
from claude_agent_sdk.types import AssistantMessage, ResultMessage, TextBlock

from mrpilot.errors import LLMError

logger = logging.getLogger(__name__)


class ClaudeBackend:
    """Backend that wraps the Claude Agent SDK.

    Runs a single tool-less turn and returns the concatenated text blocks.
    """

    name = "claude"

    def __init__(self, model: str = "sonnet"):
        self.model = model

    async def complete(self, system: str, prompt: str) -> str:
        """Send a prompt and return the assistant's text.

        Args:
            system: System prompt.
            prompt: The prompt to send.

        Returns:
            Concatenated text of the assistant's answer.

        Raises:
            LLMError: If the answer contains no text.

        """
        options = ClaudeAgentOptions(
            system_prompt=system,
            model=self.model,
            max_turns=1,
            allowed_tools=[],
        )

        chunks: list[str] = []
        async with ClaudeSDKClient(options=options) as client:
            await client.query(prompt)
            async for msg in client.receive_response():
                if isinstance(msg, AssistantMessage):
                    for block in msg.content:
                        if isinstance(block, TextBlock) and block.text:
                            chunks.append(block.text)
                elif isinstance(msg, ResultMessage) and msg.total_cost_usd is not None:
                    logger.debug("Claude review cost: $%.4f", msg.total_cost_usd)

        text = "".join(chunks).strip()
        if not text:
            raise LLMError("No response content from LLM")
        return text
