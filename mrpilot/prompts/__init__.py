"""
Prompt templates for the mr-pilot review pipeline.
"""

from mrpilot.prompts.review_prompt import (
    REVIEW_SYSTEM_PROMPT,
    build_review_prompt,
)

__all__ = [
    "REVIEW_SYSTEM_PROMPT",
    "build_review_prompt",
]
