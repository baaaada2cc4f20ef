"""MCP tools exposed by the server."""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from mrpilot.config import ReviewConfig
from mrpilot.dispatcher import Tool
from mrpilot.errors import ToolError
from mrpilot.review import ReviewResult, run_review

logger = logging.getLogger(__name__)

ReviewRunner = Callable[[ReviewConfig], Awaitable[ReviewResult]]

REVIEW_TOOL_DEFINITION: dict[str, Any] = {
    "name": "review_merge_request",
    "title": "Review GitLab MR or GitHub PR",
    "description": (
        "Performs an AI-powered code review of a GitLab Merge Request or GitHub Pull "
        "Request using mr-pilot. Returns quality score, goal status, potential issues, "
        "and remarks."
    ),
    "inputSchema": {
        "type": "object",
        "properties": {
            "mrUrlOrId": {
                "type": "string",
                "description": (
                    "GitLab MR URL (e.g., https://gitlab.com/org/project/-/merge_requests/123), "
                    "GitHub PR URL (e.g., https://github.com/owner/repo/pull/456), or numeric "
                    "ID (requires project parameter or default project in env)"
                ),
            },
            "ticketSpec": {
                "type": "string",
                "description": "Optional ticket/requirement specification text to validate the MR/PR against",
            },
            "guidelines": {
                "type": "string",
                "description": "Optional project guidelines text to reduce false positives in the review",
            },
            "postComment": {
                "type": "boolean",
                "description": "Whether to post the review as a comment on the MR/PR (default: false)",
                "default": False,
            },
            "maxDiffChars": {
                "type": "number",
                "description": "Maximum characters for diffs (default: 50000). Increase for large MRs/PRs.",
            },
            "acceptanceCriteria": {
                "type": "string",
                "description": "Acceptance criteria text to include in the review output",
            },
            "platform": {
                "type": "string",
                "description": 'Platform override: "gitlab" or "github" (auto-detected from URL or project path)',
                "enum": ["gitlab", "github"],
            },
            "project": {
                "type": "string",
                "description": (
                    'Project path (e.g., "group/subgroup/project" for GitLab or "owner/repo" '
                    "for GitHub). Required when using numeric ID without default project in env."
                ),
            },
            "debug": {
                "type": "boolean",
                "description": "Enable debug mode to see detailed execution information",
                "default": False,
            },
        },
        "required": ["mrUrlOrId"],
    },
    "outputSchema": {
        "type": "object",
        "properties": {
            "success": {"type": "boolean", "description": "Whether the review completed successfully"},
            "goalStatus": {"type": "string", "description": 'Goal status: "met", "partially_met", or "unmet"'},
            "score": {"type": "number", "description": "Quality score from 0 to 100"},
            "issues": {
                "type": "array",
                "items": {"type": "string"},
                "description": "List of potential issues found in the code",
            },
            "remarks": {"type": "string", "description": "Additional remarks and observations from the review"},
            "commentPosted": {"type": "boolean", "description": "Whether a comment was posted to the MR/PR"},
        },
    },
}


def review_config_from_arguments(arguments: dict[str, Any]) -> ReviewConfig:
    """Map tool arguments onto a ReviewConfig.

    Raises:
        ToolError: If mrUrlOrId is missing or maxDiffChars is not a positive number.
    """
    target = arguments.get("mrUrlOrId")
    if not target:
        raise ToolError("mrUrlOrId parameter is required")

    max_diff_chars = arguments.get("maxDiffChars")
    if max_diff_chars is not None:
        try:
            max_diff_chars = int(max_diff_chars)
        except (TypeError, ValueError) as e:
            raise ToolError(f"maxDiffChars must be a number, got {max_diff_chars!r}") from e
        if max_diff_chars <= 0:
            raise ToolError("maxDiffChars must be positive")

    return ReviewConfig(
        target=str(target),
        project=arguments.get("project") or None,
        platform=arguments.get("platform") or None,
        ticket_spec=arguments.get("ticketSpec") or None,
        guidelines=arguments.get("guidelines") or None,
        acceptance_criteria=arguments.get("acceptanceCriteria") or None,
        max_diff_chars=max_diff_chars,
        post_comment=bool(arguments.get("postComment", False)),
        debug=bool(arguments.get("debug", False)),
    )


def create_review_tool(runner: ReviewRunner | None = None) -> Tool:
    """Build the review_merge_request tool.

    Args:
        runner: Coroutine running one review. Defaults to ``run_review``.

    Returns:
        Tool ready to register on a ToolDispatcher.
    """
    run = runner or run_review

    async def handler(arguments: dict[str, Any]) -> dict[str, Any]:
        config = review_config_from_arguments(arguments)
        logger.info("Tool invoked: review_merge_request with MR/PR: %s", config.target)
        result = await run(config)
        logger.info("Review completed successfully")
        return result.to_tool_result()

    return Tool(definition=REVIEW_TOOL_DEFINITION, handler=handler)


def default_tools() -> list[Tool]:
    return [create_review_tool()]
