"""Review pipeline: fetch diff, ask the LLM, parse the verdict, optionally comment."""

from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from mrpilot.backends import LLMBackend, create_backend
from mrpilot.clients import DiffStats, PlatformClient, create_client, detect_platform
from mrpilot.config import ReviewConfig
from mrpilot.errors import ReviewParseError
from mrpilot.prompts import REVIEW_SYSTEM_PROMPT, build_review_prompt

logger = logging.getLogger(__name__)

GOAL_STATUSES = ("met", "partially_met", "unmet")

GOAL_LABELS = {
    "met": "✅ Met",
    "partially_met": "⚠️ Partially met",
    "unmet": "❌ Unmet",
}

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$")
_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)


@dataclass
class ReviewResult:
    """Outcome of one review.

    Attributes:
        goal_status: "met", "partially_met" or "unmet".
        score: Quality score clamped to 0-100.
        issues: Potential issues reported by the model.
        remarks: Overall assessment.
        comment_posted: Whether the review was posted on the MR/PR.
        title: Title of the reviewed MR/PR.
        web_url: Link to the reviewed MR/PR.
        diff_stats: Truncation bookkeeping for the reviewed diff.
    """

    goal_status: str
    score: int
    issues: list[str] = field(default_factory=list)
    remarks: str = ""
    comment_posted: bool = False
    title: str | None = None
    web_url: str | None = None
    diff_stats: DiffStats | None = None

    def to_tool_result(self) -> dict[str, Any]:
        return {
            "success": True,
            "goalStatus": self.goal_status,
            "score": self.score,
            "issues": list(self.issues),
            "remarks": self.remarks,
            "commentPosted": self.comment_posted,
        }


def _strip_fences(text: str) -> str:
    return _FENCE_PATTERN.sub("", text.strip()).strip()


def parse_review_output(text: str) -> ReviewResult:
    """Parse the model's JSON verdict.

    Accepts the bare object, the object wrapped in ``` fences, or an object
    surrounded by stray prose.

    Args:
        text: Raw LLM answer.

    Returns:
        ReviewResult with a validated goal status and a clamped score.

    Raises:
        ReviewParseError: If no valid review object can be read.
    """
    cleaned = _strip_fences(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        match = _OBJECT_PATTERN.search(cleaned)
        if match is None:
            raise ReviewParseError(f"JSON parsing failed: {e}") from e
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as inner:
            raise ReviewParseError(f"JSON parsing failed: {inner}") from inner

    if not isinstance(data, dict):
        raise ReviewParseError("Review output must be a JSON object")

    goal_status = str(data.get("goal_status", "")).strip().lower()
    if goal_status not in GOAL_STATUSES:
        raise ReviewParseError(
            f"Invalid goal_status: {data.get('goal_status')!r}. "
            f"Expected one of: {', '.join(GOAL_STATUSES)}"
        )

    raw_score = data.get("score")
    try:
        score = int(round(float(raw_score)))
    except (TypeError, ValueError) as e:
        raise ReviewParseError(f"Invalid score: {raw_score!r}") from e
    score = max(0, min(100, score))

    errors = data.get("errors") or []
    if isinstance(errors, str):
        errors = [errors]
    if not isinstance(errors, list):
        raise ReviewParseError("errors must be a list of strings")

    return ReviewResult(
        goal_status=goal_status,
        score=score,
        issues=[str(item) for item in errors],
        remarks=str(data.get("remarks") or ""),
    )


def format_comment_body(result: ReviewResult, acceptance_criteria: str | None = None) -> str:
    """Render a review as the markdown comment posted on the MR/PR.

    Args:
        result: Parsed review.
        acceptance_criteria: Optional text appended as its own section.

    Returns:
        Markdown comment body.
    """
    lines = [
        "## 🤖 MR Pilot Review",
        "",
        f"**Goal Status:** {GOAL_LABELS.get(result.goal_status, result.goal_status)}",
        f"**Quality Score:** {result.score}/100",
        "",
    ]

    if result.issues:
        lines.append("### ⚠️ Potential Issues")
        lines.extend(f"{idx}. {issue}" for idx, issue in enumerate(result.issues, 1))
    else:
        lines.append("✅ No issues found")
    lines.append("")

    lines.append("### 📝 Remarks")
    lines.append(result.remarks or "_No remarks._")

    if acceptance_criteria:
        lines.extend(["", "### ✔️ Acceptance Criteria", acceptance_criteria.strip()])

    stats = result.diff_stats
    if stats is not None and stats.was_truncated:
        lines.extend([
            "",
            f"> Note: the diff was truncated ({stats.truncated_files} files omitted). "
            "This review covers a partial view of the changes.",
        ])

    return "\n".join(lines) + "\n"


async def run_review(
    config: ReviewConfig,
    backend: LLMBackend | None = None,
    client: PlatformClient | None = None,
    environ: Mapping[str, str] | None = None,
) -> ReviewResult:
    """Review one merge request or pull request.

    Args:
        config: Review options.
        backend: LLM backend. Created from config/environment when None.
        client: Platform client. Created from the detected platform when None.
        environ: Environment for credentials. Defaults to os.environ.

    Returns:
        The parsed ReviewResult.

    Raises:
        ConfigError: If the target, credentials or backend are invalid.
        PlatformError: If fetching the diff or posting the comment fails.
        LLMError: If the LLM call fails.
        ReviewParseError: If the LLM answer is not a valid review.
    """
    env = os.environ if environ is None else environ

    async with aiohttp.ClientSession() as session:
        if client is None:
            platform = detect_platform(config.target, config.platform, env)
            client = create_client(platform, session, env)
        if backend is None:
            backend = create_backend(config.backend, config.model, session, env)

        data = await client.get_diffs(
            config.target, config.project, config.resolved_max_diff_chars(env)
        )
        logger.info("Retrieved %s: %r (%d file(s) changed)", client.platform, data.title, data.changed_files)
        if data.diff_stats is not None and data.diff_stats.was_truncated:
            logger.warning(
                "Diff truncated: %d file(s) omitted. Use --max-diff-chars %d to review everything",
                data.diff_stats.truncated_files,
                data.diff_stats.recommended_max_chars,
            )

        prompt = build_review_prompt(data, config.ticket_spec, config.guidelines)
        if config.debug:
            logger.debug("Review prompt (%d chars):\n%s", len(prompt), prompt)

        raw = await backend.complete(REVIEW_SYSTEM_PROMPT, prompt)
        if config.debug:
            logger.debug("Raw LLM answer:\n%s", raw)
        logger.info("Analysis complete")

        result = parse_review_output(raw)
        result.title = data.title
        result.web_url = data.web_url
        result.diff_stats = data.diff_stats

        if config.post_comment:
            body = format_comment_body(result, config.acceptance_criteria)
            await client.post_comment(config.target, body, config.project)
            result.comment_posted = True
            logger.info("Comment posted")

    return result
