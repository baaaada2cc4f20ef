"""
Review prompt for a single merge request analysis.

The model is asked for one JSON object (goal_status, errors, remarks, score)
which ``mrpilot.review.parse_review_output`` validates.
"""

from mrpilot.clients import TRUNCATION_MARKER, MergeRequestData

REVIEW_SYSTEM_PROMPT = (
    "You are a senior code reviewer. "
    "You provide structured JSON responses for code review analysis."
)

SCORING_GUIDELINES = """**Scoring Guidelines:**
- 90-100: Exceptional - fully meets requirements, no issues, excellent code quality
- 70-89: Good - meets most requirements, minor issues only
- 50-69: Acceptable - meets basic requirements, several issues to address
- 30-49: Needs work - partially meets requirements, significant issues
- 0-29: Poor - fails to meet requirements, major issues"""

OUTPUT_FORMAT = """**Important:** You must respond with ONLY valid JSON in this exact format:
{
  "goal_status": "met" | "partially_met" | "unmet",
  "errors": ["list of specific issues found"],
  "remarks": "brief overall assessment and key observations",
  "score": <number between 0-100>
}

**JSON Format Requirements:**
- Use plain quotes, NOT backticks in your JSON strings
- Escape special characters properly (use \\" for quotes inside strings)
- No markdown formatting inside JSON values"""

TRUNCATION_NOTE = (
    "⚠️ **Note:** The diff was truncated due to size. You are seeing only a partial "
    "view of the changes. Be more conservative in your scoring and explicitly mention "
    "incomplete review in remarks."
)


def build_review_prompt(
    data: MergeRequestData,
    ticket_spec: str | None = None,
    guidelines: str | None = None,
) -> str:
    """
    Build the user prompt for reviewing one merge request.

    Args:
        data: Merge request metadata and diff
        ticket_spec: Optional requirement text the change is checked against
        guidelines: Optional project guidelines used to suppress false positives

    Returns:
        Complete prompt string
    """
    sections = [
        "You are a senior software code reviewer conducting a thorough merge request review.",
        f"""**Merge Request Context:**
- Title: {data.title}
- Description: {data.description}
- Source Branch: {data.source_branch}
- Target Branch: {data.target_branch}
- Files Changed: {data.changed_files}""",
    ]

    if ticket_spec:
        sections.append(f"**Ticket/Requirement Specification:**\n{ticket_spec}")

    if guidelines:
        sections.append(
            "**Project Guidelines:**\n"
            "Follow these project conventions. Do not report issues that the "
            f"guidelines explicitly allow.\n{guidelines}"
        )

    goal_hint = " (as defined in the specification above)" if ticket_spec else ""
    sections.append(f"""**Your Task:**
Review the code changes below and provide a structured analysis covering:
1. Whether the implementation meets the stated goal/requirements{goal_hint}
2. Any potential bugs, errors, or implementation issues
3. Code quality concerns (if any)
4. An overall quality score from 0-100""")

    sections.append(SCORING_GUIDELINES)

    if TRUNCATION_MARKER in data.diffs:
        sections.append(TRUNCATION_NOTE)

    sections.append(OUTPUT_FORMAT)
    sections.append(f"**Code Changes:**\n{data.diffs}")
    sections.append("Remember: Respond ONLY with the JSON object, no additional text.")

    return "\n\n".join(sections)
