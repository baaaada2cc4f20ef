# mrpilot/clients/__init__.py
"""Code hosting clients for fetching diffs and posting review comments.

Defines the data returned by every platform client, the PlatformClient
protocol, platform detection and the factory used by the review pipeline.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from mrpilot.errors import ConfigError

if TYPE_CHECKING:
    import aiohttp

PLATFORMS = ("gitlab", "github")

FILE_MARKER = "\n### File:"
TRUNCATION_MARKER = "⚠️ [DIFF TRUNCATED:"


@dataclass
class DiffStats:
    """Size bookkeeping for a possibly truncated diff."""

    original_length: int
    truncated_length: int
    was_truncated: bool = False
    truncated_files: int = 0

    @property
    def recommended_max_chars(self) -> int:
        return self.original_length + 1000


@dataclass
class MergeRequestData:
    """Metadata and diff of a merge request or pull request."""

    title: str
    description: str
    source_branch: str
    target_branch: str
    changed_files: int
    diffs: str
    diff_stats: DiffStats | None = None
    web_url: str | None = None
    labels: list[str] = field(default_factory=list)


class PlatformClient(Protocol):
    """Protocol for code hosting clients."""

    platform: str

    async def get_diffs(
        self, url_or_id: str, project: str | None = None, max_diff_chars: int | None = None
    ) -> MergeRequestData: ...

    async def post_comment(self, url_or_id: str, body: str, project: str | None = None) -> None: ...


def format_file_diffs(files: list[tuple[str, str]]) -> str:
    """Join per-file patches into the text sent to the LLM.

    Args:
        files: (path, patch) pairs.

    Returns:
        Diff text with one "### File:" section per file.

    """
    return "\n".join(f"{FILE_MARKER} {path}\n{patch}" for path, patch in files)


def truncate_diffs(diffs: str, max_chars: int) -> tuple[str, DiffStats]:
    """Cut a diff to max_chars, keeping whole file sections where possible.

    Args:
        diffs: Full diff text.
        max_chars: Size limit.

    Returns:
        Tuple of (diff text, DiffStats). Truncated text ends with a notice
        naming the number of omitted files and the --max-diff-chars value
        that would fit everything.

    """
    original_length = len(diffs)
    if original_length <= max_chars:
        return diffs, DiffStats(original_length=original_length, truncated_length=original_length)

    before_limit = diffs[:max_chars]
    last_marker = before_limit.rfind(FILE_MARKER)
    truncated = diffs[:last_marker] if last_marker > 0 else before_limit

    total_files = diffs.count("### File:")
    included_files = truncated.count("### File:")
    omitted = total_files - included_files

    stats = DiffStats(
        original_length=original_length,
        truncated_length=len(truncated),
        was_truncated=True,
        truncated_files=omitted,
    )
    notice = (
        f"\n\n{TRUNCATION_MARKER} {omitted} files not shown due to size limit. "
        f"Original: {original_length} chars, showing: {len(truncated)} chars]\n"
        f"💡 To review all changes, use: --max-diff-chars {stats.recommended_max_chars}"
    )
    return truncated + notice, stats


def detect_platform(
    url_or_id: str,
    platform: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Decide which platform a target belongs to.

    Args:
        url_or_id: MR/PR URL or numeric ID.
        platform: Explicit override ("gitlab" or "github").
        environ: Environment used for default-project hints.

    Returns:
        "gitlab" or "github".

    Raises:
        ConfigError: If the target is empty or the override is unknown.

    """
    if not url_or_id:
        raise ConfigError("URL or ID is required")
    if platform:
        platform = platform.lower()
        if platform not in PLATFORMS:
            raise ConfigError(f"Unknown platform: {platform!r}. Expected 'gitlab' or 'github'.")
        return platform

    if re.search(r"github\.com", url_or_id):
        return "github"
    if url_or_id.isdigit():
        env = os.environ if environ is None else environ
        if env.get("GITHUB_DEFAULT_REPO") and not env.get("GITLAB_DEFAULT_PROJECT"):
            return "github"
    return "gitlab"


def create_client(
    platform: str,
    session: aiohttp.ClientSession,
    environ: Mapping[str, str] | None = None,
) -> PlatformClient:
    """Create a platform client from environment credentials.

    Args:
        platform: "gitlab" or "github".
        session: Shared aiohttp session.
        environ: Environment to read tokens from. Defaults to os.environ.

    Returns:
        A PlatformClient instance.

    Raises:
        ConfigError: If the token is missing or the platform is unknown.

    """
    env = os.environ if environ is None else environ
    if platform == "gitlab":
        from mrpilot.clients.gitlab import GitLabClient

        token = env.get("GITLAB_TOKEN")
        if not token:
            raise ConfigError("GITLAB_TOKEN environment variable is not set")
        return GitLabClient(
            session,
            token,
            api_url=env.get("GITLAB_API"),
            default_project=env.get("GITLAB_DEFAULT_PROJECT"),
        )
    if platform == "github":
        from mrpilot.clients.github import GitHubClient

        token = env.get("GITHUB_TOKEN")
        if not token:
            raise ConfigError("GITHUB_TOKEN environment variable is not set")
        return GitHubClient(session, token, default_repo=env.get("GITHUB_DEFAULT_REPO"))
    raise ConfigError(f"Unknown platform: {platform!r}. Expected 'gitlab' or 'github'.")


__all__ = [
    "DiffStats",
    "MergeRequestData",
    "PlatformClient",
    "create_client",
    "detect_platform",
    "format_file_diffs",
    "truncate_diffs",
]
