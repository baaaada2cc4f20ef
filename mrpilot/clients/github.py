"""GitHub pull request client."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any

import aiohttp

from mrpilot.clients import MergeRequestData, format_file_diffs, truncate_diffs
from mrpilot.config import DEFAULT_MAX_DIFF_CHARS, PLATFORM_MAX_RETRIES, PLATFORM_REQUEST_TIMEOUT
from mrpilot.errors import ConfigError, PlatformError

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
PR_URL_PATTERN = re.compile(r"https?://github\.com/([^/]+)/([^/]+)/pull/(\d+)")
REPO_PATTERN = re.compile(r"^([^/]+)/([^/]+)$")

# Delay before retrying a 5xx or network failure
RETRY_DELAY = 2.0


@dataclass
class PullRequestRef:
    """Location of a pull request on GitHub."""

    owner: str
    repo: str
    number: str

    @property
    def repo_url(self) -> str:
        return f"{GITHUB_API}/repos/{self.owner}/{self.repo}"


def parse_pr_url(url_or_id: str, project: str | None = None) -> PullRequestRef:
    """Resolve a GitHub PR URL or number.

    Args:
        url_or_id: Full PR URL, or the PR number.
        project: "owner/repo" used with a PR number.

    Returns:
        PullRequestRef for the pull request.

    Raises:
        ConfigError: If the input cannot be resolved to a pull request.
    """
    if not url_or_id:
        raise ConfigError("PR URL or number is required")

    match = PR_URL_PATTERN.search(url_or_id)
    if match:
        owner, repo, number = match.groups()
        return PullRequestRef(owner=owner, repo=repo, number=number)

    if url_or_id.isdigit():
        if not project:
            raise ConfigError(
                "PR number provided without repository. "
                "Use --project or set GITHUB_DEFAULT_REPO"
            )
        repo_match = REPO_PATTERN.match(project)
        if not repo_match:
            raise ConfigError("Invalid repository format. Expected: owner/repo")
        owner, repo = repo_match.groups()
        return PullRequestRef(owner=owner, repo=repo, number=url_or_id)

    raise ConfigError(
        "Invalid input format. Expected: GitHub PR URL, "
        "or PR number with --project or GITHUB_DEFAULT_REPO"
    )


class GitHubClient:
    """Fetch pull request diffs and post comments through the GitHub REST API.

    Args:
        session: Shared aiohttp session.
        token: Token with the "repo" scope.
        default_repo: "owner/repo" used for PR numbers without --project.
        retry_delay: Seconds to wait before retrying server errors.
    """

    platform = "github"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        token: str,
        default_repo: str | None = None,
        retry_delay: float = RETRY_DELAY,
    ):
        self.session = session
        self.token = token
        self.default_repo = default_repo
        self.retry_delay = retry_delay
        self._token_validated = False

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _ref(self, url_or_id: str, project: str | None) -> PullRequestRef:
        return parse_pr_url(url_or_id, project or self.default_repo)

    async def _request(self, method: str, url: str, json: Any = None) -> tuple[Any, dict[str, str]]:
        """Send a request, retrying rate limits and server errors.

        Returns:
            Tuple of (decoded JSON body, response headers).

        Raises:
            PlatformError: On client errors or when retries are exhausted.
        """
        timeout = aiohttp.ClientTimeout(total=PLATFORM_REQUEST_TIMEOUT)
        for attempt in range(1, PLATFORM_MAX_RETRIES + 1):
            last_attempt = attempt == PLATFORM_MAX_RETRIES
            try:
                async with self.session.request(
                    method, url, headers=self.headers, json=json, timeout=timeout
                ) as response:
                    status = response.status
                    if status < 400:
                        return await response.json(), dict(response.headers)

                    if status == 404:
                        raise PlatformError(
                            "PR not found. Check the URL and ensure you have access "
                            "to this repository.",
                            status=404,
                        )
                    if status in (401, 403) and "x-ratelimit-reset" not in _lower_keys(response.headers):
                        raise PlatformError("Authentication failed. Check your GITHUB_TOKEN.", status=status)
                    if status in (403, 429):
                        reset = _lower_keys(response.headers).get("x-ratelimit-reset")
                        if last_attempt or reset is None:
                            raise PlatformError(
                                "GitHub API rate limit exceeded. Please try again later.",
                                status=status,
                            )
                        wait = max(0.0, int(reset) - time.time()) + 1
                        logger.warning("Rate limit exceeded. Waiting %.0f seconds...", wait)
                        await asyncio.sleep(wait)
                        continue
                    if status >= 500 and not last_attempt:
                        logger.warning("Server error (%d), retrying in %.0fs...", status, self.retry_delay)
                        await asyncio.sleep(self.retry_delay)
                        continue
                    raise PlatformError(
                        f"GitHub API error: {status} - {response.reason}", status=status
                    )
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if last_attempt:
                    raise PlatformError(
                        f"GitHub request failed after {PLATFORM_MAX_RETRIES} attempts: {e}"
                    ) from e
                logger.warning("Error: %s, retrying in %.0fs...", e, self.retry_delay)
                await asyncio.sleep(self.retry_delay)
        raise PlatformError("GitHub request failed")

    async def _validate_token(self) -> None:
        if self._token_validated:
            return
        _, headers = await self._request("GET", f"{GITHUB_API}/user")
        scopes = _lower_keys(headers).get("x-oauth-scopes")
        # Fine-grained tokens report no scopes header
        if scopes and "repo" not in scopes:
            raise PlatformError(
                'GITHUB_TOKEN is missing the required "repo" scope. '
                "Create a new token at https://github.com/settings/tokens"
            )
        self._token_validated = True

    async def get_diffs(
        self,
        url_or_id: str,
        project: str | None = None,
        max_diff_chars: int | None = None,
    ) -> MergeRequestData:
        """Fetch pull request metadata and its diff.

        Args:
            url_or_id: PR URL or number.
            project: "owner/repo" for a PR number.
            max_diff_chars: Diff size limit.

        Returns:
            MergeRequestData with a possibly truncated diff.

        Raises:
            ConfigError: If the PR reference is invalid.
            PlatformError: If an API call fails.
        """
        ref = self._ref(url_or_id, project)
        await self._validate_token()

        logger.info("Fetching PR %s from %s/%s", ref.number, ref.owner, ref.repo)
        pr, _ = await self._request("GET", f"{ref.repo_url}/pulls/{ref.number}")
        files, _ = await self._request("GET", f"{ref.repo_url}/pulls/{ref.number}/files")

        diffs = format_file_diffs([
            (f.get("filename", "unknown"), f.get("patch") or "(Binary or no changes)")
            for f in files
        ])
        diffs, stats = truncate_diffs(diffs, max_diff_chars or DEFAULT_MAX_DIFF_CHARS)

        return MergeRequestData(
            title=pr.get("title", ""),
            description=pr.get("body") or "No description provided",
            source_branch=pr.get("head", {}).get("ref", ""),
            target_branch=pr.get("base", {}).get("ref", ""),
            changed_files=len(files),
            diffs=diffs,
            diff_stats=stats,
            web_url=pr.get("html_url"),
            labels=[label.get("name", "") for label in pr.get("labels") or []],
        )

    async def post_comment(self, url_or_id: str, body: str, project: str | None = None) -> None:
        """Post an issue comment on the pull request.

        Raises:
            PlatformError: If the API call fails.
        """
        ref = self._ref(url_or_id, project)
        logger.info("Posting comment to PR %s", ref.number)
        await self._request("POST", f"{ref.repo_url}/issues/{ref.number}/comments", json={"body": body})


def _lower_keys(headers: Any) -> dict[str, str]:
    return {str(k).lower(): v for k, v in dict(headers).items()}
