"""GitLab merge request client."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import aiohttp

from mrpilot.clients import MergeRequestData, format_file_diffs, truncate_diffs
from mrpilot.config import DEFAULT_MAX_DIFF_CHARS, PLATFORM_REQUEST_TIMEOUT
from mrpilot.errors import ConfigError, PlatformError

logger = logging.getLogger(__name__)

MR_URL_PATTERN = re.compile(r"(https?)://([^/]+)/(.+?)/-/merge_requests/(\d+)")


@dataclass
class MergeRequestRef:
    """Location of a merge request on a GitLab instance."""

    api_base: str
    project_path: str
    iid: str

    @property
    def project_id(self) -> str:
        return quote(self.project_path, safe="")

    @property
    def url(self) -> str:
        return f"{self.api_base}/projects/{self.project_id}/merge_requests/{self.iid}"


def parse_mr_url(
    url_or_id: str,
    project: str | None = None,
    api_url: str | None = None,
) -> MergeRequestRef:
    """Resolve a GitLab MR URL or IID.

    Args:
        url_or_id: Full MR URL, or the numeric MR IID.
        project: Project path used with a numeric IID.
        api_url: GitLab API base (e.g. https://gitlab.com/api/v4) used with an IID.

    Returns:
        MergeRequestRef for the merge request.

    Raises:
        ConfigError: If the input cannot be resolved to a merge request.
    """
    if not url_or_id:
        raise ConfigError("MR URL or ID is required")

    match = MR_URL_PATTERN.search(url_or_id)
    if match:
        scheme, domain, project_path, iid = match.groups()
        return MergeRequestRef(
            api_base=f"{scheme}://{domain}/api/v4",
            project_path=project_path,
            iid=iid,
        )

    if url_or_id.isdigit():
        if not project:
            raise ConfigError(
                "MR ID provided without project. Use --project or set GITLAB_DEFAULT_PROJECT"
            )
        if not api_url:
            raise ConfigError("GITLAB_API must be set to review an MR by ID")
        return MergeRequestRef(api_base=api_url.rstrip("/"), project_path=project, iid=url_or_id)

    raise ConfigError(
        "Invalid GitLab MR URL format. "
        "Expected: https://gitlab.domain/project/path/-/merge_requests/123"
    )


class GitLabClient:
    """Fetch merge request diffs and post notes through the GitLab REST API.

    Args:
        session: Shared aiohttp session.
        token: Personal access token (PRIVATE-TOKEN header).
        api_url: API base used for numeric IIDs.
        default_project: Project path used for numeric IIDs without --project.
    """

    platform = "gitlab"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        token: str,
        api_url: str | None = None,
        default_project: str | None = None,
    ):
        self.session = session
        self.token = token
        self.api_url = api_url
        self.default_project = default_project

    def _ref(self, url_or_id: str, project: str | None) -> MergeRequestRef:
        return parse_mr_url(url_or_id, project or self.default_project, self.api_url)

    async def _request(self, method: str, url: str, json: Any = None) -> Any:
        headers = {"PRIVATE-TOKEN": self.token}
        timeout = aiohttp.ClientTimeout(total=PLATFORM_REQUEST_TIMEOUT)
        try:
            async with self.session.request(
                method, url, headers=headers, json=json, timeout=timeout
            ) as response:
                if response.status == 404:
                    raise PlatformError(
                        "MR not found. Check the URL and ensure you have access to this project.",
                        status=404,
                    )
                if response.status in (401, 403):
                    raise PlatformError(
                        "Authentication failed. Check your GITLAB_TOKEN.", status=response.status
                    )
                if response.status >= 400:
                    raise PlatformError(
                        f"GitLab API error: {response.status} - {response.reason}",
                        status=response.status,
                    )
                return await response.json()
        except aiohttp.ClientError as e:
            raise PlatformError(f"GitLab request failed: {e}") from e

    async def get_diffs(
        self,
        url_or_id: str,
        project: str | None = None,
        max_diff_chars: int | None = None,
    ) -> MergeRequestData:
        """Fetch merge request metadata and its diff.

        Args:
            url_or_id: MR URL or IID.
            project: Project path for an IID.
            max_diff_chars: Diff size limit.

        Returns:
            MergeRequestData with a possibly truncated diff.

        Raises:
            ConfigError: If the MR reference is invalid.
            PlatformError: If the API call fails.
        """
        ref = self._ref(url_or_id, project)
        logger.info("Fetching MR %s from project %s", ref.iid, ref.project_path)
        mr = await self._request("GET", f"{ref.url}/changes")

        changes = mr.get("changes") or []
        diffs = format_file_diffs([
            (change.get("new_path") or change.get("old_path") or "unknown", change.get("diff", ""))
            for change in changes
        ])
        diffs, stats = truncate_diffs(diffs, max_diff_chars or DEFAULT_MAX_DIFF_CHARS)

        return MergeRequestData(
            title=mr.get("title", ""),
            description=mr.get("description") or "No description provided",
            source_branch=mr.get("source_branch", ""),
            target_branch=mr.get("target_branch", ""),
            changed_files=len(changes),
            diffs=diffs,
            diff_stats=stats,
            web_url=mr.get("web_url"),
            labels=list(mr.get("labels") or []),
        )

    async def post_comment(self, url_or_id: str, body: str, project: str | None = None) -> None:
        """Post a note on the merge request.

        Raises:
            PlatformError: If the API call fails.
        """
        ref = self._ref(url_or_id, project)
        logger.info("Posting comment to MR %s", ref.iid)
        await self._request("POST", f"{ref.url}/notes", json={"body": body})
