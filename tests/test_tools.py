# tests/test_tools.py
"""Tests for the review_merge_request MCP tool."""

import pytest

from mrpilot.config import ReviewConfig
from mrpilot.dispatcher import ToolDispatcher
from mrpilot.errors import PlatformError, ToolError
from mrpilot.review import ReviewResult
from mrpilot.tools import REVIEW_TOOL_DEFINITION, create_review_tool, default_tools, review_config_from_arguments


class TestReviewConfigFromArguments:
    """Tests for mapping tool arguments to ReviewConfig."""

    def test_maps_all_arguments(self):
        config = review_config_from_arguments({
            "mrUrlOrId": "123",
            "project": "group/project",
            "platform": "gitlab",
            "ticketSpec": "Implement login",
            "guidelines": "Tabs are fine",
            "acceptanceCriteria": "- user can log in",
            "maxDiffChars": 80000,
            "postComment": True,
            "debug": True,
        })

        assert config == ReviewConfig(
            target="123",
            project="group/project",
            platform="gitlab",
            ticket_spec="Implement login",
            guidelines="Tabs are fine",
            acceptance_criteria="- user can log in",
            max_diff_chars=80000,
            post_comment=True,
            debug=True,
        )

    def test_defaults(self):
        config = review_config_from_arguments({"mrUrlOrId": "https://github.com/o/r/pull/1"})
        assert config.post_comment is False
        assert config.max_diff_chars is None
        assert config.ticket_spec is None

    def test_missing_target(self):
        with pytest.raises(ToolError, match="mrUrlOrId parameter is required"):
            review_config_from_arguments({})

    @pytest.mark.parametrize("value", [0, -1, "lots"])
    def test_invalid_max_diff_chars(self, value):
        with pytest.raises(ToolError, match="maxDiffChars"):
            review_config_from_arguments({"mrUrlOrId": "1", "maxDiffChars": value})

    def test_float_max_diff_chars_truncated(self):
        assert review_config_from_arguments({"mrUrlOrId": "1", "maxDiffChars": 1500.0}).max_diff_chars == 1500


class TestReviewTool:
    """Tests for the tool as seen through the dispatcher."""

    def test_definition(self):
        assert REVIEW_TOOL_DEFINITION["name"] == "review_merge_request"
        assert REVIEW_TOOL_DEFINITION["inputSchema"]["required"] == ["mrUrlOrId"]
        assert [tool.name for tool in default_tools()] == ["review_merge_request"]

    @pytest.mark.asyncio
    async def test_call_runs_review(self):
        seen: list[ReviewConfig] = []

        async def runner(config: ReviewConfig) -> ReviewResult:
            seen.append(config)
            return ReviewResult(goal_status="met", score=88, issues=[], remarks="Nice")

        dispatcher = ToolDispatcher([create_review_tool(runner)])
        response = await dispatcher.dispatch(
            "tools/call",
            {"name": "review_merge_request", "arguments": {"mrUrlOrId": "42", "project": "o/r"}},
            1,
        )

        assert seen[0].target == "42"
        result = response["result"]
        assert result["isError"] is False
        assert result["structuredContent"]["goalStatus"] == "met"
        assert result["structuredContent"]["score"] == 88

    @pytest.mark.asyncio
    async def test_review_failure_is_error_content(self):
        async def runner(config: ReviewConfig) -> ReviewResult:
            raise PlatformError("MR not found. Check the URL and ensure you have access to this project.")

        dispatcher = ToolDispatcher([create_review_tool(runner)])
        response = await dispatcher.dispatch(
            "tools/call", {"name": "review_merge_request", "arguments": {"mrUrlOrId": "1"}}, 2
        )

        assert response["result"]["isError"] is True
        assert "MR not found" in response["result"]["content"][0]["text"]

    @pytest.mark.asyncio
    async def test_missing_target_is_error_content(self):
        dispatcher = ToolDispatcher([create_review_tool()])
        response = await dispatcher.dispatch(
            "tools/call", {"name": "review_merge_request", "arguments": {}}, 3
        )
        assert response["result"]["content"][0]["text"] == "Error: mrUrlOrId parameter is required"
