# tests/conftest.py
"""Shared fixtures: in-memory worker channels and fake HTTP sessions."""

import json
from collections.abc import Awaitable, Callable
from typing import Any

import pytest


class FakeChannel:
    """In-memory stand-in for a worker websocket.

    Records every frame sent to it (decoded) and the close code/reason.
    """

    def __init__(self, name: str = "worker"):
        self.name = name
        self.sent: list[dict[str, Any]] = []
        self.closed: tuple[int, str] | None = None
        self.fail_send = False
        self.on_send: Callable[[dict[str, Any]], Awaitable[None]] | None = None

    async def send(self, text: str) -> None:
        if self.fail_send:
            raise ConnectionResetError("connection reset")
        message = json.loads(text)
        self.sent.append(message)
        if self.on_send is not None:
            await self.on_send(message)

    async def close(self, code: int, reason: str) -> None:
        self.closed = (code, reason)

    def requests(self) -> list[dict[str, Any]]:
        return [m for m in self.sent if "method" in m]

    def __repr__(self) -> str:
        return f"FakeChannel({self.name})"


class FakeResponse:
    """Minimal aiohttp response double usable as an async context manager."""

    def __init__(
        self,
        status: int = 200,
        body: Any = None,
        headers: dict[str, str] | None = None,
        reason: str = "OK",
    ):
        self.status = status
        self._body = body
        self.headers = headers or {}
        self.reason = reason

    async def json(self) -> Any:
        return self._body

    async def text(self) -> str:
        return self._body if isinstance(self._body, str) else json.dumps(self._body)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass


class FakeSession:
    """Serve queued FakeResponses in order and record each call."""

    def __init__(self, responses: list[FakeResponse | Exception] | None = None):
        self.responses = list(responses or [])
        self.calls: list[dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any):
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"Unexpected request: {method} {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def post(self, url: str, **kwargs: Any):
        return self.request("POST", url, **kwargs)

    def get(self, url: str, **kwargs: Any):
        return self.request("GET", url, **kwargs)


@pytest.fixture
def make_channel():
    """Factory for named FakeChannels."""
    def _make(name: str = "worker") -> FakeChannel:
        return FakeChannel(name)
    return _make
