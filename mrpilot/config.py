"""Configuration constants and settings for mr-pilot.

Provide centralized configuration values used throughout the mr-pilot package.
Constants cover protocol versions and the timeouts of the proxy channel; the
dataclasses are populated from environment variables.

Exports:
    AUTH_TIMEOUT: float - Seconds a new worker channel has to authenticate.
    RECONNECT_DELAY: float - Fixed delay between worker reconnect attempts.
    OPEN_TIMEOUT: float - Seconds a worker waits for the websocket handshake.
    PROXY_REQUEST_TIMEOUT: float - Seconds a relayed invocation waits for a reply.
    ServerConfig: Settings for the MCP server (standalone, proxy or slave).
    ReviewConfig: Options for a single merge request review.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from mrpilot import __version__
from mrpilot.errors import ConfigError

MCP_PROTOCOL_VERSION = "2025-06-18"
SERVER_NAME = "mr-pilot-mcp-server"
SERVER_VERSION = __version__

# Proxy channel timeouts (seconds)
AUTH_TIMEOUT = 10.0
RECONNECT_DELAY = 5.0
OPEN_TIMEOUT = 10.0
PROXY_REQUEST_TIMEOUT = 300.0

# Websocket close codes used by the dispatcher
CLOSE_SUPERSEDED = 4000
CLOSE_AUTH_TIMEOUT = 4001
CLOSE_AUTH_FAILED = 4003

SSE_HEARTBEAT_INTERVAL = 15.0

LLM_REQUEST_TIMEOUT = 120.0
LLM_MAX_RETRIES = 3
PLATFORM_REQUEST_TIMEOUT = 30.0
PLATFORM_MAX_RETRIES = 3

DEFAULT_MAX_DIFF_CHARS = 50_000
DEFAULT_LLM_MODEL = "openai/gpt-oss-120b:exacto"

_TRUTHY = {"1", "true", "yes", "on"}


def _flag(value: str | None) -> bool:
    return value is not None and value.strip().lower() in _TRUTHY


def parse_slave_codes(raw: str | None) -> frozenset[str]:
    """Parse a comma-separated credential whitelist.

    Args:
        raw: Raw environment value, e.g. "code1, code2".

    Returns:
        Set of non-empty, stripped credentials.

    """
    if not raw:
        return frozenset()
    return frozenset(code.strip() for code in raw.split(",") if code.strip())


@dataclass
class ServerConfig:
    """Settings for the MCP server.

    Attributes:
        host: HTTP listen address.
        port: HTTP listen port.
        proxy_mode: Relay every invocation to a connected worker.
        slave_codes: Credentials accepted from workers (proxy mode).
        ws_host: Listen address of the worker channel (proxy mode).
        ws_port: Listen port of the worker channel (proxy mode).
        slave_mode: Connect out to a dispatcher and execute its invocations.
        slave_code: Credential presented to the dispatcher (slave mode).
        proxy_url: Websocket address of the dispatcher (slave mode).
        log_level: Logging level name.

    """

    host: str = "127.0.0.1"
    port: int = 8000
    proxy_mode: bool = False
    slave_codes: frozenset[str] = field(default_factory=frozenset)
    ws_host: str | None = None
    ws_port: int = 8001
    slave_mode: bool = False
    slave_code: str | None = None
    proxy_url: str = "ws://127.0.0.1:8001"
    log_level: str = "INFO"

    @property
    def mode(self) -> str:
        if self.proxy_mode:
            return "proxy"
        if self.slave_mode:
            return "slave"
        return "standalone"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ServerConfig":
        """Build a ServerConfig from environment variables.

        Args:
            environ: Mapping to read from. Defaults to os.environ.

        Returns:
            ServerConfig populated from the environment.

        Raises:
            ConfigError: If a port is not an integer.

        """
        env = os.environ if environ is None else environ
        try:
            port = int(env.get("MCP_SERVER_PORT", "8000"))
            ws_port = int(env.get("PROXY_WS_PORT", "8001"))
        except ValueError as e:
            raise ConfigError(f"Invalid port: {e}") from e

        return cls(
            host=env.get("MCP_SERVER_HOST", "127.0.0.1"),
            port=port,
            proxy_mode=_flag(env.get("PROXY_MODE")),
            slave_codes=parse_slave_codes(env.get("SLAVE_CODES")),
            ws_host=env.get("PROXY_WS_HOST") or None,
            ws_port=ws_port,
            slave_mode=_flag(env.get("PROXY_SLAVE")),
            slave_code=env.get("SLAVE_CODE") or None,
            proxy_url=env.get("PROXY_SERVER_URL") or env.get("PROXY_URL", "ws://127.0.0.1:8001"),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> None:
        """Check that the selected mode has what it needs.

        Raises:
            ConfigError: If the configuration cannot be used.

        """
        if self.proxy_mode and self.slave_mode:
            raise ConfigError("PROXY_MODE and PROXY_SLAVE are mutually exclusive")
        if self.proxy_mode and not self.slave_codes:
            raise ConfigError("PROXY_MODE requires at least one code in SLAVE_CODES")
        if self.slave_mode:
            if not self.slave_code:
                raise ConfigError("PROXY_SLAVE requires SLAVE_CODE")
            if not self.proxy_url:
                raise ConfigError("PROXY_SLAVE requires PROXY_SERVER_URL or PROXY_URL")


@dataclass
class ReviewConfig:
    """Options for a single merge request / pull request review.

    Attributes:
        target: MR/PR URL or numeric ID.
        project: Project path used with a numeric ID.
        platform: "gitlab" or "github"; auto-detected when None.
        ticket_spec: Requirement text the change is checked against.
        guidelines: Project guidelines used to reduce false positives.
        acceptance_criteria: Text appended to the posted comment.
        max_diff_chars: Diff size limit before truncation.
        post_comment: Post the review as a comment on the MR/PR.
        debug: Print the prompt and raw LLM answer.
        backend: LLM backend name. Defaults to LLM_PROVIDER.
        model: LLM model override.

    """

    target: str
    project: str | None = None
    platform: str | None = None
    ticket_spec: str | None = None
    guidelines: str | None = None
    acceptance_criteria: str | None = None
    max_diff_chars: int | None = None
    post_comment: bool = False
    debug: bool = False
    backend: str | None = None
    model: str | None = None

    def resolved_max_diff_chars(self, environ: Mapping[str, str] | None = None) -> int:
        """Return the effective diff limit (explicit, then MAX_DIFF_CHARS, then default)."""
        if self.max_diff_chars:
            return self.max_diff_chars
        env = os.environ if environ is None else environ
        raw = env.get("MAX_DIFF_CHARS")
        if raw and raw.isdigit() and int(raw) > 0:
            return int(raw)
        return DEFAULT_MAX_DIFF_CHARS
