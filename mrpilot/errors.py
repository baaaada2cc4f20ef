"""Error types for mr-pilot."""


class MrPilotError(Exception):
    """Base class for mr-pilot errors."""


class ConfigError(MrPilotError):
    """Configuration is missing or inconsistent."""


class ProtocolError(MrPilotError, ValueError):
    """A wire message could not be decoded."""


class ProxyError(MrPilotError):
    """Base class for failures of a relayed invocation.

    Attributes:
        code: JSON-RPC error code reported to the original caller.
    """

    code = -32000


class NoWorkerError(ProxyError):
    """No worker is connected to relay the invocation to."""

    code = -32001

    def __init__(self, message: str = "No slave server connected"):
        super().__init__(message)


class ProxyTimeoutError(ProxyError):
    """The worker did not reply before the relay timeout."""

    code = -32002

    def __init__(self, message: str = "Proxy request timeout"):
        super().__init__(message)


class ChannelError(ProxyError):
    """Writing to the worker channel failed."""


class ToolError(MrPilotError):
    """A tool or method invocation failed.

    Args:
        message: Error description.
        code: JSON-RPC error code.
    """

    def __init__(self, message: str, code: int = -32000):
        self.code = code
        super().__init__(message)


class PlatformError(MrPilotError):
    """GitLab or GitHub API call failed.

    Args:
        message: Error description.
        status: HTTP status code, if a response was received.
    """

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message)


class LLMError(MrPilotError):
    """LLM provider call failed."""


class ReviewParseError(MrPilotError):
    """LLM output is not a valid review."""
