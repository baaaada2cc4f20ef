"""Local MCP method dispatcher.

Maps JSON-RPC method names to handlers. Protocol methods (initialize, ping,
tools/list, ...) are built in; tools are registered by name and invoked
through ``tools/call``. The same dispatcher answers HTTP clients in standalone
mode and relayed invocations on a worker.
"""

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from mrpilot.config import MCP_PROTOCOL_VERSION, SERVER_NAME, SERVER_VERSION
from mrpilot.errors import ToolError
from mrpilot.ipc import (
    INTERNAL_ERROR,
    METHOD_NOT_FOUND,
    JsonRpcResponse,
    RequestId,
    error_response,
)

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Awaitable[Any]]
MethodHandler = Callable[[dict[str, Any]], Awaitable[Any]]


@dataclass
class Tool:
    """A callable MCP tool.

    Attributes:
        definition: Tool definition advertised by tools/list (name, schemas).
        handler: Coroutine function receiving the tool arguments.
    """

    definition: dict[str, Any]
    handler: ToolHandler

    @property
    def name(self) -> str:
        return self.definition["name"]


class ToolDispatcher:
    """Dispatch MCP method calls to built-in handlers and registered tools.

    Args:
        tools: Tools to expose, in advertisement order.
    """

    def __init__(self, tools: list[Tool] | None = None):
        self.tools: dict[str, Tool] = {tool.name: tool for tool in tools or []}
        self._methods: dict[str, MethodHandler] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "notifications/initialized": self._ping,
            "tools/list": self._tools_list,
            "tools/call": self._tools_call,
        }

    def register(self, tool: Tool) -> None:
        self.tools[tool.name] = tool

    async def dispatch(
        self,
        method: str,
        params: dict[str, Any] | None,
        request_id: RequestId,
    ) -> dict[str, Any]:
        """Execute a method and build its JSON-RPC response.

        Args:
            method: JSON-RPC method name.
            params: Method parameters.
            request_id: Identifier echoed in the response.

        Returns:
            JSON-RPC response dict carrying either a result or an error.
        """
        logger.info("Dispatching method: %s", method)
        handler = self._methods.get(method)
        if handler is None:
            logger.warning("Unknown method: %s", method)
            return error_response(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")

        try:
            result = await handler(params or {})
        except ToolError as e:
            logger.error("Method %s failed: %s", method, e)
            return error_response(request_id, e.code, str(e))
        except Exception as e:
            logger.exception("Error dispatching method %s", method)
            return error_response(request_id, INTERNAL_ERROR, str(e))
        return JsonRpcResponse(id=request_id, result=result).to_dict()

    async def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        client = params.get("clientInfo") or {}
        if client:
            logger.info("Client initialized: %s %s", client.get("name"), client.get("version", ""))
        return {
            "protocolVersion": MCP_PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
        }

    async def _ping(self, params: dict[str, Any]) -> dict[str, Any]:
        return {}

    async def _tools_list(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"tools": [tool.definition for tool in self.tools.values()]}

    async def _tools_call(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        tool = self.tools.get(name) if isinstance(name, str) else None
        if tool is None:
            raise ToolError(f"Unknown tool: {name}", code=METHOD_NOT_FOUND)

        logger.info("Calling tool: %s", name)
        try:
            result = await tool.handler(params.get("arguments") or {})
        except Exception as e:
            logger.error("Tool %s execution failed: %s", name, e)
            return {
                "content": [{"type": "text", "text": f"Error: {e}"}],
                "isError": True,
            }

        logger.info("Tool %s executed successfully", name)
        return {
            "content": [{"type": "text", "text": json.dumps(result, indent=2)}],
            "structuredContent": result,
            "isError": False,
        }
