"""MCP front-end: Streamable HTTP + SSE transport on aiohttp.

Requests are answered by the local ``ToolDispatcher`` (standalone and slave
modes) or relayed to the connected worker (proxy mode). ``run_server`` wires
the HTTP site together with the channel listener or the worker connector,
depending on the configured mode.
"""

import asyncio
import json
import logging
import signal
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from aiohttp import web

from mrpilot.config import (
    MCP_PROTOCOL_VERSION,
    SERVER_NAME,
    SERVER_VERSION,
    SSE_HEARTBEAT_INTERVAL,
    ServerConfig,
)
from mrpilot.dispatcher import ToolDispatcher
from mrpilot.errors import ProxyError
from mrpilot.ipc import (
    INVALID_PARAMS,
    INVALID_REQUEST,
    JSONRPC_VERSION,
    PARSE_ERROR,
    RequestId,
    error_response,
)
from mrpilot.proxy import ChannelServer, DispatchRegistry, RequestRelay, WorkerConnector
from mrpilot.tools import default_tools

logger = logging.getLogger(__name__)

MCP_PATHS = ("/mcp", "/messages/", "/", "/sse")

CORS_ALLOW_METHODS = "GET, POST, DELETE, OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type, Mcp-Session-Id, Mcp-Protocol-Version, Last-Event-ID"


# =============================================================================
# Sessions
# =============================================================================


@dataclass
class Session:
    """A client session identified by the Mcp-Session-Id header."""

    id: str
    created: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    subscribers: set[asyncio.Queue] = field(default_factory=set)


class SessionStore:
    """In-memory session table and server-push fan-out for SSE streams."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._event_id = 0

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def touch(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            session = self._sessions[session_id] = Session(id=session_id)
        session.last_activity = time.time()
        return session

    def remove(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def subscribe(self, session_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self.touch(session_id).subscribers.add(queue)
        return queue

    def unsubscribe(self, session_id: str, queue: asyncio.Queue) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.subscribers.discard(queue)

    def publish(self, session_id: str, data: Any) -> int:
        """Push a message to every SSE stream of a session.

        Args:
            session_id: Target session.
            data: JSON-serializable payload.

        Returns:
            The event id assigned to the message.
        """
        self._event_id += 1
        session = self._sessions.get(session_id)
        if session is not None:
            for queue in session.subscribers:
                queue.put_nowait((self._event_id, data))
        return self._event_id


# =============================================================================
# HTTP handlers
# =============================================================================


class MCPHttpServer:
    """Request handlers for the MCP HTTP surface.

    Args:
        config: Server configuration (mode is reported by /health).
        dispatcher: Local dispatcher answering requests when not relaying.
        relay: Relay used in proxy mode. None answers locally.
        registry: Proxy registry, used for /health counters.
        heartbeat_interval: Seconds between SSE heartbeat comments.
    """

    def __init__(
        self,
        config: ServerConfig,
        dispatcher: ToolDispatcher,
        relay: RequestRelay | None = None,
        registry: DispatchRegistry | None = None,
        heartbeat_interval: float = SSE_HEARTBEAT_INTERVAL,
    ):
        self.config = config
        self.dispatcher = dispatcher
        self.relay = relay
        self.registry = registry
        self.heartbeat_interval = heartbeat_interval
        self.sessions = SessionStore()

    @staticmethod
    def _cors_origin(request: web.Request) -> dict[str, str]:
        return {"Access-Control-Allow-Origin": request.headers.get("Origin", "*")}

    async def answer(self, method: str, params: dict[str, Any], request_id: RequestId) -> dict[str, Any]:
        """Produce the JSON-RPC response for one request.

        In proxy mode the request is relayed under a fresh correlation id and
        the reply is re-stamped with the caller's id; relay failures become
        JSON-RPC errors.
        """
        if self.relay is None:
            return await self.dispatcher.dispatch(method, params, request_id)

        try:
            response = await self.relay.relay(method, params)
        except ProxyError as e:
            logger.error("Proxy request %s failed: %s", method, e)
            return error_response(request_id, e.code, str(e))
        response = dict(response)
        response["id"] = request_id
        return response

    async def handle_mcp(self, request: web.Request) -> web.StreamResponse:
        if request.method == "POST":
            return await self.handle_post(request)
        if request.method == "GET":
            return await self.handle_sse(request)
        if request.method == "DELETE":
            return await self.handle_delete(request)
        if request.method == "OPTIONS":
            return await self.handle_options(request)
        return web.Response(status=405, text="Method Not Allowed")

    async def handle_post(self, request: web.Request) -> web.Response:
        body = await request.text()
        logger.debug("POST body received: %s", body[:200])
        try:
            msg = json.loads(body)
        except json.JSONDecodeError as e:
            logger.error("Error handling POST: %s", e)
            return web.json_response(
                {"jsonrpc": JSONRPC_VERSION, "error": {"code": PARSE_ERROR, "message": "Parse error"}},
                status=400,
            )

        if not isinstance(msg, dict) or msg.get("jsonrpc") != JSONRPC_VERSION:
            logger.error("Invalid JSON-RPC version")
            return web.json_response(
                {
                    "jsonrpc": JSONRPC_VERSION,
                    "error": {"code": INVALID_REQUEST, "message": "Invalid JSON-RPC version"},
                },
                status=400,
            )

        session_id = request.headers.get("Mcp-Session-Id") or uuid.uuid4().hex
        self.sessions.touch(session_id)
        headers = {"Mcp-Session-Id": session_id, **self._cors_origin(request)}

        method = str(msg.get("method", ""))
        params = msg.get("params")
        logger.info("Received POST request: %s (id: %r)", method or "notification", msg.get("id"))

        # Workers only accept object params
        if params is None:
            params = {}
        elif not isinstance(params, dict):
            logger.error("Invalid params for %s: expected an object", method)
            return web.json_response(
                error_response(msg.get("id"), INVALID_PARAMS, "Invalid params: params must be an object"),
                status=400,
                headers=headers,
            )

        if "id" in msg:
            response = await self.answer(method, params, msg["id"])
            return web.json_response(response, headers=headers)

        await self.answer(method, params, None)
        logger.debug("Processed notification (no response)")
        return web.Response(status=204, headers=headers)

    async def handle_sse(self, request: web.Request) -> web.StreamResponse:
        session_id = request.headers.get("Mcp-Session-Id")
        if not session_id:
            session_id = uuid.uuid4().hex
            logger.info("SSE connection without session ID, creating new session: %s", session_id)
        else:
            logger.info("SSE connection established for session: %s", session_id)

        last_event_id = request.headers.get("Last-Event-ID", "0")
        last_seen = int(last_event_id) if last_event_id.isdigit() else 0

        response = web.StreamResponse(
            status=200,
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "Mcp-Session-Id": session_id,
                **self._cors_origin(request),
            },
        )
        await response.prepare(request)

        queue = self.sessions.subscribe(session_id)
        try:
            await response.write(b": MCP SSE endpoint connected\n\n")
            await response.write(f": Session ID: {session_id}\n\n".encode())
            await response.write(b": Send POST requests to /mcp for JSON-RPC calls\n\n")
            while True:
                try:
                    event_id, data = await asyncio.wait_for(queue.get(), self.heartbeat_interval)
                except asyncio.TimeoutError:
                    await response.write(b": heartbeat\n\n")
                    continue
                if event_id <= last_seen:
                    continue
                await response.write(f"id: {event_id}\ndata: {json.dumps(data)}\n\n".encode())
                last_seen = event_id
        except ConnectionResetError:
            logger.info("SSE connection closed for session: %s", session_id)
        finally:
            self.sessions.unsubscribe(session_id, queue)
        return response

    async def handle_delete(self, request: web.Request) -> web.Response:
        session_id = request.headers.get("Mcp-Session-Id")
        if session_id and self.sessions.remove(session_id):
            logger.info("Session terminated: %s", session_id)
            return web.Response(status=200)
        logger.warning("DELETE request for unknown session: %s", session_id)
        return web.Response(status=404)

    async def handle_options(self, request: web.Request) -> web.Response:
        return web.Response(
            status=200,
            headers={
                **self._cors_origin(request),
                "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
                "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
                "Access-Control-Max-Age": "86400",
            },
        )

    async def handle_health(self, request: web.Request) -> web.Response:
        if request.method == "OPTIONS":
            return await self.handle_options(request)
        body: dict[str, Any] = {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "protocol": MCP_PROTOCOL_VERSION,
            "activeSessions": len(self.sessions),
            "mode": self.config.mode,
        }
        if self.registry is not None:
            body["slaveConnected"] = self.registry.has_active_worker
            body["pendingRequests"] = self.registry.pending_count
        return web.json_response(body)


@web.middleware
async def protocol_version_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    logger.debug("%s %s", request.method, request.path)
    version = request.headers.get("Mcp-Protocol-Version")
    if version and version != MCP_PROTOCOL_VERSION:
        logger.warning(
            "Client using different protocol version: %s (server supports %s)",
            version,
            MCP_PROTOCOL_VERSION,
        )
    elif version is None and request.method == "POST":
        logger.debug("POST request without Mcp-Protocol-Version header")
    return await handler(request)


MCP_SERVER_KEY = web.AppKey("mcp_server", MCPHttpServer)


def create_app(
    config: ServerConfig,
    dispatcher: ToolDispatcher,
    relay: RequestRelay | None = None,
    registry: DispatchRegistry | None = None,
    heartbeat_interval: float = SSE_HEARTBEAT_INTERVAL,
) -> web.Application:
    """Build the aiohttp application serving the MCP endpoints.

    Args:
        config: Server configuration.
        dispatcher: Local dispatcher.
        relay: Relay for proxy mode.
        registry: Proxy registry for /health.
        heartbeat_interval: Seconds between SSE heartbeats.

    Returns:
        Configured web.Application. The handler object is stored under
        ``MCP_SERVER_KEY``.
    """
    server = MCPHttpServer(config, dispatcher, relay, registry, heartbeat_interval)
    app = web.Application(middlewares=[protocol_version_middleware])
    app[MCP_SERVER_KEY] = server
    app.router.add_route("*", "/health", server.handle_health)
    for path in MCP_PATHS:
        app.router.add_route("*", path, server.handle_mcp)
    return app


# =============================================================================
# Process runner
# =============================================================================


async def run_server(config: ServerConfig, dispatcher: ToolDispatcher | None = None) -> None:
    """Serve until SIGINT or SIGTERM.

    Args:
        config: Validated server configuration.
        dispatcher: Local dispatcher. Defaults to one exposing the review tool.

    Raises:
        ConfigError: If the configuration is inconsistent.
        OSError: If a listener cannot bind.
    """
    config.validate()
    dispatcher = dispatcher or ToolDispatcher(default_tools())

    registry: DispatchRegistry | None = None
    relay: RequestRelay | None = None
    channel_server: ChannelServer | None = None
    connector: WorkerConnector | None = None
    connector_task: asyncio.Task | None = None

    if config.mode == "proxy":
        registry = DispatchRegistry(config.slave_codes)
        relay = RequestRelay(registry)
        channel_server = ChannelServer(registry, config.ws_host or config.host, config.ws_port)
        await channel_server.start()

    app = create_app(config, dispatcher, relay, registry)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, config.host, config.port)
    await site.start()

    logger.info("MCP Server for mr-pilot started (mode: %s)", config.mode)
    logger.info("Listening on http://%s:%d", config.host, config.port)
    logger.info("Protocol Version: %s", MCP_PROTOCOL_VERSION)
    logger.info("Available tools: %s", ", ".join(dispatcher.tools))

    if config.mode == "slave":
        connector = WorkerConnector(config.proxy_url, config.slave_code or "", dispatcher)
        connector_task = asyncio.create_task(connector.run())

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await stop.wait()
        logger.info("Shutdown requested, stopping server...")
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        if connector is not None:
            await connector.stop()
        if connector_task is not None:
            connector_task.cancel()
            await asyncio.gather(connector_task, return_exceptions=True)
        if channel_server is not None:
            await channel_server.stop()
        await runner.cleanup()
        logger.info("Server closed")
