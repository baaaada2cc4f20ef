# mrpilot/proxy/channel.py
"""Websocket listener accepting worker channels on the dispatcher."""

import logging

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from mrpilot.proxy.registry import DispatchRegistry

logger = logging.getLogger(__name__)


class WebSocketChannel:
    """Adapts a websocket connection to the registry's Channel protocol."""

    def __init__(self, connection: ServerConnection):
        self.connection = connection

    async def send(self, text: str) -> None:
        await self.connection.send(text)

    async def close(self, code: int, reason: str) -> None:
        await self.connection.close(code=code, reason=reason)

    def __repr__(self) -> str:
        return f"WebSocketChannel({self.connection.remote_address!r})"


class ChannelServer:
    """Accept worker connections and feed their frames to the registry.

    Args:
        registry: Registry that performs admission and correlation.
        host: Listen address.
        port: Listen port. Use 0 to pick a free port.
    """

    def __init__(self, registry: DispatchRegistry, host: str, port: int):
        self.registry = registry
        self.host = host
        self.port = port
        self._server: Server | None = None

    @property
    def bound_port(self) -> int | None:
        """Port actually bound, useful when started with port 0."""
        if self._server is None:
            return None
        for sock in self._server.sockets:
            return sock.getsockname()[1]
        return None

    async def start(self) -> None:
        """Start listening for worker channels."""
        self._server = await serve(self._handle, self.host, self.port)
        logger.info("Worker channel listening on ws://%s:%s", self.host, self.bound_port)

    async def stop(self) -> None:
        """Close every worker channel and stop listening."""
        await self.registry.shutdown()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.info("Worker channel listener closed")

    async def _handle(self, connection: ServerConnection) -> None:
        channel = WebSocketChannel(connection)
        logger.info("Worker connection from %s", connection.remote_address)
        self.registry.open_channel(channel)
        try:
            async for message in connection:
                await self.registry.handle_message(channel, message)
        except ConnectionClosed as e:
            logger.warning("Worker connection lost: %s", e)
        finally:
            self.registry.close_channel(channel)
            logger.info("Worker connection from %s closed", connection.remote_address)
