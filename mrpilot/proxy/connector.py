# mrpilot/proxy/connector.py
"""Outbound worker link to a dispatcher.

The connector keeps a websocket open to the dispatcher, authenticates with
its slave code as soon as the socket is up, executes every relayed
invocation against the local tool dispatcher and reconnects after a fixed
delay whenever the socket goes away, for as long as the process runs.
"""

import asyncio
import logging
from typing import TYPE_CHECKING

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from mrpilot.config import OPEN_TIMEOUT, RECONNECT_DELAY
from mrpilot.errors import ProtocolError
from mrpilot.ipc import (
    AuthMessage,
    AuthResult,
    JsonRpcRequest,
    decode_message,
    encode_auth,
)
from mrpilot.proxy.relay import serve_invocation

if TYPE_CHECKING:
    from mrpilot.dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)


class WorkerConnector:
    """Maintain an authenticated channel from this worker to a dispatcher.

    Args:
        proxy_url: Websocket address of the dispatcher channel.
        slave_code: Credential presented on every connection.
        dispatcher: Local tool dispatcher executing relayed invocations.
        reconnect_delay: Fixed delay in seconds between connection attempts.
        open_timeout: Seconds allowed for the websocket opening handshake.
    """

    def __init__(
        self,
        proxy_url: str,
        slave_code: str,
        dispatcher: "ToolDispatcher",
        reconnect_delay: float = RECONNECT_DELAY,
        open_timeout: float = OPEN_TIMEOUT,
    ):
        self.proxy_url = proxy_url
        self.slave_code = slave_code
        self.dispatcher = dispatcher
        self.reconnect_delay = reconnect_delay
        self.open_timeout = open_timeout

        self.connected = False
        self.authenticated = False
        self.connect_attempts = 0
        self.last_rejection: str | None = None

        self._ws: ClientConnection | None = None
        self._running = False
        self._tasks: set[asyncio.Task] = set()
        self._authenticated_event = asyncio.Event()

    async def run(self) -> None:
        """Connect and keep reconnecting until stop() is called."""
        self._running = True
        while self._running:
            self.connect_attempts += 1
            try:
                await self._connect_once()
            except (InvalidURI, InvalidHandshake) as e:
                logger.error("Handshake with proxy failed: %s", e)
            except ConnectionClosed as e:
                logger.warning("Connection to proxy lost: %s", e)
            except (OSError, asyncio.TimeoutError) as e:
                logger.error("Cannot reach proxy at %s: %s (%s)", self.proxy_url, e, type(e).__name__)
            except Exception as e:
                logger.exception("Connection error: %s (%s)", e, type(e).__name__)
            finally:
                self.connected = False
                self.authenticated = False
                self._authenticated_event.clear()
                self._ws = None

            if not self._running:
                break

            if self.last_rejection is not None:
                # Credentials are static, so this retry will be rejected again
                logger.warning(
                    "Proxy rejected slave code (%s); retrying anyway", self.last_rejection
                )
            logger.info("Reconnecting to proxy in %.0fs...", self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)

    async def stop(self) -> None:
        """Stop reconnecting and close the current connection."""
        self._running = False
        for task in list(self._tasks):
            task.cancel()
        if self._ws is not None:
            await self._ws.close()

    async def wait_authenticated(self, timeout: float | None = None) -> None:
        """Wait until the dispatcher accepted this worker."""
        await asyncio.wait_for(self._authenticated_event.wait(), timeout)

    async def _connect_once(self) -> None:
        logger.info("Connecting to proxy at %s", self.proxy_url)
        async with connect(self.proxy_url, open_timeout=self.open_timeout) as ws:
            self._ws = ws
            self.connected = True
            await ws.send(encode_auth(AuthMessage(slave_code=self.slave_code)))
            logger.info("Connected to proxy, authentication sent")

            async for frame in ws:
                await self._handle_frame(ws, frame)

            logger.warning(
                "Proxy closed the connection (code=%s, reason=%r)",
                ws.close_code, ws.close_reason,
            )

    async def _handle_frame(self, ws: ClientConnection, frame: str | bytes) -> None:
        try:
            message = decode_message(frame)
        except ProtocolError as e:
            logger.error("Dropping malformed message from proxy: %s", e)
            return

        if isinstance(message, AuthResult):
            if message.success:
                self.authenticated = True
                self.last_rejection = None
                self._authenticated_event.set()
                logger.info("Authenticated with proxy: %s", message.message)
            else:
                self.last_rejection = message.message
                logger.error("Authentication with proxy failed: %s", message.message)
                await ws.close()
            return

        if isinstance(message, JsonRpcRequest):
            if not self.authenticated:
                logger.warning("Ignoring %s received before authentication", message.method)
                return
            task = asyncio.create_task(serve_invocation(self.dispatcher, message, ws.send))
            self._tasks.add(task)
            task.add_done_callback(self._on_invocation_done)
            return

        logger.warning("Unexpected %s from proxy, ignoring", type(message).__name__)

    def _on_invocation_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            # Reply could not be written; the dispatcher will time the call out
            logger.error("Failed to send reply to proxy: %s", exc)
