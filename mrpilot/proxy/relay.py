# mrpilot/proxy/relay.py
"""Call/response bridge across the worker channel.

On the dispatcher, ``RequestRelay.relay`` turns a local method invocation into
a JSON-RPC request on the active worker channel and waits for the reply with
the same correlation id. On the worker, ``serve_invocation`` executes a
relayed request against the local dispatcher and writes the reply back. Both
directions use the same JSON-RPC shapes, so one decoder serves either role.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from mrpilot.config import PROXY_REQUEST_TIMEOUT
from mrpilot.errors import ChannelError, NoWorkerError
from mrpilot.ipc import (
    INTERNAL_ERROR,
    JsonRpcRequest,
    RequestId,
    encode_request,
    error_response,
    generate_id,
)
from mrpilot.proxy.registry import DispatchRegistry, InvocationState

if TYPE_CHECKING:
    from mrpilot.dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)


class RequestRelay:
    """Forward invocations to the active worker and await correlated replies.

    Args:
        registry: Registry holding the active channel and pending map.
        timeout: Seconds to wait for a reply before failing the call.
    """

    def __init__(self, registry: DispatchRegistry, timeout: float = PROXY_REQUEST_TIMEOUT):
        self.registry = registry
        self.timeout = timeout

    async def relay(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        correlation_id: RequestId = None,
    ) -> dict[str, Any]:
        """Relay a method invocation to the active worker.

        Args:
            method: JSON-RPC method name.
            params: Method parameters.
            correlation_id: Identifier to correlate the reply. Generated when None.

        Returns:
            The worker's JSON-RPC response dict, verbatim.

        Raises:
            NoWorkerError: If no worker is connected.
            ProxyTimeoutError: If no reply arrives before the timeout.
            ChannelError: If writing to the channel fails.
            ProxyError: If the correlation id is already in flight.
        """
        channel = self.registry.active_channel
        if channel is None:
            logger.warning("Cannot relay %s: no slave server connected", method)
            raise NoWorkerError()

        request_id = correlation_id if correlation_id is not None else generate_id("proxy")
        pending = self.registry.register_pending(request_id, self.timeout)
        logger.info("Relaying %s (id: %r) to worker", method, request_id)

        try:
            await channel.send(encode_request(
                JsonRpcRequest(method=method, id=request_id, params=params or {})
            ))
        except asyncio.CancelledError:
            self.registry.discard_pending(request_id)
            raise
        except Exception as e:
            self.registry.discard_pending(request_id)
            raise ChannelError(f"Failed to send request to slave: {e}") from e

        if pending.state is InvocationState.SUBMITTED:
            pending.state = InvocationState.AWAITING_REPLY
        try:
            return await pending.future
        except asyncio.CancelledError:
            self.registry.discard_pending(request_id)
            raise


SendFunc = Callable[[str], Awaitable[None]]


async def serve_invocation(
    dispatcher: "ToolDispatcher",
    request: JsonRpcRequest,
    send: SendFunc,
) -> dict[str, Any]:
    """Execute a relayed request locally and send the reply back.

    Args:
        dispatcher: Local tool dispatcher.
        request: The relayed request.
        send: Coroutine function writing one frame to the channel.

    Returns:
        The response dict that was sent.
    """
    logger.info("Executing relayed %s (id: %r)", request.method, request.id)
    try:
        response = await dispatcher.dispatch(request.method, request.params or {}, request.id)
    except Exception as e:
        logger.exception("Relayed %s failed", request.method)
        response = error_response(request.id, INTERNAL_ERROR, str(e))

    response["id"] = request.id
    await send(json.dumps(response))
    return response
