# mrpilot/proxy/registry.py
"""Dispatcher-side bookkeeping for worker connections.

The registry owns the single "active" worker slot, the authentication timers
of freshly opened channels and the map of in-flight relayed invocations keyed
by correlation id. Everything here is driven from one asyncio event loop, so
no locking is used; state changes never span an ``await``.
"""

import asyncio
import enum
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

from mrpilot.config import (
    AUTH_TIMEOUT,
    CLOSE_AUTH_FAILED,
    CLOSE_AUTH_TIMEOUT,
    CLOSE_SUPERSEDED,
)
from mrpilot.errors import ProtocolError, ProxyError, ProxyTimeoutError
from mrpilot.ipc import (
    AuthMessage,
    AuthResult,
    JsonRpcResponse,
    RequestId,
    decode_message,
    encode_auth_result,
)

logger = logging.getLogger(__name__)


class Channel(Protocol):
    """A persistent, ordered, message-oriented link to one worker."""

    async def send(self, text: str) -> None: ...

    async def close(self, code: int, reason: str) -> None: ...


class InvocationState(enum.Enum):
    """Lifecycle of a relayed invocation."""

    SUBMITTED = "submitted"
    AWAITING_REPLY = "awaiting_reply"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"


@dataclass
class ConnectionRegistration:
    """A worker channel known to the dispatcher.

    Attributes:
        channel: The underlying channel.
        authenticated: True once a valid credential was presented.
        created_at: Monotonic timestamp of the channel opening.
        auth_timer: Pending authentication timeout, if still armed.
    """

    channel: Channel
    authenticated: bool = False
    created_at: float = field(default_factory=time.monotonic)
    auth_timer: asyncio.TimerHandle | None = None


@dataclass
class PendingInvocation:
    """An in-flight invocation awaiting the worker's reply.

    Attributes:
        id: Correlation identifier.
        future: Resolved with the reply payload, or failed on timeout.
        submitted_at: Monotonic timestamp of submission.
        state: Current InvocationState.
        timeout_handle: Armed reply timeout.
    """

    id: RequestId
    future: asyncio.Future
    submitted_at: float = field(default_factory=time.monotonic)
    state: InvocationState = InvocationState.SUBMITTED
    timeout_handle: asyncio.TimerHandle | None = None


class DispatchRegistry:
    """Admission control and correlation map for worker channels.

    Args:
        slave_codes: Credentials a worker may authenticate with.
        auth_timeout: Seconds a new channel has to authenticate.
    """

    def __init__(self, slave_codes: Iterable[str], auth_timeout: float = AUTH_TIMEOUT):
        self.slave_codes = frozenset(slave_codes)
        self.auth_timeout = auth_timeout
        self._connections: dict[Channel, ConnectionRegistration] = {}
        self._active: Channel | None = None
        self._pending: dict[RequestId, PendingInvocation] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def active_channel(self) -> Channel | None:
        """The channel currently authorized to receive invocations."""
        return self._active

    @property
    def has_active_worker(self) -> bool:
        return self._active is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def is_pending(self, request_id: RequestId) -> bool:
        return request_id in self._pending

    # -- connection lifecycle -------------------------------------------------

    def open_channel(self, channel: Channel) -> ConnectionRegistration:
        """Register a newly opened channel and arm its authentication timer.

        Args:
            channel: The channel that just connected.

        Returns:
            The registration for the channel.
        """
        loop = asyncio.get_running_loop()
        registration = ConnectionRegistration(channel=channel)
        registration.auth_timer = loop.call_later(
            self.auth_timeout, self._on_auth_timeout, channel
        )
        self._connections[channel] = registration
        logger.info("Worker channel opened, awaiting authentication")
        return registration

    def close_channel(self, channel: Channel) -> None:
        """Forget a channel after it closed.

        Pending invocations are not failed here; they expire through their
        own timeout so that a quick reconnect can still be raced.

        Args:
            channel: The channel that closed.
        """
        registration = self._connections.pop(channel, None)
        if registration is not None and registration.auth_timer is not None:
            registration.auth_timer.cancel()
        if self._active is channel:
            self._active = None
            logger.warning(
                "Active worker disconnected (%d pending request(s) left to time out)",
                len(self._pending),
            )

    def _on_auth_timeout(self, channel: Channel) -> None:
        registration = self._connections.get(channel)
        if registration is None or registration.authenticated:
            return
        registration.auth_timer = None
        logger.warning("Worker failed to authenticate within %.0fs, closing", self.auth_timeout)
        self._connections.pop(channel, None)
        self._spawn(self._close_quietly(channel, CLOSE_AUTH_TIMEOUT, "Authentication timeout"))

    # -- inbound messages -----------------------------------------------------

    async def handle_message(self, channel: Channel, text: str | bytes) -> None:
        """Process one inbound frame from a worker channel.

        Args:
            channel: Channel the frame arrived on.
            text: Raw frame payload.
        """
        try:
            message = decode_message(text)
        except ProtocolError as e:
            logger.error("Dropping malformed message from worker: %s", e)
            return

        if isinstance(message, AuthMessage):
            await self.authenticate(channel, message.slave_code)
            return

        registration = self._connections.get(channel)
        if registration is None or not registration.authenticated:
            logger.warning("Ignoring %s from unauthenticated channel", type(message).__name__)
            return

        if isinstance(message, JsonRpcResponse):
            if channel is not self._active:
                logger.warning("Ignoring reply %r from superseded channel", message.id)
                return
            self.resolve_reply(message)
        else:
            logger.warning("Unexpected %s from worker, ignoring", type(message).__name__)

    async def authenticate(self, channel: Channel, slave_code: str) -> bool:
        """Validate a worker credential and admit the channel.

        A valid credential makes the channel the single active worker; any
        previously active channel is closed as superseded.

        Args:
            channel: Channel presenting the credential.
            slave_code: The presented credential.

        Returns:
            True if the channel was admitted.
        """
        registration = self._connections.get(channel)
        if registration is None:
            # Closed by its auth timer, or never opened through this registry
            logger.warning("Authentication attempt on unknown channel ignored")
            return False

        if slave_code not in self.slave_codes:
            logger.warning("Worker authentication failed: invalid slave code")
            if registration.auth_timer is not None:
                registration.auth_timer.cancel()
                registration.auth_timer = None
            self._connections.pop(channel, None)
            await self._send_quietly(channel, encode_auth_result(
                AuthResult(success=False, message="Invalid slave code")
            ))
            await self._close_quietly(channel, CLOSE_AUTH_FAILED, "Authentication failed")
            return False

        if registration.auth_timer is not None:
            registration.auth_timer.cancel()
            registration.auth_timer = None
        registration.authenticated = True

        previous = self._active
        self._active = channel
        if previous is not None and previous is not channel:
            logger.info("New worker authenticated, closing superseded worker")
            self._connections.pop(previous, None)
            self._spawn(self._close_quietly(previous, CLOSE_SUPERSEDED, "superseded"))

        logger.info("Worker authenticated and active")
        await self._send_quietly(channel, encode_auth_result(
            AuthResult(success=True, message="Authentication successful")
        ))
        return True

    # -- pending invocations --------------------------------------------------

    def register_pending(self, request_id: RequestId, timeout: float) -> PendingInvocation:
        """Create a pending invocation and arm its reply timeout.

        Args:
            request_id: Correlation identifier of the relayed request.
            timeout: Seconds to wait for the reply.

        Returns:
            The registered PendingInvocation.

        Raises:
            ProxyError: If an invocation with this id is already in flight.
        """
        if request_id in self._pending:
            raise ProxyError(f"Request id {request_id!r} is already in flight")
        loop = asyncio.get_running_loop()
        pending = PendingInvocation(id=request_id, future=loop.create_future())
        pending.timeout_handle = loop.call_later(timeout, self.expire_pending, request_id)
        self._pending[request_id] = pending
        return pending

    def resolve_reply(self, response: JsonRpcResponse) -> bool:
        """Complete the pending invocation matching a worker reply.

        Args:
            response: Reply received from the active worker.

        Returns:
            True if a pending invocation was resolved, False if the reply was
            discarded (unknown id or already timed out).
        """
        pending = self._pending.pop(response.id, None)
        if pending is None:
            logger.warning("Discarding reply for unknown or expired request %r", response.id)
            return False
        if pending.timeout_handle is not None:
            pending.timeout_handle.cancel()
        pending.state = InvocationState.RESOLVED
        if not pending.future.done():
            pending.future.set_result(response.to_dict())
        logger.debug(
            "Request %r resolved after %.3fs",
            response.id, time.monotonic() - pending.submitted_at,
        )
        return True

    def expire_pending(self, request_id: RequestId) -> bool:
        """Fail a pending invocation with a timeout. No-op if already gone."""
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return False
        pending.state = InvocationState.TIMED_OUT
        logger.error("Proxy request %r timed out", request_id)
        if not pending.future.done():
            pending.future.set_exception(ProxyTimeoutError())
        return True

    def discard_pending(self, request_id: RequestId) -> None:
        """Drop a pending invocation without completing it. Idempotent."""
        pending = self._pending.pop(request_id, None)
        if pending is not None and pending.timeout_handle is not None:
            pending.timeout_handle.cancel()

    # -- shutdown -------------------------------------------------------------

    async def shutdown(self) -> None:
        """Close every channel and abandon pending invocations."""
        for pending in self._pending.values():
            if pending.timeout_handle is not None:
                pending.timeout_handle.cancel()
        self._pending.clear()

        channels = list(self._connections)
        for channel in channels:
            self.close_channel(channel)
            await self._close_quietly(channel, 1001, "Server shutting down")

        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    # -- helpers --------------------------------------------------------------

    def _spawn(self, coro: Any) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send_quietly(self, channel: Channel, text: str) -> None:
        try:
            await channel.send(text)
        except Exception as e:
            logger.warning("Failed to send to worker channel: %s", e)

    async def _close_quietly(self, channel: Channel, code: int, reason: str) -> None:
        try:
            await channel.close(code, reason)
        except Exception as e:
            logger.warning("Failed to close worker channel: %s", e)
