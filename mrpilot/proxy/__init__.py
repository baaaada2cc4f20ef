"""Proxy/slave execution over a persistent websocket channel.

A dispatcher (proxy mode) accepts tool invocations over HTTP and relays them
to the single authenticated worker (slave mode) connected to its channel
listener; the worker executes them with its local tool dispatcher and sends
the results back.
"""

from mrpilot.proxy.channel import ChannelServer, WebSocketChannel
from mrpilot.proxy.connector import WorkerConnector
from mrpilot.proxy.registry import (
    Channel,
    ConnectionRegistration,
    DispatchRegistry,
    InvocationState,
    PendingInvocation,
)
from mrpilot.proxy.relay import RequestRelay, serve_invocation

__all__ = [
    # Registry
    "Channel",
    "ConnectionRegistration",
    "DispatchRegistry",
    "InvocationState",
    "PendingInvocation",
    # Relay
    "RequestRelay",
    "serve_invocation",
    # Transport
    "ChannelServer",
    "WebSocketChannel",
    "WorkerConnector",
]
