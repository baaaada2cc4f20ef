# mrpilot/ipc.py
"""Wire messages for the proxy channel.

Two families of messages travel over the websocket between a dispatcher and
its worker: a small authentication handshake (``auth`` / ``auth_success`` /
``auth_failed``) and JSON-RPC 2.0 requests and responses. Every websocket text
frame carries exactly one JSON object, so encoders return plain JSON strings
without any extra framing.
"""

import json
import uuid
from dataclasses import dataclass
from typing import Any, Union

from mrpilot.errors import ProtocolError

JSONRPC_VERSION = "2.0"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
INVALID_PARAMS = -32602
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32000
NO_WORKER = -32001
PROXY_TIMEOUT = -32002

AUTH = "auth"
AUTH_SUCCESS = "auth_success"
AUTH_FAILED = "auth_failed"

RequestId = Union[str, int, None]


@dataclass
class JsonRpcError:
    """JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


@dataclass
class JsonRpcRequest:
    """JSON-RPC 2.0 request (or notification when ``id`` is None)."""

    method: str
    id: RequestId
    params: dict[str, Any] | None = None


@dataclass
class JsonRpcResponse:
    """JSON-RPC 2.0 response message."""

    id: RequestId
    result: Any = None
    error: JsonRpcError | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION}
        if self.error is not None:
            data["error"] = self.error.to_dict()
        else:
            data["result"] = self.result
        data["id"] = self.id
        return data


@dataclass
class AuthMessage:
    """Worker credential presented right after the channel opens."""

    slave_code: str


@dataclass
class AuthResult:
    """Dispatcher verdict on an ``AuthMessage``."""

    success: bool
    message: str


Message = Union[JsonRpcRequest, JsonRpcResponse, AuthMessage, AuthResult]


def generate_id(prefix: str = "") -> str:
    """Generate a unique message ID.

    Args:
        prefix: Optional prefix for the ID (e.g., "proxy" for relayed calls).

    Returns:
        Unique string ID, optionally prefixed.
    """
    uid = uuid.uuid4().hex[:12]
    return f"{prefix}-{uid}" if prefix else uid


def encode_request(request: JsonRpcRequest) -> str:
    """Encode a JSON-RPC request.

    Args:
        request: The request to encode.

    Returns:
        JSON string for a single websocket frame.
    """
    data: dict[str, Any] = {
        "jsonrpc": JSONRPC_VERSION,
        "method": request.method,
        "params": request.params if request.params is not None else {},
        "id": request.id,
    }
    return json.dumps(data)


def encode_response(response: JsonRpcResponse) -> str:
    """Encode a JSON-RPC response.

    Args:
        response: The response to encode.

    Returns:
        JSON string for a single websocket frame.
    """
    return json.dumps(response.to_dict())


def encode_auth(message: AuthMessage) -> str:
    return json.dumps({"type": AUTH, "slaveCode": message.slave_code})


def encode_auth_result(result: AuthResult) -> str:
    return json.dumps({
        "type": AUTH_SUCCESS if result.success else AUTH_FAILED,
        "message": result.message,
    })


def error_response(request_id: RequestId, code: int, message: str) -> dict[str, Any]:
    """Build a JSON-RPC error response dict.

    Args:
        request_id: Identifier of the request being answered.
        code: JSON-RPC error code.
        message: Human readable error message.

    Returns:
        Response dict ready to be serialized.
    """
    return JsonRpcResponse(id=request_id, error=JsonRpcError(code, message)).to_dict()


def decode_message(text: str | bytes) -> Message:
    """Decode a single wire message.

    Args:
        text: JSON payload of one websocket frame.

    Returns:
        The decoded message object.

    Raises:
        ProtocolError: If the payload is not a well-formed message.
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"Invalid JSON: {e}") from e
    except RecursionError as e:
        raise ProtocolError("JSON nested too deeply") from e

    if not isinstance(data, dict):
        raise ProtocolError("Message must be a JSON object")

    # Handshake messages carry a "type" discriminator
    msg_type = data.get("type")
    if msg_type is not None:
        if msg_type == AUTH:
            slave_code = data.get("slaveCode")
            if not isinstance(slave_code, str):
                raise ProtocolError("auth message requires a string slaveCode")
            return AuthMessage(slave_code=slave_code)
        if msg_type in (AUTH_SUCCESS, AUTH_FAILED):
            return AuthResult(
                success=msg_type == AUTH_SUCCESS,
                message=str(data.get("message", "")),
            )
        raise ProtocolError(f"Unknown message type: {msg_type!r}")

    if data.get("jsonrpc") != JSONRPC_VERSION:
        raise ProtocolError("Invalid or missing jsonrpc version")

    # Response has "result" or "error", request has "method"
    if "method" in data:
        method = data["method"]
        if not isinstance(method, str):
            raise ProtocolError("method must be a string")
        params = data.get("params")
        if params is not None and not isinstance(params, dict):
            raise ProtocolError("params must be an object")
        return JsonRpcRequest(method=method, id=data.get("id"), params=params)

    if "result" not in data and "error" not in data:
        raise ProtocolError("Response requires result or error")
    if "id" not in data:
        raise ProtocolError("Response requires an id")

    error = None
    if "error" in data:
        err_data = data["error"]
        if not isinstance(err_data, dict) or "code" not in err_data or "message" not in err_data:
            raise ProtocolError("Malformed error object")
        error = JsonRpcError(
            code=err_data["code"],
            message=err_data["message"],
            data=err_data.get("data"),
        )
    return JsonRpcResponse(id=data["id"], result=data.get("result"), error=error)
