# tests/test_server.py
"""Tests for the MCP HTTP front-end."""

import asyncio
import json

import pytest
from aiohttp.test_utils import TestClient, TestServer

from conftest import FakeChannel
from mrpilot.config import MCP_PROTOCOL_VERSION, ServerConfig
from mrpilot.dispatcher import Tool, ToolDispatcher
from mrpilot.proxy.registry import DispatchRegistry
from mrpilot.proxy.relay import RequestRelay
from mrpilot.server import MCP_SERVER_KEY, SessionStore, create_app


async def echo_handler(arguments):
    return {"echo": arguments}


def local_dispatcher() -> ToolDispatcher:
    return ToolDispatcher([Tool({"name": "echo"}, echo_handler)])


def rpc(method: str, request_id=1, params=None) -> dict:
    message = {"jsonrpc": "2.0", "method": method, "params": params or {}}
    if request_id is not None:
        message["id"] = request_id
    return message


async def admitted_worker(registry: DispatchRegistry) -> FakeChannel:
    """Authenticated worker double that answers every relayed request."""
    worker = FakeChannel()

    async def on_send(message):
        if "method" not in message:
            return

        async def reply():
            await asyncio.sleep(0)
            await registry.handle_message(worker, json.dumps({
                "jsonrpc": "2.0",
                "result": {"relayed": message["method"]},
                "id": message["id"],
            }))

        asyncio.ensure_future(reply())

    worker.on_send = on_send
    registry.open_channel(worker)
    await registry.handle_message(worker, json.dumps({"type": "auth", "slaveCode": "code1"}))
    return worker


class TestStandalone:
    """Tests for the HTTP surface answering locally."""

    @pytest.mark.asyncio
    async def test_health(self):
        app = create_app(ServerConfig(), local_dispatcher())
        async with TestClient(TestServer(app)) as client:
            resp = await client.get("/health")
            body = await resp.json()

        assert resp.status == 200
        assert body["status"] == "ok"
        assert body["mode"] == "standalone"
        assert body["protocol"] == MCP_PROTOCOL_VERSION
        assert body["activeSessions"] == 0
        assert "slaveConnected" not in body

    @pytest.mark.asyncio
    async def test_post_request_returns_response_and_session(self):
        app = create_app(ServerConfig(), local_dispatcher())
        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/mcp", json=rpc("tools/list", 5))
            body = await resp.json()
            session_id = resp.headers["Mcp-Session-Id"]

            follow = await client.post(
                "/mcp", json=rpc("ping", 6), headers={"Mcp-Session-Id": session_id}
            )
            health = await (await client.get("/health")).json()

        assert resp.status == 200
        assert body["id"] == 5
        assert body["result"]["tools"][0]["name"] == "echo"
        assert follow.headers["Mcp-Session-Id"] == session_id
        assert health["activeSessions"] == 1

    @pytest.mark.asyncio
    async def test_notification_returns_204(self):
        app = create_app(ServerConfig(), local_dispatcher())
        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/mcp", json=rpc("notifications/initialized", None))

        assert resp.status == 204
        assert "Mcp-Session-Id" in resp.headers

    @pytest.mark.asyncio
    async def test_invalid_json_is_parse_error(self):
        app = create_app(ServerConfig(), local_dispatcher())
        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/mcp", data="{not json")
            body = await resp.json()

        assert resp.status == 400
        assert body["error"] == {"code": -32700, "message": "Parse error"}

    @pytest.mark.asyncio
    async def test_non_object_params_is_invalid_params(self):
        app = create_app(ServerConfig(), local_dispatcher())
        message = {"jsonrpc": "2.0", "method": "tools/list", "params": [1], "id": 1}
        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/mcp", json=message)
            body = await resp.json()

        assert resp.status == 400
        assert body == {
            "jsonrpc": "2.0",
            "error": {"code": -32602, "message": "Invalid params: params must be an object"},
            "id": 1,
        }

    @pytest.mark.asyncio
    async def test_null_params_treated_as_empty(self):
        app = create_app(ServerConfig(), local_dispatcher())
        message = {"jsonrpc": "2.0", "method": "ping", "params": None, "id": 2}
        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/mcp", json=message)
            body = await resp.json()

        assert resp.status == 200
        assert body == {"jsonrpc": "2.0", "result": {}, "id": 2}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{"jsonrpc": "1.0", "method": "ping", "id": 1}, [1, 2]])
    async def test_wrong_version_is_invalid_request(self, payload):
        app = create_app(ServerConfig(), local_dispatcher())
        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/mcp", json=payload)
            body = await resp.json()

        assert resp.status == 400
        assert body["error"]["code"] == -32600

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/mcp", "/messages/", "/", "/sse"])
    async def test_all_mcp_paths_accept_post(self, path):
        app = create_app(ServerConfig(), local_dispatcher())
        async with TestClient(TestServer(app)) as client:
            resp = await client.post(path, json=rpc("ping", 1))

        assert resp.status == 200

    @pytest.mark.asyncio
    async def test_delete_session(self):
        app = create_app(ServerConfig(), local_dispatcher())
        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/mcp", json=rpc("ping", 1))
            session_id = resp.headers["Mcp-Session-Id"]

            deleted = await client.delete("/mcp", headers={"Mcp-Session-Id": session_id})
            again = await client.delete("/mcp", headers={"Mcp-Session-Id": session_id})

        assert deleted.status == 200
        assert again.status == 404

    @pytest.mark.asyncio
    async def test_options_preflight(self):
        app = create_app(ServerConfig(), local_dispatcher())
        async with TestClient(TestServer(app)) as client:
            resp = await client.options("/mcp", headers={"Origin": "http://localhost:6274"})

        assert resp.status == 200
        assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:6274"
        assert "Mcp-Session-Id" in resp.headers["Access-Control-Allow-Headers"]
        assert "DELETE" in resp.headers["Access-Control-Allow-Methods"]

    @pytest.mark.asyncio
    async def test_unknown_path_and_method(self):
        app = create_app(ServerConfig(), local_dispatcher())
        async with TestClient(TestServer(app)) as client:
            missing = await client.get("/nope")
            wrong = await client.put("/mcp", data="{}")

        assert missing.status == 404
        assert wrong.status == 405

    @pytest.mark.asyncio
    async def test_sse_stream_delivers_published_events(self):
        app = create_app(ServerConfig(), local_dispatcher(), heartbeat_interval=0.05)
        async with TestClient(TestServer(app)) as client:
            resp = await client.get("/mcp", headers={"Mcp-Session-Id": "s1"})
            assert resp.status == 200
            assert resp.headers["Content-Type"].startswith("text/event-stream")

            first = await resp.content.readline()
            assert first == b": MCP SSE endpoint connected\n"

            event_id = app[MCP_SERVER_KEY].sessions.publish("s1", {"jsonrpc": "2.0", "method": "notify"})
            line = await resp.content.readline()
            while not line.startswith(b"id:"):
                line = await resp.content.readline()
            data = await resp.content.readline()
            resp.close()

        assert line == f"id: {event_id}\n".encode()
        assert json.loads(data[len(b"data: "):]) == {"jsonrpc": "2.0", "method": "notify"}


class TestProxyMode:
    """Tests for the HTTP surface relaying to a worker."""

    @pytest.mark.asyncio
    async def test_health_reports_worker(self):
        registry = DispatchRegistry(["code1"])
        config = ServerConfig(proxy_mode=True, slave_codes=frozenset({"code1"}))
        app = create_app(config, local_dispatcher(), RequestRelay(registry), registry)
        async with TestClient(TestServer(app)) as client:
            before = await (await client.get("/health")).json()
            await admitted_worker(registry)
            after = await (await client.get("/health")).json()

        assert before["mode"] == "proxy"
        assert before["slaveConnected"] is False
        assert after["slaveConnected"] is True
        assert after["pendingRequests"] == 0

    @pytest.mark.asyncio
    async def test_no_worker_returns_error_with_caller_id(self):
        registry = DispatchRegistry(["code1"])
        config = ServerConfig(proxy_mode=True, slave_codes=frozenset({"code1"}))
        app = create_app(config, local_dispatcher(), RequestRelay(registry), registry)
        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/mcp", json=rpc("tools/list", 42))
            body = await resp.json()

        assert resp.status == 200
        assert body == {
            "jsonrpc": "2.0",
            "error": {"code": -32001, "message": "No slave server connected"},
            "id": 42,
        }

    @pytest.mark.asyncio
    async def test_relays_to_worker_and_restores_caller_id(self):
        registry = DispatchRegistry(["code1"])
        config = ServerConfig(proxy_mode=True, slave_codes=frozenset({"code1"}))
        app = create_app(config, local_dispatcher(), RequestRelay(registry, timeout=2.0), registry)
        async with TestClient(TestServer(app)) as client:
            worker = await admitted_worker(registry)
            resp = await client.post("/mcp", json=rpc("tools/list", 7))
            body = await resp.json()

        assert body == {"jsonrpc": "2.0", "result": {"relayed": "tools/list"}, "id": 7}
        relayed = worker.requests()
        assert [r["method"] for r in relayed] == ["tools/list"]
        assert registry.pending_count == 0

    @pytest.mark.asyncio
    async def test_non_object_params_rejected_before_relay(self):
        """Scalar params never reach the worker, so the call cannot hang until timeout."""
        registry = DispatchRegistry(["code1"])
        config = ServerConfig(proxy_mode=True, slave_codes=frozenset({"code1"}))
        app = create_app(config, local_dispatcher(), RequestRelay(registry, timeout=2.0), registry)
        message = {"jsonrpc": "2.0", "method": "tools/call", "params": "x", "id": "c"}
        async with TestClient(TestServer(app)) as client:
            worker = await admitted_worker(registry)
            resp = await asyncio.wait_for(client.post("/mcp", json=message), 1.0)
            body = await resp.json()

        assert resp.status == 400
        assert body["error"]["code"] == -32602
        assert body["id"] == "c"
        assert worker.requests() == []
        assert registry.pending_count == 0

    @pytest.mark.asyncio
    async def test_silent_worker_times_out(self):
        registry = DispatchRegistry(["code1"])
        worker = FakeChannel()
        registry.open_channel(worker)
        await registry.handle_message(worker, json.dumps({"type": "auth", "slaveCode": "code1"}))
        config = ServerConfig(proxy_mode=True, slave_codes=frozenset({"code1"}))
        app = create_app(config, local_dispatcher(), RequestRelay(registry, timeout=0.05), registry)
        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/mcp", json=rpc("tools/call", "t"))
            body = await resp.json()

        assert body["error"] == {"code": -32002, "message": "Proxy request timeout"}
        assert body["id"] == "t"


class TestSessionStore:
    """Tests for SessionStore bookkeeping."""

    def test_publish_without_subscribers_still_numbers_events(self):
        store = SessionStore()
        assert store.publish("missing", {}) == 1
        assert store.publish("missing", {}) == 2
        assert "missing" not in store

    def test_subscribe_creates_session(self):
        store = SessionStore()
        queue = store.subscribe("s")
        event_id = store.publish("s", {"x": 1})

        assert "s" in store
        assert queue.get_nowait() == (event_id, {"x": 1})
        store.unsubscribe("s", queue)
        store.publish("s", {"x": 2})
        assert queue.empty()
