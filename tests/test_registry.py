# tests/test_registry.py
"""Tests for DispatchRegistry admission control and correlation."""

import asyncio
import json

import pytest

from conftest import FakeChannel
from mrpilot.errors import ProxyError, ProxyTimeoutError
from mrpilot.ipc import JsonRpcResponse
from mrpilot.proxy.registry import DispatchRegistry, InvocationState

CODES = ["code1", "code2"]


def auth_frame(code: str) -> str:
    return json.dumps({"type": "auth", "slaveCode": code})


def reply_frame(request_id, result) -> str:
    return json.dumps({"jsonrpc": "2.0", "result": result, "id": request_id})


async def admit(registry: DispatchRegistry, channel: FakeChannel, code: str = "code1") -> None:
    registry.open_channel(channel)
    await registry.handle_message(channel, auth_frame(code))


class TestAuthentication:
    """Tests for worker admission."""

    @pytest.mark.asyncio
    async def test_valid_code_becomes_active(self):
        registry = DispatchRegistry(CODES)
        worker = FakeChannel("a")
        await admit(registry, worker, "code1")

        assert registry.active_channel is worker
        assert registry.has_active_worker
        assert worker.sent == [{"type": "auth_success", "message": "Authentication successful"}]
        assert worker.closed is None

    @pytest.mark.asyncio
    async def test_invalid_code_rejected_and_closed(self):
        """A credential outside the whitelist is told and disconnected."""
        registry = DispatchRegistry(CODES)
        worker = FakeChannel("bad")
        await admit(registry, worker, "bad")

        assert worker.sent == [{"type": "auth_failed", "message": "Invalid slave code"}]
        assert worker.closed == (4003, "Authentication failed")
        assert registry.active_channel is None
        assert registry.connection_count == 0

    @pytest.mark.asyncio
    async def test_codes_are_case_sensitive(self):
        registry = DispatchRegistry(CODES)
        worker = FakeChannel()
        await admit(registry, worker, "CODE1")
        assert registry.active_channel is None

    @pytest.mark.asyncio
    async def test_no_lockout_after_failure(self):
        """A failed attempt does not prevent a later valid one."""
        registry = DispatchRegistry(CODES)
        await admit(registry, FakeChannel("bad"), "bad")
        good = FakeChannel("good")
        await admit(registry, good, "code2")
        assert registry.active_channel is good

    @pytest.mark.asyncio
    async def test_auth_on_unknown_channel_ignored(self):
        registry = DispatchRegistry(CODES)
        stray = FakeChannel()
        assert await registry.authenticate(stray, "code1") is False
        assert registry.active_channel is None


class TestAuthTimeout:
    """A silent channel is closed once its auth timer fires."""

    @pytest.mark.asyncio
    async def test_silent_channel_closed(self):
        registry = DispatchRegistry(CODES, auth_timeout=0.02)
        silent = FakeChannel()
        registry.open_channel(silent)

        await asyncio.sleep(0.1)

        assert silent.closed == (4001, "Authentication timeout")
        assert registry.connection_count == 0
        assert registry.active_channel is None
        assert registry.pending_count == 0

    @pytest.mark.asyncio
    async def test_authenticated_channel_not_timed_out(self):
        registry = DispatchRegistry(CODES, auth_timeout=0.02)
        worker = FakeChannel()
        await admit(registry, worker)

        await asyncio.sleep(0.1)

        assert worker.closed is None
        assert registry.active_channel is worker

    @pytest.mark.asyncio
    async def test_late_auth_after_timeout_is_ignored(self):
        registry = DispatchRegistry(CODES, auth_timeout=0.02)
        slow = FakeChannel()
        registry.open_channel(slow)
        await asyncio.sleep(0.1)

        await registry.handle_message(slow, auth_frame("code1"))
        assert registry.active_channel is None


class TestSingleActiveWorker:
    """The most recently authenticated worker is the only active one."""

    @pytest.mark.asyncio
    async def test_second_worker_supersedes_first(self):
        registry = DispatchRegistry(CODES)
        a, b = FakeChannel("a"), FakeChannel("b")
        await admit(registry, a, "code1")
        await admit(registry, b, "code2")
        await asyncio.sleep(0)

        assert registry.active_channel is b
        assert a.closed == (4000, "superseded")
        assert b.closed is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [2, 3, 5])
    async def test_sequence_of_workers(self, count):
        registry = DispatchRegistry(CODES)
        workers = [FakeChannel(f"w{i}") for i in range(count)]
        for i, worker in enumerate(workers):
            await admit(registry, worker, CODES[i % 2])
        await asyncio.sleep(0)

        assert registry.active_channel is workers[-1]
        assert registry.connection_count == 1
        for worker in workers[:-1]:
            assert worker.closed == (4000, "superseded")

    @pytest.mark.asyncio
    async def test_reauth_on_same_channel_does_not_close_it(self):
        registry = DispatchRegistry(CODES)
        a = FakeChannel("a")
        await admit(registry, a)
        await registry.handle_message(a, auth_frame("code2"))
        await asyncio.sleep(0)

        assert registry.active_channel is a
        assert a.closed is None

    @pytest.mark.asyncio
    async def test_close_of_superseded_channel_keeps_new_active(self):
        registry = DispatchRegistry(CODES)
        a, b = FakeChannel("a"), FakeChannel("b")
        await admit(registry, a)
        await admit(registry, b)
        registry.close_channel(a)

        assert registry.active_channel is b


class TestInboundMessages:
    """Tests for handle_message routing."""

    @pytest.mark.asyncio
    async def test_malformed_message_dropped(self):
        registry = DispatchRegistry(CODES)
        worker = FakeChannel()
        await admit(registry, worker)
        pending = registry.register_pending("r1", timeout=5)

        await registry.handle_message(worker, "{not json")

        assert not pending.future.done()
        assert registry.is_pending("r1")
        registry.discard_pending("r1")

    @pytest.mark.asyncio
    async def test_deeply_nested_message_dropped(self):
        registry = DispatchRegistry(CODES)
        worker = FakeChannel()
        await admit(registry, worker)

        await registry.handle_message(worker, "[" * 100000 + "]" * 100000)

        assert registry.active_channel is worker
        assert worker.closed is None

    @pytest.mark.asyncio
    async def test_reply_from_unauthenticated_channel_ignored(self):
        registry = DispatchRegistry(CODES)
        active, intruder = FakeChannel("active"), FakeChannel("intruder")
        await admit(registry, active)
        registry.open_channel(intruder)
        pending = registry.register_pending("r1", timeout=5)

        await registry.handle_message(intruder, reply_frame("r1", {"x": 1}))

        assert not pending.future.done()
        registry.discard_pending("r1")
        registry.close_channel(intruder)

    @pytest.mark.asyncio
    async def test_reply_resolves_pending(self):
        registry = DispatchRegistry(CODES)
        worker = FakeChannel()
        await admit(registry, worker)
        pending = registry.register_pending(7, timeout=5)

        await registry.handle_message(worker, reply_frame(7, {"tools": []}))

        assert pending.future.result() == {"jsonrpc": "2.0", "result": {"tools": []}, "id": 7}
        assert pending.state is InvocationState.RESOLVED
        assert registry.pending_count == 0


class TestPendingInvocations:
    """Tests for the correlation map."""

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self):
        registry = DispatchRegistry(CODES)
        registry.register_pending("dup", timeout=5)
        with pytest.raises(ProxyError):
            registry.register_pending("dup", timeout=5)
        registry.discard_pending("dup")

    @pytest.mark.asyncio
    async def test_unknown_reply_discarded(self):
        registry = DispatchRegistry(CODES)
        other = registry.register_pending("other", timeout=5)

        assert registry.resolve_reply(JsonRpcResponse(id="ghost", result=1)) is False
        assert not other.future.done()
        registry.discard_pending("other")

    @pytest.mark.asyncio
    async def test_timeout_removes_entry_and_late_reply_is_discarded(self):
        registry = DispatchRegistry(CODES)
        expiring = registry.register_pending("slow", timeout=0.02)
        survivor = registry.register_pending("fast", timeout=5)

        with pytest.raises(ProxyTimeoutError):
            await expiring.future
        assert expiring.state is InvocationState.TIMED_OUT
        assert not registry.is_pending("slow")

        assert registry.resolve_reply(JsonRpcResponse(id="slow", result="late")) is False
        assert not survivor.future.done()
        assert registry.is_pending("fast")
        registry.discard_pending("fast")

    @pytest.mark.asyncio
    async def test_reply_first_makes_timeout_noop(self):
        registry = DispatchRegistry(CODES)
        pending = registry.register_pending("r", timeout=0.02)
        assert registry.resolve_reply(JsonRpcResponse(id="r", result="ok")) is True

        await asyncio.sleep(0.05)

        assert registry.expire_pending("r") is False
        assert pending.state is InvocationState.RESOLVED
        assert pending.future.result()["result"] == "ok"

    @pytest.mark.asyncio
    async def test_discard_is_idempotent(self):
        registry = DispatchRegistry(CODES)
        registry.register_pending("x", timeout=5)
        registry.discard_pending("x")
        registry.discard_pending("x")
        assert registry.pending_count == 0


class TestDisconnect:
    """Tests for channel teardown."""

    @pytest.mark.asyncio
    async def test_active_disconnect_clears_slot_but_keeps_pending(self):
        registry = DispatchRegistry(CODES)
        worker = FakeChannel()
        await admit(registry, worker)
        pending = registry.register_pending("inflight", timeout=5)

        registry.close_channel(worker)

        assert registry.active_channel is None
        assert registry.is_pending("inflight")
        assert not pending.future.done()
        registry.discard_pending("inflight")

    @pytest.mark.asyncio
    async def test_shutdown_closes_everything(self):
        registry = DispatchRegistry(CODES)
        worker, waiting = FakeChannel("w"), FakeChannel("waiting")
        await admit(registry, worker)
        registry.open_channel(waiting)
        registry.register_pending("r", timeout=5)

        await registry.shutdown()

        assert worker.closed == (1001, "Server shutting down")
        assert waiting.closed == (1001, "Server shutting down")
        assert registry.connection_count == 0
        assert registry.pending_count == 0
        assert registry.active_channel is None
