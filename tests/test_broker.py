"""
Tests for the broker connection's frame routing.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from conftest import settle
from slack_mcp_agent.broker import (
    ABILITY_REQUEST,
    ABILITY_RESPONSE,
    AGENT_REGISTER,
    SESSION_HELLO,
    BrokerConnection,
    Notification,
)
from slack_mcp_agent.errors import BrokerError


class FakeBrokerSocket:
    """
    Records outgoing frames and answers our own requests through `conn`.

    Frames are served from a queue so the connection's read loop stays alive
    until close().
    """

    def __init__(self):
        self.sent: list[dict] = []
        self.conn: BrokerConnection | None = None
        self.auto_reply = True
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def send(self, data: str) -> None:
        message = json.loads(data)
        self.sent.append(message)
        if self.auto_reply and "method" in message and "id" in message:
            self.conn.handle_frame(json.dumps({"jsonrpc": "2.0", "id": message["id"], "result": {"ok": True}}))

    async def close(self) -> None:
        self.closed = True

    def __aiter__(self):
        return self

    async def __anext__(self):
        return await self.incoming.get()


@pytest.fixture
def socket() -> FakeBrokerSocket:
    return FakeBrokerSocket()


@pytest_asyncio.fixture
async def broker(socket: FakeBrokerSocket):
    conn = BrokerConnection("ws://broker/kadi", agent_name="test-agent", request_timeout=1,
                            connect=AsyncMock(return_value=socket))
    socket.conn = conn
    await conn.connect()
    yield conn
    await conn.close()


class TestBrokerConnection:
    """Tests for BrokerConnection."""

    @pytest.mark.asyncio
    async def test_connect_sends_hello(self, broker: BrokerConnection, socket: FakeBrokerSocket):
        assert broker.is_connected
        assert socket.sent[0]["method"] == SESSION_HELLO
        assert socket.sent[0]["params"] == {"agentName": "test-agent"}

    @pytest.mark.asyncio
    async def test_placeholder_registration(self, broker: BrokerConnection, socket: FakeBrokerSocket):
        await broker.register_placeholder()

        frame = socket.sent[-1]
        assert frame["method"] == AGENT_REGISTER
        assert frame["params"]["tools"][0]["name"] == "placeholder"

    @pytest.mark.asyncio
    async def test_submit_params(self, broker: BrokerConnection, socket: FakeBrokerSocket):
        result = await broker.submit("upstream:slack", "slack_channels_list", {"limit": 1})

        assert result == {"ok": True}
        assert socket.sent[-1]["method"] == ABILITY_REQUEST
        assert socket.sent[-1]["params"] == {
            "targetAgent": "upstream:slack",
            "toolName": "slack_channels_list",
            "toolInput": {"limit": 1},
        }

    @pytest.mark.asyncio
    async def test_error_response(self, broker: BrokerConnection, socket: FakeBrokerSocket):
        socket.auto_reply = False
        task = asyncio.create_task(broker.request("kadi.thing", {}))
        await settle()

        request_id = socket.sent[-1]["id"]
        broker.handle_frame(json.dumps({"jsonrpc": "2.0", "id": request_id,
                                        "error": {"code": -32602, "message": "bad params"}}))

        with pytest.raises(BrokerError) as exc_info:
            await task
        assert exc_info.value.code == -32602

    @pytest.mark.asyncio
    async def test_notifications_fan_out(self, broker: BrokerConnection):
        received: list[Notification] = []
        broker.subscribe(received.append)

        broker.handle_frame(json.dumps({
            "jsonrpc": "2.0", "method": ABILITY_RESPONSE,
            "params": {"requestId": "r1", "result": {"messages": []}},
        }))
        broker.unsubscribe(received.append)
        broker.handle_frame(json.dumps({"jsonrpc": "2.0", "method": ABILITY_RESPONSE, "params": {}}))

        assert len(received) == 1
        assert received[0].correlation_id == "r1"
        assert received[0].payload == {"messages": []}
        assert broker.listener_count == 0

    @pytest.mark.asyncio
    async def test_listener_errors_contained(self, broker: BrokerConnection):
        received = []

        def failing(_):
            raise RuntimeError("listener bug")

        broker.subscribe(failing)
        broker.subscribe(received.append)
        broker.handle_frame(json.dumps({"method": ABILITY_RESPONSE, "params": {"requestId": "r2"}}))

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_serves_registered_tool(self, broker: BrokerConnection, socket: FakeBrokerSocket):
        """Test that broker-initiated calls reach the registered handler."""
        await broker.register_placeholder()

        broker.handle_frame(json.dumps({
            "jsonrpc": "2.0", "id": "srv-1", "method": ABILITY_REQUEST,
            "params": {"toolName": "placeholder", "toolInput": {}},
        }))
        broker.handle_frame(json.dumps({
            "jsonrpc": "2.0", "id": "srv-2", "method": "kadi.unknown", "params": {},
        }))
        await settle()

        replies = {m["id"]: m for m in socket.sent if m.get("id") in ("srv-1", "srv-2")}
        assert replies["srv-1"]["result"] == {}
        assert replies["srv-2"]["error"]["code"] == -32601

    @pytest.mark.asyncio
    async def test_close_fails_outstanding(self, broker: BrokerConnection, socket: FakeBrokerSocket):
        socket.auto_reply = False
        task = asyncio.create_task(broker.request("kadi.thing", {}))
        await settle()

        await broker.close()

        with pytest.raises(ConnectionError):
            await task
        assert not broker.is_connected
        assert socket.closed

    @pytest.mark.asyncio
    async def test_request_without_socket(self):
        conn = BrokerConnection("ws://broker/kadi")

        with pytest.raises(ConnectionError):
            await conn.request(SESSION_HELLO, {})

    @pytest.mark.asyncio
    async def test_garbage_frames_ignored(self, broker: BrokerConnection):
        broker.handle_frame("not json")
        broker.handle_frame("[1, 2]")

        assert broker.is_connected

    @pytest.mark.asyncio
    async def test_error_reply_with_text_code(self, broker: BrokerConnection, socket: FakeBrokerSocket):
        """Test that a non-numeric error code still fails the request with a BrokerError."""
        socket.auto_reply = False
        task = asyncio.create_task(broker.request("kadi.thing", {}))
        await settle()

        request_id = socket.sent[-1]["id"]
        broker.handle_frame(json.dumps({"jsonrpc": "2.0", "id": request_id,
                                        "error": {"code": "bad", "message": "m"}}))

        with pytest.raises(BrokerError) as exc_info:
            await task
        assert exc_info.value.code == -32000
        assert exc_info.value.message == "m"

    @pytest.mark.asyncio
    async def test_unusable_id_ignored(self, broker: BrokerConnection):
        broker.handle_frame(json.dumps({"jsonrpc": "2.0", "id": [1], "result": {}}))
        broker.handle_frame(json.dumps({"jsonrpc": "2.0", "id": {"x": 1}, "method": ABILITY_REQUEST}))

        assert broker.is_connected

    @pytest.mark.asyncio
    async def test_read_loop_survives_malformed_frames(self, broker: BrokerConnection, socket: FakeBrokerSocket):
        """Test that bad frames on the wire do not end the reader."""
        received: list[Notification] = []
        broker.subscribe(received.append)

        await socket.incoming.put('{"jsonrpc":"2.0","id":1,"error":{"code":"bad","message":"m"}}')
        await socket.incoming.put('{"jsonrpc":"2.0","id":[1],"result":null}')
        await socket.incoming.put(json.dumps({"method": ABILITY_RESPONSE, "params": {"requestId": "r3"}}))
        await settle(20)

        assert broker.is_connected
        assert [n.correlation_id for n in received] == ["r3"]

    @pytest.mark.asyncio
    async def test_served_requests_are_tracked(self, broker: BrokerConnection):
        """Test that broker-initiated calls are held until they finish."""
        await broker.register_placeholder()

        broker.handle_frame(json.dumps({
            "jsonrpc": "2.0", "id": "srv-3", "method": ABILITY_REQUEST,
            "params": {"toolName": "placeholder", "toolInput": {}},
        }))

        assert len(broker._server_tasks) == 1
        await settle()
        assert broker._server_tasks == set()
