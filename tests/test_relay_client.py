"""Tests for the relay client and its per-role MCP tools."""
import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from websockets.exceptions import ConnectionClosed

from continuum.protocol import get_protocol_template
from continuum.relay.client import RelayClient
from continuum.relay.tools import build_handlers, build_tool_schemas


class FakeSocket:
    """Yields ``frames`` then ends with ``close_code``; ``hold`` keeps it open."""

    def __init__(self, frames=(), close_code=1006, hold=False):
        self.frames = list(frames)
        self.close_code = close_code
        self.hold = asyncio.Event() if hold else None
        self.sent = []
        self.closed_with = None

    async def send(self, data):
        self.sent.append(json.loads(data))

    def __aiter__(self):
        return self._frames()

    async def _frames(self):
        for frame in self.frames:
            yield frame
        if self.hold is not None:
            await self.hold.wait()

    async def close(self, code=1000, reason=""):
        self.closed_with = code
        if self.hold is not None:
            self.hold.set()


async def _until(predicate, attempts=100):
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not reached")


# ============================================================================
# Connection lifecycle
# ============================================================================


@pytest.mark.asyncio
async def test_connect_announces_and_reads():
    frame = json.dumps({"from": "past", "type": "transfer", "content": "protocol"})
    sock = FakeSocket([frame], hold=True)
    connect = AsyncMock(return_value=sock)
    client = RelayClient("future", url="ws://relay/", reconnect_delay=0, connect=connect)

    assert await client.connect() is True
    assert connect.await_args.args[0] == "ws://relay/future"
    assert sock.sent[0]["type"] == "direct_message"
    assert sock.sent[0]["content"] == "future connected and ready"

    await _until(lambda: client.status()["queued_messages"] == 1)
    [message] = client.check_messages()
    assert message["content"] == "protocol"
    assert client.check_messages() == []

    await client.close()
    assert sock.closed_with == 1000


@pytest.mark.asyncio
async def test_second_connect_is_skipped():
    sock = FakeSocket(hold=True)
    connect = AsyncMock(return_value=sock)
    client = RelayClient("past", url="ws://relay", connect=connect)
    assert await client.connect() is True
    assert await client.connect() is False
    assert connect.await_count == 1
    await client.close()


@pytest.mark.asyncio
async def test_abnormal_close_reconnects():
    first = FakeSocket(close_code=1006)
    second = FakeSocket(hold=True)
    connect = AsyncMock(side_effect=[first, second])
    client = RelayClient("past", url="ws://relay", reconnect_delay=0, connect=connect)

    await client.connect()
    await _until(lambda: connect.await_count == 2 and client.connected)

    assert second.sent[0]["content"] == "past connected and ready"
    await client.close()


@pytest.mark.asyncio
async def test_normal_close_does_not_reconnect():
    connect = AsyncMock(return_value=FakeSocket(close_code=1000))
    client = RelayClient("past", url="ws://relay", reconnect_delay=0, connect=connect)

    await client.connect()
    await _until(lambda: not client.connected)
    await asyncio.sleep(0.05)

    assert connect.await_count == 1
    assert client.status()["reconnecting"] is False


@pytest.mark.asyncio
async def test_failed_connect_schedules_retry():
    connect = AsyncMock(side_effect=OSError("connection refused"))
    client = RelayClient("future", url="ws://relay", reconnect_delay=3600, connect=connect)

    assert await client.connect() is False
    status = client.status()
    assert status["connected"] is False
    assert status["reconnecting"] is True
    await client.close()
    assert client.status()["reconnecting"] is False


class ClosedOnSend(FakeSocket):
    async def send(self, data):
        raise ConnectionClosed(None, None)


@pytest.mark.asyncio
async def test_failed_announcement_is_not_connected():
    connect = AsyncMock(return_value=ClosedOnSend())
    client = RelayClient("past", url="ws://relay", reconnect_delay=3600, connect=connect)

    assert await client.connect() is False
    status = client.status()
    assert status["connected"] is False
    assert status["reconnecting"] is True
    assert client._ws is None
    await client.close()


@pytest.mark.asyncio
async def test_failed_announcement_reconnects():
    second = FakeSocket(hold=True)
    connect = AsyncMock(side_effect=[ClosedOnSend(), second])
    client = RelayClient("future", url="ws://relay", reconnect_delay=0, connect=connect)

    assert await client.connect() is False
    await _until(lambda: client.connected)

    assert connect.await_count == 2
    assert second.sent[0]["content"] == "future connected and ready"
    await client.close()


@pytest.mark.asyncio
async def test_start_reports_connection():
    client = RelayClient("past", url="ws://relay", connect=AsyncMock(return_value=FakeSocket(hold=True)))
    assert await client.start(handshake_wait=1) is True
    await client.close()


# ============================================================================
# Sending
# ============================================================================


@pytest.mark.asyncio
async def test_send_when_disconnected():
    client = RelayClient("future", url="ws://relay")
    result = await client.send("direct_message", "hi")
    assert result["success"] is False
    assert result["sent"] is False
    assert result["to"] == "past"


@pytest.mark.asyncio
async def test_send_when_connected():
    sock = FakeSocket(hold=True)
    client = RelayClient("future", url="ws://relay", connect=AsyncMock(return_value=sock))
    await client.connect()

    result = await client.send("memory_sync", "payload")

    assert result["sent"] is True
    assert result["to"] == "past"
    assert sock.sent[-1] == {"from": "future", "type": "memory_sync", "content": "payload",
                             "timestamp": result["timestamp"]}
    await client.close()


# ============================================================================
# MCP tools
# ============================================================================


def test_tool_schemas_are_role_specific():
    names = [s["name"] for s in build_tool_schemas("past")]
    assert names == ["relay_send_past", "relay_check_past", "relay_status_past", "relay_template_past"]


@pytest.mark.asyncio
async def test_tool_handlers():
    client = RelayClient("past", url="ws://relay")
    handlers = build_handlers(client)

    result = await handlers["relay_send_past"]({"message_type": "transfer", "content": "x"})
    assert result.get("isError")

    result = await handlers["relay_send_past"]({"message_type": "gossip", "content": "x"})
    assert result.get("isError")

    result = await handlers["relay_check_past"]({})
    assert result["content"][0]["text"] == "No pending messages"

    client._inbox.append({"from": "future", "type": "direct_message", "content": "hello"})
    data = json.loads((await handlers["relay_check_past"]({}))["content"][0]["text"])
    assert data["message_count"] == 1

    status = json.loads((await handlers["relay_status_past"]({}))["content"][0]["text"])
    assert status["role"] == "past"
    assert status["connected"] is False

    template = (await handlers["relay_template_past"]({}))["content"][0]["text"]
    assert template == get_protocol_template()
