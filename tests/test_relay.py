"""Tests for the relay broker and its Starlette app."""
import asyncio

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from continuum.errors import ValidationError
from continuum.relay.app import create_relay_app
from continuum.relay.broker import CLOSE_POLICY_VIOLATION, CLOSE_PROTOCOL_ERROR, RelayBroker


class FakeConnection:
    def __init__(self, fail=False):
        self.open = True
        self.fail = fail
        self.sent = []

    @property
    def is_open(self):
        return self.open

    async def send_json(self, data):
        if self.fail:
            raise ConnectionError("peer went away")
        self.sent.append(data)


# ============================================================================
# Broker
# ============================================================================


@pytest.mark.asyncio
async def test_send_without_listeners_queues():
    broker = RelayBroker()
    result = await broker.send("past", "transfer", "hello")
    assert result["to"] == "future"
    assert result["delivered"] == 0
    assert result["queued"] == 1
    assert result["target_connected"] is False
    [message] = broker.pending("future")
    assert message["from"] == "past"
    assert message["type"] == "transfer"


@pytest.mark.asyncio
async def test_send_broadcasts_and_still_queues():
    broker = RelayBroker()
    a, b = FakeConnection(), FakeConnection()
    broker.connect("future", a)
    broker.connect("future", b)
    result = await broker.send("past", "direct_message", "hi")
    assert result["delivered"] == 2
    assert a.sent[0]["content"] == "hi" and b.sent[0]["content"] == "hi"
    assert len(broker.check_messages("future")) == 1
    assert broker.check_messages("future") == []


@pytest.mark.asyncio
async def test_failed_push_does_not_abort_send():
    broker = RelayBroker()
    good, bad = FakeConnection(), FakeConnection(fail=True)
    broker.connect("past", bad)
    broker.connect("past", good)
    result = await broker.send("future", "memory_sync", {"k": 1})
    assert result["success"] is True
    assert result["delivered"] == 1
    assert good.sent[0]["content"] == {"k": 1}


def test_connection_cap_and_pruning():
    broker = RelayBroker()
    first, second, third = FakeConnection(), FakeConnection(), FakeConnection()
    assert broker.connect("past", first)
    assert broker.connect("past", second)
    assert not broker.connect("past", third)

    first.open = False
    assert broker.connect("past", third)
    assert broker.live_connections("past") == 2


def test_roles_are_counted_separately():
    broker = RelayBroker(max_connections=1)
    assert broker.connect("past", FakeConnection())
    assert broker.connect("future", FakeConnection())
    assert broker.status()["relay_active"] is True


@pytest.mark.asyncio
async def test_invalid_message_type_rejected():
    broker = RelayBroker()
    with pytest.raises(ValidationError):
        await broker.send("past", "gossip", "x")
    assert broker.pending("future") == []


def test_invalid_role_rejected():
    with pytest.raises(ValidationError):
        RelayBroker().connect("present", FakeConnection())


@pytest.mark.asyncio
async def test_replay_keeps_queue():
    broker = RelayBroker()
    await broker.send("past", "transfer", "one")
    conn = FakeConnection()
    assert await broker.replay("future", conn) == 1
    assert conn.sent[0]["content"] == "one"
    assert len(broker.pending("future")) == 1


@pytest.mark.asyncio
async def test_wait_for_messages_wakes_on_arrival():
    broker = RelayBroker()
    waiter = asyncio.create_task(broker.wait_for_messages("future", timeout=5))
    await asyncio.sleep(0)
    await broker.send("past", "direct_message", "ping")
    messages = await waiter
    assert [m["content"] for m in messages] == ["ping"]


@pytest.mark.asyncio
async def test_wait_for_messages_times_out_empty():
    assert await RelayBroker().wait_for_messages("past", timeout=0.01) == []


# ============================================================================
# App
# ============================================================================


@pytest.fixture
def app():
    return create_relay_app()


def _sync(ws):
    """Round-trip an invalid frame so the server is known to be in its receive loop."""
    ws.send_text("{}")
    assert "error" in ws.receive_json()


def test_health_and_status(app):
    with TestClient(app) as client:
        assert client.get("/health").json() == {"status": "ok", "server": "continuum-relay"}
        status = client.get("/status").json()
    assert status["connections"] == {"past": 0, "future": 0}
    assert status["max_connections_per_role"] == 2
    assert status["relay_active"] is False


def test_queued_message_replayed_then_drained(app):
    with TestClient(app) as client:
        resp = client.post("/messages/past", json={"type": "transfer", "content": "protocol text"})
        assert resp.json()["queued"] == 1

        with client.websocket_connect("/future") as ws:
            replayed = ws.receive_json()
            assert replayed["content"] == "protocol text"
            assert replayed["from"] == "past"

        first = client.get("/messages/future").json()
        assert first["message_count"] == 1
        assert client.get("/messages/future").json()["message_count"] == 0


def test_third_connection_rejected(app):
    with TestClient(app) as client:
        with client.websocket_connect("/future") as a, client.websocket_connect("/future") as b:
            _sync(a)
            _sync(b)
            with pytest.raises(WebSocketDisconnect) as exc:
                with client.websocket_connect("/future") as c:
                    c.receive_json()
            assert exc.value.code == CLOSE_POLICY_VIOLATION

            client.post("/messages/past", json={"type": "direct_message", "content": "still here?"})
            assert a.receive_json()["content"] == "still here?"
            assert b.receive_json()["content"] == "still here?"


def test_invalid_role_socket_closed(app):
    with TestClient(app) as client:
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/present") as ws:
                ws.receive_json()
    assert exc.value.code == CLOSE_PROTOCOL_ERROR


def test_socket_messages_reach_other_role(app):
    with TestClient(app) as client:
        with client.websocket_connect("/past") as past:
            past.send_json({"type": "memory_sync", "content": {"note": "sync"}})
            _sync(past)
        messages = client.get("/messages/future").json()["messages"]
    assert messages[0]["type"] == "memory_sync"
    assert messages[0]["content"] == {"note": "sync"}


def test_post_rejects_bad_input(app):
    with TestClient(app) as client:
        assert client.post("/messages/present", json={"type": "transfer"}).status_code == 400
        resp = client.post("/messages/past", json={"type": "gossip", "content": "x"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


def test_long_poll_times_out_empty(app):
    with TestClient(app) as client:
        data = client.get("/messages/past", params={"wait": "0.05"}).json()
    assert data == {"message_count": 0, "messages": []}
