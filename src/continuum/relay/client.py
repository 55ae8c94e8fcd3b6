"""
Continuum Relay Client -- a persistent socket to the relay for one role.

Incoming messages collect in a local inbox drained by ``check_messages``.
When the socket drops abnormally the client reconnects after a fixed delay;
a normal closure (1000/1001) is final. Only one reconnect attempt can be in
flight at a time.
"""

import asyncio
import json
import logging
import os
import time
from typing import Any, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from continuum import config
from continuum.relay.broker import RelayMessage, parse_message_type, parse_role
from continuum.types import MessageType

logger = logging.getLogger("continuum.relay.client")

RECONNECT_DELAY = 5.0
HANDSHAKE_WAIT = 1.0
NORMAL_CLOSURE = frozenset({1000, 1001})


class RelayClient:
    def __init__(self, role, url: Optional[str] = None, reconnect_delay: float = RECONNECT_DELAY,
                 connect=None):
        self.role = parse_role(role)
        self.url = (url or config.relay_url()).rstrip("/")
        self.reconnect_delay = reconnect_delay
        self.process_id = f"{os.getpid()}-{int(time.time() * 1000)}"
        self._connect = connect or websockets.connect
        self._ws = None
        self._inbox: List[Dict[str, Any]] = []
        self._reconnecting = False
        self._reconnect_task: Optional[asyncio.Task] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._closing = False
        self.connected = False

    @property
    def endpoint(self) -> str:
        return f"{self.url}/{self.role.value}"

    async def connect(self) -> bool:
        """Open the socket unless already connected or connecting."""
        if self.connected:
            logger.debug("[%s] Already connected, skipping", self.process_id)
            return False
        if self._reconnecting:
            logger.debug("[%s] Connection attempt already in flight, skipping", self.process_id)
            return False

        self._reconnecting = True
        try:
            ws = await self._connect(self.endpoint)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.warning("[%s] Relay connection to %s failed: %s", self.process_id, self.endpoint, e)
            self._reconnecting = False
            self._schedule_reconnect(None)
            return False

        self._ws = ws
        self.connected = True
        self._reconnecting = False
        logger.info("[%s] Connected to relay as %s", self.process_id, self.role.value)

        announcement = RelayMessage(self.role, MessageType.DIRECT_MESSAGE,
                                    f"{self.role.value} connected and ready")
        try:
            await ws.send(json.dumps(announcement.to_dict()))
        except (OSError, WebSocketException) as e:
            logger.warning("[%s] Announcement failed, socket closed: %s", self.process_id, e)
            self._ws = None
            self.connected = False
            self._schedule_reconnect(getattr(ws, "close_code", None))
            return False
        self._reader_task = asyncio.create_task(self._read_loop(ws))
        return True

    async def _read_loop(self, ws) -> None:
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except ValueError:
                    logger.warning("[%s] Dropped non-JSON relay frame", self.process_id)
                    continue
                logger.info("[%s] Received %s from %s", self.process_id, message.get("type"), message.get("from"))
                self._inbox.append(message)
        except ConnectionClosed:
            pass
        code = getattr(ws, "close_code", None)
        if self._ws is ws:
            self._ws = None
            self.connected = False
        logger.info("[%s] Disconnected from relay (code %s)", self.process_id, code)
        self._schedule_reconnect(code)

    def _schedule_reconnect(self, code: Optional[int]) -> None:
        if self._closing:
            return
        if code in NORMAL_CLOSURE:
            logger.info("[%s] Normal closure, not reconnecting", self.process_id)
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        logger.info("[%s] Reconnecting in %.0fs", self.process_id, self.reconnect_delay)
        self._reconnect_task = asyncio.create_task(self._reconnect_later())

    async def _reconnect_later(self) -> None:
        await asyncio.sleep(self.reconnect_delay)
        self._reconnect_task = None
        await self.connect()

    async def start(self, handshake_wait: float = HANDSHAKE_WAIT) -> bool:
        """Begin connecting; give the handshake up to ``handshake_wait`` seconds."""
        attempt = asyncio.ensure_future(self.connect())
        await asyncio.wait({attempt}, timeout=handshake_wait)
        return self.connected

    async def send(self, message_type, content: Any) -> Dict[str, Any]:
        message = RelayMessage(self.role, parse_message_type(message_type), content).to_dict()
        target = self.role.other.value
        if not self.connected or self._ws is None:
            return {"success": False, "sent": False, "to": target,
                    "message": "Not connected to the relay. Try again once the connection is back."}
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as e:
            logger.warning("[%s] Send failed, socket closed: %s", self.process_id, e)
            return {"success": False, "sent": False, "to": target, "message": f"Send failed: {e}"}
        logger.info("[%s] Sent %s to %s", self.process_id, message["type"], target)
        return {"success": True, "sent": True, "to": target, "type": message["type"],
                "timestamp": message["timestamp"]}

    def check_messages(self) -> List[Dict[str, Any]]:
        messages, self._inbox = self._inbox, []
        return messages

    def status(self) -> Dict[str, Any]:
        return {
            "role": self.role.value,
            "connected": self.connected,
            "reconnecting": self._reconnecting or self._reconnect_task is not None,
            "queued_messages": len(self._inbox),
            "relay_url": self.url,
            "process_id": self.process_id,
        }

    async def close(self) -> None:
        self._closing = True
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None
        ws, self._ws = self._ws, None
        self.connected = False
        if ws is not None:
            await ws.close(code=1000, reason="Normal shutdown")
        if self._reader_task is not None:
            self._reader_task.cancel()
            self._reader_task = None
