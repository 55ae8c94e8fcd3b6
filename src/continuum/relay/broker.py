"""
Continuum Relay Broker -- message queues and connection admission for the two relay roles.

Every message is queued for the receiving role and, when that role has live
connections, also pushed to each of them without waiting for acknowledgment.
A role's queue is only emptied by ``check_messages``. Each role admits at most
``max_connections`` live connections; dead ones are pruned whenever a new
connection for the same role is attempted.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Protocol, Set

from continuum.errors import ValidationError
from continuum.types import MessageType, RelayRole

logger = logging.getLogger("continuum.relay.broker")

MAX_CONNECTIONS_PER_ROLE = 2

# Close codes sent to rejected sockets
CLOSE_POLICY_VIOLATION = 1008
CLOSE_PROTOCOL_ERROR = 1002


class Connection(Protocol):
    """A live socket as the broker sees it."""

    @property
    def is_open(self) -> bool: ...

    async def send_json(self, data: Dict[str, Any]) -> None: ...


def parse_role(value) -> RelayRole:
    if isinstance(value, RelayRole):
        return value
    try:
        return RelayRole(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"Invalid role: {value}. Expected 'past' or 'future'.") from None


def parse_message_type(value) -> MessageType:
    if isinstance(value, MessageType):
        return value
    try:
        return MessageType(str(value))
    except ValueError:
        allowed = ", ".join(t.value for t in MessageType)
        raise ValidationError(f"Invalid message type: {value}. Expected one of: {allowed}") from None


@dataclass
class RelayMessage:
    from_role: RelayRole
    type: MessageType
    content: Any
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_role.value,
            "type": self.type.value,
            "content": self.content,
            "timestamp": self.timestamp,
        }


class RelayBroker:
    """Per-role queues and live connections for the message relay."""

    def __init__(self, max_connections: int = MAX_CONNECTIONS_PER_ROLE):
        self.max_connections = max_connections
        self._connections: Dict[RelayRole, Set[Connection]] = {role: set() for role in RelayRole}
        self._queues: Dict[RelayRole, List[RelayMessage]] = {role: [] for role in RelayRole}
        self._arrivals: Dict[RelayRole, asyncio.Event] = {role: asyncio.Event() for role in RelayRole}

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def _prune(self, role: RelayRole) -> int:
        dead = [c for c in self._connections[role] if not c.is_open]
        for conn in dead:
            self._connections[role].discard(conn)
        if dead:
            logger.info("Pruned %d dead %s connection(s)", len(dead), role.value)
        return len(dead)

    def connect(self, role, conn: Connection) -> bool:
        """Admit ``conn`` for ``role``; False when the role is at capacity."""
        role = parse_role(role)
        self._prune(role)
        current = len(self._connections[role])
        if current >= self.max_connections:
            logger.info("Rejected %s connection: %d/%d already connected",
                        role.value, current, self.max_connections)
            return False
        self._connections[role].add(conn)
        logger.info("Accepted %s connection (%d/%d)", role.value, current + 1, self.max_connections)
        return True

    def disconnect(self, role, conn: Connection) -> None:
        role = parse_role(role)
        self._connections[role].discard(conn)
        logger.info("%s connection closed (%d remaining)", role.value, len(self._connections[role]))

    def live_connections(self, role) -> int:
        role = parse_role(role)
        return sum(1 for c in self._connections[role] if c.is_open)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send(self, from_role, message_type, content: Any) -> Dict[str, Any]:
        """Queue a message for the other role and push it to its live sockets.

        Delivery failures are never raised; the result reports them.
        """
        sender = parse_role(from_role)
        message = RelayMessage(sender, parse_message_type(message_type), content)
        target = sender.other
        self._queues[target].append(message)
        self._arrivals[target].set()
        logger.info("Queued %s from %s for %s (queue size %d)",
                    message.type.value, sender.value, target.value, len(self._queues[target]))

        delivered = await self._broadcast(target, message.to_dict())
        return {
            "success": True,
            "to": target.value,
            "delivered": delivered,
            "queued": len(self._queues[target]),
            "target_connected": delivered > 0,
            "timestamp": message.timestamp,
        }

    async def _broadcast(self, role: RelayRole, payload: Dict[str, Any]) -> int:
        sent = 0
        for conn in list(self._connections[role]):
            if not conn.is_open:
                continue
            try:
                await conn.send_json(payload)
                sent += 1
            except Exception as e:
                logger.warning("Push to %s connection failed: %s", role.value, e)
        if sent:
            logger.info("Broadcast to %d %s connection(s)", sent, role.value)
        else:
            logger.info("No live %s connections; message stays queued", role.value)
        return sent

    async def replay(self, role, conn: Connection) -> int:
        """Push the role's queued messages to a newly admitted connection."""
        role = parse_role(role)
        sent = 0
        for message in list(self._queues[role]):
            await conn.send_json(message.to_dict())
            sent += 1
        if sent:
            logger.info("Replayed %d queued message(s) to new %s connection", sent, role.value)
        return sent

    def pending(self, role) -> List[Dict[str, Any]]:
        role = parse_role(role)
        return [m.to_dict() for m in self._queues[role]]

    def check_messages(self, role) -> List[Dict[str, Any]]:
        """Drain and return the role's queue."""
        role = parse_role(role)
        messages, self._queues[role] = self._queues[role], []
        self._arrivals[role].clear()
        return [m.to_dict() for m in messages]

    async def wait_for_messages(self, role, timeout: float) -> List[Dict[str, Any]]:
        """Drain the queue, waiting up to ``timeout`` seconds for it to fill."""
        role = parse_role(role)
        if not self._queues[role] and timeout > 0:
            try:
                await asyncio.wait_for(self._arrivals[role].wait(), timeout)
            except asyncio.TimeoutError:
                pass
        return self.check_messages(role)

    def status(self) -> Dict[str, Any]:
        connections = {role.value: self.live_connections(role) for role in RelayRole}
        return {
            "connections": connections,
            "queued_messages": {role.value: len(self._queues[role]) for role in RelayRole},
            "max_connections_per_role": self.max_connections,
            "relay_active": all(connections.values()),
        }
