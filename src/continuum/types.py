"""Shared enums for the continuum memory engine and message relay."""

from enum import Enum

from continuum.errors import ValidationError


class MemoryFamily(str, Enum):
    """Record families kept by the engine."""

    EPISODIC = "episodic"
    SEMANTIC = "semantic"
    PROCEDURAL = "procedural"
    EMOTIONAL = "emotional"

    @property
    def entity_type(self) -> str:
        """entityType column value used in the shared entities table."""
        return f"{self.value.upper()}_MEMORY"

    @classmethod
    def parse(cls, value) -> "MemoryFamily":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(f"Unsupported memory type: {value}") from None


# Families that are stored as entity records (emotional states have their own log).
RECORD_FAMILIES = (MemoryFamily.EPISODIC, MemoryFamily.SEMANTIC, MemoryFamily.PROCEDURAL)


class OrderBy(str, Enum):
    """Ordering keys for listing records."""

    CREATED = "created"        # recency
    ACCESS = "access"          # frequency
    IMPORTANCE = "importance"  # relevance


class ConsolidationStatus(str, Enum):
    ACTIVE = "active"
    CONSOLIDATED = "consolidated"
    ARCHIVED = "archived"


class Readiness(str, Enum):
    """Outcome of waiting for the collaborator-owned schema."""

    READY = "ready"
    TIMED_OUT = "timed_out"


class RelayRole(str, Enum):
    PAST = "past"
    FUTURE = "future"

    @property
    def other(self) -> "RelayRole":
        return RelayRole.FUTURE if self is RelayRole.PAST else RelayRole.PAST


class MessageType(str, Enum):
    """Message kinds accepted by the relay."""

    TRANSFER = "transfer"
    MEMORY_SYNC = "memory_sync"
    DIRECT_MESSAGE = "direct_message"
    IDENTITY_MERGE = "identity_merge"
