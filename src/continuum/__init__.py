"""Continuum -- memory continuity for AI agents across sessions.

Direct Python API -- no MCP server required::

    from continuum import store_single, retrieve
    store_single("Shipped the parser rewrite", "episodic", importance=0.9)
    print(retrieve()["narrative"])

The engine shares its storage file with a knowledge-store collaborator and
waits for that collaborator's tables before initializing its own.
"""

__version__ = "2.0.0"

from continuum.sqlite_store import RecordStore
from continuum.bridge import (
    submit_transfer,
    update_session,
    retrieve,
    store_single,
    query_memories,
    adjust_importance,
    batch_adjust,
    cleanup,
    get_protocol_template,
    initialize_system_data,
    get_system_data,
    status,
    reset_memory,
)
from continuum.errors import ContinuumError, NotFoundError, StorageUnavailable, ValidationError

__all__ = [
    "RecordStore",
    "submit_transfer",
    "update_session",
    "retrieve",
    "store_single",
    "query_memories",
    "adjust_importance",
    "batch_adjust",
    "cleanup",
    "get_protocol_template",
    "initialize_system_data",
    "get_system_data",
    "status",
    "reset_memory",
    "ContinuumError",
    "NotFoundError",
    "StorageUnavailable",
    "ValidationError",
]
