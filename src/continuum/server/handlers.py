"""
Continuum MCP Handlers -- Maps tool names to async handler functions.

Each handler delegates to continuum.bridge for actual operations and returns
MCP-compatible response dicts. Handlers never raise: failures are logged and
turned into error responses (with remediation text when storage is not ready).
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from continuum.errors import ContinuumError

logger = logging.getLogger("continuum.server.handlers")


def _clamp_int(value, default: int, min_val: int = 1, max_val: int = 1000) -> int:
    """Clamp a numeric argument to safe bounds."""
    try:
        v = int(value)
        return max(min_val, min(v, max_val))
    except (TypeError, ValueError):
        return default


def _as_bool(value, default: bool) -> bool:
    """Coerce a flag argument; clients sometimes send "false" as a string."""
    if value is None:
        return default
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes", "on"):
            return True
        if lowered in ("false", "0", "no", "off", ""):
            return False
        return default
    return bool(value)


def _parse_time(value: Optional[str], name: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an ISO timestamp, got {value!r}") from None


# ============================================================================
# Response Helpers
# ============================================================================


def mcp_response(text: str) -> dict:
    """Build a successful MCP response."""
    return {"content": [{"type": "text", "text": str(text)}]}


def mcp_error(text: str) -> dict:
    """Build an error MCP response."""
    return {"content": [{"type": "text", "text": f"Error: {text}"}], "isError": True}


def _json(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)


def _failure(tool: str, e: Exception, summary: str) -> dict:
    logger.error("%s failed: %s", tool, e)
    if isinstance(e, ContinuumError):
        return mcp_error(str(e))
    return mcp_error(f"{summary}: {e}")


# ============================================================================
# Handler: continuum_submit_transfer
# ============================================================================


async def handle_continuum_submit_transfer(arguments: dict) -> dict:
    """Process a complete transfer protocol."""
    protocol = arguments.get("protocol") or arguments.get("content") or ""
    session_id = arguments.get("session_id")

    try:
        from continuum.bridge import submit_transfer

        result = submit_transfer(protocol, session_id=session_id)
        counts = result["memories_created"]
        lines = [
            f"Transfer protocol processed ({result['strategy']}, "
            f"{result['sections_processed']} sections recognized).",
            "",
            f"- Identity: {counts['identity']}",
            f"- Experiences: {counts['experiences']}",
            f"- Knowledge: {counts['knowledge']}",
            f"- Emotional states: {counts['emotional_states']}",
            f"- Thinking patterns: {counts['patterns']}",
            "",
            f"Archived as {result['protocol_key']}. Call continuum_retrieve in your next session.",
        ]
        return mcp_response("\n".join(lines))
    except Exception as e:
        return _failure("continuum_submit_transfer", e, "Failed to process transfer")


# ============================================================================
# Handler: continuum_update_session
# ============================================================================


async def handle_continuum_update_session(arguments: dict) -> dict:
    """Store a session's deltas and save its bootstrap snapshot."""
    session_id = (arguments.get("session_id") or "").strip()
    if not session_id:
        return mcp_error("session_id is required")

    try:
        from continuum.bridge import update_session

        result = update_session(session_id, arguments)
        lines = [
            f"Session {session_id} updated:",
            f"- {result['experiences_stored']} experiences",
            f"- {result['concepts_stored']} concepts",
            f"- {result['emotional_states_stored']} emotional states",
            f"- {result['patterns_updated']} patterns",
            "",
            result["guidance"],
        ]
        return mcp_response("\n".join(lines))
    except Exception as e:
        return _failure("continuum_update_session", e, "Failed to update session")


# ============================================================================
# Handler: continuum_retrieve
# ============================================================================


async def handle_continuum_retrieve(arguments: dict) -> dict:
    """Rebuild the continuity briefing."""
    session_id = arguments.get("session_id")
    include_guidance = _as_bool(arguments.get("include_guidance"), True)
    limit = arguments.get("limit")
    if limit is not None:
        limit = _clamp_int(limit, default=15)

    try:
        from continuum.bridge import retrieve

        result = retrieve(session_id=session_id, include_guidance=include_guidance, limit=limit)
        if include_guidance:
            return mcp_response(result["narrative"])
        return mcp_response(_json(result))
    except Exception as e:
        return _failure("continuum_retrieve", e, "Retrieval failed")


# ============================================================================
# Handler: continuum_store
# ============================================================================


async def handle_continuum_store(arguments: dict) -> dict:
    """Store a single memory of any family."""
    content = arguments.get("content") or ""
    if not content.strip():
        return mcp_error("content is required")

    try:
        from continuum.bridge import store_single

        result = store_single(
            content=content,
            memory_type=arguments.get("type", "episodic"),
            importance=arguments.get("importance", 0.5),
            metadata=arguments.get("metadata") or {},
            session_id=arguments.get("session_id"),
        )
        return mcp_response(f"{result['message']}\nID: {result['memory_id']}")
    except Exception as e:
        return _failure("continuum_store", e, "Failed to store memory")


# ============================================================================
# Handler: continuum_query
# ============================================================================


async def handle_continuum_query(arguments: dict) -> dict:
    """List memories of one family."""
    limit = _clamp_int(arguments.get("limit", 10), default=10)

    try:
        from continuum.bridge import query_memories

        results = query_memories(
            memory_type=arguments.get("type", "episodic"),
            limit=limit,
            order_by=arguments.get("order_by", "importance"),
            since=_parse_time(arguments.get("since"), "since"),
            until=_parse_time(arguments.get("until"), "until"),
            session_id=arguments.get("session_id"),
        )
        if not results:
            return mcp_response("No memories found.")
        return mcp_response(_json(results))
    except Exception as e:
        return _failure("continuum_query", e, "Query failed")


# ============================================================================
# Handler: continuum_adjust_importance / continuum_batch_adjust
# ============================================================================


async def handle_continuum_adjust_importance(arguments: dict) -> dict:
    memory_id = (arguments.get("memory_id") or "").strip()
    if not memory_id:
        return mcp_error("memory_id is required")
    if arguments.get("importance") is None:
        return mcp_error("importance is required")

    try:
        from continuum.bridge import adjust_importance

        result = adjust_importance(memory_id, arguments["importance"])
        return mcp_response(f"Importance of {memory_id} set to {result['importance']:.2f}")
    except Exception as e:
        return _failure("continuum_adjust_importance", e, "Failed to adjust importance")


async def handle_continuum_batch_adjust(arguments: dict) -> dict:
    updates = arguments.get("updates")
    if not updates:
        return mcp_error("updates is required")

    try:
        from continuum.bridge import batch_adjust

        result = batch_adjust(updates)
        return mcp_response(_json(result))
    except Exception as e:
        return _failure("continuum_batch_adjust", e, "Batch adjust failed")


# ============================================================================
# Handler: continuum_cleanup
# ============================================================================


async def handle_continuum_cleanup(arguments: dict) -> dict:
    """Report truncated and duplicate memories."""
    try:
        from continuum.bridge import cleanup

        report = cleanup(
            remove_truncated=_as_bool(arguments.get("remove_truncated"), True),
            deduplicate_by_content=_as_bool(arguments.get("deduplicate_by_content"), True),
        )
        if not report["identified"]:
            return mcp_response("No truncated or duplicate memories found.")
        lines = [f"**Cleanup candidates** ({report['identified']} identified, nothing deleted)\n"]
        for item in report["truncated"]:
            lines.append(f"- [truncated] {item['key']}: {item['content']}")
        for group in report["duplicates"]:
            lines.append(f"- [duplicate] keep {group['kept']}, review {', '.join(group['flagged'])}")
        return mcp_response("\n".join(lines))
    except Exception as e:
        return _failure("continuum_cleanup", e, "Cleanup failed")


# ============================================================================
# Handler: continuum_template / continuum_init_system
# ============================================================================


async def handle_continuum_template(arguments: dict) -> dict:
    section = arguments.get("section")
    if section == "guide":
        from continuum.protocol import USAGE_GUIDE

        return mcp_response(USAGE_GUIDE)

    from continuum.protocol import get_protocol_template

    return mcp_response(get_protocol_template())


async def handle_continuum_init_system(arguments: dict) -> dict:
    key = arguments.get("key")
    try:
        if key:
            from continuum.bridge import get_system_data

            text = get_system_data(key)
            if text is None:
                return mcp_error(f"System record not found: {key}")
            return mcp_response(text)

        from continuum.bridge import initialize_system_data

        result = initialize_system_data(force=_as_bool(arguments.get("force"), False))
        if result["skipped"]:
            return mcp_response("System data already initialized. Pass force=true to re-initialize.")
        return mcp_response("Initialized system records:\n" + "\n".join(f"- {k}" for k in result["initialized"]))
    except Exception as e:
        return _failure("continuum_init_system", e, "System initialization failed")


# ============================================================================
# Handler Registry
# ============================================================================

HANDLERS: Dict[str, Any] = {
    "continuum_submit_transfer": handle_continuum_submit_transfer,
    "continuum_update_session": handle_continuum_update_session,
    "continuum_retrieve": handle_continuum_retrieve,
    "continuum_store": handle_continuum_store,
    "continuum_query": handle_continuum_query,
    "continuum_adjust_importance": handle_continuum_adjust_importance,
    "continuum_batch_adjust": handle_continuum_batch_adjust,
    "continuum_cleanup": handle_continuum_cleanup,
    "continuum_template": handle_continuum_template,
    "continuum_init_system": handle_continuum_init_system,
}
