"""Continuum MCP server tests -- schemas and full handler coverage."""
import json
import re

import pytest

from continuum.protocol import USAGE_GUIDE, get_protocol_template
from continuum.server.handlers import HANDLERS
from continuum.server.tool_schemas import TOOL_SCHEMAS


# ============================================================================
# Schema / Registry Tests
# ============================================================================

def test_all_tools_have_handlers():
    for schema in TOOL_SCHEMAS:
        assert schema["name"] in HANDLERS, f"Missing handler for {schema['name']}"


def test_tool_schemas_valid():
    """All tool schemas should have required fields."""
    for schema in TOOL_SCHEMAS:
        assert "description" in schema
        assert schema["inputSchema"]["type"] == "object"
        assert schema["name"].startswith("continuum_")


def test_handler_count():
    assert len(TOOL_SCHEMAS) == 10
    assert set(HANDLERS) == {s["name"] for s in TOOL_SCHEMAS}


# ============================================================================
# Fixture: reset bridge singleton between tests
# ============================================================================

@pytest.fixture(autouse=True)
def _reset_bridge(engine):
    yield


def _text(result):
    return result["content"][0]["text"]


async def _store(content="Handler test memory", **extra):
    result = await HANDLERS["continuum_store"]({"content": content, **extra})
    assert not result.get("isError"), result
    return _text(result).rsplit("ID: ", 1)[1].strip()


# ============================================================================
# Handler: continuum_store + continuum_query
# ============================================================================

@pytest.mark.asyncio
async def test_store_and_query():
    memory_id = await _store("Paired on the relay", importance=0.8)
    assert memory_id.startswith("episodic_")

    result = await HANDLERS["continuum_query"]({"type": "episodic"})
    assert not result.get("isError")
    [record] = json.loads(_text(result))
    assert record["key"] == memory_id
    assert record["importance"] == 0.8


@pytest.mark.asyncio
async def test_store_empty_content():
    result = await HANDLERS["continuum_store"]({"content": ""})
    assert result.get("isError")


@pytest.mark.asyncio
async def test_store_invalid_type():
    result = await HANDLERS["continuum_store"]({"content": "x", "type": "dream"})
    assert result.get("isError")
    assert _text(result).startswith("Error: ")


@pytest.mark.asyncio
async def test_query_empty():
    result = await HANDLERS["continuum_query"]({"type": "semantic"})
    assert _text(result) == "No memories found."


@pytest.mark.asyncio
async def test_query_bad_timestamp():
    result = await HANDLERS["continuum_query"]({"since": "yesterday"})
    assert result.get("isError")
    assert "ISO timestamp" in _text(result)


# ============================================================================
# Handler: adjust / batch / cleanup
# ============================================================================

@pytest.mark.asyncio
async def test_adjust_importance():
    memory_id = await _store()
    result = await HANDLERS["continuum_adjust_importance"]({"memory_id": memory_id, "importance": 0.9})
    assert _text(result) == f"Importance of {memory_id} set to 0.90"


@pytest.mark.asyncio
async def test_adjust_importance_missing_args():
    assert (await HANDLERS["continuum_adjust_importance"]({"importance": 0.5})).get("isError")
    assert (await HANDLERS["continuum_adjust_importance"]({"memory_id": "x"})).get("isError")


@pytest.mark.asyncio
async def test_adjust_unknown_memory():
    result = await HANDLERS["continuum_adjust_importance"]({"memory_id": "episodic_nope", "importance": 0.5})
    assert result.get("isError")
    assert "episodic_nope" in _text(result)


@pytest.mark.asyncio
async def test_batch_adjust():
    memory_id = await _store()
    result = await HANDLERS["continuum_batch_adjust"]({"updates": [
        {"memory_id": memory_id, "importance": 0.95},
        {"memory_id": "episodic_nope", "importance": 0.1},
    ]})
    data = json.loads(_text(result))
    assert data["succeeded"] == 1
    assert data["failed"] == 1


@pytest.mark.asyncio
async def test_cleanup_empty_and_with_candidates():
    result = await HANDLERS["continuum_cleanup"]({})
    assert _text(result) == "No truncated or duplicate memories found."

    memory_id = await _store("Trailing off...")
    result = await HANDLERS["continuum_cleanup"]({})
    assert f"[truncated] {memory_id}" in _text(result)


# ============================================================================
# Handler: transfer / session / retrieve
# ============================================================================

@pytest.mark.asyncio
async def test_submit_unfilled_template_is_error():
    result = await HANDLERS["continuum_submit_transfer"]({"protocol": get_protocol_template()})
    assert result.get("isError")
    assert "<TEMPLATE>" in _text(result)


@pytest.mark.asyncio
async def test_submit_and_retrieve():
    filled = re.sub(r"<TEMPLATE>(.*?)</TEMPLATE>", r"\1", get_protocol_template())
    result = await HANDLERS["continuum_submit_transfer"]({"protocol": filled})
    assert not result.get("isError")
    assert "- Experiences: 4" in _text(result)

    result = await HANDLERS["continuum_retrieve"]({})
    assert _text(result).startswith("# CONTINUITY BRIEFING")


@pytest.mark.asyncio
async def test_retrieve_structured():
    result = await HANDLERS["continuum_retrieve"]({"include_guidance": False})
    data = json.loads(_text(result))
    assert data["metadata"]["emotional_continuity"] == "building"



@pytest.mark.asyncio
@pytest.mark.parametrize("flag", ["false", "False", "0", "no"])
async def test_retrieve_string_false_flag(flag):
    result = await HANDLERS["continuum_retrieve"]({"include_guidance": flag})
    data = json.loads(_text(result))
    assert "narrative" not in data
    assert data["metadata"]["emotional_continuity"] == "building"


@pytest.mark.asyncio
async def test_retrieve_string_true_flag():
    result = await HANDLERS["continuum_retrieve"]({"include_guidance": "true"})
    assert _text(result).startswith("# CONTINUITY BRIEFING")


@pytest.mark.asyncio
async def test_update_session():
    result = await HANDLERS["continuum_update_session"]({
        "session_id": "s-42",
        "new_experiences": ["Shipped the cleanup report"],
    })
    assert not result.get("isError")
    assert "- 1 experiences" in _text(result)


@pytest.mark.asyncio
async def test_update_session_requires_id():
    result = await HANDLERS["continuum_update_session"]({"new_experiences": ["x"]})
    assert result.get("isError")


# ============================================================================
# Handler: template / init_system
# ============================================================================

@pytest.mark.asyncio
async def test_template_and_guide():
    assert _text(await HANDLERS["continuum_template"]({})) == get_protocol_template()
    assert _text(await HANDLERS["continuum_template"]({"section": "guide"})) == USAGE_GUIDE


@pytest.mark.asyncio
async def test_init_system_then_read():
    result = await HANDLERS["continuum_init_system"]({})
    assert "SYSTEM::usage_guide" in _text(result)
    result = await HANDLERS["continuum_init_system"]({"key": "usage_guide"})
    assert _text(result) == USAGE_GUIDE



@pytest.mark.asyncio
async def test_init_system_repeat_is_skipped_unless_forced():
    await HANDLERS["continuum_init_system"]({})
    result = await HANDLERS["continuum_init_system"]({})
    assert not result.get("isError")
    assert "already initialized" in _text(result)

    result = await HANDLERS["continuum_init_system"]({"force": "true"})
    assert "SYSTEM::usage_guide" in _text(result)


@pytest.mark.asyncio
async def test_init_system_unknown_key():
    result = await HANDLERS["continuum_init_system"]({"key": "missing"})
    assert result.get("isError")


# ============================================================================
# Storage not ready
# ============================================================================

@pytest.mark.asyncio
async def test_storage_unavailable_includes_remediation(tmp_continuum_home, monkeypatch):
    from continuum.bridge import reset_memory

    empty = tmp_continuum_home / "empty.db"
    empty.touch()
    monkeypatch.setenv("CONTINUUM_DB_PATH", str(empty))
    reset_memory()

    result = await HANDLERS["continuum_store"]({"content": "anything"})
    assert result.get("isError")
    text = _text(result)
    assert "Database not initialized" in text
    assert "1. " in text
    assert "CONTINUUM_DB_PATH" in text
