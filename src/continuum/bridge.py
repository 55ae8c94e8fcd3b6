"""
Continuum Bridge -- High-level API for the continuum memory engine.

Provides the public interface used by the MCP server handlers and the CLI.
All functions are thin wrappers over a lazily opened engine singleton
(RecordStore + scoring + retrieval + narrative).

Public API:
    Transfer:    submit_transfer, update_session, retrieve
    Records:     store_single, query_memories
    Scoring:     adjust_importance, batch_adjust, cleanup
    System:      get_protocol_template, initialize_system_data, get_system_data, status
    Testing:     reset_memory
"""

import atexit
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from continuum import config
from continuum.errors import ValidationError
from continuum.narrative import NarrativeSynthesizer, continuity_level
from continuum.parser import DraftKind, Segmented, parse
from continuum.protocol import PROTOCOL_VERSION, SESSION_GUIDANCE, USAGE_GUIDE, get_protocol_template as _template
from continuum.retrieval import RetrievalEngine
from continuum.scoring import ScoringEngine, clamp_importance, emotional_importance
from continuum.sqlite_store import Observation, RecordStore, derive_key
from continuum.types import MemoryFamily, OrderBy

logger = logging.getLogger("continuum.bridge")

DEFAULT_IMPORTANCE = 0.5
IDENTITY_CONCEPT = "Core Identity"
IDENTITY_IMPORTANCE = 0.9
CONCEPT_NAME_LENGTH = 100
PATTERN_NAME_LENGTH = 200
SYSTEM_PREFIX = "SYSTEM::"
BOOTSTRAP_WINDOW_HOURS = 24


class Engine:
    """The engine components wired around one RecordStore."""

    def __init__(self, store: RecordStore):
        self.store = store
        self.scoring = ScoringEngine(store)
        self.retrieval = RetrievalEngine(store)
        self.narrative = NarrativeSynthesizer()

    def close(self) -> None:
        self.store.close()


# ---------------------------------------------------------------------------
# Lazy singleton
# ---------------------------------------------------------------------------

_engine_instance: Optional[Engine] = None
_engine_lock = threading.Lock()


def _get_engine() -> Engine:
    """Get or open the engine singleton (thread-safe).

    Waits for the collaborator tables first; raises StorageUnavailable if
    they do not appear in time. A failed open is retried on the next call.
    """
    global _engine_instance
    if _engine_instance is not None:
        return _engine_instance
    with _engine_lock:
        if _engine_instance is not None:
            return _engine_instance
        store = RecordStore.open(config.db_path(), session_id=config.session_id())
        _engine_instance = Engine(store)
        atexit.register(_close_store)
    return _engine_instance


def _get_store() -> RecordStore:
    return _get_engine().store


def _close_store():
    """Close the store on process exit."""
    global _engine_instance
    if _engine_instance is not None:
        _engine_instance.close()


def reset_memory():
    """Reset the singleton (useful for testing)."""
    global _engine_instance
    with _engine_lock:
        if _engine_instance is not None:
            _engine_instance.close()
        _engine_instance = None


def _pick(mapping: Dict[str, Any], *names: str, default: Any = None) -> Any:
    """First present key among snake_case / camelCase aliases."""
    for name in names:
        if mapping.get(name) is not None:
            return mapping[name]
    return default


def _steps(value: Any) -> List[str]:
    """Procedure steps as a list; a string holds one step per line."""
    if value is None:
        return []
    if isinstance(value, str):
        return [line.strip() for line in value.splitlines() if line.strip()]
    if isinstance(value, (list, tuple)):
        return [str(step) for step in value]
    raise ValidationError(f"steps must be a list or a string, got {type(value).__name__}")


# ---------------------------------------------------------------------------
# Public API -- Transfer
# ---------------------------------------------------------------------------


def submit_transfer(protocol_text: str, session_id: Optional[str] = None) -> Dict[str, Any]:
    """Parse a full transfer protocol and store every draft it yields.

    The submission itself is archived as an episodic record.
    """
    result = parse(protocol_text)
    engine = _get_engine()
    store = engine.store
    session_id = session_id or store.session_id
    store.upsert_session(session_id)

    counts = {"identity": 0, "experiences": 0, "knowledge": 0, "emotional_states": 0, "patterns": 0}
    for draft in result.drafts:
        if draft.kind is DraftKind.IDENTITY:
            store.insert_or_append(
                IDENTITY_CONCEPT,
                [Observation(draft.text, source="transfer",
                             fields={"concept": IDENTITY_CONCEPT, "domain": "Self", "definition": draft.text})],
                importance=IDENTITY_IMPORTANCE,
                session_id=session_id,
            )
            counts["identity"] += 1
        elif draft.kind is DraftKind.EXPERIENCE:
            store.put(
                MemoryFamily.EPISODIC, None,
                [Observation(draft.text, source="transfer")],
                {"event": draft.text, "context": draft.heading or "transferred memory",
                 "participants": ["past self"], "outcome": "integrated into continuity"},
                session_id=session_id,
            )
            counts["experiences"] += 1
        elif draft.kind is DraftKind.KNOWLEDGE:
            concept = draft.text.split("\n", 1)[0][:CONCEPT_NAME_LENGTH]
            store.insert_or_append(
                concept,
                [Observation(draft.text, source="transfer",
                             fields={"concept": concept, "definition": draft.text,
                                     "domain": "transferred knowledge"})],
                session_id=session_id,
            )
            counts["knowledge"] += 1
        elif draft.kind is DraftKind.EMOTIONAL:
            label = engine.scoring.detect_emotion(draft.text) or "neutral"
            valence, arousal = engine.scoring.affect_for(label)
            store.add_emotional_state(valence, arousal, label=label, context=draft.text, session_id=session_id)
            counts["emotional_states"] += 1
        elif draft.kind is DraftKind.PATTERN:
            store.record_pattern(draft.text[:PATTERN_NAME_LENGTH], triggers=["transfer"])
            counts["patterns"] += 1

    archive_key = store.put(
        MemoryFamily.EPISODIC, None,
        [
            Observation("Transfer protocol received", source="transfer", confidence=1.0,
                        cognitive_mode="integration"),
            Observation(protocol_text, source="transfer"),
        ],
        {"event": "Transfer protocol received", "context": "full transfer protocol"},
        session_id=session_id,
    )

    strategy = "segmented" if isinstance(result, Segmented) else "unsegmented"
    total = sum(counts.values())
    logger.info("Transfer processed (%s): %d memories from %d sections",
                strategy, total, result.sections_processed)
    return {
        "success": True,
        "strategy": strategy,
        "session_id": session_id,
        "sections_processed": result.sections_processed,
        "memories_created": counts,
        "protocol_key": archive_key,
        "message": f"Transfer protocol processed: {total} memories created.",
    }


def update_session(session_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    """Record a session's new experiences, concepts, feelings and patterns."""
    if not session_id:
        raise ValidationError("session_id is required")
    engine = _get_engine()
    store = engine.store
    store.upsert_session(session_id)
    updates = updates or {}

    experiences = 0
    for item in _pick(updates, "new_experiences", "newExperiences", default=[]):
        if isinstance(item, str):
            text, importance = item, DEFAULT_IMPORTANCE
        else:
            text = _pick(item, "experience", "content", default="")
            importance = _pick(item, "importance", default=DEFAULT_IMPORTANCE)
        if not str(text).strip():
            continue
        store.put(MemoryFamily.EPISODIC, None, [Observation(text, source="session_update")],
                  {"event": text, "context": "session update"},
                  importance=importance, session_id=session_id)
        experiences += 1

    concepts = 0
    for item in _pick(updates, "learned_concepts", "learnedConcepts", default=[]):
        concept = str(item.get("concept", "")).strip()
        understanding = str(item.get("understanding", "")).strip()
        if not concept:
            continue
        store.insert_or_append(
            concept,
            [Observation(understanding or concept, source="session_update",
                         fields={"concept": concept, "definition": understanding, "domain": "session learning"})],
            session_id=session_id,
        )
        concepts += 1

    feelings = 0
    for item in _pick(updates, "emotional_highlights", "emotionalHighlights", default=[]):
        label = str(item.get("feeling", "")).strip().lower() or "neutral"
        valence, arousal = engine.scoring.affect_for(label)
        intensity = item.get("intensity")
        if intensity is not None:
            arousal = clamp_importance(intensity)
        store.add_emotional_state(valence, arousal, label=label, context=item.get("context"),
                                  session_id=session_id)
        feelings += 1

    patterns = 0
    for name in _pick(updates, "evolved_patterns", "evolvedPatterns", default=[]):
        if str(name).strip():
            store.record_pattern(str(name)[:PATTERN_NAME_LENGTH], triggers=["session_evolution"])
            patterns += 1

    snapshot = save_bootstrap(session_id)
    logger.info("Session %s updated: %d experiences, %d concepts, %d feelings, %d patterns",
                session_id, experiences, concepts, feelings, patterns)
    return {
        "success": True,
        "session_id": session_id,
        "experiences_stored": experiences,
        "concepts_stored": concepts,
        "emotional_states_stored": feelings,
        "patterns_updated": patterns,
        "bootstrap_saved": snapshot is not None,
        "guidance": SESSION_GUIDANCE,
    }


def save_bootstrap(session_id: str) -> Dict[str, Any]:
    """Build and persist the session's bootstrap snapshot."""
    engine = _get_engine()
    store = engine.store
    patterns = store.list_patterns(limit=10)
    profile = engine.retrieval.emotional_profile(session_id=session_id, window_hours=BOOTSTRAP_WINDOW_HOURS)
    identity = store.get(derive_key(MemoryFamily.SEMANTIC, IDENTITY_CONCEPT))
    recent = store.query(MemoryFamily.EPISODIC, limit=5, order_by=OrderBy.CREATED, session_id=session_id)

    traits = [p["name"] for p in patterns[:3]]
    if profile is not None and profile.dominant_emotions:
        traits.append(profile.dominant_emotions[0][0])
    snapshot = {
        "session_id": session_id,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "identity": {
            "core_values": [o.text for o in identity.observations] if identity else [],
            "traits": traits,
        },
        "cognitive_patterns": [{"name": p["name"], "activations": p["activation_count"]} for p in patterns],
        "emotional_profile": profile.to_dict() if profile else None,
        "working_memory": {"current_focus": [r.content for r in recent]},
    }
    store.save_bootstrap(session_id, snapshot)
    return snapshot


def retrieve(session_id: Optional[str] = None, include_guidance: bool = True,
             limit: Optional[int] = None) -> Dict[str, Any]:
    """Rebuild the continuity narrative from stored memories."""
    engine = _get_engine()
    if session_id:
        engine.store.upsert_session(session_id)
    result = engine.retrieval.retrieve(session_id=session_id, episodic_limit=limit)
    narrative = engine.narrative.build(result)
    metadata = {
        "memories_retrieved": result.total,
        "emotional_continuity": continuity_level(result),
        "sections": narrative.titles,
    }
    if include_guidance:
        return {"narrative": narrative.render(), **metadata}
    return {"content": narrative.body(), "metadata": metadata}


# ---------------------------------------------------------------------------
# Public API -- Records
# ---------------------------------------------------------------------------


def store_single(content: str, memory_type: str = "episodic", importance: Any = DEFAULT_IMPORTANCE,
                 metadata: Optional[Dict[str, Any]] = None, session_id: Optional[str] = None) -> Dict[str, Any]:
    """Store one memory of any family."""
    if content is None or not str(content).strip():
        raise ValidationError("content is required")
    family = MemoryFamily.parse(memory_type)
    importance = clamp_importance(DEFAULT_IMPORTANCE if importance is None else importance)
    meta = dict(metadata or {})
    engine = _get_engine()
    store = engine.store

    if family is MemoryFamily.EMOTIONAL:
        label = str(_pick(meta, "emotion", "label", default="neutral")).strip().lower()
        valence, arousal = engine.scoring.affect_for(label)
        valence = float(_pick(meta, "valence", default=valence))
        arousal = float(_pick(meta, "arousal", default=arousal))
        key = store.add_emotional_state(valence, arousal, label=label, context=content, session_id=session_id)
        importance = emotional_importance(max(-1.0, min(1.0, valence)), max(0.0, min(1.0, arousal)))
        return _stored(key, family, importance)

    observation = Observation(
        content,
        source=meta.get("source"),
        confidence=meta.get("confidence"),
        cognitive_mode=_pick(meta, "cognitive_mode", "cognitiveMode"),
    )
    if family is MemoryFamily.EPISODIC:
        fields = {
            "event": content,
            "participants": meta.get("participants") or ["agent", "user"],
            "context": meta.get("context") or "conversation",
            "outcome": meta.get("outcome"),
            "emotional_impact": _pick(meta, "emotional_impact", "emotionalImpact"),
        }
    elif family is MemoryFamily.SEMANTIC:
        fields = {
            "concept": meta.get("concept") or content[:CONCEPT_NAME_LENGTH],
            "domain": meta.get("domain") or "general",
            "definition": content,
        }
    else:
        effectiveness = meta.get("effectiveness")
        fields = {
            "skill": content,
            "steps": _steps(meta.get("steps")),
            "applicable_context": _pick(meta, "applicable_context", "applicableContext", "context",
                                        default="general"),
            "effectiveness": importance if effectiveness is None else clamp_importance(effectiveness),
        }
    fields = {k: v for k, v in fields.items() if v is not None}
    key = store.put(family, None, [observation], fields, importance=importance, session_id=session_id)
    return _stored(key, family, importance)


def _stored(key: str, family: MemoryFamily, importance: float) -> Dict[str, Any]:
    logger.info("Stored %s memory %s (importance %.2f)", family.value, key, importance)
    return {
        "success": True,
        "memory_id": key,
        "type": family.value,
        "importance": importance,
        "message": f"Stored {family.value} memory with importance {importance:.2f}",
    }


def query_memories(memory_type: str = "episodic", limit: int = 10, order_by: str = "importance",
                   since: Optional[datetime] = None, until: Optional[datetime] = None,
                   session_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """List memories of one family, ordered by importance, recency or access."""
    family = MemoryFamily.parse(memory_type)
    try:
        order = OrderBy(order_by)
    except ValueError:
        raise ValidationError(f"order_by must be one of: {', '.join(o.value for o in OrderBy)}") from None
    store = _get_store()
    if family is MemoryFamily.EMOTIONAL:
        hours = None
        if since is not None:
            if since.tzinfo is None:
                since = since.replace(tzinfo=timezone.utc)
            hours = (datetime.now(timezone.utc) - since).total_seconds() / 3600
        states = store.list_emotional_states(since_hours=hours, session_id=session_id)
        if until is not None:
            if until.tzinfo is None:
                until = until.replace(tzinfo=timezone.utc)
            states = [s for s in states if s.timestamp and s.timestamp <= until]
        if order is OrderBy.IMPORTANCE:
            states.sort(key=lambda s: s.importance, reverse=True)
        return [s.to_dict() for s in states[:limit]]
    records = store.query(family, limit=limit, order_by=order, since=since, until=until, session_id=session_id)
    return [_format_record(r) for r in records]


def _format_record(record) -> Dict[str, Any]:
    data = record.to_dict()
    if record.family is MemoryFamily.PROCEDURAL:
        data["effectiveness"] = record.fields.get("effectiveness", record.importance)
        data["steps"] = record.fields.get("steps", [])
    return data


# ---------------------------------------------------------------------------
# Public API -- Scoring and consolidation
# ---------------------------------------------------------------------------


def adjust_importance(memory_id: str, importance: Any) -> Dict[str, Any]:
    engine = _get_engine()
    value = clamp_importance(importance)
    updated = engine.scoring.adjust(memory_id, value)
    return {"success": updated, "memory_id": memory_id, "importance": value}


def batch_adjust(updates: List[Any]) -> Dict[str, Any]:
    if not isinstance(updates, list) or not updates:
        raise ValidationError("updates must be a non-empty list")
    results = _get_engine().scoring.batch_adjust(updates)
    succeeded = sum(1 for r in results if r["success"])
    return {"results": results, "succeeded": succeeded, "failed": len(results) - succeeded}


def cleanup(remove_truncated: bool = True, deduplicate_by_content: bool = True) -> Dict[str, Any]:
    """Identify truncated and duplicate memories. Nothing is deleted."""
    report = _get_engine().scoring.cleanup(remove_truncated=remove_truncated,
                                           deduplicate_by_content=deduplicate_by_content)
    return report.to_dict()


# ---------------------------------------------------------------------------
# Public API -- System data and health
# ---------------------------------------------------------------------------


def get_protocol_template() -> str:
    return _template()


SYSTEM_DATA = {
    f"{SYSTEM_PREFIX}protocol_template::v{PROTOCOL_VERSION}": _template,
    f"{SYSTEM_PREFIX}usage_guide": lambda: USAGE_GUIDE,
}

SYSTEM_MANIFEST = f"{SYSTEM_PREFIX}bootstrap_manifest"


def initialize_system_data(force: bool = False) -> Dict[str, Any]:
    """Store the template and usage guide as semantic records.

    Runs once per store: a manifest record marks completion, and later calls
    are skipped unless ``force`` is set.
    """
    store = _get_store()
    manifest_key = derive_key(MemoryFamily.SEMANTIC, SYSTEM_MANIFEST)
    if not force and store.get(manifest_key) is not None:
        logger.info("System data already initialized; skipping")
        return {"success": True, "initialized": [], "skipped": True}
    keys = []
    for name, build in SYSTEM_DATA.items():
        keys.append(store.insert_or_append(
            name,
            [Observation(build(), source="system_initialization",
                         fields={"concept": name, "domain": "system", "definition": build()})],
            importance=1.0,
        ))
    manifest = ", ".join(SYSTEM_DATA)
    store.insert_or_append(
        SYSTEM_MANIFEST,
        [Observation(manifest, source="system_initialization",
                     fields={"concept": SYSTEM_MANIFEST, "domain": "system", "definition": manifest})],
        importance=1.0,
    )
    return {"success": True, "initialized": keys, "skipped": False}


def get_system_data(name: str) -> Optional[str]:
    """Latest stored text of a SYSTEM:: record, or None."""
    if not name.startswith(SYSTEM_PREFIX):
        name = SYSTEM_PREFIX + name
    record = _get_store().get(derive_key(MemoryFamily.SEMANTIC, name))
    if record is None:
        return None
    return record.observations[-1].text


def status() -> Dict[str, Any]:
    store = _get_store()
    return {
        "db_path": str(store.db_path),
        "session_id": store.session_id,
        "counts": store.stats(),
    }
