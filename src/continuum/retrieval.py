"""
Continuum Retrieval -- the query pipeline behind session bootstrap.

Episodic memories are pulled three ways (critical, by importance, by recency)
and merged in that precedence so critical memories are never crowded out by
merely recent ones. Semantic and procedural records are pulled by importance
with their own caps, and the emotional profile covers a trailing window.

Reads go through RecordStore, so every returned record has its access
counters bumped.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from continuum.sqlite_store import EmotionalState, MemoryRecord, RecordStore
from continuum.types import MemoryFamily, OrderBy

logger = logging.getLogger("continuum.retrieval")

CRITICAL_THRESHOLD = 0.9
EPISODIC_OVERFETCH = 15
RECENT_LIMIT = 10
SEMANTIC_LIMIT = 20
PROCEDURAL_LIMIT = 10
EMOTION_WINDOW_HOURS = 30 * 24
TOP_EMOTIONS = 3


@dataclass
class EmotionalProfile:
    window_hours: float
    state_count: int
    average_valence: float
    average_arousal: float
    dominant_emotions: List[Tuple[str, int]]
    recent_states: List[EmotionalState] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time_window_hours": self.window_hours,
            "state_count": self.state_count,
            "average_valence": round(self.average_valence, 3),
            "average_arousal": round(self.average_arousal, 3),
            "dominant_emotions": [{"emotion": e, "count": n, "frequency": round(n / self.state_count, 3)}
                                  for e, n in self.dominant_emotions],
            "recent_states": [s.to_dict() for s in self.recent_states],
        }


def build_profile(states: List[EmotionalState], window_hours: float) -> Optional[EmotionalProfile]:
    if not states:
        return None
    n = len(states)
    labels = Counter(s.label for s in states if s.label)
    return EmotionalProfile(
        window_hours=window_hours,
        state_count=n,
        average_valence=sum(s.valence for s in states) / n,
        average_arousal=sum(s.arousal for s in states) / n,
        dominant_emotions=labels.most_common(TOP_EMOTIONS),
        recent_states=states[:5],
    )


def merge_first_seen(*groups: Iterable[MemoryRecord]) -> List[MemoryRecord]:
    """Concatenate groups, keeping only the first occurrence of each key."""
    seen = set()
    merged = []
    for group in groups:
        for record in group:
            if record.key in seen:
                continue
            seen.add(record.key)
            merged.append(record)
    return merged


@dataclass
class RetrievalResult:
    experiences: List[MemoryRecord]
    knowledge: List[MemoryRecord]
    procedures: List[MemoryRecord]
    emotional_profile: Optional[EmotionalProfile] = None

    @property
    def critical(self) -> List[MemoryRecord]:
        return [r for r in self.experiences if r.importance >= CRITICAL_THRESHOLD]

    @property
    def total(self) -> int:
        return len(self.experiences) + len(self.knowledge) + len(self.procedures)


class RetrievalEngine:
    def __init__(
        self,
        store: RecordStore,
        overfetch: int = EPISODIC_OVERFETCH,
        recent_limit: int = RECENT_LIMIT,
        semantic_limit: int = SEMANTIC_LIMIT,
        procedural_limit: int = PROCEDURAL_LIMIT,
        window_hours: float = EMOTION_WINDOW_HOURS,
    ):
        self.store = store
        self.overfetch = overfetch
        self.recent_limit = recent_limit
        self.semantic_limit = semantic_limit
        self.procedural_limit = procedural_limit
        self.window_hours = window_hours

    def episodic(self, limit: Optional[int] = None) -> List[MemoryRecord]:
        """Critical, then importance-ordered, then recent episodic records."""
        fetch = max(self.overfetch, limit or 0)
        by_importance = self.store.query(MemoryFamily.EPISODIC, limit=fetch, order_by=OrderBy.IMPORTANCE)
        critical = [r for r in by_importance if r.importance >= CRITICAL_THRESHOLD]
        recent = self.store.query(MemoryFamily.EPISODIC, limit=self.recent_limit, order_by=OrderBy.CREATED)
        merged = merge_first_seen(critical, by_importance, recent)
        return merged[:limit] if limit is not None else merged

    def emotional_profile(self, session_id: Optional[str] = None,
                          window_hours: Optional[float] = None) -> Optional[EmotionalProfile]:
        hours = self.window_hours if window_hours is None else window_hours
        states = self.store.list_emotional_states(since_hours=hours, session_id=session_id)
        return build_profile(states, hours)

    def retrieve(self, session_id: Optional[str] = None, episodic_limit: Optional[int] = None) -> RetrievalResult:
        experiences = self.episodic(limit=episodic_limit)
        knowledge = self.store.query(MemoryFamily.SEMANTIC, limit=self.semantic_limit, order_by=OrderBy.IMPORTANCE)
        procedures = self.store.query(
            MemoryFamily.PROCEDURAL, limit=self.procedural_limit, order_by=OrderBy.IMPORTANCE
        )
        profile = self.emotional_profile(session_id=session_id)
        logger.info(
            "Retrieved %d experiences, %d concepts, %d procedures",
            len(experiences), len(knowledge), len(procedures),
        )
        return RetrievalResult(experiences, knowledge, procedures, profile)
