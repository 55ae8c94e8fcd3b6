"""
Continuum Scoring -- importance scores, emotion mapping and consolidation.

Consolidation only *identifies* records: truncated fragments and near
duplicates are reported back to the caller, nothing is deleted here.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from continuum.errors import ContinuumError, NotFoundError, ValidationError
from continuum.types import MemoryFamily, OrderBy, RECORD_FAMILIES

if TYPE_CHECKING:
    from continuum.sqlite_store import MemoryRecord, RecordStore

logger = logging.getLogger("continuum.scoring")

NEUTRAL_AFFECT: Tuple[float, float] = (0.0, 0.5)

# label -> (valence, arousal)
EMOTION_TABLE: Mapping[str, Tuple[float, float]] = MappingProxyType({
    "joy": (0.8, 0.6),
    "happiness": (0.8, 0.5),
    "excitement": (0.7, 0.8),
    "love": (0.9, 0.6),
    "gratitude": (0.8, 0.4),
    "pride": (0.7, 0.6),
    "satisfaction": (0.7, 0.4),
    "hope": (0.6, 0.5),
    "trust": (0.6, 0.3),
    "contentment": (0.6, 0.2),
    "calm": (0.3, 0.2),
    "curiosity": (0.4, 0.6),
    "determination": (0.3, 0.6),
    "surprise": (0.1, 0.8),
    "neutral": NEUTRAL_AFFECT,
    "confusion": (-0.2, 0.5),
    "boredom": (-0.3, 0.1),
    "disappointment": (-0.5, 0.4),
    "frustration": (-0.5, 0.7),
    "anxiety": (-0.4, 0.8),
    "sadness": (-0.7, 0.3),
    "fear": (-0.7, 0.8),
    "anger": (-0.7, 0.8),
})

DEDUP_PREFIX_LENGTH = 50
TRUNCATION_MAX_LENGTH = 50
_ELLIPSES = ("...", "…")
CLEANUP_SCAN_LIMIT = 1000


def clamp_importance(value: Any) -> float:
    """Coerce an importance score into [0, 1]. Non-numeric input is rejected."""
    if isinstance(value, bool):
        raise ValidationError(f"Importance must be a number, got {value!r}")
    try:
        v = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Importance must be a number, got {value!r}") from None
    if math.isnan(v):
        raise ValidationError("Importance must be a number, got NaN")
    return max(0.0, min(1.0, v))


def emotional_importance(valence: float, arousal: float) -> float:
    """Strongly negative and strongly activating states both score high."""
    return max(abs(valence), arousal)


def affect_for(label: Optional[str], table: Mapping[str, Tuple[float, float]] = EMOTION_TABLE) -> Tuple[float, float]:
    """(valence, arousal) for an emotion label; unknown labels are neutral."""
    if not label:
        return NEUTRAL_AFFECT
    return table.get(label.strip().lower(), NEUTRAL_AFFECT)


def detect_emotion(text: str, table: Mapping[str, Tuple[float, float]] = EMOTION_TABLE) -> Optional[str]:
    """First table label that appears as a word in ``text``."""
    lowered = text.lower()
    hits = []
    for label in table:
        if label == "neutral":
            continue
        m = re.search(rf"\b{re.escape(label)}\b", lowered)
        if m:
            hits.append((m.start(), label))
    return min(hits)[1] if hits else None


def content_prefix(text: str) -> str:
    return text[:DEDUP_PREFIX_LENGTH].casefold().strip()


def is_truncated(text: str) -> bool:
    """Short text that ends in an ellipsis is a leftover of a clipped write."""
    text = text.rstrip()
    return len(text) <= TRUNCATION_MAX_LENGTH and text.endswith(_ELLIPSES)


@dataclass
class DuplicateGroup:
    prefix: str
    kept: str
    flagged: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {"prefix": self.prefix, "kept": self.kept, "flagged": list(self.flagged)}


def find_duplicates(records: Sequence["MemoryRecord"]) -> List[DuplicateGroup]:
    """Group records by content prefix; keep the longest, flag the rest.

    Records that share a long common preamble are grouped even when they
    differ afterwards.
    """
    groups: Dict[str, List["MemoryRecord"]] = {}
    for record in records:
        groups.setdefault(content_prefix(record.content), []).append(record)
    result = []
    for prefix, members in groups.items():
        if len(members) < 2:
            continue
        ranked = sorted(members, key=lambda r: len(r.content), reverse=True)
        result.append(DuplicateGroup(prefix=prefix, kept=ranked[0].key, flagged=[r.key for r in ranked[1:]]))
    return result


@dataclass
class CleanupReport:
    truncated: List[Dict[str, Any]] = field(default_factory=list)
    duplicates: List[DuplicateGroup] = field(default_factory=list)

    @property
    def candidates(self) -> List[str]:
        seen: Dict[str, None] = {}
        for item in self.truncated:
            seen.setdefault(item["key"], None)
        for group in self.duplicates:
            for key in group.flagged:
                seen.setdefault(key, None)
        return list(seen)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "truncated": self.truncated,
            "duplicates": [g.to_dict() for g in self.duplicates],
            "candidates": self.candidates,
            "identified": len(self.candidates),
        }


class ScoringEngine:
    """Importance adjustment and consolidation over a RecordStore."""

    def __init__(self, store: "RecordStore", emotions: Mapping[str, Tuple[float, float]] = EMOTION_TABLE):
        self.store = store
        self.emotions = emotions

    def affect_for(self, label: Optional[str]) -> Tuple[float, float]:
        return affect_for(label, self.emotions)

    def detect_emotion(self, text: str) -> Optional[str]:
        return detect_emotion(text, self.emotions)

    def adjust(self, key: str, importance: Any) -> bool:
        """Set a record's importance. Does not count as a read."""
        value = clamp_importance(importance)
        if not self.store.exists(key):
            raise NotFoundError(f"Memory not found: {key}")
        updated = self.store.set_importance(key, value)
        logger.info("Importance of %s set to %.2f", key, value)
        return updated

    def batch_adjust(self, items: Iterable[Any]) -> List[Dict[str, Any]]:
        """Apply each (key, importance) pair on its own; failures are per item."""
        results = []
        for item in items:
            key = None
            try:
                if isinstance(item, dict):
                    key = item.get("memory_id") or item.get("key")
                    importance = item.get("importance")
                else:
                    try:
                        key, importance = item
                    except (TypeError, ValueError):
                        raise ValidationError(f"expected a (memory_id, importance) pair, got {item!r}") from None
                if not key:
                    raise ValidationError("memory_id is required")
                self.adjust(key, importance)
                results.append({"memory_id": key, "success": True, "importance": clamp_importance(importance)})
            except ContinuumError as e:
                results.append({"memory_id": key, "success": False, "error": e.message, "code": e.code})
        return results

    def cleanup(self, remove_truncated: bool = True, deduplicate_by_content: bool = True,
                families: Sequence[MemoryFamily] = RECORD_FAMILIES) -> CleanupReport:
        report = CleanupReport()
        if not (remove_truncated or deduplicate_by_content):
            return report
        for family in families:
            records = self.store.query(family, limit=CLEANUP_SCAN_LIMIT, order_by=OrderBy.CREATED)
            if remove_truncated:
                report.truncated.extend(
                    {"key": r.key, "type": family.value, "content": r.content}
                    for r in records if is_truncated(r.content)
                )
            if deduplicate_by_content:
                report.duplicates.extend(find_duplicates(records))
        logger.info("Cleanup identified %d candidate(s)", len(report.candidates))
        return report
