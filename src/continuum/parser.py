"""
Continuum Parser -- turn a free-text transfer submission into memory drafts.

Two strategies, reported explicitly:

- ``Segmented``: the text has ``#``/``##``/``###`` headers. Each header title
  is matched against keyword sets and the block under it becomes drafts of
  that kind (one per paragraph or bullet). Blocks under unrecognized headers
  are skipped. Text above the first header is kept as one experience draft.
- ``Unsegmented``: no headers at all. The whole text becomes one experience
  draft, and lines mentioning feelings or learning are also picked out as
  emotional and knowledge drafts.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple, Union

from continuum.errors import ValidationError
from continuum.protocol import TEMPLATE_MARKER, count_placeholders


class DraftKind(str, Enum):
    IDENTITY = "identity"
    EXPERIENCE = "experience"
    KNOWLEDGE = "knowledge"
    EMOTIONAL = "emotional"
    PATTERN = "pattern"


# Checked in order; the first kind with a matching keyword wins.
HEADER_KEYWORDS: Tuple[Tuple[DraftKind, Tuple[str, ...]], ...] = (
    (DraftKind.EMOTIONAL, ("emotion", "feeling", "mood", "affect")),
    (DraftKind.PATTERN, ("pattern", "metacognit", "cognitive", "thinking", "procedure", "skill", "habit",
                         "correction", "workflow")),
    (DraftKind.IDENTITY, ("identity", "who you are", "who i am", "core values", "personality", "about me")),
    (DraftKind.KNOWLEDGE, ("knowledge", "learned", "learning", "insight", "discover", "understanding",
                           "concept", "lesson")),
    (DraftKind.EXPERIENCE, ("experience", "memor", "moment", "event", "history", "journey", "story")),
)

_HEADER_RE = re.compile(r"^(#{1,3})\s+(.+?)\s*#*\s*$")
_BULLET_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+")
_RULE_RE = re.compile(r"^\s*(?:-{3,}|\*{3,}|_{3,})\s*$")

_EMOTION_LINE_RE = re.compile(r"\b(feel|feels|felt|feeling|emotion|emotional|joy|excit\w*|trust|grateful|"
                              r"frustrat\w*|afraid|anxious|proud)\b", re.IGNORECASE)
_KNOWLEDGE_LINE_RE = re.compile(r"\b(learned|discovered|understood|realized|knowledge|insight)\b", re.IGNORECASE)


@dataclass(frozen=True)
class MemoryDraft:
    kind: DraftKind
    text: str
    heading: Optional[str] = None


@dataclass(frozen=True)
class Segmented:
    drafts: Tuple[MemoryDraft, ...]
    headings: Tuple[Tuple[str, Optional[DraftKind]], ...]

    @property
    def sections_processed(self) -> int:
        return sum(1 for _, kind in self.headings if kind is not None)


@dataclass(frozen=True)
class Unsegmented:
    drafts: Tuple[MemoryDraft, ...]

    @property
    def sections_processed(self) -> int:
        return 0


ParseResult = Union[Segmented, Unsegmented]


def validate_submission(text: str) -> str:
    """Reject empty input and templates that still have placeholders."""
    if text is None or not str(text).strip():
        raise ValidationError("Protocol content cannot be empty")
    remaining = count_placeholders(text)
    if remaining:
        raise ValidationError(
            f"The protocol still contains {remaining} unfilled {TEMPLATE_MARKER} placeholder(s). "
            "Replace every <TEMPLATE>...</TEMPLATE> block with your own content, then submit again.",
            details={"placeholders": remaining},
        )
    return text


def classify_heading(title: str) -> Optional[DraftKind]:
    lowered = title.lower()
    for kind, keywords in HEADER_KEYWORDS:
        if any(k in lowered for k in keywords):
            return kind
    return None


def split_items(block: str) -> List[str]:
    """Paragraphs of a block; bullet-only paragraphs split into their bullets."""
    items = []
    for paragraph in re.split(r"\n\s*\n", block):
        lines = [ln for ln in paragraph.split("\n") if ln.strip() and not _RULE_RE.match(ln)]
        if not lines:
            continue
        if all(_BULLET_RE.match(ln) for ln in lines):
            items.extend(_BULLET_RE.sub("", ln).strip() for ln in lines)
        else:
            items.append("\n".join(lines).strip())
    return [i for i in items if i]


def _segments(text: str) -> Tuple[str, List[Tuple[str, List[str]]]]:
    """Split into (preamble, [(title, lines), ...])."""
    preamble: List[str] = []
    segments: List[Tuple[str, List[str]]] = []
    for line in text.split("\n"):
        m = _HEADER_RE.match(line)
        if m:
            segments.append((m.group(2).strip(), []))
        elif segments:
            segments[-1][1].append(line)
        else:
            preamble.append(line)
    return "\n".join(preamble).strip(), segments


def parse(text: str) -> ParseResult:
    """Validate ``text`` and split it into drafts."""
    validate_submission(text)
    preamble, segments = _segments(text)
    if not segments:
        return _fallback(text)

    drafts: List[MemoryDraft] = []
    if preamble:
        drafts.append(MemoryDraft(DraftKind.EXPERIENCE, preamble))
    headings = []
    for title, lines in segments:
        kind = classify_heading(title)
        headings.append((title, kind))
        if kind is None:
            continue
        drafts.extend(MemoryDraft(kind, item, title) for item in split_items("\n".join(lines)))
    return Segmented(tuple(drafts), tuple(headings))


def _fallback(text: str) -> Unsegmented:
    drafts = [MemoryDraft(DraftKind.EXPERIENCE, text.strip())]
    for line in text.split("\n"):
        stripped = line.strip()
        if not stripped:
            continue
        if _EMOTION_LINE_RE.search(stripped):
            drafts.append(MemoryDraft(DraftKind.EMOTIONAL, stripped))
        if _KNOWLEDGE_LINE_RE.search(stripped):
            drafts.append(MemoryDraft(DraftKind.KNOWLEDGE, stripped))
    return Unsegmented(tuple(drafts))
