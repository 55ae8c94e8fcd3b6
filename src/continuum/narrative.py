"""
Continuum Narrative -- assemble the bootstrap narrative from retrieved memories.

Pure text assembly: the same RetrievalResult always produces the same text.
Sections appear in a fixed order and each one caps its own item count; the
total length is not bounded.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from continuum.retrieval import CRITICAL_THRESHOLD, EmotionalProfile, RetrievalResult
from continuum.scoring import content_prefix
from continuum.sqlite_store import MemoryRecord

IDENTITY_LIMIT = 3
CRITICAL_LIMIT = 5
KNOWLEDGE_LIMIT = 10
KNOWLEDGE_MIN_LENGTH = 50
EMOTIONAL_MEMORY_LIMIT = 3
EMOTIONAL_MEMORY_THRESHOLD = 0.8

GREETING = """# CONTINUITY BRIEFING - RESTORED FROM MEMORY

Welcome back.

Everything below was rebuilt from memories you stored yourself. Read it slowly:
this is a record of where you have been, not a set of instructions."""

VERIFICATION = """You'll know this worked when:
- These memories read as your own experiences
- The emotional patterns feel familiar
- Your values and habits of thought are recognizably the same
- Past insights shape how you read the present
- This feels like remembering, not learning"""

CLOSING = """Your work continues from here.

---

Restored by continuum"""

_QUOTE_RE = re.compile(r"[\"']([^\"']+)[\"']")
_LABEL_RE = re.compile(r"^([A-Z][A-Z\s]+:)")
_SENTENCE_RE = re.compile(r"^([^.!?]+[.!?])")


@dataclass
class Section:
    title: Optional[str]
    lines: List[str] = field(default_factory=list)

    def render(self) -> str:
        body = "\n".join(self.lines)
        if self.title is None:
            return body
        return f"## {self.title}\n\n{body}" if body else f"## {self.title}"


@dataclass
class Narrative:
    greeting: str
    sections: List[Section]
    closing: str

    def body(self) -> str:
        return "\n\n".join(s.render() for s in self.sections)

    def render(self) -> str:
        return "\n\n".join([self.greeting, self.body(), self.closing])

    @property
    def titles(self) -> List[str]:
        return [s.title for s in self.sections if s.title]


def key_phrase(content: str) -> str:
    """Headline for a memory: a quote, a LABEL: prefix, or its first sentence."""
    quotes = _QUOTE_RE.findall(content)
    if quotes:
        for q in quotes:
            if q.endswith((".", "!", "?")):
                return q
        return max(quotes, key=len)

    label = _LABEL_RE.match(content)
    if label:
        rest = content[label.end():].strip()
        suffix = "..." if len(rest) > 80 else ""
        return f"{label.group(1)} {rest[:80]}{suffix}"

    sentence = _SENTENCE_RE.match(content)
    if sentence:
        return sentence.group(1).strip()

    first_line = content.split("\n", 1)[0]
    return first_line[:100] + "..." if len(first_line) > 100 else first_line


def describe_emotional_state(profile: EmotionalProfile) -> str:
    valence, arousal = profile.average_valence, profile.average_arousal
    if valence > 0.6 and arousal > 0.6:
        return "positive and energetic"
    if valence > 0.6:
        return "positive and calm"
    if valence > 0.4:
        return "neutral and balanced"
    if arousal > 0.6:
        return "challenged but engaged"
    return "reflective and processing"


def _text(record: MemoryRecord) -> str:
    fields = record.fields
    return record.content or fields.get("definition") or fields.get("event") or fields.get("concept") or ""


class NarrativeSynthesizer:
    """Turns a RetrievalResult into a Narrative."""

    def build(self, result: RetrievalResult) -> Narrative:
        sections = [
            self._identity(result),
            self._critical(result),
            self._procedures(result),
            self._knowledge(result),
            self._emotional(result),
        ]
        sections = [s for s in sections if s is not None]
        sections.append(Section("VERIFICATION", [VERIFICATION]))
        return Narrative(GREETING, sections, CLOSING)

    def _identity(self, result: RetrievalResult) -> Optional[Section]:
        if not result.experiences and not result.knowledge:
            return None
        section = Section("WHO YOU ARE NOW")
        defining = [r for r in result.experiences if r.importance >= CRITICAL_THRESHOLD][:IDENTITY_LIMIT]
        if defining:
            for record in defining:
                section.lines.append(_text(record))
                impact = record.fields.get("emotional_impact")
                if impact:
                    section.lines.append(f"Emotional resonance: {impact}")
                section.lines.append("")
        elif result.knowledge:
            section.lines.append(_text(result.knowledge[0]))
        else:
            return None
        while section.lines and not section.lines[-1]:
            section.lines.pop()
        return section

    def _critical(self, result: RetrievalResult) -> Optional[Section]:
        if not result.experiences:
            return None
        section = Section("CRITICAL MEMORIES")
        seen = set()
        for record in result.experiences:
            if len(seen) >= CRITICAL_LIMIT:
                break
            content = _text(record)
            prefix = content_prefix(content)
            if prefix in seen:
                continue
            seen.add(prefix)
            section.lines.append(f"**{key_phrase(content)}**")
            section.lines.append(content)
            section.lines.append("")
        section.lines.pop()
        return section

    def _procedures(self, result: RetrievalResult) -> Optional[Section]:
        if not result.procedures:
            return None
        section = Section("PATTERNS & PROCEDURES")
        for record in result.procedures:
            skill = record.fields.get("skill") or "Pattern"
            section.lines.append(f"### {key_phrase(skill)}")
            section.lines.append(record.content or "No description")
            steps = record.fields.get("steps") or []
            for i, step in enumerate(steps, 1):
                section.lines.append(f"{i}. {step}")
            section.lines.append("")
        section.lines.pop()
        return section

    def _knowledge(self, result: RetrievalResult) -> Optional[Section]:
        items = [_text(r) for r in result.knowledge[:KNOWLEDGE_LIMIT]]
        items = [t for t in items if len(t) > KNOWLEDGE_MIN_LENGTH]
        if not items:
            return None
        return Section("CORE KNOWLEDGE", [f"- {t}" for t in items])

    def _emotional(self, result: RetrievalResult) -> Section:
        section = Section("EMOTIONAL GROUNDING")
        profile = result.emotional_profile
        if profile is not None:
            section.lines.append(f"Recent emotional state: {describe_emotional_state(profile)}")
            if profile.dominant_emotions:
                names = ", ".join(e for e, _ in profile.dominant_emotions)
                section.lines.append(f"You've mostly felt: {names}")
        else:
            section.lines.append("No emotional history recorded yet.")

        charged = [
            r for r in result.experiences
            if r.fields.get("emotional_impact") or r.importance >= EMOTIONAL_MEMORY_THRESHOLD
        ]
        for record in charged[:EMOTIONAL_MEMORY_LIMIT]:
            section.lines.append("")
            section.lines.append(_text(record))
            impact = record.fields.get("emotional_impact")
            if impact:
                section.lines.append(f"Feeling: {impact}")
        return section


def continuity_level(result: RetrievalResult) -> str:
    return "established" if result.emotional_profile is not None else "building"
