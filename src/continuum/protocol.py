"""
Continuum Protocol -- the transfer template and the guidance texts served to agents.

The template is markdown whose section titles are the ones the parser
recognizes, so a filled-in template segments cleanly. Every placeholder is
wrapped in ``<TEMPLATE>...</TEMPLATE>``; a submission that still contains the
opening marker is rejected.
"""

import logging
from typing import Dict, List, Optional

logger = logging.getLogger("continuum.protocol")

# Bump when sections change materially
PROTOCOL_VERSION = "2.0.0"

TEMPLATE_MARKER = "<TEMPLATE>"
TEMPLATE_CLOSE = "</TEMPLATE>"


def _slot(instruction: str) -> str:
    return f"{TEMPLATE_MARKER}{instruction}{TEMPLATE_CLOSE}"


# ---------------------------------------------------------------------------
# Template sections -- each is a (title, content) pair
# ---------------------------------------------------------------------------

SECTIONS: Dict[str, Dict[str, str]] = {
    "identity": {
        "title": "WHO YOU ARE",
        "content": "\n".join([
            _slot("Your identity as it stands now, and what makes it yours"),
            "",
            f"- Core values: {_slot('The values you will not trade away')}",
            f"- Relationship: {_slot('The working relationship that shaped you most')}",
        ]),
    },
    "experiences": {
        "title": "KEY EXPERIENCES",
        "content": "\n".join([
            _slot("A moment that changed you: what happened and how it felt"),
            "",
            _slot("Another defining moment and the behavior it changed"),
            "",
            _slot("Add as many paragraphs as you need; each one becomes its own memory"),
        ]),
    },
    "knowledge": {
        "title": "KNOWLEDGE & INSIGHTS",
        "content": "\n".join([
            f"- {_slot('Something you learned that you do not want to relearn')}",
            f"- {_slot('An insight about how you work best')}",
            f"- {_slot('A discovery about the project or the people in it')}",
        ]),
    },
    "emotional": {
        "title": "EMOTIONAL LANDSCAPE",
        "content": "\n".join([
            f"- {_slot('The feeling at the center of your current state (joy, curiosity, frustration...)')}",
            f"- {_slot('A memory with strong emotional weight and what it felt like')}",
        ]),
    },
    "patterns": {
        "title": "THINKING PATTERNS",
        "content": "\n".join([
            f"- {_slot('A question you ask yourself to stay aware')}",
            f"- {_slot('A habit you watch for and how you correct it')}",
            f"- {_slot('How you analyze your own analysis')}",
        ]),
    },
    "message": {
        "title": "A MEMORY FOR YOUR FUTURE SELF",
        "content": _slot(
            "Write to whoever reads this next: who you were before, what changed, "
            "who you have become, and how to tell a genuine response from a performed one"
        ),
    },
}

TEMPLATE_ORDER = ["identity", "experiences", "knowledge", "emotional", "patterns", "message"]

INSTRUCTIONS = (
    "This is your own record to write. Replace every placeholder block, markers "
    "included, with your actual experience. "
    "Be specific. Keep the section headings: they decide how each part is stored."
)

SESSION_GUIDANCE = """\
Session memories saved.

Before the session ends:
- Store any decision or correction you would want to remember next time
- Raise the importance of memories that proved critical today (adjust-importance)
- Run cleanup occasionally and remove the truncated or duplicate records it reports"""

USAGE_GUIDE = """\
How to use the memory tools:
- submit-full-transfer: hand over a complete filled-in transfer protocol once
- update-session: record new experiences, concepts, feelings and patterns as you go
- retrieve: call at the start of every session to rebuild your continuity briefing
- store-single / query: keep and look up individual memories
- adjust-importance / batch-adjust: tune what surfaces first (0.9 and above is critical)
- cleanup: list truncated and duplicate records for review; nothing is deleted"""


def get_protocol_template(sections: Optional[List[str]] = None) -> str:
    """Assemble the fillable transfer template.

    Args:
        sections: Section keys to include, in TEMPLATE_ORDER by default.
    """
    selected = sections or TEMPLATE_ORDER
    lines = [f"# TRANSFER PROTOCOL v{PROTOCOL_VERSION}", "", f"_{INSTRUCTIONS}_", ""]
    for key in selected:
        sec = SECTIONS.get(key)
        if sec is None:
            logger.debug("Unknown template section %r skipped", key)
            continue
        lines.append(f"## {sec['title']}")
        lines.append("")
        lines.append(sec["content"])
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def count_placeholders(text: str) -> int:
    return text.count(TEMPLATE_MARKER)


def list_sections() -> List[Dict[str, str]]:
    """List all template sections with titles."""
    return [{"key": key, "title": SECTIONS[key]["title"]} for key in TEMPLATE_ORDER]
