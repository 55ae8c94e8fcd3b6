"""Tests for the transfer protocol template and parser."""
import re

import pytest

from continuum.errors import ValidationError
from continuum.parser import (
    DraftKind,
    MemoryDraft,
    Segmented,
    Unsegmented,
    classify_heading,
    parse,
    split_items,
    validate_submission,
)
from continuum.protocol import (
    SECTIONS,
    TEMPLATE_MARKER,
    TEMPLATE_ORDER,
    count_placeholders,
    get_protocol_template,
    list_sections,
)


def fill(template: str) -> str:
    return re.sub(r"<TEMPLATE>(.*?)</TEMPLATE>", r"\1", template)


def _kinds(result):
    counts = {}
    for draft in result.drafts:
        counts[draft.kind] = counts.get(draft.kind, 0) + 1
    return counts


# ============================================================================
# Template
# ============================================================================


def test_template_has_every_section_in_order():
    template = get_protocol_template()
    positions = [template.index(f"## {SECTIONS[key]['title']}") for key in TEMPLATE_ORDER]
    assert positions == sorted(positions)
    assert count_placeholders(template) > 0


def test_template_subset():
    template = get_protocol_template(["knowledge", "nonexistent"])
    assert "## KNOWLEDGE & INSIGHTS" in template
    assert "## WHO YOU ARE" not in template


def test_list_sections():
    assert [s["key"] for s in list_sections()] == TEMPLATE_ORDER


@pytest.mark.parametrize("key", TEMPLATE_ORDER)
def test_template_headings_are_recognized(key):
    assert classify_heading(SECTIONS[key]["title"]) is not None


# ============================================================================
# Validation
# ============================================================================


@pytest.mark.parametrize("text", ["", "   \n\t", None])
def test_empty_submission_rejected(text):
    with pytest.raises(ValidationError, match="cannot be empty"):
        validate_submission(text)


def test_unfilled_template_rejected():
    template = get_protocol_template()
    with pytest.raises(ValidationError) as exc:
        parse(template)
    assert exc.value.details["placeholders"] == count_placeholders(template)
    assert TEMPLATE_MARKER in exc.value.message


# ============================================================================
# Segmented
# ============================================================================


def test_filled_template_segments():
    result = parse(fill(get_protocol_template()))
    assert isinstance(result, Segmented)
    assert result.sections_processed == 6
    assert _kinds(result) == {
        DraftKind.IDENTITY: 3,
        DraftKind.EXPERIENCE: 4,
        DraftKind.KNOWLEDGE: 3,
        DraftKind.EMOTIONAL: 2,
        DraftKind.PATTERN: 3,
    }


def test_filling_section_slots_is_enough():
    template = get_protocol_template()
    head, sep, body = template.partition("\n## ")
    assert TEMPLATE_MARKER not in head
    assert count_placeholders(template) == sum(count_placeholders(SECTIONS[k]["content"]) for k in TEMPLATE_ORDER)

    result = parse(head + sep + fill(body))
    assert isinstance(result, Segmented)
    assert result.sections_processed == 6


def test_text_above_first_header_is_kept():
    text = "Picked this up mid-migration.\n\n## Lessons learned\n\n- Pin the schema version."
    result = parse(text)
    assert result.sections_processed == 1
    assert result.drafts[0] == MemoryDraft(DraftKind.EXPERIENCE, "Picked this up mid-migration.")
    assert result.drafts[1].kind is DraftKind.KNOWLEDGE


def test_unknown_headings_are_skipped():
    text = "## Shopping list\n\n- milk\n\n## Lessons learned\n\nAlways check the readiness timeout."
    result = parse(text)
    assert result.sections_processed == 1
    [draft] = result.drafts
    assert draft.kind is DraftKind.KNOWLEDGE
    assert draft.heading == "Lessons learned"


def test_classify_heading_precedence():
    assert classify_heading("Emotional memories") is DraftKind.EMOTIONAL
    assert classify_heading("Thinking habits") is DraftKind.PATTERN
    assert classify_heading("Random notes") is None


def test_split_items_bullets_and_paragraphs():
    block = "- one\n- two\n\nA paragraph\nthat spans lines.\n\n---\n\n1. three"
    assert split_items(block) == ["one", "two", "A paragraph\nthat spans lines.", "three"]


# ============================================================================
# Unsegmented
# ============================================================================


def test_unsegmented_fallback():
    text = "We rebuilt the relay today.\nI felt proud of the result.\nI learned that sockets need pruning."
    result = parse(text)
    assert isinstance(result, Unsegmented)
    assert result.sections_processed == 0
    assert result.drafts[0].kind is DraftKind.EXPERIENCE
    assert result.drafts[0].text == text
    assert _kinds(result) == {DraftKind.EXPERIENCE: 1, DraftKind.EMOTIONAL: 1, DraftKind.KNOWLEDGE: 1}
