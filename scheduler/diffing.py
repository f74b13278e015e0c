"""
Coarse, order-insensitive diff between two normalized texts.

Texts are treated as bags of statements: a statement is reported as added or
removed only when no case-insensitive equivalent exists on the other side.
Reordering alone produces no output.
"""

import re
from typing import List

NO_MATERIAL_CHANGES = "No material changes detected (formatting or structure only)"
PREVIOUS_VERSION_UNAVAILABLE = "Previous version unavailable; content changed since the last check"

_SENTENCE_BREAK = re.compile(r"[.!?]+")


def split_fragments(text: str, min_length: int) -> List[str]:
    """Split text on sentence punctuation, returning trimmed fragments of at least min_length chars."""
    fragments = []
    for piece in _SENTENCE_BREAK.split(text or ""):
        fragment = piece.strip()
        if fragment and len(fragment) >= min_length:
            fragments.append(fragment)
    return fragments


def _missing_from(fragments: List[str], other: List[str]) -> List[str]:
    """Fragments with no case-folded match in other, first appearance order, de-duplicated."""
    other_keys = {fragment.casefold() for fragment in other}
    seen = set()
    missing = []
    for fragment in fragments:
        key = fragment.casefold()
        if key in other_keys or key in seen:
            continue
        seen.add(key)
        missing.append(fragment)
    return missing


def generate_diff(before: str, after: str, min_fragment_length: int = 10, max_items: int = 10) -> str:
    """
    Render added and removed statements between two texts.

    Args:
        before: Normalized text of the earlier snapshot
        after: Normalized text of the later snapshot
        min_fragment_length: Fragments shorter than this are ignored as noise
        max_items: Maximum lines listed per section

    Returns:
        Markdown-ish report, or NO_MATERIAL_CHANGES when nothing qualifies
    """
    before_fragments = split_fragments(before, min_fragment_length)
    after_fragments = split_fragments(after, min_fragment_length)

    added = _missing_from(after_fragments, before_fragments)[:max_items]
    removed = _missing_from(before_fragments, after_fragments)[:max_items]

    sections = []
    if added:
        sections.append("**Added:**\n" + "\n".join(f"+ {line}" for line in added))
    if removed:
        sections.append("**Removed:**\n" + "\n".join(f"- {line}" for line in removed))

    if not sections:
        return NO_MATERIAL_CHANGES
    return "\n\n".join(sections)
