"""
HTML to canonical plain text.

Fingerprints and diffs are computed over this text, so markup reformatting,
script churn and whitespace noise never register as content changes.
"""

import re

from bs4 import BeautifulSoup

STRIPPED_ELEMENTS = ("script", "style", "noscript")

_WHITESPACE = re.compile(r"\s+")


def _extract_text(markup: str) -> str:
    """Single pass: drop non-content elements, strip tags, decode entities, collapse whitespace."""
    soup = BeautifulSoup(markup, "html.parser")
    for element in soup(STRIPPED_ELEMENTS):
        element.decompose()
    text = soup.get_text(" ")
    text = text.replace("\xa0", " ")
    return _WHITESPACE.sub(" ", text).strip()


def normalize(html: str) -> str:
    """
    Normalize HTML into canonical plain text.

    Entity-encoded markup (``&lt;b&gt;``) decodes into tag-like text on the
    first pass, so extraction repeats until the text is stable. The result is
    a fixed point: ``normalize(normalize(x)) == normalize(x)``.

    Args:
        html: Raw HTML document or fragment

    Returns:
        Plain text with single spaces and no surrounding whitespace
    """
    if not html:
        return ""

    text = _extract_text(html)
    while "<" in text or "&" in text:
        again = _extract_text(text)
        # Each effective pass removes markup or entities and so shrinks the text
        if again == text or len(again) >= len(text):
            break
        text = again
    return text
