"""Sentence-boundary trimming for replies that likely hit the output token cap."""

from __future__ import annotations

import re

CHARS_PER_TOKEN = 4
MIN_KEEP_RATIO = 0.4

TRUNCATION_NOTICE = "\n\n*[Reply trimmed at the last full sentence: output token limit reached]*"

# Ends on a terminator, optionally followed by closing quotes, brackets,
# emphasis or fence markers; or on a closing code fence.
_CLEAN_END = re.compile(r"""(?:[.!?…](?:["'”’»)\]*_`]*)|```)\s*$""")

# A terminator (plus any closing quotes/brackets) followed by whitespace.
_BOUNDARY = re.compile(r"""[.!?…]["'”’»)\]]*(?=\s)""")


def likely_truncated(text: str, max_tokens: int) -> bool:
    """Estimate whether ``text`` ran into a ``max_tokens`` output cap."""
    return len(text) >= max_tokens * CHARS_PER_TOKEN


def trim_to_sentence(text: str, max_tokens: int | None) -> str:
    """Cut a capped reply back to its last complete sentence.

    Returns ``text`` unchanged when no cap is set, when the reply is
    shorter than the cap estimate, when it already ends cleanly, or when
    no sentence boundary lies past 40% of its length.
    """
    if not max_tokens or not likely_truncated(text, max_tokens):
        return text
    if _CLEAN_END.search(text):
        return text

    cut = -1
    for match in _BOUNDARY.finditer(text):
        cut = match.end()
    if cut <= len(text) * MIN_KEEP_RATIO:
        return text
    return text[:cut] + TRUNCATION_NOTICE
