"""Token count estimation for message text without a tokenizer."""

from __future__ import annotations

import math
import re

# Unified CJK ideographs, Hiragana, Katakana, Hangul syllables
CJK_RE = re.compile(r"[\u4e00-\u9fff\u3040-\u309f\u30a0-\u30ff\uac00-\ud7af]")

CJK_CHARS_PER_TOKEN = 1.5
OTHER_CHARS_PER_TOKEN = 3.5


def count_cjk(text: str | None) -> tuple[int, int]:
    """Split the character count of *text* into (cjk, other)."""
    if not text:
        return 0, 0
    cjk = len(CJK_RE.findall(text))
    return cjk, len(text) - cjk


def estimate_tokens(text: str | None) -> int:
    """Approximate the language-model token count of *text*.

    CJK characters bill at 1.5 chars per token and everything else at 3.5
    chars per token.  Each partial count is rounded up on its own before
    the two are summed, so mixed text can cost one token more than a
    single rounding of the combined estimate.

    Args:
        text: Message text.  None or empty yields 0.

    Returns:
        Non-negative estimated token count.
    """
    cjk, other = count_cjk(text)
    return math.ceil(cjk / CJK_CHARS_PER_TOKEN) + math.ceil(other / OTHER_CHARS_PER_TOKEN)
