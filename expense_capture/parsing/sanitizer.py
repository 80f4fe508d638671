"""Description cleanup for free-text expense input."""

import re
from typing import Iterable

from expense_capture.parsing.vocabulary import ENTITY_TOKENS, TEMPORAL_KEYWORDS

DEFAULT_PLACEHOLDER = "Despesa"

# Amounts are removed before anything else, thousands forms first
AMOUNT_STRIP_PATTERNS = [
    re.compile(r"r\$\s*\d{1,3}(?:\.\d{3})+,\d{2}", re.IGNORECASE),
    re.compile(r"r\$\s*\d{1,3}(?:\.\d{3})+(?![,\d])", re.IGNORECASE),
    re.compile(r"r\$\s*\d+[.,]\d{2}", re.IGNORECASE),
    re.compile(r"\d{1,3}(?:\.\d{3})+,\d{2}"),
    re.compile(r"\d+[.,]\d{2}"),
]

_WHITESPACE = re.compile(r"\s+")


def _word_pattern(words: Iterable[str]) -> re.Pattern:
    alternatives = "|".join(re.escape(w) for w in words)
    return re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)


_ENTITY_PATTERN = _word_pattern(ENTITY_TOKENS)
_TEMPORAL_PATTERN = _word_pattern(TEMPORAL_KEYWORDS)


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def sanitize_description(text: str, placeholder: str = DEFAULT_PLACEHOLDER) -> str:
    """
    Strip amounts, card/owner tokens and date keywords from text.

    Always returns a non-empty string; placeholder is used when nothing
    meaningful is left.
    """
    if not text:
        return placeholder

    description = text
    for pattern in AMOUNT_STRIP_PATTERNS:
        description = pattern.sub("", description)
    description = _ENTITY_PATTERN.sub("", description)
    description = _TEMPORAL_PATTERN.sub("", description)

    return collapse_whitespace(description) or placeholder
