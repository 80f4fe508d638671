"""
Monetary amount extraction.

Patterns are kept as an ordered table: the first pattern producing a
positive value wins. More specific, currency-prefixed forms come first so
that "R$ 1.234,56" is read whole rather than as 1 or 234.
"""

import re
from typing import NamedTuple, Optional, Sequence

# (name, pattern); group 1 is always the numeric part
AMOUNT_PATTERNS: list[tuple[str, re.Pattern]] = [
    (
        "currency_thousands",
        re.compile(r"r\$\s*(\d{1,3}(?:\.\d{3})+,\d{2})", re.IGNORECASE),
    ),
    (
        "currency_decimal",
        re.compile(r"r\$\s*(\d+[.,]\d{2})(?!\d)", re.IGNORECASE),
    ),
    (
        "currency_thousands_only",
        re.compile(r"r\$\s*(\d{1,3}(?:\.\d{3})+)(?![,\d])", re.IGNORECASE),
    ),
    (
        "bare_decimal",
        re.compile(r"(?<![\w.,])(\d{1,3}(?:\.\d{3})+,\d{2}|\d+[.,]\d{2})(?!\d)"),
    ),
    (
        "bare_integer",
        re.compile(r"(?<![\w.,])(\d+)(?![\d.,]\d)"),
    ),
]

# Notification text routinely carries 4-digit card suffixes, so bare
# integers are never read as amounts there.
CURRENCY_PATTERNS = AMOUNT_PATTERNS[:4]

_THOUSANDS_ONLY = re.compile(r"\d{1,3}(?:\.\d{3})+")


class AmountMatch(NamedTuple):
    value: float
    raw: str
    pattern_name: str


def normalize_amount(raw: str) -> Optional[float]:
    """
    Convert a Brazilian-formatted number to float.

    "1.234,56" -> 1234.56, "22,50" -> 22.5, "22.50" -> 22.5, "1.234" -> 1234.0
    """
    if not raw:
        return None
    s = raw.strip()
    if "," in s:
        s = s.replace(".", "").replace(",", ".")
    elif _THOUSANDS_ONLY.fullmatch(s):
        s = s.replace(".", "")
    try:
        return float(s)
    except ValueError:
        return None


def find_amount(
    text: str,
    patterns: Sequence[tuple[str, re.Pattern]] = AMOUNT_PATTERNS,
) -> Optional[AmountMatch]:
    """Return the first positive amount found by the ordered patterns."""
    if not text:
        return None

    cleaned = text.strip().lower()

    for name, pattern in patterns:
        match = pattern.search(cleaned)
        if not match:
            continue
        value = normalize_amount(match.group(1))
        # NaN fails the comparison as well
        if value is not None and value > 0:
            return AmountMatch(value=value, raw=match.group(0), pattern_name=name)

    return None


def extract_amount(
    text: str,
    patterns: Sequence[tuple[str, re.Pattern]] = AMOUNT_PATTERNS,
) -> Optional[float]:
    """Extract a monetary value from free text, or None."""
    match = find_amount(text, patterns)
    return match.value if match else None
