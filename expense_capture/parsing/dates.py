"""
Date heuristics.

ensure_valid_date is the single choke point every date-bearing field goes
through before storage or display. It never raises and never returns an
invalid value; anything it cannot interpret becomes "now".

All datetimes produced here are naive and expressed in device local time.
"""

import math
import re
from datetime import date, datetime, time, timedelta
from typing import Any, Optional

import structlog

logger = structlog.get_logger(__name__)

# Keyword -> day offset, checked in this order
RELATIVE_KEYWORDS = [
    (("ontem",), -1),
    (("hoje",), 0),
    (("amanhã", "amanha"), 1),
]

NUMERIC_DATE_PATTERN = re.compile(r"(\d{1,2})/(\d{1,2})(?:/(\d{2,4}))?")

# Epoch values above this are taken as milliseconds
_EPOCH_MS_THRESHOLD = 100_000_000_000


def _to_local_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def _from_string(value: str) -> Optional[datetime]:
    text = value.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _from_number(value: float) -> Optional[datetime]:
    if math.isnan(value) or math.isinf(value):
        return None
    seconds = value / 1000 if abs(value) >= _EPOCH_MS_THRESHOLD else value
    try:
        return datetime.fromtimestamp(seconds)
    except (OverflowError, OSError, ValueError):
        return None


def ensure_valid_date(value: Any) -> datetime:
    """
    Return a valid datetime for any input, substituting now when needed.

    Accepts datetime, date, ISO-8601 strings (with or without offset) and
    epoch numbers (seconds, or milliseconds for large values).
    """
    parsed: Optional[datetime] = None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time())
    elif isinstance(value, str):
        parsed = _from_string(value)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = _from_number(float(value))

    if parsed is None:
        if value is not None and value != "":
            logger.warning("invalid_date_replaced", value=repr(value))
        return datetime.now()

    return _to_local_naive(parsed)


def parse_relative_expression(
    text: str,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    Resolve "ontem" / "hoje" / "amanhã" or a DD/MM[/YYYY] date in text.

    Keywords win over numeric dates and are checked in that order.
    Two-digit years are taken as 20YY. Returns None when nothing matches
    or the numeric date does not exist in the calendar.
    """
    if not text:
        return None

    now = now or datetime.now()
    lowered = text.lower()

    for keywords, offset in RELATIVE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return now + timedelta(days=offset)

    match = NUMERIC_DATE_PATTERN.search(text)
    if not match:
        return None

    day = int(match.group(1))
    month = int(match.group(2))
    year = int(match.group(3)) if match.group(3) else now.year
    if year < 100:
        year += 2000

    try:
        return datetime(year, month, day)
    except ValueError:
        return None


def resolve_date(text: str, now: Optional[datetime] = None) -> datetime:
    """Date expressed in text, or now when it expresses none."""
    parsed = parse_relative_expression(text, now=now)
    if parsed is not None:
        logger.debug("date_detected", date=parsed.date().isoformat())
        return parsed
    return now or datetime.now()


def start_of_day(value: Any = None) -> datetime:
    return datetime.combine(ensure_valid_date(value).date(), time.min)


def end_of_day(value: Any = None) -> datetime:
    return datetime.combine(ensure_valid_date(value).date(), time.max)


def is_today(value: Any, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now()
    return ensure_valid_date(value).date() == now.date()


def is_yesterday(value: Any, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now()
    return ensure_valid_date(value).date() == (now - timedelta(days=1)).date()


def current_month(now: Optional[datetime] = None) -> str:
    """Current month as YYYY-MM."""
    return (now or datetime.now()).strftime("%Y-%m")
