"""
Parsing Package

Rule-based extraction of expense candidates from free text and from
banking push notifications. Everything here is pure and synchronous.
"""

from expense_capture.parsing.amounts import (
    AMOUNT_PATTERNS,
    CURRENCY_PATTERNS,
    AmountMatch,
    extract_amount,
    find_amount,
    normalize_amount,
)
from expense_capture.parsing.dates import (
    current_month,
    end_of_day,
    ensure_valid_date,
    is_today,
    is_yesterday,
    parse_relative_expression,
    resolve_date,
    start_of_day,
)
from expense_capture.parsing.entities import match_card, match_user
from expense_capture.parsing.notifications import (
    BankNotificationParser,
    is_banking_notification,
)
from expense_capture.parsing.sanitizer import sanitize_description
from expense_capture.parsing.smart_input import SmartInputParser, parse_smart_input

__all__ = [
    # Amounts
    "AMOUNT_PATTERNS",
    "CURRENCY_PATTERNS",
    "AmountMatch",
    "extract_amount",
    "find_amount",
    "normalize_amount",
    # Dates
    "current_month",
    "end_of_day",
    "ensure_valid_date",
    "is_today",
    "is_yesterday",
    "parse_relative_expression",
    "resolve_date",
    "start_of_day",
    # Entities / description
    "match_card",
    "match_user",
    "sanitize_description",
    # Parsers
    "BankNotificationParser",
    "SmartInputParser",
    "is_banking_notification",
    "parse_smart_input",
]
