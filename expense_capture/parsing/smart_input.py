"""
Smart Input Parser

Turns a free-text expense description such as
"22,50 picolés no C6 da Bruna ontem" into a ParsedInput.

The parser is pure and synchronous: it is called on every keystroke, does
no I/O and never raises. Missing pieces are reported as None and reflected
in the confidence level.
"""

from datetime import datetime
from typing import Optional, Sequence

import structlog

from expense_capture.models.expense import Confidence, ParsedInput
from expense_capture.parsing.amounts import extract_amount
from expense_capture.parsing.dates import resolve_date
from expense_capture.parsing.entities import CardLike, UserLike, match_card, match_user
from expense_capture.parsing.sanitizer import DEFAULT_PLACEHOLDER, sanitize_description

logger = structlog.get_logger(__name__)


def confidence_for(detected: int) -> Confidence:
    """HIGH for all three of amount/card/user, MEDIUM for two, else LOW."""
    if detected >= 3:
        return Confidence.HIGH
    if detected == 2:
        return Confidence.MEDIUM
    return Confidence.LOW


def parse_smart_input(
    text: str,
    cards: Optional[Sequence[CardLike]] = None,
    users: Optional[Sequence[UserLike]] = None,
    placeholder: str = DEFAULT_PLACEHOLDER,
    now: Optional[datetime] = None,
) -> ParsedInput:
    """Extract amount, card, user, date and a clean description from text."""
    text = text or ""

    amount = extract_amount(text)
    card_id = match_card(text, cards)
    user_id = match_user(text, users)
    date = resolve_date(text, now=now)
    description = sanitize_description(text, placeholder=placeholder)

    detected = sum(v is not None for v in (amount, card_id, user_id))

    return ParsedInput(
        amount=amount,
        card_id=card_id,
        user_id=user_id,
        description=description,
        date=date,
        confidence=confidence_for(detected),
    )


class SmartInputParser:
    """
    Binds card and user registries for repeated parsing.

    The registries are read-only here; swap them with set_registries when
    the backend lists are refreshed.
    """

    def __init__(
        self,
        cards: Optional[Sequence[CardLike]] = None,
        users: Optional[Sequence[UserLike]] = None,
        placeholder: str = DEFAULT_PLACEHOLDER,
    ):
        self.cards = list(cards or [])
        self.users = list(users or [])
        self.placeholder = placeholder

    def set_registries(
        self,
        cards: Optional[Sequence[CardLike]] = None,
        users: Optional[Sequence[UserLike]] = None,
    ) -> None:
        if cards is not None:
            self.cards = list(cards)
        if users is not None:
            self.users = list(users)

    def parse(self, text: str, now: Optional[datetime] = None) -> ParsedInput:
        parsed = parse_smart_input(
            text,
            self.cards,
            self.users,
            placeholder=self.placeholder,
            now=now,
        )
        logger.debug(
            "smart_input_parsed",
            amount=parsed.amount,
            card_id=parsed.card_id,
            user_id=parsed.user_id,
            confidence=parsed.confidence.value,
        )
        return parsed
