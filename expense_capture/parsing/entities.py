"""
Card and responsible-party matching by substring containment.

Substring matching is deliberately simple: short names can produce false
positives, which the user corrects before sending.
"""

from typing import Iterable, Mapping, Optional, Sequence, Type, TypeVar, Union

import structlog
from pydantic import BaseModel, ValidationError

from expense_capture.models.expense import Card, ResponsibleParty
from expense_capture.parsing.vocabulary import CARD_ALIASES

logger = structlog.get_logger(__name__)

CardLike = Union[Card, Mapping]
UserLike = Union[ResponsibleParty, Mapping]

M = TypeVar("M", bound=BaseModel)


def _coerce(model: Type[M], records: Optional[Iterable]) -> list[M]:
    """Accept models or raw mappings; malformed entries are skipped."""
    result = []
    for record in records or []:
        if isinstance(record, model):
            result.append(record)
            continue
        try:
            result.append(model.model_validate(record))
        except ValidationError:
            logger.warning("registry_entry_skipped", model=model.__name__)
    return result


def _cards(cards: Optional[Iterable[CardLike]]) -> list[Card]:
    return _coerce(Card, cards)


def _users(users: Optional[Iterable[UserLike]]) -> list[ResponsibleParty]:
    return _coerce(ResponsibleParty, users)


def _contains(text: str, needle: str) -> bool:
    return bool(needle) and needle in text


def match_card(
    text: str,
    cards: Optional[Sequence[CardLike]],
    aliases: Mapping[str, Sequence[str]] = CARD_ALIASES,
) -> Optional[str]:
    """
    Return the id of the card mentioned in text, or None.

    Direct mentions of a card name, its owner, or "name owner" are tried
    first in the order the cards are given. Only then the alias table is
    consulted.
    """
    if not text:
        return None
    known = _cards(cards)
    if not known:
        return None

    cleaned = text.strip().lower()

    for card in known:
        name = card.name.lower()
        owner = card.owner.lower()
        combined = f"{name} {owner}".strip()
        if (
            _contains(cleaned, name)
            or _contains(cleaned, owner)
            or _contains(cleaned, combined)
        ):
            return card.id

    for key, variations in aliases.items():
        if not any(alias in cleaned for alias in variations):
            continue
        for card in known:
            if key in card.name.lower() or key in card.owner.lower():
                return card.id

    return None


def match_user(
    text: str,
    users: Optional[Sequence[UserLike]],
) -> Optional[str]:
    """Return the id of the first user whose name appears in text."""
    if not text:
        return None

    cleaned = text.strip().lower()
    for user in _users(users):
        if _contains(cleaned, user.name.lower()):
            return user.id

    return None
