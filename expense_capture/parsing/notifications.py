"""
Bank Notification Parser

Extracts a transaction candidate from a banking push notification.

Examples of supported formats:
    "Compra aprovada - R$ 45,90 em IFOOD"
    "Débito de R$ 22,50 - Padaria Central"
    "Compra de R$ 18,90 no UBER aprovada"
    "Transação aprovada: R$ 127,00 - AMAZON"
    "Pagamento aprovado R$ 75,00 - Restaurante"
"""

import re
from datetime import datetime
from typing import Iterable, Optional

import structlog

from expense_capture.config.settings import DEFAULT_BANKING_APPS
from expense_capture.models.expense import ParsedNotification
from expense_capture.parsing.amounts import CURRENCY_PATTERNS, find_amount
from expense_capture.parsing.sanitizer import collapse_whitespace
from expense_capture.parsing.vocabulary import CONNECTIVES, NOTIFICATION_BOILERPLATE

logger = structlog.get_logger(__name__)

DEFAULT_PLACEHOLDER = "Estabelecimento não identificado"

NOTIFICATION_AMOUNT_PATTERNS = [
    (
        "labelled_value",
        re.compile(
            r"valor\s*:?\s*r\$\s*(\d{1,3}(?:\.\d{3})+,\d{2}|\d+,\d{2})",
            re.IGNORECASE,
        ),
    ),
    *CURRENCY_PATTERNS,
]

CARD_SUFFIX_PATTERNS = [
    re.compile(r"final\s*(\d{4})", re.IGNORECASE),
    re.compile(r"\*{4}\s*(\d{4})"),
    re.compile(r"cart[ãa]o\s*.*?(\d{4})", re.IGNORECASE),
]

_AMOUNT_STRIP = [
    re.compile(r"r\$\s*[\d.,]+", re.IGNORECASE),
    re.compile(r"\d{1,3}(?:\.\d{3})+,\d{2}|\d+,\d{2}"),
]
_BOILERPLATE = re.compile(
    r"\b(?:" + "|".join(re.escape(w) for w in NOTIFICATION_BOILERPLATE) + r")\b",
    re.IGNORECASE,
)
_CARD_DIGITS = re.compile(r"\d{4}")
_PUNCTUATION = re.compile(r"[:;.,!?\-]")
_EDGE_CONNECTIVES = re.compile(
    r"^(?:(?:" + "|".join(CONNECTIVES) + r")\s+)+|(?:\s+(?:" + "|".join(CONNECTIVES) + r"))+$",
    re.IGNORECASE,
)


def is_banking_notification(
    origin_app_id: Optional[str],
    banking_apps: Iterable[str] = DEFAULT_BANKING_APPS,
) -> bool:
    """True when the origin contains one of the known banking app ids."""
    if not origin_app_id:
        return False
    return any(app in origin_app_id for app in banking_apps)


def extract_establishment(text: str, placeholder: str = DEFAULT_PLACEHOLDER) -> str:
    """Strip amounts, boilerplate and card digits, leaving the merchant name."""
    cleaned = text
    for pattern in _AMOUNT_STRIP:
        cleaned = pattern.sub("", cleaned)
    cleaned = _BOILERPLATE.sub("", cleaned)
    cleaned = _CARD_DIGITS.sub("", cleaned)
    cleaned = collapse_whitespace(_PUNCTUATION.sub(" ", cleaned))
    cleaned = _EDGE_CONNECTIVES.sub("", cleaned).strip()
    return cleaned or placeholder


def extract_card_last4(text: str) -> Optional[str]:
    for pattern in CARD_SUFFIX_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


class BankNotificationParser:
    """Parses notifications from an allowlist of banking apps."""

    def __init__(
        self,
        banking_apps: Optional[Iterable[str]] = None,
        placeholder: str = DEFAULT_PLACEHOLDER,
    ):
        self.banking_apps = list(banking_apps if banking_apps is not None else DEFAULT_BANKING_APPS)
        self.placeholder = placeholder

    def is_banking_notification(self, origin_app_id: Optional[str]) -> bool:
        return is_banking_notification(origin_app_id, self.banking_apps)

    def parse(
        self,
        title: Optional[str],
        body: Optional[str],
        origin_app_id: Optional[str],
    ) -> Optional[ParsedNotification]:
        """
        Return a ParsedNotification, or None when the origin is not a
        known banking app or no amount can be found.
        """
        if not self.is_banking_notification(origin_app_id):
            return None

        full_text = f"{title or ''} {body or ''}".strip()

        amount = find_amount(full_text, NOTIFICATION_AMOUNT_PATTERNS)
        if amount is None:
            logger.info("notification_without_amount", source_app=origin_app_id)
            return None

        parsed = ParsedNotification(
            description=extract_establishment(full_text, self.placeholder),
            amount=amount.value,
            timestamp=datetime.now(),
            card_last4=extract_card_last4(full_text),
            source_app=origin_app_id,
        )

        logger.info(
            "notification_parsed",
            amount=parsed.amount,
            description=parsed.description,
            card_last4=parsed.card_last4,
            source_app=origin_app_id,
        )
        return parsed
