"""
Shared vocabulary for the text parsers.

Both the smart-input parser and the notification parser read from here so
that card aliases and stripped tokens cannot drift apart.
"""

# Alias key -> spoken/typed variants. The key is matched against card
# names and owners once any variant appears in the text.
CARD_ALIASES: dict[str, list[str]] = {
    "c6": ["c6", "c 6", "c-6"],
    "nubank": ["nubank", "nu", "roxo"],
    "itau": ["itau", "itaú", "laranja"],
    "bruna": ["bruna"],
    "max": ["max", "maxwell"],
    "uz": ["uz"],
}

# Card/owner tokens removed from free-text descriptions
ENTITY_TOKENS: list[str] = [
    "bruna",
    "max",
    "uz",
    "c6",
    "nubank",
    "itau",
    "itaú",
    "cartão",
    "cartao",
]

TEMPORAL_KEYWORDS: list[str] = ["ontem", "hoje", "amanhã", "amanha"]

# Removed from notification text, longest phrases first
NOTIFICATION_BOILERPLATE: list[str] = [
    "compra aprovada",
    "pagamento aprovado",
    "transação aprovada",
    "compra",
    "débito",
    "debito",
    "crédito",
    "credito",
    "transação",
    "transacao",
    "pagamento",
    "valor",
    "cartão",
    "cartao",
    "final",
    "aprovada",
    "aprovado",
]

# Prepositions left dangling once amounts and boilerplate are gone
CONNECTIVES: list[str] = ["de", "do", "da", "no", "na", "em", "com"]
