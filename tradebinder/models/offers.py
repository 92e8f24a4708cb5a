"""
Offer models produced by the match engine.

All models are frozen. `to_dict()` gives the JSON shape stored as the
session's cached offers and returned by the offers endpoint.
"""

from dataclasses import dataclass, field
from typing import Any

from tradebinder.models.condition import CardCondition, condition_label
from tradebinder.models.inventory import CardFacts, WishPriority


@dataclass(frozen=True, slots=True)
class Offer:
    """
    One side's tradeable stack, annotated for the counterpart.

    Attributes:
        item_id: Offered stack id (the key used in selections)
        offerer_id: Trader who owns the stack
        receiver_id: Trader the offer is shown to
        card: Catalog facts of the printing
        available_quantity: Copies that can be selected
        is_match: True if the receiver wishes for this card by name
        priority: Receiver's highest wish priority for the card, if matched
        foil_quantity: How many of the available copies are foil
        unit_price: Market price per regular copy
        foil_unit_price: Market price per foil copy
        value: Market value of all available copies
        ask_price: Offerer's own asking price (optional)
    """

    item_id: str
    offerer_id: str
    receiver_id: str
    card: CardFacts
    available_quantity: int
    condition: CardCondition
    language: str
    is_alter: bool
    is_foil: bool
    is_match: bool
    priority: WishPriority | None = None
    foil_quantity: int = 0
    unit_price: float = 0.0
    foil_unit_price: float = 0.0
    value: float = 0.0
    ask_price: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "offerer_id": self.offerer_id,
            "receiver_id": self.receiver_id,
            "card": {
                "card_id": self.card.card_id,
                "name": self.card.name,
                "set_code": self.card.set_code,
                "set_name": self.card.set_name,
                "rarity": self.card.rarity,
                "collector_number": self.card.collector_number,
                "scryfall_id": self.card.scryfall_id,
                "price_eur": self.card.price_eur,
                "price_eur_foil": self.card.price_eur_foil,
            },
            "available_quantity": self.available_quantity,
            "condition": self.condition.value,
            "condition_label": condition_label(self.condition),
            "language": self.language,
            "is_alter": self.is_alter,
            "is_foil": self.is_foil,
            "is_match": self.is_match,
            "priority": self.priority.value if self.priority else None,
            "foil_quantity": self.foil_quantity,
            "unit_price": self.unit_price,
            "foil_unit_price": self.foil_unit_price,
            "value": self.value,
            "ask_price": self.ask_price,
        }


@dataclass(frozen=True, slots=True)
class MatchResult:
    """Both sides' offers for a pair of traders, plus matched totals."""

    offers_a: tuple[Offer, ...] = field(default_factory=tuple)
    offers_b: tuple[Offer, ...] = field(default_factory=tuple)
    total_value_a: float = 0.0
    total_value_b: float = 0.0

    def match_count(self) -> int:
        """Number of offers on either side that the counterpart wants."""
        return sum(1 for offer in (*self.offers_a, *self.offers_b) if offer.is_match)

    def to_dict(self) -> dict[str, Any]:
        return {
            "offers_a": [offer.to_dict() for offer in self.offers_a],
            "offers_b": [offer.to_dict() for offer in self.offers_b],
            "total_value_a": self.total_value_a,
            "total_value_b": self.total_value_b,
            "match_count": self.match_count(),
        }
