"""
Inventory snapshot models.

Read-only views of what a trader owns and what they want, loaded per
request from the inventory store and handed to the match engine.

INVARIANTS:
- 0 <= tradeable_quantity <= quantity
- 0 <= foil_quantity <= quantity
- A stack is unique per owner by (card_id, condition, language, is_alter)
"""

from dataclasses import dataclass, field
from enum import Enum

from tradebinder.models.condition import CardCondition


class WishPriority(str, Enum):
    """How badly a trader wants a card."""

    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


PRIORITY_RANK: dict[WishPriority, int] = {
    WishPriority.LOW: 0,
    WishPriority.NORMAL: 1,
    WishPriority.HIGH: 2,
    WishPriority.URGENT: 3,
}


@dataclass(frozen=True, slots=True)
class CardFacts:
    """
    Catalog facts for one printing of a card.

    Attributes:
        card_id: Catalog identity of the printing
        name: Canonical card name (shared by every printing)
        set_code: Set code of the printing (e.g., "LEB")
        set_name: Full set name
        rarity: common, uncommon, rare or mythic
        collector_number: Collector number within set
        scryfall_id: Scryfall id, used for images (optional)
        price_eur: Market price of a normal copy (optional)
        price_eur_foil: Market price of a foil copy (optional)
    """

    card_id: str
    name: str
    set_code: str = ""
    set_name: str = ""
    rarity: str = ""
    collector_number: str = ""
    scryfall_id: str | None = None
    price_eur: float | None = None
    price_eur_foil: float | None = None


@dataclass(frozen=True, slots=True)
class InventoryItem:
    """
    One owned stack.

    Attributes:
        id: Stack id
        owner_id: Owning trader
        card: Catalog facts of the printing
        quantity: Total copies owned
        foil_quantity: How many of those copies are foil
        condition: Condition grade of the stack
        language: Language code (e.g., "EN")
        is_alter: True for altered art copies
        tradeable_quantity: Copies marked available for trade
        ask_price: Owner's asking price per copy (optional)
    """

    id: str
    owner_id: str
    card: CardFacts
    quantity: int
    foil_quantity: int = 0
    condition: CardCondition = CardCondition.NEAR_MINT
    language: str = "EN"
    is_alter: bool = False
    tradeable_quantity: int = 0
    ask_price: float | None = None

    @property
    def stack_key(self) -> tuple[str, CardCondition, str, bool]:
        """Key under which duplicate stacks merge."""
        return (self.card.card_id, self.condition, self.language, self.is_alter)

    @property
    def is_foil(self) -> bool:
        return self.foil_quantity > 0


@dataclass(frozen=True, slots=True)
class WishEntry:
    """
    A wanted card.

    Matched by name only: any printing of the card satisfies the wish.
    """

    owner_id: str
    card_name: str
    priority: WishPriority = WishPriority.NORMAL
    max_price: float | None = None
    min_condition: CardCondition | None = None
    foil_only: bool = False


@dataclass(frozen=True, slots=True)
class InventorySnapshot:
    """A trader's tradeable stock and wishes at one point in time."""

    owner_id: str
    items: tuple[InventoryItem, ...] = field(default_factory=tuple)
    wishes: tuple[WishEntry, ...] = field(default_factory=tuple)

    def wanted_names(self) -> frozenset[str]:
        """Lower-cased, de-duplicated names across all wishes."""
        return frozenset(wish.card_name.lower() for wish in self.wishes)

    def wanted_priorities(self) -> dict[str, WishPriority]:
        """Highest wish priority per lower-cased card name."""
        priorities: dict[str, WishPriority] = {}
        for wish in self.wishes:
            key = wish.card_name.lower()
            current = priorities.get(key)
            if current is None or PRIORITY_RANK[wish.priority] > PRIORITY_RANK[current]:
                priorities[key] = wish.priority
        return priorities
