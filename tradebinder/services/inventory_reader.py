"""
Inventory snapshot reader.

Loads a trader's tradeable stacks and wishes from the inventory store
and converts them to frozen domain models. Pure reads; nothing is
written.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from tradebinder.db.operations import get_tradeable_items, get_wish_entries
from tradebinder.models.condition import CardCondition
from tradebinder.models.db import CardDB, InventoryItemDB, WishEntryDB
from tradebinder.models.inventory import (
    CardFacts,
    InventoryItem,
    InventorySnapshot,
    WishEntry,
    WishPriority,
)


def card_to_facts(card: CardDB) -> CardFacts:
    """Convert a catalog row to card facts."""
    return CardFacts(
        card_id=card.id,
        name=card.name,
        set_code=card.set_code,
        set_name=card.set_name,
        rarity=card.rarity,
        collector_number=card.collector_number,
        scryfall_id=card.scryfall_id,
        price_eur=card.price_eur,
        price_eur_foil=card.price_eur_foil,
    )


def item_to_model(item: InventoryItemDB) -> InventoryItem:
    """Convert a database stack to a domain model."""
    return InventoryItem(
        id=item.id,
        owner_id=item.user_id,
        card=card_to_facts(item.card),
        quantity=item.quantity,
        foil_quantity=item.foil_quantity,
        condition=CardCondition(item.condition),
        language=item.language,
        is_alter=item.is_alter,
        tradeable_quantity=item.for_trade,
        ask_price=item.trade_price,
    )


def wish_to_model(wish: WishEntryDB) -> WishEntry:
    """Convert a database wishlist entry to a domain model."""
    return WishEntry(
        owner_id=wish.user_id,
        card_name=wish.card.name,
        priority=WishPriority(wish.priority),
        max_price=wish.max_price,
        min_condition=CardCondition(wish.min_condition) if wish.min_condition else None,
        foil_only=wish.foil_only,
    )


async def load_snapshot(session: AsyncSession, owner_id: str) -> InventorySnapshot:
    """Load a trader's tradeable stock and wishes."""
    items = await get_tradeable_items(session, owner_id)
    wishes = await get_wish_entries(session, owner_id)
    return InventorySnapshot(
        owner_id=owner_id,
        items=tuple(item_to_model(item) for item in items),
        wishes=tuple(wish_to_model(wish) for wish in wishes),
    )
