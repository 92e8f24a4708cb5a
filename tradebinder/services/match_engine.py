"""
Match engine: mutual-interest offers between two traders.

Every tradeable stack of each side is offered to the other and flagged
`is_match` when the counterpart wishes for that card by name. Matching
is name-only and case-insensitive: a wish for "Lightning Bolt" is
satisfied by any printing.

Offers are not filtered by a wish's minimum condition or foil-only flag;
those constraints describe the wish, and participants see all tradeable
stock with matches surfaced first.

INVARIANTS:
- Pure: same snapshots in, same result out; inputs are never mutated
- Every matched offer precedes every unmatched one; each group is
  alphabetical by card name
- Totals count matched offers only, rounded to 2 decimals
"""

from tradebinder.models.inventory import InventoryItem, InventorySnapshot
from tradebinder.models.offers import MatchResult, Offer


def unit_price(item: InventoryItem, *, foil: bool = False) -> float:
    """Market price per copy, foil or regular; 0 when unknown."""
    price = item.card.price_eur_foil if foil else item.card.price_eur
    return price or 0.0


def copies_value(item: InventoryItem, quantity: int, foil_quantity: int) -> float:
    """
    Value of `quantity` copies of a stack, of which `foil_quantity` are foil.

    Foil copies are priced at the foil price, the rest at the regular price.
    """
    foil = min(quantity, foil_quantity)
    return round(unit_price(item, foil=True) * foil + unit_price(item) * (quantity - foil), 2)


def _sort_key(offer: Offer) -> tuple[bool, str, str]:
    return (not offer.is_match, offer.card.name.lower(), offer.item_id)


def build_offers(offering: InventorySnapshot, receiving: InventorySnapshot) -> tuple[Offer, ...]:
    """Annotate the offering side's tradeable stacks for the receiving side."""
    wanted = receiving.wanted_names()
    priorities = receiving.wanted_priorities()

    offers = []
    for item in offering.items:
        if item.tradeable_quantity <= 0:
            continue
        name_key = item.card.name.lower()
        # Settlement moves foil copies first
        foil_available = min(item.tradeable_quantity, item.foil_quantity)
        is_match = name_key in wanted
        offers.append(
            Offer(
                item_id=item.id,
                offerer_id=offering.owner_id,
                receiver_id=receiving.owner_id,
                card=item.card,
                available_quantity=item.tradeable_quantity,
                condition=item.condition,
                language=item.language,
                is_alter=item.is_alter,
                is_foil=item.is_foil,
                is_match=is_match,
                priority=priorities.get(name_key) if is_match else None,
                foil_quantity=foil_available,
                unit_price=unit_price(item),
                foil_unit_price=unit_price(item, foil=True),
                value=copies_value(item, item.tradeable_quantity, foil_available),
                ask_price=item.ask_price,
            )
        )

    return tuple(sorted(offers, key=_sort_key))


def total_value(offers: tuple[Offer, ...]) -> float:
    """Sum of the available copies' value over matched offers."""
    total = sum(offer.value for offer in offers if offer.is_match)
    return round(total, 2)


def compute_offers(snapshot_a: InventorySnapshot, snapshot_b: InventorySnapshot) -> MatchResult:
    """
    Compute both sides' offers for a pair of traders.

    Args:
        snapshot_a: First trader (the session initiator by convention)
        snapshot_b: Second trader

    Returns:
        MatchResult with A's offers to B, B's offers to A, and the matched
        value of each list
    """
    offers_a = build_offers(snapshot_a, snapshot_b)
    offers_b = build_offers(snapshot_b, snapshot_a)
    return MatchResult(
        offers_a=offers_a,
        offers_b=offers_b,
        total_value_a=total_value(offers_a),
        total_value_b=total_value(offers_b),
    )
