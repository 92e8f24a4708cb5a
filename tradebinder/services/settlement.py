"""
Settlement: the atomic inventory transfer that completes a trade.

Each side's selection lists stacks that side gives away, as
{item_id: quantity}. Settlement moves those copies from giver to receiver
inside the caller's transaction.

INVARIANTS:
- All-or-nothing: every entry is validated before the first mutation;
  any invalid entry raises InvariantViolationError and nothing changes
- No double-spend: copies removed from a giver equal copies credited to
  the receiver when the receiver auto-files, and are simply removed
  otherwise; totals never increase
- The history snapshot is captured before inventory is mutated and is
  the permanent record of what was exchanged
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from tradebinder.db.operations import find_stack, get_items_for_update
from tradebinder.models.condition import CardCondition, condition_label
from tradebinder.models.db import InventoryItemDB, TradeSessionDB
from tradebinder.models.failure import InvariantViolationError
from tradebinder.models.trade import TradeSide
from tradebinder.services.inventory_reader import card_to_facts, item_to_model
from tradebinder.services.match_engine import copies_value, unit_price
from tradebinder.services.selection import sanitize_selection

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PlannedTransfer:
    """One validated selection entry, ready to apply."""

    side: TradeSide
    giver_id: str
    receiver_id: str
    item: InventoryItemDB
    stack_key: tuple[str, CardCondition, str, bool]
    quantity: int
    foil_quantity: int


def _history_line(transfer: PlannedTransfer) -> dict[str, Any]:
    item = transfer.item
    model = item_to_model(item)
    facts = card_to_facts(item.card)
    condition = model.condition
    return {
        "item_id": item.id,
        "card": {
            "card_id": facts.card_id,
            "name": facts.name,
            "set_code": facts.set_code,
            "set_name": facts.set_name,
            "rarity": facts.rarity,
            "collector_number": facts.collector_number,
            "scryfall_id": facts.scryfall_id,
            "price_eur": facts.price_eur,
            "price_eur_foil": facts.price_eur_foil,
        },
        "condition": condition.value,
        "condition_label": condition_label(condition),
        "language": item.language,
        "is_alter": item.is_alter,
        "is_foil": transfer.foil_quantity > 0,
        "quantity": transfer.quantity,
        "foil_quantity": transfer.foil_quantity,
        "unit_price": unit_price(model),
        "foil_unit_price": unit_price(model, foil=True),
        "value": copies_value(model, transfer.quantity, transfer.foil_quantity),
    }


def _side_history(
    user_id: str, filed_to_receiver: bool, transfers: list[PlannedTransfer]
) -> dict[str, Any]:
    lines = [_history_line(transfer) for transfer in transfers]
    return {
        "user_id": user_id,
        "filed_to_receiver": filed_to_receiver,
        "items": lines,
        "total_quantity": sum(line["quantity"] for line in lines),
        "total_value": round(sum(line["value"] for line in lines), 2),
    }


async def plan_transfers(session: AsyncSession, trade: TradeSessionDB) -> list[PlannedTransfer]:
    """
    Load, lock and validate every selected stack of both sides.

    Raises:
        InvariantViolationError: If any stack is missing, belongs to someone
            other than its giver, or holds fewer copies than selected
    """
    if trade.partner_id is None:
        raise InvariantViolationError("A trade cannot be settled without a partner")

    sides = [
        (TradeSide.INITIATOR, trade.initiator_id, trade.partner_id, trade.initiator_selection),
        (TradeSide.PARTNER, trade.partner_id, trade.initiator_id, trade.partner_selection),
    ]
    selections = [
        (side, giver, receiver, sanitize_selection(raw)) for side, giver, receiver, raw in sides
    ]

    all_ids = [item_id for _, _, _, selection in selections for item_id in selection]
    items = await get_items_for_update(session, all_ids)

    planned: list[PlannedTransfer] = []
    for side, giver_id, receiver_id, selection in selections:
        for item_id, quantity in selection.items():
            item = items.get(item_id)
            if item is None or item.user_id != giver_id:
                raise InvariantViolationError(
                    f"Selected item {item_id} is not in the {side.value}'s inventory",
                    detail=f"item={item_id} giver={giver_id}",
                )
            if quantity > item.quantity:
                raise InvariantViolationError(
                    f"Not enough copies of {item.card.name} to trade: "
                    f"selected {quantity}, owned {item.quantity}",
                    detail=f"item={item_id} selected={quantity} owned={item.quantity}",
                )
            planned.append(
                PlannedTransfer(
                    side=side,
                    giver_id=giver_id,
                    receiver_id=receiver_id,
                    item=item,
                    stack_key=item_to_model(item).stack_key,
                    quantity=quantity,
                    foil_quantity=min(quantity, item.foil_quantity),
                )
            )
    return planned


async def _debit(session: AsyncSession, transfer: PlannedTransfer) -> None:
    item = transfer.item
    item.quantity -= transfer.quantity
    item.for_trade = max(0, item.for_trade - transfer.quantity)
    item.foil_quantity = max(0, item.foil_quantity - transfer.quantity)
    if item.quantity <= 0:
        await session.delete(item)


async def _credit(session: AsyncSession, transfer: PlannedTransfer) -> None:
    card_id, condition, language, is_alter = transfer.stack_key
    stack = await find_stack(
        session,
        user_id=transfer.receiver_id,
        card_id=card_id,
        condition=condition.value,
        language=language,
        is_alter=is_alter,
    )
    if stack is not None:
        stack.quantity += transfer.quantity
        stack.foil_quantity += transfer.foil_quantity
    else:
        session.add(
            InventoryItemDB(
                user_id=transfer.receiver_id,
                card_id=card_id,
                quantity=transfer.quantity,
                foil_quantity=transfer.foil_quantity,
                condition=condition.value,
                language=language,
                is_alter=is_alter,
                for_trade=0,
            )
        )
    await session.flush()


async def settle_trade(
    session: AsyncSession,
    trade: TradeSessionDB,
    *,
    initiator_auto_file: bool,
    partner_auto_file: bool,
    settled_at: datetime,
) -> dict[str, Any]:
    """
    Move both sides' selected stacks and return the history snapshot.

    Runs in the caller's transaction. The caller writes the COMPLETED
    status and the snapshot in that same transaction, and commits.

    Args:
        session: Database session holding the transaction
        trade: The session being settled (ACTIVE, both accepted)
        initiator_auto_file: File cards the initiator receives into their inventory
        partner_auto_file: File cards the partner receives into their inventory
        settled_at: Settlement timestamp recorded in the snapshot

    Returns:
        History snapshot: what each side gave, with card facts and values

    Raises:
        InvariantViolationError: If any selection entry is invalid
    """
    planned = await plan_transfers(session, trade)

    auto_file = {
        TradeSide.INITIATOR: partner_auto_file,
        TradeSide.PARTNER: initiator_auto_file,
    }

    # Captured before any mutation; deleted stacks must still be described
    history = {
        "settled_at": settled_at.isoformat(),
        "initiator": _side_history(
            trade.initiator_id,
            partner_auto_file,
            [t for t in planned if t.side is TradeSide.INITIATOR],
        ),
        "partner": _side_history(
            trade.partner_id or "",
            initiator_auto_file,
            [t for t in planned if t.side is TradeSide.PARTNER],
        ),
    }

    # Debits first, so a stack emptied by this trade is gone before the
    # receiver side looks up its merge key
    for transfer in planned:
        await _debit(session, transfer)
    await session.flush()

    for transfer in planned:
        if auto_file[transfer.side]:
            await _credit(session, transfer)

    logger.info(
        "Settled trade %s: %d stacks moved",
        trade.session_code,
        len(planned),
        extra={
            "session_code": trade.session_code,
            "initiator_items": history["initiator"]["total_quantity"],
            "partner_items": history["partner"]["total_quantity"],
        },
    )
    return history
