"""
Selection map sanitizing.

Clients send {item_id: quantity}. Stale or hand-edited client state is
tolerated: entries with a malformed item id or a non-positive or
non-integer quantity are dropped rather than rejected.
"""

import uuid
from collections.abc import Mapping
from typing import Any


def _normalize_item_id(key: Any) -> str | None:
    if not isinstance(key, str):
        return None
    try:
        return str(uuid.UUID(key.strip()))
    except ValueError:
        return None


def _normalize_quantity(value: Any) -> int | None:
    # bool is an int subclass; True is not a quantity
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        quantity = value
    elif isinstance(value, float) and value.is_integer():
        quantity = int(value)
    else:
        return None
    return quantity if quantity > 0 else None


def sanitize_selection(raw: Mapping[Any, Any] | None) -> dict[str, int]:
    """
    Keep only well-formed selection entries.

    Item ids are normalized to canonical lower-case UUID strings. If the
    same item appears twice after normalization, the last entry wins.
    """
    if not raw:
        return {}

    selection: dict[str, int] = {}
    for key, value in raw.items():
        item_id = _normalize_item_id(key)
        quantity = _normalize_quantity(value)
        if item_id is None or quantity is None:
            continue
        selection[item_id] = quantity
    return selection
