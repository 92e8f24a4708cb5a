"""
Card condition grades, best first: Mint, Near Mint, Lightly Played,
Moderately Played, Heavily Played, Damaged.
"""

from enum import Enum


class CardCondition(str, Enum):
    """Physical condition grade of a card stack."""

    MINT = "M"
    NEAR_MINT = "NM"
    LIGHTLY_PLAYED = "LP"
    MODERATELY_PLAYED = "MP"
    HEAVILY_PLAYED = "HP"
    DAMAGED = "DMG"


CONDITION_LABELS: dict[CardCondition, str] = {
    CardCondition.MINT: "Mint",
    CardCondition.NEAR_MINT: "Near Mint",
    CardCondition.LIGHTLY_PLAYED: "Lightly Played",
    CardCondition.MODERATELY_PLAYED: "Moderately Played",
    CardCondition.HEAVILY_PLAYED: "Heavily Played",
    CardCondition.DAMAGED: "Damaged",
}


def condition_label(condition: CardCondition) -> str:
    """Human-readable label for a condition grade."""
    return CONDITION_LABELS[condition]
