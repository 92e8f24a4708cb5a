"""
TradeBinder services.

Business logic for matching, negotiating and settling card trades.
"""

from tradebinder.services.broadcast import (
    Broadcaster,
    BroadcastMessage,
    InProcessBroadcaster,
    get_broadcaster,
    session_topic,
    user_topic,
)
from tradebinder.services.inventory_reader import load_snapshot
from tradebinder.services.match_engine import compute_offers
from tradebinder.services.notifications import record_notification
from tradebinder.services.selection import sanitize_selection
from tradebinder.services.settlement import settle_trade

__all__ = [
    "BroadcastMessage",
    "Broadcaster",
    "InProcessBroadcaster",
    "compute_offers",
    "get_broadcaster",
    "load_snapshot",
    "record_notification",
    "sanitize_selection",
    "session_topic",
    "settle_trade",
    "user_topic",
]
