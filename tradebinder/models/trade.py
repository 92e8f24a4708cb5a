"""
Trade session lifecycle types.

TradeStatus is persisted on the session row. TradeEvent names the events
broadcast to a session's topic. TradeNotice is the tagged variant handed to
the notification sink: the kind selects how the notification is rendered,
the payload carries what it needs.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TradeStatus(str, Enum):
    """Lifecycle state of a trade session."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"


OPEN_STATUSES: tuple[TradeStatus, ...] = (TradeStatus.PENDING, TradeStatus.ACTIVE)


class TradeSide(str, Enum):
    """Which participant of a session a caller is."""

    INITIATOR = "initiator"
    PARTNER = "partner"


class TradeEvent(str, Enum):
    """Events published on a session's broadcast topic."""

    PARTNER_JOINED = "partner-joined"
    SELECTION_UPDATED = "selection-updated"
    ACCEPTANCE_UPDATED = "acceptance-updated"
    SESSION_COMPLETED = "session-completed"
    SESSION_DELETED = "session-deleted"
    MESSAGE = "message"


class NotificationKind(str, Enum):
    """Kinds of durable notification a trade produces."""

    TRADE_JOINED = "TRADE_JOINED"
    TRADE_ACCEPTED = "TRADE_ACCEPTED"
    TRADE_REJECTED = "TRADE_REJECTED"
    TRADE_MESSAGE = "TRADE_MESSAGE"
    TRADE_COMPLETED = "TRADE_COMPLETED"
    TRADE_DELETED = "TRADE_DELETED"


@dataclass(frozen=True, slots=True)
class TradeNotice:
    """
    A point-in-time trade event addressed to one user.

    Attributes:
        kind: What happened
        user_id: Recipient of the notification
        session_code: Session the event belongs to
        actor_id: User who caused the event
        extra: Kind-specific payload (e.g., message preview)
    """

    kind: NotificationKind
    user_id: str
    session_code: str
    actor_id: str
    extra: dict[str, Any] = field(default_factory=dict)
