from tradebinder.models.condition import (
    CONDITION_LABELS,
    CardCondition,
    condition_label,
)
from tradebinder.models.failure import (
    STANDARD_MESSAGES,
    STANDARD_SUGGESTIONS,
    ApiResponse,
    FailureDetail,
    FailureKind,
    ForbiddenError,
    InvalidStateError,
    InvariantViolationError,
    KnownError,
    NotFoundError,
    OutcomeType,
    create_known_failure,
    create_unknown_failure,
    finalize_response,
    is_finalized,
)
from tradebinder.models.inventory import (
    PRIORITY_RANK,
    CardFacts,
    InventoryItem,
    InventorySnapshot,
    WishEntry,
    WishPriority,
)
from tradebinder.models.offers import MatchResult, Offer
from tradebinder.models.trade import (
    OPEN_STATUSES,
    NotificationKind,
    TradeEvent,
    TradeNotice,
    TradeSide,
    TradeStatus,
)

__all__ = [
    "ApiResponse",
    "CONDITION_LABELS",
    "CardCondition",
    "CardFacts",
    "FailureDetail",
    "FailureKind",
    "ForbiddenError",
    "InvalidStateError",
    "InvariantViolationError",
    "InventoryItem",
    "InventorySnapshot",
    "KnownError",
    "MatchResult",
    "NotFoundError",
    "NotificationKind",
    "OPEN_STATUSES",
    "Offer",
    "OutcomeType",
    "PRIORITY_RANK",
    "STANDARD_MESSAGES",
    "STANDARD_SUGGESTIONS",
    "TradeEvent",
    "TradeNotice",
    "TradeSide",
    "TradeStatus",
    "WishEntry",
    "WishPriority",
    "condition_label",
    "create_known_failure",
    "create_unknown_failure",
    "finalize_response",
    "is_finalized",
]
