"""
Trade session state machine.

A session carries a trade from creation through negotiation to
settlement:

    create (no target)   -> PENDING
    create (with target) -> ACTIVE, partner pre-assigned
    PENDING --join-->       ACTIVE
    PENDING --read after expires_at--> EXPIRED  (compare-and-set)
    ACTIVE  --selection-->  ACTIVE, both acceptances reset
    ACTIVE  --acceptance--> ACTIVE, caller's own flag only
    ACTIVE  --complete-->   COMPLETED, via settlement

COMPLETED and EXPIRED sessions are frozen except for deletion by the
initiator.

Every mutating operation is a guarded read-modify-write of the session
row under a row lock. Nothing about a session is held in process memory
between requests.

Events and notification pushes go to the broadcaster passed in. Request
handlers pass a DeferredBroadcaster and flush it after commit, so nothing
is delivered for a transaction that rolls back.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.exc import InvalidRequestError
from sqlalchemy.ext.asyncio import AsyncSession

from tradebinder.config import MAX_SESSION_CODE_ATTEMPTS, SESSION_CODE_ALPHABET, settings
from tradebinder.db.operations import (
    cache_offers,
    create_message,
    create_trade_session,
    delete_trade_session,
    expire_session_if_stale,
    expire_stale_sessions_for,
    find_open_session,
    get_auto_file_preference,
    get_trade_session_by_code,
    get_trade_session_by_id,
    list_completed_sessions,
    list_messages,
    list_open_sessions,
    mark_session_completed,
    session_code_exists,
)
from tradebinder.models.db import TradeMessageDB, TradeSessionDB
from tradebinder.models.failure import (
    FailureKind,
    ForbiddenError,
    InvalidStateError,
    InvariantViolationError,
    KnownError,
    NotFoundError,
)
from tradebinder.models.trade import (
    OPEN_STATUSES,
    NotificationKind,
    TradeEvent,
    TradeNotice,
    TradeSide,
    TradeStatus,
)
from tradebinder.services.broadcast import Broadcaster
from tradebinder.services.inventory_reader import load_snapshot
from tradebinder.services.match_engine import compute_offers
from tradebinder.services.notifications import record_notification
from tradebinder.services.selection import sanitize_selection
from tradebinder.services.settlement import settle_trade

logger = logging.getLogger(__name__)

EMPTY_OFFERS: dict[str, Any] = {
    "offers_a": [],
    "offers_b": [],
    "total_value_a": 0.0,
    "total_value_b": 0.0,
    "match_count": 0,
}


@dataclass(frozen=True, slots=True)
class OffersView:
    """
    What a participant sees when viewing a session's offers.

    While negotiating, `offers` is freshly computed from live inventory.
    After completion, `offers` and `history` come from the frozen
    settlement record.
    """

    trade: TradeSessionDB
    offers: dict[str, Any]
    history: dict[str, Any] | None = None

    @property
    def is_final(self) -> bool:
        return self.history is not None


# =============================================================================
# HELPERS
# =============================================================================


def utcnow() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def generate_session_code() -> str:
    return "".join(
        secrets.choice(SESSION_CODE_ALPHABET) for _ in range(settings.session_code_length)
    )


def side_of(trade: TradeSessionDB, user_id: str) -> TradeSide | None:
    """Which side of the session a user is on, or None for outsiders."""
    if user_id == trade.initiator_id:
        return TradeSide.INITIATOR
    if trade.partner_id is not None and user_id == trade.partner_id:
        return TradeSide.PARTNER
    return None


def counterpart_of(trade: TradeSessionDB, user_id: str) -> str | None:
    if user_id == trade.initiator_id:
        return trade.partner_id
    return trade.initiator_id


def session_payload(trade: TradeSessionDB) -> dict[str, Any]:
    """Session state as broadcast to participants."""
    return {
        "session_code": trade.session_code,
        "status": trade.status,
        "initiator_id": trade.initiator_id,
        "partner_id": trade.partner_id,
        "initiator_selection": trade.initiator_selection or {},
        "partner_selection": trade.partner_selection or {},
        "initiator_accepted": trade.initiator_accepted,
        "partner_accepted": trade.partner_accepted,
    }


def history_match_count(trade: TradeSessionDB) -> int:
    """Matched offers on either side in a session's frozen history."""
    offers = (trade.finalized_history or {}).get("offers") or {}
    return int(offers.get("match_count", 0))


async def _load(session: AsyncSession, code: str, *, for_update: bool = False) -> TradeSessionDB:
    trade = await get_trade_session_by_code(session, code, for_update=for_update)
    if trade is None:
        raise NotFoundError("Trade session not found", detail=f"code={code.upper()}")
    return trade


def _require_participant(trade: TradeSessionDB, user_id: str, action: str) -> TradeSide:
    side = side_of(trade, user_id)
    if side is None:
        raise ForbiddenError(f"Not authorized to {action} in this session")
    return side


async def _observe_expiry(session: AsyncSession, trade: TradeSessionDB, now: datetime) -> bool:
    """
    Lazily expire a lapsed PENDING session.

    Returns True if the session is EXPIRED after the check, whether this
    call or a concurrent one performed the transition.
    """
    if trade.status == TradeStatus.EXPIRED.value:
        return True
    if trade.status != TradeStatus.PENDING.value or _as_utc(trade.expires_at) >= now:
        return False

    if await expire_session_if_stale(session, trade.id, now):
        logger.info("Trade session %s expired", trade.session_code)
    await session.refresh(trade)
    return trade.status == TradeStatus.EXPIRED.value


async def _require_active(session: AsyncSession, trade: TradeSessionDB, now: datetime) -> None:
    if trade.status == TradeStatus.ACTIVE.value:
        return
    if await _observe_expiry(session, trade, now):
        raise InvalidStateError("Trade session has expired")
    if trade.status == TradeStatus.COMPLETED.value:
        raise InvalidStateError("Trade session has already been completed")
    raise InvalidStateError(
        "Waiting for another user to join",
        suggestion="Share the session code with your trade partner.",
    )


async def _notify(
    session: AsyncSession,
    broadcaster: Broadcaster | None,
    kind: NotificationKind,
    trade: TradeSessionDB,
    recipient: str | None,
    actor_id: str,
    extra: dict[str, Any] | None = None,
) -> None:
    if recipient is None:
        return
    notice = TradeNotice(
        kind=kind,
        user_id=recipient,
        session_code=trade.session_code,
        actor_id=actor_id,
        extra=extra or {},
    )
    await record_notification(session, notice, broadcaster)


def _publish(
    broadcaster: Broadcaster | None,
    trade: TradeSessionDB,
    event: TradeEvent,
    payload: dict[str, Any],
) -> None:
    if broadcaster is not None:
        broadcaster.publish_to_session(trade.session_code, event, payload)


# =============================================================================
# LIFECYCLE
# =============================================================================


async def create_session(
    session: AsyncSession,
    initiator_id: str,
    with_user_id: str | None = None,
) -> tuple[TradeSessionDB, bool]:
    """
    Start a trade session, or return the caller's existing open one.

    Without a target the session is PENDING until someone joins with its
    code. With a target the partner is pre-assigned and the session is
    ACTIVE immediately.

    Returns:
        Tuple of (session, created) where created is False if an open
        session was reused.
    """
    if with_user_id is not None and with_user_id == initiator_id:
        raise InvalidStateError("You cannot start a trade with yourself")

    now = utcnow()
    expired = await expire_stale_sessions_for(session, initiator_id, now)
    if expired:
        logger.info("Expired %d stale trade sessions of %s", expired, initiator_id)

    existing = await find_open_session(session, initiator_id, now, with_user_id)
    if existing is not None:
        return existing, False

    for _ in range(MAX_SESSION_CODE_ATTEMPTS):
        code = generate_session_code()
        if not await session_code_exists(session, code):
            break
    else:
        msg = f"Could not draw an unused session code in {MAX_SESSION_CODE_ATTEMPTS} attempts"
        raise RuntimeError(msg)

    trade = await create_trade_session(
        session,
        code=code,
        initiator_id=initiator_id,
        partner_id=with_user_id,
        expires_at=now + timedelta(hours=settings.session_ttl_hours),
    )
    logger.info(
        "Trade session %s created by %s (%s)",
        trade.session_code,
        initiator_id,
        trade.status,
        extra={"session_code": trade.session_code, "partner_id": with_user_id},
    )
    return trade, True


async def list_sessions(session: AsyncSession, user_id: str) -> list[TradeSessionDB]:
    """List the caller's open sessions, newest first."""
    now = utcnow()
    await expire_stale_sessions_for(session, user_id, now)
    return await list_open_sessions(session, user_id, now)


async def join_session(
    session: AsyncSession,
    code: str,
    user_id: str,
    broadcaster: Broadcaster | None = None,
) -> TradeSessionDB:
    """
    Join a PENDING session by its code.

    Joining a session you are already the partner of is a no-op.
    """
    trade = await _load(session, code, for_update=True)

    if trade.initiator_id == user_id:
        raise InvalidStateError("Cannot join your own trade session")
    if trade.status == TradeStatus.COMPLETED.value:
        raise InvalidStateError("Trade session has already been completed")
    if await _observe_expiry(session, trade, utcnow()):
        raise InvalidStateError("Trade session has expired")
    if trade.partner_id is not None and trade.partner_id != user_id:
        raise InvalidStateError("Trade session already has a partner")

    if trade.partner_id == user_id and trade.status == TradeStatus.ACTIVE.value:
        return trade

    trade.partner_id = user_id
    trade.status = TradeStatus.ACTIVE.value
    await session.flush()

    logger.info("%s joined trade session %s", user_id, trade.session_code)
    _publish(broadcaster, trade, TradeEvent.PARTNER_JOINED, session_payload(trade))
    await _notify(
        session, broadcaster, NotificationKind.TRADE_JOINED, trade, trade.initiator_id, user_id
    )
    return trade


def _final_view(trade: TradeSessionDB) -> OffersView:
    history = trade.finalized_history or {}
    offers = history.get("offers") or EMPTY_OFFERS
    return OffersView(trade=trade, offers=offers, history=history)


async def view_offers(session: AsyncSession, code: str, user_id: str) -> OffersView:
    """
    Show both sides' offers.

    While ACTIVE the offers are recomputed from live inventory and memoized
    on the session. Once COMPLETED they come from the frozen history only.
    A lapsed session is reported to its owner as EXPIRED with no offers.
    """
    trade = await _load(session, code)
    _require_participant(trade, user_id, "view offers")

    if trade.status == TradeStatus.COMPLETED.value:
        return _final_view(trade)

    now = utcnow()
    if await _observe_expiry(session, trade, now):
        return OffersView(trade=trade, offers=EMPTY_OFFERS)
    await _require_active(session, trade, now)

    # Partner is always set on an ACTIVE session
    snapshot_a = await load_snapshot(session, trade.initiator_id)
    snapshot_b = await load_snapshot(session, trade.partner_id or "")
    offers = compute_offers(snapshot_a, snapshot_b).to_dict()

    if not await cache_offers(session, trade.id, offers):
        # Settled or deleted by another request since the status check
        try:
            await session.refresh(trade)
        except InvalidRequestError:
            raise NotFoundError("Trade session not found", detail=f"code={code.upper()}") from None
        if trade.status == TradeStatus.COMPLETED.value:
            return _final_view(trade)
        raise InvalidStateError("Trade session is no longer active")
    return OffersView(trade=trade, offers=offers)


async def update_selection(
    session: AsyncSession,
    code: str,
    user_id: str,
    selection: dict[str, Any],
    broadcaster: Broadcaster | None = None,
) -> TradeSessionDB:
    """
    Replace the caller's selection of stacks they give.

    Both acceptance flags are reset in the same write: any change to
    what is on the table requires both sides to consent again.
    """
    trade = await _load(session, code, for_update=True)
    side = _require_participant(trade, user_id, "update the selection")
    await _require_active(session, trade, utcnow())

    cleaned = sanitize_selection(selection)
    if side is TradeSide.INITIATOR:
        trade.initiator_selection = cleaned
    else:
        trade.partner_selection = cleaned
    trade.initiator_accepted = False
    trade.partner_accepted = False
    await session.flush()

    _publish(
        broadcaster,
        trade,
        TradeEvent.SELECTION_UPDATED,
        {**session_payload(trade), "updated_by": user_id},
    )
    return trade


async def set_acceptance(
    session: AsyncSession,
    code: str,
    user_id: str,
    accepted: bool,
    broadcaster: Broadcaster | None = None,
) -> TradeSessionDB:
    """Set or withdraw the caller's own acceptance of the current selections."""
    trade = await _load(session, code, for_update=True)
    side = _require_participant(trade, user_id, "accept")
    await _require_active(session, trade, utcnow())

    if side is TradeSide.INITIATOR:
        changed = trade.initiator_accepted != accepted
        trade.initiator_accepted = accepted
    else:
        changed = trade.partner_accepted != accepted
        trade.partner_accepted = accepted
    await session.flush()

    _publish(
        broadcaster,
        trade,
        TradeEvent.ACCEPTANCE_UPDATED,
        {**session_payload(trade), "updated_by": user_id},
    )
    if changed:
        kind = NotificationKind.TRADE_ACCEPTED if accepted else NotificationKind.TRADE_REJECTED
        await _notify(
            session, broadcaster, kind, trade, counterpart_of(trade, user_id), user_id
        )
    return trade


async def complete_session(
    session: AsyncSession,
    code: str,
    user_id: str,
    broadcaster: Broadcaster | None = None,
) -> TradeSessionDB:
    """
    Settle the trade.

    Only the initiator may complete, only once both sides accepted. The
    inventory transfer, the COMPLETED status and the frozen history are
    written in one transaction; a second attempt finds the session no
    longer ACTIVE and fails without touching inventory.
    """
    trade = await _load(session, code, for_update=True)
    if trade.initiator_id != user_id:
        raise ForbiddenError("Only the session initiator can complete the trade")
    if trade.status == TradeStatus.COMPLETED.value:
        raise InvalidStateError("Trade session has already been completed")
    await _require_active(session, trade, utcnow())
    if trade.partner_id is None:
        raise InvalidStateError("Trade session has no partner")
    if not (trade.initiator_accepted and trade.partner_accepted):
        raise InvalidStateError(
            "Both users must accept before completion",
            detail=(
                f"initiator_accepted={trade.initiator_accepted} "
                f"partner_accepted={trade.partner_accepted}"
            ),
        )

    # Offers as they stood at settlement, before inventory moves
    snapshot_a = await load_snapshot(session, trade.initiator_id)
    snapshot_b = await load_snapshot(session, trade.partner_id)
    final_offers = compute_offers(snapshot_a, snapshot_b).to_dict()

    initiator_auto_file = await get_auto_file_preference(session, trade.initiator_id)
    partner_auto_file = await get_auto_file_preference(session, trade.partner_id)

    now = utcnow()
    try:
        transfers = await settle_trade(
            session,
            trade,
            initiator_auto_file=initiator_auto_file,
            partner_auto_file=partner_auto_file,
            settled_at=now,
        )
    except InvariantViolationError as e:
        logger.warning("Settlement of %s refused: %s", trade.session_code, e.message)
        raise

    history = {**transfers, "offers": final_offers}
    if not await mark_session_completed(session, trade.id, history, now):
        raise InvalidStateError("Trade session has already been completed")
    await session.refresh(trade)

    logger.info("Trade session %s completed", trade.session_code)
    _publish(broadcaster, trade, TradeEvent.SESSION_COMPLETED, session_payload(trade))
    for recipient in (trade.initiator_id, trade.partner_id):
        await _notify(
            session, broadcaster, NotificationKind.TRADE_COMPLETED, trade, recipient, user_id
        )
    return trade


async def delete_session(
    session: AsyncSession,
    code: str,
    user_id: str,
    broadcaster: Broadcaster | None = None,
) -> None:
    """Delete a session. Initiator only, in any state."""
    trade = await _load(session, code, for_update=True)
    if trade.initiator_id != user_id:
        raise ForbiddenError("Only the session initiator can delete the session")

    was_open = trade.status in {status.value for status in OPEN_STATUSES}
    payload = session_payload(trade)
    partner_id = trade.partner_id

    await delete_trade_session(session, trade)
    logger.info("Trade session %s deleted by %s", payload["session_code"], user_id)

    _publish(broadcaster, trade, TradeEvent.SESSION_DELETED, payload)
    if was_open:
        await _notify(
            session, broadcaster, NotificationKind.TRADE_DELETED, trade, partner_id, user_id
        )


# =============================================================================
# HISTORY
# =============================================================================


async def list_history(
    session: AsyncSession,
    user_id: str,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    descending: bool = True,
) -> list[TradeSessionDB]:
    """List the caller's completed trades."""
    return await list_completed_sessions(
        session, user_id, start=start, end=end, descending=descending
    )


async def get_history(session: AsyncSession, session_id: str, user_id: str) -> TradeSessionDB:
    """Fetch one completed trade the caller took part in."""
    trade = await get_trade_session_by_id(session, session_id)
    if trade is None or trade.status != TradeStatus.COMPLETED.value:
        raise NotFoundError("Trade history record not found", detail=f"id={session_id}")
    _require_participant(trade, user_id, "view this trade")
    return trade


# =============================================================================
# MESSAGES
# =============================================================================


async def post_message(
    session: AsyncSession,
    code: str,
    user_id: str,
    content: str,
    broadcaster: Broadcaster | None = None,
) -> TradeMessageDB:
    """Send a chat message to the other participant."""
    text = (content or "").strip()
    if not text or len(text) > settings.max_message_length:
        raise KnownError(
            kind=FailureKind.INVALID_INPUT,
            message=f"Message must be between 1 and {settings.max_message_length} characters",
        )

    trade = await _load(session, code)
    _require_participant(trade, user_id, "send messages")

    message = await create_message(session, trade.id, user_id, text)
    _publish(
        broadcaster,
        trade,
        TradeEvent.MESSAGE,
        {
            "id": message.id,
            "session_code": trade.session_code,
            "sender_id": user_id,
            "content": text,
            "created_at": _as_utc(message.created_at).isoformat(),
        },
    )
    await _notify(
        session,
        broadcaster,
        NotificationKind.TRADE_MESSAGE,
        trade,
        counterpart_of(trade, user_id),
        user_id,
        {"content": text},
    )
    return message


async def get_messages(
    session: AsyncSession, code: str, user_id: str, limit: int = 50
) -> list[TradeMessageDB]:
    """A session's messages, oldest first, at most one page."""
    trade = await _load(session, code)
    _require_participant(trade, user_id, "view messages")
    limit = max(1, min(limit, settings.max_messages_page))
    return await list_messages(session, trade.id, limit)
