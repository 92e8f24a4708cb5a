"""
Database CRUD operations.

Provides async functions for reading and writing trade sessions, the
inventory rows settlement touches, trade messages, notifications and
trader preferences.

Functions flush but never commit; the request's session owns the
transaction. The one exception is lazy expiry, see
`expire_session_if_stale`.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tradebinder.models.db import (
    InventoryItemDB,
    NotificationDB,
    TradeMessageDB,
    TraderPreferencesDB,
    TradeSessionDB,
    WishEntryDB,
)
from tradebinder.models.trade import TradeStatus


def _is_open(now: datetime) -> Any:
    # ACTIVE sessions never lapse; PENDING ones only count until they expire
    return or_(
        TradeSessionDB.status == TradeStatus.ACTIVE.value,
        and_(
            TradeSessionDB.status == TradeStatus.PENDING.value,
            TradeSessionDB.expires_at > now,
        ),
    )


# --- Trade Session Operations ---


async def get_trade_session_by_code(
    session: AsyncSession,
    code: str,
    *,
    for_update: bool = False,
) -> TradeSessionDB | None:
    """
    Get a trade session by its share code (case-insensitive).

    With for_update=True the row is locked until the transaction ends,
    serializing concurrent writers on the same session.
    """
    stmt = select(TradeSessionDB).where(TradeSessionDB.session_code == code.strip().upper())
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_trade_session_by_id(session: AsyncSession, session_id: str) -> TradeSessionDB | None:
    """Get a trade session by primary key."""
    result = await session.execute(select(TradeSessionDB).where(TradeSessionDB.id == session_id))
    return result.scalar_one_or_none()


async def session_code_exists(session: AsyncSession, code: str) -> bool:
    """Check whether a share code is already taken."""
    result = await session.execute(
        select(TradeSessionDB.id).where(TradeSessionDB.session_code == code)
    )
    return result.first() is not None


async def create_trade_session(
    session: AsyncSession,
    *,
    code: str,
    initiator_id: str,
    expires_at: datetime,
    partner_id: str | None = None,
) -> TradeSessionDB:
    """
    Create a new trade session.

    A session created with a partner starts ACTIVE; otherwise PENDING
    until someone joins.
    """
    status = TradeStatus.ACTIVE if partner_id else TradeStatus.PENDING
    trade = TradeSessionDB(
        session_code=code,
        initiator_id=initiator_id,
        partner_id=partner_id,
        status=status.value,
        expires_at=expires_at,
        initiator_selection={},
        partner_selection={},
        initiator_accepted=False,
        partner_accepted=False,
    )
    session.add(trade)
    await session.flush()
    return trade


async def find_open_session(
    session: AsyncSession,
    initiator_id: str,
    now: datetime,
    with_user_id: str | None = None,
) -> TradeSessionDB | None:
    """
    Find an unexpired open session to reuse instead of creating a duplicate.

    With a target user, any open session between the two users in either
    direction counts. Without one, any open session the caller initiated.
    """
    stmt = select(TradeSessionDB).where(_is_open(now))
    if with_user_id:
        stmt = stmt.where(
            or_(
                (TradeSessionDB.initiator_id == initiator_id)
                & (TradeSessionDB.partner_id == with_user_id),
                (TradeSessionDB.initiator_id == with_user_id)
                & (TradeSessionDB.partner_id == initiator_id),
            )
        )
    else:
        stmt = stmt.where(TradeSessionDB.initiator_id == initiator_id)
    result = await session.execute(stmt.order_by(TradeSessionDB.created_at.desc()).limit(1))
    return result.scalar_one_or_none()


async def list_open_sessions(
    session: AsyncSession, user_id: str, now: datetime
) -> list[TradeSessionDB]:
    """List unexpired PENDING/ACTIVE sessions the user takes part in, newest first."""
    result = await session.execute(
        select(TradeSessionDB)
        .where(
            or_(TradeSessionDB.initiator_id == user_id, TradeSessionDB.partner_id == user_id),
            _is_open(now),
        )
        .order_by(TradeSessionDB.created_at.desc())
    )
    return list(result.scalars().all())


async def list_completed_sessions(
    session: AsyncSession,
    user_id: str,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    descending: bool = True,
) -> list[TradeSessionDB]:
    """
    List settled sessions with a partner that the user took part in.

    The date range applies to the completion time and is inclusive.
    """
    stmt = select(TradeSessionDB).where(
        or_(TradeSessionDB.initiator_id == user_id, TradeSessionDB.partner_id == user_id),
        TradeSessionDB.status == TradeStatus.COMPLETED.value,
        TradeSessionDB.partner_id.is_not(None),
    )
    if start is not None:
        stmt = stmt.where(TradeSessionDB.completed_at >= start)
    if end is not None:
        stmt = stmt.where(TradeSessionDB.completed_at <= end)

    order = TradeSessionDB.completed_at.desc() if descending else TradeSessionDB.completed_at.asc()
    result = await session.execute(stmt.order_by(order))
    return list(result.scalars().all())


async def expire_session_if_stale(session: AsyncSession, trade_id: str, now: datetime) -> bool:
    """
    Compare-and-set a PENDING session past its expiry to EXPIRED.

    Only a row still PENDING at write time is changed, so concurrent
    checks cannot both fire. The change is committed at once: expiry is
    an observed fact and must survive an error raised by the caller
    afterwards.

    Returns True if this call performed the transition.
    """
    result = await session.execute(
        update(TradeSessionDB)
        .where(
            TradeSessionDB.id == trade_id,
            TradeSessionDB.status == TradeStatus.PENDING.value,
            TradeSessionDB.expires_at < now,
        )
        .values(status=TradeStatus.EXPIRED.value)
        .execution_options(synchronize_session=False)
    )
    # rowcount is available on UPDATE results; type stubs incomplete for async
    changed = int(result.rowcount) > 0  # type: ignore[attr-defined]
    if changed:
        await session.commit()
    return changed


async def expire_stale_sessions_for(session: AsyncSession, initiator_id: str, now: datetime) -> int:
    """
    Expire every lapsed PENDING session a user initiated.

    Returns the number of sessions transitioned.
    """
    result = await session.execute(
        update(TradeSessionDB)
        .where(
            TradeSessionDB.initiator_id == initiator_id,
            TradeSessionDB.status == TradeStatus.PENDING.value,
            TradeSessionDB.expires_at < now,
        )
        .values(status=TradeStatus.EXPIRED.value)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount)  # type: ignore[attr-defined]


async def cache_offers(session: AsyncSession, trade_id: str, offers: dict[str, Any]) -> bool:
    """
    Memoize computed offers on a session that is still ACTIVE.

    Returns False if the session was settled or removed in the meantime;
    a COMPLETED record is never written to.
    """
    result = await session.execute(
        update(TradeSessionDB)
        .where(
            TradeSessionDB.id == trade_id,
            TradeSessionDB.status == TradeStatus.ACTIVE.value,
        )
        .values(cached_offers=offers)
    )
    return int(result.rowcount) > 0  # type: ignore[attr-defined]


async def mark_session_completed(
    session: AsyncSession,
    trade_id: str,
    history: dict[str, Any],
    completed_at: datetime,
) -> bool:
    """
    Compare-and-set an ACTIVE session to COMPLETED with its frozen history.

    Returns False if the session was no longer ACTIVE at write time.
    """
    result = await session.execute(
        update(TradeSessionDB)
        .where(
            TradeSessionDB.id == trade_id,
            TradeSessionDB.status == TradeStatus.ACTIVE.value,
        )
        .values(
            status=TradeStatus.COMPLETED.value,
            finalized_history=history,
            completed_at=completed_at,
            initiator_accepted=False,
            partner_accepted=False,
        )
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount) > 0  # type: ignore[attr-defined]


async def delete_trade_session(session: AsyncSession, trade: TradeSessionDB) -> None:
    """Delete a session together with its messages."""
    await session.execute(delete(TradeMessageDB).where(TradeMessageDB.session_id == trade.id))
    await session.delete(trade)
    await session.flush()


# --- Inventory Operations ---


async def get_tradeable_items(session: AsyncSession, user_id: str) -> list[InventoryItemDB]:
    """Get a user's stacks with at least one copy marked for trade."""
    result = await session.execute(
        select(InventoryItemDB).where(
            InventoryItemDB.user_id == user_id,
            InventoryItemDB.for_trade > 0,
        )
    )
    return list(result.scalars().all())


async def get_wish_entries(session: AsyncSession, user_id: str) -> list[WishEntryDB]:
    """Get every wishlist entry of a user."""
    result = await session.execute(select(WishEntryDB).where(WishEntryDB.user_id == user_id))
    return list(result.scalars().all())


async def get_items_for_update(
    session: AsyncSession, item_ids: Iterable[str]
) -> dict[str, InventoryItemDB]:
    """Load and lock inventory stacks by id. Missing ids are absent from the result."""
    ids = list(item_ids)
    if not ids:
        return {}
    result = await session.execute(
        select(InventoryItemDB)
        .where(InventoryItemDB.id.in_(ids))
        .with_for_update(of=InventoryItemDB)
    )
    return {item.id: item for item in result.scalars().all()}


async def find_stack(
    session: AsyncSession,
    *,
    user_id: str,
    card_id: str,
    condition: str,
    language: str,
    is_alter: bool,
) -> InventoryItemDB | None:
    """Find a user's stack under its merge key."""
    result = await session.execute(
        select(InventoryItemDB).where(
            InventoryItemDB.user_id == user_id,
            InventoryItemDB.card_id == card_id,
            InventoryItemDB.condition == condition,
            InventoryItemDB.language == language,
            InventoryItemDB.is_alter == is_alter,
        )
    )
    return result.scalar_one_or_none()


# --- Preference Operations ---


async def get_auto_file_preference(session: AsyncSession, user_id: str) -> bool:
    """
    Whether cards received in trades are filed into the user's collection.

    Users without a preferences row get the default (enabled).
    """
    result = await session.execute(
        select(TraderPreferencesDB.auto_file_trades).where(TraderPreferencesDB.user_id == user_id)
    )
    value = result.scalar_one_or_none()
    return True if value is None else bool(value)


# --- Message Operations ---


async def create_message(
    session: AsyncSession, trade_id: str, sender_id: str, content: str
) -> TradeMessageDB:
    """Store a chat message in a session."""
    message = TradeMessageDB(session_id=trade_id, sender_id=sender_id, content=content)
    session.add(message)
    await session.flush()
    await session.refresh(message)
    return message


async def list_messages(session: AsyncSession, trade_id: str, limit: int) -> list[TradeMessageDB]:
    """Get a session's messages, oldest first."""
    result = await session.execute(
        select(TradeMessageDB)
        .where(TradeMessageDB.session_id == trade_id)
        .order_by(TradeMessageDB.created_at.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


# --- Notification Operations ---


async def create_notification(
    session: AsyncSession,
    *,
    user_id: str,
    type_: str,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
) -> NotificationDB:
    """Store a notification for a user."""
    notification = NotificationDB(
        user_id=user_id, type=type_, title=title, message=message, data=data, read=False
    )
    session.add(notification)
    await session.flush()
    return notification


async def list_notifications(
    session: AsyncSession, user_id: str, *, unread_only: bool = False, limit: int = 50
) -> list[NotificationDB]:
    """Get a user's notifications, newest first."""
    stmt = select(NotificationDB).where(NotificationDB.user_id == user_id)
    if unread_only:
        stmt = stmt.where(NotificationDB.read.is_(False))
    result = await session.execute(stmt.order_by(NotificationDB.created_at.desc()).limit(limit))
    return list(result.scalars().all())


async def mark_notifications_read(
    session: AsyncSession, user_id: str, notification_ids: list[str] | None = None
) -> int:
    """
    Mark a user's notifications read.

    Marks the given ids, or all of the user's notifications when none given.
    Returns the number of rows changed.
    """
    stmt = update(NotificationDB).where(
        NotificationDB.user_id == user_id, NotificationDB.read.is_(False)
    )
    if notification_ids is not None:
        stmt = stmt.where(NotificationDB.id.in_(notification_ids))
    result = await session.execute(
        stmt.values(read=True).execution_options(synchronize_session=False)
    )
    return int(result.rowcount)  # type: ignore[attr-defined]
