"""
Notification sink for trade events.

Turns a TradeNotice into a durable notification row and pushes a point
event to the recipient's broadcast topic. Rendering is chosen by the
notice kind; each kind has exactly one renderer.
"""

import logging
from collections.abc import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from tradebinder.db.operations import create_notification
from tradebinder.models.db import NotificationDB
from tradebinder.models.trade import NotificationKind, TradeEvent, TradeNotice
from tradebinder.services.broadcast import Broadcaster

logger = logging.getLogger(__name__)

# Message previews in notifications are cut to this many characters
MESSAGE_PREVIEW_LENGTH = 80


def _joined(notice: TradeNotice) -> tuple[str, str]:
    return (
        "Trade partner joined",
        f"{notice.actor_id} joined trade session {notice.session_code}.",
    )


def _accepted(notice: TradeNotice) -> tuple[str, str]:
    return (
        "Trade accepted",
        f"{notice.actor_id} accepted the current offer in session {notice.session_code}.",
    )


def _rejected(notice: TradeNotice) -> tuple[str, str]:
    return (
        "Trade acceptance withdrawn",
        f"{notice.actor_id} withdrew acceptance in session {notice.session_code}.",
    )


def _message(notice: TradeNotice) -> tuple[str, str]:
    preview = str(notice.extra.get("content", ""))[:MESSAGE_PREVIEW_LENGTH]
    return (
        "New trade message",
        f"{notice.actor_id}: {preview}",
    )


def _completed(notice: TradeNotice) -> tuple[str, str]:
    return (
        "Trade completed",
        f"Trade session {notice.session_code} was completed.",
    )


def _deleted(notice: TradeNotice) -> tuple[str, str]:
    return (
        "Trade cancelled",
        f"{notice.actor_id} deleted trade session {notice.session_code}.",
    )


RENDERERS: dict[NotificationKind, Callable[[TradeNotice], tuple[str, str]]] = {
    NotificationKind.TRADE_JOINED: _joined,
    NotificationKind.TRADE_ACCEPTED: _accepted,
    NotificationKind.TRADE_REJECTED: _rejected,
    NotificationKind.TRADE_MESSAGE: _message,
    NotificationKind.TRADE_COMPLETED: _completed,
    NotificationKind.TRADE_DELETED: _deleted,
}

# Point events pushed to the recipient alongside the durable row
USER_EVENTS: dict[NotificationKind, TradeEvent] = {
    NotificationKind.TRADE_JOINED: TradeEvent.PARTNER_JOINED,
    NotificationKind.TRADE_ACCEPTED: TradeEvent.ACCEPTANCE_UPDATED,
    NotificationKind.TRADE_REJECTED: TradeEvent.ACCEPTANCE_UPDATED,
    NotificationKind.TRADE_MESSAGE: TradeEvent.MESSAGE,
    NotificationKind.TRADE_COMPLETED: TradeEvent.SESSION_COMPLETED,
    NotificationKind.TRADE_DELETED: TradeEvent.SESSION_DELETED,
}


async def record_notification(
    session: AsyncSession,
    notice: TradeNotice,
    broadcaster: Broadcaster | None = None,
) -> NotificationDB:
    """
    Persist a notification for the notice's recipient.

    The row is written in the caller's transaction. If a broadcaster is
    given, the recipient also gets a point event on their user topic.
    """
    title, message = RENDERERS[notice.kind](notice)
    data = {
        "session_code": notice.session_code,
        "actor_id": notice.actor_id,
        **notice.extra,
    }
    notification = await create_notification(
        session,
        user_id=notice.user_id,
        type_=notice.kind.value,
        title=title,
        message=message,
        data=data,
    )
    logger.debug("Recorded %s notification for %s", notice.kind.value, notice.user_id)

    if broadcaster is not None:
        broadcaster.publish_to_user(
            notice.user_id,
            USER_EVENTS[notice.kind],
            {"notification_id": notification.id, "type": notice.kind.value, **data},
        )
    return notification
