from tradebinder.db.database import get_session, init_db
from tradebinder.db.operations import (
    cache_offers,
    create_message,
    create_notification,
    create_trade_session,
    delete_trade_session,
    expire_session_if_stale,
    expire_stale_sessions_for,
    find_open_session,
    find_stack,
    get_auto_file_preference,
    get_items_for_update,
    get_trade_session_by_code,
    get_trade_session_by_id,
    get_tradeable_items,
    get_wish_entries,
    list_completed_sessions,
    list_messages,
    list_notifications,
    list_open_sessions,
    mark_notifications_read,
    mark_session_completed,
    session_code_exists,
)

__all__ = [
    "cache_offers",
    "create_message",
    "create_notification",
    "create_trade_session",
    "delete_trade_session",
    "expire_session_if_stale",
    "expire_stale_sessions_for",
    "find_open_session",
    "find_stack",
    "get_auto_file_preference",
    "get_items_for_update",
    "get_session",
    "get_trade_session_by_code",
    "get_trade_session_by_id",
    "get_tradeable_items",
    "get_wish_entries",
    "init_db",
    "list_completed_sessions",
    "list_messages",
    "list_notifications",
    "list_open_sessions",
    "mark_notifications_read",
    "mark_session_completed",
    "session_code_exists",
]
