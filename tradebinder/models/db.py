"""
SQLAlchemy ORM models for persistent storage.

The catalog, inventory and wishlist tables are owned by collaborating
services; this core reads them and, during settlement only, moves
inventory rows between owners. Trade sessions, messages, notifications
and trader preferences are owned here.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from tradebinder.models.condition import CardCondition
from tradebinder.models.inventory import WishPriority
from tradebinder.models.trade import TradeStatus


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class CardDB(Base):
    """
    One printing of a card in the catalog.

    Read-only to the trade core. Prices are kept fresh by the catalog service.
    """

    __tablename__ = "cards"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), index=True)
    set_code: Mapped[str] = mapped_column(String(16), default="")
    set_name: Mapped[str] = mapped_column(String(255), default="")
    rarity: Mapped[str] = mapped_column(String(16), default="")
    collector_number: Mapped[str] = mapped_column(String(16), default="")
    scryfall_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    price_eur: Mapped[float | None] = mapped_column(Float, nullable=True)
    price_eur_foil: Mapped[float | None] = mapped_column(Float, nullable=True)

    def __repr__(self) -> str:
        return f"<CardDB(name={self.name}, set={self.set_code})>"


class InventoryItemDB(Base):
    """
    An owned stack of one printing.

    A stack is unique per owner by card, condition, language and alter flag.
    """

    __tablename__ = "inventory_items"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "card_id", "condition", "language", "is_alter", name="uq_inventory_stack"
        ),
        CheckConstraint("for_trade >= 0 AND for_trade <= quantity", name="ck_for_trade_range"),
        CheckConstraint(
            "foil_quantity >= 0 AND foil_quantity <= quantity", name="ck_foil_quantity_range"
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    card_id: Mapped[str] = mapped_column(String(36), ForeignKey("cards.id"), index=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    foil_quantity: Mapped[int] = mapped_column(Integer, default=0)
    condition: Mapped[str] = mapped_column(String(3), default=CardCondition.NEAR_MINT.value)
    language: Mapped[str] = mapped_column(String(8), default="EN")
    is_alter: Mapped[bool] = mapped_column(Boolean, default=False)
    for_trade: Mapped[int] = mapped_column(Integer, default=0, index=True)
    trade_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    card: Mapped["CardDB"] = relationship(lazy="joined")

    def __repr__(self) -> str:
        return (
            f"<InventoryItemDB(user={self.user_id}, card={self.card_id}, "
            f"qty={self.quantity}, for_trade={self.for_trade})>"
        )


class WishEntryDB(Base):
    """A card a user wants, with optional constraints on what they accept."""

    __tablename__ = "wishlist_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    card_id: Mapped[str] = mapped_column(String(36), ForeignKey("cards.id"), index=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    priority: Mapped[str] = mapped_column(String(8), default=WishPriority.NORMAL.value)
    max_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    min_condition: Mapped[str | None] = mapped_column(String(3), nullable=True)
    foil_only: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    card: Mapped["CardDB"] = relationship(lazy="joined")

    def __repr__(self) -> str:
        return f"<WishEntryDB(user={self.user_id}, card={self.card_id})>"


class TraderPreferencesDB(Base):
    """Standing per-user trade preferences."""

    __tablename__ = "trader_preferences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)

    # Received cards are filed into the collection automatically on settlement
    auto_file_trades: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<TraderPreferencesDB(user={self.user_id}, auto_file={self.auto_file_trades})>"


class TradeSessionDB(Base):
    """
    A negotiation between two traders.

    The row is the only source of truth for session state; every
    transition is a guarded read-modify-write of this row.
    """

    __tablename__ = "trade_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    session_code: Mapped[str] = mapped_column(String(16), unique=True, index=True)
    initiator_id: Mapped[str] = mapped_column(String(255), index=True)
    partner_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    status: Mapped[str] = mapped_column(
        String(16), default=TradeStatus.PENDING.value, index=True
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    # Selections are {item_id: quantity}
    initiator_selection: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    partner_selection: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    initiator_accepted: Mapped[bool] = mapped_column(Boolean, default=False)
    partner_accepted: Mapped[bool] = mapped_column(Boolean, default=False)

    # Memo of the last offers view; overwritten on every read while ACTIVE
    cached_offers: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Written once at completion, never recomputed
    finalized_history: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<TradeSessionDB(code={self.session_code}, status={self.status})>"


class TradeMessageDB(Base):
    """A chat message inside a trade session."""

    __tablename__ = "trade_messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("trade_sessions.id", ondelete="CASCADE"), index=True
    )
    sender_id: Mapped[str] = mapped_column(String(255), index=True)
    content: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )

    def __repr__(self) -> str:
        return f"<TradeMessageDB(session={self.session_id}, sender={self.sender_id})>"


class NotificationDB(Base):
    """A durable point-in-time notification for one user."""

    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    type: Mapped[str] = mapped_column(String(32))
    title: Mapped[str] = mapped_column(String(255))
    message: Mapped[str] = mapped_column(Text)
    data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<NotificationDB(user={self.user_id}, type={self.type})>"
