"""
Trade session API endpoints.

Create and join sessions, view offers, negotiate selections, accept,
settle, and browse completed trades. Every endpoint acts as the caller
identified by the X-User-Id header.
"""

from datetime import UTC, date, datetime, time
from typing import Annotated, Any, Literal

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tradebinder.api.identity import get_current_user
from tradebinder.db.database import get_session
from tradebinder.models.db import TradeMessageDB, TradeSessionDB
from tradebinder.services import trade_session as trades
from tradebinder.services.broadcast import Broadcaster, DeferredBroadcaster, get_broadcaster

router = APIRouter(prefix="/trade", tags=["trade"])

CurrentUser = Annotated[str, Depends(get_current_user)]
DbSession = Annotated[AsyncSession, Depends(get_session)]


def get_event_buffer(
    broadcaster: Annotated[Broadcaster, Depends(get_broadcaster)],
) -> DeferredBroadcaster:
    """Per-request event buffer, delivered only after the request commits."""
    return DeferredBroadcaster(broadcaster)


EventBuffer = Annotated[DeferredBroadcaster, Depends(get_event_buffer)]


async def _commit_then_publish(session: AsyncSession, events: DeferredBroadcaster) -> None:
    try:
        await session.commit()
    except SQLAlchemyError:
        events.discard()
        raise
    events.flush()


# =============================================================================
# MODELS
# =============================================================================


class SessionResponse(BaseModel):
    """Trade session state."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    session_code: str
    status: str
    initiator_id: str
    partner_id: str | None = None
    expires_at: datetime
    initiator_selection: dict[str, int] = Field(default_factory=dict)
    partner_selection: dict[str, int] = Field(default_factory=dict)
    initiator_accepted: bool = False
    partner_accepted: bool = False
    completed_at: datetime | None = None


class CreateSessionRequest(BaseModel):
    """Request model for starting a trade session."""

    with_user_id: str | None = Field(
        default=None,
        description="Start directly with this user; the session is ACTIVE at once",
    )


class CardFactsResponse(BaseModel):
    card_id: str
    name: str
    set_code: str = ""
    set_name: str = ""
    rarity: str = ""
    collector_number: str = ""
    scryfall_id: str | None = None
    price_eur: float | None = None
    price_eur_foil: float | None = None


class OfferResponse(BaseModel):
    """One tradeable stack as offered to the other side."""

    item_id: str
    offerer_id: str
    receiver_id: str
    card: CardFactsResponse
    available_quantity: int
    condition: str
    condition_label: str = ""
    language: str
    is_alter: bool
    is_foil: bool
    is_match: bool
    priority: str | None = None
    foil_quantity: int = 0
    unit_price: float = 0.0
    foil_unit_price: float = 0.0
    value: float = 0.0
    ask_price: float | None = None


class OffersResponse(BaseModel):
    """
    Offers for a session.

    offers_a are the initiator's stacks, offers_b the partner's. Totals
    count matched offers only. After completion is_final is true and
    history holds the frozen record of what was exchanged.
    """

    session: SessionResponse
    offers_a: list[OfferResponse] = Field(default_factory=list)
    offers_b: list[OfferResponse] = Field(default_factory=list)
    total_value_a: float = 0.0
    total_value_b: float = 0.0
    match_count: int = 0
    is_final: bool = False
    history: dict[str, Any] | None = None


class SelectionRequest(BaseModel):
    """Request model for replacing the caller's selection."""

    selection: dict[str, Any] = Field(
        ...,
        description="Map of the caller's item ids to quantities to give. "
        "Malformed entries are ignored.",
        examples=[{"0b7c1b4e-5a9f-4a53-9d4c-3f1e2d6b8a10": 2}],
    )


class AcceptanceRequest(BaseModel):
    """Request model for setting the caller's acceptance."""

    accepted: bool = Field(default=True, description="False withdraws acceptance")


class DeleteResponse(BaseModel):
    session_code: str
    deleted: bool
    message: str = ""


class HistoryEntryResponse(SessionResponse):
    """A completed trade in the caller's history."""

    match_count: int = 0


class HistoryDetailResponse(BaseModel):
    session: SessionResponse
    history: dict[str, Any] = Field(default_factory=dict)
    match_count: int = 0


class MessageRequest(BaseModel):
    content: str = Field(..., description="Message text (1-1000 characters)")


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    session_id: str
    sender_id: str
    content: str
    created_at: datetime


def _session_response(trade: TradeSessionDB) -> SessionResponse:
    return SessionResponse.model_validate(trade)


def _history_entry(trade: TradeSessionDB) -> HistoryEntryResponse:
    return HistoryEntryResponse(
        **_session_response(trade).model_dump(),
        match_count=trades.history_match_count(trade),
    )


def _message_response(message: TradeMessageDB) -> MessageResponse:
    return MessageResponse.model_validate(message)


# =============================================================================
# SESSIONS
# =============================================================================


@router.post("/session", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_trade_session(
    response: Response,
    user_id: CurrentUser,
    session: DbSession,
    request: CreateSessionRequest | None = None,
) -> SessionResponse:
    """
    Start a trade session.

    Returns the caller's existing open session (200) instead of creating
    a duplicate (201).
    """
    with_user_id = request.with_user_id if request else None
    trade, created = await trades.create_session(session, user_id, with_user_id)
    if not created:
        response.status_code = status.HTTP_200_OK
    return _session_response(trade)


@router.get("/session", response_model=list[SessionResponse])
async def list_trade_sessions(user_id: CurrentUser, session: DbSession) -> list[SessionResponse]:
    """List the caller's open sessions, newest first."""
    return [_session_response(trade) for trade in await trades.list_sessions(session, user_id)]


# =============================================================================
# HISTORY
# =============================================================================


@router.get("/history", response_model=list[HistoryEntryResponse])
async def list_trade_history(
    user_id: CurrentUser,
    session: DbSession,
    start_date: Annotated[date | None, Query(description="Completed on or after")] = None,
    end_date: Annotated[date | None, Query(description="Completed on or before")] = None,
    sort: Literal["asc", "desc"] = "desc",
) -> list[HistoryEntryResponse]:
    """List the caller's completed trades."""
    start = datetime.combine(start_date, time.min, tzinfo=UTC) if start_date else None
    end = datetime.combine(end_date, time.max, tzinfo=UTC) if end_date else None
    history = await trades.list_history(
        session, user_id, start=start, end=end, descending=sort == "desc"
    )
    return [_history_entry(trade) for trade in history]


@router.get("/history/{session_id}", response_model=HistoryDetailResponse)
async def get_trade_history(
    session_id: str,
    user_id: CurrentUser,
    session: DbSession,
) -> HistoryDetailResponse:
    """Fetch one completed trade with its frozen record."""
    trade = await trades.get_history(session, session_id, user_id)
    return HistoryDetailResponse(
        session=_session_response(trade),
        history=trade.finalized_history or {},
        match_count=trades.history_match_count(trade),
    )


# =============================================================================
# NEGOTIATION
# =============================================================================


@router.post("/{code}/join", response_model=SessionResponse)
async def join_trade_session(
    code: str,
    user_id: CurrentUser,
    session: DbSession,
    events: EventBuffer,
) -> SessionResponse:
    """Join a pending session by its code."""
    trade = await trades.join_session(session, code, user_id, events)
    await _commit_then_publish(session, events)
    return _session_response(trade)


@router.get("/{code}/offers", response_model=OffersResponse)
async def get_trade_offers(
    code: str,
    user_id: CurrentUser,
    session: DbSession,
) -> OffersResponse:
    """
    View both sides' offers.

    Live while negotiating; frozen once the trade is completed.
    """
    view = await trades.view_offers(session, code, user_id)
    return OffersResponse(
        session=_session_response(view.trade),
        offers_a=[OfferResponse.model_validate(offer) for offer in view.offers["offers_a"]],
        offers_b=[OfferResponse.model_validate(offer) for offer in view.offers["offers_b"]],
        total_value_a=view.offers["total_value_a"],
        total_value_b=view.offers["total_value_b"],
        match_count=view.offers.get("match_count", 0),
        is_final=view.is_final,
        history=view.history,
    )


@router.post("/{code}/selection", response_model=SessionResponse)
async def update_trade_selection(
    code: str,
    request: SelectionRequest,
    user_id: CurrentUser,
    session: DbSession,
    events: EventBuffer,
) -> SessionResponse:
    """Replace the caller's selection. Resets both acceptances."""
    trade = await trades.update_selection(session, code, user_id, request.selection, events)
    await _commit_then_publish(session, events)
    return _session_response(trade)


@router.post("/{code}/acceptance", response_model=SessionResponse)
async def set_trade_acceptance(
    code: str,
    request: AcceptanceRequest,
    user_id: CurrentUser,
    session: DbSession,
    events: EventBuffer,
) -> SessionResponse:
    """Accept, or withdraw acceptance of, the current selections."""
    trade = await trades.set_acceptance(session, code, user_id, request.accepted, events)
    await _commit_then_publish(session, events)
    return _session_response(trade)


@router.post("/{code}/complete", response_model=SessionResponse)
async def complete_trade_session(
    code: str,
    user_id: CurrentUser,
    session: DbSession,
    events: EventBuffer,
) -> SessionResponse:
    """Settle the trade. Initiator only, after both sides accepted."""
    trade = await trades.complete_session(session, code, user_id, events)
    await _commit_then_publish(session, events)
    return _session_response(trade)


@router.delete("/{code}", response_model=DeleteResponse)
async def delete_trade_session(
    code: str,
    user_id: CurrentUser,
    session: DbSession,
    events: EventBuffer,
) -> DeleteResponse:
    """Delete a session. Initiator only."""
    await trades.delete_session(session, code, user_id, events)
    await _commit_then_publish(session, events)
    return DeleteResponse(
        session_code=code.upper(),
        deleted=True,
        message="Trade session deleted",
    )


# =============================================================================
# MESSAGES
# =============================================================================


@router.get("/{code}/messages", response_model=list[MessageResponse])
async def list_trade_messages(
    code: str,
    user_id: CurrentUser,
    session: DbSession,
    limit: Annotated[int, Query(ge=1)] = 50,
) -> list[MessageResponse]:
    """List a session's messages, oldest first."""
    messages = await trades.get_messages(session, code, user_id, limit)
    return [_message_response(message) for message in messages]


@router.post(
    "/{code}/message", response_model=MessageResponse, status_code=status.HTTP_201_CREATED
)
async def post_trade_message(
    code: str,
    request: MessageRequest,
    user_id: CurrentUser,
    session: DbSession,
    events: EventBuffer,
) -> MessageResponse:
    """Send a message to the other participant."""
    message = await trades.post_message(session, code, user_id, request.content, events)
    await _commit_then_publish(session, events)
    return _message_response(message)
