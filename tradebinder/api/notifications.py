"""
Notification API endpoints.

Lists the trade notifications recorded for the caller and marks them read.
"""

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from tradebinder.api.identity import get_current_user
from tradebinder.db import list_notifications, mark_notifications_read
from tradebinder.db.database import get_session

router = APIRouter(prefix="/notifications", tags=["notifications"])


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    title: str
    message: str
    data: dict[str, Any] | None = None
    read: bool
    created_at: datetime


class MarkReadRequest(BaseModel):
    ids: list[str] | None = Field(
        default=None,
        description="Notification ids to mark read; omit to mark all",
    )


class MarkReadResponse(BaseModel):
    marked: int


@router.get("", response_model=list[NotificationResponse])
async def get_notifications(
    user_id: Annotated[str, Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_session)],
    unread_only: bool = False,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
) -> list[NotificationResponse]:
    """Get the caller's notifications, newest first."""
    notifications = await list_notifications(session, user_id, unread_only=unread_only, limit=limit)
    return [NotificationResponse.model_validate(n) for n in notifications]


@router.post("/read", response_model=MarkReadResponse)
async def mark_read(
    request: MarkReadRequest,
    user_id: Annotated[str, Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> MarkReadResponse:
    """Mark some or all of the caller's notifications read."""
    marked = await mark_notifications_read(session, user_id, request.ids)
    return MarkReadResponse(marked=marked)
