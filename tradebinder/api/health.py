"""
Health check endpoints.

Liveness, plus a readiness probe that confirms the database answers and
the trade tables exist.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from tradebinder.config import settings
from tradebinder.db.database import get_session
from tradebinder.models.db import TradeSessionDB

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str = settings.app_name
    database: str | None = None
    schema_ready: bool | None = None


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Liveness probe. Does not touch the database."""
    return HealthResponse(status="healthy")


@router.get(
    "/ready",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse}},
)
async def ready(
    response: Response,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> HealthResponse:
    """
    Readiness probe.

    503 if the database is unreachable or the trade session table is
    missing (migrations not applied).
    """
    try:
        await session.execute(text("SELECT 1"))
    except Exception:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not ready", database="disconnected")

    try:
        await session.execute(select(TradeSessionDB.id).limit(1))
    except Exception:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not ready", database="connected", schema_ready=False)

    return HealthResponse(status="ready", database="connected", schema_ready=True)
