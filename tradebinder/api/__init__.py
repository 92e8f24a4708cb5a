from tradebinder.api.health import router as health_router
from tradebinder.api.notifications import router as notifications_router
from tradebinder.api.trade import router as trade_router

__all__ = [
    "health_router",
    "notifications_router",
    "trade_router",
]
