from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tradebinder.db.database import get_session
from tradebinder.main import app
from tradebinder.models import failure as failure_module
from tradebinder.models.condition import CardCondition
from tradebinder.models.db import (
    Base,
    CardDB,
    InventoryItemDB,
    TraderPreferencesDB,
    WishEntryDB,
)
from tradebinder.models.inventory import WishPriority
from tradebinder.services.broadcast import InProcessBroadcaster


@pytest.fixture(autouse=True)
def clear_finalized_responses():
    """Clear the finalized responses set between tests.

    This prevents test isolation issues where Python reuses memory
    addresses for new objects, causing id() collisions with previously
    finalized responses.
    """
    failure_module._finalized_responses.clear()
    yield
    failure_module._finalized_responses.clear()


@pytest.fixture
async def async_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create an in-memory SQLite engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def broadcaster() -> InProcessBroadcaster:
    """A fresh broadcaster per test, so subscriptions never leak."""
    return InProcessBroadcaster()


class Seeder:
    """Writes catalog, inventory, wishlist and preference rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def card(
        self,
        name: str,
        price_eur: float | None = None,
        price_eur_foil: float | None = None,
        set_code: str = "M21",
    ) -> CardDB:
        card = CardDB(
            name=name,
            set_code=set_code,
            set_name=f"Set {set_code}",
            rarity="rare",
            collector_number="1",
            price_eur=price_eur,
            price_eur_foil=price_eur_foil,
        )
        self.session.add(card)
        await self.session.flush()
        return card

    async def item(
        self,
        user_id: str,
        card: CardDB,
        quantity: int = 1,
        for_trade: int | None = None,
        foil_quantity: int = 0,
        condition: CardCondition = CardCondition.NEAR_MINT,
        language: str = "EN",
        is_alter: bool = False,
    ) -> InventoryItemDB:
        item = InventoryItemDB(
            user_id=user_id,
            card_id=card.id,
            card=card,
            quantity=quantity,
            for_trade=quantity if for_trade is None else for_trade,
            foil_quantity=foil_quantity,
            condition=condition.value,
            language=language,
            is_alter=is_alter,
        )
        self.session.add(item)
        await self.session.flush()
        return item

    async def wish(
        self,
        user_id: str,
        card: CardDB,
        priority: WishPriority = WishPriority.NORMAL,
    ) -> WishEntryDB:
        wish = WishEntryDB(
            user_id=user_id,
            card_id=card.id,
            card=card,
            priority=priority.value,
        )
        self.session.add(wish)
        await self.session.flush()
        return wish

    async def auto_file(self, user_id: str, enabled: bool) -> TraderPreferencesDB:
        prefs = TraderPreferencesDB(user_id=user_id, auto_file_trades=enabled)
        self.session.add(prefs)
        await self.session.flush()
        return prefs


@pytest.fixture
def seed(session: AsyncSession) -> Seeder:
    return Seeder(session)


@pytest.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async test client with overridden database session."""

    async def override_get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
