"""Tests for trade API endpoints."""

from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tradebinder.api.trade import _commit_then_publish
from tradebinder.main import app, known_error_handler, unknown_error_handler
from tradebinder.models.db import InventoryItemDB
from tradebinder.models.failure import NotFoundError
from tradebinder.models.trade import TradeEvent
from tradebinder.services.broadcast import (
    DeferredBroadcaster,
    InProcessBroadcaster,
    get_broadcaster,
    session_topic,
    user_topic,
)


def _as(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


@pytest.fixture
async def stock(session: AsyncSession, seed) -> dict[str, str]:
    """Committed inventory: Alice trades Bolts for Bob's Counterspells."""
    bolt = await seed.card("Lightning Bolt", price_eur=2.5)
    counterspell = await seed.card("Counterspell", price_eur=1.25)
    alice_bolt = await seed.item("alice", bolt, quantity=4, for_trade=4)
    bob_counterspell = await seed.item("bob", counterspell, quantity=2)
    await seed.wish("alice", counterspell)
    await seed.wish("bob", bolt)
    await session.commit()
    return {"alice_bolt": alice_bolt.id, "bob_counterspell": bob_counterspell.id}


async def _open(client: AsyncClient) -> str:
    response = await client.post(
        "/trade/session", json={"with_user_id": "bob"}, headers=_as("alice")
    )
    assert response.status_code == 201
    return response.json()["session_code"]


async def _accept_both(client: AsyncClient, code: str) -> None:
    for user in ("alice", "bob"):
        response = await client.post(
            f"/trade/{code}/acceptance", json={"accepted": True}, headers=_as(user)
        )
        assert response.status_code == 200


class TestIdentity:
    async def test_missing_header_is_401(self, client: AsyncClient) -> None:
        """Requests without a caller id get an unauthenticated failure envelope."""
        response = await client.get("/trade/session")

        assert response.status_code == 401
        data = response.json()
        assert data["outcome"] == "known_failure"
        assert data["failure"]["kind"] == "unauthenticated"

    async def test_blank_header_is_401(self, client: AsyncClient) -> None:
        response = await client.get("/trade/session", headers=_as("   "))

        assert response.status_code == 401


class TestSessionEndpoints:
    async def test_create_pending_session(self, client: AsyncClient) -> None:
        """Creating without a body starts a PENDING session."""
        response = await client.post("/trade/session", headers=_as("alice"))

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "PENDING"
        assert data["initiator_id"] == "alice"
        assert data["partner_id"] is None
        assert data["initiator_selection"] == {}
        assert data["initiator_accepted"] is False

    async def test_create_targeted_session(self, client: AsyncClient) -> None:
        response = await client.post(
            "/trade/session", json={"with_user_id": "bob"}, headers=_as("alice")
        )

        assert response.status_code == 201
        assert response.json()["status"] == "ACTIVE"
        assert response.json()["partner_id"] == "bob"

    async def test_existing_session_returned_with_200(self, client: AsyncClient) -> None:
        first = await client.post("/trade/session", headers=_as("alice"))
        second = await client.post("/trade/session", headers=_as("alice"))

        assert second.status_code == 200
        assert second.json()["id"] == first.json()["id"]

    async def test_self_target_is_409(self, client: AsyncClient) -> None:
        response = await client.post(
            "/trade/session", json={"with_user_id": "alice"}, headers=_as("alice")
        )

        assert response.status_code == 409
        assert response.json()["failure"]["kind"] == "invalid_state"

    async def test_list_sessions(self, client: AsyncClient) -> None:
        code = await _open(client)

        response = await client.get("/trade/session", headers=_as("bob"))

        assert response.status_code == 200
        assert [s["session_code"] for s in response.json()] == [code]

    async def test_join(self, client: AsyncClient) -> None:
        created = await client.post("/trade/session", headers=_as("alice"))
        code = created.json()["session_code"]

        response = await client.post(f"/trade/{code.lower()}/join", headers=_as("bob"))

        assert response.status_code == 200
        assert response.json()["status"] == "ACTIVE"
        assert response.json()["partner_id"] == "bob"

    async def test_join_unknown_is_404(self, client: AsyncClient) -> None:
        response = await client.post("/trade/NOPE42/join", headers=_as("bob"))

        assert response.status_code == 404
        failure = response.json()["failure"]
        assert failure["kind"] == "not_found"
        assert failure["message"] == "Trade session not found"
        assert failure["suggestion"]


class TestNegotiation:
    async def test_offers(self, client: AsyncClient, stock: dict[str, str]) -> None:
        """Offers carry match flags, available quantity and matched totals."""
        code = await _open(client)

        response = await client.get(f"/trade/{code}/offers", headers=_as("bob"))

        assert response.status_code == 200
        data = response.json()
        assert data["is_final"] is False
        assert data["session"]["session_code"] == code
        [offer] = data["offers_a"]
        assert offer["item_id"] == stock["alice_bolt"]
        assert offer["is_match"] is True
        assert offer["available_quantity"] == 4
        assert offer["card"]["name"] == "Lightning Bolt"
        assert data["total_value_a"] == 10.0
        assert offer["value"] == 10.0
        assert data["total_value_b"] == 2.5
        assert data["match_count"] == 2

    async def test_offers_outsider_is_403(self, client: AsyncClient, stock) -> None:
        code = await _open(client)

        response = await client.get(f"/trade/{code}/offers", headers=_as("mallory"))

        assert response.status_code == 403
        assert response.json()["failure"]["kind"] == "forbidden"

    async def test_selection_resets_acceptance(
        self, client: AsyncClient, stock: dict[str, str]
    ) -> None:
        code = await _open(client)
        await _accept_both(client, code)

        response = await client.post(
            f"/trade/{code}/selection",
            json={"selection": {stock["alice_bolt"]: 2, "bogus": 1}},
            headers=_as("alice"),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["initiator_selection"] == {stock["alice_bolt"]: 2}
        assert data["initiator_accepted"] is False
        assert data["partner_accepted"] is False

    async def test_selection_body_required(self, client: AsyncClient, stock) -> None:
        code = await _open(client)

        response = await client.post(f"/trade/{code}/selection", json={}, headers=_as("alice"))

        assert response.status_code == 422

    async def test_acceptance(self, client: AsyncClient, stock) -> None:
        code = await _open(client)

        response = await client.post(
            f"/trade/{code}/acceptance", json={"accepted": True}, headers=_as("bob")
        )

        assert response.json()["partner_accepted"] is True
        assert response.json()["initiator_accepted"] is False


class TestCompletion:
    async def test_complete_requires_acceptance(self, client: AsyncClient, stock) -> None:
        code = await _open(client)

        response = await client.post(f"/trade/{code}/complete", headers=_as("alice"))

        assert response.status_code == 409
        assert response.json()["failure"]["message"] == "Both users must accept before completion"

    async def test_partner_cannot_complete(self, client: AsyncClient, stock) -> None:
        code = await _open(client)
        await _accept_both(client, code)

        response = await client.post(f"/trade/{code}/complete", headers=_as("bob"))

        assert response.status_code == 403

    async def test_complete_and_view_history(
        self,
        client: AsyncClient,
        stock: dict[str, str],
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        """A completed trade moves inventory and is served from its frozen record."""
        code = await _open(client)
        await client.post(
            f"/trade/{code}/selection",
            json={"selection": {stock["alice_bolt"]: 2}},
            headers=_as("alice"),
        )
        await client.post(
            f"/trade/{code}/selection",
            json={"selection": {stock["bob_counterspell"]: 2}},
            headers=_as("bob"),
        )
        await _accept_both(client, code)

        completed = await client.post(f"/trade/{code}/complete", headers=_as("alice"))
        again = await client.post(f"/trade/{code}/complete", headers=_as("alice"))
        offers = await client.get(f"/trade/{code}/offers", headers=_as("bob"))
        history = await client.get("/trade/history", headers=_as("bob"))

        assert completed.status_code == 200
        assert completed.json()["status"] == "COMPLETED"
        assert completed.json()["completed_at"] is not None
        assert again.status_code == 409

        assert offers.json()["is_final"] is True
        assert offers.json()["history"]["initiator"]["total_quantity"] == 2
        assert offers.json()["total_value_a"] == 10.0

        [entry] = history.json()
        assert entry["session_code"] == code
        assert entry["match_count"] == 2

        detail = await client.get(f"/trade/history/{entry['id']}", headers=_as("alice"))
        assert detail.status_code == 200
        assert detail.json()["history"]["partner"]["items"][0]["quantity"] == 2

        async with session_factory() as session:
            result = await session.execute(
                select(InventoryItemDB).where(InventoryItemDB.user_id == "bob")
            )
            bob_stacks = {item.card.name: item.quantity for item in result.scalars()}
        assert bob_stacks == {"Lightning Bolt": 2}

    async def test_invalid_selection_is_422_and_rolled_back(
        self,
        client: AsyncClient,
        stock: dict[str, str],
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        """Settlement refusing a selection leaves the session ACTIVE."""
        code = await _open(client)
        # Bob tries to give Alice's own Bolts
        await client.post(
            f"/trade/{code}/selection",
            json={"selection": {stock["alice_bolt"]: 1}},
            headers=_as("bob"),
        )
        await _accept_both(client, code)

        response = await client.post(f"/trade/{code}/complete", headers=_as("alice"))
        offers = await client.get(f"/trade/{code}/offers", headers=_as("alice"))

        assert response.status_code == 422
        assert response.json()["failure"]["kind"] == "invariant_violation"
        assert offers.json()["session"]["status"] == "ACTIVE"

        async with session_factory() as session:
            item = await session.get(InventoryItemDB, stock["alice_bolt"])
            assert item is not None
            assert item.quantity == 4

    async def test_history_date_filter_and_sort(self, client: AsyncClient, stock) -> None:
        code = await _open(client)
        await _accept_both(client, code)
        await client.post(f"/trade/{code}/complete", headers=_as("alice"))

        future = await client.get(
            "/trade/history", params={"start_date": "2999-01-01"}, headers=_as("alice")
        )
        ascending = await client.get(
            "/trade/history", params={"sort": "asc"}, headers=_as("alice")
        )
        bad_sort = await client.get(
            "/trade/history", params={"sort": "sideways"}, headers=_as("alice")
        )

        assert future.json() == []
        assert len(ascending.json()) == 1
        assert bad_sort.status_code == 422

    async def test_history_record_of_unknown_session_is_404(self, client: AsyncClient) -> None:
        response = await client.get("/trade/history/does-not-exist", headers=_as("alice"))

        assert response.status_code == 404


class TestDeleteEndpoint:
    async def test_delete(self, client: AsyncClient, stock) -> None:
        code = await _open(client)

        forbidden = await client.delete(f"/trade/{code}", headers=_as("bob"))
        deleted = await client.delete(f"/trade/{code}", headers=_as("alice"))
        gone = await client.get(f"/trade/{code}/offers", headers=_as("alice"))

        assert forbidden.status_code == 403
        assert deleted.status_code == 200
        assert deleted.json() == {
            "session_code": code,
            "deleted": True,
            "message": "Trade session deleted",
        }
        assert gone.status_code == 404


class TestMessageEndpoints:
    async def test_post_and_list_messages(self, client: AsyncClient, stock) -> None:
        code = await _open(client)

        posted = await client.post(
            f"/trade/{code}/message",
            json={"content": "4 bolts for 2 counters?"},
            headers=_as("bob"),
        )
        listed = await client.get(f"/trade/{code}/messages", headers=_as("alice"))

        assert posted.status_code == 201
        assert posted.json()["sender_id"] == "bob"
        assert [m["content"] for m in listed.json()] == ["4 bolts for 2 counters?"]

    async def test_empty_message_is_400(self, client: AsyncClient, stock) -> None:
        code = await _open(client)

        response = await client.post(
            f"/trade/{code}/message", json={"content": "  "}, headers=_as("bob")
        )

        assert response.status_code == 400
        assert response.json()["failure"]["kind"] == "invalid_input"


class TestNotificationEndpoints:
    async def test_list_and_mark_read(self, client: AsyncClient, stock) -> None:
        """Trade events leave notifications the user can read and dismiss."""
        code = await _open(client)
        await client.post(f"/trade/{code}/message", json={"content": "hi"}, headers=_as("bob"))

        listed = await client.get("/notifications", headers=_as("alice"))
        marked = await client.post("/notifications/read", json={}, headers=_as("alice"))
        unread = await client.get(
            "/notifications", params={"unread_only": True}, headers=_as("alice")
        )

        assert [n["type"] for n in listed.json()] == ["TRADE_MESSAGE"]
        assert listed.json()[0]["data"]["session_code"] == code
        assert marked.json() == {"marked": 1}
        assert unread.json() == []


class TestErrorHandlers:
    async def test_known_error_rendered_with_status(self) -> None:
        error = NotFoundError("Trade session not found")

        response = await known_error_handler(None, error)  # type: ignore[arg-type]

        assert response.status_code == 404
        assert b'"outcome":"known_failure"' in response.body

    async def test_unknown_error_rendered_as_500(self) -> None:
        class FakeURL:
            path = "/trade/session"

        class FakeRequest:
            method = "GET"
            url = FakeURL()

        request = FakeRequest()

        error = RuntimeError("boom")

        response = await unknown_error_handler(request, error)  # type: ignore[arg-type]

        assert response.status_code == 500
        assert b'"kind":"unknown"' in response.body
        assert b"boom" not in response.body


class TestEventDelivery:
    async def test_events_delivered_after_commit(self, client: AsyncClient, stock) -> None:
        """Subscribers get session events once the request has committed."""
        broadcaster = InProcessBroadcaster()
        app.dependency_overrides[get_broadcaster] = lambda: broadcaster
        code = await _open(client)
        session_queue = broadcaster.subscribe(session_topic(code))
        alice_queue = broadcaster.subscribe(user_topic("alice"))

        response = await client.post(
            f"/trade/{code}/acceptance", json={"accepted": True}, headers=_as("bob")
        )

        assert response.status_code == 200
        assert session_queue.get_nowait().event == "acceptance-updated"
        assert not alice_queue.empty()

    async def test_refused_request_publishes_nothing(self, client: AsyncClient, stock) -> None:
        broadcaster = InProcessBroadcaster()
        app.dependency_overrides[get_broadcaster] = lambda: broadcaster
        code = await _open(client)
        queue = broadcaster.subscribe(session_topic(code))

        response = await client.post(f"/trade/{code}/complete", headers=_as("alice"))

        assert response.status_code == 409
        assert queue.empty()

    async def test_failed_commit_discards_events(self) -> None:
        """Events of a transaction that fails to commit are never delivered."""
        broadcaster = InProcessBroadcaster()
        queue = broadcaster.subscribe(session_topic("ABC234"))
        events = DeferredBroadcaster(broadcaster)
        events.publish_to_session("ABC234", TradeEvent.SESSION_COMPLETED, {})
        session = AsyncMock()
        session.commit.side_effect = OperationalError("COMMIT", {}, Exception("connection lost"))

        with pytest.raises(OperationalError):
            await _commit_then_publish(session, events)

        assert queue.empty()
        assert events.flush() == 0
