"""
Integration tests for the REST API endpoints.

The app is built with ``create_app`` and its dependencies overridden so the
routes run against the in-memory SQLite coordinator from ``conftest``.
Owners authenticate with HS256 bearer tokens signed by the test secret.
The change feed runs through the sync ``TestClient`` with the publisher and
coordinator replaced by stubs, so no Redis or database is involved.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from trip_booking.api.app import create_app
from trip_booking.api.dependencies import (
    get_coordinator,
    get_db,
    get_identity_verifier,
    get_publisher,
)
from trip_booking.api.middleware import limiter
from trip_booking.domain.enums import TripStatus
from trip_booking.domain.exceptions import Unauthorized
from trip_booking.infrastructure.events import TripChanged
from trip_booking.infrastructure.identity import JWTIdentityVerifier
from trip_booking.infrastructure.repositories import DriverTokenRepository
from trip_booking.services.assignment import ActionResult
from tests.conftest import DRIVER_A, DRIVER_B, OWNER, STRANGER, create_trip

verifier = JWTIdentityVerifier("test-secret")


def _auth(identity=OWNER) -> dict[str, str]:
    token = verifier.create_access_token(identity.user_id, identity.email)
    return {"Authorization": f"Bearer {token}"}


async def _token_for(session_factory, trip_id, email=DRIVER_A) -> str:
    async with session_factory() as session:
        (token,) = await DriverTokenRepository(session).list_open(trip_id, email)
    return token.token


# ── Fixture ───────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def client(coordinator, session_factory):
    """AsyncClient against the app with SQLite-backed dependencies."""

    async def _test_db():
        async with session_factory() as session:
            yield session

    app = create_app()
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    app.dependency_overrides[get_identity_verifier] = lambda: verifier
    app.dependency_overrides[get_db] = _test_db
    limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ── Owner endpoints ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "database": "ok"}


@pytest.mark.asyncio
async def test_owner_endpoints_require_bearer(client: AsyncClient, trip):
    resp = await client.post(f"/api/v1/trips/{trip.id}/driver", json={"driver_email": DRIVER_A})
    assert resp.status_code == 401
    assert resp.headers["www-authenticate"] == "Bearer"
    assert resp.json() == {
        "error_code": "ERR_UNAUTHORIZED",
        "message": "Missing Bearer token",
        "reason": "missing_credentials",
        "next_action": "none",
    }


@pytest.mark.asyncio
async def test_bad_bearer_is_rejected(client: AsyncClient, trip):
    resp = await client.get(
        f"/api/v1/trips/{trip.id}", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert resp.status_code == 401
    assert resp.json()["reason"] == "invalid_credentials"


@pytest.mark.asyncio
async def test_get_trip(client: AsyncClient, trip):
    resp = await client.get(f"/api/v1/trips/{trip.id}", headers=_auth())
    assert resp.status_code == 200
    body = resp.json()
    assert body["id"] == trip.id
    assert body["status"] == "not confirmed"
    assert body["trip_destination"] == "Heathrow T5"


@pytest.mark.asyncio
async def test_get_trip_not_found(client: AsyncClient):
    resp = await client.get("/api/v1/trips/does-not-exist", headers=_auth())
    assert resp.status_code == 404
    assert resp.json()["error_code"] == "ERR_NOT_FOUND"


@pytest.mark.asyncio
async def test_assign_driver(client: AsyncClient, trip, dispatcher):
    resp = await client.post(
        f"/api/v1/trips/{trip.id}/driver",
        json={"driver_email": " Driver.A@Example.com "},
        headers=_auth(),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["trip"]["status"] == "pending"
    assert body["trip"]["driver"] == DRIVER_A
    assert body["driver_email"] == DRIVER_A
    assert body["token_reused"] is False
    assert body["magic_link"].startswith(f"https://trips.example.com/results/{trip.id}?driver_token=")
    assert body["warnings"] == []
    assert dispatcher.to(DRIVER_A)


@pytest.mark.asyncio
async def test_assign_by_non_owner_is_forbidden(client: AsyncClient, trip):
    resp = await client.post(
        f"/api/v1/trips/{trip.id}/driver",
        json={"driver_email": DRIVER_A},
        headers=_auth(STRANGER),
    )
    assert resp.status_code == 403
    assert resp.json()["reason"] == "not_owner"


@pytest.mark.asyncio
async def test_assign_invalid_email_is_422(client: AsyncClient, trip):
    resp = await client.post(
        f"/api/v1/trips/{trip.id}/driver",
        json={"driver_email": "nope"},
        headers=_auth(),
    )
    assert resp.status_code == 422
    assert resp.json()["error_code"] == "ERR_VALIDATION"
    assert resp.json()["next_action"] == "retry"


@pytest.mark.asyncio
async def test_disallowed_status_change_is_409(client: AsyncClient, session_factory):
    trip = await create_trip(session_factory, TripStatus.BOOKED, DRIVER_A)
    resp = await client.patch(
        f"/api/v1/trips/{trip.id}/status", json={"status": "pending"}, headers=_auth()
    )
    assert resp.status_code == 409
    assert resp.json()["error_code"] == "ERR_INVALID_TRANSITION"


@pytest.mark.asyncio
async def test_cancel_trip(client: AsyncClient, session_factory, dispatcher):
    trip = await create_trip(session_factory, TripStatus.PENDING, DRIVER_A)
    resp = await client.post(f"/api/v1/trips/{trip.id}/cancel", headers=_auth())
    assert resp.status_code == 200
    assert resp.json()["trip"]["status"] == "cancelled"
    assert resp.json()["trip"]["driver"] is None
    assert dispatcher.to(DRIVER_A)


@pytest.mark.asyncio
async def test_request_quote_delivery_failure_is_502(client: AsyncClient, trip, dispatcher):
    dispatcher.fail_all = True
    resp = await client.post(
        f"/api/v1/trips/{trip.id}/quote-requests",
        json={"driver_email": DRIVER_B},
        headers=_auth(),
    )
    assert resp.status_code == 502
    assert resp.json()["error_code"] == "ERR_NOTIFICATION"


# ── Driver endpoints ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_validate_then_accept(client: AsyncClient, session_factory, trip):
    await client.post(
        f"/api/v1/trips/{trip.id}/driver", json={"driver_email": DRIVER_A}, headers=_auth()
    )
    token = await _token_for(session_factory, trip.id)

    check = await client.post(
        f"/api/v1/trips/{trip.id}/driver-token/validate", json={"token": token}
    )
    assert check.status_code == 200
    assert check.json() == {
        "driver_email": DRIVER_A,
        "trip_status": "pending",
        "token_used": False,
        "can_take_action": True,
        "message": "",
    }

    accept = await client.post(
        f"/api/v1/trips/{trip.id}/respond", json={"token": token, "decision": "accept"}
    )
    assert accept.status_code == 200
    assert accept.json()["message"] == "Trip confirmed. Thank you!"
    assert accept.json()["trip"]["status"] == "confirmed"

    again = await client.post(
        f"/api/v1/trips/{trip.id}/respond", json={"token": token, "decision": "reject"}
    )
    assert again.status_code == 403
    assert again.json()["error_code"] == "ERR_TOKEN_USED"

    after = await client.post(
        f"/api/v1/trips/{trip.id}/driver-token/validate", json={"token": token}
    )
    assert after.json()["token_used"] is True
    assert after.json()["can_take_action"] is False


@pytest.mark.asyncio
async def test_reject(client: AsyncClient, session_factory, trip):
    await client.post(
        f"/api/v1/trips/{trip.id}/driver", json={"driver_email": DRIVER_A}, headers=_auth()
    )
    token = await _token_for(session_factory, trip.id)

    resp = await client.post(
        f"/api/v1/trips/{trip.id}/respond", json={"token": token, "decision": "reject"}
    )

    assert resp.status_code == 200
    assert resp.json()["trip"]["status"] == "rejected"
    assert resp.json()["trip"]["driver"] is None


@pytest.mark.asyncio
async def test_unknown_token_is_404(client: AsyncClient, trip):
    resp = await client.post(
        f"/api/v1/trips/{trip.id}/driver-token/validate", json={"token": "bogus"}
    )
    assert resp.status_code == 404
    assert resp.json()["next_action"] == "contact_owner"


@pytest.mark.asyncio
async def test_bad_decision_is_rejected_by_schema(client: AsyncClient, trip):
    resp = await client.post(
        f"/api/v1/trips/{trip.id}/respond", json={"token": "x", "decision": "maybe"}
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_legacy_confirm(client: AsyncClient, session_factory):
    trip = await create_trip(session_factory, TripStatus.PENDING, DRIVER_A)
    wrong = await client.post(
        f"/api/v1/trips/{trip.id}/legacy-confirm", json={"driver_email": DRIVER_B}
    )
    assert wrong.status_code == 403

    right = await client.post(
        f"/api/v1/trips/{trip.id}/legacy-confirm", json={"driver_email": DRIVER_A}
    )
    assert right.status_code == 200
    assert right.json()["trip"]["status"] == "confirmed"


# ── Quotes ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_quote_submit_and_list(client: AsyncClient, session_factory, trip):
    await client.post(
        f"/api/v1/trips/{trip.id}/driver", json={"driver_email": DRIVER_A}, headers=_auth()
    )
    token = await _token_for(session_factory, trip.id)

    first = await client.post(
        f"/api/v1/trips/{trip.id}/quotes",
        json={"price": 150, "currency": "eur", "driver_token": token},
    )
    assert first.status_code == 200
    assert first.json()["is_update"] is False
    assert first.json()["auto_confirmed"] is True
    assert first.json()["quote"]["currency"] == "EUR"

    second = await client.post(
        f"/api/v1/trips/{trip.id}/quotes",
        json={"price": 175, "currency": "EUR", "driver_token": token},
    )
    assert second.status_code == 200
    assert second.json()["is_update"] is True

    listed = await client.get(f"/api/v1/trips/{trip.id}/quotes", headers=_auth())
    assert listed.status_code == 200
    assert [(q["email"], q["price"]) for q in listed.json()] == [(DRIVER_A, 175.0)]


@pytest.mark.asyncio
async def test_quote_without_identity_is_401(client: AsyncClient, trip):
    resp = await client.post(
        f"/api/v1/trips/{trip.id}/quotes", json={"price": 10, "currency": "USD"}
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_quote_invalid_price(client: AsyncClient, trip):
    resp = await client.post(
        f"/api/v1/trips/{trip.id}/quotes",
        json={"price": -1, "currency": "USD"},
        headers=_auth(STRANGER),
    )
    assert resp.status_code == 422
    assert resp.json()["message"] == "Price must be a positive number"


# ── Change feed ───────────────────────────────────────────────────────


class StubPublisher:
    """Replays scripted ``read`` batches, then behaves like a client hang-up."""

    def __init__(self, latest: str = "7-0"):
        self.latest = latest
        self.batches: list[list] = []
        self.cursors: list[str] = []
        self.latest_calls = 0

    async def latest_id(self, trip_id: str) -> str:
        self.latest_calls += 1
        return self.latest

    async def read(self, trip_id: str, last_id: str = "$", *, block_ms=None):
        self.cursors.append(last_id)
        if not self.batches:
            raise WebSocketDisconnect(code=1000)
        return self.batches.pop(0)


class StubFeedCoordinator:
    def __init__(self):
        self.calls: list[dict] = []

    async def authorize_feed(self, trip_id, *, actor=None, driver_token=None) -> ActionResult:
        self.calls.append({"trip_id": trip_id, "actor": actor, "driver_token": driver_token})
        if actor is None and driver_token is None:
            return ActionResult.failure(
                Unauthorized(
                    "Use your driver link or sign in to follow this trip",
                    reason="missing_credentials",
                )
            )
        return ActionResult(ok=True)


def _changed(status: str, driver=DRIVER_A) -> TripChanged:
    return TripChanged(
        trip_id="trip-1", status=status, driver=driver, occurred_at="2026-01-01T00:00:00+00:00"
    )


@pytest.fixture
def feed_publisher():
    return StubPublisher()


@pytest.fixture
def feed_coordinator():
    return StubFeedCoordinator()


@pytest.fixture
def feed_client(feed_publisher, feed_coordinator):
    app = create_app()
    app.dependency_overrides[get_coordinator] = lambda: feed_coordinator
    app.dependency_overrides[get_publisher] = lambda: feed_publisher
    app.dependency_overrides[get_identity_verifier] = lambda: verifier
    return TestClient(app)


def _owner_jwt() -> str:
    return verifier.create_access_token(OWNER.user_id, OWNER.email)


def test_feed_resumes_from_last_event_id(feed_client, feed_publisher, feed_coordinator):
    feed_publisher.batches = [
        [("8-0", _changed("pending")), ("9-0", _changed("confirmed"))],
        [],
    ]
    url = f"/api/v1/trips/trip-1/events?last_event_id=5-0&access_token={_owner_jwt()}"

    with feed_client.websocket_connect(url) as ws:
        messages = [ws.receive_json() for _ in range(3)]

    assert messages == [
        {
            "type": "trip_changed",
            "id": "8-0",
            "trip_id": "trip-1",
            "status": "pending",
            "driver": DRIVER_A,
            "occurred_at": "2026-01-01T00:00:00+00:00",
        },
        {
            "type": "trip_changed",
            "id": "9-0",
            "trip_id": "trip-1",
            "status": "confirmed",
            "driver": DRIVER_A,
            "occurred_at": "2026-01-01T00:00:00+00:00",
        },
        {"type": "heartbeat"},
    ]
    assert feed_publisher.cursors[:2] == ["5-0", "9-0"]
    assert feed_publisher.latest_calls == 0
    (call,) = feed_coordinator.calls
    assert call["actor"].user_id == OWNER.user_id
    assert call["driver_token"] is None


def test_feed_without_cursor_starts_at_latest(feed_client, feed_publisher, feed_coordinator):
    feed_publisher.batches = [[]]

    with feed_client.websocket_connect("/api/v1/trips/trip-1/events?driver_token=abc") as ws:
        assert ws.receive_json() == {"type": "heartbeat"}

    assert feed_publisher.latest_calls == 1
    assert feed_publisher.cursors[0] == "7-0"
    assert feed_coordinator.calls == [{"trip_id": "trip-1", "actor": None, "driver_token": "abc"}]


def test_feed_without_credential_is_refused(feed_client, feed_publisher):
    with pytest.raises(WebSocketDisconnect) as exc:
        with feed_client.websocket_connect("/api/v1/trips/trip-1/events"):
            pass

    assert exc.value.code == 1008
    assert exc.value.reason == "Use your driver link or sign in to follow this trip"
    assert feed_publisher.cursors == []


def test_feed_with_bad_access_token_is_refused(feed_client, feed_coordinator):
    with pytest.raises(WebSocketDisconnect) as exc:
        with feed_client.websocket_connect("/api/v1/trips/trip-1/events?access_token=not-a-jwt"):
            pass

    assert exc.value.code == 1008
    assert exc.value.reason == "Invalid or expired token"
    assert feed_coordinator.calls == []
