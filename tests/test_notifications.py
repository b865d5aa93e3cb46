"""E-mail dispatchers and the trip change feed (Redis mocked)."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from trip_booking.config import Settings
from trip_booking.domain.entities import Trip
from trip_booking.domain.enums import TripStatus
from trip_booking.infrastructure.events import TripChanged, TripEventPublisher, stream_key
from trip_booking.infrastructure.notifications import (
    HttpEmailDispatcher,
    LoggingDispatcher,
    build_dispatcher,
)


def _dispatcher(handler, **kwargs) -> HttpEmailDispatcher:
    return HttpEmailDispatcher(
        api_url="https://mail.test/",
        api_key="key-123",
        sender="Trips <info@trips.test>",
        backoff_base=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestHttpEmailDispatcher:
    @pytest.mark.asyncio
    async def test_posts_message(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "em_1"})

        result = await _dispatcher(handler).send("d@x.com", "Hello", "Body text")

        assert result.success
        assert result.message_id == "em_1"
        (request,) = seen
        assert str(request.url) == "https://mail.test/emails"
        assert request.headers["Authorization"] == "Bearer key-123"
        assert json.loads(request.content) == {
            "from": "Trips <info@trips.test>",
            "to": ["d@x.com"],
            "subject": "Hello",
            "text": "Body text",
        }

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        responses = iter([httpx.Response(503), httpx.Response(200, json={"id": "em_2"})])
        result = await _dispatcher(lambda request: next(responses)).send("d@x.com", "s", "b")
        assert result.success
        assert result.message_id == "em_2"

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, text="bad sender")

        result = await _dispatcher(handler).send("d@x.com", "s", "b")

        assert not result.success
        assert result.error.startswith("HTTP 400")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        result = await _dispatcher(handler, max_attempts=2).send("d@x.com", "s", "b")

        assert not result.success
        assert "connection refused" in result.error
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_non_json_success_body(self):
        result = await _dispatcher(lambda request: httpx.Response(202, text="queued")).send(
            "d@x.com", "s", "b"
        )
        assert result.success
        assert result.message_id is None


class TestBuildDispatcher:
    def test_without_api_key_logs_only(self):
        assert isinstance(build_dispatcher(Settings(email_api_key="")), LoggingDispatcher)

    def test_with_api_key_uses_http(self):
        dispatcher = build_dispatcher(Settings(email_api_key="k", email_max_attempts=5))
        assert isinstance(dispatcher, HttpEmailDispatcher)
        assert dispatcher.max_attempts == 5

    @pytest.mark.asyncio
    async def test_logging_dispatcher_reports_failure(self):
        result = await LoggingDispatcher().send("d@x.com", "s", "b")
        assert not result.success
        assert result.error == "Email service not configured"


class TestTripEventPublisher:
    @pytest.mark.asyncio
    async def test_publish_appends_capped_entry(self):
        redis = AsyncMock()
        redis.xadd = AsyncMock(return_value="5-0")
        trip = Trip(id="t1", status=TripStatus.PENDING, driver="d@x.com")

        event_id = await TripEventPublisher(redis, maxlen=50).publish(trip)

        assert event_id == "5-0"
        args, kwargs = redis.xadd.await_args
        assert args[0] == "trip:t1:events"
        assert args[1]["status"] == "pending"
        assert args[1]["driver"] == "d@x.com"
        assert kwargs == {"maxlen": 50, "approximate": True}

    @pytest.mark.asyncio
    async def test_missing_driver_is_blank_on_the_wire(self):
        redis = AsyncMock()
        trip = Trip(id="t1", status=TripStatus.CANCELLED)

        await TripEventPublisher(redis).publish(trip)

        assert redis.xadd.await_args.args[1]["driver"] == ""

    @pytest.mark.asyncio
    async def test_publish_failure_is_swallowed(self):
        redis = AsyncMock()
        redis.xadd = AsyncMock(side_effect=RedisConnectionError("down"))
        trip = Trip(id="t1", status=TripStatus.PENDING)

        assert await TripEventPublisher(redis).publish(trip) is None

    @pytest.mark.asyncio
    async def test_read_decodes_entries_in_order(self):
        redis = AsyncMock()
        redis.xread = AsyncMock(
            return_value=[
                (
                    stream_key("t1"),
                    [
                        ("1-0", {"trip_id": "t1", "status": "pending", "driver": "d@x.com", "occurred_at": "a"}),
                        ("2-0", {"trip_id": "t1", "status": "cancelled", "driver": "", "occurred_at": "b"}),
                    ],
                )
            ]
        )

        events = await TripEventPublisher(redis).read("t1", "0-0", block_ms=10)

        redis.xread.assert_awaited_once_with({"trip:t1:events": "0-0"}, count=100, block=10)
        assert [event_id for event_id, _ in events] == ["1-0", "2-0"]
        assert events[1][1] == TripChanged("t1", "cancelled", None, "b")

    @pytest.mark.asyncio
    async def test_read_timeout_is_empty(self):
        redis = AsyncMock()
        redis.xread = AsyncMock(return_value=None)
        assert await TripEventPublisher(redis).read("t1") == []

    @pytest.mark.asyncio
    async def test_latest_id(self):
        redis = AsyncMock()
        redis.xrevrange = AsyncMock(side_effect=[[], [("9-1", {})]])
        publisher = TripEventPublisher(redis)

        assert await publisher.latest_id("t1") == "0-0"
        assert await publisher.latest_id("t1") == "9-1"
