"""Quote registry: validation, upsert per (trip, driver), listing."""

import math
from datetime import timedelta

import pytest

from trip_booking.domain.entities import Quote, utcnow
from trip_booking.domain.exceptions import ValidationError
from trip_booking.infrastructure.repositories import QuoteRepository
from trip_booking.services.quotes import QuoteRegistry
from tests.conftest import DRIVER_A, DRIVER_B


class TestQuoteValidation:
    @pytest.mark.parametrize("price", [0, -5, "abc", None, math.inf, math.nan])
    def test_bad_prices(self, price):
        with pytest.raises(ValidationError, match="positive number"):
            Quote.validate_price(price)

    def test_numeric_string_price_is_accepted(self):
        assert Quote.validate_price("12.5") == 12.5

    def test_currency_is_upper_cased(self):
        assert Quote.validate_currency(" eur ", ["EUR"]) == "EUR"

    @pytest.mark.parametrize("currency", ["", None, "BTC", "EURO"])
    def test_unknown_currency(self, currency):
        with pytest.raises(ValidationError, match="Invalid currency"):
            Quote.validate_currency(currency, ["USD", "EUR"])


class TestQuoteRegistry:
    @pytest.mark.asyncio
    async def test_first_submission_inserts(self, db_session, trip):
        result = await QuoteRegistry(db_session).submit(trip.id, DRIVER_A, 120, "usd")

        assert result.is_update is False
        assert result.quote.price == 120.0
        assert result.quote.currency == "USD"
        assert result.quote.email == DRIVER_A

    @pytest.mark.asyncio
    async def test_resubmission_updates_same_row(self, db_session, trip):
        registry = QuoteRegistry(db_session)
        first = await registry.submit(trip.id, DRIVER_A, 120, "USD")
        second = await registry.submit(trip.id, " Driver.A@Example.com ", 99.5, "EUR")

        assert second.is_update is True
        assert second.quote.id == first.quote.id
        quotes = await registry.list_for(trip.id)
        assert len(quotes) == 1
        assert (quotes[0].price, quotes[0].currency) == (99.5, "EUR")

    @pytest.mark.asyncio
    async def test_invalid_input_writes_nothing(self, db_session, trip):
        registry = QuoteRegistry(db_session)
        with pytest.raises(ValidationError):
            await registry.submit(trip.id, DRIVER_A, -1, "USD")
        with pytest.raises(ValidationError):
            await registry.submit(trip.id, "not-an-email", 10, "USD")
        assert await registry.list_for(trip.id) == []

    @pytest.mark.asyncio
    async def test_owner_view_sees_all_driver_view_sees_own(self, db_session, trip):
        registry = QuoteRegistry(db_session)
        await registry.submit(trip.id, DRIVER_A, 100, "USD")
        await registry.submit(trip.id, DRIVER_B, 90, "USD")

        assert {q.email for q in await registry.list_for(trip.id)} == {DRIVER_A, DRIVER_B}
        own = await registry.list_for(trip.id, "DRIVER.B@example.com")
        assert [q.email for q in own] == [DRIVER_B]

    @pytest.mark.asyncio
    async def test_owner_view_is_newest_first(self, db_session, trip):
        registry = QuoteRegistry(db_session)
        await registry.submit(trip.id, DRIVER_A, 100, "USD")
        await registry.submit(trip.id, DRIVER_B, 90, "USD")

        quotes = await registry.list_for(trip.id)
        assert quotes[0].created_at >= quotes[1].created_at
        assert quotes[0].email == DRIVER_B


class TestQuoteRepositoryUpsert:
    @pytest.mark.asyncio
    async def test_returns_the_row_it_wrote(self, db_session, trip):
        repo = QuoteRepository(db_session)
        created = utcnow()
        first = await repo.upsert(
            trip_id=trip.id, email=DRIVER_A, price=80.0, currency="USD", now=created
        )
        later = created + timedelta(minutes=5)
        second = await repo.upsert(
            trip_id=trip.id, email=DRIVER_A, price=95.0, currency="GBP", now=later
        )

        assert second.id == first.id
        assert (second.price, second.currency) == (95.0, "GBP")
        assert second.created_at == first.created_at
        assert second.updated_at == later
        assert await repo.get(trip.id, DRIVER_A) == second
