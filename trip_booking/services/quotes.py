"""Quote Registry: one price per (trip, driver e-mail), upserted atomically."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from trip_booking.config import settings
from trip_booking.domain.entities import Quote, normalize_email, utcnow, validate_email
from trip_booking.infrastructure.repositories import QuoteRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuoteSubmission:
    quote: Quote
    is_update: bool


class QuoteRegistry:
    def __init__(self, session: AsyncSession, allowed_currencies: Optional[list[str]] = None):
        self.quotes = QuoteRepository(session)
        self.allowed_currencies = allowed_currencies or settings.allowed_currencies

    async def submit(
        self, trip_id: str, driver_email: str, price: object, currency: Optional[str]
    ) -> QuoteSubmission:
        email = validate_email(driver_email)
        amount = Quote.validate_price(price)
        code = Quote.validate_currency(currency, self.allowed_currencies)

        existing = await self.quotes.get(trip_id, email)
        quote = await self.quotes.upsert(
            trip_id=trip_id, email=email, price=amount, currency=code, now=utcnow()
        )
        logger.info(
            "Quote %s for trip %s by %s: %.2f %s",
            "updated" if existing else "created", trip_id, email, amount, code,
        )
        return QuoteSubmission(quote=quote, is_update=existing is not None)

    async def list_for(self, trip_id: str, driver_email: Optional[str] = None) -> list[Quote]:
        """Owner view when ``driver_email`` is None, else that driver's own rows."""
        email = normalize_email(driver_email) if driver_email else None
        return await self.quotes.list_for_trip(trip_id, email)
