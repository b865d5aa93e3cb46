"""
Driver Token Manager.

Magic-link tokens let a driver act on one trip without an account.  A token
is *live* while unused, not invalidated and unexpired; at most one is live
per (trip, driver).  That rule has no table constraint behind it, so callers
hold the per-(trip, driver) issuance lock around ``issue_or_reuse``.

Tokens are never deleted; used and invalidated rows stay as an audit trail.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from trip_booking.config import settings
from trip_booking.domain.entities import DriverToken, Trip, same_email, utcnow
from trip_booking.domain.enums import InvalidationReason, NextAction, TripStatus
from trip_booking.domain.exceptions import (
    NotFound,
    TokenAlreadyUsed,
    TokenExpired,
    TokenInvalidated,
)
from trip_booking.infrastructure.repositories import DriverTokenRepository, TripRepository

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


@dataclass(frozen=True)
class IssuedToken:
    token: DriverToken
    reused: bool


@dataclass(frozen=True)
class TokenCheck:
    """What a token currently allows its holder to do on its trip."""

    token: DriverToken
    trip: Trip
    can_act: bool
    message: str = ""

    @property
    def driver_email(self) -> str:
        return self.token.driver_email

    @property
    def trip_status(self) -> TripStatus:
        return self.trip.status

    @property
    def token_used(self) -> bool:
        return self.token.used


class DriverTokenManager:
    def __init__(self, session: AsyncSession, ttl_days: int = settings.driver_token_ttl_days):
        self.tokens = DriverTokenRepository(session)
        self.trips = TripRepository(session)
        self.ttl = timedelta(days=ttl_days)

    async def issue_or_reuse(self, trip_id: str, driver_email: str) -> IssuedToken:
        now = utcnow()
        open_tokens = await self.tokens.list_open(trip_id, driver_email)
        live = [t for t in open_tokens if not t.is_expired(now)]
        if live:
            logger.info("Reusing live token for %s on trip %s", driver_email, trip_id)
            return IssuedToken(token=live[0], reused=True)

        if open_tokens:
            await self.tokens.invalidate_open(
                trip_id, driver_email, InvalidationReason.REPLACED_BY_NEW_TOKEN, now
            )
        token = await self.tokens.add(
            DriverToken(
                trip_id=trip_id,
                driver_email=driver_email,
                token=secrets.token_urlsafe(TOKEN_BYTES),
                expires_at=now + self.ttl,
            )
        )
        logger.info(
            "Issued token for %s on trip %s (replaced %d expired)",
            driver_email, trip_id, len(open_tokens),
        )
        return IssuedToken(token=token, reused=False)

    async def invalidate(
        self, trip_id: str, driver_email: str, reason: InvalidationReason
    ) -> int:
        return await self.tokens.invalidate_open(trip_id, driver_email, reason, utcnow())

    async def validate(self, token_value: str, trip_id: str) -> TokenCheck:
        """Strict check before a driver action; every terminal condition raises."""
        return await self._check(token_value, trip_id, report_used=False)

    async def inspect(self, token_value: str, trip_id: str) -> TokenCheck:
        """Like ``validate`` but a used token is reported instead of raised.

        A used token still has to be unexpired and belong to the trip's
        current driver.
        """
        return await self._check(token_value, trip_id, report_used=True)

    async def consume(self, token: DriverToken) -> None:
        if await self.tokens.mark_used(token.id, utcnow()):
            logger.info("Token %s consumed on trip %s", token.id, token.trip_id)
            return
        current = await self.tokens.get_by_id(token.id)
        if current is not None and not current.used and current.is_invalidated:
            raise TokenInvalidated.for_reason(current.invalidation_reason)
        raise TokenAlreadyUsed()

    async def _check(self, token_value: str, trip_id: str, *, report_used: bool) -> TokenCheck:
        token = await self.tokens.get_by_value(token_value or "", trip_id)
        if token is None:
            raise NotFound(
                "This link is not valid",
                reason="token_not_found",
                next_action=NextAction.CONTACT_OWNER,
            )

        trip = await self.trips.get_by_id(trip_id)
        if trip is None:
            raise NotFound.resource("Trip", trip_id)

        if token.used and not report_used:
            raise TokenAlreadyUsed()
        if token.is_invalidated:
            raise TokenInvalidated.for_reason(token.invalidation_reason)
        if token.is_expired():
            raise TokenExpired()
        # A reassignment may have landed before the invalidation write.
        if not same_email(token.driver_email, trip.driver):
            raise TokenInvalidated.for_reason(
                InvalidationReason.DRIVER_CHANGED,
                "This link is not valid for the currently assigned driver",
            )

        if token.used:
            return TokenCheck(
                token=token, trip=trip, can_act=False, message=TokenAlreadyUsed.default_message
            )
        can_act = trip.status == TripStatus.PENDING
        message = "" if can_act else f"This trip is {trip.status.value}"
        return TokenCheck(token=token, trip=trip, can_act=can_act, message=message)
