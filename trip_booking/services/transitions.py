"""
Status Transition Engine.

Applies a ``Trip`` state change (computed by the pure entity methods) to the
store with a conditional write, then revokes whichever driver tokens the
outcome names.  It never issues tokens or sends notifications.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from trip_booking.domain.entities import TransitionOutcome, Trip, utcnow
from trip_booking.domain.enums import TripStatus
from trip_booking.domain.exceptions import InvalidTransition
from trip_booking.infrastructure.repositories import DriverTokenRepository, TripRepository

logger = logging.getLogger(__name__)


class StatusTransitionEngine:
    def __init__(self, session: AsyncSession):
        self.trips = TripRepository(session)
        self.tokens = DriverTokenRepository(session)

    async def transition(
        self, trip: Trip, target: TripStatus, *, driver: Optional[str] = None
    ) -> TransitionOutcome:
        outcome = trip.transition_to(target, driver=driver)
        await self._persist(trip, outcome)
        return outcome

    async def assign(self, trip: Trip, driver_email: str) -> TransitionOutcome:
        outcome = trip.assign_driver(driver_email)
        await self._persist(trip, outcome)
        return outcome

    async def decline(self, trip: Trip) -> TransitionOutcome:
        outcome = trip.decline()
        await self._persist(trip, outcome)
        return outcome

    async def _persist(self, trip: Trip, outcome: TransitionOutcome) -> None:
        applied = await self.trips.apply_change(
            trip.id,
            expected_status=outcome.previous_status,
            expected_driver=outcome.previous_driver,
            status=outcome.new_status,
            driver=outcome.new_driver,
        )
        if not applied:
            # Someone else changed status/driver since we read the trip.
            current = await self.trips.get_by_id(trip.id)
            current_status = current.status.value if current else "deleted"
            raise InvalidTransition(
                f"This trip was updated concurrently and is now {current_status}",
                reason="concurrent_update",
                details={"expected": outcome.previous_status.value, "actual": current_status},
            )

        if outcome.revoke_tokens_for:
            revoked = await self.tokens.invalidate_open(
                trip.id, outcome.revoke_tokens_for, outcome.revoke_reason, utcnow()
            )
            logger.info(
                "Trip %s: revoked %d token(s) of %s (%s)",
                trip.id, revoked, outcome.revoke_tokens_for, outcome.revoke_reason.value,
            )

        logger.info(
            "Trip %s: %s -> %s (driver %s -> %s)",
            trip.id,
            outcome.previous_status.value,
            outcome.new_status.value,
            outcome.previous_driver,
            outcome.new_driver,
        )
