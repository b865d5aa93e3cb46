"""
Driver Assignment Coordinator.

Orchestrates the owner and driver actions on a trip:

* every operation runs in its own session and commits once at the end, so
  a ``BookingError`` raised half-way leaves nothing behind (no commit);
* notifications go out only after the commit; their failures are attached
  to the result as warnings, except for the two operations whose only job
  is to send a message (``resend_assignment_link``, ``request_quote``);
* token issuance runs under a Redis lock per (trip, driver);
* each committed status/driver change is published to the trip's change
  feed.

Public methods never raise ``BookingError``: they return an ``ActionResult``.
Database errors propagate.
"""

from __future__ import annotations

import dataclasses
import functools
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Optional

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trip_booking.config import Settings, settings as default_settings
from trip_booking.domain import messages
from trip_booking.domain.entities import Identity, Trip, same_email, validate_email
from trip_booking.domain.enums import Decision, NextAction, TripStatus
from trip_booking.domain.exceptions import (
    BookingError,
    Conflict,
    Forbidden,
    InvalidState,
    NotFound,
    NotificationFailed,
    Unauthorized,
    ValidationError,
)
from trip_booking.infrastructure.events import TripEventPublisher
from trip_booking.infrastructure.locks import DistributedLock, token_issuance_key
from trip_booking.infrastructure.notifications import NotificationDispatcher
from trip_booking.infrastructure.repositories import TripRepository
from trip_booking.services.quotes import QuoteRegistry
from trip_booking.services.tokens import DriverTokenManager, TokenCheck
from trip_booking.services.transitions import StatusTransitionEngine

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    ok: bool
    message: str = ""
    trip: Optional[Trip] = None
    error: Optional[BookingError] = None
    warnings: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def error_code(self) -> Optional[str]:
        return self.error.code if self.error else None

    @classmethod
    def failure(cls, error: BookingError) -> "ActionResult":
        return cls(ok=False, message=error.message, error=error)


def booking_operation(func):
    """Turn a raised ``BookingError`` into a failed ``ActionResult``."""

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs) -> ActionResult:
        try:
            return await func(self, *args, **kwargs)
        except BookingError as e:
            logger.info("%s refused: %s %s (%s)", func.__name__, e.code, e.message, e.reason)
            return ActionResult.failure(e)

    return wrapper


class DriverAssignmentCoordinator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: aioredis.Redis,
        dispatcher: NotificationDispatcher,
        *,
        publisher: Optional[TripEventPublisher] = None,
        config: Settings = default_settings,
    ):
        self.session_factory = session_factory
        self.redis = redis
        self.dispatcher = dispatcher
        self.publisher = publisher
        self.config = config

    # ── Owner operations ──────────────────────────────────────────────

    @booking_operation
    async def get_trip(self, trip_id: str, actor: Optional[Identity]) -> ActionResult:
        async with self.session_factory() as session:
            trip = await self._load_owned_trip(session, trip_id, actor)
        return ActionResult(ok=True, trip=trip)

    @booking_operation
    async def assign_driver(
        self, trip_id: str, driver_email: str, actor: Optional[Identity]
    ) -> ActionResult:
        email = validate_email(driver_email)

        async with self._issuance_lock(trip_id, email):
            async with self.session_factory() as session:
                trip = await self._load_owned_trip(session, trip_id, actor)
                snapshot = dataclasses.replace(trip)
                outcome = await StatusTransitionEngine(session).assign(trip, email)
                issued = await self._token_manager(session).issue_or_reuse(trip.id, email)
                await session.commit()

        await self._publish(trip)
        warnings: list[str] = []
        if outcome.revoke_tokens_for and snapshot.status == TripStatus.PENDING:
            await self._notify(
                snapshot.driver, messages.driver_unassignment(snapshot), warnings,
                "unassignment notice",
            )

        link = self._magic_link(trip.id, issued.token.token)
        await self._notify(
            email,
            messages.driver_assignment(trip, link, self.config.driver_token_ttl_days),
            warnings,
            "assignment notice",
        )

        data: dict[str, Any] = {
            "driver_email": email,
            "token_reused": issued.reused,
            "token_expires_at": issued.token.expires_at,
        }
        if self.config.expose_magic_links:
            data["magic_link"] = link
        return ActionResult(
            ok=True,
            message=f"Driver {email} assigned; trip is {trip.status.value}",
            trip=trip,
            warnings=warnings,
            data=data,
        )

    @booking_operation
    async def cancel_trip(self, trip_id: str, actor: Optional[Identity]) -> ActionResult:
        async with self.session_factory() as session:
            trip = await self._load_owned_trip(session, trip_id, actor)
            snapshot = dataclasses.replace(trip)
            await StatusTransitionEngine(session).transition(trip, TripStatus.CANCELLED)
            await session.commit()

        await self._publish(trip)
        warnings: list[str] = []
        if snapshot.driver:
            await self._notify(
                snapshot.driver, messages.trip_cancelled(snapshot), warnings,
                "cancellation notice",
            )
        return ActionResult(ok=True, message="Trip cancelled", trip=trip, warnings=warnings)

    @booking_operation
    async def update_status(
        self,
        trip_id: str,
        status: str,
        actor: Optional[Identity],
        *,
        notify_driver: bool = False,
    ) -> ActionResult:
        try:
            target = TripStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown status: {status}", reason="invalid_status")
        if target == TripStatus.CANCELLED:
            return await self.cancel_trip(trip_id, actor)

        async with self.session_factory() as session:
            trip = await self._load_owned_trip(session, trip_id, actor)
            if target == TripStatus.PENDING and not trip.driver:
                raise InvalidState(
                    "Assign a driver before setting the trip to pending",
                    reason="no_driver",
                )
            snapshot = dataclasses.replace(trip)
            await StatusTransitionEngine(session).transition(trip, target)
            await session.commit()

        await self._publish(trip)
        warnings: list[str] = []
        if notify_driver and snapshot.driver:
            await self._notify(
                snapshot.driver,
                messages.status_changed(trip, self._trip_link(trip.id)),
                warnings,
                "status change notice",
            )
        return ActionResult(
            ok=True, message=f"Trip is now {trip.status.value}", trip=trip, warnings=warnings
        )

    @booking_operation
    async def mark_booked(
        self,
        trip_id: str,
        actor: Optional[Identity],
        driver_email: Optional[str] = None,
    ) -> ActionResult:
        email = validate_email(driver_email) if driver_email else None
        async with self.session_factory() as session:
            trip = await self._load_owned_trip(session, trip_id, actor)
            await StatusTransitionEngine(session).transition(
                trip, TripStatus.BOOKED, driver=email
            )
            await session.commit()

        await self._publish(trip)
        return ActionResult(ok=True, message="Trip booked", trip=trip)

    @booking_operation
    async def resend_assignment_link(
        self, trip_id: str, actor: Optional[Identity]
    ) -> ActionResult:
        async with self.session_factory() as session:
            trip = await self._load_owned_trip(session, trip_id, actor)
            if not trip.driver:
                raise InvalidState("No driver is assigned to this trip", reason="no_driver")
            if trip.status != TripStatus.PENDING:
                raise InvalidState(
                    f"This trip is {trip.status.value}", reason="trip_not_pending"
                )
            async with self._issuance_lock(trip.id, trip.driver):
                issued = await self._token_manager(session).issue_or_reuse(
                    trip.id, trip.driver
                )
                await session.commit()

        link = self._magic_link(trip.id, issued.token.token)
        message = messages.driver_assignment(trip, link, self.config.driver_token_ttl_days)
        await self._send_required(trip.driver, message, "assignment link")
        return ActionResult(
            ok=True,
            message=f"Assignment link sent to {trip.driver}",
            trip=trip,
            data={"driver_email": trip.driver, "token_reused": issued.reused},
        )

    @booking_operation
    async def request_quote(
        self, trip_id: str, driver_email: str, actor: Optional[Identity]
    ) -> ActionResult:
        email = validate_email(driver_email)
        async with self.session_factory() as session:
            trip = await self._load_owned_trip(session, trip_id, actor)
        if trip.status == TripStatus.CANCELLED:
            raise InvalidState("This trip has been cancelled", reason="trip_cancelled")

        await self._send_required(
            email, messages.quote_request(trip, self._trip_link(trip.id)), "quote request"
        )
        return ActionResult(ok=True, message=f"Quote request sent to {email}", trip=trip)

    # ── Driver operations ─────────────────────────────────────────────

    @booking_operation
    async def validate_token(self, trip_id: str, token: str) -> ActionResult:
        async with self.session_factory() as session:
            check = await self._token_manager(session).inspect(token, trip_id)
        return ActionResult(
            ok=True,
            message=check.message,
            trip=check.trip,
            data={
                "driver_email": check.driver_email,
                "trip_status": check.trip_status.value,
                "token_used": check.token_used,
                "can_take_action": check.can_act,
                "message": check.message,
            },
        )

    @booking_operation
    async def respond(self, trip_id: str, token: str, decision: str) -> ActionResult:
        try:
            choice = Decision(decision)
        except ValueError:
            raise ValidationError(
                "Decision must be 'accept' or 'reject'", reason="invalid_decision"
            )

        async with self.session_factory() as session:
            tokens = self._token_manager(session)
            check = await tokens.validate(token, trip_id)
            self._require_actionable(check)
            trip, driver_email = check.trip, check.driver_email
            await tokens.consume(check.token)
            engine = StatusTransitionEngine(session)
            if choice == Decision.ACCEPT:
                await engine.transition(trip, TripStatus.CONFIRMED)
            else:
                await engine.decline(trip)
            await session.commit()

        await self._publish(trip)
        warnings: list[str] = []
        link = self._trip_link(trip.id)
        if choice == Decision.ACCEPT:
            await self._notify(
                driver_email, messages.driver_confirmation(trip, link), warnings,
                "confirmation",
            )
            await self._notify(
                trip.owner_email, messages.owner_driver_accepted(trip, driver_email, link),
                warnings, "owner notice",
            )
            text = "Trip confirmed. Thank you!"
        else:
            await self._notify(
                trip.owner_email, messages.owner_driver_declined(trip, driver_email, link),
                warnings, "owner notice",
            )
            text = "Trip declined. The owner has been notified."
        return ActionResult(
            ok=True, message=text, trip=trip, warnings=warnings,
            data={"decision": choice.value},
        )

    @booking_operation
    async def legacy_confirm(self, trip_id: str, driver_email: str) -> ActionResult:
        """E-mail match only, no token; weaker than ``respond``."""
        email = validate_email(driver_email)
        logger.warning("Legacy e-mail confirmation attempted on trip %s by %s", trip_id, email)

        async with self.session_factory() as session:
            trip = await self._load_trip(session, trip_id)
            if not same_email(trip.driver, email):
                raise Forbidden(
                    "This email does not match the assigned driver",
                    reason="driver_mismatch",
                    next_action=NextAction.CONTACT_OWNER,
                )
            if trip.status != TripStatus.PENDING:
                raise InvalidState(
                    f"This trip is {trip.status.value}", reason="trip_not_pending"
                )
            await StatusTransitionEngine(session).transition(trip, TripStatus.CONFIRMED)
            await session.commit()

        await self._publish(trip)
        warnings: list[str] = []
        await self._notify(
            trip.owner_email,
            messages.owner_driver_accepted(trip, email, self._trip_link(trip.id)),
            warnings,
            "owner notice",
        )
        return ActionResult(ok=True, message="Trip confirmed", trip=trip, warnings=warnings)

    @booking_operation
    async def submit_quote(
        self,
        trip_id: str,
        price: object,
        currency: Optional[str],
        *,
        driver_token: Optional[str] = None,
        actor: Optional[Identity] = None,
    ) -> ActionResult:
        async with self.session_factory() as session:
            tokens = self._token_manager(session)
            check: Optional[TokenCheck] = None
            if driver_token:
                check = await tokens.inspect(driver_token, trip_id)
                email = check.driver_email
            elif actor is not None and actor.email:
                email = validate_email(actor.email)
            else:
                raise Unauthorized(
                    "Use your driver link or sign in to submit a quote",
                    reason="missing_credentials",
                )

            trip = await self._load_trip(session, trip_id)
            if trip.status == TripStatus.CANCELLED:
                raise InvalidState(
                    "Cannot submit a quote for a cancelled trip", reason="trip_cancelled"
                )
            submission = await QuoteRegistry(
                session, self.config.allowed_currencies
            ).submit(trip.id, email, price, currency)

            auto_confirmed = trip.status == TripStatus.PENDING and same_email(trip.driver, email)
            if auto_confirmed:
                if check is not None and not check.token_used:
                    await tokens.consume(check.token)
                await StatusTransitionEngine(session).transition(trip, TripStatus.CONFIRMED)
            await session.commit()

        quote = submission.quote
        warnings: list[str] = []
        link = self._trip_link(trip.id)
        if auto_confirmed:
            await self._publish(trip)
            await self._notify(
                email, messages.driver_confirmation(trip, link), warnings, "confirmation"
            )
        await self._notify(
            trip.owner_email,
            messages.quote_submitted(trip, email, quote.price, quote.currency, link),
            warnings,
            "quote notice",
        )
        return ActionResult(
            ok=True,
            message="Quote updated" if submission.is_update else "Quote submitted",
            trip=trip,
            warnings=warnings,
            data={
                "quote": quote,
                "quote_id": quote.id,
                "is_update": submission.is_update,
                "auto_confirmed": auto_confirmed,
            },
        )

    @booking_operation
    async def list_quotes(
        self,
        trip_id: str,
        *,
        actor: Optional[Identity] = None,
        driver_token: Optional[str] = None,
    ) -> ActionResult:
        async with self.session_factory() as session:
            trip = await self._load_trip(session, trip_id)
            if trip.is_owned_by(actor):
                email = None
            elif driver_token:
                email = (await self._token_manager(session).inspect(driver_token, trip_id)).driver_email
            elif actor is not None and actor.email:
                email = validate_email(actor.email)
            else:
                raise Unauthorized(
                    "Use your driver link or sign in to view quotes",
                    reason="missing_credentials",
                )
            quotes = await QuoteRegistry(session, self.config.allowed_currencies).list_for(
                trip.id, email
            )
        return ActionResult(ok=True, trip=trip, data={"quotes": quotes})

    @booking_operation
    async def authorize_feed(
        self,
        trip_id: str,
        *,
        actor: Optional[Identity] = None,
        driver_token: Optional[str] = None,
    ) -> ActionResult:
        """Allow the owner, or a driver holding a valid link, to follow a trip."""
        async with self.session_factory() as session:
            trip = await self._load_trip(session, trip_id)
            if trip.is_owned_by(actor):
                return ActionResult(ok=True, trip=trip)
            if driver_token:
                await self._token_manager(session).inspect(driver_token, trip_id)
                return ActionResult(ok=True, trip=trip)
            if actor is not None:
                raise Forbidden("You cannot follow this trip", reason="not_owner")
            raise Unauthorized(
                "Use your driver link or sign in to follow this trip",
                reason="missing_credentials",
            )

    # ── Helpers ───────────────────────────────────────────────────────

    def _token_manager(self, session: AsyncSession) -> DriverTokenManager:
        return DriverTokenManager(session, self.config.driver_token_ttl_days)

    @asynccontextmanager
    async def _issuance_lock(self, trip_id: str, driver_email: str):
        lock = DistributedLock(
            self.redis,
            token_issuance_key(trip_id, driver_email),
            ttl_seconds=self.config.token_lock_ttl_seconds,
            wait_seconds=self.config.token_lock_wait_seconds,
        )
        if not await lock.acquire():
            raise Conflict(
                "Another assignment for this driver is in progress",
                reason="issuance_locked",
            )
        try:
            yield lock
        finally:
            await lock.release()

    @staticmethod
    async def _load_trip(session: AsyncSession, trip_id: str) -> Trip:
        trip = await TripRepository(session).get_by_id(trip_id)
        if trip is None:
            raise NotFound.resource("Trip", trip_id)
        return trip

    async def _load_owned_trip(
        self, session: AsyncSession, trip_id: str, actor: Optional[Identity]
    ) -> Trip:
        if actor is None:
            raise Unauthorized("Sign in to manage this trip", reason="missing_credentials")
        trip = await self._load_trip(session, trip_id)
        if not trip.is_owned_by(actor):
            raise Forbidden(reason="not_owner")
        return trip

    @staticmethod
    def _require_actionable(check: TokenCheck) -> None:
        if not check.can_act:
            raise Forbidden(check.message, reason="trip_not_pending")

    def _trip_link(self, trip_id: str) -> str:
        return messages.trip_link(self.config.public_base_url, trip_id)

    def _magic_link(self, trip_id: str, token: str) -> str:
        return messages.magic_link(self.config.public_base_url, trip_id, token)

    async def _publish(self, trip: Trip) -> None:
        if self.publisher is not None:
            await self.publisher.publish(trip)

    async def _notify(
        self,
        to: Optional[str],
        message: messages.Message,
        warnings: list[str],
        what: str,
    ) -> bool:
        """Best-effort send; a failure becomes a warning on the result."""
        if not to:
            return False
        try:
            result = await self.dispatcher.send(to, message.subject, message.body)
        except Exception as e:
            logger.exception("Dispatcher crashed sending %s to %s", what, to)
            warnings.append(f"Failed to send {what} to {to}: {e}")
            return False
        if not result.success:
            logger.warning("Could not send %s to %s: %s", what, to, result.error)
            warnings.append(f"Failed to send {what} to {to}: {result.error}")
            return False
        return True

    async def _send_required(self, to: str, message: messages.Message, what: str) -> None:
        warnings: list[str] = []
        if not await self._notify(to, message, warnings, what):
            raise NotificationFailed(
                f"Failed to send {what}", details={"to": to, "errors": warnings}
            )
