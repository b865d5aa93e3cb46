"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Trip``: enforces the fixed status table
  (``TRIP_TRANSITIONS``) and applies the side effects tied to specific
  transitions (clearing the driver, naming whose tokens must be revoked).
- ``DriverToken`` knows whether it is *live* (unused, not invalidated,
  unexpired); the token manager decides what to do about it.

Nothing in this module performs I/O.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional

from .enums import InvalidationReason, TripStatus, TRIP_TRANSITIONS
from .exceptions import InvalidState, InvalidTransition, ValidationError

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def validate_email(email: Optional[str]) -> str:
    """Return the normalized address or raise ``ValidationError``."""
    if not email or not _EMAIL_RE.match(email.strip()):
        raise ValidationError(
            "Please enter a valid email address", reason="invalid_email"
        )
    return normalize_email(email)


def same_email(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return normalize_email(a) == normalize_email(b)


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Identity:
    """A verified human operator, as produced by the identity verifier."""

    user_id: str
    email: Optional[str] = None


@dataclass(frozen=True)
class TransitionOutcome:
    previous_status: TripStatus
    new_status: TripStatus
    previous_driver: Optional[str]
    new_driver: Optional[str]
    revoke_tokens_for: Optional[str] = None
    revoke_reason: Optional[InvalidationReason] = None

    @property
    def driver_changed(self) -> bool:
        return self.previous_driver != self.new_driver


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Trip:
    id: Optional[str] = None
    owner_id: Optional[str] = None
    owner_email: Optional[str] = None
    status: TripStatus = TripStatus.NOT_CONFIRMED
    driver: Optional[str] = None
    version: int = 1
    trip_date: Optional[date] = None
    trip_destination: Optional[str] = None
    lead_passenger_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_owned_by(self, identity: Optional[Identity]) -> bool:
        return (
            identity is not None
            and self.owner_id is not None
            and identity.user_id == self.owner_id
        )

    def can_transition_to(self, new_status: TripStatus) -> bool:
        return new_status in TRIP_TRANSITIONS.get(self.status, set())

    def transition_to(
        self, new_status: TripStatus, *, driver: Optional[str] = None
    ) -> TransitionOutcome:
        """Move to *new_status* if the table allows it, else raise.

        ``driver`` is only honoured for ``booked`` (booking names the driver).
        """
        if not self.can_transition_to(new_status):
            allowed = sorted(s.value for s in TRIP_TRANSITIONS.get(self.status, set()))
            raise InvalidTransition(
                f'Cannot transition from "{self.status.value}" to "{new_status.value}"',
                reason="invalid_transition",
                details={"from": self.status.value, "to": new_status.value, "allowed": allowed},
            )

        previous_status, previous_driver = self.status, self.driver
        revoke_for: Optional[str] = None
        revoke_reason: Optional[InvalidationReason] = None

        if new_status == TripStatus.CANCELLED:
            self.driver = None
            if previous_driver:
                revoke_for = previous_driver
                revoke_reason = InvalidationReason.TRIP_CANCELLED
        elif new_status == TripStatus.NOT_CONFIRMED and previous_status in (
            TripStatus.CONFIRMED,
            TripStatus.PENDING,
        ):
            self.driver = None
        elif new_status == TripStatus.BOOKED and driver:
            self.driver = validate_email(driver)

        if revoke_for is None and previous_driver and self.driver != previous_driver:
            revoke_for = previous_driver
            revoke_reason = InvalidationReason.DRIVER_CHANGED

        self.status = new_status
        return TransitionOutcome(
            previous_status=previous_status,
            new_status=new_status,
            previous_driver=previous_driver,
            new_driver=self.driver,
            revoke_tokens_for=revoke_for,
            revoke_reason=revoke_reason,
        )

    def assign_driver(self, driver_email: str) -> TransitionOutcome:
        """Set the driver and move to ``pending`` when the table allows it.

        From a status that cannot reach ``pending`` (``pending`` itself,
        ``booked``) the status is kept and only the driver changes.
        """
        if self.status == TripStatus.CANCELLED:
            raise InvalidState(
                "Cannot assign a driver to a cancelled trip", reason="trip_cancelled"
            )
        if self.status == TripStatus.CONFIRMED and self.driver:
            raise InvalidState(
                "Change status to not confirmed first", reason="trip_confirmed"
            )

        previous_status, previous_driver = self.status, self.driver
        self.driver = validate_email(driver_email)
        if self.can_transition_to(TripStatus.PENDING):
            self.status = TripStatus.PENDING

        replaced = previous_driver is not None and previous_driver != self.driver
        return TransitionOutcome(
            previous_status=previous_status,
            new_status=self.status,
            previous_driver=previous_driver,
            new_driver=self.driver,
            revoke_tokens_for=previous_driver if replaced else None,
            revoke_reason=InvalidationReason.DRIVER_CHANGED if replaced else None,
        )

    def decline(self) -> TransitionOutcome:
        """Driver rejected the assignment: ``rejected`` and no driver."""
        previous_driver = self.driver
        outcome = self.transition_to(TripStatus.REJECTED)
        self.driver = None
        return TransitionOutcome(
            previous_status=outcome.previous_status,
            new_status=outcome.new_status,
            previous_driver=previous_driver,
            new_driver=None,
        )


@dataclass
class DriverToken:
    trip_id: str
    driver_email: str
    token: str
    expires_at: datetime
    id: Optional[str] = None
    used: bool = False
    used_at: Optional[datetime] = None
    invalidated_at: Optional[datetime] = None
    invalidation_reason: Optional[InvalidationReason] = None
    created_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) > ensure_utc(self.expires_at)

    @property
    def is_invalidated(self) -> bool:
        return self.invalidated_at is not None

    def is_live(self, now: Optional[datetime] = None) -> bool:
        return not self.used and not self.is_invalidated and not self.is_expired(now)


@dataclass
class Quote:
    trip_id: str
    email: str
    price: float
    currency: str
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @staticmethod
    def validate_price(price: object) -> float:
        try:
            value = float(price)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            value = math.nan
        if math.isnan(value) or math.isinf(value) or value <= 0:
            raise ValidationError(
                "Price must be a positive number", reason="invalid_price"
            )
        return value

    @staticmethod
    def validate_currency(currency: Optional[str], allowed: list[str]) -> str:
        code = (currency or "").strip().upper()
        if code not in allowed:
            raise ValidationError("Invalid currency", reason="invalid_currency")
        return code
