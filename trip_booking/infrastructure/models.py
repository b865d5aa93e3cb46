"""
SQLAlchemy ORM models (PostgreSQL in production, SQLite in tests).

Tables
------
* ``trips``          -- one row per trip; ``status`` + ``driver`` are the
                        single mutable point of truth for the workflow
* ``driver_tokens``  -- magic-link capabilities; never deleted (audit trail)
* ``quotes``         -- one price per (trip, driver e-mail)

Indexes
-------
* **Unique** on ``driver_tokens.token`` (lookup by link) and on
  ``quotes (trip_id, email)`` (upsert target).
* **B-Tree** on ``driver_tokens (trip_id, driver_email)`` for live-token
  checks, and on ``trips.owner_id`` / ``trips.status``.

"One live token per (trip, driver)" is not a table constraint; the token
manager enforces it under a lock.
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)

from .database import Base
from trip_booking.domain.entities import utcnow
from trip_booking.domain.enums import InvalidationReason, TripStatus


def _uuid() -> str:
    return str(uuid.uuid4())


def _values(enum_cls):
    return [member.value for member in enum_cls]


class TripModel(Base):
    __tablename__ = "trips"

    id = Column(String(36), primary_key=True, default=_uuid)
    owner_id = Column(String(64), nullable=False)
    owner_email = Column(String(255), nullable=False)
    status = Column(
        Enum(TripStatus, values_callable=_values, native_enum=False, length=20),
        default=TripStatus.NOT_CONFIRMED,
        nullable=False,
    )
    driver = Column(String(255), nullable=True)
    version = Column(Integer, default=1, nullable=False)

    trip_date = Column(Date, nullable=True)
    trip_destination = Column(String(255), nullable=True)
    lead_passenger_name = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_trips_owner", "owner_id"),
        Index("idx_trips_status", "status"),
    )


class DriverTokenModel(Base):
    __tablename__ = "driver_tokens"

    id = Column(String(36), primary_key=True, default=_uuid)
    trip_id = Column(String(36), ForeignKey("trips.id"), nullable=False)
    driver_email = Column(String(255), nullable=False)
    token = Column(String(128), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    invalidated_at = Column(DateTime(timezone=True), nullable=True)
    invalidation_reason = Column(
        Enum(InvalidationReason, values_callable=_values, native_enum=False, length=32),
        nullable=True,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_driver_tokens_token", "token", unique=True),
        Index("idx_driver_tokens_trip_driver", "trip_id", "driver_email"),
    )


class QuoteModel(Base):
    __tablename__ = "quotes"

    id = Column(String(36), primary_key=True, default=_uuid)
    trip_id = Column(String(36), ForeignKey("trips.id"), nullable=False)
    email = Column(String(255), nullable=False)
    price = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("trip_id", "email", name="uq_quotes_trip_email"),
        Index("idx_quotes_trip", "trip_id"),
    )
