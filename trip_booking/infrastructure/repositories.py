"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Repositories hand back domain entities, never
ORM rows, so callers cannot mutate a row behind the session's back.

Every write that can race with another request is a *conditional* update
(compare-and-set in the ``WHERE`` clause); callers look at the returned
row count to learn whether they won.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from .models import DriverTokenModel, QuoteModel, TripModel
from trip_booking.domain.entities import DriverToken, Quote, Trip, ensure_utc, utcnow
from trip_booking.domain.enums import InvalidationReason, TripStatus


def _to_trip(row: TripModel) -> Trip:
    return Trip(
        id=row.id,
        owner_id=row.owner_id,
        owner_email=row.owner_email,
        status=TripStatus(row.status),
        driver=row.driver,
        version=row.version,
        trip_date=row.trip_date,
        trip_destination=row.trip_destination,
        lead_passenger_name=row.lead_passenger_name,
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
    )


def _to_token(row: DriverTokenModel) -> DriverToken:
    return DriverToken(
        id=row.id,
        trip_id=row.trip_id,
        driver_email=row.driver_email,
        token=row.token,
        expires_at=ensure_utc(row.expires_at),
        used=bool(row.used),
        used_at=ensure_utc(row.used_at),
        invalidated_at=ensure_utc(row.invalidated_at),
        invalidation_reason=(
            InvalidationReason(row.invalidation_reason)
            if row.invalidation_reason
            else None
        ),
        created_at=ensure_utc(row.created_at),
    )


def _to_quote(row: QuoteModel) -> Quote:
    return Quote(
        id=row.id,
        trip_id=row.trip_id,
        email=row.email,
        price=row.price,
        currency=row.currency,
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
    )


class TripRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        *,
        owner_id: str,
        owner_email: str,
        status: TripStatus = TripStatus.NOT_CONFIRMED,
        driver: Optional[str] = None,
        **metadata,
    ) -> Trip:
        row = TripModel(
            owner_id=owner_id,
            owner_email=owner_email,
            status=status,
            driver=driver,
            **metadata,
        )
        self.session.add(row)
        await self.session.flush()
        return _to_trip(row)

    async def get_by_id(self, trip_id: str) -> Optional[Trip]:
        result = await self.session.execute(
            select(TripModel)
            .where(TripModel.id == trip_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _to_trip(row) if row else None

    async def apply_change(
        self,
        trip_id: str,
        *,
        expected_status: TripStatus,
        expected_driver: Optional[str],
        status: TripStatus,
        driver: Optional[str],
    ) -> bool:
        """Write ``status``/``driver`` only if both still hold the expected values.

        Only these two columns (and ``updated_at``) are touched, so a
        concurrent edit of any other column is never reverted.
        """
        driver_guard = (
            TripModel.driver.is_(None)
            if expected_driver is None
            else TripModel.driver == expected_driver
        )
        result = await self.session.execute(
            update(TripModel)
            .where(
                TripModel.id == trip_id,
                TripModel.status == expected_status,
                driver_guard,
            )
            .values(status=status, driver=driver, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class DriverTokenRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, token: DriverToken) -> DriverToken:
        row = DriverTokenModel(
            trip_id=token.trip_id,
            driver_email=token.driver_email,
            token=token.token,
            expires_at=token.expires_at,
            used=False,
        )
        self.session.add(row)
        await self.session.flush()
        return _to_token(row)

    async def get_by_id(self, token_id: str) -> Optional[DriverToken]:
        result = await self.session.execute(
            select(DriverTokenModel)
            .where(DriverTokenModel.id == token_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _to_token(row) if row else None

    async def get_by_value(self, token_value: str, trip_id: str) -> Optional[DriverToken]:
        result = await self.session.execute(
            select(DriverTokenModel)
            .where(
                DriverTokenModel.token == token_value,
                DriverTokenModel.trip_id == trip_id,
            )
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _to_token(row) if row else None

    async def list_open(self, trip_id: str, driver_email: str) -> list[DriverToken]:
        """Unused, non-invalidated tokens for the pair (expired ones included)."""
        result = await self.session.execute(
            select(DriverTokenModel)
            .where(
                DriverTokenModel.trip_id == trip_id,
                DriverTokenModel.driver_email == driver_email,
                DriverTokenModel.used.is_(False),
                DriverTokenModel.invalidated_at.is_(None),
            )
            .order_by(DriverTokenModel.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return [_to_token(r) for r in result.scalars().all()]

    async def list_for_trip(self, trip_id: str) -> list[DriverToken]:
        result = await self.session.execute(
            select(DriverTokenModel)
            .where(DriverTokenModel.trip_id == trip_id)
            .order_by(DriverTokenModel.created_at)
            .execution_options(populate_existing=True)
        )
        return [_to_token(r) for r in result.scalars().all()]

    async def invalidate_open(
        self,
        trip_id: str,
        driver_email: str,
        reason: InvalidationReason,
        now: datetime,
    ) -> int:
        result = await self.session.execute(
            update(DriverTokenModel)
            .where(
                DriverTokenModel.trip_id == trip_id,
                DriverTokenModel.driver_email == driver_email,
                DriverTokenModel.used.is_(False),
                DriverTokenModel.invalidated_at.is_(None),
            )
            .values(invalidated_at=now, invalidation_reason=reason)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def mark_used(self, token_id: str, now: datetime) -> bool:
        """Compare-and-set ``used``: only one caller can ever get ``True``."""
        result = await self.session.execute(
            update(DriverTokenModel)
            .where(
                DriverTokenModel.id == token_id,
                DriverTokenModel.used.is_(False),
                DriverTokenModel.invalidated_at.is_(None),
            )
            .values(used=True, used_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class QuoteRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, trip_id: str, email: str) -> Optional[Quote]:
        result = await self.session.execute(
            select(QuoteModel)
            .where(QuoteModel.trip_id == trip_id, QuoteModel.email == email)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _to_quote(row) if row else None

    async def upsert(
        self,
        *,
        trip_id: str,
        email: str,
        price: float,
        currency: str,
        now: datetime,
    ) -> Quote:
        """INSERT … ON CONFLICT (trip_id, email) DO UPDATE, in one statement."""
        dialect = self.session.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = insert(QuoteModel).values(
            id=str(uuid.uuid4()),
            trip_id=trip_id,
            email=email,
            price=price,
            currency=currency,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[QuoteModel.trip_id, QuoteModel.email],
            set_={"price": price, "currency": currency, "updated_at": now},
        ).returning(*QuoteModel.__table__.c)
        result = await self.session.execute(stmt)
        return _to_quote(result.one())

    async def list_for_trip(
        self, trip_id: str, email: Optional[str] = None
    ) -> list[Quote]:
        query = select(QuoteModel).where(QuoteModel.trip_id == trip_id)
        if email is not None:
            query = query.where(QuoteModel.email == email)
        result = await self.session.execute(
            query.order_by(QuoteModel.created_at.desc()).execution_options(
                populate_existing=True
            )
        )
        return [_to_quote(r) for r in result.scalars().all()]
