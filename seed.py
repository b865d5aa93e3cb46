"""
Seed script -- populates the database with sample trips for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 1 owner (prints a Bearer token for the API)
  - 6 trips, one per status, with a driver where the status implies one
  - a live driver link for the pending trip (printed)
  - 2 quotes on the pending trip
"""

import asyncio
from datetime import date, timedelta

from trip_booking.config import settings
from trip_booking.domain.enums import TripStatus
from trip_booking.domain.messages import magic_link
from trip_booking.infrastructure.database import async_session_factory, engine
from trip_booking.infrastructure.identity import JWTIdentityVerifier
from trip_booking.infrastructure.repositories import TripRepository
from trip_booking.services.quotes import QuoteRegistry
from trip_booking.services.tokens import DriverTokenManager

OWNER_ID = "owner-demo"
OWNER_EMAIL = "owner@example.com"

TRIPS = [
    {"status": TripStatus.NOT_CONFIRMED, "driver": None, "destination": "Heathrow T5"},
    {"status": TripStatus.PENDING, "driver": "ana.driver@example.com", "destination": "Gatwick North"},
    {"status": TripStatus.CONFIRMED, "driver": "ben.driver@example.com", "destination": "Paddington"},
    {"status": TripStatus.REJECTED, "driver": None, "destination": "Stansted"},
    {"status": TripStatus.BOOKED, "driver": "cara.driver@example.com", "destination": "Luton"},
    {"status": TripStatus.CANCELLED, "driver": None, "destination": "City Airport"},
]

QUOTES = [
    ("ana.driver@example.com", 85.0, "GBP"),
    ("dev.driver@example.com", 92.5, "GBP"),
]


async def seed():
    async with async_session_factory() as session:
        trips = TripRepository(session)
        created = []
        for offset, t in enumerate(TRIPS, start=1):
            trip = await trips.create(
                owner_id=OWNER_ID,
                owner_email=OWNER_EMAIL,
                status=t["status"],
                driver=t["driver"],
                trip_date=date.today() + timedelta(days=offset),
                trip_destination=t["destination"],
                lead_passenger_name="Sam Traveller",
            )
            created.append(trip)
        print(f"  Created {len(created)} trips")

        # ── Driver link + quotes on the pending trip ──────────────────
        pending = created[1]
        issued = await DriverTokenManager(session).issue_or_reuse(pending.id, pending.driver)
        registry = QuoteRegistry(session)
        for email, price, currency in QUOTES:
            await registry.submit(pending.id, email, price, currency)
        print(f"  Created {len(QUOTES)} quotes on trip {pending.id}")

        await session.commit()

    token = JWTIdentityVerifier.from_settings().create_access_token(
        OWNER_ID, OWNER_EMAIL, expires_in=timedelta(days=7)
    )
    print(f"\nOwner Bearer token:\n  {token}")
    print(
        "Driver link for the pending trip:\n  "
        + magic_link(settings.public_base_url, pending.id, issued.token.token)
    )
    print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
