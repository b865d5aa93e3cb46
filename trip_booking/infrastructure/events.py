"""
Per-trip change feed on Redis Streams.

Every committed status/driver change is appended to ``trip:{id}:events``
(XADD, approximately capped at ``event_stream_maxlen``).  Subscribers read
with XREAD from the last id they saw, which gives at-least-once delivery
with resume and preserves order within a trip.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from trip_booking.domain.entities import Trip, utcnow

logger = logging.getLogger(__name__)


def stream_key(trip_id: str) -> str:
    return f"trip:{trip_id}:events"


@dataclass(frozen=True)
class TripChanged:
    trip_id: str
    status: str
    driver: Optional[str]
    occurred_at: str

    @classmethod
    def from_trip(cls, trip: Trip) -> "TripChanged":
        return cls(
            trip_id=trip.id,
            status=trip.status.value,
            driver=trip.driver,
            occurred_at=utcnow().isoformat(),
        )

    def to_fields(self) -> dict[str, str]:
        # Redis stream fields cannot hold None
        return {k: ("" if v is None else str(v)) for k, v in asdict(self).items()}

    @classmethod
    def from_fields(cls, fields: dict[str, str]) -> "TripChanged":
        return cls(
            trip_id=fields["trip_id"],
            status=fields["status"],
            driver=fields.get("driver") or None,
            occurred_at=fields.get("occurred_at", ""),
        )


class TripEventPublisher:
    def __init__(self, client: aioredis.Redis, maxlen: int = 1000):
        self.redis = client
        self.maxlen = maxlen

    async def publish(self, trip: Trip) -> Optional[str]:
        """Append a change event; a Redis failure is logged, never raised."""
        event = TripChanged.from_trip(trip)
        try:
            event_id = await self.redis.xadd(
                stream_key(trip.id),
                event.to_fields(),
                maxlen=self.maxlen,
                approximate=True,
            )
        except RedisError as e:
            logger.warning("Could not publish change for trip %s: %s", trip.id, e)
            return None
        logger.debug("Published %s for trip %s as %s", event.status, trip.id, event_id)
        return event_id

    async def latest_id(self, trip_id: str) -> str:
        """Id of the newest event, or ``0-0`` for an empty stream."""
        entries = await self.redis.xrevrange(stream_key(trip_id), count=1)
        return entries[0][0] if entries else "0-0"

    async def read(
        self,
        trip_id: str,
        last_id: str = "$",
        *,
        block_ms: int = 15000,
        count: int = 100,
    ) -> list[tuple[str, TripChanged]]:
        """Block up to ``block_ms`` for events newer than ``last_id``."""
        response = await self.redis.xread(
            {stream_key(trip_id): last_id}, count=count, block=block_ms
        )
        events: list[tuple[str, TripChanged]] = []
        for _stream, entries in response or []:
            for event_id, fields in entries:
                events.append((event_id, TripChanged.from_fields(fields)))
        return events
