"""
FastAPI application factory.

* Registers routes for owner trip actions, driver links, the change feed
  and admin.
* Builds the coordinator and its collaborators (Redis, e-mail dispatcher,
  event publisher) in the lifespan and closes them on shutdown.
* Maps ``BookingError`` to ``{error_code, message, reason, next_action}``.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from trip_booking.api.errors import booking_error_handler, unhandled_error_handler
from trip_booking.api.middleware import limiter
from trip_booking.api.routes import admin, drivers, events, trips
from trip_booking.config import settings
from trip_booking.domain.exceptions import BookingError
from trip_booking.infrastructure.database import async_session_factory, engine
from trip_booking.infrastructure.events import TripEventPublisher
from trip_booking.infrastructure.notifications import build_dispatcher
from trip_booking.infrastructure.redis_client import get_redis
from trip_booking.services.assignment import DriverAssignmentCoordinator

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the coordinator on startup; release connections on shutdown."""
    redis = await get_redis()
    publisher = TripEventPublisher(redis, maxlen=settings.event_stream_maxlen)
    app.state.publisher = publisher
    app.state.coordinator = DriverAssignmentCoordinator(
        async_session_factory,
        redis,
        build_dispatcher(settings),
        publisher=publisher,
    )
    logger.info("%s started", settings.app_name)
    yield
    await redis.aclose()
    await engine.dispose()


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        description=(
            "Coordinates trip bookings between owners and drivers: driver "
            "assignment with single-use e-mail links, accept / reject, "
            "cancellation, quotes, and a per-trip change feed."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Error mapping
    app.add_exception_handler(BookingError, booking_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Routers
    app.include_router(trips.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(events.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
