"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Depends
from fastapi.requests import HTTPConnection
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from trip_booking.domain.entities import Identity
from trip_booking.domain.exceptions import Unauthorized
from trip_booking.infrastructure.database import async_session_factory
from trip_booking.infrastructure.events import TripEventPublisher
from trip_booking.infrastructure.identity import JWTIdentityVerifier
from trip_booking.services.assignment import DriverAssignmentCoordinator

bearer_scheme = HTTPBearer(auto_error=False)


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_coordinator(conn: HTTPConnection) -> DriverAssignmentCoordinator:
    """Coordinator built once in the app lifespan (HTTP and WebSocket routes)."""
    return conn.app.state.coordinator


def get_publisher(conn: HTTPConnection) -> TripEventPublisher:
    return conn.app.state.publisher


def get_identity_verifier() -> JWTIdentityVerifier:
    return JWTIdentityVerifier.from_settings()


async def get_optional_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    verifier: JWTIdentityVerifier = Depends(get_identity_verifier),
) -> Optional[Identity]:
    """Identity when a Bearer token is sent; a bad token is still a 401."""
    if credentials is None:
        return None
    return verifier.verify(credentials.credentials)


async def get_current_identity(
    identity: Optional[Identity] = Depends(get_optional_identity),
) -> Identity:
    if identity is None:
        raise Unauthorized("Missing Bearer token", reason="missing_credentials")
    return identity
