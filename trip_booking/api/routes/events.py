"""
Trip change feed
================

WS /api/v1/trips/{trip_id}/events?last_event_id=<id>&access_token=<jwt>
WS /api/v1/trips/{trip_id}/events?last_event_id=<id>&driver_token=<token>

Streams ``trip_changed`` messages from the trip's Redis stream.  Clients
reconnect with the last id they received to resume without gaps.

Browsers cannot set headers on a WebSocket handshake, so credentials travel
in the query string: the owner's bearer JWT or the driver's magic-link token.
A refused handshake is closed with 1008 before it is accepted.
"""

import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from trip_booking.api.dependencies import get_coordinator, get_identity_verifier, get_publisher
from trip_booking.domain.entities import Identity
from trip_booking.domain.exceptions import Unauthorized
from trip_booking.infrastructure.events import TripEventPublisher
from trip_booking.infrastructure.identity import JWTIdentityVerifier
from trip_booking.services.assignment import DriverAssignmentCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/trips", tags=["events"])

IDLE_BLOCK_MS = 15000


@router.websocket("/{trip_id}/events")
async def trip_events(
    websocket: WebSocket,
    trip_id: str,
    last_event_id: str = "",
    access_token: str = "",
    driver_token: str = "",
    coordinator: DriverAssignmentCoordinator = Depends(get_coordinator),
    publisher: TripEventPublisher = Depends(get_publisher),
    verifier: JWTIdentityVerifier = Depends(get_identity_verifier),
):
    actor: Optional[Identity] = None
    if access_token:
        try:
            actor = verifier.verify(access_token)
        except Unauthorized as exc:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message)
            return
    result = await coordinator.authorize_feed(
        trip_id, actor=actor, driver_token=driver_token or None
    )
    if not result.ok:
        logger.info("Change feed refused for trip %s: %s", trip_id, result.error_code)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=result.message)
        return

    await websocket.accept()
    cursor = last_event_id or await publisher.latest_id(trip_id)
    try:
        while True:
            events = await publisher.read(trip_id, cursor, block_ms=IDLE_BLOCK_MS)
            if not events:
                # keep-alive; also how a silent disconnect is noticed
                await websocket.send_json({"type": "heartbeat"})
                continue
            for event_id, event in events:
                await websocket.send_json({"type": "trip_changed", "id": event_id, **asdict(event)})
                cursor = event_id
    except WebSocketDisconnect:
        logger.info("Change feed client left trip %s at %s", trip_id, cursor)
