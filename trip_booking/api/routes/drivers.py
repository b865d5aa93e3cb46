"""
Driver endpoints (magic-link holders, no account)
=================================================

POST /api/v1/trips/{trip_id}/driver-token/validate -- what may this link do?
POST /api/v1/trips/{trip_id}/respond               -- accept or reject
POST /api/v1/trips/{trip_id}/legacy-confirm        -- e-mail-only confirm
"""

from fastapi import APIRouter, Depends, Request

from trip_booking.api.dependencies import get_coordinator
from trip_booking.api.errors import action_response, unwrap
from trip_booking.api.middleware import limiter
from trip_booking.api.schemas import (
    ActionResponse,
    LegacyConfirmRequest,
    RespondRequest,
    TokenRequest,
    TokenValidationResponse,
)
from trip_booking.config import settings
from trip_booking.services.assignment import DriverAssignmentCoordinator

router = APIRouter(prefix="/trips", tags=["drivers"])


@router.post(
    "/{trip_id}/driver-token/validate",
    response_model=TokenValidationResponse,
    summary="Check a driver link",
    description="Read-only. A used link is reported with can_take_action=false.",
)
@limiter.limit(settings.rate_limit)
async def validate_token(
    request: Request,
    trip_id: str,
    body: TokenRequest,
    coordinator: DriverAssignmentCoordinator = Depends(get_coordinator),
):
    result = unwrap(await coordinator.validate_token(trip_id, body.token))
    return TokenValidationResponse(**result.data)


@router.post(
    "/{trip_id}/respond",
    response_model=ActionResponse,
    summary="Accept or reject an assignment",
    responses={403: {"description": "Link used, expired, replaced, or trip not pending."}},
)
@limiter.limit(settings.rate_limit)
async def respond(
    request: Request,
    trip_id: str,
    body: RespondRequest,
    coordinator: DriverAssignmentCoordinator = Depends(get_coordinator),
):
    return action_response(await coordinator.respond(trip_id, body.token, body.decision.value))


@router.post(
    "/{trip_id}/legacy-confirm",
    response_model=ActionResponse,
    summary="Confirm by e-mail match (legacy)",
    deprecated=True,
)
@limiter.limit(settings.rate_limit)
async def legacy_confirm(
    request: Request,
    trip_id: str,
    body: LegacyConfirmRequest,
    coordinator: DriverAssignmentCoordinator = Depends(get_coordinator),
):
    return action_response(await coordinator.legacy_confirm(trip_id, body.driver_email))
