"""
Owner trip endpoints
====================

GET   /api/v1/trips/{trip_id}                -- trip view
POST  /api/v1/trips/{trip_id}/driver         -- assign (or re-assign) a driver
POST  /api/v1/trips/{trip_id}/driver/resend  -- re-send the driver's link
POST  /api/v1/trips/{trip_id}/cancel         -- cancel the trip
PATCH /api/v1/trips/{trip_id}/status         -- generic status change
POST  /api/v1/trips/{trip_id}/book           -- mark booked
POST  /api/v1/trips/{trip_id}/quote-requests -- ask a driver for a quote
GET   /api/v1/trips/{trip_id}/quotes         -- list quotes (owner or driver)
POST  /api/v1/trips/{trip_id}/quotes         -- submit a quote (driver)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from trip_booking.api.dependencies import (
    get_coordinator,
    get_current_identity,
    get_optional_identity,
)
from trip_booking.api.errors import action_response, unwrap
from trip_booking.api.middleware import limiter
from trip_booking.api.schemas import (
    ActionResponse,
    AssignDriverRequest,
    AssignmentResponse,
    BookRequest,
    QuoteRequestRequest,
    QuoteResponse,
    QuoteSubmitRequest,
    QuoteSubmitResponse,
    ResendResponse,
    StatusUpdateRequest,
    TripResponse,
)
from trip_booking.config import settings
from trip_booking.domain.entities import Identity
from trip_booking.services.assignment import DriverAssignmentCoordinator

router = APIRouter(prefix="/trips", tags=["trips"])


@router.get("/{trip_id}", response_model=TripResponse, summary="Get a trip")
@limiter.limit(settings.rate_limit)
async def get_trip(
    request: Request,
    trip_id: str,
    identity: Identity = Depends(get_current_identity),
    coordinator: DriverAssignmentCoordinator = Depends(get_coordinator),
):
    result = unwrap(await coordinator.get_trip(trip_id, identity))
    return TripResponse.model_validate(result.trip)


@router.post(
    "/{trip_id}/driver",
    response_model=AssignmentResponse,
    summary="Assign a driver",
    description=(
        "Sets the driver, moves the trip to pending when allowed and e-mails "
        "the driver a single-use link. Re-assigning the same driver reuses a "
        "live link; a different driver revokes the previous driver's links."
    ),
)
@limiter.limit(settings.rate_limit)
async def assign_driver(
    request: Request,
    trip_id: str,
    body: AssignDriverRequest,
    identity: Identity = Depends(get_current_identity),
    coordinator: DriverAssignmentCoordinator = Depends(get_coordinator),
):
    result = await coordinator.assign_driver(trip_id, body.driver_email, identity)
    base = action_response(result)
    return AssignmentResponse(**base.model_dump(), **result.data)


@router.post(
    "/{trip_id}/driver/resend",
    response_model=ResendResponse,
    summary="Re-send the driver assignment link",
    responses={502: {"description": "The e-mail could not be delivered."}},
)
@limiter.limit(settings.rate_limit)
async def resend_assignment_link(
    request: Request,
    trip_id: str,
    identity: Identity = Depends(get_current_identity),
    coordinator: DriverAssignmentCoordinator = Depends(get_coordinator),
):
    result = await coordinator.resend_assignment_link(trip_id, identity)
    base = action_response(result)
    return ResendResponse(**base.model_dump(), **result.data)


@router.post("/{trip_id}/cancel", response_model=ActionResponse, summary="Cancel a trip")
@limiter.limit(settings.rate_limit)
async def cancel_trip(
    request: Request,
    trip_id: str,
    identity: Identity = Depends(get_current_identity),
    coordinator: DriverAssignmentCoordinator = Depends(get_coordinator),
):
    return action_response(await coordinator.cancel_trip(trip_id, identity))


@router.patch(
    "/{trip_id}/status",
    response_model=ActionResponse,
    summary="Change trip status",
    description="Any transition allowed by the status table; cancelling delegates to cancel.",
)
@limiter.limit(settings.rate_limit)
async def update_status(
    request: Request,
    trip_id: str,
    body: StatusUpdateRequest,
    identity: Identity = Depends(get_current_identity),
    coordinator: DriverAssignmentCoordinator = Depends(get_coordinator),
):
    return action_response(
        await coordinator.update_status(
            trip_id, body.status, identity, notify_driver=body.notify_driver
        )
    )


@router.post("/{trip_id}/book", response_model=ActionResponse, summary="Mark a trip booked")
@limiter.limit(settings.rate_limit)
async def mark_booked(
    request: Request,
    trip_id: str,
    body: BookRequest,
    identity: Identity = Depends(get_current_identity),
    coordinator: DriverAssignmentCoordinator = Depends(get_coordinator),
):
    return action_response(await coordinator.mark_booked(trip_id, identity, body.driver_email))


@router.post(
    "/{trip_id}/quote-requests",
    response_model=ActionResponse,
    summary="Ask a driver for a quote",
    responses={502: {"description": "The e-mail could not be delivered."}},
)
@limiter.limit(settings.rate_limit)
async def request_quote(
    request: Request,
    trip_id: str,
    body: QuoteRequestRequest,
    identity: Identity = Depends(get_current_identity),
    coordinator: DriverAssignmentCoordinator = Depends(get_coordinator),
):
    return action_response(await coordinator.request_quote(trip_id, body.driver_email, identity))


@router.get("/{trip_id}/quotes", response_model=list[QuoteResponse], summary="List quotes")
@limiter.limit(settings.rate_limit)
async def list_quotes(
    request: Request,
    trip_id: str,
    driver_token: Optional[str] = None,
    identity: Optional[Identity] = Depends(get_optional_identity),
    coordinator: DriverAssignmentCoordinator = Depends(get_coordinator),
):
    result = unwrap(
        await coordinator.list_quotes(trip_id, actor=identity, driver_token=driver_token)
    )
    return [QuoteResponse.model_validate(q) for q in result.data["quotes"]]


@router.post(
    "/{trip_id}/quotes",
    response_model=QuoteSubmitResponse,
    summary="Submit or update a quote",
    description=(
        "One quote per driver and trip; resubmitting updates it. When the "
        "assigned driver quotes a pending trip, the trip is confirmed."
    ),
)
@limiter.limit(settings.rate_limit)
async def submit_quote(
    request: Request,
    trip_id: str,
    body: QuoteSubmitRequest,
    identity: Optional[Identity] = Depends(get_optional_identity),
    coordinator: DriverAssignmentCoordinator = Depends(get_coordinator),
):
    result = await coordinator.submit_quote(
        trip_id,
        body.price,
        body.currency,
        driver_token=body.driver_token,
        actor=identity,
    )
    base = action_response(result)
    return QuoteSubmitResponse(
        **base.model_dump(),
        quote=QuoteResponse.model_validate(result.data["quote"]),
        is_update=result.data["is_update"],
        auto_confirmed=result.data["auto_confirmed"],
    )
