"""Mapping of booking errors to HTTP responses."""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from trip_booking.api.schemas import ActionResponse, ErrorResponse, TripResponse
from trip_booking.domain.exceptions import (
    BookingError,
    Conflict,
    Forbidden,
    InvalidState,
    InvalidTransition,
    NotFound,
    NotificationFailed,
    Unauthorized,
    ValidationError,
)
from trip_booking.services.assignment import ActionResult

logger = logging.getLogger(__name__)

# Lookup walks the exception MRO, so token errors map as Forbidden.
HTTP_STATUS = {
    Unauthorized: 401,
    Forbidden: 403,
    NotFound: 404,
    InvalidTransition: 409,
    InvalidState: 409,
    Conflict: 409,
    ValidationError: 422,
    NotificationFailed: 502,
}


def http_status_for(error: BookingError) -> int:
    for cls in type(error).__mro__:
        if cls in HTTP_STATUS:
            return HTTP_STATUS[cls]
    return 400


def error_body(error: BookingError) -> dict:
    return ErrorResponse(
        error_code=error.code,
        message=error.message,
        reason=error.reason,
        next_action=error.next_action.value,
    ).model_dump()


def unwrap(result: ActionResult) -> ActionResult:
    """Raise the carried error of a failed result, else return it."""
    if not result.ok and result.error is not None:
        raise result.error
    return result


def action_response(result: ActionResult) -> ActionResponse:
    result = unwrap(result)
    return ActionResponse(
        ok=True,
        message=result.message,
        trip=TripResponse.model_validate(result.trip) if result.trip else None,
        warnings=result.warnings,
    )


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    status = http_status_for(exc)
    headers = {"WWW-Authenticate": "Bearer"} if status == 401 else None
    return JSONResponse(status_code=status, content=error_body(exc), headers=headers)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "error_code": "ERR_INTERNAL",
            "message": "Internal server error",
            "reason": None,
            "next_action": "retry",
        },
    )
