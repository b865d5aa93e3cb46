"""
Booking error taxonomy.

Every error carries a stable ``code``, a user-facing ``message``, a
machine-readable ``reason`` and the ``next_action`` the UI should suggest.
The coordinator turns these into failed ``ActionResult`` objects; the API
layer maps each class to an HTTP status.
"""

from __future__ import annotations

from typing import Any, Optional

from .enums import InvalidationReason, NextAction


class BookingError(Exception):
    code = "ERR_BOOKING"
    default_message = "Booking operation failed"
    default_next_action = NextAction.NONE

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        reason: Optional[str] = None,
        next_action: Optional[NextAction] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.reason = reason
        self.next_action = next_action or self.default_next_action
        self.details = details or {}
        super().__init__(self.message)


class Unauthorized(BookingError):
    code = "ERR_UNAUTHORIZED"
    default_message = "Unauthorized"


class Forbidden(BookingError):
    code = "ERR_FORBIDDEN"
    default_message = "You are not authorized to modify this trip"


class NotFound(BookingError):
    code = "ERR_NOT_FOUND"
    default_message = "Not found"

    @classmethod
    def resource(cls, resource: str, resource_id: Any = None) -> "NotFound":
        return cls(
            f"{resource} not found",
            reason=f"{resource.lower()}_not_found",
            details={"resource": resource, "id": resource_id},
        )


class InvalidTransition(BookingError):
    """Raised when a trip status change violates the state machine."""

    code = "ERR_INVALID_TRANSITION"
    default_message = "Status change not permitted"


class InvalidState(BookingError):
    """The trip is in a state where the requested action makes no sense."""

    code = "ERR_INVALID_STATE"
    default_message = "Action not allowed in the current trip state"


class ValidationError(BookingError):
    code = "ERR_VALIDATION"
    default_message = "Validation error"
    default_next_action = NextAction.RETRY


class Conflict(BookingError):
    code = "ERR_CONFLICT"
    default_message = "Another update to this trip is in progress"
    default_next_action = NextAction.RETRY


class NotificationFailed(BookingError):
    code = "ERR_NOTIFICATION"
    default_message = "Failed to send notification email"
    default_next_action = NextAction.RETRY


# ── Driver-token terminal conditions ──────────────────────────────────


class TokenError(Forbidden):
    """Base for token conditions; all of them deny the driver action."""


class TokenAlreadyUsed(TokenError):
    code = "ERR_TOKEN_USED"
    default_message = "This link has already been used"

    def __init__(self, message: Optional[str] = None, **kwargs: Any):
        kwargs.setdefault("reason", "already_used")
        super().__init__(message, **kwargs)


class TokenExpired(TokenError):
    code = "ERR_TOKEN_EXPIRED"
    default_message = "This link has expired"
    default_next_action = NextAction.CONTACT_OWNER

    def __init__(self, message: Optional[str] = None, **kwargs: Any):
        kwargs.setdefault("reason", "expired")
        super().__init__(message, **kwargs)


_INVALIDATION_MESSAGES = {
    InvalidationReason.DRIVER_CHANGED: "A different driver has been assigned to this trip",
    InvalidationReason.TRIP_CANCELLED: "This trip has been cancelled",
    InvalidationReason.REPLACED_BY_NEW_TOKEN: "This link has been replaced by a newer one",
}


class TokenInvalidated(TokenError):
    code = "ERR_TOKEN_INVALIDATED"
    default_message = "This link is no longer valid"

    @classmethod
    def for_reason(
        cls, reason: Optional[InvalidationReason], message: Optional[str] = None
    ) -> "TokenInvalidated":
        next_action = (
            NextAction.CONTACT_OWNER
            if reason == InvalidationReason.REPLACED_BY_NEW_TOKEN
            else NextAction.NONE
        )
        return cls(
            message or _INVALIDATION_MESSAGES.get(reason, cls.default_message),
            reason=reason.value if reason else "invalidated",
            next_action=next_action,
        )
