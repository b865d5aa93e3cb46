"""Domain enumerations and state-transition rules."""

import enum


class TripStatus(str, enum.Enum):
    NOT_CONFIRMED = "not confirmed"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    BOOKED = "booked"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses
TRIP_TRANSITIONS: dict[TripStatus, set[TripStatus]] = {
    TripStatus.NOT_CONFIRMED: {
        TripStatus.PENDING,
        TripStatus.CONFIRMED,
        TripStatus.BOOKED,
    },
    TripStatus.PENDING: {
        TripStatus.CONFIRMED,
        TripStatus.REJECTED,
        TripStatus.CANCELLED,
        TripStatus.BOOKED,
    },
    TripStatus.CONFIRMED: {TripStatus.CANCELLED},
    TripStatus.BOOKED: {TripStatus.CANCELLED},
    TripStatus.REJECTED: {TripStatus.PENDING, TripStatus.NOT_CONFIRMED},
    TripStatus.CANCELLED: set(),
}


class InvalidationReason(str, enum.Enum):
    REPLACED_BY_NEW_TOKEN = "replaced_by_new_token"
    DRIVER_CHANGED = "driver_changed"
    TRIP_CANCELLED = "trip_cancelled"


class Decision(str, enum.Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class NextAction(str, enum.Enum):
    """What a user should do after a failed driver-link action."""

    NONE = "none"
    CONTACT_OWNER = "contact_owner"
    RETRY = "retry"
