"""Plain-text notification content for each workflow event."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .entities import Trip


@dataclass(frozen=True)
class Message:
    subject: str
    body: str


def format_trip_date(trip: Trip) -> str:
    if trip.trip_date is None:
        return "an upcoming date"
    d = trip.trip_date
    return f"{d.strftime('%A')}, {d.day} {d.strftime('%B %Y')}"


def trip_link(base_url: str, trip_id: str) -> str:
    return f"{base_url.rstrip('/')}/results/{trip_id}"


def magic_link(base_url: str, trip_id: str, token: str) -> str:
    return f"{trip_link(base_url, trip_id)}?driver_token={token}"


def _details(trip: Trip) -> str:
    lines = [f"Trip date: {format_trip_date(trip)}"]
    if trip.trip_destination:
        lines.append(f"Destination: {trip.trip_destination}")
    if trip.lead_passenger_name:
        lines.append(f"Passenger: {trip.lead_passenger_name}")
    return "\n".join(lines)


def driver_assignment(trip: Trip, link: str, ttl_days: int) -> Message:
    return Message(
        subject=f"You've been assigned to a trip - {format_trip_date(trip)}",
        body=(
            "Hi,\n\nYou've been assigned to a trip and your confirmation is needed.\n\n"
            f"{_details(trip)}\nStatus: Pending your confirmation\n\n"
            f"View and confirm trip: {link}\n\n"
            f"This link is valid for {ttl_days} days and can only be used once."
        ),
    )


def driver_unassignment(trip: Trip) -> Message:
    return Message(
        subject=f"Trip assignment cancelled - {format_trip_date(trip)}",
        body=(
            f"Hi,\n\nYou have been unassigned from a trip scheduled on {format_trip_date(trip)}.\n\n"
            f"{_details(trip)}\nStatus: Unassigned\n\n"
            "The trip owner has assigned a different driver to this trip."
        ),
    )


def driver_confirmation(trip: Trip, link: str) -> Message:
    return Message(
        subject=f"Trip confirmed - {format_trip_date(trip)}",
        body=(
            "Thank you for confirming your availability for this trip.\n\n"
            f"{_details(trip)}\n\nView trip details: {link}"
        ),
    )


def owner_driver_accepted(trip: Trip, driver_email: str, link: str) -> Message:
    return Message(
        subject=f"Driver confirmed trip - {format_trip_date(trip)}",
        body=(
            f"The driver ({driver_email}) has accepted your trip assignment.\n\n"
            f"{_details(trip)}\nStatus: Confirmed\n\nView trip: {link}"
        ),
    )


def owner_driver_declined(trip: Trip, driver_email: str, link: str) -> Message:
    return Message(
        subject=f"Driver declined trip - {format_trip_date(trip)}",
        body=(
            f"The driver ({driver_email}) has declined your trip assignment.\n\n"
            f"{_details(trip)}\nStatus: Rejected\n\n"
            f"You can now assign a different driver to this trip: {link}"
        ),
    )


def trip_cancelled(trip: Trip) -> Message:
    return Message(
        subject=f"Trip Cancelled - {format_trip_date(trip)}",
        body=(
            f"Hello,\n\nThe trip scheduled on {format_trip_date(trip)} has been cancelled.\n\n"
            "No further action is required."
        ),
    )


def status_changed(trip: Trip, link: str, note: Optional[str] = None) -> Message:
    body = (
        f"Hello,\n\nThe status for your trip scheduled on {format_trip_date(trip)} "
        f"has been changed.\n\nNew status: {trip.status.value.title()}\n\n"
        f"View trip details: {link}"
    )
    if note:
        body = f"{body}\n\n{note}"
    return Message(subject=f"Trip Status Changed - {format_trip_date(trip)}", body=body)


def quote_request(trip: Trip, link: str) -> Message:
    return Message(
        subject=f"Quote request - {format_trip_date(trip)}",
        body=(
            "Hello,\n\nYou have been asked to provide a quote for the following trip.\n\n"
            f"{_details(trip)}\n\nView the trip and submit your quote: {link}"
        ),
    )


def quote_submitted(trip: Trip, driver_email: str, price: float, currency: str, link: str) -> Message:
    return Message(
        subject=f"New quote received - {format_trip_date(trip)}",
        body=(
            f"{driver_email} quoted {price:.2f} {currency} for your trip.\n\n"
            f"{_details(trip)}\n\nCompare quotes: {link}"
        ),
    )
