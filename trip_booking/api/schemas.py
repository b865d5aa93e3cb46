"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field

from trip_booking.domain.enums import Decision, TripStatus


# ── Requests ──────────────────────────────────────────────────────────


class AssignDriverRequest(BaseModel):
    driver_email: str = Field(..., max_length=255)


class StatusUpdateRequest(BaseModel):
    status: str
    notify_driver: bool = False


class BookRequest(BaseModel):
    driver_email: Optional[str] = Field(None, max_length=255)


class QuoteRequestRequest(BaseModel):
    driver_email: str = Field(..., max_length=255)


class QuoteSubmitRequest(BaseModel):
    price: float
    currency: str = Field(..., max_length=8)
    driver_token: Optional[str] = Field(
        None,
        max_length=128,
        description="Magic-link token; omit when authenticating with a bearer token.",
    )


class TokenRequest(BaseModel):
    token: str = Field(..., max_length=128)


class RespondRequest(BaseModel):
    token: str = Field(..., max_length=128)
    decision: Decision


class LegacyConfirmRequest(BaseModel):
    driver_email: str = Field(..., max_length=255)


# ── Responses ─────────────────────────────────────────────────────────


class TripResponse(BaseModel):
    id: str
    status: TripStatus
    driver: Optional[str] = None
    owner_email: Optional[str] = None
    version: int
    trip_date: Optional[date] = None
    trip_destination: Optional[str] = None
    lead_passenger_name: Optional[str] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ActionResponse(BaseModel):
    ok: bool = True
    message: str = ""
    trip: Optional[TripResponse] = None
    warnings: list[str] = []


class AssignmentResponse(ActionResponse):
    driver_email: str
    token_reused: bool
    token_expires_at: Optional[datetime] = None
    magic_link: Optional[str] = None


class ResendResponse(ActionResponse):
    driver_email: str
    token_reused: bool


class QuoteResponse(BaseModel):
    id: str
    trip_id: str
    email: str
    price: float
    currency: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class QuoteSubmitResponse(ActionResponse):
    quote: QuoteResponse
    is_update: bool
    auto_confirmed: bool


class TokenValidationResponse(BaseModel):
    driver_email: str
    trip_status: TripStatus
    token_used: bool
    can_take_action: bool
    message: str = ""


class HealthResponse(BaseModel):
    status: str = "ok"
    database: str = "ok"


class ErrorResponse(BaseModel):
    error_code: str
    message: str
    reason: Optional[str] = None
    next_action: str
