from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class TicketVerifyRequest(BaseModel):
    qr_code_data: str = Field(..., min_length=1)
    trip_id: Optional[int] = None


class TicketVerification(BaseModel):
    valid: bool
    status: Optional[str] = None
    message: Optional[str] = None
    reason: Optional[str] = None


class TicketBookingSummary(BaseModel):
    reference: str
    passenger_name: str
    passenger_phone: str
    seat_numbers: list[str]
    total_amount: Decimal


class TicketTripSummary(BaseModel):
    id: int
    departure_time: datetime
    route: str
    vehicle: str


class TicketVerifyResponse(BaseModel):
    success: bool
    error: Optional[str] = None
    verification: TicketVerification
    booking: Optional[TicketBookingSummary] = None
    trip: Optional[TicketTripSummary] = None
    verification_time: Optional[datetime] = None
    verified_by: Optional[int] = None
