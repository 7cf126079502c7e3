"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, computed_field

from saharam.models.booking import BookingStatus, PaymentStatus


class BookingCreate(BaseModel):
    trip_id: int
    passenger_name: str = Field(..., min_length=2, max_length=200)
    passenger_phone: str = Field(..., min_length=7, max_length=32)
    passenger_email: Optional[EmailStr] = None
    seat_numbers: list[str]
    loyalty_points_to_use: int = Field(default=0, ge=0)


class BookingTripSummary(BaseModel):
    id: int
    route_label: str
    departure_time: datetime
    arrival_time: datetime
    base_price: Decimal

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: int
    booking_reference: str
    trip_id: int
    user_id: Optional[int]
    passenger_name: str
    passenger_phone: str
    passenger_email: Optional[str]
    seat_numbers: list[str]
    base_amount: Decimal
    loyalty_points_used: int
    loyalty_points_earned: int
    total_amount: Decimal
    status: str
    payment_status: str
    payment_method: Optional[str]
    payment_reference: Optional[str]
    hold_expires_at: Optional[datetime]
    trip: Optional[BookingTripSummary] = None
    created_at: datetime

    model_config = {"from_attributes": True}

    @computed_field
    @property
    def payment_required(self) -> bool:
        return (
            self.status == BookingStatus.PENDING
            and self.payment_status == PaymentStatus.PENDING
            and self.total_amount > 0
        )


class BookingCancelResponse(BaseModel):
    message: str
    booking_id: int
    status: str
    payment_status: str


class BookingListResponse(BaseModel):
    bookings: list[BookingResponse]
    total: int
    page: int
    page_size: int


class BookingStatusUpdate(BaseModel):
    status: Literal["confirmed", "cancelled", "completed"]


class QRCodeResponse(BaseModel):
    booking_reference: str
    qr_code_data: str
    qr_code_image: str


class TicketLookupRequest(BaseModel):
    """Guest ticket retrieval: the booking reference plus the passenger's phone or email."""
    booking_reference: str = Field(..., min_length=4, max_length=32)
    contact: str = Field(..., min_length=3, max_length=255)
