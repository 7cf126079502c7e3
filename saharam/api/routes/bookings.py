"""
Booking endpoints with concurrency-safe seat reservation.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from saharam.core.logging import get_logger
from saharam.core.security import get_current_user, resolve_caller
from saharam.db.session import get_db
from saharam.models.booking import BookingStatus
from saharam.models.user import User
from saharam.schemas.booking import (
    BookingCancelResponse,
    BookingCreate,
    BookingResponse,
    QRCodeResponse,
    TicketLookupRequest,
)
from saharam.services import booking_service, notification_service, ticket_service
from saharam.services.cache_service import invalidate_trip_cache

logger = get_logger(__name__)
router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    background_tasks: BackgroundTasks,
    caller: Optional[User] = Depends(resolve_caller),
    db: AsyncSession = Depends(get_db),
):
    """
    Reserve named seats on a trip. Guests may book without signing in.

    Seats are held for a limited time until payment completes. A request
    that overlaps seats taken by a concurrent booking fails with
    `seat_conflict` and no partial reservation.
    """
    booking = await booking_service.create_booking(db, booking_data, caller)
    # Seat counts changed: commit first so a refill of the search cache sees them
    await db.commit()
    await invalidate_trip_cache()

    if booking.status == BookingStatus.CONFIRMED:
        background_tasks.add_task(
            notification_service.dispatch,
            notification_service.BOOKING_CONFIRMED,
            notification_service.snapshot(booking),
        )
    return booking


@router.get("/", response_model=list[BookingResponse])
async def list_user_bookings(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get all bookings for the authenticated user, newest first."""
    return await booking_service.get_user_bookings(db, user.id)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await booking_service.get_booking(db, booking_id)
    booking_service.ensure_can_access(booking, user)
    return booking


@router.delete("/{booking_id}", response_model=BookingCancelResponse)
async def cancel_booking(
    booking_id: int,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a booking and release its seats back to the trip."""
    booking = await booking_service.cancel_booking(db, booking_id, user)
    await db.commit()
    await invalidate_trip_cache()

    background_tasks.add_task(
        notification_service.dispatch,
        notification_service.BOOKING_CANCELLED,
        notification_service.snapshot(booking),
    )
    return BookingCancelResponse(
        message="Booking cancelled successfully",
        booking_id=booking.id,
        status=booking.status,
        payment_status=booking.payment_status,
    )


@router.post("/{booking_id}/qr-code", response_model=QRCodeResponse)
async def booking_qr_code(
    booking_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Signed QR ticket for a confirmed booking, as text and PNG data URL."""
    booking, raw, image = await ticket_service.issue_ticket(db, booking_id, user)
    return QRCodeResponse(
        booking_reference=booking.booking_reference,
        qr_code_data=raw,
        qr_code_image=image,
    )


@router.post("/ticket", response_model=QRCodeResponse)
async def guest_ticket(
    body: TicketLookupRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Signed QR ticket without signing in.

    Takes the booking reference and the phone number or email the booking
    was made with.
    """
    booking, raw, image = await ticket_service.issue_guest_ticket(db, body.booking_reference, body.contact)
    return QRCodeResponse(
        booking_reference=booking.booking_reference,
        qr_code_data=raw,
        qr_code_image=image,
    )
