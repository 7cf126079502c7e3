"""
Ticket issuance and boarding verification.
"""

import hmac
import re
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from saharam.core.exceptions import NotBookable, NotFound, ValidationFailed
from saharam.core.logging import get_logger
from saharam.core.metrics import record_ticket_verification
from saharam.models.booking import Booking, BookingStatus, PaymentStatus
from saharam.models.user import User
from saharam.services import booking_service, ticket_codec
from saharam.utils.timeutils import as_utc, utcnow

logger = get_logger(__name__)

# (hours until departure upper bound, status, message), checked in order
BOARDING_WINDOWS = (
    (-24, "expired", "Trip has ended"),
    (0, "boarding_ended", "Trip has departed"),
    (2, "boarding", "Boarding time"),
)
TOO_EARLY_HOURS = 24


def classify_boarding(departure_time: datetime, now: Optional[datetime] = None) -> tuple[str, str]:
    now = now or utcnow()
    hours = (as_utc(departure_time) - now).total_seconds() / 3600
    for bound, status, message in BOARDING_WINDOWS:
        if hours < bound:
            return status, message
    if hours > TOO_EARLY_HOURS:
        return "too_early", "Too early for boarding"
    return "valid", "Valid ticket"


def _is_boardable(booking: Booking) -> bool:
    paid = booking.payment_status == PaymentStatus.COMPLETED or booking.total_amount == 0
    return booking.status == BookingStatus.CONFIRMED and paid


async def _render(db: AsyncSession, booking: Booking) -> tuple[Booking, str, str]:
    if not _is_boardable(booking):
        raise NotBookable("Booking must be confirmed and paid before a ticket is issued")

    raw = booking.qr_code
    if not raw or ticket_codec.decode(raw) is None:
        raw = ticket_codec.dumps(ticket_codec.encode(booking))
        booking.qr_code = raw
        await db.flush()
        logger.info("ticket_reissued", booking_id=booking.id)

    return booking, raw, ticket_codec.render_png_data_url(raw)


async def issue_ticket(db: AsyncSession, booking_id: int, caller: User) -> tuple[Booking, str, str]:
    """Return (booking, QR payload, PNG data URL) for a confirmed booking."""
    booking = await booking_service.get_booking(db, booking_id)
    booking_service.ensure_can_access(booking, caller)
    return await _render(db, booking)


def _normalize_contact(value: Optional[str]) -> str:
    value = (value or "").strip().lower()
    if "@" in value:
        return value
    return re.sub(r"\D", "", value)


def _contact_matches(booking: Booking, contact: str) -> bool:
    given = _normalize_contact(contact)
    if not given:
        return False
    known = (_normalize_contact(booking.passenger_phone), _normalize_contact(booking.passenger_email))
    return any(expected and hmac.compare_digest(expected.encode(), given.encode()) for expected in known)


async def issue_guest_ticket(db: AsyncSession, booking_reference: str, contact: str) -> tuple[Booking, str, str]:
    """
    Ticket retrieval without an account.

    The booking reference alone is printed on receipts and easy to guess, so
    the passenger must also give the phone number or email on the booking.
    Any mismatch reads as "not found" to avoid confirming which references
    exist.
    """
    result = await db.execute(
        select(Booking).where(Booking.booking_reference == booking_reference.strip().upper())
    )
    booking = result.scalar_one_or_none()
    if booking is None or not _contact_matches(booking, contact):
        logger.warning("guest_ticket_lookup_failed", booking_reference=booking_reference)
        raise NotFound("No booking matches that reference and contact")
    return await _render(db, booking)


def _rejection(reason: str, error: str) -> dict:
    record_ticket_verification(False)
    logger.info("ticket_rejected", reason=reason)
    return {"success": False, "error": error, "verification": {"valid": False, "reason": reason}}


async def verify_ticket(
    db: AsyncSession,
    qr_code_data: str,
    trip_id: Optional[int],
    caller: User,
    now: Optional[datetime] = None,
) -> dict:
    now = now or utcnow()

    data = ticket_codec.decode(qr_code_data)
    if data is None:
        record_ticket_verification(False)
        logger.warning("ticket_invalid_format", verified_by=caller.id)
        raise ValidationFailed("Invalid QR code format or tampered data", reason="Invalid QR code format")

    result = await db.execute(select(Booking).where(Booking.booking_reference == data.booking_ref))
    booking = result.scalar_one_or_none()
    if booking is None:
        record_ticket_verification(False)
        raise NotFound("Booking not found", reason="Booking does not exist")

    if (
        booking.trip_id != data.trip_id
        or booking.passenger_name != data.passenger_name
        or sorted(booking.seat_numbers) != sorted(data.seat_numbers)
    ):
        return _rejection("Data mismatch detected", "QR code data does not match booking details")

    if trip_id is not None and booking.trip_id != trip_id:
        return _rejection("Wrong trip", "Ticket is not valid for this trip")

    if not _is_boardable(booking):
        return _rejection(
            f"Booking status: {booking.status}, Payment: {booking.payment_status}",
            "Booking is not confirmed or paid",
        )

    trip = booking.trip
    validity = ticket_codec.is_valid(data, trip.departure_time, now=now)
    if not validity.valid:
        return _rejection(validity.reason, validity.reason)

    status, message = classify_boarding(trip.departure_time, now)
    record_ticket_verification(True)
    logger.info(
        "ticket_verified",
        booking_id=booking.id,
        trip_id=trip.id,
        boarding_status=status,
        verified_by=caller.id,
    )

    vehicle = trip.vehicle
    return {
        "success": True,
        "verification": {"valid": True, "status": status, "message": message},
        "booking": {
            "reference": booking.booking_reference,
            "passenger_name": booking.passenger_name,
            "passenger_phone": booking.passenger_phone,
            "seat_numbers": booking.seat_numbers,
            "total_amount": booking.total_amount,
        },
        "trip": {
            "id": trip.id,
            "departure_time": as_utc(trip.departure_time),
            "route": trip.route_label,
            "vehicle": f"{vehicle.model} ({vehicle.plate_number})",
        },
        "verification_time": now,
        "verified_by": caller.id,
    }
