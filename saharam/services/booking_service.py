"""
Booking service with concurrency-safe seat reservation.

CONCURRENCY STRATEGY: live seat check + optimistic trip lock + unique seats
===========================================================================

Problem:
  Two passengers pick seat A1 on the same trip at the same moment. Both read
  "A1 is free", both insert, both pay, one of them stands in the aisle.

Solution, all inside the request's single transaction:

  1. Recompute the taken seats from live SeatBooking rows (never from the
     cached `available_seats` counter) and reject overlaps with SeatConflict.
  2. Decrement the trip counter with an optimistic lock:
       UPDATE trips SET available_seats = available_seats - N, version = version + 1
       WHERE id = :trip AND version = :v AND available_seats >= N
     If no row matched, another booking committed in between: re-read the
     trip, re-check the seats and retry (up to MAX_RETRY_ATTEMPTS).
     On PostgreSQL the UPDATE also takes the trip's row lock, so competing
     bookings for one trip serialize here until the winner commits.
  3. Insert one SeatBooking per seat. UNIQUE (trip_id, seat_number) is the
     final safety net; a violation rolls the whole unit back and is reported
     as SeatConflict.

Bookings for disjoint seats both succeed; the loser of an overlap always
sees SeatConflict, never a partial booking.

Unpaid bookings hold their seats for BOOKING_HOLD_MINUTES. Expired holds are
released lazily before every booking on the same trip and by the admin sweep.
"""

import secrets
import string
import time
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from saharam.core.config import get_settings
from saharam.core.exceptions import (
    AlreadyProcessed,
    AppError,
    Forbidden,
    InsufficientCapacity,
    InsufficientPoints,
    NotBookable,
    NotFound,
    SeatConflict,
    ValidationFailed,
)
from saharam.core.logging import get_logger
from saharam.core.metrics import (
    booking_latency,
    booking_retries,
    record_booking_attempt,
    record_seats_released,
)
from saharam.models.booking import Booking, BookingStatus, PaymentStatus, SeatBooking
from saharam.models.payment import Payment
from saharam.models.trip import Trip
from saharam.models.user import User, UserRole
from saharam.schemas.booking import BookingCreate
from saharam.services import loyalty_service, ticket_codec
from saharam.services.seat_allocator import compute_price, validate_requested_seats
from saharam.utils.timeutils import as_utc, utcnow

logger = get_logger(__name__)
settings = get_settings()

MAX_RETRY_ATTEMPTS = 3
MAX_REFERENCE_ATTEMPTS = 5

_BASE36 = string.digits + string.ascii_uppercase


def generate_booking_reference(prefix: Optional[str] = None) -> str:
    """3-letter prefix + last 6 digits of the millisecond clock + 4 base-36 chars."""
    millis = str(int(time.time() * 1000))[-6:]
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"{prefix or settings.BOOKING_REFERENCE_PREFIX}{millis}{suffix}".upper()


async def _unique_booking_reference(db: AsyncSession) -> str:
    for _ in range(MAX_REFERENCE_ATTEMPTS):
        reference = generate_booking_reference()
        exists = await db.execute(
            select(Booking.id).where(Booking.booking_reference == reference)
        )
        if exists.scalar_one_or_none() is None:
            return reference
        logger.warning("booking_reference_collision", reference=reference)
    raise RuntimeError("Could not generate a unique booking reference")


async def get_trip(db: AsyncSession, trip_id: int) -> Trip:
    result = await db.execute(select(Trip).where(Trip.id == trip_id))
    trip = result.scalar_one_or_none()
    if not trip:
        raise NotFound(f"Trip {trip_id} not found")
    return trip


async def get_booked_seats(db: AsyncSession, trip_id: int) -> set[str]:
    result = await db.execute(
        select(SeatBooking.seat_number).where(SeatBooking.trip_id == trip_id)
    )
    return set(result.scalars().all())


def _ensure_bookable(trip: Trip, now: datetime) -> None:
    if not trip.is_active:
        raise NotBookable("Trip is no longer active")
    if as_utc(trip.departure_time) <= now:
        raise NotBookable("Trip has already departed")


async def _reserve_trip_seats(db: AsyncSession, trip: Trip, seats: list[str]) -> None:
    count = len(seats)
    for attempt in range(1, MAX_RETRY_ATTEMPTS + 1):
        result = await db.execute(
            update(Trip)
            .where(
                Trip.id == trip.id,
                Trip.version == trip.version,
                Trip.available_seats >= count,
            )
            .values(
                available_seats=Trip.available_seats - count,
                version=Trip.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        await db.refresh(trip)
        if result.rowcount == 1:
            return

        booking_retries.inc()
        logger.info("booking_retry", trip_id=trip.id, attempt=attempt, reason="version_conflict")

        taken = await get_booked_seats(db, trip.id)
        conflicts = [s for s in seats if s in taken]
        if conflicts:
            raise SeatConflict(conflicts)
        if trip.available_seats < count:
            raise InsufficientCapacity(
                f"Not enough seats. Requested: {count}, Available: {trip.available_seats}"
            )

    raise SeatConflict(seats, "Booking failed due to high demand. Please try again.")


async def create_booking(
    db: AsyncSession,
    data: BookingCreate,
    caller: Optional[User] = None,
) -> Booking:
    """
    Reserve seats and create a pending booking as one unit of work.

    Zero-amount bookings (fully covered by loyalty points) are confirmed and
    ticketed immediately; everything else waits for payment.
    """
    start = time.perf_counter()
    try:
        booking = await _create_booking(db, data, caller)
    except SeatConflict:
        record_booking_attempt("conflict")
        raise
    except AppError:
        record_booking_attempt("rejected")
        raise
    except Exception:
        record_booking_attempt("error")
        raise
    record_booking_attempt("success")
    booking_latency.observe(time.perf_counter() - start)
    return booking


async def _create_booking(
    db: AsyncSession,
    data: BookingCreate,
    caller: Optional[User],
) -> Booking:
    now = utcnow()
    trip = await get_trip(db, data.trip_id)
    _ensure_bookable(trip, now)

    seats = validate_requested_seats(data.seat_numbers, trip.total_seats, trip.seats_per_row)
    if len(seats) > settings.MAX_SEATS_PER_BOOKING:
        raise ValidationFailed(
            f"At most {settings.MAX_SEATS_PER_BOOKING} seats per booking",
            field="seat_numbers",
        )

    await release_expired_holds(db, now=now, trip_id=trip.id)

    taken = await get_booked_seats(db, trip.id)
    conflicts = [s for s in seats if s in taken]
    if conflicts:
        logger.warning("booking_seat_conflict", trip_id=trip.id, seats=conflicts)
        raise SeatConflict(conflicts)

    if len(seats) > trip.available_seats:
        raise InsufficientCapacity(
            f"Not enough seats. Requested: {len(seats)}, Available: {trip.available_seats}"
        )

    points_requested = data.loyalty_points_to_use
    if points_requested and caller is None:
        raise ValidationFailed("Sign in to use loyalty points", field="loyalty_points_to_use")
    balance = caller.loyalty_points if caller is not None else 0
    if points_requested > balance:
        raise InsufficientPoints(
            f"Requested {points_requested} points but balance is {balance}",
            requested=points_requested,
            balance=balance,
        )

    quote = compute_price(trip.base_price, len(seats), points_requested, balance)

    await _reserve_trip_seats(db, trip, seats)

    booking = Booking(
        booking_reference=await _unique_booking_reference(db),
        trip_id=trip.id,
        user_id=caller.id if caller is not None else None,
        passenger_name=data.passenger_name,
        passenger_phone=data.passenger_phone,
        passenger_email=data.passenger_email,
        seat_numbers=seats,
        base_amount=quote.base_amount,
        total_amount=quote.total_amount,
        status=BookingStatus.PENDING,
        payment_status=PaymentStatus.PENDING if quote.payment_required else PaymentStatus.COMPLETED,
        loyalty_points_used=quote.points_used,
        hold_expires_at=now + timedelta(minutes=settings.BOOKING_HOLD_MINUTES)
        if quote.payment_required else None,
    )
    booking.trip = trip
    db.add(booking)
    try:
        await db.flush()
        db.add_all([
            SeatBooking(trip_id=trip.id, booking_id=booking.id, seat_number=seat)
            for seat in seats
        ])
        await db.flush()
    except IntegrityError:
        await db.rollback()
        taken = await get_booked_seats(db, data.trip_id)
        conflicts = [s for s in seats if s in taken] or seats
        logger.warning("booking_seat_conflict", trip_id=data.trip_id, seats=conflicts, stage="insert")
        raise SeatConflict(conflicts)

    if quote.points_used:
        await loyalty_service.redeem_points(db, caller.id, booking, quote.points_used)

    if not quote.payment_required:
        confirm_booking(booking)

    await db.flush()
    await db.refresh(booking)

    logger.info(
        "booking_created",
        booking_id=booking.id,
        reference=booking.booking_reference,
        trip_id=trip.id,
        seats=seats,
        total_amount=str(booking.total_amount),
        points_used=quote.points_used,
        status=booking.status,
    )
    return booking


def confirm_booking(booking: Booking) -> None:
    """Move a paid (or free) booking to confirmed and attach its QR payload."""
    if booking.payment_status != PaymentStatus.COMPLETED and booking.total_amount > 0:
        raise ValueError("Only paid or zero-amount bookings can be confirmed")
    booking.status = BookingStatus.CONFIRMED
    booking.hold_expires_at = None
    booking.qr_code = ticket_codec.dumps(ticket_codec.encode(booking))


async def release_booking(
    db: AsyncSession,
    booking: Booking,
    reason: str,
    payment_status: Optional[str] = None,
) -> int:
    """
    Cancel a booking and hand its seats back to the trip.

    This is the one compensating action in the system: payment failure, hold
    expiry and cancellation all go through it. The number of seats returned is
    the number of seat rows actually deleted, so a repeated release can never
    inflate the trip counter.
    """
    result = await db.execute(delete(SeatBooking).where(SeatBooking.booking_id == booking.id))
    released = result.rowcount or 0

    if released:
        await db.execute(
            update(Trip)
            .where(Trip.id == booking.trip_id)
            .values(
                available_seats=Trip.available_seats + released,
                version=Trip.version + 1,
            )
            .execution_options(synchronize_session=False)
        )

    booking.status = BookingStatus.CANCELLED
    booking.hold_expires_at = None
    if payment_status is not None:
        booking.payment_status = payment_status

    await loyalty_service.refund_redeemed_points(db, booking)
    if payment_status == PaymentStatus.REFUNDED:
        await loyalty_service.reverse_earned_points(db, booking)
    await db.flush()

    trip = await db.get(Trip, booking.trip_id)
    if trip is not None:
        await db.refresh(trip)

    record_seats_released(reason, released)
    logger.info(
        "booking_released",
        booking_id=booking.id,
        reference=booking.booking_reference,
        trip_id=booking.trip_id,
        seats_released=released,
        reason=reason,
    )
    return released


async def release_expired_holds(
    db: AsyncSession,
    now: Optional[datetime] = None,
    trip_id: Optional[int] = None,
) -> int:
    """
    Cancel unpaid bookings whose hold has lapsed. Returns bookings released.

    Rows are locked with SKIP LOCKED: a booking that a payment reconciliation
    is holding right now is left for the next sweep, and the filter is
    re-checked against the locked row so a booking paid in the meantime is
    never released.
    """
    now = now or utcnow()
    query = (
        select(Booking)
        .where(
            Booking.status == BookingStatus.PENDING,
            Booking.payment_status == PaymentStatus.PENDING,
            Booking.hold_expires_at.is_not(None),
            Booking.hold_expires_at <= now,
        )
        .with_for_update(skip_locked=True)
        .execution_options(populate_existing=True)
    )
    if trip_id is not None:
        query = query.where(Booking.trip_id == trip_id)

    expired = list((await db.execute(query)).scalars().all())
    for booking in expired:
        await release_booking(db, booking, reason="hold_expired", payment_status=PaymentStatus.FAILED)

    if expired:
        logger.info("expired_holds_released", count=len(expired), trip_id=trip_id)
    return len(expired)


async def get_booking(db: AsyncSession, booking_id: int, for_update: bool = False) -> Booking:
    """
    Load a booking, optionally taking its row lock.

    Every read-then-write of booking state (payment reconciliation,
    cancellation, admin status changes) passes for_update=True so the
    checks it makes still hold when it writes.
    """
    query = select(Booking).where(Booking.id == booking_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    booking = result.scalar_one_or_none()
    if not booking:
        raise NotFound(f"Booking {booking_id} not found")
    return booking


async def get_booking_by_payment_reference(
    db: AsyncSession,
    reference: str,
    for_update: bool = False,
) -> Optional[Booking]:
    """
    Resolve any payment reference ever issued for a booking.

    Goes through the payments table rather than Booking.payment_reference,
    which only remembers the latest initialization.
    """
    result = await db.execute(select(Payment.booking_id).where(Payment.gateway_reference == reference))
    booking_id = result.scalar_one_or_none()
    if booking_id is None:
        return None
    return await get_booking(db, booking_id, for_update=for_update)


def ensure_can_access(booking: Booking, caller: User) -> None:
    if caller.role == UserRole.ADMIN:
        return
    if booking.user_id is None or booking.user_id != caller.id:
        raise Forbidden("Unauthorized access to booking")


async def cancel_booking(db: AsyncSession, booking_id: int, caller: User) -> Booking:
    """Cancel a booking on behalf of its owner or an admin and release its seats."""
    booking = await get_booking(db, booking_id, for_update=True)
    ensure_can_access(booking, caller)

    if booking.status == BookingStatus.CANCELLED:
        raise AlreadyProcessed("Booking is already cancelled")
    if booking.status == BookingStatus.COMPLETED or as_utc(booking.trip.departure_time) <= utcnow():
        raise NotBookable("Cannot cancel a booking for a trip that has already departed")

    refund = PaymentStatus.REFUNDED if booking.is_paid and booking.total_amount > 0 else None
    await release_booking(db, booking, reason="cancelled", payment_status=refund)
    await db.refresh(booking)

    logger.info("booking_cancelled", booking_id=booking.id, cancelled_by=caller.id)
    return booking


async def get_user_bookings(db: AsyncSession, user_id: int) -> list[Booking]:
    result = await db.execute(
        select(Booking)
        .where(Booking.user_id == user_id)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
    )
    return list(result.scalars().all())


async def list_bookings(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 50,
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
) -> tuple[list[Booking], int]:
    query = select(Booking)
    if status:
        query = query.where(Booking.status == status)
    if payment_status:
        query = query.where(Booking.payment_status == payment_status)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar()
    result = await db.execute(
        query.order_by(Booking.id.desc()).offset((page - 1) * page_size).limit(page_size)
    )
    return list(result.scalars().all()), total
