"""
Booking model representing a passenger's reservation of named seats on a trip.

Key design decisions:
- SeatBooking rows are the source of truth for "this seat is taken"; the
  UNIQUE (trip_id, seat_number) constraint is the last line of defence
  against two concurrent bookings claiming the same seat
- Status is never deleted; cancellation deletes only the seat rows
- `hold_expires_at` bounds how long an unpaid booking may keep its seats
"""

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from saharam.db.base import Base, TimestampMixin


class BookingStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    ALL = (PENDING, CONFIRMED, CANCELLED, COMPLETED)


class PaymentStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"

    ALL = (PENDING, COMPLETED, FAILED, REFUNDED)


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    booking_reference = Column(String(20), unique=True, nullable=False, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    passenger_name = Column(String(200), nullable=False)
    passenger_phone = Column(String(32), nullable=False)
    passenger_email = Column(String(255), nullable=True)
    seat_numbers = Column(JSON, nullable=False)
    base_amount = Column(Numeric(12, 2), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING)
    payment_method = Column(String(20), nullable=True)
    payment_reference = Column(String(64), nullable=True, index=True)
    loyalty_points_used = Column(Integer, nullable=False, default=0)
    loyalty_points_earned = Column(Integer, nullable=False, default=0)
    qr_code = Column(Text, nullable=True)
    hold_expires_at = Column(DateTime(timezone=True), nullable=True)

    trip = relationship("Trip", lazy="selectin")
    user = relationship("User", lazy="selectin")
    payments = relationship(
        "Payment",
        back_populates="booking",
        lazy="selectin",
        order_by="Payment.id",
    )

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="check_booking_total_non_negative"),
        CheckConstraint("loyalty_points_used >= 0", name="check_booking_points_used_non_negative"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled', 'completed')",
            name="check_booking_status",
        ),
        CheckConstraint(
            "payment_status IN ('pending', 'completed', 'failed', 'refunded')",
            name="check_booking_payment_status",
        ),
        Index("ix_bookings_status_hold", "status", "hold_expires_at"),
    )

    @property
    def seat_count(self) -> int:
        return len(self.seat_numbers or [])

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.COMPLETED

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, ref={self.booking_reference}, "
            f"status={self.status}, payment={self.payment_status})>"
        )


class SeatBooking(Base, TimestampMixin):
    __tablename__ = "seat_bookings"

    id = Column(Integer, primary_key=True, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    seat_number = Column(String(8), nullable=False)

    __table_args__ = (
        UniqueConstraint("trip_id", "seat_number", name="uq_trip_seat"),
    )

    def __repr__(self) -> str:
        return f"<SeatBooking(trip={self.trip_id}, seat={self.seat_number}, booking={self.booking_id})>"
