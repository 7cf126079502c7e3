"""
Payment model: one row per gateway transaction attempt for a booking.
Rows are updated in place as verification results arrive.
"""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from saharam.db.base import Base, TimestampMixin


class PaymentRecordStatus:
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    # Settled by the provider for less than the booking total (or another currency)
    MISMATCHED = "mismatched"

    TERMINAL = (SUCCESS, FAILED, MISMATCHED)


class Payment(Base, TimestampMixin):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="NGN")
    gateway = Column(String(20), nullable=False)
    gateway_reference = Column(String(64), unique=True, nullable=False, index=True)
    status = Column(String(20), nullable=False, default=PaymentRecordStatus.PENDING)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    gateway_response = Column(Text, nullable=True)

    booking = relationship("Booking", back_populates="payments")

    __table_args__ = (
        CheckConstraint("amount >= 0", name="check_payment_amount_non_negative"),
        CheckConstraint("status IN ('pending', 'success', 'failed', 'mismatched')", name="check_payment_status"),
    )

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, ref={self.gateway_reference}, status={self.status})>"


class ReceiptStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentReceipt(Base, TimestampMixin):
    """
    Proof of a manual bank transfer, uploaded by the passenger and reviewed
    by an admin. One receipt per transfer: a rejection fails the transfer,
    and the passenger starts a new one to try again.
    """

    __tablename__ = "payment_receipts"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=False, index=True)
    file_name = Column(String(255), nullable=False)
    stored_path = Column(String(512), nullable=False)
    content_type = Column(String(50), nullable=False)
    file_size = Column(Integer, nullable=False)
    amount_paid = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default=ReceiptStatus.PENDING)
    reviewed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    review_note = Column(String(255), nullable=True)

    __table_args__ = (
        CheckConstraint("amount_paid >= 0", name="check_receipt_amount_non_negative"),
        CheckConstraint("status IN ('pending', 'approved', 'rejected')", name="check_receipt_status"),
    )

    def __repr__(self) -> str:
        return f"<PaymentReceipt(id={self.id}, payment={self.payment_id}, status={self.status})>"
