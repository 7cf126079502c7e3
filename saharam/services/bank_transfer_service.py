"""
Manual bank transfer: the passenger pays into the company account, uploads
a photo of the transfer receipt, and an admin approves or rejects it.

A transfer is an ordinary Payment row with gateway "bank_transfer", so the
review decision is applied through the same reconciliation path as a
gateway webhook: approval is a settled success for the amount on the
receipt, rejection a settled failure.
"""

import os
import secrets
import string
import time
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from saharam.core.config import get_settings
from saharam.core.exceptions import AlreadyExists, AlreadyProcessed, NotFound, ValidationFailed
from saharam.core.logging import get_logger
from saharam.models.booking import Booking
from saharam.models.payment import Payment, PaymentReceipt, PaymentRecordStatus, ReceiptStatus
from saharam.models.user import User
from saharam.services import booking_service, payment_service
from saharam.services.payments import VerificationResult
from saharam.services.payments.manager import new_reference
from saharam.utils.timeutils import as_utc, utcnow

logger = get_logger(__name__)
settings = get_settings()

GATEWAY = "bank_transfer"
REFERENCE_CODE = "BNK"

# Content type -> stored file extension
RECEIPT_TYPES = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}

_BASE36 = string.digits + string.ascii_lowercase


def account_details() -> dict:
    return {
        "bank_name": settings.BANK_TRANSFER_BANK_NAME,
        "account_name": settings.BANK_TRANSFER_ACCOUNT_NAME,
        "account_number": settings.BANK_TRANSFER_ACCOUNT_NUMBER,
    }


async def start_bank_transfer(
    db: AsyncSession,
    booking_id: int,
    caller: Optional[User] = None,
) -> tuple[Booking, Payment]:
    """Open a bank-transfer payment for a pending booking."""
    if not settings.BANK_TRANSFER_ENABLED:
        raise ValidationFailed("Bank transfer is not available", field="provider")

    booking = await booking_service.get_booking(db, booking_id, for_update=True)
    if caller is not None:
        booking_service.ensure_can_access(booking, caller)
    payment_service.ensure_payable(booking)

    payment = Payment(
        booking_id=booking.id,
        amount=booking.total_amount,
        currency=settings.PAYMENT_CURRENCY,
        gateway=GATEWAY,
        gateway_reference=new_reference(REFERENCE_CODE),
        status=PaymentRecordStatus.PENDING,
    )
    db.add(payment)
    booking.payment_reference = payment.gateway_reference
    booking.payment_method = GATEWAY.upper()
    await db.flush()

    logger.info(
        "bank_transfer_started",
        booking_id=booking.id,
        reference=payment.gateway_reference,
        amount=str(payment.amount),
    )
    return booking, payment


def _write_receipt(path: Path, content: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


def _stored_name(booking: Booking, extension: str) -> str:
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"receipt_{booking.booking_reference}_{int(time.time() * 1000)}_{suffix}.{extension}"


async def submit_receipt(
    db: AsyncSession,
    booking_id: int,
    payment_reference: str,
    amount_paid: Decimal,
    file_name: str,
    content_type: str,
    content: bytes,
    caller: Optional[User] = None,
) -> tuple[PaymentReceipt, Booking]:
    """
    Store a transfer receipt against a bank-transfer payment.

    The booking's hold is stretched to cover the review window (never past
    departure) so the seats are not swept while an admin looks at it.
    """
    extension = RECEIPT_TYPES.get((content_type or "").lower())
    if extension is None:
        raise ValidationFailed("Receipt must be a JPG, PNG or WebP image", field="receipt")
    if not content:
        raise ValidationFailed("Receipt file is empty", field="receipt")
    if len(content) > settings.RECEIPT_MAX_BYTES:
        raise ValidationFailed(
            f"Receipt is larger than {settings.RECEIPT_MAX_BYTES // (1024 * 1024)}MB", field="receipt"
        )
    if amount_paid <= 0:
        raise ValidationFailed("Amount paid must be positive", field="amount_paid")

    booking = await booking_service.get_booking(db, booking_id, for_update=True)
    if caller is not None:
        booking_service.ensure_can_access(booking, caller)

    payment = (
        await db.execute(
            select(Payment).where(
                Payment.gateway_reference == payment_reference,
                Payment.booking_id == booking.id,
                Payment.gateway == GATEWAY,
            )
        )
    ).scalar_one_or_none()
    if payment is None:
        raise ValidationFailed("Payment reference does not match this booking", field="payment_reference")
    if payment.status != PaymentRecordStatus.PENDING:
        raise AlreadyProcessed("This transfer has already been reviewed")
    payment_service.ensure_payable(booking)

    existing = (
        await db.execute(select(PaymentReceipt.id).where(PaymentReceipt.payment_id == payment.id))
    ).first()
    if existing is not None:
        raise AlreadyExists("A receipt for this transfer is already awaiting review", field="receipt")

    path = Path(settings.RECEIPT_UPLOAD_DIR) / _stored_name(booking, extension)
    await run_in_threadpool(_write_receipt, path, content)

    receipt = PaymentReceipt(
        booking_id=booking.id,
        payment_id=payment.id,
        file_name=os.path.basename(file_name or path.name)[:255],
        stored_path=str(path),
        content_type=content_type.lower(),
        file_size=len(content),
        amount_paid=amount_paid,
        status=ReceiptStatus.PENDING,
    )
    db.add(receipt)

    review_until = utcnow() + timedelta(hours=settings.BANK_TRANSFER_REVIEW_HOURS)
    review_until = min(review_until, as_utc(booking.trip.departure_time))
    if booking.hold_expires_at is not None and as_utc(booking.hold_expires_at) < review_until:
        booking.hold_expires_at = review_until

    await db.flush()
    await db.refresh(receipt)

    logger.info(
        "receipt_uploaded",
        booking_id=booking.id,
        receipt_id=receipt.id,
        reference=payment.gateway_reference,
        amount_paid=str(amount_paid),
        file_size=receipt.file_size,
    )
    return receipt, booking


async def list_receipts(db: AsyncSession, status: Optional[str] = None) -> list[PaymentReceipt]:
    query = select(PaymentReceipt)
    if status:
        query = query.where(PaymentReceipt.status == status)
    result = await db.execute(query.order_by(PaymentReceipt.id))
    return list(result.scalars().all())


async def review_receipt(
    db: AsyncSession,
    receipt_id: int,
    approve: bool,
    admin: User,
    note: Optional[str] = None,
) -> tuple[PaymentReceipt, Booking, str]:
    """Approve or reject a pending receipt and reconcile its booking."""
    receipt = (
        await db.execute(
            select(PaymentReceipt)
            .where(PaymentReceipt.id == receipt_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if receipt is None:
        raise NotFound(f"Receipt {receipt_id} not found")
    if receipt.status != ReceiptStatus.PENDING:
        raise AlreadyProcessed(f"Receipt has already been {receipt.status}")

    payment = await db.get(Payment, receipt.payment_id)
    now = utcnow()
    if approve:
        result = VerificationResult(
            success=True,
            provider=GATEWAY,
            reference=payment.gateway_reference,
            status="success",
            amount=Decimal(receipt.amount_paid),
            currency=payment.currency,
            paid_at=now,
            gateway_response=note or "receipt approved",
        )
    else:
        result = VerificationResult(
            success=False,
            provider=GATEWAY,
            reference=payment.gateway_reference,
            status="rejected",
            gateway_response=note or "receipt rejected",
        )

    booking, outcome = await payment_service.update_booking_payment_status(
        db, payment.gateway_reference, result
    )

    # An approved receipt whose amount falls short leaves the booking unpaid
    accepted = approve and outcome != payment_service.AMOUNT_MISMATCH
    receipt.status = ReceiptStatus.APPROVED if accepted else ReceiptStatus.REJECTED
    receipt.reviewed_by = admin.id
    receipt.reviewed_at = now
    receipt.review_note = note
    await db.flush()
    await db.refresh(receipt)

    logger.info(
        "receipt_reviewed",
        receipt_id=receipt.id,
        booking_id=booking.id,
        decision=receipt.status,
        outcome=outcome,
        admin_id=admin.id,
    )
    return receipt, booking, outcome
