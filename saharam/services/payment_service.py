"""
Payment initialization and reconciliation.

RECONCILIATION RULES
====================

A booking may be checked out more than once (an abandoned card page, a
switch from Paystack to OPay); every attempt is a Payment row with its own
reference, and a reference always resolves to its booking through that row.

Per payment reference: initialized -> success | failed | mismatched. All
outcomes are terminal and sticky, because gateways deliver webhooks at least
once and in any order:

  - a success for a reference already applied is a no-op (duplicate delivery)
  - a success for less than the amount asked (or in another currency) marks
    the payment mismatched and leaves the booking unpaid
  - a success for a booking paid through another reference is recorded and
    logged for manual refund
  - a failure for a reference already paid is ignored (success wins)
  - a failure releases the seats only when no other attempt is still open
  - a success for a booking already cancelled marks the payment row only and
    is logged for manual refund; the seats may have been resold

Local state is only mutated from a fresh provider verification, never from
the webhook body itself. An unsettled verification (pending, or provider
unreachable) changes nothing. Every reconciliation holds the booking's row
lock until commit.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from saharam.core.config import get_settings
from saharam.core.exceptions import (
    AlreadyProcessed,
    GatewayUnavailable,
    NotBookable,
    NotFound,
    PaymentProviderError,
    ValidationFailed,
)
from saharam.core.logging import get_logger
from saharam.core.metrics import record_payment_initialization, record_payment_verification
from saharam.models.booking import Booking, BookingStatus, PaymentStatus
from saharam.models.payment import Payment, PaymentRecordStatus
from saharam.models.user import User
from saharam.schemas.payment import OPayWebhookEvent, PaystackWebhookEvent
from saharam.services import booking_service, loyalty_service
from saharam.services.payments import PaymentManager, VerificationResult
from saharam.services.payments.opay import FAILED_STATUSES as OPAY_FAILED
from saharam.services.payments.opay import PENDING_STATUSES as OPAY_PENDING
from saharam.utils.timeutils import as_utc, utcnow

logger = get_logger(__name__)
settings = get_settings()

# Reconciliation outcomes, also used as metric labels
SUCCEEDED = "success"
FAILED = "failed"
DUPLICATE = "duplicate"
LATE_SUCCESS = "late_success"
PENDING = "pending"
IGNORED = "ignored"
AMOUNT_MISMATCH = "amount_mismatch"


def ensure_payable(booking: Booking) -> None:
    if booking.payment_status == PaymentStatus.COMPLETED:
        raise AlreadyProcessed("Booking has already been paid")
    if booking.status == BookingStatus.CANCELLED:
        raise NotBookable("Booking has been cancelled")
    if booking.hold_expires_at is not None and as_utc(booking.hold_expires_at) <= utcnow():
        raise NotBookable("Booking hold has expired, please book again")


async def initialize_payment(
    db: AsyncSession,
    manager: PaymentManager,
    booking_id: int,
    provider: str,
    caller: Optional[User] = None,
    return_url: Optional[str] = None,
) -> tuple[Booking, Payment, Optional[str]]:
    """Open a gateway transaction for a pending booking and record it."""
    booking = await booking_service.get_booking(db, booking_id)
    if caller is not None:
        booking_service.ensure_can_access(booking, caller)
    ensure_payable(booking)

    email = booking.passenger_email or (booking.user.email if booking.user else None)
    if not email:
        raise ValidationFailed("An email address is required for online payment", field="passenger_email")

    try:
        result = await manager.initialize(
            booking_id=booking.id,
            amount=booking.total_amount,
            customer_email=email,
            customer_name=booking.passenger_name,
            customer_phone=booking.passenger_phone,
            provider=provider,
            metadata={"booking_reference": booking.booking_reference},
            return_url=return_url,
        )
    except PaymentProviderError as e:
        record_payment_initialization(provider, ok=False)
        logger.error("payment_initialization_failed", booking_id=booking.id, provider=provider, error=str(e))
        raise GatewayUnavailable(str(e), provider=provider)

    # Re-read under lock; a reconciliation may have settled the booking while the gateway was called
    booking = await booking_service.get_booking(db, booking.id, for_update=True)
    payment = Payment(
        booking_id=booking.id,
        amount=booking.total_amount,
        currency=settings.PAYMENT_CURRENCY,
        gateway=provider,
        gateway_reference=result.reference,
        status=PaymentRecordStatus.PENDING,
    )
    db.add(payment)
    if booking.payment_status != PaymentStatus.COMPLETED:
        booking.payment_reference = result.reference
        booking.payment_method = provider.upper()
    await db.flush()

    record_payment_initialization(provider, ok=True)
    return booking, payment, result.authorization_url


async def _payment_for(db: AsyncSession, reference: str) -> Payment:
    row = await db.execute(
        select(Payment)
        .where(Payment.gateway_reference == reference)
        .execution_options(populate_existing=True)
    )
    return row.scalar_one()


async def _has_open_attempt(db: AsyncSession, booking: Booking, payment: Payment) -> bool:
    row = await db.execute(
        select(func.count())
        .select_from(Payment)
        .where(
            Payment.booking_id == booking.id,
            Payment.id != payment.id,
            Payment.status == PaymentRecordStatus.PENDING,
        )
    )
    return row.scalar_one() > 0


def _shortfall(payment: Payment, result: VerificationResult) -> Optional[str]:
    """Describe why a settled amount does not cover the payment, or None if it does."""
    if result.currency and result.currency.upper() != payment.currency.upper():
        return f"expected {payment.currency}, received {result.currency}"
    if Decimal(result.amount) < Decimal(payment.amount):
        return f"expected {payment.amount} {payment.currency}, received {result.amount}"
    return None


async def update_booking_payment_status(
    db: AsyncSession,
    reference: str,
    result: VerificationResult,
) -> tuple[Booking, str]:
    """
    Apply a provider verification to the booking that owns `reference`.

    The booking row is locked for the rest of the transaction, so a webhook
    and a client verify for the same booking (or a verify racing the hold
    sweep or a cancellation) apply one after the other and each sees the
    state the other left behind.
    """
    booking = await booking_service.get_booking_by_payment_reference(db, reference, for_update=True)
    if booking is None:
        raise NotFound(f"No booking for payment reference {reference}")

    if not result.terminal:
        record_payment_verification(result.provider, PENDING)
        logger.info("payment_not_settled", reference=reference, status=result.status, error=result.error)
        return booking, PENDING

    payment = await _payment_for(db, reference)
    if result.success:
        outcome = await _apply_success(db, booking, payment, result)
    else:
        outcome = await _apply_failure(db, booking, payment, result)
    record_payment_verification(result.provider, outcome)

    await db.flush()
    await db.refresh(booking)
    return booking, outcome


async def _apply_success(db: AsyncSession, booking: Booking, payment: Payment, result: VerificationResult) -> str:
    if payment.status == PaymentRecordStatus.SUCCESS:
        logger.info("payment_already_processed", booking_id=booking.id, reference=result.reference)
        return DUPLICATE

    shortfall = _shortfall(payment, result)
    if shortfall:
        payment.status = PaymentRecordStatus.MISMATCHED
        payment.gateway_response = shortfall
        logger.warning(
            "payment_amount_mismatch",
            booking_id=booking.id,
            reference=result.reference,
            expected=str(payment.amount),
            received=str(result.amount),
            currency=result.currency,
        )
        return AMOUNT_MISMATCH

    payment.status = PaymentRecordStatus.SUCCESS
    payment.paid_at = result.paid_at or utcnow()
    payment.gateway_response = result.gateway_response

    if booking.payment_status == PaymentStatus.COMPLETED:
        # Paid twice through two checkouts; the second charge needs a manual refund
        logger.warning(
            "payment_duplicate_charge",
            booking_id=booking.id,
            reference=result.reference,
            paid_reference=booking.payment_reference,
            amount=str(result.amount),
        )
        return DUPLICATE

    if booking.status == BookingStatus.CANCELLED:
        logger.warning(
            "payment_after_cancellation",
            booking_id=booking.id,
            reference=result.reference,
            amount=str(result.amount),
        )
        return LATE_SUCCESS

    booking.payment_status = PaymentStatus.COMPLETED
    booking.payment_reference = payment.gateway_reference
    booking.payment_method = payment.gateway.upper()
    booking_service.confirm_booking(booking)

    if booking.user_id:
        points = loyalty_service.points_for_amount(booking.total_amount)
        if points > 0:
            await loyalty_service.award_points(db, booking.user_id, booking, points)
            booking.loyalty_points_earned = points

    logger.info(
        "payment_succeeded",
        booking_id=booking.id,
        reference=result.reference,
        amount=str(result.amount),
        points_earned=booking.loyalty_points_earned,
    )
    return SUCCEEDED


async def _apply_failure(db: AsyncSession, booking: Booking, payment: Payment, result: VerificationResult) -> str:
    if payment.status == PaymentRecordStatus.SUCCESS:
        logger.warning("payment_failure_after_success", booking_id=booking.id, reference=result.reference)
        return IGNORED
    if payment.status != PaymentRecordStatus.PENDING:
        logger.info("payment_failure_already_applied", booking_id=booking.id, reference=result.reference)
        return DUPLICATE

    payment.status = PaymentRecordStatus.FAILED
    payment.gateway_response = result.gateway_response or result.status

    if booking.status == BookingStatus.CANCELLED:
        logger.info("payment_failure_already_applied", booking_id=booking.id, reference=result.reference)
        return DUPLICATE
    if booking.payment_status == PaymentStatus.COMPLETED or await _has_open_attempt(db, booking, payment):
        # Another checkout for this booking settled or is still open
        logger.info("payment_attempt_failed", booking_id=booking.id, reference=result.reference)
        return IGNORED

    await booking_service.release_booking(
        db, booking, reason="payment_failed", payment_status=PaymentStatus.FAILED
    )
    logger.info("payment_failed", booking_id=booking.id, reference=result.reference, status=result.status)
    return FAILED


async def verify_payment(
    db: AsyncSession,
    manager: PaymentManager,
    reference: str,
    provider: str,
) -> tuple[Booking, VerificationResult, str]:
    """Client-initiated verification; same update path as webhooks."""
    result = await manager.verify(reference, provider)
    booking, outcome = await update_booking_payment_status(db, reference, result)
    return booking, result, outcome


async def handle_paystack_event(
    db: AsyncSession,
    manager: PaymentManager,
    event: PaystackWebhookEvent,
) -> tuple[Optional[Booking], str]:
    reference = event.data.reference
    if event.event.startswith("transfer."):
        logger.info("webhook_transfer_event", provider="paystack", event=event.event, reference=reference)
        return None, IGNORED
    if event.event not in ("charge.success", "charge.failed"):
        logger.info("webhook_ignored", provider="paystack", event=event.event)
        return None, IGNORED
    if not reference:
        logger.warning("webhook_missing_reference", provider="paystack", event=event.event)
        return None, IGNORED

    booking, _, outcome = await verify_payment(db, manager, reference, "paystack")
    return booking, outcome


async def handle_opay_event(
    db: AsyncSession,
    manager: PaymentManager,
    event: OPayWebhookEvent,
) -> tuple[Optional[Booking], str]:
    status = (event.status or "").upper()
    if status in OPAY_PENDING:
        logger.info("webhook_payment_pending", provider="opay", reference=event.reference)
        return None, IGNORED
    if status != "SUCCESS" and status not in OPAY_FAILED:
        logger.info("webhook_ignored", provider="opay", status=event.status)
        return None, IGNORED
    if not event.reference:
        logger.warning("webhook_missing_reference", provider="opay", status=status)
        return None, IGNORED

    booking, _, outcome = await verify_payment(db, manager, event.reference, "opay")
    return booking, outcome
