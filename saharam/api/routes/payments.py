"""
Payment endpoints: gateway checkout and verification, provider webhooks, and
manual bank transfer with receipt upload.

Webhooks answer 401 only for a bad signature. Once a delivery is authentic
it is always acknowledged with 200, even if reconciliation fails, so the
provider does not keep retrying a delivery we cannot use.
"""

import json
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Request, UploadFile
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from saharam.core.config import get_settings
from saharam.core.exceptions import AppError, Unauthorized
from saharam.core.logging import get_logger
from saharam.core.metrics import record_webhook
from saharam.core.security import resolve_caller
from saharam.db.session import get_db
from saharam.models.booking import Booking
from saharam.models.user import User
from saharam.schemas.booking import BookingResponse
from saharam.schemas.payment import (
    BankAccountDetails,
    BankTransferRequest,
    BankTransferResponse,
    OPayWebhookEvent,
    PaymentInitializeRequest,
    PaymentInitializeResponse,
    PaymentVerifyRequest,
    PaymentVerifyResponse,
    PaystackWebhookEvent,
    ProviderInfo,
    ReceiptResponse,
    ReceiptUploadResponse,
    WebhookAck,
)
from saharam.services import bank_transfer_service, notification_service, payment_service
from saharam.services.cache_service import invalidate_trip_cache
from saharam.services.payments import PaymentManager, get_payment_manager

logger = get_logger(__name__)
settings = get_settings()
router = APIRouter(prefix="/payments", tags=["Payments"])

PAYSTACK_SIGNATURE_HEADER = "x-paystack-signature"
OPAY_SIGNATURE_HEADER = "signature"


async def after_reconciliation(
    db: AsyncSession,
    booking: Optional[Booking],
    outcome: str,
    background_tasks: BackgroundTasks,
) -> None:
    if booking is None:
        return
    if outcome == payment_service.SUCCEEDED:
        data = notification_service.snapshot(booking)
        background_tasks.add_task(notification_service.dispatch, notification_service.PAYMENT_RECEIVED, data)
        background_tasks.add_task(notification_service.dispatch, notification_service.BOOKING_CONFIRMED, data)
    elif outcome == payment_service.FAILED:
        # Seats went back to the trip; drop cached search results once that is committed
        await db.commit()
        await invalidate_trip_cache()
        background_tasks.add_task(
            notification_service.dispatch,
            notification_service.PAYMENT_FAILED,
            notification_service.snapshot(booking),
        )


@router.get("/providers", response_model=list[ProviderInfo])
async def list_providers(manager: PaymentManager = Depends(get_payment_manager)):
    return manager.providers()


@router.post("/initialize", response_model=PaymentInitializeResponse)
async def initialize_payment(
    body: PaymentInitializeRequest,
    caller: Optional[User] = Depends(resolve_caller),
    manager: PaymentManager = Depends(get_payment_manager),
    db: AsyncSession = Depends(get_db),
):
    """Start a gateway checkout for a pending booking."""
    _, payment, authorization_url = await payment_service.initialize_payment(
        db, manager, body.booking_id, body.provider, caller, body.return_url
    )
    return PaymentInitializeResponse(
        provider=body.provider,
        reference=payment.gateway_reference,
        authorization_url=authorization_url,
    )


@router.post("/verify", response_model=PaymentVerifyResponse)
async def verify_payment(
    body: PaymentVerifyRequest,
    background_tasks: BackgroundTasks,
    manager: PaymentManager = Depends(get_payment_manager),
    db: AsyncSession = Depends(get_db),
):
    """Re-check a payment with the provider and reconcile the booking."""
    booking, result, outcome = await payment_service.verify_payment(
        db, manager, body.reference, body.provider
    )
    await after_reconciliation(db, booking, outcome, background_tasks)
    return PaymentVerifyResponse(
        success=outcome in (payment_service.SUCCEEDED, payment_service.DUPLICATE) and booking.is_paid,
        status=result.status,
        outcome=outcome,
        booking=BookingResponse.model_validate(booking),
    )


@router.post("/bank-transfer", response_model=BankTransferResponse)
async def start_bank_transfer(
    body: BankTransferRequest,
    caller: Optional[User] = Depends(resolve_caller),
    db: AsyncSession = Depends(get_db),
):
    """Company account details and a transfer reference for a pending booking."""
    booking, payment = await bank_transfer_service.start_bank_transfer(db, body.booking_id, caller)
    return BankTransferResponse(
        reference=payment.gateway_reference,
        amount=payment.amount,
        currency=payment.currency,
        account=BankAccountDetails(**bank_transfer_service.account_details()),
        hold_expires_at=booking.hold_expires_at,
    )


@router.post("/bank-transfer/receipt", response_model=ReceiptUploadResponse)
async def upload_receipt(
    booking_id: int = Form(...),
    payment_reference: str = Form(...),
    amount_paid: Decimal = Form(...),
    receipt: UploadFile = File(...),
    caller: Optional[User] = Depends(resolve_caller),
    db: AsyncSession = Depends(get_db),
):
    """Upload proof of a bank transfer (JPG, PNG or WebP) for admin review."""
    content = await receipt.read(settings.RECEIPT_MAX_BYTES + 1)
    stored, booking = await bank_transfer_service.submit_receipt(
        db,
        booking_id=booking_id,
        payment_reference=payment_reference,
        amount_paid=amount_paid,
        file_name=receipt.filename,
        content_type=receipt.content_type,
        content=content,
        caller=caller,
    )
    return ReceiptUploadResponse(
        receipt=ReceiptResponse.model_validate(stored),
        booking_reference=booking.booking_reference,
        hold_expires_at=booking.hold_expires_at,
        message="Receipt received. Your booking will be confirmed once the transfer is verified.",
    )


async def _authentic_body(request: Request, manager: PaymentManager, provider: str, header: str) -> bytes:
    raw = await request.body()
    if not manager.validate_webhook_signature(provider, raw, request.headers.get(header)):
        record_webhook(provider, "rejected")
        logger.warning("webhook_signature_invalid", provider=provider)
        raise Unauthorized("Invalid signature")
    return raw


@router.post("/webhook/paystack", response_model=WebhookAck)
async def paystack_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    manager: PaymentManager = Depends(get_payment_manager),
    db: AsyncSession = Depends(get_db),
):
    raw = await _authentic_body(request, manager, "paystack", PAYSTACK_SIGNATURE_HEADER)
    try:
        event = PaystackWebhookEvent.model_validate(json.loads(raw))
    except (ValueError, ValidationError) as e:
        record_webhook("paystack", "ignored")
        logger.warning("webhook_malformed", provider="paystack", error=str(e))
        return WebhookAck()

    logger.info("webhook_received", provider="paystack", event=event.event, reference=event.data.reference)
    try:
        booking, outcome = await payment_service.handle_paystack_event(db, manager, event)
    except AppError as e:
        await db.rollback()
        record_webhook("paystack", "error")
        logger.error("webhook_processing_failed", provider="paystack", event=event.event, error=e.message)
        return WebhookAck()

    record_webhook("paystack", "ignored" if booking is None else "processed")
    await after_reconciliation(db, booking, outcome, background_tasks)
    return WebhookAck()


@router.post("/webhook/opay", response_model=WebhookAck)
async def opay_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    manager: PaymentManager = Depends(get_payment_manager),
    db: AsyncSession = Depends(get_db),
):
    raw = await _authentic_body(request, manager, "opay", OPAY_SIGNATURE_HEADER)
    try:
        event = OPayWebhookEvent.model_validate(json.loads(raw))
    except (ValueError, ValidationError) as e:
        record_webhook("opay", "ignored")
        logger.warning("webhook_malformed", provider="opay", error=str(e))
        return WebhookAck()

    logger.info("webhook_received", provider="opay", status=event.status, reference=event.reference)
    try:
        booking, outcome = await payment_service.handle_opay_event(db, manager, event)
    except AppError as e:
        await db.rollback()
        record_webhook("opay", "error")
        logger.error("webhook_processing_failed", provider="opay", status=event.status, error=e.message)
        return WebhookAck()

    record_webhook("opay", "ignored" if booking is None else "processed")
    await after_reconciliation(db, booking, outcome, background_tasks)
    return WebhookAck()
