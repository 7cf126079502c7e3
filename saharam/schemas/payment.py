"""
Payment request/response schemas and typed webhook bodies.

Webhook models are only built after the delivery's signature has been
checked against the raw body.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from saharam.schemas.booking import BookingResponse

Provider = Literal["paystack", "opay"]


class PaymentInitializeRequest(BaseModel):
    booking_id: int
    provider: Provider = "paystack"
    return_url: Optional[str] = None


class PaymentInitializeResponse(BaseModel):
    provider: str
    reference: str
    authorization_url: Optional[str]


class PaymentVerifyRequest(BaseModel):
    reference: str
    provider: Provider = "paystack"


class PaymentVerifyResponse(BaseModel):
    success: bool
    status: str
    outcome: str
    booking: BookingResponse


class ProviderInfo(BaseModel):
    code: str
    name: str
    description: str


class WebhookAck(BaseModel):
    success: bool = True


class PaystackEventData(BaseModel):
    model_config = ConfigDict(extra="allow")

    reference: Optional[str] = None
    status: Optional[str] = None


class PaystackWebhookEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str
    data: PaystackEventData = PaystackEventData()


class OPayWebhookEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    reference: Optional[str] = None
    status: Optional[str] = None


class BankTransferRequest(BaseModel):
    booking_id: int


class BankAccountDetails(BaseModel):
    bank_name: str
    account_name: str
    account_number: str


class BankTransferResponse(BaseModel):
    reference: str
    amount: Decimal
    currency: str
    account: BankAccountDetails
    hold_expires_at: Optional[datetime]


class ReceiptResponse(BaseModel):
    id: int
    booking_id: int
    payment_id: int
    file_name: str
    content_type: str
    file_size: int
    amount_paid: Decimal
    status: str
    reviewed_by: Optional[int]
    reviewed_at: Optional[datetime]
    review_note: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class ReceiptUploadResponse(BaseModel):
    receipt: ReceiptResponse
    booking_reference: str
    hold_expires_at: Optional[datetime]
    message: str


class ReceiptReview(BaseModel):
    note: Optional[str] = Field(default=None, max_length=255)


class ReceiptReviewResponse(BaseModel):
    receipt: ReceiptResponse
    outcome: str
    booking: BookingResponse
