"""
OPay mobile-money gateway (redirect checkout).

Requests carry MerchantId, the public key as bearer token and an HMAC-SHA512
signature of the JSON body plus timestamp, keyed by the secret key.
"""

import hashlib
import hmac
import time
from decimal import Decimal
from typing import Optional

from saharam.core.config import get_settings
from saharam.core.exceptions import PaymentProviderError
from saharam.services.payments.base import (
    PaymentGateway,
    VerificationResult,
    from_minor_units,
    to_minor_units,
)

settings = get_settings()

SUCCESS_CODE = "00000"
PENDING_STATUSES = {"PENDING", "INITIAL"}
FAILED_STATUSES = {"FAIL", "CLOSE"}


class OPayGateway(PaymentGateway):
    name = "opay"
    reference_code = "OPY"

    def __init__(
        self,
        public_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        merchant_id: Optional[str] = None,
        webhook_token: Optional[str] = None,
        base_url: Optional[str] = None,
        transport=None,
    ):
        super().__init__(transport)
        self.public_key = settings.OPAY_PUBLIC_KEY if public_key is None else public_key
        self.secret_key = settings.OPAY_SECRET_KEY if secret_key is None else secret_key
        self.merchant_id = settings.OPAY_MERCHANT_ID if merchant_id is None else merchant_id
        self.webhook_token = settings.OPAY_WEBHOOK_TOKEN if webhook_token is None else webhook_token
        self.base_url = base_url or settings.OPAY_BASE_URL

    def sign(self, body: bytes, timestamp: str) -> str:
        return hmac.new(self.secret_key.encode(), body + timestamp.encode(), hashlib.sha512).hexdigest()

    def _headers(self, body: bytes) -> dict:
        timestamp = str(int(time.time() * 1000))
        return {
            "MerchantId": self.merchant_id,
            "Authorization": f"Bearer {self.public_key}",
            "Timestamp": timestamp,
            "Signature": self.sign(body, timestamp),
        }

    async def initialize(
        self,
        reference: str,
        amount: Decimal,
        customer_email: str,
        customer_name: str,
        customer_phone: str,
        metadata: Optional[dict] = None,
        return_url: Optional[str] = None,
    ) -> Optional[str]:
        payload = {
            "reference": reference,
            "mchShortName": "Saharam Express",
            "productName": "Bus Ticket - Saharam Express",
            "productDesc": f"Booking {(metadata or {}).get('booking_reference', reference)}",
            "userInfo": {
                "userEmail": customer_email,
                "userName": customer_name,
                "userMobile": customer_phone,
            },
            "amount": str(to_minor_units(amount)),
            "currency": settings.PAYMENT_CURRENCY,
            "osType": "WEB",
            "callbackUrl": f"{settings.PUBLIC_BASE_URL}/api/v1/payments/webhook/opay",
            "returnUrl": return_url
            or f"{settings.PUBLIC_BASE_URL}/booking/payment/success?provider=opay",
        }
        body = await self._request("POST", "/api/v3/cashier/initialize", "initialize", payload)
        if body.get("code") != SUCCESS_CODE:
            raise PaymentProviderError(self.name, body.get("message") or "initialization rejected")
        return (body.get("data") or {}).get("cashierUrl")

    async def verify(self, reference: str) -> VerificationResult:
        payload = {"reference": reference, "orderNo": ""}
        body = await self._request("POST", "/api/v3/cashier/status", "verify", payload)
        if body.get("code") != SUCCESS_CODE:
            raise PaymentProviderError(self.name, body.get("message") or "status lookup rejected")

        data = body.get("data") or {}
        status = str(data.get("status") or "UNKNOWN").upper()
        amount = data.get("amount") or 0
        currency = data.get("currency")
        if isinstance(amount, dict):
            currency = amount.get("currency") or currency
            amount = amount.get("total") or 0

        return VerificationResult(
            success=status == "SUCCESS",
            provider=self.name,
            reference=reference,
            status=status.lower(),
            amount=from_minor_units(amount),
            currency=currency,
            gateway_response=data.get("failureReason"),
            terminal=status == "SUCCESS" or status in FAILED_STATUSES,
        )

    def validate_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        if not self.webhook_token or not signature:
            return False
        return hmac.compare_digest(signature.encode(), self.webhook_token.encode())
