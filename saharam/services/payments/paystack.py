"""
Paystack card gateway.

Amounts travel in kobo. Webhooks are signed with a hex HMAC-SHA512 of the raw
body keyed by the secret key (header `x-paystack-signature`).
"""

import hashlib
import hmac
from datetime import datetime
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

CHANNELS = ["card", "bank", "ussd", "qr", "mobile_money", "bank_transfer"]
FAILED_STATUSES = {"failed", "abandoned", "reversed"}


class PaystackGateway(PaymentGateway):
    name = "paystack"
    reference_code = "PST"

    def __init__(self, secret_key: Optional[str] = None, base_url: Optional[str] = None, transport=None):
        super().__init__(transport)
        self.secret_key = settings.PAYSTACK_SECRET_KEY if secret_key is None else secret_key
        self.base_url = base_url or settings.PAYSTACK_BASE_URL

    def _headers(self, body: bytes) -> dict:
        return {"Authorization": f"Bearer {self.secret_key}"}

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
            "email": customer_email,
            "amount": to_minor_units(amount),
            "currency": settings.PAYMENT_CURRENCY,
            "reference": reference,
            "channels": CHANNELS,
            "callback_url": return_url
            or f"{settings.PUBLIC_BASE_URL}/booking/payment/callback?provider=paystack",
            "metadata": {
                "customer_name": customer_name,
                "customer_phone": customer_phone,
                **(metadata or {}),
            },
        }
        body = await self._request("POST", "/transaction/initialize", "initialize", payload)
        if not body.get("status"):
            raise PaymentProviderError(self.name, body.get("message") or "initialization rejected")
        return (body.get("data") or {}).get("authorization_url")

    async def verify(self, reference: str) -> VerificationResult:
        body = await self._request("GET", f"/transaction/verify/{reference}", "verify")
        data = body.get("data") or {}
        status = str(data.get("status") or "unknown").lower()

        paid_at = None
        if data.get("paid_at"):
            paid_at = datetime.fromisoformat(str(data["paid_at"]).replace("Z", "+00:00"))

        return VerificationResult(
            success=status == "success",
            provider=self.name,
            reference=reference,
            status=status,
            amount=from_minor_units(data.get("amount") or 0),
            currency=data.get("currency"),
            paid_at=paid_at,
            gateway_response=data.get("gateway_response"),
            terminal=status == "success" or status in FAILED_STATUSES,
        )

    def validate_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        if not self.secret_key or not signature:
            return False
        expected = hmac.new(self.secret_key.encode(), raw_body, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature)
