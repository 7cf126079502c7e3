"""
Payment provider registry.

Routes and the payment service never talk to a gateway directly; they go
through PaymentManager, which is a FastAPI dependency so tests can swap in
gateways backed by httpx.MockTransport.
"""

import secrets
import string
import time
from decimal import Decimal
from typing import Optional

from saharam.core.exceptions import PaymentProviderError, ValidationFailed
from saharam.core.logging import get_logger
from saharam.services.payments.base import InitResult, PaymentGateway, VerificationResult
from saharam.services.payments.opay import OPayGateway
from saharam.services.payments.paystack import PaystackGateway

logger = get_logger(__name__)

_BASE36 = string.digits + string.ascii_uppercase

PROVIDER_DESCRIPTIONS = {
    "paystack": ("Paystack", "Pay with card, bank transfer, or USSD"),
    "opay": ("OPay", "Pay with OPay wallet or bank transfer"),
}


def new_reference(code: str) -> str:
    """SAH_<code>_<epoch ms>_<6 base-36 chars>."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"SAH_{code}_{int(time.time() * 1000)}_{suffix}"


class PaymentManager:
    def __init__(self, gateways: list[PaymentGateway]):
        self._gateways = {gateway.name: gateway for gateway in gateways}

    def gateway(self, provider: str) -> PaymentGateway:
        try:
            return self._gateways[provider]
        except KeyError:
            raise ValidationFailed(f"Unsupported payment provider: {provider}", field="provider") from None

    def providers(self) -> list[dict]:
        result = []
        for code in self._gateways:
            name, description = PROVIDER_DESCRIPTIONS.get(code, (code, ""))
            result.append({"code": code, "name": name, "description": description})
        return result

    def generate_reference(self, provider: str) -> str:
        return new_reference(self.gateway(provider).reference_code)

    async def initialize(
        self,
        booking_id: int,
        amount: Decimal,
        customer_email: str,
        customer_name: str,
        customer_phone: str,
        provider: str,
        metadata: Optional[dict] = None,
        return_url: Optional[str] = None,
    ) -> InitResult:
        gateway = self.gateway(provider)
        reference = self.generate_reference(provider)
        authorization_url = await gateway.initialize(
            reference=reference,
            amount=amount,
            customer_email=customer_email,
            customer_name=customer_name,
            customer_phone=customer_phone,
            metadata={"booking_id": booking_id, **(metadata or {})},
            return_url=return_url,
        )
        logger.info("payment_initialized", provider=provider, reference=reference, booking_id=booking_id)
        return InitResult(provider=provider, reference=reference, authorization_url=authorization_url)

    async def verify(self, reference: str, provider: str) -> VerificationResult:
        """Never raises for provider trouble: an unreachable provider is an unsettled result."""
        gateway = self.gateway(provider)
        try:
            return await gateway.verify(reference)
        except PaymentProviderError as e:
            logger.warning("payment_verification_failed", provider=provider, reference=reference, error=str(e))
            return VerificationResult(
                success=False,
                provider=provider,
                reference=reference,
                status="error",
                error=str(e),
                terminal=False,
            )

    def validate_webhook_signature(self, provider: str, raw_body: bytes, signature: Optional[str]) -> bool:
        return self.gateway(provider).validate_webhook_signature(raw_body, signature)


_manager: Optional[PaymentManager] = None


def get_payment_manager() -> PaymentManager:
    """FastAPI dependency returning the process-wide manager."""
    global _manager
    if _manager is None:
        _manager = PaymentManager([PaystackGateway(), OPayGateway()])
    return _manager
