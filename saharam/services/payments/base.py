"""
Payment gateway interface.
Allows swapping between card (Paystack) and mobile-money (OPay) providers.
"""

import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import httpx

from saharam.core.config import get_settings
from saharam.core.exceptions import PaymentProviderError
from saharam.core.logging import get_logger
from saharam.core.metrics import payment_provider_latency

logger = get_logger(__name__)
settings = get_settings()


@dataclass(frozen=True)
class VerificationResult:
    success: bool
    provider: str
    reference: str
    status: str
    amount: Decimal = Decimal("0")
    currency: Optional[str] = None
    paid_at: Optional[datetime] = None
    gateway_response: Optional[str] = None
    error: Optional[str] = None
    # False while the provider has not settled the transaction (or could not be reached)
    terminal: bool = True


@dataclass(frozen=True)
class InitResult:
    provider: str
    reference: str
    authorization_url: Optional[str]


class PaymentGateway(ABC):
    """
    Interface for payment providers.

    Implementations:
    - PaystackGateway: card, bank transfer and USSD
    - OPayGateway: OPay wallet and bank transfer
    """

    name: str = ""
    reference_code: str = ""
    base_url: str = ""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        # Tests inject httpx.MockTransport here
        self._transport = transport

    @abstractmethod
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
        """Start a transaction and return the hosted checkout URL."""

    @abstractmethod
    async def verify(self, reference: str) -> VerificationResult:
        """Ask the provider for the current state of a transaction."""

    @abstractmethod
    def validate_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        """Check a webhook delivery is authentic before its body is parsed."""

    def _headers(self, body: bytes) -> dict:
        return {}

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        payload: Optional[dict] = None,
    ) -> dict[str, Any]:
        """Call the provider and return its JSON body, raising PaymentProviderError on any failure."""
        start = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=settings.PAYMENT_HTTP_TIMEOUT,
                transport=self._transport,
            ) as client:
                body = _encode(payload)
                headers = {"Content-Type": "application/json", **self._headers(body)}
                response = await client.request(method, path, content=body or None, headers=headers)
        except httpx.HTTPError as e:
            logger.error("payment_provider_unreachable", provider=self.name, operation=operation, error=str(e))
            raise PaymentProviderError(self.name, f"{operation} request failed: {e}") from e
        finally:
            payment_provider_latency.labels(provider=self.name, operation=operation).observe(
                time.perf_counter() - start
            )

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.is_error:
            message = body.get("message") if isinstance(body, dict) else None
            logger.warning(
                "payment_provider_error",
                provider=self.name,
                operation=operation,
                status_code=response.status_code,
                message=message,
            )
            raise PaymentProviderError(self.name, message or f"HTTP {response.status_code}")

        if not isinstance(body, dict):
            raise PaymentProviderError(self.name, f"Unexpected {operation} response")
        return body


def to_minor_units(amount: Decimal) -> int:
    """Naira to kobo."""
    return int((Decimal(amount) * 100).to_integral_value())


def from_minor_units(amount: Any) -> Decimal:
    return (Decimal(str(amount)) / 100).quantize(Decimal("0.01"))


def _encode(payload: Optional[dict]) -> bytes:
    if payload is None:
        return b""
    return json.dumps(payload, separators=(",", ":")).encode()
