from saharam.services.payments.base import InitResult, PaymentGateway, VerificationResult
from saharam.services.payments.manager import PaymentManager, get_payment_manager
from saharam.services.payments.opay import OPayGateway
from saharam.services.payments.paystack import PaystackGateway

__all__ = [
    "InitResult", "PaymentGateway", "VerificationResult",
    "PaymentManager", "get_payment_manager",
    "OPayGateway", "PaystackGateway",
]
