from saharam.schemas.user import UserCreate, UserResponse, UserLogin, Token
from saharam.schemas.trip import (
    RouteCreate, RouteResponse, VehicleCreate, VehicleResponse,
    DriverCreate, DriverResponse, TripCreate, TripResponse,
    TripDetailResponse, TripSearchResponse,
)
from saharam.schemas.booking import (
    BookingCreate, BookingResponse, BookingCancelResponse,
    BookingListResponse, BookingStatusUpdate, QRCodeResponse,
)
from saharam.schemas.payment import (
    PaymentInitializeRequest, PaymentInitializeResponse,
    PaymentVerifyRequest, PaymentVerifyResponse,
    PaystackWebhookEvent, OPayWebhookEvent, WebhookAck,
)
from saharam.schemas.ticket import TicketVerifyRequest, TicketVerifyResponse
from saharam.schemas.loyalty import LoyaltySummaryResponse, LoyaltyAuditResponse

__all__ = [
    "UserCreate", "UserResponse", "UserLogin", "Token",
    "RouteCreate", "RouteResponse", "VehicleCreate", "VehicleResponse",
    "DriverCreate", "DriverResponse", "TripCreate", "TripResponse",
    "TripDetailResponse", "TripSearchResponse",
    "BookingCreate", "BookingResponse", "BookingCancelResponse",
    "BookingListResponse", "BookingStatusUpdate", "QRCodeResponse",
    "PaymentInitializeRequest", "PaymentInitializeResponse",
    "PaymentVerifyRequest", "PaymentVerifyResponse",
    "PaystackWebhookEvent", "OPayWebhookEvent", "WebhookAck",
    "TicketVerifyRequest", "TicketVerifyResponse",
    "LoyaltySummaryResponse", "LoyaltyAuditResponse",
]
