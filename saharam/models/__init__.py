from saharam.models.user import User, UserRole
from saharam.models.fleet import Route, Vehicle, Driver
from saharam.models.trip import Trip
from saharam.models.booking import Booking, BookingStatus, PaymentStatus, SeatBooking
from saharam.models.payment import Payment, PaymentReceipt, PaymentRecordStatus, ReceiptStatus
from saharam.models.loyalty import LoyaltyTransaction, LoyaltyTransactionType

__all__ = [
    "User", "UserRole",
    "Route", "Vehicle", "Driver",
    "Trip",
    "Booking", "BookingStatus", "PaymentStatus", "SeatBooking",
    "Payment", "PaymentRecordStatus", "PaymentReceipt", "ReceiptStatus",
    "LoyaltyTransaction", "LoyaltyTransactionType",
]
