"""
Error taxonomy for the booking, payment and ticketing flows.

Services raise these directly, the same way they raise HTTPException: every
class carries its HTTP status and renders a JSON detail with a stable,
machine-readable `error` code so clients never have to parse messages.
"""

from typing import Any, Optional

from fastapi import HTTPException, status


class AppError(HTTPException):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "error"
    default_message: str = "Request failed"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message
        self.extra = extra
        detail = {"error": self.code, "message": self.message, **extra}
        super().__init__(status_code=self.status_code, detail=detail)


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_message = "Resource not found"


class ValidationFailed(AppError):
    code = "validation_failed"
    default_message = "Invalid request"


class SeatConflict(AppError):
    code = "seat_conflict"
    default_message = "One or more seats are already booked"

    def __init__(self, seats: list[str], message: Optional[str] = None):
        self.seats = sorted(seats)
        super().__init__(
            message or f"Seats {', '.join(self.seats)} are already booked",
            seats=self.seats,
        )


class InsufficientCapacity(AppError):
    code = "insufficient_capacity"
    default_message = "Not enough seats available"


class InsufficientPoints(AppError):
    code = "insufficient_points"
    default_message = "Insufficient loyalty points"


class NotBookable(AppError):
    code = "not_bookable"
    default_message = "Trip is not open for booking"


class AlreadyProcessed(AppError):
    code = "already_processed"
    default_message = "Request has already been processed"


class Unauthorized(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "unauthorized"
    default_message = "Authentication required"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        super().__init__(message, **extra)
        self.headers = {"WWW-Authenticate": "Bearer"}


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    default_message = "Insufficient permissions"


class PaymentProviderError(Exception):
    """Raised by gateway adapters when a provider call fails or is rejected."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class GatewayUnavailable(AppError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "payment_provider_error"
    default_message = "Payment provider is unavailable, please try again"


class AlreadyExists(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = "already_exists"
    default_message = "Resource already exists"
