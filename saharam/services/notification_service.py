"""
Fire-and-forget passenger notifications.

Routes schedule these as background tasks with a plain-dict snapshot of the
booking (never an ORM object, the session is gone by then). Delivery failures
are logged and swallowed: a lost SMS must never fail a booking or payment.
"""

from saharam.core.config import get_settings
from saharam.core.logging import get_logger
from saharam.models.booking import Booking
from saharam.utils.timeutils import as_utc

logger = get_logger(__name__)
settings = get_settings()

BOOKING_CONFIRMED = "booking_confirmed"
PAYMENT_RECEIVED = "payment_received"
PAYMENT_FAILED = "payment_failed"
BOOKING_CANCELLED = "booking_cancelled"


def snapshot(booking: Booking) -> dict:
    trip = booking.trip
    return {
        "booking_reference": booking.booking_reference,
        "passenger_name": booking.passenger_name,
        "passenger_phone": booking.passenger_phone,
        "passenger_email": booking.passenger_email,
        "seat_numbers": list(booking.seat_numbers),
        "total_amount": str(booking.total_amount),
        "route": trip.route_label if trip else "",
        "departure_time": as_utc(trip.departure_time).isoformat() if trip else None,
    }


async def _deliver(channel: str, recipient: str, kind: str, data: dict) -> None:
    # Provider integrations (SMS gateway, SMTP) plug in here.
    logger.info(
        "notification_sent",
        channel=channel,
        recipient=recipient,
        kind=kind,
        booking_reference=data.get("booking_reference"),
    )


async def dispatch(kind: str, data: dict) -> None:
    if not settings.NOTIFICATIONS_ENABLED:
        return

    targets = []
    if data.get("passenger_phone"):
        targets.append(("sms", data["passenger_phone"]))
    if data.get("passenger_email"):
        targets.append(("email", data["passenger_email"]))

    for channel, recipient in targets:
        try:
            await _deliver(channel, recipient, kind, data)
        except Exception as e:
            logger.error(
                "notification_failed",
                channel=channel,
                kind=kind,
                booking_reference=data.get("booking_reference"),
                error=str(e),
            )
