"""
Signed QR payloads for boarding tickets.

A ticket is a compact, canonical JSON document (sorted keys, no whitespace)
carrying the booking reference, passenger, trip, seats, departure, route
label and issue timestamp, plus an HMAC-SHA256 over all of those fields.

decode() is deliberately unforgiving: malformed JSON, missing fields, any
encoding that is not byte-for-byte canonical and a bad MAC all return None,
so a scanner cannot tell a damaged code from a tampered one.
"""

import base64
import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from io import BytesIO
from typing import Optional

import qrcode
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from saharam.core.config import get_settings
from saharam.models.booking import Booking
from saharam.utils.timeutils import as_utc, utcnow

settings = get_settings()

EXPIRED_REASON = "Ticket has expired"
TOO_OLD_REASON = "QR code is too old"


class TicketQRData(BaseModel):
    model_config = ConfigDict(strict=True, frozen=True)

    booking_ref: str = Field(min_length=1)
    passenger_name: str = Field(min_length=1)
    trip_id: int
    seat_numbers: list[str]
    departure_time: str
    route: str
    timestamp: int
    hash: str = Field(min_length=1)

    @property
    def issued_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc)


@dataclass(frozen=True)
class TicketValidity:
    valid: bool
    reason: Optional[str] = None


def _signing_key() -> bytes:
    return hashlib.sha256(b"saharam-ticket-qr:" + settings.QR_SIGNING_SECRET.encode()).digest()


def _canonical(payload: dict) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def _sign(fields: dict) -> str:
    return hmac.new(_signing_key(), _canonical(fields).encode(), hashlib.sha256).hexdigest()


def encode(booking: Booking, now: Optional[datetime] = None) -> TicketQRData:
    """Build the signed payload for a booking. Needs `booking.trip` loaded."""
    issued = now or utcnow()
    trip = booking.trip
    fields = {
        "booking_ref": booking.booking_reference,
        "passenger_name": booking.passenger_name,
        "trip_id": booking.trip_id,
        "seat_numbers": list(booking.seat_numbers),
        "departure_time": as_utc(trip.departure_time).isoformat(),
        "route": trip.route_label,
        "timestamp": int(issued.timestamp() * 1000),
    }
    return TicketQRData(**fields, hash=_sign(fields))


def dumps(data: TicketQRData) -> str:
    return _canonical(data.model_dump())


def decode(raw: str) -> Optional[TicketQRData]:
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(parsed, dict):
        return None

    try:
        data = TicketQRData.model_validate(parsed)
    except ValidationError:
        return None

    if dumps(data) != raw:
        return None

    expected = _sign(data.model_dump(exclude={"hash"}))
    if not hmac.compare_digest(expected, data.hash):
        return None
    return data


def is_valid(data: TicketQRData, departure_time: datetime, now: Optional[datetime] = None) -> TicketValidity:
    now = now or utcnow()
    expiry = as_utc(departure_time) + timedelta(hours=settings.TICKET_VALID_AFTER_DEPARTURE_HOURS)
    if now > expiry:
        return TicketValidity(False, EXPIRED_REASON)

    age_ms = now.timestamp() * 1000 - data.timestamp
    if age_ms > timedelta(days=settings.QR_MAX_AGE_DAYS).total_seconds() * 1000:
        return TicketValidity(False, TOO_OLD_REASON)

    return TicketValidity(True)


def render_png_data_url(raw: str) -> str:
    """Render the encoded ticket as a base64 PNG data URL."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=8,
        border=1,
    )
    qr.add_data(raw)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white")

    buffer = BytesIO()
    image.save(buffer)
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()
