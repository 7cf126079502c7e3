"""
Seat layout and pricing.

Pure functions only: no I/O, no shared state, safe to call from any number of
concurrent requests without locking.

Seat identifiers are `<RowLetters><Column>` in row-major order. Row 0 is `A`,
row 25 is `Z`, row 26 is `AA` (bijective base-26, like spreadsheet columns);
columns are 1-based within `seats_per_row`. A 10-seat vehicle with 4 seats per
row therefore has A1..A4, B1..B4, C1, C2.
"""

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from saharam.core.exceptions import ValidationFailed

SEAT_AVAILABLE = "available"
SEAT_BOOKED = "booked"

_LABEL_RE = re.compile(r"^([A-Z]+)([1-9][0-9]*)$")


@dataclass(frozen=True)
class PriceQuote:
    base_amount: Decimal
    points_used: int
    total_amount: Decimal

    @property
    def payment_required(self) -> bool:
        return self.total_amount > 0


def row_letters(row: int) -> str:
    if row < 0:
        raise ValueError("row must be non-negative")
    letters = ""
    n = row + 1
    while n:
        n, rem = divmod(n - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


def row_index(letters: str) -> int:
    n = 0
    for ch in letters:
        n = n * 26 + (ord(ch) - ord("A") + 1)
    return n - 1


def seat_label(index: int, seats_per_row: int) -> str:
    """Label of the seat at zero-based position `index` in row-major order."""
    if seats_per_row <= 0:
        raise ValueError("seats_per_row must be positive")
    row, column = divmod(index, seats_per_row)
    return f"{row_letters(row)}{column + 1}"


def parse_seat_label(label: str, seats_per_row: int) -> tuple[int, int]:
    """Return (row, column) for a label; row is 0-based, column 1-based."""
    match = _LABEL_RE.match(label or "")
    if not match:
        raise ValueError(f"Malformed seat identifier: {label!r}")
    column = int(match.group(2))
    if column > seats_per_row:
        raise ValueError(f"Seat column {column} exceeds {seats_per_row} seats per row")
    return row_index(match.group(1)), column


def seat_index(label: str, seats_per_row: int) -> int:
    row, column = parse_seat_label(label, seats_per_row)
    return row * seats_per_row + (column - 1)


def layout(capacity: int, seats_per_row: int) -> list[str]:
    return [seat_label(i, seats_per_row) for i in range(capacity)]


def build_seat_map(capacity: int, seats_per_row: int, booked: Iterable[str]) -> list[dict]:
    booked_set = set(booked)
    seat_map = []
    for i in range(capacity):
        row, column = divmod(i, seats_per_row)
        number = f"{row_letters(row)}{column + 1}"
        seat_map.append({
            "number": number,
            "row": row + 1,
            "column": column + 1,
            "status": SEAT_BOOKED if number in booked_set else SEAT_AVAILABLE,
        })
    return seat_map


def available_seat_numbers(capacity: int, seats_per_row: int, booked: Iterable[str]) -> list[str]:
    booked_set = set(booked)
    return [s for s in layout(capacity, seats_per_row) if s not in booked_set]


def validate_requested_seats(requested: list[str], capacity: int, seats_per_row: int) -> list[str]:
    """Reject seat identifiers that do not exist on this vehicle.

    Returns the requested seats in layout order. Unknown and duplicate seats
    are reported, never dropped.
    """
    if not requested:
        raise ValidationFailed("Please select at least one seat", field="seat_numbers")

    duplicates = sorted({s for s in requested if requested.count(s) > 1})
    if duplicates:
        raise ValidationFailed(
            f"Duplicate seats in request: {', '.join(duplicates)}",
            field="seat_numbers",
            seats=duplicates,
        )

    invalid = []
    for seat in requested:
        try:
            if seat_index(seat, seats_per_row) >= capacity:
                invalid.append(seat)
        except ValueError:
            invalid.append(seat)
    if invalid:
        raise ValidationFailed(
            f"Seats not on this vehicle: {', '.join(sorted(invalid))}",
            field="seat_numbers",
            seats=sorted(invalid),
        )

    return sorted(requested, key=lambda s: seat_index(s, seats_per_row))


def compute_price(
    base_price: Decimal,
    seat_count: int,
    points_requested: int,
    balance: int,
) -> PriceQuote:
    """Price a booking. One loyalty point is worth one unit of currency."""
    base_amount = Decimal(base_price) * seat_count
    points_used = max(0, min(points_requested, balance))
    total_amount = max(Decimal("0"), base_amount - points_used)
    return PriceQuote(base_amount=base_amount, points_used=points_used, total_amount=total_amount)
