"""
Tests for seat labels, seat maps and pricing.
"""

from decimal import Decimal

import pytest

from saharam.core.exceptions import ValidationFailed
from saharam.services.seat_allocator import (
    available_seat_numbers,
    build_seat_map,
    compute_price,
    layout,
    parse_seat_label,
    row_letters,
    seat_index,
    seat_label,
    validate_requested_seats,
)


def test_ten_seat_layout():
    assert layout(10, 4) == ["A1", "A2", "A3", "A4", "B1", "B2", "B3", "B4", "C1", "C2"]


@pytest.mark.parametrize("row,letters", [(0, "A"), (25, "Z"), (26, "AA"), (27, "AB"), (701, "ZZ"), (702, "AAA")])
def test_row_letters_past_z(row, letters):
    assert row_letters(row) == letters


def test_labels_round_trip_through_parser():
    for capacity, per_row in [(10, 4), (18, 3), (120, 4)]:
        labels = layout(capacity, per_row)
        assert len(set(labels)) == capacity
        for i, label in enumerate(labels):
            assert seat_index(label, per_row) == i
            row, column = parse_seat_label(label, per_row)
            assert seat_label(row * per_row + column - 1, per_row) == label


@pytest.mark.parametrize("label", ["", "a1", "A0", "A01", "1A", "A5", "A-1"])
def test_malformed_labels_rejected(label):
    with pytest.raises(ValueError):
        parse_seat_label(label, 4)


def test_seat_map_marks_booked_seats():
    seat_map = build_seat_map(10, 4, {"A2", "C1"})
    assert len(seat_map) == 10
    assert {s["number"] for s in seat_map if s["status"] == "booked"} == {"A2", "C1"}
    assert seat_map[4] == {"number": "B1", "row": 2, "column": 1, "status": "available"}


def test_available_seat_numbers():
    assert available_seat_numbers(6, 4, ["A1", "B2"]) == ["A2", "A3", "A4", "B1"]


def test_validate_orders_seats_by_layout():
    assert validate_requested_seats(["B1", "A3", "A1"], 10, 4) == ["A1", "A3", "B1"]


def test_validate_rejects_seat_beyond_capacity():
    # C3 would exist in a 12-seat bus but not in a 10-seat one
    with pytest.raises(ValidationFailed) as exc:
        validate_requested_seats(["A1", "C3"], 10, 4)
    assert exc.value.detail["seats"] == ["C3"]


def test_validate_rejects_duplicates_and_empty():
    with pytest.raises(ValidationFailed):
        validate_requested_seats(["A1", "A1"], 10, 4)
    with pytest.raises(ValidationFailed):
        validate_requested_seats([], 10, 4)


def test_price_without_points():
    quote = compute_price(Decimal("5000.00"), 2, 0, 0)
    assert quote.base_amount == Decimal("10000.00")
    assert quote.total_amount == Decimal("10000.00")
    assert quote.points_used == 0
    assert quote.payment_required


def test_points_cover_whole_fare():
    quote = compute_price(Decimal("2000"), 1, 2000, 2000)
    assert quote.total_amount == 0
    assert quote.points_used == 2000
    assert not quote.payment_required


def test_points_capped_by_balance():
    quote = compute_price(Decimal("3000"), 1, 500, 200)
    assert quote.points_used == 200
    assert quote.total_amount == Decimal("2800")
