"""
Tests for seat holds on unpaid bookings.
"""

from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import update

from conftest import make_user, booking_payload, headers_for
from saharam.db.session import AsyncSessionLocal
from saharam.models import Booking, Trip, User
from saharam.services import loyalty_service
from saharam.utils.timeutils import utcnow


async def _expire_hold(booking_id: int):
    async with AsyncSessionLocal() as session:
        await session.execute(
            update(Booking)
            .where(Booking.id == booking_id)
            .values(hold_expires_at=utcnow() - timedelta(minutes=1))
        )
        await session.commit()


async def _load(model, object_id):
    async with AsyncSessionLocal() as session:
        return await session.get(model, object_id)


@pytest.mark.asyncio
async def test_expired_hold_frees_seats_for_next_booking(client: AsyncClient, trip):
    first = await client.post("/api/v1/bookings/", json=booking_payload(trip.id, ["A1"]))
    await _expire_hold(first.json()["id"])

    # Same seat: the lapsed hold is released before the conflict check
    second = await client.post("/api/v1/bookings/", json=booking_payload(trip.id, ["A1"]))
    assert second.status_code == 201

    lapsed = await _load(Booking, first.json()["id"])
    assert lapsed.status == "cancelled"
    assert lapsed.payment_status == "failed"

    current = await _load(Trip, trip.id)
    assert current.available_seats == 9


@pytest.mark.asyncio
async def test_live_hold_blocks_seat(client: AsyncClient, trip):
    await client.post("/api/v1/bookings/", json=booking_payload(trip.id, ["A1"]))
    response = await client.post("/api/v1/bookings/", json=booking_payload(trip.id, ["A1"]))
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "seat_conflict"


@pytest.mark.asyncio
async def test_admin_sweep_refunds_points(client: AsyncClient, trip, admin_headers):
    user = await make_user("points@example.com", "pointsuser", points=3000)
    created = await client.post(
        "/api/v1/bookings/",
        json=booking_payload(trip.id, ["B1"], loyalty_points_to_use=1000),
        headers=headers_for(user),
    )
    assert created.status_code == 201
    assert float(created.json()["total_amount"]) == 4000.0
    assert (await _load(User, user.id)).loyalty_points == 2000

    await _expire_hold(created.json()["id"])

    response = await client.post("/api/v1/admin/holds/release-expired", headers=admin_headers)
    assert response.status_code == 200
    assert response.json() == {"released": 1}

    assert (await _load(User, user.id)).loyalty_points == 3000
    assert (await _load(Trip, trip.id)).available_seats == 10

    async with AsyncSessionLocal() as session:
        audit = await loyalty_service.audit_balance(session, user.id)
    assert audit["consistent"] is True
    assert audit["ledger_sum"] == 3000

    # A second sweep finds nothing left to release
    again = await client.post("/api/v1/admin/holds/release-expired", headers=admin_headers)
    assert again.json() == {"released": 0}


@pytest.mark.asyncio
async def test_expired_hold_cannot_be_paid(client: AsyncClient, trip):
    created = await client.post("/api/v1/bookings/", json=booking_payload(trip.id, ["A1"]))
    await _expire_hold(created.json()["id"])

    response = await client.post(
        "/api/v1/payments/initialize",
        json={"booking_id": created.json()["id"], "provider": "paystack"},
    )
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "not_bookable"
