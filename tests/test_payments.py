"""
Tests for payment initialization, verification and webhook reconciliation.
"""

import asyncio
import json
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from conftest import OPAY_WEBHOOK_TOKEN, booking_payload, make_trip, make_user, headers_for, paystack_signature
from saharam.db.session import AsyncSessionLocal
from saharam.api.routes import payments as payment_routes
from saharam.models import Booking, LoyaltyTransaction, Payment, SeatBooking, Trip, User
from saharam.core.exceptions import AppError
from saharam.services import booking_service, payment_service
from saharam.services.payments import OPayGateway


async def _book(client: AsyncClient, trip_id: int, seats: list[str], headers=None) -> dict:
    response = await client.post("/api/v1/bookings/", json=booking_payload(trip_id, seats), headers=headers)
    assert response.status_code == 201
    return response.json()


async def _initialize(client: AsyncClient, booking_id: int, provider: str = "paystack", headers=None) -> str:
    response = await client.post(
        "/api/v1/payments/initialize",
        json={"booking_id": booking_id, "provider": provider},
        headers=headers,
    )
    assert response.status_code == 200, response.text
    return response.json()["reference"]


async def _paystack_webhook(client: AsyncClient, event: str, reference: str, signature=None):
    body = json.dumps({"event": event, "data": {"reference": reference, "status": "x"}}).encode()
    return await client.post(
        "/api/v1/payments/webhook/paystack",
        content=body,
        headers={
            "content-type": "application/json",
            "x-paystack-signature": signature or paystack_signature(body),
        },
    )


async def _state(booking_id: int) -> tuple[Booking, list[Payment], set[str], int]:
    async with AsyncSessionLocal() as session:
        booking = await session.get(Booking, booking_id)
        payments = (await session.execute(
            select(Payment).where(Payment.booking_id == booking_id)
        )).scalars().all()
        seats = set((await session.execute(
            select(SeatBooking.seat_number).where(SeatBooking.booking_id == booking_id)
        )).scalars().all())
        trip = await session.get(Trip, booking.trip_id)
        return booking, list(payments), seats, trip.available_seats


@pytest.mark.asyncio
async def test_list_providers(client: AsyncClient):
    response = await client.get("/api/v1/payments/providers")
    assert [p["code"] for p in response.json()] == ["paystack", "opay"]


@pytest.mark.asyncio
async def test_initialize_records_pending_payment(client: AsyncClient, trip, provider):
    booking = await _book(client, trip.id, ["A1", "A2"])
    response = await client.post(
        "/api/v1/payments/initialize",
        json={"booking_id": booking["id"], "provider": "paystack"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["provider"] == "paystack"
    assert data["reference"].startswith("SAH_PST_")
    assert data["authorization_url"] == f"https://checkout.paystack.test/{data['reference']}"

    # Amount goes to the provider in kobo
    assert provider.amounts[data["reference"]] == 1000000

    stored, payments, _, _ = await _state(booking["id"])
    assert stored.payment_reference == data["reference"]
    assert stored.payment_method == "PAYSTACK"
    assert [(p.status, p.gateway) for p in payments] == [("pending", "paystack")]


@pytest.mark.asyncio
async def test_initialize_provider_down_is_502(client: AsyncClient, trip, provider):
    booking = await _book(client, trip.id, ["A1"])
    provider.down = True
    response = await client.post(
        "/api/v1/payments/initialize",
        json={"booking_id": booking["id"], "provider": "paystack"},
    )
    assert response.status_code == 502
    assert response.json()["detail"]["error"] == "payment_provider_error"


@pytest.mark.asyncio
async def test_unsupported_provider_is_422(client: AsyncClient, trip):
    booking = await _book(client, trip.id, ["A1"])
    response = await client.post(
        "/api/v1/payments/initialize",
        json={"booking_id": booking["id"], "provider": "stripe"},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_verify_success_confirms_booking_once(client: AsyncClient, trip, provider):
    user = await make_user("payer@example.com", "payer")
    headers = headers_for(user)
    booking = await _book(client, trip.id, ["A1", "A2"], headers=headers)
    reference = await _initialize(client, booking["id"], headers=headers)
    provider.statuses[reference] = "success"

    first = await client.post("/api/v1/payments/verify", json={"reference": reference, "provider": "paystack"})
    assert first.status_code == 200
    data = first.json()
    assert data["success"] is True
    assert data["booking"]["status"] == "confirmed"
    assert data["booking"]["payment_status"] == "completed"
    assert data["booking"]["hold_expires_at"] is None
    assert data["booking"]["loyalty_points_earned"] == 100

    # Same reference again: nothing changes a second time
    second = await client.post("/api/v1/payments/verify", json={"reference": reference, "provider": "paystack"})
    assert second.status_code == 200
    assert second.json()["booking"]["loyalty_points_earned"] == 100

    stored, payments, seats, available = await _state(booking["id"])
    assert stored.qr_code
    assert [p.status for p in payments] == ["success"]
    assert payments[0].paid_at is not None
    assert seats == {"A1", "A2"}
    assert available == 8

    async with AsyncSessionLocal() as session:
        assert (await session.get(User, user.id)).loyalty_points == 100


@pytest.mark.asyncio
async def test_pending_verification_changes_nothing(client: AsyncClient, trip):
    booking = await _book(client, trip.id, ["A1"])
    reference = await _initialize(client, booking["id"])

    response = await client.post("/api/v1/payments/verify", json={"reference": reference, "provider": "paystack"})
    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["booking"]["status"] == "pending"

    stored, payments, seats, _ = await _state(booking["id"])
    assert stored.payment_status == "pending"
    assert [p.status for p in payments] == ["pending"]
    assert seats == {"A1"}


@pytest.mark.asyncio
async def test_provider_outage_during_verify_keeps_booking(client: AsyncClient, trip, provider):
    booking = await _book(client, trip.id, ["A1"])
    reference = await _initialize(client, booking["id"])
    provider.down = True

    response = await client.post("/api/v1/payments/verify", json={"reference": reference, "provider": "paystack"})
    assert response.status_code == 200
    assert response.json()["status"] == "error"

    stored, _, seats, _ = await _state(booking["id"])
    assert stored.status == "pending"
    assert seats == {"A1"}


@pytest.mark.asyncio
async def test_failed_payment_releases_seats(client: AsyncClient, trip, provider):
    booking = await _book(client, trip.id, ["A1", "A2"])
    reference = await _initialize(client, booking["id"])
    provider.statuses[reference] = "failed"

    response = await _paystack_webhook(client, "charge.failed", reference)
    assert response.status_code == 200
    assert response.json() == {"success": True}

    stored, payments, seats, available = await _state(booking["id"])
    assert stored.status == "cancelled"
    assert stored.payment_status == "failed"
    assert [p.status for p in payments] == ["failed"]
    assert seats == set()
    assert available == 10

    # Replayed failure: counter is not inflated
    await _paystack_webhook(client, "charge.failed", reference)
    _, _, _, available = await _state(booking["id"])
    assert available == 10


@pytest.mark.asyncio
async def test_success_webhook_confirms_booking(client: AsyncClient, trip, provider):
    booking = await _book(client, trip.id, ["B1"])
    reference = await _initialize(client, booking["id"])
    provider.statuses[reference] = "success"

    response = await _paystack_webhook(client, "charge.success", reference)
    assert response.status_code == 200

    stored, _, _, _ = await _state(booking["id"])
    assert stored.status == "confirmed"
    assert stored.payment_status == "completed"


@pytest.mark.asyncio
async def test_failure_after_success_is_ignored(client: AsyncClient, trip, provider):
    booking = await _book(client, trip.id, ["A1"])
    reference = await _initialize(client, booking["id"])
    provider.statuses[reference] = "success"
    await _paystack_webhook(client, "charge.success", reference)

    provider.statuses[reference] = "reversed"
    await _paystack_webhook(client, "charge.failed", reference)

    stored, payments, seats, _ = await _state(booking["id"])
    assert stored.status == "confirmed"
    assert stored.payment_status == "completed"
    assert [p.status for p in payments] == ["success"]
    assert seats == {"A1"}


@pytest.mark.asyncio
async def test_success_after_cancellation_marks_payment_only(client: AsyncClient, trip, provider, test_user, auth_headers):
    booking = await _book(client, trip.id, ["A1"], headers=auth_headers)
    reference = await _initialize(client, booking["id"], headers=auth_headers)
    await client.delete(f"/api/v1/bookings/{booking['id']}", headers=auth_headers)

    provider.statuses[reference] = "success"
    response = await _paystack_webhook(client, "charge.success", reference)
    assert response.status_code == 200

    stored, payments, seats, available = await _state(booking["id"])
    assert stored.status == "cancelled"
    assert [p.status for p in payments] == ["success"]
    assert seats == set()
    assert available == 10


@pytest.mark.asyncio
async def test_bad_signature_is_401_and_changes_nothing(client: AsyncClient, trip, provider):
    booking = await _book(client, trip.id, ["A1"])
    reference = await _initialize(client, booking["id"])
    provider.statuses[reference] = "failed"

    response = await _paystack_webhook(client, "charge.failed", reference, signature="0" * 128)
    assert response.status_code == 401

    missing = await client.post(
        "/api/v1/payments/webhook/paystack",
        content=b'{"event": "charge.failed", "data": {}}',
    )
    assert missing.status_code == 401

    stored, _, seats, _ = await _state(booking["id"])
    assert stored.status == "pending"
    assert seats == {"A1"}


@pytest.mark.asyncio
async def test_unknown_and_transfer_events_are_acknowledged(client: AsyncClient):
    for event in ("subscription.create", "transfer.success"):
        response = await _paystack_webhook(client, event, "SAH_PST_1_ABCDEF")
        assert response.status_code == 200
        assert response.json() == {"success": True}


@pytest.mark.asyncio
async def test_malformed_authentic_body_is_acknowledged(client: AsyncClient):
    body = b"not json"
    response = await client.post(
        "/api/v1/payments/webhook/paystack",
        content=body,
        headers={"x-paystack-signature": paystack_signature(body)},
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_webhook_for_unknown_reference_is_acknowledged(client: AsyncClient, provider):
    provider.statuses["SAH_PST_1_NOPE00"] = "success"
    response = await _paystack_webhook(client, "charge.success", "SAH_PST_1_NOPE00")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_opay_checkout_and_webhook(client: AsyncClient, trip, provider):
    booking = await _book(client, trip.id, ["C1", "C2"])
    reference = await _initialize(client, booking["id"], provider="opay")
    assert reference.startswith("SAH_OPY_")

    init_request = provider.requests[0]
    assert init_request.headers["MerchantId"] == "256600000000001"
    assert init_request.headers["Authorization"] == "Bearer opay-public"
    expected = OPayGateway().sign(init_request.content, init_request.headers["Timestamp"])
    assert init_request.headers["Signature"] == expected

    provider.statuses[reference] = "SUCCESS"
    body = json.dumps({"reference": reference, "status": "SUCCESS"}).encode()
    forged = await client.post(
        "/api/v1/payments/webhook/opay", content=body, headers={"signature": "wrong-token"}
    )
    assert forged.status_code == 401

    response = await client.post(
        "/api/v1/payments/webhook/opay", content=body, headers={"signature": OPAY_WEBHOOK_TOKEN}
    )
    assert response.status_code == 200

    stored, payments, _, _ = await _state(booking["id"])
    assert stored.status == "confirmed"
    assert stored.payment_method == "OPAY"
    assert payments[0].gateway == "opay"
    assert payments[0].amount == Decimal("10000.00")


@pytest.mark.asyncio
async def test_opay_pending_webhook_is_ignored(client: AsyncClient, trip):
    booking = await _book(client, trip.id, ["A1"])
    reference = await _initialize(client, booking["id"], provider="opay")
    body = json.dumps({"reference": reference, "status": "PENDING"}).encode()
    response = await client.post(
        "/api/v1/payments/webhook/opay", content=body, headers={"signature": OPAY_WEBHOOK_TOKEN}
    )
    assert response.status_code == 200

    stored, _, _, _ = await _state(booking["id"])
    assert stored.status == "pending"


@pytest.mark.asyncio
async def test_points_cover_fare_without_gateway(client: AsyncClient, route, vehicle, provider):
    trip = await make_trip(route, vehicle, price="2000.00")
    user = await make_user("loyal@example.com", "loyal", points=2000)
    headers = headers_for(user)

    response = await client.post(
        "/api/v1/bookings/",
        json=booking_payload(trip.id, ["A1"], loyalty_points_to_use=2000),
        headers=headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert float(data["total_amount"]) == 0
    assert data["status"] == "confirmed"
    assert data["payment_status"] == "completed"
    assert data["payment_required"] is False
    assert provider.requests == []

    again = await client.post(
        "/api/v1/payments/initialize",
        json={"booking_id": data["id"], "provider": "paystack"},
        headers=headers,
    )
    assert again.status_code == 400
    assert again.json()["detail"]["error"] == "already_processed"


@pytest.mark.asyncio
async def test_guest_cannot_redeem_points(client: AsyncClient, trip):
    response = await client.post(
        "/api/v1/bookings/", json=booking_payload(trip.id, ["A1"], loyalty_points_to_use=100)
    )
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "validation_failed"


@pytest.mark.asyncio
async def test_points_over_balance_rejected(client: AsyncClient, trip, auth_headers):
    response = await client.post(
        "/api/v1/bookings/",
        json=booking_payload(trip.id, ["A1"], loyalty_points_to_use=500),
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "insufficient_points"


# ---------------------------------------------------------------------------
# Repeated checkout: every reference ever issued resolves to its booking
# ---------------------------------------------------------------------------

def _by_reference(payments: list[Payment]) -> dict[str, str]:
    return {p.gateway_reference: p.status for p in payments}


@pytest.mark.asyncio
async def test_paying_first_of_two_checkouts_confirms_booking(client: AsyncClient, trip, provider):
    user = await make_user("twice@example.com", "twice")
    headers = headers_for(user)
    booking = await _book(client, trip.id, ["A1", "A2"], headers=headers)
    first = await _initialize(client, booking["id"], headers=headers)
    second = await _initialize(client, booking["id"], provider="opay", headers=headers)
    assert first != second

    provider.statuses[first] = "success"
    response = await client.post("/api/v1/payments/verify", json={"reference": first, "provider": "paystack"})
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["outcome"] == "success"
    assert data["booking"]["status"] == "confirmed"
    assert data["booking"]["payment_reference"] == first
    assert data["booking"]["payment_method"] == "PAYSTACK"

    stored, payments, seats, _ = await _state(booking["id"])
    assert stored.payment_status == "completed"
    assert _by_reference(payments) == {first: "success", second: "pending"}
    assert seats == {"A1", "A2"}

    # The abandoned OPay checkout failing later does not touch the paid booking
    provider.statuses[second] = "FAIL"
    body = json.dumps({"reference": second, "status": "FAIL"}).encode()
    await client.post("/api/v1/payments/webhook/opay", content=body, headers={"signature": OPAY_WEBHOOK_TOKEN})

    stored, payments, seats, _ = await _state(booking["id"])
    assert stored.status == "confirmed"
    assert _by_reference(payments) == {first: "success", second: "failed"}
    assert seats == {"A1", "A2"}


@pytest.mark.asyncio
async def test_second_charge_for_paid_booking_is_recorded_not_reapplied(client: AsyncClient, trip, provider):
    user = await make_user("double@example.com", "double")
    headers = headers_for(user)
    booking = await _book(client, trip.id, ["A1", "A2"], headers=headers)
    first = await _initialize(client, booking["id"], headers=headers)
    second = await _initialize(client, booking["id"], headers=headers)

    provider.statuses[first] = "success"
    provider.statuses[second] = "success"
    await client.post("/api/v1/payments/verify", json={"reference": first, "provider": "paystack"})
    response = await client.post("/api/v1/payments/verify", json={"reference": second, "provider": "paystack"})
    assert response.json()["outcome"] == "duplicate"
    assert response.json()["booking"]["payment_reference"] == first

    _, payments, _, _ = await _state(booking["id"])
    assert _by_reference(payments) == {first: "success", second: "success"}
    async with AsyncSessionLocal() as session:
        assert (await session.get(User, user.id)).loyalty_points == 100


@pytest.mark.asyncio
async def test_stale_checkout_failure_keeps_seats_while_newer_is_open(client: AsyncClient, trip, provider):
    booking = await _book(client, trip.id, ["B1"])
    stale = await _initialize(client, booking["id"])
    current = await _initialize(client, booking["id"])

    provider.statuses[stale] = "abandoned"
    await _paystack_webhook(client, "charge.failed", stale)

    stored, payments, seats, _ = await _state(booking["id"])
    assert stored.status == "pending"
    assert _by_reference(payments) == {stale: "failed", current: "pending"}
    assert seats == {"B1"}

    # Once the last open checkout fails too, the seats go back
    provider.statuses[current] = "failed"
    await _paystack_webhook(client, "charge.failed", current)

    stored, _, seats, available = await _state(booking["id"])
    assert stored.status == "cancelled"
    assert seats == set()
    assert available == 10


# ---------------------------------------------------------------------------
# Amount verification
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_underpayment_does_not_confirm(client: AsyncClient, trip, provider):
    user = await make_user("short@example.com", "short")
    headers = headers_for(user)
    booking = await _book(client, trip.id, ["A1", "A2"], headers=headers)
    reference = await _initialize(client, booking["id"], headers=headers)

    # Settled for 1 naira against a 10,000 naira booking
    provider.statuses[reference] = "success"
    provider.amounts[reference] = 100

    response = await client.post("/api/v1/payments/verify", json={"reference": reference, "provider": "paystack"})
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is False
    assert data["outcome"] == "amount_mismatch"
    assert data["booking"]["status"] == "pending"
    assert data["booking"]["loyalty_points_earned"] == 0

    stored, payments, seats, _ = await _state(booking["id"])
    assert stored.payment_status == "pending"
    assert stored.qr_code is None
    assert [p.status for p in payments] == ["mismatched"]
    assert "received 1" in payments[0].gateway_response
    assert seats == {"A1", "A2"}
    async with AsyncSessionLocal() as session:
        assert (await session.get(User, user.id)).loyalty_points == 0

    # A fresh checkout for the full amount still goes through
    retry = await _initialize(client, booking["id"], headers=headers)
    provider.statuses[retry] = "success"
    response = await client.post("/api/v1/payments/verify", json={"reference": retry, "provider": "paystack"})
    assert response.json()["booking"]["status"] == "confirmed"


@pytest.mark.asyncio
async def test_overpayment_confirms(client: AsyncClient, trip, provider):
    booking = await _book(client, trip.id, ["A1"])
    reference = await _initialize(client, booking["id"])
    provider.statuses[reference] = "success"
    provider.amounts[reference] += 5000

    response = await client.post("/api/v1/payments/verify", json={"reference": reference, "provider": "paystack"})
    assert response.json()["booking"]["status"] == "confirmed"


# ---------------------------------------------------------------------------
# Concurrent reconciliation: webhook and client verify racing for one booking
# ---------------------------------------------------------------------------

async def _verify_in_own_session(manager, reference: str) -> str:
    async with AsyncSessionLocal() as session:
        _, _, outcome = await payment_service.verify_payment(session, manager, reference, "paystack")
        await session.commit()
        return outcome


@pytest.mark.asyncio
async def test_concurrent_verifications_award_points_once(client: AsyncClient, trip, provider, payment_manager):
    user = await make_user("racer@example.com", "racer")
    headers = headers_for(user)
    booking = await _book(client, trip.id, ["A1", "A2"], headers=headers)
    reference = await _initialize(client, booking["id"], headers=headers)
    provider.statuses[reference] = "success"

    outcomes = await asyncio.gather(
        _verify_in_own_session(payment_manager, reference),
        _verify_in_own_session(payment_manager, reference),
    )
    assert sorted(outcomes) == ["duplicate", "success"]

    async with AsyncSessionLocal() as session:
        assert (await session.get(User, user.id)).loyalty_points == 100
        earned = (await session.execute(
            select(LoyaltyTransaction).where(
                LoyaltyTransaction.user_id == user.id,
                LoyaltyTransaction.transaction_type == "earned",
            )
        )).scalars().all()
        assert len(earned) == 1


@pytest.mark.asyncio
async def test_verify_racing_cancellation_never_confirms_released_seats(
    client: AsyncClient, trip, provider, payment_manager, test_user, auth_headers
):
    booking = await _book(client, trip.id, ["C1"], headers=auth_headers)
    reference = await _initialize(client, booking["id"], headers=auth_headers)
    provider.statuses[reference] = "success"

    async def cancel() -> None:
        async with AsyncSessionLocal() as session:
            try:
                await booking_service.cancel_booking(session, booking["id"], await session.get(User, test_user.id))
                await session.commit()
            except AppError:
                await session.rollback()

    await asyncio.gather(_verify_in_own_session(payment_manager, reference), cancel())

    stored, _, seats, available = await _state(booking["id"])
    if stored.status == "confirmed":
        assert seats == {"C1"}
        assert available == 9
    else:
        assert stored.status == "cancelled"
        assert seats == set()
        assert available == 10


@pytest.mark.asyncio
async def test_seat_release_is_committed_before_cache_invalidation(client: AsyncClient, trip, provider, monkeypatch):
    seen = []

    async def check_committed():
        async with AsyncSessionLocal() as session:
            seen.append((await session.get(Trip, trip.id)).available_seats)

    monkeypatch.setattr(payment_routes, "invalidate_trip_cache", check_committed)
    booking = await _book(client, trip.id, ["A1", "A2"])
    reference = await _initialize(client, booking["id"])
    provider.statuses[reference] = "failed"

    response = await client.post("/api/v1/payments/verify", json={"reference": reference, "provider": "paystack"})
    assert response.status_code == 200
    assert seen == [10]
