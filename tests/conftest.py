"""
Pytest fixtures for the test database, client, seeded fleet and fake payment
providers.

Tests run against a throwaway SQLite file. Every transaction starts with
BEGIN IMMEDIATE so concurrent sessions queue on the write lock the way
competing PostgreSQL transactions queue on a row lock. Keep at most one
session open while the HTTP client is in use; fixtures seed through
short-lived sessions.
"""

import hashlib
import hmac
import json
import os
import tempfile
from datetime import timedelta
from decimal import Decimal
from typing import AsyncGenerator

_DB_FILE = os.path.join(tempfile.mkdtemp(prefix="saharam-tests-"), "test.db")

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_FILE}"
os.environ["REDIS_ENABLED"] = "false"
os.environ["NOTIFICATIONS_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["QR_SIGNING_SECRET"] = "test-qr-secret"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_saharam"
os.environ["OPAY_SECRET_KEY"] = "opay-secret"
os.environ["OPAY_PUBLIC_KEY"] = "opay-public"
os.environ["OPAY_MERCHANT_ID"] = "256600000000001"
os.environ["OPAY_WEBHOOK_TOKEN"] = "opay-webhook-token"
os.environ["RECEIPT_UPLOAD_DIR"] = os.path.join(os.path.dirname(_DB_FILE), "receipts")

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession

from saharam.main import app
from saharam.db.base import Base
from saharam.db.session import AsyncSessionLocal, engine
from saharam.core.security import create_access_token, hash_password
from saharam.models import (
    Driver,
    LoyaltyTransaction,
    LoyaltyTransactionType,
    Route,
    Trip,
    User,
    UserRole,
    Vehicle,
)
from saharam.services.payments import OPayGateway, PaymentManager, PaystackGateway, get_payment_manager
from saharam.utils.timeutils import utcnow

PAYSTACK_SECRET = os.environ["PAYSTACK_SECRET_KEY"]
OPAY_WEBHOOK_TOKEN = os.environ["OPAY_WEBHOOK_TOKEN"]


@event.listens_for(engine.sync_engine, "connect")
def _disable_driver_transactions(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(engine.sync_engine, "begin")
def _begin_immediate(conn):
    conn.exec_driver_sql("BEGIN IMMEDIATE")


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, None]:
    """Fresh schema per test; pooled connections are dropped with the test's event loop."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest_asyncio.fixture
async def db(database) -> AsyncGenerator[AsyncSession, None]:
    """A session for service-level tests. Do not combine with `client` requests."""
    async with AsyncSessionLocal() as session:
        yield session


async def _persist(*objects):
    async with AsyncSessionLocal() as session:
        session.add_all(objects)
        await session.commit()
    return objects


# ---------------------------------------------------------------------------
# Fake payment providers
# ---------------------------------------------------------------------------

class FakeProvider:
    """
    In-memory stand-in for the Paystack and OPay HTTP APIs.

    Transactions start as pending; tests settle them by setting
    `statuses[reference]`. Set `down = True` to make every call fail with 503.
    """

    def __init__(self):
        self.statuses: dict[str, str] = {}
        self.amounts: dict[str, int] = {}
        self.down = False
        self.requests: list[httpx.Request] = []

    def paystack(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.down:
            return httpx.Response(503, json={"status": False, "message": "Service unavailable"})

        path = request.url.path
        if path == "/transaction/initialize":
            body = json.loads(request.content)
            reference = body["reference"]
            self.statuses.setdefault(reference, "pending")
            self.amounts[reference] = body["amount"]
            return httpx.Response(200, json={
                "status": True,
                "message": "Authorization URL created",
                "data": {
                    "authorization_url": f"https://checkout.paystack.test/{reference}",
                    "reference": reference,
                },
            })
        if path.startswith("/transaction/verify/"):
            reference = path.rsplit("/", 1)[-1]
            status = self.statuses.get(reference, "pending")
            return httpx.Response(200, json={
                "status": True,
                "data": {
                    "reference": reference,
                    "status": status,
                    "amount": self.amounts.get(reference, 0),
                    "currency": "NGN",
                    "paid_at": "2026-10-19T09:30:00.000Z" if status == "success" else None,
                    "gateway_response": "Approved" if status == "success" else "Declined",
                },
            })
        return httpx.Response(404, json={"status": False, "message": "Not found"})

    def opay(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.down:
            return httpx.Response(503, json={"code": "99999", "message": "Service unavailable"})

        body = json.loads(request.content)
        reference = body["reference"]
        if request.url.path == "/api/v3/cashier/initialize":
            self.statuses.setdefault(reference, "INITIAL")
            self.amounts[reference] = int(body["amount"])
            return httpx.Response(200, json={
                "code": "00000",
                "message": "SUCCESSFUL",
                "data": {"reference": reference, "cashierUrl": f"https://cashier.opay.test/{reference}"},
            })
        if request.url.path == "/api/v3/cashier/status":
            return httpx.Response(200, json={
                "code": "00000",
                "message": "SUCCESSFUL",
                "data": {
                    "reference": reference,
                    "status": self.statuses.get(reference, "INITIAL"),
                    "amount": {"total": self.amounts.get(reference, 0), "currency": "NGN"},
                },
            })
        return httpx.Response(404, json={"code": "04001", "message": "Not found"})


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def payment_manager(provider: FakeProvider) -> PaymentManager:
    return PaymentManager([
        PaystackGateway(
            secret_key=PAYSTACK_SECRET,
            base_url="https://api.paystack.test",
            transport=httpx.MockTransport(provider.paystack),
        ),
        OPayGateway(
            base_url="https://api.opay.test",
            transport=httpx.MockTransport(provider.opay),
        ),
    ])


def paystack_signature(body: bytes) -> str:
    return hmac.new(PAYSTACK_SECRET.encode(), body, hashlib.sha512).hexdigest()


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(database, payment_manager: PaymentManager) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app; requests use the real per-request session."""
    app.dependency_overrides[get_payment_manager] = lambda: payment_manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

async def make_user(email: str, username: str, role: str = UserRole.CUSTOMER, points: int = 0) -> User:
    user = User(
        email=email,
        username=username,
        hashed_password=hash_password("testpassword123"),
        first_name="Test",
        last_name=username.title(),
        role=role,
        loyalty_points=points,
    )
    async with AsyncSessionLocal() as session:
        session.add(user)
        await session.flush()
        if points:
            # Opening balance goes through the ledger so audits stay consistent
            session.add(LoyaltyTransaction(
                user_id=user.id,
                points_change=points,
                transaction_type=LoyaltyTransactionType.EARNED,
                description="Opening balance",
            ))
        await session.commit()
    return user


def headers_for(user: User) -> dict:
    token = create_access_token(data={"sub": str(user.id), "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def test_user(database) -> User:
    return await make_user("test@example.com", "testuser")


@pytest_asyncio.fixture
async def other_user(database) -> User:
    return await make_user("other@example.com", "otheruser")


@pytest_asyncio.fixture
async def admin_user(database) -> User:
    return await make_user("admin@saharam.test", "admin", role=UserRole.ADMIN)


@pytest_asyncio.fixture
async def driver_user(database) -> User:
    return await make_user("driver@saharam.test", "driver", role=UserRole.DRIVER)


@pytest_asyncio.fixture
async def auth_headers(test_user: User) -> dict:
    return headers_for(test_user)


@pytest_asyncio.fixture
async def admin_headers(admin_user: User) -> dict:
    return headers_for(admin_user)


@pytest_asyncio.fixture
async def driver_headers(driver_user: User) -> dict:
    return headers_for(driver_user)


# ---------------------------------------------------------------------------
# Fleet and trips
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def route(database) -> Route:
    route = Route(
        from_city="Lagos",
        to_city="Abuja",
        distance_km=760,
        estimated_duration_minutes=600,
        base_fare=Decimal("15000.00"),
    )
    await _persist(route)
    return route


@pytest_asyncio.fixture
async def vehicle(database) -> Vehicle:
    # 10 seats, 4 per row: A1-A4, B1-B4, C1, C2
    vehicle = Vehicle(plate_number="LAG-123-XY", model="Toyota Hiace", capacity=10, seats_per_row=4)
    await _persist(vehicle)
    return vehicle


@pytest_asyncio.fixture
async def driver(database) -> Driver:
    driver = Driver(first_name="Musa", last_name="Bello", phone="08031234567", license_number="DRV-0001")
    await _persist(driver)
    return driver


def departure_in(hours: float):
    return (utcnow() + timedelta(hours=hours)).replace(microsecond=0)


async def make_trip(route: Route, vehicle: Vehicle, driver=None, hours_ahead: float = 48, price="5000.00") -> Trip:
    departure = departure_in(hours_ahead)
    trip = Trip(
        route_id=route.id,
        vehicle_id=vehicle.id,
        driver_id=driver.id if driver else None,
        departure_time=departure,
        arrival_time=departure + timedelta(hours=10),
        total_seats=vehicle.capacity,
        available_seats=vehicle.capacity,
        base_price=Decimal(price),
    )
    await _persist(trip)
    return trip


@pytest_asyncio.fixture
async def trip(route: Route, vehicle: Vehicle, driver: Driver) -> Trip:
    return await make_trip(route, vehicle, driver)


def booking_payload(trip_id: int, seats: list[str], **overrides) -> dict:
    payload = {
        "trip_id": trip_id,
        "passenger_name": "Amina Yusuf",
        "passenger_phone": "08012345678",
        "passenger_email": "amina@example.com",
        "seat_numbers": seats,
    }
    payload.update(overrides)
    return payload
