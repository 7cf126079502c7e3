"""
Tests for fire-and-forget notification dispatch.
"""

import pytest

from saharam.services import notification_service


@pytest.fixture
def enabled(monkeypatch):
    monkeypatch.setattr(notification_service.settings, "NOTIFICATIONS_ENABLED", True)


@pytest.mark.asyncio
async def test_dispatch_reaches_every_channel(enabled, monkeypatch):
    sent = []

    async def deliver(channel, recipient, kind, data):
        sent.append((channel, recipient, kind))

    monkeypatch.setattr(notification_service, "_deliver", deliver)
    await notification_service.dispatch(
        notification_service.BOOKING_CONFIRMED,
        {"booking_reference": "SAH000001ABCD", "passenger_phone": "08012345678", "passenger_email": "a@b.ng"},
    )
    assert sent == [
        ("sms", "08012345678", "booking_confirmed"),
        ("email", "a@b.ng", "booking_confirmed"),
    ]


@pytest.mark.asyncio
async def test_delivery_failure_is_swallowed(enabled, monkeypatch):
    attempts = []

    async def broken(channel, recipient, kind, data):
        attempts.append(channel)
        raise ConnectionError("sms gateway down")

    monkeypatch.setattr(notification_service, "_deliver", broken)
    await notification_service.dispatch(
        notification_service.PAYMENT_FAILED,
        {"booking_reference": "SAH000001ABCD", "passenger_phone": "08012345678", "passenger_email": "a@b.ng"},
    )
    # One failing channel does not stop the next
    assert attempts == ["sms", "email"]


@pytest.mark.asyncio
async def test_disabled_dispatch_sends_nothing(monkeypatch):
    monkeypatch.setattr(notification_service.settings, "NOTIFICATIONS_ENABLED", False)

    async def deliver(*args):
        raise AssertionError("should not be called")

    monkeypatch.setattr(notification_service, "_deliver", deliver)
    await notification_service.dispatch(notification_service.BOOKING_CANCELLED, {"passenger_phone": "0801"})
