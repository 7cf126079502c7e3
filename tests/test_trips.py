"""
Tests for trip search and seat maps.
"""

from datetime import timedelta

import pytest
from httpx import AsyncClient

from conftest import make_trip


def _search_params(trip, **overrides) -> dict:
    params = {"from": "Lagos", "to": "Abuja", "date": trip.departure_time.date().isoformat()}
    params.update(overrides)
    return params


@pytest.mark.asyncio
async def test_search_finds_trip(client: AsyncClient, trip):
    response = await client.get("/api/v1/trips/search", params=_search_params(trip))
    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 1
    assert data["cached"] is False
    found = data["trips"][0]
    assert found["id"] == trip.id
    assert found["route"]["from_city"] == "Lagos"
    assert found["vehicle"]["plate_number"] == "LAG-123-XY"
    assert found["driver"]["license_number"] == "DRV-0001"


@pytest.mark.asyncio
async def test_search_is_case_insensitive(client: AsyncClient, trip):
    response = await client.get("/api/v1/trips/search", params=_search_params(trip, **{"from": "lagos", "to": "ABUJA"}))
    assert response.json()["count"] == 1


@pytest.mark.asyncio
async def test_search_respects_passenger_count(client: AsyncClient, trip):
    response = await client.get("/api/v1/trips/search", params=_search_params(trip, passengers=8))
    assert response.json()["count"] == 1

    # More than any booking may request
    response = await client.get("/api/v1/trips/search", params=_search_params(trip, passengers=9))
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_search_excludes_other_routes_and_days(client: AsyncClient, trip):
    reverse = await client.get("/api/v1/trips/search", params=_search_params(trip, **{"from": "Abuja", "to": "Lagos"}))
    assert reverse.json()["count"] == 0

    next_day = trip.departure_time.date() + timedelta(days=1)
    later = await client.get("/api/v1/trips/search", params=_search_params(trip, date=next_day.isoformat()))
    assert later.json()["count"] == 0


@pytest.mark.asyncio
async def test_search_hides_deactivated_trips(client: AsyncClient, trip, admin_headers):
    await client.delete(f"/api/v1/admin/trips/{trip.id}", headers=admin_headers)
    response = await client.get("/api/v1/trips/search", params=_search_params(trip))
    assert response.json()["count"] == 0


@pytest.mark.asyncio
async def test_search_hides_departed_trips(client: AsyncClient, route, vehicle):
    departed = await make_trip(route, vehicle, hours_ahead=-0.5)
    response = await client.get("/api/v1/trips/search", params=_search_params(departed))
    assert all(t["id"] != departed.id for t in response.json()["trips"])


@pytest.mark.asyncio
async def test_trip_detail_seat_map(client: AsyncClient, trip):
    response = await client.get(f"/api/v1/trips/{trip.id}")
    assert response.status_code == 200
    data = response.json()
    assert data["seats_per_row"] == 4
    assert [s["number"] for s in data["seat_map"]] == ["A1", "A2", "A3", "A4", "B1", "B2", "B3", "B4", "C1", "C2"]
    assert all(s["status"] == "available" for s in data["seat_map"])


@pytest.mark.asyncio
async def test_unknown_trip_detail(client: AsyncClient):
    response = await client.get("/api/v1/trips/12345")
    assert response.status_code == 404
