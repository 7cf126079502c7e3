"""
Locust Load Test Suite

Needs an existing trip, created through the admin API:
  TRIP_ID=1 FROM_CITY=Lagos TO_CITY=Abuja TRAVEL_DATE=2026-11-02 locust -f locustfile.py

Run scenarios:
  locust -f locustfile.py --tags contention   # Many guests, same seats
  locust -f locustfile.py --tags throughput   # Search cache
  locust -f locustfile.py --tags edge         # Bad input
  locust -f locustfile.py                     # All tests
"""

import os
import random
import string
from datetime import date, timedelta

from locust import HttpUser, task, between, tag

TRIP_ID = int(os.environ.get("TRIP_ID", "1"))
FROM_CITY = os.environ.get("FROM_CITY", "Lagos")
TO_CITY = os.environ.get("TO_CITY", "Abuja")
TRAVEL_DATE = os.environ.get("TRAVEL_DATE", (date.today() + timedelta(days=1)).isoformat())

# Front rows only, so concurrent users collide
HOT_SEATS = [f"{row}{col}" for row in "AB" for col in range(1, 5)]


def random_phone():
    return "080" + "".join(random.choices(string.digits, k=8))


def guest_booking(seats):
    return {
        "trip_id": TRIP_ID,
        "passenger_name": "Load Test",
        "passenger_phone": random_phone(),
        "passenger_email": f"load_{random.randint(10000, 99999)}@test.com",
        "seat_numbers": seats,
    }


class SeatContentionUser(HttpUser):
    """
    TEST 1: Contention - many guests fight over 8 seats

    Run: locust -f locustfile.py --tags contention -u 100 -r 50 --run-time 30s

    After test, verify no seat was sold twice:
      SELECT seat_number, COUNT(*) FROM seat_bookings
      WHERE trip_id = X GROUP BY seat_number HAVING COUNT(*) > 1;
    Should return no rows.
    """
    wait_time = between(0, 0.1)

    @tag("contention")
    @task
    def book_hot_seats(self):
        seats = random.sample(HOT_SEATS, k=random.randint(1, 2))
        with self.client.post(
            "/api/v1/bookings/",
            json=guest_booking(seats),
            name="/api/v1/bookings/ [contended]",
            catch_response=True,
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code == 400 and resp.json()["detail"]["error"] in (
                "seat_conflict",
                "insufficient_capacity",
            ):
                resp.success()  # Expected: lost the race
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - search cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: REDIS_ENABLED=false on the API, run again
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def search_cached(self):
        self.client.get(
            "/api/v1/trips/search",
            params={"from": FROM_CITY, "to": TO_CITY, "date": TRAVEL_DATE, "passengers": 1},
            name="/api/v1/trips/search [cached]",
        )

    @tag("throughput", "read")
    @task(3)
    def seat_map(self):
        self.client.get(f"/api/v1/trips/{TRIP_ID}", name="/api/v1/trips/{id}")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_trip(self):
        body = guest_booking(["A1"])
        body["trip_id"] = 999999
        with self.client.post("/api/v1/bookings/", json=body, catch_response=True) as resp:
            self._expect(resp, [404])

    @tag("edge")
    @task
    def seat_outside_vehicle(self):
        with self.client.post("/api/v1/bookings/", json=guest_booking(["Z99"]), catch_response=True) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def no_seats(self):
        with self.client.post("/api/v1/bookings/", json=guest_booking([]), catch_response=True) as resp:
            self._expect(resp, [400, 422])

    @tag("edge")
    @task
    def duplicate_seats(self):
        with self.client.post("/api/v1/bookings/", json=guest_booking(["A1", "A1"]), catch_response=True) as resp:
            self._expect(resp, [400, 422])

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/v1/bookings/", data="not json at all", catch_response=True) as resp:
            self._expect(resp, [400, 422])

    @tag("edge")
    @task
    def forged_webhook(self):
        with self.client.post(
            "/api/v1/payments/webhook/paystack",
            data='{"event": "charge.success", "data": {"reference": "x"}}',
            headers={"x-paystack-signature": "forged"},
            catch_response=True,
        ) as resp:
            self._expect(resp, [401])


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Mostly searching, some seat maps, occasional bookings of free seats.
    """
    wait_time = between(1, 3)

    @task(50)
    def search(self):
        self.client.get(
            "/api/v1/trips/search",
            params={"from": FROM_CITY, "to": TO_CITY, "date": TRAVEL_DATE},
        )

    @task(20)
    def view_trip(self):
        self.client.get(f"/api/v1/trips/{TRIP_ID}")

    @task(5)
    def book_free_seat(self):
        resp = self.client.get(f"/api/v1/trips/{TRIP_ID}", name="/api/v1/trips/{id} [pre-book]")
        if resp.status_code != 200:
            return
        free = [s["number"] for s in resp.json()["seat_map"] if s["status"] == "available"]
        if free:
            seats = random.sample(free, k=min(len(free), random.randint(1, 2)))
            self.client.post("/api/v1/bookings/", json=guest_booking(seats))
