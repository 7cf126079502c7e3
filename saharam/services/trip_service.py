"""
Trip search and trip detail (seat map).
"""

from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from saharam.core.logging import get_logger
from saharam.models.fleet import Route
from saharam.models.trip import Trip
from saharam.schemas.trip import TripResponse, TripSearchResponse
from saharam.services import booking_service, cache_service
from saharam.services.seat_allocator import build_seat_map
from saharam.utils.timeutils import utcnow

logger = get_logger(__name__)


async def search_trips(
    db: AsyncSession,
    from_city: str,
    to_city: str,
    travel_date: date,
    passengers: int = 1,
) -> dict:
    """
    Active trips on active routes departing on `travel_date` (UTC) with at
    least `passengers` free seats, earliest first.

    Cache-aside through Redis: results are served from cache when present and
    written back after a database read.
    """
    cache_key = cache_service.make_search_key(from_city, to_city, travel_date.isoformat(), passengers)
    cached = await cache_service.get_cached_search(cache_key)
    if cached is not None:
        cached["cached"] = True
        return cached

    day_start = datetime.combine(travel_date, time.min, tzinfo=timezone.utc)
    window_start = max(day_start, utcnow())
    window_end = day_start + timedelta(days=1)

    result = await db.execute(
        select(Trip)
        .join(Route, Trip.route_id == Route.id)
        .where(
            func.lower(Route.from_city) == from_city.strip().lower(),
            func.lower(Route.to_city) == to_city.strip().lower(),
            Route.is_active.is_(True),
            Trip.is_active.is_(True),
            Trip.departure_time > window_start,
            Trip.departure_time < window_end,
            Trip.available_seats >= passengers,
        )
        .order_by(Trip.departure_time.asc())
    )
    trips = list(result.scalars().all())

    response = TripSearchResponse(
        trips=[TripResponse.model_validate(trip) for trip in trips],
        count=len(trips),
    ).model_dump(mode="json")

    await cache_service.set_cached_search(cache_key, response)
    logger.info("trips_searched", from_city=from_city, to_city=to_city, date=travel_date.isoformat(), count=len(trips))
    return response


async def get_trip_detail(db: AsyncSession, trip_id: int) -> dict:
    """Trip plus its full seat map, always read from the database."""
    trip = await booking_service.get_trip(db, trip_id)
    booked = await booking_service.get_booked_seats(db, trip.id)
    detail = TripResponse.model_validate(trip).model_dump()
    detail["seats_per_row"] = trip.seats_per_row
    detail["seat_map"] = build_seat_map(trip.total_seats, trip.seats_per_row, booked)
    return detail
