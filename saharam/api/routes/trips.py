"""
Public trip search and seat maps.
"""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from saharam.db.session import get_db
from saharam.schemas.trip import TripDetailResponse, TripSearchResponse
from saharam.services import trip_service

router = APIRouter(prefix="/trips", tags=["Trips"])


@router.get("/search", response_model=TripSearchResponse)
async def search_trips(
    from_city: str = Query(..., min_length=2, alias="from"),
    to_city: str = Query(..., min_length=2, alias="to"),
    travel_date: date = Query(..., alias="date"),
    passengers: int = Query(1, ge=1, le=8),
    db: AsyncSession = Depends(get_db),
):
    """
    Search trips for a route and day.
    Results are served from Redis cache when available.
    """
    return await trip_service.search_trips(db, from_city, to_city, travel_date, passengers)


@router.get("/{trip_id}", response_model=TripDetailResponse)
async def get_trip(trip_id: int, db: AsyncSession = Depends(get_db)):
    """Trip details with a live seat map (never cached)."""
    return await trip_service.get_trip_detail(db, trip_id)
