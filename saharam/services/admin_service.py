"""
Back-office operations: fleet management, trip scheduling and booking oversight.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from saharam.core.exceptions import AlreadyExists, NotBookable, NotFound, ValidationFailed
from saharam.core.logging import get_logger
from saharam.models.booking import Booking, BookingStatus, PaymentStatus
from saharam.models.fleet import Driver, Route, Vehicle
from saharam.models.trip import Trip
from saharam.models.user import User
from saharam.schemas.trip import DriverCreate, RouteCreate, TripCreate, VehicleCreate
from saharam.services import booking_service

logger = get_logger(__name__)


async def create_route(db: AsyncSession, data: RouteCreate) -> Route:
    existing = await db.execute(
        select(Route.id).where(
            func.lower(Route.from_city) == data.from_city.strip().lower(),
            func.lower(Route.to_city) == data.to_city.strip().lower(),
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise AlreadyExists(f"Route {data.from_city} to {data.to_city} already exists")

    route = Route(**data.model_dump())
    db.add(route)
    await db.flush()
    await db.refresh(route)
    logger.info("route_created", route_id=route.id, label=route.label)
    return route


async def list_routes(db: AsyncSession) -> list[Route]:
    result = await db.execute(select(Route).order_by(Route.from_city, Route.to_city))
    return list(result.scalars().all())


async def create_vehicle(db: AsyncSession, data: VehicleCreate) -> Vehicle:
    existing = await db.execute(select(Vehicle.id).where(Vehicle.plate_number == data.plate_number))
    if existing.scalar_one_or_none() is not None:
        raise AlreadyExists(f"Vehicle {data.plate_number} already registered")

    vehicle = Vehicle(**data.model_dump())
    db.add(vehicle)
    await db.flush()
    await db.refresh(vehicle)
    logger.info("vehicle_created", vehicle_id=vehicle.id, plate=vehicle.plate_number, capacity=vehicle.capacity)
    return vehicle


async def list_vehicles(db: AsyncSession) -> list[Vehicle]:
    result = await db.execute(select(Vehicle).order_by(Vehicle.id))
    return list(result.scalars().all())


async def create_driver(db: AsyncSession, data: DriverCreate) -> Driver:
    existing = await db.execute(select(Driver.id).where(Driver.license_number == data.license_number))
    if existing.scalar_one_or_none() is not None:
        raise AlreadyExists("A driver with this license number already exists")

    driver = Driver(**data.model_dump())
    db.add(driver)
    await db.flush()
    await db.refresh(driver)
    logger.info("driver_created", driver_id=driver.id)
    return driver


async def list_drivers(db: AsyncSession) -> list[Driver]:
    result = await db.execute(select(Driver).order_by(Driver.last_name, Driver.first_name))
    return list(result.scalars().all())


async def _get_active(db: AsyncSession, model, object_id: int, label: str):
    obj = await db.get(model, object_id)
    if obj is None:
        raise NotFound(f"{label} {object_id} not found")
    if not obj.is_active:
        raise ValidationFailed(f"{label} {object_id} is not active", field=f"{label.lower()}_id")
    return obj


async def create_trip(db: AsyncSession, data: TripCreate) -> Trip:
    """Schedule a trip; seat counts come from the vehicle's capacity."""
    route = await _get_active(db, Route, data.route_id, "Route")
    vehicle = await _get_active(db, Vehicle, data.vehicle_id, "Vehicle")
    if data.driver_id is not None:
        await _get_active(db, Driver, data.driver_id, "Driver")

    departure = data.departure_time
    arrival = data.arrival_time
    if departure.tzinfo is None:
        departure = departure.replace(tzinfo=timezone.utc)
    if arrival.tzinfo is None:
        arrival = arrival.replace(tzinfo=timezone.utc)

    if departure <= datetime.now(timezone.utc):
        raise ValidationFailed("Departure time must be in the future", field="departure_time")
    if arrival <= departure:
        raise ValidationFailed("Arrival time must be after departure time", field="arrival_time")

    trip = Trip(
        route_id=route.id,
        vehicle_id=vehicle.id,
        driver_id=data.driver_id,
        departure_time=departure,
        arrival_time=arrival,
        total_seats=vehicle.capacity,
        available_seats=vehicle.capacity,
        base_price=data.base_price if data.base_price is not None else route.base_fare,
    )
    db.add(trip)
    await db.flush()
    await db.refresh(trip)

    logger.info("trip_created", trip_id=trip.id, route=route.label, seats=trip.total_seats)
    return trip


async def list_trips(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    upcoming_only: bool = False,
) -> tuple[list[Trip], int]:
    query = select(Trip)
    if upcoming_only:
        query = query.where(Trip.departure_time >= datetime.now(timezone.utc))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar()
    result = await db.execute(
        query.order_by(Trip.departure_time.asc()).offset((page - 1) * page_size).limit(page_size)
    )
    return list(result.scalars().all()), total


async def deactivate_trip(db: AsyncSession, trip_id: int) -> Trip:
    """Soft-delete: the trip stops being bookable, existing bookings are kept."""
    trip = await booking_service.get_trip(db, trip_id)
    trip.is_active = False
    await db.flush()
    logger.info("trip_deactivated", trip_id=trip.id)
    return trip


async def update_booking_status(
    db: AsyncSession,
    booking_id: int,
    status: str,
    admin: User,
) -> Booking:
    if status == BookingStatus.CANCELLED:
        return await booking_service.cancel_booking(db, booking_id, admin)

    booking = await booking_service.get_booking(db, booking_id, for_update=True)
    if booking.status == BookingStatus.CANCELLED:
        raise NotBookable("Cancelled bookings cannot be reopened")

    if status == BookingStatus.CONFIRMED:
        if booking.payment_status != PaymentStatus.COMPLETED and booking.total_amount > 0:
            raise NotBookable("Only paid bookings can be confirmed")
        if booking.status != BookingStatus.CONFIRMED:
            booking_service.confirm_booking(booking)
    elif status == BookingStatus.COMPLETED:
        if booking.status != BookingStatus.CONFIRMED:
            raise NotBookable("Only confirmed bookings can be completed")
        booking.status = BookingStatus.COMPLETED

    await db.flush()
    await db.refresh(booking)
    logger.info("booking_status_updated", booking_id=booking.id, status=booking.status, admin_id=admin.id)
    return booking


async def sweep_expired_holds(db: AsyncSession, now: Optional[datetime] = None) -> int:
    return await booking_service.release_expired_holds(db, now=now)
