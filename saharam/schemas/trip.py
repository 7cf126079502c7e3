"""
Pydantic schemas for routes, vehicles, drivers and trips.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class RouteCreate(BaseModel):
    from_city: str = Field(..., min_length=2, max_length=100)
    to_city: str = Field(..., min_length=2, max_length=100)
    distance_km: Optional[int] = Field(None, gt=0)
    estimated_duration_minutes: Optional[int] = Field(None, gt=0)
    base_fare: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)

    @model_validator(mode="after")
    def cities_differ(self):
        if self.from_city.strip().lower() == self.to_city.strip().lower():
            raise ValueError("from_city and to_city must differ")
        return self


class RouteResponse(BaseModel):
    id: int
    from_city: str
    to_city: str
    distance_km: Optional[int]
    estimated_duration_minutes: Optional[int]
    base_fare: Decimal
    is_active: bool

    model_config = {"from_attributes": True}


class VehicleCreate(BaseModel):
    plate_number: str = Field(..., min_length=2, max_length=20)
    model: str = Field(..., min_length=1, max_length=100)
    capacity: int = Field(..., gt=0, le=100)
    seats_per_row: int = Field(default=4, gt=0, le=10)


class VehicleResponse(BaseModel):
    id: int
    plate_number: str
    model: str
    capacity: int
    seats_per_row: int
    is_active: bool

    model_config = {"from_attributes": True}


class DriverCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=7, max_length=32)
    license_number: str = Field(..., min_length=3, max_length=50)


class DriverResponse(BaseModel):
    id: int
    first_name: str
    last_name: str
    phone: str
    license_number: str
    is_active: bool

    model_config = {"from_attributes": True}


class TripCreate(BaseModel):
    route_id: int
    vehicle_id: int
    driver_id: Optional[int] = None
    departure_time: datetime
    arrival_time: datetime
    base_price: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)


class TripResponse(BaseModel):
    id: int
    route: RouteResponse
    vehicle: VehicleResponse
    driver: Optional[DriverResponse]
    departure_time: datetime
    arrival_time: datetime
    total_seats: int
    available_seats: int
    base_price: Decimal
    is_active: bool

    model_config = {"from_attributes": True}


class SeatMapEntry(BaseModel):
    number: str
    row: int
    column: int
    status: str


class TripDetailResponse(TripResponse):
    seats_per_row: int
    seat_map: list[SeatMapEntry]


class TripSearchResponse(BaseModel):
    trips: list[TripResponse]
    count: int
    cached: bool = False
