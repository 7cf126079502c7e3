"""
Trip model with seat inventory tracking.

Key design decisions:
- `available_seats` is denormalized so searches never COUNT seat rows
- `version` column enables optimistic locking of the seat counter
- CHECK constraints keep 0 <= available_seats <= total_seats at the DB level
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
)
from sqlalchemy.orm import relationship

from saharam.db.base import Base, TimestampMixin


class Trip(Base, TimestampMixin):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True)
    route_id = Column(Integer, ForeignKey("routes.id"), nullable=False)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)
    departure_time = Column(DateTime(timezone=True), nullable=False)
    arrival_time = Column(DateTime(timezone=True), nullable=False)
    total_seats = Column(Integer, nullable=False)
    available_seats = Column(Integer, nullable=False)
    base_price = Column(Numeric(12, 2), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    route = relationship("Route", lazy="selectin")
    vehicle = relationship("Vehicle", lazy="selectin")
    driver = relationship("Driver", lazy="selectin")

    __table_args__ = (
        CheckConstraint("available_seats >= 0", name="check_trip_available_seats_non_negative"),
        CheckConstraint("total_seats > 0", name="check_trip_total_seats_positive"),
        CheckConstraint("available_seats <= total_seats", name="check_trip_available_lte_total"),
        CheckConstraint("base_price >= 0", name="check_trip_base_price_non_negative"),
        Index("ix_trips_route_departure", "route_id", "departure_time"),
    )

    @property
    def seats_per_row(self) -> int:
        return self.vehicle.seats_per_row if self.vehicle else 4

    @property
    def route_label(self) -> str:
        return self.route.label if self.route else ""

    def __repr__(self) -> str:
        return f"<Trip(id={self.id}, available={self.available_seats}/{self.total_seats})>"
