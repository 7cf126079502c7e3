"""
Fleet models: routes between cities, the vehicles that run them and the
drivers assigned to trips. These are managed from the admin back-office and
are only ever soft-deactivated.
"""

from sqlalchemy import Boolean, CheckConstraint, Column, Integer, Numeric, String, UniqueConstraint

from saharam.db.base import Base, TimestampMixin


class Route(Base, TimestampMixin):
    __tablename__ = "routes"

    id = Column(Integer, primary_key=True, index=True)
    from_city = Column(String(100), nullable=False, index=True)
    to_city = Column(String(100), nullable=False, index=True)
    distance_km = Column(Integer, nullable=True)
    estimated_duration_minutes = Column(Integer, nullable=True)
    base_fare = Column(Numeric(12, 2), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint("from_city", "to_city", name="uq_route_cities"),
        CheckConstraint("base_fare >= 0", name="check_route_base_fare_non_negative"),
    )

    @property
    def label(self) -> str:
        return f"{self.from_city}-{self.to_city}"

    def __repr__(self) -> str:
        return f"<Route(id={self.id}, {self.from_city} -> {self.to_city})>"


class Vehicle(Base, TimestampMixin):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True)
    plate_number = Column(String(20), unique=True, nullable=False)
    model = Column(String(100), nullable=False)
    capacity = Column(Integer, nullable=False)
    seats_per_row = Column(Integer, nullable=False, default=4)
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("capacity > 0", name="check_vehicle_capacity_positive"),
        CheckConstraint("seats_per_row > 0", name="check_vehicle_seats_per_row_positive"),
    )

    def __repr__(self) -> str:
        return f"<Vehicle(id={self.id}, plate={self.plate_number}, capacity={self.capacity})>"


class Driver(Base, TimestampMixin):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone = Column(String(32), nullable=False)
    license_number = Column(String(50), unique=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Driver(id={self.id}, name={self.full_name})>"
