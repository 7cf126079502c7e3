"""
User model with secure password storage and a materialized loyalty balance.

`loyalty_points` is a cached counter; the authoritative history is the
LoyaltyTransaction ledger and the two must always agree.
"""

from sqlalchemy import Boolean, CheckConstraint, Column, Integer, String

from saharam.db.base import Base, TimestampMixin


class UserRole:
    CUSTOMER = "customer"
    ADMIN = "admin"
    DRIVER = "driver"

    ALL = (CUSTOMER, ADMIN, DRIVER)


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    username = Column(String(100), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    phone = Column(String(32), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.CUSTOMER)
    is_active = Column(Boolean, default=True, nullable=False)
    loyalty_points = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("loyalty_points >= 0", name="check_loyalty_points_non_negative"),
        CheckConstraint("role IN ('customer', 'admin', 'driver')", name="check_user_role"),
    )

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part) or self.username

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
