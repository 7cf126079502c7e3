"""
Append-only loyalty ledger. Positive deltas are points earned (or refunded),
negative deltas are points redeemed against a booking or earned points
clawed back when a paid booking is refunded.
"""

from sqlalchemy import Column, ForeignKey, Integer, String

from saharam.db.base import Base, TimestampMixin


class LoyaltyTransactionType:
    EARNED = "earned"
    REDEEMED = "redeemed"
    REFUNDED = "refunded"
    REVERSED = "reversed"


class LoyaltyTransaction(Base, TimestampMixin):
    __tablename__ = "loyalty_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True, index=True)
    points_change = Column(Integer, nullable=False)
    transaction_type = Column(String(20), nullable=False)
    description = Column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<LoyaltyTransaction(user={self.user_id}, change={self.points_change})>"
