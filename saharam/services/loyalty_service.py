"""
Loyalty points ledger.

Every balance change is a guarded UPDATE on the user's counter plus one
append-only LoyaltyTransaction row, written in the caller's transaction. The
counter can always be audited against the ledger sum.
"""

import math
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from saharam.core.config import get_settings
from saharam.core.exceptions import InsufficientPoints, NotFound
from saharam.core.logging import get_logger
from saharam.models.booking import Booking
from saharam.models.loyalty import LoyaltyTransaction, LoyaltyTransactionType
from saharam.models.user import User

logger = get_logger(__name__)
settings = get_settings()

TIER_THRESHOLDS = {
    "bronze": 0,
    "silver": 2000,
    "gold": 5000,
    "platinum": 10000,
}

TIER_BENEFITS = {
    "bronze": {"discount": 0, "points_multiplier": 1.0, "priority_support": False},
    "silver": {"discount": 5, "points_multiplier": 1.2, "priority_support": False},
    "gold": {"discount": 10, "points_multiplier": 1.5, "priority_support": True},
    "platinum": {"discount": 15, "points_multiplier": 2.0, "priority_support": True},
}


def tier_for(points: int) -> str:
    tier = "bronze"
    for name, threshold in TIER_THRESHOLDS.items():
        if points >= threshold:
            tier = name
    return tier


def next_tier(points: int) -> tuple[Optional[str], Optional[int]]:
    for name, threshold in TIER_THRESHOLDS.items():
        if points < threshold:
            return name, threshold - points
    return None, None


def points_for_amount(amount: Decimal) -> int:
    return math.floor(Decimal(amount) * Decimal(str(settings.LOYALTY_EARN_RATE)))


async def _apply(
    db: AsyncSession,
    user_id: int,
    delta: int,
    transaction_type: str,
    booking: Optional[Booking],
    description: str,
) -> LoyaltyTransaction:
    stmt = (
        update(User)
        .where(User.id == user_id)
        .values(loyalty_points=User.loyalty_points + delta)
        .execution_options(synchronize_session=False)
    )
    if delta < 0:
        stmt = stmt.where(User.loyalty_points >= -delta)

    result = await db.execute(stmt)
    if result.rowcount == 0:
        if delta < 0:
            raise InsufficientPoints(f"Cannot deduct {-delta} points: balance too low")
        raise NotFound(f"User {user_id} not found")

    entry = LoyaltyTransaction(
        user_id=user_id,
        booking_id=booking.id if booking is not None else None,
        points_change=delta,
        transaction_type=transaction_type,
        description=description,
    )
    db.add(entry)
    await db.flush()

    user = await db.get(User, user_id)
    if user is not None:
        await db.refresh(user, attribute_names=["loyalty_points"])

    logger.info(
        "loyalty_points_changed",
        user_id=user_id,
        delta=delta,
        transaction_type=transaction_type,
        booking_id=entry.booking_id,
    )
    return entry


async def redeem_points(db: AsyncSession, user_id: int, booking: Booking, points: int) -> LoyaltyTransaction:
    return await _apply(
        db, user_id, -points, LoyaltyTransactionType.REDEEMED, booking,
        f"Points redeemed on booking {booking.booking_reference}",
    )


async def award_points(db: AsyncSession, user_id: int, booking: Booking, points: int) -> LoyaltyTransaction:
    return await _apply(
        db, user_id, points, LoyaltyTransactionType.EARNED, booking,
        f"Points earned from booking {booking.booking_reference}",
    )


async def refund_redeemed_points(db: AsyncSession, booking: Booking) -> Optional[LoyaltyTransaction]:
    """Give back points a cancelled booking had redeemed. Safe to call once per cancellation."""
    if not booking.user_id or not booking.loyalty_points_used:
        return None
    return await _apply(
        db, booking.user_id, booking.loyalty_points_used, LoyaltyTransactionType.REFUNDED, booking,
        f"Points returned from cancelled booking {booking.booking_reference}",
    )


async def reverse_earned_points(db: AsyncSession, booking: Booking) -> Optional[LoyaltyTransaction]:
    """
    Take back the points a refunded booking earned when it was paid.

    Raises InsufficientPoints when they have already been spent; the refund
    is then refused along with the rest of the cancellation.
    """
    if not booking.user_id or not booking.loyalty_points_earned:
        return None
    return await _apply(
        db, booking.user_id, -booking.loyalty_points_earned, LoyaltyTransactionType.REVERSED, booking,
        f"Points reversed for refunded booking {booking.booking_reference}",
    )


async def get_transactions(db: AsyncSession, user_id: int, limit: int = 50) -> list[LoyaltyTransaction]:
    result = await db.execute(
        select(LoyaltyTransaction)
        .where(LoyaltyTransaction.user_id == user_id)
        .order_by(LoyaltyTransaction.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_summary(db: AsyncSession, user: User) -> dict:
    points = user.loyalty_points
    tier = tier_for(points)
    upcoming, needed = next_tier(points)
    return {
        "loyalty_points": points,
        "loyalty_tier": tier,
        "tier_benefits": TIER_BENEFITS[tier],
        "next_tier": upcoming,
        "points_to_next_tier": needed,
        "tier_thresholds": TIER_THRESHOLDS,
        "transactions": await get_transactions(db, user.id),
    }


async def audit_balance(db: AsyncSession, user_id: int) -> dict:
    """Compare the materialized balance against the ledger sum."""
    user = await db.get(User, user_id)
    if user is None:
        raise NotFound(f"User {user_id} not found")
    await db.refresh(user, attribute_names=["loyalty_points"])

    ledger_sum = (
        await db.execute(
            select(func.coalesce(func.sum(LoyaltyTransaction.points_change), 0))
            .where(LoyaltyTransaction.user_id == user_id)
        )
    ).scalar_one()

    consistent = int(ledger_sum) == user.loyalty_points
    if not consistent:
        logger.warning(
            "loyalty_balance_mismatch",
            user_id=user_id,
            balance=user.loyalty_points,
            ledger_sum=int(ledger_sum),
        )
    return {
        "user_id": user_id,
        "balance": user.loyalty_points,
        "ledger_sum": int(ledger_sum),
        "consistent": consistent,
    }
