from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class LoyaltyTransactionResponse(BaseModel):
    id: int
    booking_id: Optional[int]
    points_change: int
    transaction_type: str
    description: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class TierBenefits(BaseModel):
    discount: int
    points_multiplier: float
    priority_support: bool


class LoyaltySummaryResponse(BaseModel):
    loyalty_points: int
    loyalty_tier: str
    tier_benefits: TierBenefits
    next_tier: Optional[str]
    points_to_next_tier: Optional[int]
    tier_thresholds: dict[str, int]
    transactions: list[LoyaltyTransactionResponse]


class LoyaltyAuditResponse(BaseModel):
    user_id: int
    balance: int
    ledger_sum: int
    consistent: bool
